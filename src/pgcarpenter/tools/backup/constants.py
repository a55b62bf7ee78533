# Copyright 2022 Ashley R. Thomas
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
r"""pgcarpenter constants.
"""

PGCARPENTER_PROGRAM_NAME = "pgcarpenter"
PGCARPENTER_VERSION_STRING = "0.1.0"

#
# Object key layout.
#
STORAGE_KEY_SEPARATOR = "/"
DIRECTORY_PLACEHOLDER_SUFFIX = "/"
COMPRESSED_OBJECT_SUFFIX = ".lz4"
SUCCESSFUL_BACKUPS_PREFIX = "successful"
LATEST_BACKUP_KEY = "LATEST"
BACKUP_LABEL_OBJECT_NAME = "backup_label"
TABLESPACE_MAP_OBJECT_NAME = "tablespace_map"
OBJECT_METADATA_MTIME = "mtime"

#
# Defaults.
#
DEFAULT_COMPRESS_THRESHOLD = 512 * 1024
DEFAULT_STATEMENT_TIMEOUT_SECONDS = 60
DEFAULT_HEARTBEAT_INTERVAL_SECONDS = 60
DEFAULT_WORKERS = 4
DEFAULT_PG_USER = "postgres"
DEFAULT_PG_DATA_DIRECTORY = "/var/lib/postgresql/data"

# Entries under the data directory that are never useful in a restored copy.
DEFAULT_IGNORE_PREFIXES = (
    "pg_log",
    "log",
    "postmaster.pid",
    "postmaster.opts",
    "pg_replslot",
    "pg_wal",
    "pg_xlog",
)

#
# Configuration / storage definitions.
#
CONFIG_VALUE_NAME_INTERFACE_TYPE = "interface"
CONFIG_VALUE_NAME_PROVIDER = "provider"
CONFIG_VALUE_NAME_CONTAINER = "container"
CONFIG_SECTION_DRIVER = "driver"
CONFIG_VALUE_NAME_DRIVER_STORAGE_KEY = "key"
CONFIG_VALUE_NAME_DRIVER_STORAGE_SECRET = "secret"
CONFIG_VALUE_NAME_DRIVER_REGION = "region"
CONFIG_VALUE_NAME_DRIVER_HOST = "host"

CONFIG_INTERFACE_TYPE_LIBCLOUD = "libcloud"
CONFIG_INTERFACE_TYPE_FILESYSTEM = "filesystem"
CONFIG_INTERFACE_TYPES = (
    CONFIG_INTERFACE_TYPE_LIBCLOUD,
    CONFIG_INTERFACE_TYPE_FILESYSTEM,
)
DEFAULT_LIBCLOUD_PROVIDER = "s3"

KEYRING_SERVICE_NAME = "pgcarpenter"
KEYRING_USERNAME_STORAGE_SECRET = "storage-secret"
ENV_PG_PASSWORD = "PGPASSWORD"
ENV_STORAGE_SECRET = "PGCARPENTER_STORAGE_SECRET"
