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
r"""pgcarpenter configuration.
- BackupConfig holds everything one create-backup run needs.
- DatabaseConnectionSettings describes how to reach PostgreSQL.
- Storage definitions are plain dicts, loaded from a JSON file or built
  from command line values, with secrets resolved from the environment
  or the system keyring when not given explicitly.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
import json
import logging
import os
from pathlib import Path
from typing import Union

import keyring
import keyring.errors

from pgcarpenter.common.exception import (
    exc_to_string,
    InvalidConfigurationValue,
)

from .constants import *
from .exception import StorageDefinitionError


class BackupSessionMode(Enum):
    NON_EXCLUSIVE = "non-exclusive"
    EXCLUSIVE = "exclusive"


@dataclass
class DatabaseConnectionSettings:
    user: str = DEFAULT_PG_USER
    password: str = field(default=None, repr=False)
    host: str = None
    port: int = None
    dbname: str = None
    sslmode: str = None
    statement_timeout: int = DEFAULT_STATEMENT_TIMEOUT_SECONDS

    def to_connect_kwargs(self) -> dict:
        kwargs = {"user": self.user}
        for name in ("password", "host", "port", "dbname", "sslmode"):
            value = getattr(self, name)
            if value is not None:
                kwargs[name] = value
        if self.statement_timeout is not None and self.statement_timeout > 0:
            kwargs["connect_timeout"] = self.statement_timeout
        return kwargs

    def __str__(self):
        return (
            f"user={self.user} host={self.host} port={self.port} "
            f"dbname={self.dbname} sslmode={self.sslmode}"
        )


@dataclass
class BackupConfig:
    name: str
    data_directory: str = DEFAULT_PG_DATA_DIRECTORY
    temp_directory: str = None
    compress_threshold: int = DEFAULT_COMPRESS_THRESHOLD
    workers: int = DEFAULT_WORKERS
    ignore_prefixes: tuple = DEFAULT_IGNORE_PREFIXES
    fast_checkpoint: bool = False
    session_mode: BackupSessionMode = BackupSessionMode.NON_EXCLUSIVE
    heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL_SECONDS

    def validate(self):
        if not self.name or not self.name.strip():
            raise InvalidConfigurationValue(f"The backup name must not be empty.")
        if STORAGE_KEY_SEPARATOR in self.name:
            raise InvalidConfigurationValue(
                f"The backup name must not contain '{STORAGE_KEY_SEPARATOR}': {self.name}"
            )
        if self.name == SUCCESSFUL_BACKUPS_PREFIX:
            raise InvalidConfigurationValue(
                f"The backup name '{self.name}' is reserved."
            )
        if self.compress_threshold is None or self.compress_threshold < 0:
            raise InvalidConfigurationValue(
                f"The compression threshold must be zero or greater: {self.compress_threshold}"
            )
        if self.workers is None or self.workers < 1:
            raise InvalidConfigurationValue(
                f"The number of workers must be at least 1: {self.workers}"
            )
        if self.heartbeat_interval is None or self.heartbeat_interval <= 0:
            raise InvalidConfigurationValue(
                f"The heartbeat interval must be greater than zero: {self.heartbeat_interval}"
            )
        if not os.path.isdir(self.data_directory):
            raise InvalidConfigurationValue(
                f"The data directory does not exist or is not a directory: {self.data_directory}"
            )
        if self.temp_directory is not None and not os.path.isdir(self.temp_directory):
            raise InvalidConfigurationValue(
                f"The temp directory does not exist or is not a directory: {self.temp_directory}"
            )
        if not isinstance(self.session_mode, BackupSessionMode):
            raise InvalidConfigurationValue(
                f"Invalid backup session mode: {self.session_mode}"
            )


def _get_keyring_password(username: str) -> str:
    try:
        return keyring.get_password(service_name=KEYRING_SERVICE_NAME, username=username)
    except keyring.errors.KeyringError as ex:
        logging.debug(
            f"Keyring lookup failed: service_name={KEYRING_SERVICE_NAME} "
            f"username={username} {exc_to_string(ex)}"
        )
        return None


def resolve_database_password(user: str, password: str = None) -> str:
    """Explicit value, else PGPASSWORD, else the keyring entry for the
    database user. None lets libpq fall back to .pgpass etc.
    """
    if password is not None:
        return password
    password = os.environ.get(ENV_PG_PASSWORD)
    if password is not None:
        return password
    password = _get_keyring_password(username=user)
    if password is not None:
        logging.debug(f"Using database password from keyring: user={user}")
    return password


def get_storage_secret_keyring_username(container_name: str) -> str:
    return f"{KEYRING_USERNAME_STORAGE_SECRET}:{container_name}"


def resolve_storage_secret(storage_def: dict) -> dict:
    """Return a copy of storage_def whose driver secret is filled in from the
    environment or keyring when the definition does not carry one.
    """
    storage_def = copy.deepcopy(storage_def)
    if storage_def.get(CONFIG_VALUE_NAME_INTERFACE_TYPE) != CONFIG_INTERFACE_TYPE_LIBCLOUD:
        return storage_def
    driver_section = storage_def.setdefault(CONFIG_SECTION_DRIVER, {})
    if driver_section.get(CONFIG_VALUE_NAME_DRIVER_STORAGE_SECRET) is not None:
        return storage_def
    secret = os.environ.get(ENV_STORAGE_SECRET)
    if secret is None:
        secret = _get_keyring_password(
            username=get_storage_secret_keyring_username(
                storage_def.get(CONFIG_VALUE_NAME_CONTAINER)
            )
        )
    if secret is not None:
        driver_section[CONFIG_VALUE_NAME_DRIVER_STORAGE_SECRET] = secret
    return storage_def


def validate_storage_def(storage_def: dict) -> dict:
    if not isinstance(storage_def, dict):
        raise StorageDefinitionError(f"The storage definition must be a JSON object.")
    interface_type = storage_def.get(CONFIG_VALUE_NAME_INTERFACE_TYPE)
    if interface_type not in CONFIG_INTERFACE_TYPES:
        raise StorageDefinitionError(
            f"The storage definition interface must be one of {CONFIG_INTERFACE_TYPES}: "
            f"{interface_type}"
        )
    if not storage_def.get(CONFIG_VALUE_NAME_CONTAINER):
        raise StorageDefinitionError(
            f"The storage definition must specify '{CONFIG_VALUE_NAME_CONTAINER}'."
        )
    driver_section = storage_def.get(CONFIG_SECTION_DRIVER, {})
    if not isinstance(driver_section, dict):
        raise StorageDefinitionError(
            f"The storage definition '{CONFIG_SECTION_DRIVER}' section must be a JSON object."
        )
    return storage_def


def load_storage_def_file(path: Union[str, Path]) -> dict:
    try:
        with open(path, "r", encoding="utf-8") as storage_def_file:
            storage_def = json.load(storage_def_file)
    except FileNotFoundError as ex:
        raise StorageDefinitionError(f"The storage definition file was not found: {path}", ex) from ex
    except json.JSONDecodeError as ex:
        raise StorageDefinitionError(
            f"The storage definition file is not valid JSON: {path}", ex
        ) from ex
    return validate_storage_def(storage_def)


def build_storage_def(
    interface_type: str,
    container: str,
    provider: str = None,
    key: str = None,
    secret: str = None,
    region: str = None,
    host: str = None,
) -> dict:
    storage_def = {
        CONFIG_VALUE_NAME_INTERFACE_TYPE: interface_type,
        CONFIG_VALUE_NAME_CONTAINER: container,
    }
    if interface_type == CONFIG_INTERFACE_TYPE_LIBCLOUD:
        storage_def[CONFIG_VALUE_NAME_PROVIDER] = provider or DEFAULT_LIBCLOUD_PROVIDER
        driver_section = {
            CONFIG_VALUE_NAME_DRIVER_STORAGE_KEY: key,
            CONFIG_VALUE_NAME_DRIVER_STORAGE_SECRET: secret,
            CONFIG_VALUE_NAME_DRIVER_REGION: region,
            CONFIG_VALUE_NAME_DRIVER_HOST: host,
        }
        storage_def[CONFIG_SECTION_DRIVER] = {
            k: v for k, v in driver_section.items() if v is not None
        }
    return validate_storage_def(storage_def)
