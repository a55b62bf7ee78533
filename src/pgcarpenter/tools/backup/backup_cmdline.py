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
r"""Backup-related command line handlers.
"""

import logging

from pgcarpenter.common.exception import CarpenterException, InvalidCommandLineArgument

from .backup_core import (
    ConsistencyManager,
    get_latest_backup,
    get_successful_backups,
)
from .config import (
    BackupConfig,
    BackupSessionMode,
    DatabaseConnectionSettings,
    build_storage_def,
    load_storage_def_file,
    resolve_database_password,
    resolve_storage_secret,
)
from .constants import *
from .exception import StorageDefinitionError
from .session import BackupSession
from .storage_interface.base import StorageInterface, StorageInterfaceFactory


def get_storage_def_from_args(args) -> dict:
    if args.storage_def is not None:
        storage_def = load_storage_def_file(args.storage_def)
    elif args.bucket is not None:
        storage_def = build_storage_def(
            interface_type=args.interface,
            container=args.bucket,
            provider=args.provider,
            key=args.storage_key,
            secret=args.storage_secret,
            region=args.region,
            host=args.endpoint,
        )
    else:
        raise InvalidCommandLineArgument(
            f"Either --storage-def or --bucket must be specified."
        )
    return resolve_storage_secret(storage_def)


def create_storage_interface_from_args(args) -> StorageInterface:
    storage_def = get_storage_def_from_args(args)
    try:
        storage = StorageInterfaceFactory(storage_def).create_storage_interface()
    except CarpenterException:
        raise
    except Exception as ex:
        raise StorageDefinitionError(
            f"Cannot create the storage interface: "
            f"interface={storage_def.get(CONFIG_VALUE_NAME_INTERFACE_TYPE)} "
            f"provider={storage_def.get(CONFIG_VALUE_NAME_PROVIDER)} "
            f"container={storage_def.get(CONFIG_VALUE_NAME_CONTAINER)}",
            ex,
        ) from ex
    logging.info(f"Storage: {storage.name}")
    return storage


def get_connection_settings_from_args(args) -> DatabaseConnectionSettings:
    if args.statement_timeout < 0:
        raise InvalidCommandLineArgument(
            f"The --statement-timeout must be zero or greater: {args.statement_timeout}"
        )
    return DatabaseConnectionSettings(
        user=args.user,
        password=resolve_database_password(user=args.user, password=args.password),
        host=args.host,
        port=args.port,
        dbname=args.dbname,
        sslmode=args.sslmode,
        statement_timeout=args.statement_timeout,
    )


def get_backup_config_from_args(args) -> BackupConfig:
    ignore_prefixes = DEFAULT_IGNORE_PREFIXES
    if args.ignore_prefix:
        ignore_prefixes = tuple(args.ignore_prefix)
    return BackupConfig(
        name=args.name,
        data_directory=args.data_directory,
        temp_directory=args.tmp_directory,
        compress_threshold=args.compress_threshold,
        workers=args.workers,
        ignore_prefixes=ignore_prefixes,
        fast_checkpoint=args.checkpoint,
        session_mode=(
            BackupSessionMode.EXCLUSIVE if args.exclusive else BackupSessionMode.NON_EXCLUSIVE
        ),
        heartbeat_interval=args.heartbeat_interval,
    )


def handle_create_backup(args):
    config = get_backup_config_from_args(args)
    config.validate()
    storage = create_storage_interface_from_args(args)
    connection_settings = get_connection_settings_from_args(args)
    session = BackupSession(
        connection_settings=connection_settings,
        mode=config.session_mode,
        heartbeat_interval=config.heartbeat_interval,
    )
    logging.info(f"Backup name ...................... {config.name}")
    logging.info(f"Data directory ................... {config.data_directory}")
    logging.info(f"Session mode ..................... {config.session_mode.value}")
    logging.info(f"Database ......................... {connection_settings}")
    manager = ConsistencyManager(storage=storage, session=session, config=config)
    results = manager.create_backup()
    if results.compression_failures:
        logging.warning(
            f"{len(results.compression_failures)} file(s) could not be compressed "
            f"and are not part of backup '{config.name}'."
        )
    return 0


def handle_show_latest(args):
    storage = create_storage_interface_from_args(args)
    if args.all:
        backup_names = get_successful_backups(storage)
        if not backup_names:
            logging.info(f"No successful backups found.")
        for backup_name in backup_names:
            print(backup_name)
    latest = get_latest_backup(storage)
    if latest is None:
        logging.info(f"No latest successful backup found.")
        return 1
    print(f"{LATEST_BACKUP_KEY}: {latest}")
    return 0
