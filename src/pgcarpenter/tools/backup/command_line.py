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
r"""Main entry point, argument parsing.
"""
# pylint: disable=line-too-long

import argparse
import logging
import sys

from pgcarpenter.common.exception import (
    exc_to_string,
    CarpenterException,
    QueueListenerNotStarted,
)
from pgcarpenter.common.log_global import (
    deinitialize_logging,
    get_verbosity_level,
    global_init,
    initialize_logging,
    initialize_logging_basic,
    remove_root_stream_handlers,
)

from .constants import *
from .backup_cmdline import handle_create_backup, handle_show_latest


def create_argparse():
    #
    # Root parser
    #
    parser = argparse.ArgumentParser(
        prog=PGCARPENTER_PROGRAM_NAME,
        description=f"{PGCARPENTER_PROGRAM_NAME} v{PGCARPENTER_VERSION_STRING}",
        formatter_class=argparse.RawTextHelpFormatter,
    )

    #
    # Common to all parser
    #
    parser_common = argparse.ArgumentParser(add_help=False)
    parser_common.add_argument(
        "--logfile",
        help="The location of log file path. If not specified, do not log to file.",
    )
    parser_common.add_argument(
        "--loglevel", help="level for logging (DEBUG, INFO, WARNING, ERROR, CRITICAL)."
    )
    parser_common.add_argument(
        "--log-console-detail",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="""When logging to console use detailed format.
""",
    )
    parser_common.add_argument(
        "-v",
        "--verbosity",
        action="count",
        help="""increase verbosity with each usage (i.e., -vv is more verbose than -v).
""",
    )

    #
    # Where backups are stored.
    #
    parser_storage = argparse.ArgumentParser(add_help=False)
    parser_storage.add_argument(
        "--storage-def",
        help=f"""Path to a storage definition .json file, for example:
    {{"interface": "{CONFIG_INTERFACE_TYPE_LIBCLOUD}", "provider": "{DEFAULT_LIBCLOUD_PROVIDER}", "container": "my-bucket",
     "driver": {{"key": "...", "region": "us-east-1"}}}}
When specified, the other storage arguments are ignored.
""",
    )
    parser_storage.add_argument(
        "--interface",
        choices=CONFIG_INTERFACE_TYPES,
        default=CONFIG_INTERFACE_TYPE_LIBCLOUD,
        help=f"""The storage interface used with --bucket (default: {CONFIG_INTERFACE_TYPE_LIBCLOUD}).
With '{CONFIG_INTERFACE_TYPE_FILESYSTEM}', --bucket is a local directory.
""",
    )
    parser_storage.add_argument(
        "--provider",
        default=DEFAULT_LIBCLOUD_PROVIDER,
        help=f"The libcloud storage provider (default: {DEFAULT_LIBCLOUD_PROVIDER}).",
    )
    parser_storage.add_argument(
        "--bucket",
        help="The bucket (container) where backups are stored.",
    )
    parser_storage.add_argument(
        "--storage-key",
        help="The storage access key id.",
    )
    parser_storage.add_argument(
        "--storage-secret",
        help=f"""The storage secret access key. If not specified, the {ENV_STORAGE_SECRET}
environment variable and then the system keyring (service '{KEYRING_SERVICE_NAME}',
username '{KEYRING_USERNAME_STORAGE_SECRET}:<bucket>') are used.
""",
    )
    parser_storage.add_argument(
        "--region",
        help="The storage region.",
    )
    parser_storage.add_argument(
        "--endpoint",
        help="The storage endpoint host, for S3-compatible stores.",
    )

    subparsers = parser.add_subparsers(
        help=f"""""",
    )

    #
    # 'create-backup' subparser.
    #
    parser_create_backup = subparsers.add_parser(
        "create-backup",
        formatter_class=argparse.RawTextHelpFormatter,
        help="Back up a running PostgreSQL data directory to storage.",
        parents=[parser_common, parser_storage],
    )
    parser_create_backup.add_argument(
        "--name",
        required=True,
        help="The name of the backup. It must not already exist in storage.",
    )
    parser_create_backup.add_argument(
        "--compress-threshold",
        type=int,
        default=DEFAULT_COMPRESS_THRESHOLD,
        help=f"""Files larger than this many bytes are LZ4 compressed before upload
(default: {DEFAULT_COMPRESS_THRESHOLD}).
""",
    )
    parser_create_backup.add_argument(
        "--user",
        default=DEFAULT_PG_USER,
        help=f"The PostgreSQL user (default: {DEFAULT_PG_USER}).",
    )
    parser_create_backup.add_argument(
        "--password",
        help=f"""The PostgreSQL password. If not specified, the {ENV_PG_PASSWORD} environment
variable and then the system keyring (service '{KEYRING_SERVICE_NAME}', username <user>)
are used.
""",
    )
    parser_create_backup.add_argument(
        "--host",
        help="The PostgreSQL host.",
    )
    parser_create_backup.add_argument(
        "--port",
        type=int,
        help="The PostgreSQL port.",
    )
    parser_create_backup.add_argument(
        "--dbname",
        help="The database to connect to (default: libpq's default for the user).",
    )
    parser_create_backup.add_argument(
        "--sslmode",
        help="The libpq sslmode, for example disable, require, verify-full.",
    )
    parser_create_backup.add_argument(
        "--checkpoint",
        action="store_true",
        default=False,
        help="Request an immediate (fast) checkpoint when the backup starts.",
    )
    parser_create_backup.add_argument(
        "--exclusive",
        action="store_true",
        default=False,
        help="""Use an exclusive backup session (not supported by PostgreSQL 15 and later).
The default is a non-exclusive session.
""",
    )
    parser_create_backup.add_argument(
        "--statement-timeout",
        type=int,
        default=DEFAULT_STATEMENT_TIMEOUT_SECONDS,
        help=f"""Timeout in seconds for connecting to PostgreSQL and for the start backup call
(default: {DEFAULT_STATEMENT_TIMEOUT_SECONDS}, 0 for none). The stop backup call waits for
WAL archiving and is not bounded.
""",
    )
    parser_create_backup.add_argument(
        "--heartbeat-interval",
        type=float,
        default=DEFAULT_HEARTBEAT_INTERVAL_SECONDS,
        help=f"""Seconds between progress messages while waiting for the backup to stop
(default: {DEFAULT_HEARTBEAT_INTERVAL_SECONDS}).
""",
    )
    parser_create_backup.add_argument(
        "--workers",
        type=int,
        default=DEFAULT_WORKERS,
        help=f"The number of upload workers (default: {DEFAULT_WORKERS}).",
    )
    parser_create_backup.add_argument(
        "--data-directory",
        default=DEFAULT_PG_DATA_DIRECTORY,
        help=f"The PostgreSQL data directory (default: {DEFAULT_PG_DATA_DIRECTORY}).",
    )
    parser_create_backup.add_argument(
        "--tmp-directory",
        help="Where compressed files are staged before upload (default: system temp).",
    )
    parser_create_backup.add_argument(
        "--ignore-prefix",
        action="append",
        help=f"""A data directory relative path to leave out of the backup. May be repeated.
When specified, replaces the defaults: {', '.join(DEFAULT_IGNORE_PREFIXES)}
""",
    )
    parser_create_backup.set_defaults(func=handle_create_backup)

    #
    # 'show-latest' subparser.
    #
    parser_show_latest = subparsers.add_parser(
        "show-latest",
        formatter_class=argparse.RawTextHelpFormatter,
        help="Show the most recent successful backup.",
        parents=[parser_common, parser_storage],
    )
    parser_show_latest.add_argument(
        "--all",
        action="store_true",
        default=False,
        help="Also list every backup with a success marker.",
    )
    parser_show_latest.set_defaults(func=handle_show_latest)

    return parser


def main(argv=None):
    global_init()
    initialize_logging_basic()
    logging.info(f"{PGCARPENTER_PROGRAM_NAME} - v{PGCARPENTER_VERSION_STRING}")

    parser = create_argparse()
    args = parser.parse_args(argv)

    verbosity_level = 0
    if hasattr(args, "verbosity") and args.verbosity is not None:
        verbosity_level = args.verbosity

    logfile = None
    loglevel = None
    if hasattr(args, "logfile"):
        logfile = args.logfile
    if hasattr(args, "loglevel"):
        loglevel = args.loglevel

    log_console_detail = False
    if hasattr(args, "log_console_detail") and args.log_console_detail:
        log_console_detail = args.log_console_detail

    exit_code = 1
    try:
        if hasattr(args, "func"):
            remove_root_stream_handlers()
            initialize_logging(
                logfile=logfile,
                loglevel=loglevel,
                verbosity_level=verbosity_level,
                log_console_detail=log_console_detail,
            )
            debug_argv = argv if argv is not None else sys.argv
            logging.debug(f"argv={'None' if debug_argv is None else ' '.join([*debug_argv])}")

            exit_code = args.func(args)
            if exit_code is None:
                exit_code = 0
        else:
            print(f"I have nothing to do. Try {PGCARPENTER_PROGRAM_NAME} -h for help.")
    except CarpenterException as err:
        logging.error(f"Failed: {err.message}")
        if get_verbosity_level() > 0:
            logging.error(exc_to_string(err))
    finally:
        try:
            deinitialize_logging()
        except QueueListenerNotStarted:
            pass
    logging.debug(f"{PGCARPENTER_PROGRAM_NAME} exit_code={exit_code}")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
