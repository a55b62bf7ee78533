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
r"""PostgreSQL low-level backup API session.

A backup is bracketed by a start-backup and a stop-backup call. In
non-exclusive mode both calls must be made on the same connection, and
PostgreSQL silently cancels the backup if that connection goes away in
between, so SessionHandle owns the connection from begin() until end() (or
until the handle's context exits on an error path). In exclusive mode the
server writes backup_label/tablespace_map into the data directory itself and
no connection needs to be held.
"""

from dataclasses import dataclass
import logging
import threading
import time

import psycopg2

from pgcarpenter.common.exception import exc_to_string

from .config import BackupSessionMode, DatabaseConnectionSettings
from .constants import DEFAULT_HEARTBEAT_INTERVAL_SECONDS
from .exception import BackupSessionError

# First server version where pg_start_backup/pg_stop_backup became
# pg_backup_start/pg_backup_stop and exclusive backups were removed.
PG_VERSION_BACKUP_START_STOP_RENAMED = 150000


@dataclass
class SessionArtifacts:
    lsn: str
    backup_label: str = None
    tablespace_map: str = None


class Heartbeat:
    """Log a progress line every interval seconds until stopped."""

    def __init__(self, what: str, interval: float = DEFAULT_HEARTBEAT_INTERVAL_SECONDS):
        self.what = what
        self.interval = interval
        self._stop_event = threading.Event()
        self._thread: threading.Thread = None
        self._start_time = None

    def _run(self):
        while not self._stop_event.wait(self.interval):
            logging.info(
                f"Still waiting for {self.what}: elapsed={time.monotonic() - self._start_time:.0f}s"
            )

    def start(self):
        self._start_time = time.monotonic()
        self._thread = threading.Thread(
            target=self._run, name="heartbeat", daemon=True
        )
        self._thread.start()

    def stop(self):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False


class SessionHandle:
    def __init__(self, backup_name: str, start_lsn: str, connection=None):
        self.backup_name = backup_name
        self.start_lsn = start_lsn
        self.connection = connection

    @property
    def is_connection_retained(self) -> bool:
        return self.connection is not None

    def close(self):
        if self.connection is None:
            return
        conn = self.connection
        self.connection = None
        try:
            conn.close()
        except psycopg2.Error as ex:
            logging.error(f"Failed to close the database connection. {exc_to_string(ex)}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None and self.connection is not None:
            logging.warning(
                f"Closing the backup session connection early, "
                f"PostgreSQL will cancel backup '{self.backup_name}'."
            )
        self.close()
        return False


class BackupSession:
    def __init__(
        self,
        connection_settings: DatabaseConnectionSettings,
        mode: BackupSessionMode = BackupSessionMode.NON_EXCLUSIVE,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL_SECONDS,
        connect_func=None,
    ):
        self.connection_settings = connection_settings
        self.mode = mode
        self.heartbeat_interval = heartbeat_interval
        self._connect_func = connect_func if connect_func is not None else psycopg2.connect

    @property
    def is_exclusive(self) -> bool:
        return self.mode == BackupSessionMode.EXCLUSIVE

    def _connect(self):
        try:
            conn = self._connect_func(**self.connection_settings.to_connect_kwargs())
            conn.autocommit = True
        except psycopg2.Error as ex:
            raise BackupSessionError(
                f"Failed to connect to the database: {self.connection_settings}",
                ex,
            ) from ex
        return conn

    def _set_statement_timeout(self, cursor, seconds):
        cursor.execute("SET statement_timeout = %s", (int(seconds * 1000),))

    @staticmethod
    def _is_renamed_api(conn) -> bool:
        return getattr(conn, "server_version", 0) >= PG_VERSION_BACKUP_START_STOP_RENAMED

    @staticmethod
    def _close_quietly(conn):
        try:
            conn.close()
        except psycopg2.Error as ex:
            # Nothing depends on this connection any longer.
            logging.error(f"Failed to close the database connection. {exc_to_string(ex)}")

    def begin(self, backup_name: str, fast_checkpoint: bool = False) -> SessionHandle:
        logging.info(
            f"Starting {self.mode.value} backup session: name={backup_name} "
            f"fast_checkpoint={fast_checkpoint}"
        )
        conn = self._connect()
        try:
            if self.is_exclusive and self._is_renamed_api(conn):
                raise BackupSessionError(
                    f"Exclusive backups are not supported by this server: "
                    f"server_version={conn.server_version}"
                )
            with conn.cursor() as cursor:
                self._set_statement_timeout(
                    cursor, self.connection_settings.statement_timeout
                )
                if self._is_renamed_api(conn):
                    cursor.execute(
                        "SELECT pg_backup_start(%s, %s)",
                        (backup_name, fast_checkpoint),
                    )
                else:
                    cursor.execute(
                        "SELECT pg_start_backup(%s, %s, %s)",
                        (backup_name, fast_checkpoint, self.is_exclusive),
                    )
                row = cursor.fetchone()
        except psycopg2.Error as ex:
            self._close_quietly(conn)
            raise BackupSessionError(f"Failed to start the backup: name={backup_name}", ex) from ex
        except BaseException:
            self._close_quietly(conn)
            raise
        start_lsn = str(row[0]) if row else None
        logging.info(f"Backup session started: name={backup_name} start_lsn={start_lsn}")
        if self.is_exclusive:
            self._close_quietly(conn)
            return SessionHandle(backup_name=backup_name, start_lsn=start_lsn)
        return SessionHandle(backup_name=backup_name, start_lsn=start_lsn, connection=conn)

    def end(self, handle: SessionHandle) -> SessionArtifacts:
        logging.info(f"Stopping {self.mode.value} backup session: name={handle.backup_name}")
        if self.is_exclusive:
            artifacts = self._end_exclusive(handle)
        else:
            artifacts = self._end_non_exclusive(handle)
        logging.info(f"Backup session stopped: name={handle.backup_name} lsn={artifacts.lsn}")
        return artifacts

    def _end_exclusive(self, handle: SessionHandle) -> SessionArtifacts:
        conn = self._connect()
        try:
            with Heartbeat(what="WAL archiving to complete", interval=self.heartbeat_interval):
                with conn.cursor() as cursor:
                    # Waits for the WAL archiver, not time-boxed.
                    self._set_statement_timeout(cursor, 0)
                    cursor.execute("SELECT pg_stop_backup()")
                    row = cursor.fetchone()
        except psycopg2.Error as ex:
            raise BackupSessionError(
                f"Failed to stop the backup: name={handle.backup_name}", ex
            ) from ex
        finally:
            self._close_quietly(conn)
        return SessionArtifacts(lsn=str(row[0]) if row else None)

    def _end_non_exclusive(self, handle: SessionHandle) -> SessionArtifacts:
        if not handle.is_connection_retained:
            raise BackupSessionError(
                f"The backup session connection is no longer open, "
                f"the backup was cancelled by the server: name={handle.backup_name}"
            )
        conn = handle.connection
        try:
            with Heartbeat(what="WAL archiving to complete", interval=self.heartbeat_interval):
                with conn.cursor() as cursor:
                    # Waits for the WAL archiver, not time-boxed. Only the start
                    # call runs under the configured statement timeout.
                    self._set_statement_timeout(cursor, 0)
                    if self._is_renamed_api(conn):
                        cursor.execute(
                            "SELECT lsn, labelfile, spcmapfile FROM pg_backup_stop()"
                        )
                    else:
                        cursor.execute(
                            "SELECT lsn, labelfile, spcmapfile FROM pg_stop_backup(false)"
                        )
                    row = cursor.fetchone()
        except psycopg2.Error as ex:
            raise BackupSessionError(
                f"Failed to stop the backup: name={handle.backup_name}", ex
            ) from ex
        finally:
            handle.close()
        if not row:
            raise BackupSessionError(
                f"The stop backup call returned no result: name={handle.backup_name}"
            )
        lsn, backup_label, tablespace_map = row
        return SessionArtifacts(
            lsn=str(lsn),
            backup_label=backup_label,
            tablespace_map=tablespace_map,
        )
