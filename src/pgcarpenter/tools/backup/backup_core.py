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
r"""Backup consistency bookkeeping.

A backup named N is observable in storage as:
    N/                  written before the database backup session starts.
    N/...               one object per data directory entry.
    successful/N        written once the session closed and every upload succeeded.
    LATEST              payload N, written last.

Nothing is rolled back on failure. A backup without successful/N must not be
restored.
"""

from enum import Enum
import logging
import os
import shutil
import tempfile

from pgcarpenter.common.exception import (
    exc_to_string,
    InvalidStateError,
    ObjectDoesNotExistError,
)

from .compressor import Lz4Compressor
from .config import BackupConfig
from .constants import *
from .exception import (
    BackupException,
    BackupNameAlreadyExistsError,
    MarkerWriteError,
    UploadError,
)
from .session import BackupSession, SessionArtifacts
from .storage_interface.base import StorageInterface
from .upload_pipeline import UploadPipeline, UploadResults, get_backup_object_key
from .walker import IgnoreFilter, TreeWalker

BACKUP_TEMP_DIR_PREFIX = "pgc_bktmp_"


class BackupState(Enum):
    PENDING = "pending"
    SESSION_OPEN = "session-open"
    UPLOADING = "uploading"
    SESSION_CLOSED = "session-closed"
    MARKED_SUCCESSFUL = "marked-successful"
    LATEST_UPDATED = "latest-updated"
    FAILED = "failed"


def get_backup_placeholder_key(backup_name: str) -> str:
    return f"{backup_name}{DIRECTORY_PLACEHOLDER_SUFFIX}"


def get_success_marker_key(backup_name: str) -> str:
    return f"{SUCCESSFUL_BACKUPS_PREFIX}{STORAGE_KEY_SEPARATOR}{backup_name}"


def is_backup_successful(storage: StorageInterface, backup_name: str) -> bool:
    key = get_success_marker_key(backup_name)
    try:
        return storage.exists(key)
    except Exception as ex:
        raise BackupException(f"Failed to check for a success marker: key={key}", ex) from ex


def get_successful_backups(storage: StorageInterface) -> list[str]:
    prefix = f"{SUCCESSFUL_BACKUPS_PREFIX}{STORAGE_KEY_SEPARATOR}"
    try:
        keys = storage.list_keys(prefix=prefix)
    except Exception as ex:
        raise BackupException(
            f"Failed to list successful backups: storage={storage.name}", ex
        ) from ex
    return [k[len(prefix):] for k in keys if len(k) > len(prefix)]


def get_latest_backup(storage: StorageInterface) -> str:
    """Name of the most recent successful backup, or None if there is none.
    A LATEST pointer whose backup has no success marker is ignored.
    """
    try:
        backup_name = storage.get_string(LATEST_BACKUP_KEY).strip()
    except ObjectDoesNotExistError:
        logging.debug(f"No {LATEST_BACKUP_KEY} object in storage: {storage.name}")
        return None
    except Exception as ex:
        raise BackupException(
            f"Failed to read {LATEST_BACKUP_KEY}: storage={storage.name}", ex
        ) from ex
    if not backup_name:
        logging.warning(f"The {LATEST_BACKUP_KEY} object is empty: {storage.name}")
        return None
    if not is_backup_successful(storage, backup_name):
        logging.warning(
            f"The {LATEST_BACKUP_KEY} object names backup '{backup_name}' "
            f"which has no success marker."
        )
        return None
    return backup_name


class ConsistencyManager:
    def __init__(
        self,
        storage: StorageInterface,
        session: BackupSession,
        config: BackupConfig,
    ):
        self.storage = storage
        self.session = session
        self.config = config
        self.results: UploadResults = None
        self.artifacts: SessionArtifacts = None
        self._state = BackupState.PENDING
        self._temp_dir: str = None
        self._is_used = False

    @property
    def state(self) -> BackupState:
        return self._state

    @property
    def backup_name(self) -> str:
        return self.config.name

    def _set_state(self, state: BackupState):
        logging.info(
            f"Backup '{self.backup_name}': {self._state.value} -> {state.value}"
        )
        self._state = state

    def _put_marker(self, key: str, value: str):
        logging.debug(f"Writing marker: {key}")
        try:
            self.storage.put_string(key, value)
        except Exception as ex:
            raise MarkerWriteError(f"Failed to write marker: key={key}", ex) from ex

    def _check_name_available(self):
        placeholder_key = get_backup_placeholder_key(self.backup_name)
        try:
            is_existing = self.storage.exists(placeholder_key)
        except Exception as ex:
            raise BackupException(
                f"Failed to check for an existing backup: key={placeholder_key}", ex
            ) from ex
        if is_existing:
            raise BackupNameAlreadyExistsError(
                f"A backup named '{self.backup_name}' already exists in {self.storage.name}."
            )

    def _create_pipeline(self) -> UploadPipeline:
        return UploadPipeline(
            storage=self.storage,
            data_directory=self.config.data_directory,
            backup_name=self.backup_name,
            walker=TreeWalker(
                root_dir=self.config.data_directory,
                ignore_filter=IgnoreFilter(self.config.ignore_prefixes),
            ),
            compressor=Lz4Compressor(temp_dir=self._temp_dir),
            compress_threshold=self.config.compress_threshold,
            workers=self.config.workers,
        )

    def _upload_artifacts(self, artifacts: SessionArtifacts):
        for object_name, value in (
            (BACKUP_LABEL_OBJECT_NAME, artifacts.backup_label),
            (TABLESPACE_MAP_OBJECT_NAME, artifacts.tablespace_map),
        ):
            if not value:
                logging.debug(f"No {object_name} returned by the session, not uploading.")
                continue
            key = get_backup_object_key(self.backup_name, object_name)
            logging.info(f"Uploading session artifact: {key}")
            try:
                self.storage.put_string(key, value)
            except Exception as ex:
                raise UploadError(f"Failed to upload session artifact: key={key}", ex) from ex

    def _remove_temp_dir(self):
        if self._temp_dir is None or not os.path.isdir(self._temp_dir):
            return
        try:
            shutil.rmtree(self._temp_dir)
        except OSError as ex:
            logging.warning(
                f"Failed to delete the backup temp folder: {self._temp_dir} {exc_to_string(ex)}"
            )
        self._temp_dir = None

    def create_backup(self) -> UploadResults:
        if self._is_used:
            raise InvalidStateError(f"This instance has already been used.")
        self._is_used = True
        self.config.validate()
        logging.info(f"Starting backup '{self.backup_name}' to {self.storage.name}...")
        try:
            self._check_name_available()
            self._put_marker(get_backup_placeholder_key(self.backup_name), "")
            try:
                self._temp_dir = tempfile.mkdtemp(
                    prefix=BACKUP_TEMP_DIR_PREFIX, dir=self.config.temp_directory
                )
            except OSError as ex:
                raise BackupException(
                    f"Cannot create the backup temp folder: dir={self.config.temp_directory}", ex
                ) from ex
            with self.session.begin(
                backup_name=self.backup_name,
                fast_checkpoint=self.config.fast_checkpoint,
            ) as handle:
                self._set_state(BackupState.SESSION_OPEN)
                pipeline = self._create_pipeline()
                self._set_state(BackupState.UPLOADING)
                self.results = pipeline.run()
                self.artifacts = self.session.end(handle)
            self._set_state(BackupState.SESSION_CLOSED)
            self._upload_artifacts(self.artifacts)
            self._put_marker(get_success_marker_key(self.backup_name), "")
            self._set_state(BackupState.MARKED_SUCCESSFUL)
            self._put_marker(LATEST_BACKUP_KEY, self.backup_name)
            self._set_state(BackupState.LATEST_UPDATED)
        except Exception as ex:
            self._set_state(BackupState.FAILED)
            logging.error(f"Backup '{self.backup_name}' failed: {ex}")
            raise
        finally:
            self._remove_temp_dir()
        self.results.log_summary()
        logging.info(f"***************")
        logging.info(f"*** SUCCESS *** backup '{self.backup_name}' lsn={self.artifacts.lsn}")
        logging.info(f"***************")
        return self.results
