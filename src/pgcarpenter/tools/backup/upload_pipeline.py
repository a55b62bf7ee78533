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
r"""Walk/compress/upload pipeline.

One walker thread offers relative paths through an unbuffered HandOffChannel
to a fixed group of upload worker threads. Each worker re-stats the path,
decides once what kind of object it becomes, and writes it to storage.
"""

from concurrent import futures
from concurrent.futures import ALL_COMPLETED, ThreadPoolExecutor
from dataclasses import dataclass, field
import logging
import os
import stat
import threading
from typing import Optional, Union

from pgcarpenter.common.exception import exc_to_string
from pgcarpenter.common.handoff import HandOffChannel
from pgcarpenter.common.log_global import ThreadContextMixin

from .compressor import Lz4Compressor, remove_temp_file
from .constants import *
from .exception import BackupException, CompressionError, UploadError
from .storage_interface.base import StorageInterface
from .walker import TreeWalker


def get_backup_object_key(backup_name: str, relative_path: str) -> str:
    return f"{backup_name}{STORAGE_KEY_SEPARATOR}{relative_path}"


@dataclass(frozen=True)
class DirectoryEntry:
    relative_path: str

    def get_object_key(self, backup_name: str) -> str:
        return get_backup_object_key(backup_name, self.relative_path) + DIRECTORY_PLACEHOLDER_SUFFIX


@dataclass(frozen=True)
class PlainFile:
    relative_path: str
    path: str
    size: int
    mtime: float

    def get_object_key(self, backup_name: str) -> str:
        return get_backup_object_key(backup_name, self.relative_path)


@dataclass(frozen=True)
class CompressedFile:
    relative_path: str
    path: str
    size: int
    mtime: float

    def get_object_key(self, backup_name: str) -> str:
        return get_backup_object_key(backup_name, self.relative_path) + COMPRESSED_OBJECT_SUFFIX


BackupEntry = Union[DirectoryEntry, PlainFile, CompressedFile]


def classify_entry(
    path: str,
    relative_path: str,
    compress_threshold: int,
) -> Optional[BackupEntry]:
    """Stat path (following symlinks) and return the entry it becomes, or
    None for kinds that are not backed up (sockets, fifos, devices).
    OSError from the stat is left to the caller.
    """
    st = os.stat(path)
    if stat.S_ISDIR(st.st_mode):
        return DirectoryEntry(relative_path=relative_path)
    if not stat.S_ISREG(st.st_mode):
        return None
    if st.st_size > compress_threshold:
        return CompressedFile(
            relative_path=relative_path,
            path=path,
            size=st.st_size,
            mtime=st.st_mtime,
        )
    return PlainFile(
        relative_path=relative_path,
        path=path,
        size=st.st_size,
        mtime=st.st_mtime,
    )


@dataclass
class UploadResults:
    objects_written: int = 0
    files_compressed: int = 0
    skipped_unavailable: int = 0
    skipped_unsupported: int = 0
    compression_failures: list = field(default_factory=list)

    def log_summary(self):
        logging.info(f"{'Total objects written ':.<45} {self.objects_written}")
        logging.info(f"{'Total files compressed ':.<45} {self.files_compressed}")
        logging.info(f"{'Total entries skipped (unavailable) ':.<45} {self.skipped_unavailable}")
        logging.info(f"{'Total entries skipped (unsupported) ':.<45} {self.skipped_unsupported}")
        logging.info(f"{'Total compression failures ':.<45} {len(self.compression_failures)}")
        for relative_path in self.compression_failures:
            logging.error(f"Not backed up, compression failed: {relative_path}")


class UploadPipeline(ThreadContextMixin):
    def __init__(
        self,
        storage: StorageInterface,
        data_directory: str,
        backup_name: str,
        walker: TreeWalker,
        compressor: Lz4Compressor,
        compress_threshold: int = DEFAULT_COMPRESS_THRESHOLD,
        workers: int = DEFAULT_WORKERS,
    ):
        if workers < 1:
            raise ValueError(f"At least one upload worker is required: workers={workers}")
        self.storage = storage
        self.data_directory = os.path.abspath(data_directory)
        self.backup_name = backup_name
        self.walker = walker
        self.compressor = compressor
        self.compress_threshold = compress_threshold
        self.workers = workers
        self.results = UploadResults()
        self._results_lock = threading.Lock()
        self._is_used = False

    def _count(self, name: str, amount: int = 1):
        with self._results_lock:
            setattr(self.results, name, getattr(self.results, name) + amount)

    def run(self) -> UploadResults:
        """Upload every entry the walker yields. Returns once the walker and
        all workers have finished. The first fatal worker error, else any
        walker error, is raised.
        """
        if self._is_used:
            raise BackupException(f"This upload pipeline has already been used.")
        self._is_used = True
        channel = HandOffChannel(name="upload-channel")
        logging.info(
            f"Uploading data directory: path={self.data_directory} workers={self.workers} "
            f"compress_threshold={self.compress_threshold}"
        )
        with ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="walker"
        ) as walker_exec, ThreadPoolExecutor(
            max_workers=self.workers, thread_name_prefix="upload"
        ) as worker_exec:
            walker_fut = walker_exec.submit(self._walk, channel)
            worker_futs = [
                worker_exec.submit(self._work, channel) for _ in range(self.workers)
            ]
            futures.wait(fs=[walker_fut, *worker_futs], return_when=ALL_COMPLETED)

        worker_errors = [f.exception() for f in worker_futs if f.exception() is not None]
        if worker_errors:
            if len(worker_errors) > 1:
                for ex in worker_errors[1:]:
                    logging.error(f"Additional upload worker failure: {ex}")
            raise worker_errors[0]
        walker_error = walker_fut.exception()
        if walker_error is not None:
            raise walker_error
        logging.info(f"Upload of the data directory has completed.")
        return self.results

    def _walk(self, channel: HandOffChannel):
        logging.debug(f"{self.get_exec_context_log_stamp_str()} walker starting.")
        count = 0
        try:
            for relative_path in self.walker.walk():
                channel.put(relative_path)
                count += 1
        except Exception as ex:
            if channel.is_aborted:
                logging.debug(f"Walker stopped, the upload was aborted: walked={count}")
            else:
                logging.error(f"Walker failed: walked={count} {exc_to_string(ex)}")
            raise
        finally:
            channel.close()
        logging.debug(f"{self.get_exec_context_log_stamp_str()} walker done: walked={count}")

    def _work(self, channel: HandOffChannel):
        logging.debug(f"{self.get_exec_context_log_stamp_str()} upload worker starting.")
        for relative_path in channel:
            try:
                self._process(relative_path)
            except UploadError as ex:
                logging.error(f"Upload failed, aborting: {ex}")
                channel.abort(ex)
                raise
            except Exception as ex:
                logging.error(
                    f"Unexpected upload worker failure, aborting: "
                    f"path={relative_path} {exc_to_string(ex)}"
                )
                err = UploadError(f"Unexpected failure processing {relative_path}", ex)
                channel.abort(err)
                raise err from ex
        logging.debug(f"{self.get_exec_context_log_stamp_str()} upload worker done.")

    def _process(self, relative_path: str):
        path = os.path.join(self.data_directory, *relative_path.split(STORAGE_KEY_SEPARATOR))
        try:
            entry = classify_entry(
                path=path,
                relative_path=relative_path,
                compress_threshold=self.compress_threshold,
            )
        except OSError as ex:
            logging.info(f"Cannot stat, skipping: path={relative_path} ex={ex}")
            self._count("skipped_unavailable")
            return
        if entry is None:
            logging.info(f"Not a regular file or directory, skipping: path={relative_path}")
            self._count("skipped_unsupported")
            return
        if isinstance(entry, DirectoryEntry):
            self._put_directory(entry)
        elif isinstance(entry, CompressedFile):
            self._put_compressed_file(entry)
        else:
            self._put_file(entry.get_object_key(self.backup_name), entry.path, entry.mtime)

    def _put_directory(self, entry: DirectoryEntry):
        key = entry.get_object_key(self.backup_name)
        logging.debug(f"Writing directory placeholder: {key}")
        try:
            self.storage.put_string(key, "")
        except Exception as ex:
            raise UploadError(f"Failed to write directory placeholder: key={key}", ex) from ex
        self._count("objects_written")

    def _put_compressed_file(self, entry: CompressedFile):
        try:
            temp_path = self.compressor.compress_file(entry.path)
        except CompressionError as ex:
            logging.error(f"Compression failed, skipping: path={entry.relative_path} {ex}")
            with self._results_lock:
                self.results.compression_failures.append(entry.relative_path)
            return
        try:
            self._put_file(entry.get_object_key(self.backup_name), temp_path, entry.mtime)
        finally:
            remove_temp_file(temp_path)
        self._count("files_compressed")

    def _put_file(self, key: str, source_path: str, mtime: float):
        logging.debug(f"Uploading: {key}")
        try:
            self.storage.put_file(key=key, source_path=source_path, mtime=mtime)
        except Exception as ex:
            raise UploadError(f"Failed to upload: key={key}", ex) from ex
        self._count("objects_written")
