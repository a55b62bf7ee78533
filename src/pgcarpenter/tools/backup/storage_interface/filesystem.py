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
r"""Storage interface for local file system.

Objects are kept flat: one file per key directly under the container root,
the file name being the percent-encoded key. This keeps "a/" (a directory
placeholder) and "a/b" (an object whose key merely starts with "a/") as
distinct objects, as they are in a real object store.
"""

import os
import shutil
import tempfile
from pathlib import Path
from typing import Union
from urllib.parse import quote, unquote

from pgcarpenter.common.exception import (
    exc_to_string,
    ObjectDoesNotExistError,
)

from .base import StorageInterface
from ..constants import *
from ..exception import StorageDefinitionError

TEMP_FILE_PREFIX = ".pgc_tmp_"


def get_filesystem_storage_path(root: Union[Path, str], key: str) -> Path:
    if isinstance(root, str):
        root = Path(root)
    if not key:
        raise ValueError("The object key must not be empty.")
    return root / quote(key, safe="")


class FileSystemStorageInterface(StorageInterface):
    def __init__(self, storage_def: dict):
        super().__init__()
        container = storage_def.get(CONFIG_VALUE_NAME_CONTAINER)
        if not container:
            raise StorageDefinitionError(
                f"The filesystem storage definition does not specify a container directory."
            )
        self.storage_def: dict = storage_def
        self.container_root_path = Path(container)
        self.container_root_path.mkdir(parents=True, exist_ok=True)

    @property
    def name(self) -> str:
        return str(self.container_root_path)

    def _replace_with(self, key: str, write_func):
        storage_path = get_filesystem_storage_path(self.container_root_path, key)
        temp_fd, temp_path = tempfile.mkstemp(
            prefix=TEMP_FILE_PREFIX, dir=self.container_root_path
        )
        try:
            with os.fdopen(temp_fd, "wb") as temp_file:
                write_func(temp_file)
            os.replace(temp_path, storage_path)
        except BaseException:
            if os.path.exists(temp_path):
                os.remove(temp_path)
            raise
        return storage_path

    def put_string(self, key: str, value: str):
        self._replace_with(key, lambda f: f.write(value.encode("utf-8")))

    def put_file(self, key: str, source_path: str, mtime: float):
        def copy_source(dest_file):
            with open(source_path, "rb") as source_file:
                shutil.copyfileobj(source_file, dest_file, self.upload_chunk_size)

        storage_path = self._replace_with(key, copy_source)
        os.utime(storage_path, (mtime, mtime))

    def get_string(self, key: str) -> str:
        storage_path = get_filesystem_storage_path(self.container_root_path, key)
        try:
            with open(storage_path, "rb") as storage_file:
                return storage_file.read().decode("utf-8")
        except FileNotFoundError as ex:
            raise ObjectDoesNotExistError(
                f"The object {key} does not exist or was not found. {exc_to_string(ex)}"
            ).with_traceback(ex.__traceback__) from ex

    def get_path(self, key: str) -> Path:
        """Local path holding the object's payload."""
        storage_path = get_filesystem_storage_path(self.container_root_path, key)
        if not storage_path.is_file():
            raise ObjectDoesNotExistError(f"The object {key} does not exist or was not found.")
        return storage_path

    def delete(self, key: str):
        storage_path = get_filesystem_storage_path(self.container_root_path, key)
        try:
            storage_path.unlink()
        except FileNotFoundError as ex:
            raise ObjectDoesNotExistError(
                f"The object {key} does not exist or was not found. {exc_to_string(ex)}"
            ).with_traceback(ex.__traceback__) from ex

    def list_keys(self, prefix: str = None) -> list[str]:
        result = []
        for entry in os.scandir(self.container_root_path):
            if entry.name.startswith(TEMP_FILE_PREFIX) or not entry.is_file():
                continue
            key = unquote(entry.name)
            if prefix and not key.startswith(prefix):
                continue
            result.append(key)
        return sorted(result)
