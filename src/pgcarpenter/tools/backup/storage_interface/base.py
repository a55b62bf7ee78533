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

r"""Base for the pgcarpenter storage interface abstraction.

The backup engine only needs a flat key -> bytes store: small textual objects
for markers/placeholders/session artifacts, and file payloads that may be
large. Implementations must be safe to call from several upload workers at
once; no locking is done by callers.
"""

from abc import ABC, abstractmethod
from typing import BinaryIO, Iterator

from pgcarpenter.common.exception import ObjectDoesNotExistError

from ..constants import *
from ..exception import StorageDefinitionError

CHUNK_SIZE_5MB = 5 * 1024 * 1024
CHUNK_SIZE_50MB = 50 * 1024 * 1024
DEFAULT_CHUNK_UPLOAD_SIZE = CHUNK_SIZE_5MB
DEFAULT_CHUNK_DOWNLOAD_SIZE = CHUNK_SIZE_50MB
DEFAULT_MULTIPART_THRESHOLD = CHUNK_SIZE_5MB


def read_file_chunks(f: BinaryIO, chunk_size: int) -> Iterator[bytes]:
    while True:
        b = f.read(chunk_size)
        if len(b) == 0:
            break
        yield b


class StorageInterface(ABC):
    def __init__(self):
        pass

    @property
    def upload_chunk_size(self):
        return DEFAULT_CHUNK_UPLOAD_SIZE

    @property
    def download_chunk_size(self):
        return DEFAULT_CHUNK_DOWNLOAD_SIZE

    @property
    def multipart_threshold(self):
        return DEFAULT_MULTIPART_THRESHOLD

    def is_multipart_upload(self, size_in_bytes: int) -> bool:
        return size_in_bytes > self.multipart_threshold

    @property
    @abstractmethod
    def name(self) -> str:
        raise NotImplementedError()

    @abstractmethod
    def put_string(self, key: str, value: str):
        """Create or overwrite a small textual object."""

    @abstractmethod
    def put_file(self, key: str, source_path: str, mtime: float):
        """Upload the contents of source_path, recording mtime (POSIX seconds)
        as object metadata. Large files are sent in chunks.
        """

    @abstractmethod
    def get_string(self, key: str) -> str:
        """Return the object's payload, raising ObjectDoesNotExistError if absent."""

    @abstractmethod
    def delete(self, key: str):
        """Delete the object, raising ObjectDoesNotExistError if absent."""

    @abstractmethod
    def list_keys(self, prefix: str = None) -> list[str]:
        pass

    def exists(self, key: str) -> bool:
        try:
            self.get_string(key)
        except ObjectDoesNotExistError:
            return False
        return True


class StorageInterfaceFactory:
    def __init__(self, storage_def_dict: dict):
        self.storage_def_dict = storage_def_dict

    def create_storage_interface(self) -> StorageInterface:
        # pylint: disable=import-outside-toplevel
        desired_interface = self.storage_def_dict.get(CONFIG_VALUE_NAME_INTERFACE_TYPE)
        if desired_interface == CONFIG_INTERFACE_TYPE_LIBCLOUD:
            from .libcloud import LibCloudStorageInterface

            return LibCloudStorageInterface(storage_def=self.storage_def_dict)
        elif desired_interface == CONFIG_INTERFACE_TYPE_FILESYSTEM:
            from .filesystem import FileSystemStorageInterface

            return FileSystemStorageInterface(storage_def=self.storage_def_dict)
        else:
            raise StorageDefinitionError(f"Unknown interface type: {desired_interface}")
