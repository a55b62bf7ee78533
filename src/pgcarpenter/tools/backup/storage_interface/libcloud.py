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
r"""pgcarpenter interface for libcloud.
"""

import logging
import os
import threading
import libcloud.storage.types
from libcloud.storage.providers import get_driver
import libcloud.storage.base

from pgcarpenter.common.exception import (
    exc_to_string,
    ObjectDoesNotExistError,
)

from .base import (
    StorageInterface,
    read_file_chunks,
)
from ..constants import *
from ..exception import StorageDefinitionError


class LibCloudStorageInterface(StorageInterface):
    def __init__(self, storage_def: dict):
        super().__init__()
        self.provider_id = storage_def.get(CONFIG_VALUE_NAME_PROVIDER, DEFAULT_LIBCLOUD_PROVIDER)
        self.container_name = storage_def.get(CONFIG_VALUE_NAME_CONTAINER)
        if not self.container_name:
            raise StorageDefinitionError(
                f"The storage definition does not specify a container (bucket)."
            )
        self.libcloud_driver_class: libcloud.storage.base.StorageDriver = get_driver(
            self.provider_id
        )
        driver_parameters = {
            k: v
            for k, v in dict(storage_def.get(CONFIG_SECTION_DRIVER, {})).items()
            if v is not None
        }
        secret = driver_parameters.get(CONFIG_VALUE_NAME_DRIVER_STORAGE_SECRET)
        if isinstance(secret, (bytearray, bytes)):
            driver_parameters[CONFIG_VALUE_NAME_DRIVER_STORAGE_SECRET] = secret.decode("utf-8")
        self.storage_driver: libcloud.storage.base.StorageDriver = (
            self.libcloud_driver_class(**driver_parameters)
        )
        self._container: libcloud.storage.base.Container = None
        self._container_lock = threading.Lock()

    @property
    def name(self) -> str:
        return self.container_name

    @property
    def container(self) -> libcloud.storage.base.Container:
        with self._container_lock:
            if self._container is None:
                self._container = self.storage_driver.get_container(
                    container_name=self.container_name
                )
            return self._container

    def _get_object(self, key: str) -> libcloud.storage.base.Object:
        try:
            return self.container.get_object(object_name=key)
        except libcloud.storage.types.ObjectDoesNotExistError as ex:
            raise ObjectDoesNotExistError(
                f"The object {key} does not exist or was not found. {exc_to_string(ex)}",
                ex,
            ).with_traceback(ex.__traceback__) from ex

    def put_string(self, key: str, value: str):
        self.storage_driver.upload_object_via_stream(
            iterator=iter([value.encode("utf-8")]),
            container=self.container,
            object_name=key,
            extra={"content_type": "text/plain"},
        )

    def put_file(self, key: str, source_path: str, mtime: float):
        size_in_bytes = os.path.getsize(source_path)
        extra = {"meta_data": {OBJECT_METADATA_MTIME: str(int(mtime))}}
        if not self.is_multipart_upload(size_in_bytes):
            self.storage_driver.upload_object(
                file_path=source_path,
                container=self.container,
                object_name=key,
                extra=extra,
            )
            return
        logging.debug(
            f"Chunked upload: size={size_in_bytes} chunk_size={self.upload_chunk_size} key={key}"
        )
        with open(source_path, "rb") as source_file:
            self.storage_driver.upload_object_via_stream(
                iterator=read_file_chunks(source_file, self.upload_chunk_size),
                container=self.container,
                object_name=key,
                extra=extra,
            )

    def get_string(self, key: str) -> str:
        o = self._get_object(key)
        chunks = self.storage_driver.download_object_as_stream(
            obj=o, chunk_size=self.download_chunk_size
        )
        return b"".join(chunks).decode("utf-8")

    def delete(self, key: str):
        o = self._get_object(key)
        self.storage_driver.delete_object(obj=o)

    def list_keys(self, prefix: str = None) -> list[str]:
        return [o.name for o in self.container.list_objects(prefix=prefix)]
