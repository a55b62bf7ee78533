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

# pylint: disable=unused-argument
# pylint: disable=unused-variable
# pylint: disable=unused-import

import logging
from pathlib import Path
import pytest
from pytest import raises

import libcloud.storage.types

from pgcarpenter.common.exception import ObjectDoesNotExistError
from pgcarpenter.tools.backup.constants import (
    CONFIG_INTERFACE_TYPE_LIBCLOUD,
    CONFIG_SECTION_DRIVER,
    CONFIG_VALUE_NAME_CONTAINER,
    CONFIG_VALUE_NAME_INTERFACE_TYPE,
    CONFIG_VALUE_NAME_PROVIDER,
)
from pgcarpenter.tools.backup.exception import StorageDefinitionError
import pgcarpenter.tools.backup.storage_interface.libcloud as libcloud_interface
from pgcarpenter.tools.backup.storage_interface.base import CHUNK_SIZE_5MB
from pgcarpenter.tools.backup.storage_interface.libcloud import LibCloudStorageInterface

from .common_helpers import create_test_data_file

LOGGER = logging.getLogger(__name__)


class FakeObject:
    def __init__(self, name, data, extra):
        self.name = name
        self.data = data
        self.extra = extra


class FakeContainer:
    def __init__(self, driver, name):
        self.driver = driver
        self.name = name

    def get_object(self, object_name):
        if object_name not in self.driver.objects:
            raise libcloud.storage.types.ObjectDoesNotExistError(
                value="not found", driver=self.driver, object_name=object_name
            )
        return self.driver.objects[object_name]

    def list_objects(self, prefix=None):
        return [
            o for k, o in sorted(self.driver.objects.items())
            if prefix is None or k.startswith(prefix)
        ]


class FakeDriver:
    instances = []

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.objects = {}
        self.calls = []
        self.get_container_count = 0
        FakeDriver.instances.append(self)

    def get_container(self, container_name):
        self.get_container_count += 1
        return FakeContainer(self, container_name)

    def upload_object(self, file_path, container, object_name, extra=None):
        self.calls.append(("upload_object", object_name))
        with open(file_path, "rb") as f:
            self.objects[object_name] = FakeObject(object_name, f.read(), extra)

    def upload_object_via_stream(self, iterator, container, object_name, extra=None):
        chunks = list(iterator)
        self.calls.append(("upload_object_via_stream", object_name, len(chunks)))
        self.objects[object_name] = FakeObject(object_name, b"".join(chunks), extra)

    def download_object_as_stream(self, obj, chunk_size=None):
        yield obj.data

    def delete_object(self, obj):
        del self.objects[obj.name]
        return True


@pytest.fixture
def fake_driver(monkeypatch):
    requested_providers = []

    def get_driver(provider):
        requested_providers.append(provider)
        return FakeDriver

    FakeDriver.instances = []
    monkeypatch.setattr(libcloud_interface, "get_driver", get_driver)
    return requested_providers


def create_libcloud_storage(driver_section=None) -> LibCloudStorageInterface:
    return LibCloudStorageInterface(
        storage_def={
            CONFIG_VALUE_NAME_INTERFACE_TYPE: CONFIG_INTERFACE_TYPE_LIBCLOUD,
            CONFIG_VALUE_NAME_PROVIDER: "s3",
            CONFIG_VALUE_NAME_CONTAINER: "pg-backups",
            CONFIG_SECTION_DRIVER: driver_section
            if driver_section is not None
            else {"key": "AKIA", "secret": "s3cr3t", "region": None},
        }
    )


def test_libcloud_driver_parameters(fake_driver):
    storage = create_libcloud_storage()
    assert fake_driver == ["s3"]
    driver = FakeDriver.instances[0]
    assert driver.kwargs == {"key": "AKIA", "secret": "s3cr3t"}
    assert storage.name == "pg-backups"


def test_libcloud_secret_bytes_decoded(fake_driver):
    create_libcloud_storage({"key": "AKIA", "secret": b"s3cr3t"})
    assert FakeDriver.instances[0].kwargs["secret"] == "s3cr3t"


def test_libcloud_requires_container(fake_driver):
    with raises(StorageDefinitionError):
        LibCloudStorageInterface(
            storage_def={CONFIG_VALUE_NAME_INTERFACE_TYPE: CONFIG_INTERFACE_TYPE_LIBCLOUD}
        )


def test_libcloud_string_objects(fake_driver):
    storage = create_libcloud_storage()
    storage.put_string("b1/", "")
    storage.put_string("LATEST", "b1")
    assert storage.get_string("LATEST") == "b1"
    assert storage.exists("b1/")
    assert not storage.exists("b2/")
    assert storage.list_keys(prefix="b1") == ["b1/"]
    storage.delete("LATEST")
    with raises(ObjectDoesNotExistError):
        storage.get_string("LATEST")
    with raises(ObjectDoesNotExistError):
        storage.delete("LATEST")
    assert FakeDriver.instances[0].get_container_count == 1


def test_libcloud_small_file_single_shot(fake_driver, tmp_path: Path):
    storage = create_libcloud_storage()
    source = create_test_data_file(tmp_path / "small.dat", CHUNK_SIZE_5MB)
    storage.put_file("b1/small.dat", str(source), 1_600_000_000.75)
    driver = FakeDriver.instances[0]
    assert driver.calls == [("upload_object", "b1/small.dat")]
    o = driver.objects["b1/small.dat"]
    assert o.data == source.read_bytes()
    assert o.extra == {"meta_data": {"mtime": "1600000000"}}


def test_libcloud_large_file_chunked(fake_driver, tmp_path: Path):
    storage = create_libcloud_storage()
    source = create_test_data_file(tmp_path / "large.dat", CHUNK_SIZE_5MB * 2 + 1)
    storage.put_file("b1/large.dat.lz4", str(source), 1_600_000_000)
    driver = FakeDriver.instances[0]
    assert driver.calls == [("upload_object_via_stream", "b1/large.dat.lz4", 3)]
    o = driver.objects["b1/large.dat.lz4"]
    assert o.data == source.read_bytes()
    assert o.extra == {"meta_data": {"mtime": "1600000000"}}
