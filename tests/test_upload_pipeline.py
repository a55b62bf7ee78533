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
import os
from pathlib import Path
from pytest import raises

from pgcarpenter.tools.backup.compressor import Lz4Compressor
from pgcarpenter.tools.backup.exception import (
    BackupException,
    CompressionError,
    UploadError,
    WalkError,
)
from pgcarpenter.tools.backup.upload_pipeline import (
    CompressedFile,
    DirectoryEntry,
    PlainFile,
    UploadPipeline,
    classify_entry,
)
from pgcarpenter.tools.backup.walker import IgnoreFilter, TreeWalker

from .common_helpers import (
    FailingStorage,
    create_compressible_file,
    create_filesystem_storage,
    create_test_data_file,
)

LOGGER = logging.getLogger(__name__)

THRESHOLD = 1000


class ListWalker:
    def __init__(self, paths, error=None):
        self.paths = paths
        self.error = error

    def walk(self):
        yield from self.paths
        if self.error is not None:
            raise self.error


class SelectiveFailCompressor(Lz4Compressor):
    def __init__(self, temp_dir, fail_name):
        super().__init__(temp_dir=temp_dir)
        self.fail_name = fail_name

    def compress_file(self, source_path):
        if os.path.basename(source_path) == self.fail_name:
            raise CompressionError(f"Simulated compression failure: {source_path}")
        return super().compress_file(source_path)


def create_pipeline(
    tmp_path: Path,
    storage,
    data_dir: Path,
    walker=None,
    compressor=None,
    workers=3,
) -> UploadPipeline:
    temp_dir = tmp_path / "tmp"
    temp_dir.mkdir(exist_ok=True)
    if walker is None:
        walker = TreeWalker(data_dir, ignore_filter=IgnoreFilter([]))
    if compressor is None:
        compressor = Lz4Compressor(temp_dir=str(temp_dir))
    return UploadPipeline(
        storage=storage,
        data_directory=str(data_dir),
        backup_name="b1",
        walker=walker,
        compressor=compressor,
        compress_threshold=THRESHOLD,
        workers=workers,
    )


def test_classify_entry(tmp_path: Path):
    small = create_test_data_file(tmp_path / "small.dat", THRESHOLD)
    large = create_test_data_file(tmp_path / "large.dat", THRESHOLD + 1)
    assert classify_entry(str(tmp_path), "d", THRESHOLD) == DirectoryEntry(relative_path="d")
    e = classify_entry(str(small), "small.dat", THRESHOLD)
    assert isinstance(e, PlainFile)
    assert e.size == THRESHOLD
    assert e.get_object_key("b1") == "b1/small.dat"
    e = classify_entry(str(large), "large.dat", THRESHOLD)
    assert isinstance(e, CompressedFile)
    assert e.get_object_key("b1") == "b1/large.dat.lz4"
    assert DirectoryEntry(relative_path="base/1").get_object_key("b1") == "b1/base/1/"
    os.mkfifo(tmp_path / "fifo")
    assert classify_entry(str(tmp_path / "fifo"), "fifo", THRESHOLD) is None
    with raises(FileNotFoundError):
        classify_entry(str(tmp_path / "missing"), "missing", THRESHOLD)


def test_upload_threshold_boundaries(tmp_path: Path):
    data_dir = tmp_path / "data"
    eq = create_test_data_file(data_dir / "eq.dat", THRESHOLD)
    gt = create_compressible_file(data_dir / "sub" / "gt.dat", THRESHOLD + 1)
    zero = create_test_data_file(data_dir / "sub" / "zero.dat", 0)
    (data_dir / "empty").mkdir()
    os.utime(eq, (1_500_000_000, 1_500_000_000))
    storage = create_filesystem_storage(tmp_path / "store")
    pipeline = create_pipeline(tmp_path, storage, data_dir)
    results = pipeline.run()
    assert storage.list_keys() == sorted(
        [
            "b1/empty/",
            "b1/eq.dat",
            "b1/sub/",
            "b1/sub/gt.dat.lz4",
            "b1/sub/zero.dat",
        ]
    )
    assert results.objects_written == 5
    assert results.files_compressed == 1
    assert results.compression_failures == []
    assert storage.get_path("b1/eq.dat").read_bytes() == eq.read_bytes()
    assert int(os.stat(storage.get_path("b1/eq.dat")).st_mtime) == 1_500_000_000
    assert int(os.stat(storage.get_path("b1/sub/gt.dat.lz4")).st_mtime) == int(
        os.stat(gt).st_mtime
    )
    restored = tmp_path / "gt.restored"
    Lz4Compressor.decompress_file(str(storage.get_path("b1/sub/gt.dat.lz4")), str(restored))
    assert restored.read_bytes() == gt.read_bytes()
    assert storage.get_string("b1/empty/") == ""
    assert list((tmp_path / "tmp").iterdir()) == []


def test_upload_skips_vanished_file(tmp_path: Path):
    data_dir = tmp_path / "data"
    create_test_data_file(data_dir / "exists.dat", 10)
    storage = create_filesystem_storage(tmp_path / "store")
    pipeline = create_pipeline(
        tmp_path,
        storage,
        data_dir,
        walker=ListWalker(["exists.dat", "gone.dat"]),
    )
    results = pipeline.run()
    assert storage.list_keys() == ["b1/exists.dat"]
    assert results.skipped_unavailable == 1
    assert results.objects_written == 1


def test_upload_skips_unsupported_entries(tmp_path: Path):
    data_dir = tmp_path / "data"
    create_test_data_file(data_dir / "file.dat", 10)
    os.mkfifo(data_dir / "fifo")
    storage = create_filesystem_storage(tmp_path / "store")
    results = create_pipeline(tmp_path, storage, data_dir).run()
    assert storage.list_keys() == ["b1/file.dat"]
    assert results.skipped_unsupported == 1


def test_upload_compression_failure_is_skipped(tmp_path: Path):
    data_dir = tmp_path / "data"
    create_test_data_file(data_dir / "big1.dat", THRESHOLD * 2)
    create_test_data_file(data_dir / "big2.dat", THRESHOLD * 2)
    storage = create_filesystem_storage(tmp_path / "store")
    compressor = SelectiveFailCompressor(temp_dir=str(tmp_path), fail_name="big1.dat")
    results = create_pipeline(tmp_path, storage, data_dir, compressor=compressor).run()
    assert storage.list_keys() == ["b1/big2.dat.lz4"]
    assert results.compression_failures == ["big1.dat"]
    assert results.files_compressed == 1


def test_upload_failure_is_fatal(tmp_path: Path):
    data_dir = tmp_path / "data"
    for i in range(50):
        create_test_data_file(data_dir / f"f{i:03}.dat", 10)
    storage = FailingStorage(
        create_filesystem_storage(tmp_path / "store"),
        fail_when=lambda key: key == "b1/f010.dat",
    )
    pipeline = create_pipeline(tmp_path, storage, data_dir, workers=4)
    with raises(UploadError) as exc_info:
        pipeline.run()
    assert isinstance(exc_info.value.cause, OSError)
    assert storage.failed_keys == ["b1/f010.dat"]
    assert "b1/f010.dat" not in storage.list_keys()


def test_directory_placeholder_failure_is_fatal(tmp_path: Path):
    data_dir = tmp_path / "data"
    (data_dir / "dir").mkdir(parents=True)
    storage = FailingStorage(
        create_filesystem_storage(tmp_path / "store"),
        fail_when=lambda key: key.endswith("/"),
    )
    with raises(UploadError):
        create_pipeline(tmp_path, storage, data_dir).run()


def test_walk_error_propagates(tmp_path: Path):
    data_dir = tmp_path / "data"
    create_test_data_file(data_dir / "a.dat", 10)
    storage = create_filesystem_storage(tmp_path / "store")
    pipeline = create_pipeline(
        tmp_path,
        storage,
        data_dir,
        walker=ListWalker(["a.dat"], error=WalkError("walk failed")),
    )
    with raises(WalkError):
        pipeline.run()
    assert storage.list_keys() == ["b1/a.dat"]


def test_pipeline_single_use(tmp_path: Path):
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    pipeline = create_pipeline(tmp_path, create_filesystem_storage(tmp_path / "store"), data_dir)
    pipeline.run()
    with raises(BackupException):
        pipeline.run()
