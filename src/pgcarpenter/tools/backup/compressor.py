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
r"""LZ4 file compression to a temporary file.
"""

import io
import logging
import os
import shutil
import tempfile
from typing import BinaryIO

import lz4.frame

from pgcarpenter.common.exception import exc_to_string

from .constants import COMPRESSED_OBJECT_SUFFIX
from .exception import CompressionError

COMPRESSION_READ_SIZE = 4 * 1024 * 1024
COMPRESSED_TEMP_FILE_PREFIX = "pgc_z_"


class Lz4Compressor:
    suffix = COMPRESSED_OBJECT_SUFFIX

    def __init__(self, temp_dir: str, read_size: int = COMPRESSION_READ_SIZE):
        self.temp_dir = temp_dir
        self.read_size = read_size

    def compress_file(self, source_path: str) -> str:
        """Compress source_path into a new temporary file under temp_dir and
        return its path. The caller owns the temporary file. On failure no
        temporary file is left behind and CompressionError is raised.
        """
        try:
            temp_file_fd, temp_file_path = tempfile.mkstemp(
                prefix=COMPRESSED_TEMP_FILE_PREFIX,
                suffix=self.suffix,
                dir=self.temp_dir,
                text=False,
            )
        except OSError as ex:
            raise CompressionError(
                f"Cannot create a temporary file for compression: "
                f"temp_dir={self.temp_dir} path={source_path}",
                ex,
            ) from ex
        try:
            with (
                io.FileIO(file=temp_file_fd, mode="wb", closefd=True) as output_file,
                open(source_path, "rb") as input_file,
            ):
                self._copy_compressed(input_file, output_file)
                orig_size = input_file.tell()
                comp_size = output_file.tell()
        except Exception as ex:
            logging.debug(
                f"Compression failed, removing temp file: path={source_path} "
                f"temp={temp_file_path} {exc_to_string(ex)}"
            )
            remove_temp_file(temp_file_path)
            raise CompressionError(
                f"Compression failed: path={source_path}",
                ex,
            ) from ex
        logging.debug(
            f"Compression complete: orig_size={orig_size} "
            f"comp_size={comp_size} path={source_path}"
        )
        return temp_file_path

    def _copy_compressed(self, f_in: BinaryIO, f_out: BinaryIO):
        with lz4.frame.open(f_out, mode="wb") as compressed_out:
            shutil.copyfileobj(f_in, compressed_out, self.read_size)

    @staticmethod
    def decompress_file(source_path: str, dest_path: str):
        with lz4.frame.open(source_path, mode="rb") as compressed_in:
            with open(dest_path, "wb") as f_out:
                shutil.copyfileobj(compressed_in, f_out)


def remove_temp_file(path: str):
    logging.debug(f"Removing temporary file: {path}")
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as ex:
        logging.error(f"Failed to remove temporary file: path={path} {exc_to_string(ex)}")
