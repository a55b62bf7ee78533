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
r"""Backup exceptions.
"""

from pgcarpenter.common.exception import *


class BackupException(CarpenterException):
    def __init__(self, message: str = None, cause=None):
        super().__init__(message=message, cause=cause)


class BackupNameAlreadyExistsError(BackupException):
    def __init__(self, message: str = None, cause=None):
        super().__init__(message=message, cause=cause)


class BackupSessionError(BackupException):
    def __init__(self, message: str = None, cause=None):
        super().__init__(message=message, cause=cause)


class WalkError(BackupException):
    def __init__(self, message: str = None, cause=None):
        super().__init__(message=message, cause=cause)


class CompressionError(BackupException):
    def __init__(self, message: str = None, cause=None):
        super().__init__(message=message, cause=cause)


class UploadError(BackupException):
    def __init__(self, message: str = None, cause=None):
        super().__init__(message=message, cause=cause)


class MarkerWriteError(BackupException):
    def __init__(self, message: str = None, cause=None):
        super().__init__(message=message, cause=cause)


class StorageDefinitionError(BackupException):
    def __init__(self, message: str = None, cause=None):
        super().__init__(message=message, cause=cause)
