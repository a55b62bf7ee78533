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
r"""Data directory walking.
"""

import logging
import os
from typing import Iterable, Iterator

from pgcarpenter.common.exception import exc_to_string

from .constants import DEFAULT_IGNORE_PREFIXES, STORAGE_KEY_SEPARATOR
from .exception import WalkError


def normalize_relative_path(path: str) -> str:
    return path.replace(os.sep, STORAGE_KEY_SEPARATOR).strip(STORAGE_KEY_SEPARATOR)


class IgnoreFilter:
    """Relative paths to leave out of a backup.

    A path is ignored when it equals one of the prefixes or lies beneath it.
    Matching is per path component: the prefix "pg_log" ignores "pg_log" and
    "pg_log/postgresql.log" but not "pg_logical".
    """

    def __init__(self, prefixes: Iterable[str] = DEFAULT_IGNORE_PREFIXES):
        self.prefixes = tuple(
            p for p in (normalize_relative_path(p) for p in prefixes) if p
        )

    def is_ignored(self, relative_path: str) -> bool:
        relative_path = normalize_relative_path(relative_path)
        for p in self.prefixes:
            if relative_path == p or relative_path.startswith(p + STORAGE_KEY_SEPARATOR):
                return True
        return False

    def __repr__(self) -> str:
        return f"IgnoreFilter(prefixes={self.prefixes})"


class TreeWalker:
    def __init__(self, root_dir: str, ignore_filter: IgnoreFilter = None):
        self.root_dir = os.path.abspath(root_dir)
        if ignore_filter is None:
            ignore_filter = IgnoreFilter()
        self.ignore_filter = ignore_filter

    def walk(self) -> Iterator[str]:
        """Yield the '/'-separated path, relative to the root, of every entry
        to back up, parents before children. Entries that disappear while
        being walked are skipped; any other error raises WalkError.
        """
        yield from self._walk_dir(self.root_dir, "")

    def _list_dir(self, abs_dir: str, rel_dir: str) -> list[os.DirEntry]:
        try:
            with os.scandir(abs_dir) as it:
                return sorted(it, key=lambda e: e.name)
        except FileNotFoundError as ex:
            if not rel_dir:
                raise WalkError(f"The data directory does not exist: {abs_dir}", ex) from ex
            logging.debug(f"Directory vanished while walking, skipping: {rel_dir}")
            return []
        except OSError as ex:
            logging.error(f"Failed to list directory: path={abs_dir} {exc_to_string(ex)}")
            raise WalkError(f"Failed to list directory: {abs_dir}", ex) from ex

    def _walk_dir(self, abs_dir: str, rel_dir: str) -> Iterator[str]:
        for entry in self._list_dir(abs_dir, rel_dir):
            if rel_dir:
                rel_path = f"{rel_dir}{STORAGE_KEY_SEPARATOR}{entry.name}"
            else:
                rel_path = entry.name
            if self.ignore_filter.is_ignored(rel_path):
                logging.debug(f"Ignoring: {rel_path}")
                continue
            try:
                entry.stat(follow_symlinks=False)
                is_dir = entry.is_dir(follow_symlinks=False)
            except FileNotFoundError:
                logging.debug(f"Entry vanished while walking, skipping: {rel_path}")
                continue
            except OSError as ex:
                logging.error(f"Failed to access: path={entry.path} {exc_to_string(ex)}")
                raise WalkError(f"Failed to access: {entry.path}", ex) from ex
            yield rel_path
            if is_dir:
                yield from self._walk_dir(entry.path, rel_path)
