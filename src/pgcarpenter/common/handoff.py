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
r"""HandOffChannel.
"""

import logging
import threading

from .exception import ChannelClosedError


class HandOffChannel:
    """An unbuffered hand-off between one producer and any number of consumers.

    put() returns only once a consumer has taken the item, so the producer can
    never be more than one item ahead of the consumers. get() blocks until an
    item is offered or the channel is closed.

    close() is the producer's normal end-of-work signal. abort() is used by a
    consumer that hit a fatal error: any offered item is dropped, a blocked
    put() raises ChannelClosedError and all consumers see end-of-work.
    """

    def __init__(self, name: str = "HandOffChannel"):
        self.name = name
        self._cond = threading.Condition()
        self._item = None
        self._has_item = False
        self._is_closed = False
        self._is_aborted = False
        self._abort_cause = None

    @property
    def is_closed(self) -> bool:
        with self._cond:
            return self._is_closed

    @property
    def is_aborted(self) -> bool:
        with self._cond:
            return self._is_aborted

    @property
    def abort_cause(self):
        with self._cond:
            return self._abort_cause

    def put(self, item):
        """Offer item and block until a consumer has taken it."""
        with self._cond:
            while self._has_item and not self._is_closed:
                self._cond.wait()
            if self._is_closed:
                raise ChannelClosedError(
                    f"{self.name}: cannot put, the channel is closed.",
                    self._abort_cause,
                )
            self._item = item
            self._has_item = True
            self._cond.notify_all()
            while self._has_item and not self._is_closed:
                self._cond.wait()
            if self._is_aborted:
                raise ChannelClosedError(
                    f"{self.name}: the channel was aborted while waiting for a consumer.",
                    self._abort_cause,
                )

    def get(self) -> tuple[bool, object]:
        """Return (True, item) for the next item, or (False, None) once
        the channel is closed and nothing more will arrive.
        """
        with self._cond:
            while not self._has_item and not self._is_closed:
                self._cond.wait()
            if not self._has_item:
                return False, None
            item = self._item
            self._item = None
            self._has_item = False
            self._cond.notify_all()
            return True, item

    def __iter__(self):
        while True:
            is_item, item = self.get()
            if not is_item:
                return
            yield item

    def close(self):
        with self._cond:
            if self._is_closed:
                return
            logging.debug(f"{self.name}: closing, no more work.")
            self._is_closed = True
            self._cond.notify_all()

    def abort(self, cause=None):
        with self._cond:
            if self._is_aborted:
                return
            logging.debug(f"{self.name}: aborting: cause={cause}")
            self._is_aborted = True
            self._abort_cause = cause
            self._is_closed = True
            self._item = None
            self._has_item = False
            self._cond.notify_all()
