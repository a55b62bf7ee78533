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

from concurrent.futures import ThreadPoolExecutor
import logging
import threading
import time
from pytest import raises

from pgcarpenter.common.exception import ChannelClosedError
from pgcarpenter.common.handoff import HandOffChannel

LOGGER = logging.getLogger(__name__)


def test_handoff_all_items_consumed_once():
    channel = HandOffChannel(name="test")
    received = []
    received_lock = threading.Lock()

    def producer():
        try:
            for i in range(200):
                channel.put(i)
        finally:
            channel.close()

    def consumer():
        for item in channel:
            with received_lock:
                received.append(item)

    with ThreadPoolExecutor(max_workers=5) as executor:
        consumer_futs = [executor.submit(consumer) for _ in range(4)]
        producer_fut = executor.submit(producer)
    producer_fut.result()
    for f in consumer_futs:
        f.result()
    assert sorted(received) == list(range(200))


def test_handoff_put_blocks_until_taken():
    channel = HandOffChannel(name="test")
    put_returned = threading.Event()

    def producer():
        channel.put("item")
        put_returned.set()

    t = threading.Thread(target=producer)
    t.start()
    assert not put_returned.wait(0.2)
    is_item, item = channel.get()
    assert is_item
    assert item == "item"
    assert put_returned.wait(5)
    t.join(5)


def test_handoff_close_ends_consumers():
    channel = HandOffChannel(name="test")
    channel.close()
    assert channel.is_closed
    assert not channel.is_aborted
    assert channel.get() == (False, None)
    assert list(channel) == []
    with raises(ChannelClosedError):
        channel.put("late")


def test_handoff_close_is_idempotent():
    channel = HandOffChannel(name="test")
    channel.close()
    channel.close()
    assert channel.is_closed


def test_handoff_abort_unblocks_producer():
    channel = HandOffChannel(name="test")
    producer_errors = []
    cause = RuntimeError("worker failed")

    def producer():
        try:
            channel.put("never taken")
        except ChannelClosedError as ex:
            producer_errors.append(ex)

    t = threading.Thread(target=producer)
    t.start()
    time.sleep(0.1)
    channel.abort(cause)
    t.join(5)
    assert not t.is_alive()
    assert len(producer_errors) == 1
    assert producer_errors[0].cause is cause
    assert channel.is_aborted
    assert channel.is_closed
    assert channel.abort_cause is cause
    assert channel.get() == (False, None)


def test_handoff_abort_wakes_idle_consumers():
    channel = HandOffChannel(name="test")
    results = []

    def consumer():
        results.append(channel.get())

    threads = [threading.Thread(target=consumer) for _ in range(3)]
    for t in threads:
        t.start()
    time.sleep(0.1)
    channel.abort()
    for t in threads:
        t.join(5)
        assert not t.is_alive()
    assert results == [(False, None)] * 3
