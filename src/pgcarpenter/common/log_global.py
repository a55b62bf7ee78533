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
r"""Process-wide logging setup.

Worker and walker threads log through a QueueHandler attached to the root
logger. A single QueueListener drains the queue into the console and,
optionally, a log file, so slow handlers never stall an upload worker.
"""

import os
import sys
import logging
import logging.handlers
import queue
import threading

from .exception import (
    GlobalContextNotSet,
    QueueListenerAlreadyStarted,
    QueueListenerNotStarted,
)


class ThreadContextMixin:
    """A mixin to add useful functions for logging performed
    by pipeline threads.
    """

    @property
    def our_thread(self):
        return threading.current_thread()

    def get_exec_context_log_stamp_str(self):
        current_thread = self.our_thread
        return f"PID={os.getpid()} TID={current_thread.native_id} t_name={current_thread.name}"


class GlobalLoggingContext:
    def __init__(self, logging_queue, logging_level, verbosity_level):
        self._global_logging_queue = logging_queue
        self.global_logging_level = logging_level
        self.global_verbosity_level = verbosity_level

    @property
    def global_logging_queue(self):
        return self._global_logging_queue

    def create_queue_handler(self):
        logger = logging.getLogger()
        handler = logging.handlers.QueueHandler(self._global_logging_queue)
        logger.addHandler(handler)
        track_logging_handler(handler)
        logger.setLevel(self.global_logging_level)
        return handler

    def remove_queue_handler(self, handler):
        if not handler:
            return
        logger = logging.getLogger()
        if handler in logger.handlers:
            logger.removeHandler(handler)
        untrack_logging_handler(handler)


global_context: GlobalLoggingContext = None
queue_listener: logging.handlers.QueueListener = None
queue_handler: logging.handlers.QueueHandler = None
created_logging_handlers: set = set()


def global_init(logging_level="INFO", verbosity_level=0):
    global global_context
    if global_context:
        return
    global_context = GlobalLoggingContext(
        logging_queue=queue.Queue(),
        logging_level=logging_level,
        verbosity_level=verbosity_level,
    )


def track_logging_handler(*handlers):
    created_logging_handlers.update(handlers)


def untrack_logging_handler(*handlers):
    untracked = []
    for h in handlers:
        if h in created_logging_handlers:
            untracked.append(h)
            created_logging_handlers.remove(h)
    return untracked


def start_global_queue_listener(*logging_handlers):
    global queue_listener
    if not global_context:
        raise GlobalContextNotSet(f"global_context not initialized.")
    if queue_listener:
        raise QueueListenerAlreadyStarted(f"queue_listener already started.")
    queue_listener = logging.handlers.QueueListener(
        global_context.global_logging_queue,
        *logging_handlers,
        respect_handler_level=True,
    )
    track_logging_handler(*logging_handlers)
    queue_listener.start()


def stop_global_queue_listener():
    global queue_listener
    if not queue_listener:
        raise QueueListenerNotStarted(f"queue_listener not started.")
    listener = queue_listener
    untracked_handlers = untrack_logging_handler(*listener.handlers)
    queue_listener = None
    # stop() flushes whatever the workers queued before returning.
    listener.stop()
    for h in untracked_handlers:
        h.close()
    listener.handlers = ()
    return untracked_handlers


def _connect_root_logger_to_global_logging_queue():
    global queue_handler
    if not global_context:
        raise GlobalContextNotSet()
    if queue_handler is not None:
        return
    queue_handler = global_context.create_queue_handler()


def remove_root_stream_handlers():
    """Remove plain logging.StreamHandler handlers from the root logger
    to avoid double output once the queued logging is set up. Handlers
    added by pytest are subclasses and are left alone, hence 'type(h) is'.
    """
    for h in list(logging.root.handlers):
        if type(h) is logging.StreamHandler:  # pylint: disable=unidiomatic-typecheck
            logging.root.removeHandler(h)


def initialize_logging(logfile, loglevel, verbosity_level, log_console_detail):
    if not global_context:
        raise GlobalContextNotSet()
    file_log_level = logging.DEBUG
    console_log_level = logging.INFO
    global_context.global_logging_level = logging.INFO
    global_context.global_verbosity_level = 0
    if loglevel is not None:
        loglevel = loglevel.upper()
        file_log_level = loglevel
        console_log_level = loglevel
        global_context.global_logging_level = loglevel
    if verbosity_level is not None:
        global_context.global_verbosity_level = verbosity_level
        if verbosity_level > 0 and loglevel is None:
            console_log_level = logging.DEBUG
            global_context.global_logging_level = logging.DEBUG
    if logfile is not None and loglevel is None:
        # Let DEBUG records through to the file even if the console is at INFO.
        global_context.global_logging_level = logging.DEBUG

    detailed_formatter = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d PID=%(process)-05d TID=%(thread)-05d %(name)-12s %(levelname)-8s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    _connect_root_logger_to_global_logging_queue()
    logging.getLogger().setLevel(global_context.global_logging_level)

    handlers = ()

    stream_handler = logging.StreamHandler(stream=sys.stdout)
    stream_handler.setLevel(console_log_level)
    if log_console_detail:
        stream_handler.setFormatter(detailed_formatter)
    handlers += (stream_handler,)

    if logfile is not None:
        file_handler = logging.FileHandler(logfile)
        file_handler.setLevel(file_log_level)
        file_handler.setFormatter(detailed_formatter)
        handlers += (file_handler,)

    start_global_queue_listener(*handlers)


def get_verbosity_level() -> int:
    global_init()
    if not global_context:
        raise GlobalContextNotSet()
    return global_context.global_verbosity_level


def deinitialize_logging():
    global queue_handler
    stop_global_queue_listener()
    if global_context and queue_handler:
        global_context.remove_queue_handler(queue_handler)
    queue_handler = None


def initialize_logging_basic():
    """Setup basic logging used before command line processing and
    primary logging setup established.
    """
    logging.basicConfig(level=logging.INFO, format="%(message)s")
