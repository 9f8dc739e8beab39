#!/usr/bin/env python3
"""
Blocking task runner.

Runs a plain function on its own dedicated thread, outside any pool, so it
can block (I/O, time.sleep, *_blocking channel operations) without starving
cooperative tasks. The outcome is delivered on the handle's result channel.
"""

import itertools
import logging
import threading

from .errors import Cancelled, Failure, TaskCancelledError
from .scheduler import TaskState, _HandleBase
from .waiters import _local

log = logging.getLogger(__name__)

_blocking_ids = itertools.count(1)
_CANCELLED = Cancelled("blocking task cancelled")


class BlockingTaskHandle(_HandleBase):
    """Handle to a function running on a dedicated thread.

    Cancellation is cooperative: cancel() makes the blocking channel
    operation the thread waits in (or the next one it starts waiting in)
    return Cancelled, and the function is expected to wind down. Once
    cancel() was called, the task ends as CANCELLED with outcome Cancelled
    unless the function fails with some other exception.
    """
    def __init__(self, fn, args, kwargs, name=None):
        self.bid = next(_blocking_ids)
        super().__init__(name or f"blocking-{self.bid}")
        self._fn = fn
        self._args = args
        self._kwargs = kwargs
        self._lock = threading.Lock()
        self._waiter = None
        self.cancel_requested = False
        self.state = TaskState.RUNNABLE
        self.thread = threading.Thread(target=self._run, name=self.name, daemon=True)

    def __repr__(self):
        return f"<BlockingTaskHandle {self.name} {self.state.value}>"

    def cancel(self):
        """Request cancellation. Returns False if the task already finished."""
        with self._lock:
            if self.state in (TaskState.COMPLETED, TaskState.FAILED, TaskState.CANCELLED):
                return False
            self.cancel_requested = True
            waiter = self._waiter
        if waiter is not None:
            waiter.cancel(_CANCELLED.reason)
        return True

    def _enter_wait(self, waiter):
        with self._lock:
            self._waiter = waiter
            cancelled = self.cancel_requested
            self.state = TaskState.SUSPENDED
        if cancelled:
            waiter.cancel(_CANCELLED.reason)

    def _leave_wait(self, waiter):
        with self._lock:
            self._waiter = None
            self.state = TaskState.RUNNING

    def _run(self):
        _local.blocking = self
        with self._lock:
            self.state = TaskState.RUNNING
        try:
            outcome = self._fn(*self._args, **self._kwargs)
            state = TaskState.COMPLETED
        except TaskCancelledError as e:
            outcome = e.to_struct()
            state = TaskState.CANCELLED
        except Exception as e:    # pylint: disable=broad-except
            log.error("blocking task %s failed", self.name, exc_info=True)
            outcome = Failure(e)
            state = TaskState.FAILED
        finally:
            _local.blocking = None
        with self._lock:
            if state is TaskState.COMPLETED and self.cancel_requested:
                outcome = _CANCELLED
                state = TaskState.CANCELLED
            self._outcome = outcome
            self.state = state
        log.debug("%r finished", self)
        self._settle(outcome)


def spawn_blocking(fn, *args, name=None, **kwargs):
    """Run fn(*args, **kwargs) on a new dedicated thread. Returns a BlockingTaskHandle."""
    handle = BlockingTaskHandle(fn, args, kwargs, name)
    handle.thread.start()
    return handle
