#!/usr/bin/env python3
"""
Wait-queue entries and waiters.

An operation that cannot complete right away is queued on the channel as a
_ChanOP. Each queued op points at a Waiter: the one-shot slot its result is
delivered to. A select queues one op per case, all sharing the same Waiter.

Completing a waiting operation is a two step affair:

1) claim() - done with the channel lock held. Only one party can claim a
   waiter, so an op queued on several channels can never complete twice.
   Ops whose waiter was claimed by someone else are stale and are skipped.
2) fire(result) - done after the channel lock is released. This stores the
   result and wakes whoever waits: a parked task (through its pool), a
   blocked thread, or a callback.

A waiter is also claimed by deadline expiry (TimedOut) and cancellation
(Cancelled). Once woken, the waiting side withdraws its remaining stale ops
from the channel queues.
"""

import logging
import threading
import time
from enum import Enum

from .errors import Cancelled, TimedOut

log = logging.getLogger(__name__)

# Per thread: the pool a worker thread belongs to, the cooperative task it is
# currently running, and the blocking task handle of a blocking-runner thread.
_local = threading.local()


def current_pool():
    "Returns the Pool running the calling thread, or None outside pool workers."
    return getattr(_local, 'pool', None)


def current_task():
    "Returns the cooperative task running on the calling thread, or None."
    return getattr(_local, 'task', None)


def require_task(what):
    if getattr(_local, 'task', None) is None:
        raise RuntimeError(f"{what} must be awaited inside a tcsp pool task; "
                           "use the *_blocking variant from plain threads")


class _ChanOpcode(Enum):
    READ = 'r'
    WRITE = 'w'


CH_READ = _ChanOpcode.READ
CH_WRITE = _ChanOpcode.WRITE


# pylint: disable-next=R0903
class _ChanOP:
    """Used to store channel cmd/ops for the op queues."""
    __slots__ = ['cmd', 'obj', 'waiter', 'case', 'queued']    # reduce some overhead

    def __init__(self, cmd, obj, waiter, case=None):
        self.cmd = cmd    # read or write
        self.obj = obj    # value to write
        self.waiter = waiter
        self.case = case  # None for plain ops, the SelectCase for select
        self.queued = False

    def __repr__(self):
        return f"<_ChanOP: {self.cmd.value} {self.case}>"


class Waiter:
    """One-shot result slot for a suspended operation.

    The result is always a tuple (op, outcome): op is the _ChanOP that
    completed, or None when the waiter was expired or cancelled.
    """
    __slots__ = ['_cond', 'claimed', 'fired', 'result', 'task', 'callback',
                 'timeout', 'deadline', 'timer', 'ops']

    def __init__(self, timeout=None, callback=None):
        self._cond = threading.Condition(threading.Lock())
        self.claimed = False
        self.fired = False
        self.result = None
        self.task = None          # parked cooperative task, set by attach()
        self.callback = callback  # called with the result when fired
        self.timeout = timeout
        self.deadline = None if timeout is None else time.monotonic() + timeout
        self.timer = None         # pool timer serving the deadline of a parked task
        self.ops = []             # (channel, op) registrations to withdraw

    def __repr__(self):
        return f"<Waiter claimed={self.claimed} fired={self.fired} ops={len(self.ops)}>"

    def claim(self):
        """Take exclusive right to complete this waiter. Returns False if
        someone else already did."""
        with self._cond:
            if self.claimed:
                return False
            self.claimed = True
            return True

    def fire(self, result):
        """Deliver the result and wake the waiting side. Only the party that
        claimed the waiter calls this, and never with a channel lock held."""
        with self._cond:
            self.result = result
            self.fired = True
            task = self.task
            self._cond.notify_all()
        if task is not None:
            task.pool._wake(task)
        elif self.callback is not None:
            self.callback(result)

    def expire(self):
        "Deadline callback."
        if self.claim():
            self.fire((None, TimedOut(self.timeout)))

    def cancel(self, reason=None):
        "Returns True if the waiter was cancelled, False if it had already completed."
        if self.claim():
            self.fire((None, Cancelled(reason)))
            return True
        return False

    def attach(self, task):
        """Park task on this waiter. Returns False if the result is already
        available, in which case the task should simply carry on."""
        with self._cond:
            if self.fired:
                return False
            self.task = task
            return True

    def wait(self):
        "Block the calling thread until fired or the deadline passes."
        with self._cond:
            while not self.fired:
                if self.deadline is None:
                    self._cond.wait()
                    continue
                remaining = self.deadline - time.monotonic()
                if remaining > 0:
                    self._cond.wait(remaining)
                elif not self.claimed:
                    self.claimed = True
                    self.fired = True
                    self.result = (None, TimedOut(self.timeout))
                else:
                    # Claimed by a completing party; the result is on its way.
                    self._cond.wait()
            return self.result

    def withdraw(self):
        "Remove any ops still sitting in channel queues."
        for chan, op in self.ops:
            if op.queued:
                chan._withdraw(op)
        self.ops = []


class Park:
    """Awaitable that suspends the current cooperative task on a waiter.

    The task's coroutine yields the Park object to the pool worker running
    it. The worker attaches the task to the waiter, and the await returns the
    waiter's result when the task is resumed.
    """
    __slots__ = ['waiter', 'reason']

    def __init__(self, waiter, reason):
        self.waiter = waiter
        self.reason = reason

    def __repr__(self):
        return f"<Park {self.reason[0]}>"

    def __await__(self):
        try:
            return (yield self)
        finally:
            # Also runs when a cancelled task's coroutine is closed.
            self.waiter.withdraw()


def block_on(waiter):
    """Block the calling thread on waiter and return its result.
    Honours cancellation of the blocking task the thread belongs to.
    """
    if getattr(_local, 'task', None) is not None:
        log.warning("blocking channel operation inside cooperative task %s; "
                    "this stalls a pool worker thread", _local.task)
    scope = getattr(_local, 'blocking', None)
    if scope is not None:
        scope._enter_wait(waiter)
    try:
        return waiter.wait()
    finally:
        if scope is not None:
            scope._leave_wait(waiter)
        waiter.withdraw()
