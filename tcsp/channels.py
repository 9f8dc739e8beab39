#!/usr/bin/env python3
"""
Channels.
"""

import collections
import itertools
import logging
import threading
from typing import Any

import msgspec

from .buffers import Buffer, OverflowPolicy
from .errors import Closed, ChannelClosedError
from .waiters import CH_READ, CH_WRITE, Park, Waiter, _ChanOP, block_on, require_task

log = logging.getLogger(__name__)

_chan_ids = itertools.count()

# Outcomes of the non-suspending part of a send.
_DONE = 'done'
_CLOSED = 'closed'
_WOULD_BLOCK = 'would-block'


class Received(msgspec.Struct, frozen=True):
    """Outcome of a receive. ok=False is closed-empty: the channel is closed
    and drained. That is the normal end-of-stream signal, not an error, so
    check ok before using value."""
    value: Any = None
    ok: bool = True

    def unwrap(self):
        "Returns the value, raising ChannelClosedError on closed-empty."
        if not self.ok:
            raise ChannelClosedError("receive on closed and drained channel")
        return self.value


CLOSED_EMPTY = Received(None, False)


def _fire_all(wakes):
    for op, outcome in wakes:
        op.waiter.fire((op, outcome))


class Channel:
    """CSP channel with an optional bounded buffer. Can be used with multiple
    readers and writers, from cooperative pool tasks (send/receive) and from
    plain threads (send_blocking/receive_blocking) at the same time.

    Note that the following rules apply:
    1) A waiting operation is only queued when it cannot complete, so the
       receiver queue is only non-empty while the buffer is empty, and the
       sender queue is only non-empty while the buffer is full.
    2) Waiters of the same kind are served in FIFO order.
    3) All state changes happen under the channel lock, which is never held
       while a task or thread is suspended.
    """
    def __init__(self, capacity=0, policy=OverflowPolicy.BLOCK, name=""):
        self.buffer = Buffer(capacity, policy)
        self.name = name
        self.closed = False
        self.sendq = collections.deque()
        self.recvq = collections.deque()
        self._lock = threading.Lock()
        self._id = next(_chan_ids)    # global lock order for select

    def __repr__(self):
        return (f"<{self.__class__.__name__} {self.name} cap={self.capacity} "
                f"buf={len(self.buffer)} sq={len(self.sendq)} rq={len(self.recvq)} c={self.closed}>")

    @property
    def capacity(self):
        return self.buffer.capacity

    @property
    def policy(self):
        return self.buffer.policy

    def buffered(self):
        """Number of buffered items."""
        return len(self.buffer)

    def waiting_senders(self):
        """Mainly for verification. Number of live queued senders."""
        with self._lock:
            return sum(1 for op in self.sendq if not op.waiter.claimed)

    def waiting_receivers(self):
        """Mainly for verification. Number of live queued receivers."""
        with self._lock:
            return sum(1 for op in self.recvq if not op.waiter.claimed)

    # The _-prefixed methods below expect the channel lock to be held.
    # Completed waiters are collected in wakes and fired after releasing it.

    def _pop_waiter(self, queue):
        """Remove and return the first op in queue that we managed to claim.
        Stale ops (claimed through another channel, expired, cancelled) are dropped."""
        while queue:
            op = queue.popleft()
            op.queued = False
            if op.waiter.claim():
                return op
        return None

    def _enqueue(self, op):
        op.queued = True
        (self.recvq if op.cmd is CH_READ else self.sendq).append(op)
        op.waiter.ops.append((self, op))

    def _try_send(self, obj, wakes):
        if self.closed:
            return _CLOSED
        if (rop := self._pop_waiter(self.recvq)) is not None:
            # A waiting receiver means the buffer is empty. Hand over directly.
            wakes.append((rop, Received(obj)))
            return _DONE
        if self.buffer.push(obj):
            return _DONE
        return _WOULD_BLOCK

    def _try_receive(self, wakes):
        if len(self.buffer) > 0:
            obj = self.buffer.pop()
            # A slot was freed: move in the value of the longest waiting sender.
            if (sop := self._pop_waiter(self.sendq)) is not None:
                self.buffer.push(sop.obj)
                wakes.append((sop, None))
            return Received(obj)
        if (sop := self._pop_waiter(self.sendq)) is not None:
            # Rendezvous
            wakes.append((sop, None))
            return Received(sop.obj)
        if self.closed:
            return CLOSED_EMPTY
        return None

    def _withdraw(self, op):
        with self._lock:
            if op.queued:
                op.queued = False
                (self.recvq if op.cmd is CH_READ else self.sendq).remove(op)

    def _start_send(self, obj, timeout, callback=None):
        """Non-suspending part of a send. Returns (status, waiter); the waiter
        is only created and queued when the send has to wait."""
        wakes = []
        waiter = None
        with self._lock:
            status = self._try_send(obj, wakes)
            if status is _WOULD_BLOCK:
                waiter = Waiter(timeout, callback)
                self._enqueue(_ChanOP(CH_WRITE, obj, waiter))
        _fire_all(wakes)
        return status, waiter

    def _start_receive(self, timeout, callback=None):
        wakes = []
        waiter = None
        with self._lock:
            res = self._try_receive(wakes)
            if res is None:
                waiter = Waiter(timeout, callback)
                self._enqueue(_ChanOP(CH_READ, None, waiter))
        _fire_all(wakes)
        return res, waiter

    # Cooperative operations. Only valid inside tasks run by a Pool.

    async def send(self, obj, timeout=None):
        """Send obj, suspending the calling task while the channel is full.
        Returns None on success, or Closed / TimedOut.
        """
        require_task("Channel.send")
        status, waiter = self._start_send(obj, timeout)
        if status is _DONE:
            return None
        if status is _CLOSED:
            return Closed(self.name or None)
        _, res = await Park(waiter, ('send', self))
        return res

    async def receive(self, timeout=None):
        """Receive the next item, suspending the calling task while the channel is empty.
        Returns Received(value, ok) where ok=False signals closed-empty, or TimedOut.
        """
        require_task("Channel.receive")
        res, waiter = self._start_receive(timeout)
        if res is not None:
            return res
        _, res = await Park(waiter, ('receive', self))
        return res

    # Blocking operations. For plain threads and blocking tasks.

    def send_blocking(self, obj, timeout=None):
        """Like send(), but blocks the calling thread. May also return Cancelled
        when called from a cancelled blocking task."""
        status, waiter = self._start_send(obj, timeout)
        if status is _DONE:
            return None
        if status is _CLOSED:
            return Closed(self.name or None)
        _, res = block_on(waiter)
        return res

    def receive_blocking(self, timeout=None):
        """Like receive(), but blocks the calling thread. May also return Cancelled
        when called from a cancelled blocking task."""
        res, waiter = self._start_receive(timeout)
        if res is not None:
            return res
        _, res = block_on(waiter)
        return res

    # Non-blocking and callback operations.

    def offer(self, obj):
        """Send obj only if that can be done without waiting.
        Returns True if sent (or dropped by the buffer policy), False if it
        would have to wait, or Closed."""
        wakes = []
        with self._lock:
            status = self._try_send(obj, wakes)
        _fire_all(wakes)
        if status is _CLOSED:
            return Closed(self.name or None)
        return status is _DONE

    def poll(self):
        """Receive only if that can be done without waiting.
        Returns a Received, or None if it would have to wait."""
        wakes = []
        with self._lock:
            res = self._try_receive(wakes)
        _fire_all(wakes)
        return res

    def put(self, obj, callback=None):
        """Asynchronous send that never blocks the caller. If the value has to
        wait for room, it is queued like a suspended sender. callback, if given,
        is called with the send outcome (None or Closed) once the send
        completes, on whichever thread completes it.
        """
        status, _ = self._start_send(obj, None, callback=_outcome_of(callback))
        if status is not _WOULD_BLOCK and callback is not None:
            callback(None if status is _DONE else Closed(self.name or None))

    def take(self, callback):
        """Asynchronous receive. callback is called with the Received once an
        item (or closed-empty) is available."""
        res, _ = self._start_receive(None, callback=_outcome_of(callback))
        if res is not None:
            callback(res)

    def close(self):
        """Close the channel. Idempotent. Wakes every waiting sender (with Closed)
        and receiver (with closed-empty). Buffered items can still be received.
        """
        wakes = []
        with self._lock:
            if self.closed:
                return
            self.closed = True
            while (op := self._pop_waiter(self.recvq)) is not None:
                wakes.append((op, CLOSED_EMPTY))
            closed = Closed(self.name or None)
            while (op := self._pop_waiter(self.sendq)) is not None:
                wakes.append((op, closed))
        log.debug("closed %r, waking %d waiters", self, len(wakes))
        _fire_all(wakes)

    def recv_case(self):
        "Returns a receive case for select."
        from .guards import RecvCase
        return RecvCase(self)

    def send_case(self, obj):
        """Returns a send case for select. The write is only executed if this
        case is selected."""
        from .guards import SendCase
        return SendCase(self, obj)

    # Support iteration over channel to read from it (async for / for):
    def __aiter__(self):
        return self

    async def __anext__(self):
        """Terminates iteration on closed-empty."""
        res = await self.receive()
        if isinstance(res, Received):
            if res.ok:
                return res.value
            raise StopAsyncIteration
        raise res.to_exception()

    def __iter__(self):
        return self

    def __next__(self):
        res = self.receive_blocking()
        if isinstance(res, Received):
            if res.ok:
                return res.value
            raise StopIteration
        raise res.to_exception()

    def verify(self):
        """Checks the state of the channel using assert."""
        with self._lock:
            live_r = [op for op in self.recvq if not op.waiter.claimed]
            live_s = [op for op in self.sendq if not op.waiter.claimed]
            assert len(self.buffer) <= self.capacity, "Buffer holds more items than its capacity"
            assert not (live_r and live_s), "Queue should never have both waiting readers and writers"
            assert not live_r or len(self.buffer) == 0, "Readers should only wait on an empty buffer"
            if self.closed:
                assert not live_r and not live_s, "Closed channels should never have waiting ops"
            assert all(op.queued for op in self.recvq) and all(op.queued for op in self.sendq)
        return True


def _outcome_of(callback):
    "Adapts a user callback to the (op, outcome) results of a Waiter."
    if callback is None:
        return None
    return lambda res: callback(res[1])


def close_chans(*chans):
    "Closes every given channel."
    for ch in chans:
        ch.close()
