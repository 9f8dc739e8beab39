#!/usr/bin/env python3

"""
Select cases (the guards of an Alternative) and timeout channels.
"""
import threading

from .channels import Channel, _CLOSED, _WOULD_BLOCK
from .waiters import CH_READ, CH_WRITE, _ChanOP, current_pool


class SelectCase:
    """Base class for cases. A case is one pending channel operation that an
    Alternative may commit to.

    try_commit() and enable() are called by the Alternative with the channel
    lock held and must not block.
    """
    def __init__(self, chan):
        if not isinstance(chan, Channel):
            raise TypeError(f"select cases operate on channels, got {chan!r}")
        self.chan = chan

    def try_commit(self, wakes):
        """Complete the operation if it is ready. Returns (value, ok), or None
        if the operation would have to wait."""
        raise NotImplementedError

    def enable(self, waiter):
        """Queue the operation on the channel on behalf of waiter."""
        raise NotImplementedError

    def outcome(self, res):
        """Translate the result delivered to a waiting op into (value, ok)."""
        raise NotImplementedError


class RecvCase(SelectCase):
    """Receive from chan. Ready when an item is buffered, a sender is
    waiting, or the channel is closed (value None, ok False)."""
    def try_commit(self, wakes):
        res = self.chan._try_receive(wakes)
        if res is None:
            return None
        return (res.value, res.ok)

    def enable(self, waiter):
        self.chan._enqueue(_ChanOP(CH_READ, None, waiter, self))

    def outcome(self, res):
        return (res.value, res.ok)

    def __repr__(self):
        return f"<RecvCase {self.chan.name}>"


class SendCase(SelectCase):
    """Pending send of obj to chan. The send is only executed if this case is
    selected. Ready when there is room or a waiting receiver, or when the
    channel is closed (ok False, obj not delivered)."""
    def __init__(self, chan, obj):
        super().__init__(chan)
        self.obj = obj

    def try_commit(self, wakes):
        status = self.chan._try_send(self.obj, wakes)
        if status is _WOULD_BLOCK:
            return None
        return (self.obj, status is not _CLOSED)

    def enable(self, waiter):
        self.chan._enqueue(_ChanOP(CH_WRITE, self.obj, waiter, self))

    def outcome(self, res):
        # None on success, Closed when the channel closed while waiting
        return (self.obj, res is None)

    def __repr__(self):
        return f"<SendCase {self.chan.name} {self.obj!r}>"


def timeout(seconds, name=None):
    """Returns a channel that closes after the given number of seconds.
    Receiving from it (alone or as a select case) waits for the timeout.

    Inside a pool task the pool's timer heap is used, elsewhere a daemon
    threading.Timer.
    """
    ch = Channel(name=name or f"timeout({seconds})")
    pool = current_pool()
    if pool is not None:
        pool.call_later(seconds, ch.close)
    else:
        timer = threading.Timer(seconds, ch.close)
        timer.daemon = True
        timer.start()
    return ch
