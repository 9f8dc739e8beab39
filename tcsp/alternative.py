#!/usr/bin/env python3
"""
ALT
"""

import random
from typing import Any

import msgspec

from .errors import SelectError
from .guards import SelectCase
from .waiters import Park, Waiter, block_on, require_task


class _NoDefault:
    def __repr__(self):
        return "NO_DEFAULT"


NO_DEFAULT = _NoDefault()


class Selected(msgspec.Struct, frozen=True):
    """Outcome of a select: the case that was committed and its (value, ok).

    For a receive case, value/ok are those of the receive (ok False is
    closed-empty). For a send case, value is the value offered and ok tells
    whether it was delivered (False: the channel was closed).
    When no case was ready and a default was given, is_default is set, case
    is None and value is the default.
    """
    case: Any = None
    value: Any = None
    ok: bool = True
    is_default: bool = False

    @property
    def channel(self):
        return None if self.case is None else self.case.chan


class Alternative:
    """Alternative. Selects one of a set of channel operations (cases).

    Selection runs in three phases:
    1. poll: every involved channel is locked (in a global order, so
       concurrent selects cannot deadlock) and the cases are tried in
       uniformly random order. The first one that can complete is committed,
       so the choice is uniform among the ready cases. priority=True tries
       them in the given order instead.
    2. If nothing is ready: return the default if one was given. Otherwise,
       still under the same locks, queue one op per case, all sharing a
       single Waiter, and suspend.
    3. The first channel operation to claim the Waiter completes its case.
       Claiming is atomic, so the select can never complete twice. After
       waking up, the ops still queued on the other channels are withdrawn.

    NB:
    - A select can not list the same channel twice (that includes reading and
      writing the same channel): SelectError is raised.
    - A closed channel counts as ready, both for receiving and sending.
    """
    def __init__(self, *cases, default=NO_DEFAULT, priority=False):
        if not cases and default is NO_DEFAULT:
            raise SelectError("select needs at least one case or a default")
        seen = set()
        for case in cases:
            if not isinstance(case, SelectCase):
                raise SelectError(f"not a select case: {case!r}")
            if id(case.chan) in seen:
                raise SelectError(f"channel {case.chan!r} appears in more than one case")
            seen.add(id(case.chan))
        self.cases = cases
        self.default = default
        self.priority = priority
        self._chans = sorted((c.chan for c in cases), key=lambda ch: ch._id)

    def __repr__(self):
        return f"<Alternative {list(self.cases)} default={self.default!r}>"

    def _enable(self, priority, timeout):
        """Phases 1 and 2. Returns (Selected, None) if the select resolved right
        away, else (None, waiter) with the waiter queued on every channel."""
        order = list(range(len(self.cases)))
        if not priority:
            random.shuffle(order)
        wakes = []
        selected = None
        waiter = None
        for ch in self._chans:
            ch._lock.acquire()
        try:
            for i in order:
                case = self.cases[i]
                if (res := case.try_commit(wakes)) is not None:
                    selected = Selected(case, *res)
                    break
            else:
                if self.default is not NO_DEFAULT:
                    selected = Selected(None, self.default, True, True)
                else:
                    waiter = Waiter(timeout)
                    for case in self.cases:
                        case.enable(waiter)
        finally:
            for ch in reversed(self._chans):
                ch._lock.release()
        for op, outcome in wakes:
            op.waiter.fire((op, outcome))
        return selected, waiter

    @staticmethod
    def _resolve(res):
        op, outcome = res
        if op is None:
            return outcome    # TimedOut / Cancelled
        return Selected(op.case, *op.case.outcome(outcome))

    async def select(self, timeout=None):
        """Waits for one of the cases to become ready and commits it.
        Returns a Selected, or TimedOut if timeout seconds passed first.
        """
        return await self._select(self.priority, timeout)

    async def pri_select(self, timeout=None):
        """Like select(), but prefers cases in the order they were given."""
        return await self._select(True, timeout)

    async def _select(self, priority, timeout):
        require_task("Alternative.select")
        selected, waiter = self._enable(priority, timeout)
        if selected is not None:
            return selected
        res = await Park(waiter, ('select', self._chans))
        return self._resolve(res)

    def select_blocking(self, timeout=None):
        """Like select(), but blocks the calling thread. May also return
        Cancelled when called from a cancelled blocking task."""
        selected, waiter = self._enable(self.priority, timeout)
        if selected is not None:
            return selected
        return self._resolve(block_on(waiter))

    # Support for asynchronous context managers. Instead of the following:
    #    sel = await alt.select()
    # we can use this as an alternative:
    #    async with alt as sel:
    #     ....
    async def __aenter__(self):
        return await self.select()

    async def __aexit__(self, exc_type, exc, tb):
        return None


async def alts(cases, default=NO_DEFAULT, priority=False, timeout=None):
    """Select over cases from a cooperative task. See Alternative."""
    return await Alternative(*cases, default=default, priority=priority).select(timeout)


def alts_blocking(cases, default=NO_DEFAULT, priority=False, timeout=None):
    """Select over cases from a plain thread. See Alternative."""
    return Alternative(*cases, default=default, priority=priority).select_blocking(timeout)
