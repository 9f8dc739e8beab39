#!/usr/bin/env python3
"""
Results and errors.

Channel and task operations report failures as values rather than raising
them across task boundaries. Every failure value is a small frozen struct
with an exception twin for code that prefers to raise:

    Closed     <-> ChannelClosedError
    TimedOut   <-> OperationTimedOut
    Cancelled  <-> TaskCancelledError
    Failure    <-> TaskFailedError

Caller errors (a malformed select, a bad channel configuration) are raised
synchronously and never returned as values.
"""

import msgspec


class ChannelClosedError(Exception):
    """Raised by raise-based code operating on a closed channel."""
    def __init__(self, reason=None):
        self.reason = reason
        super().__init__(reason or "Channel closed")

    def to_struct(self):
        return Closed(self.reason)


class OperationTimedOut(TimeoutError):
    """Raised by raise-based code when a deadline elapsed while suspended."""
    def __init__(self, timeout=None):
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout}s" if timeout is not None else "Timed out")

    def to_struct(self):
        return TimedOut(self.timeout)


class TaskCancelledError(Exception):
    """Raised by raise-based code when the current task was cancelled."""
    def __init__(self, reason=None):
        self.reason = reason
        super().__init__(reason or "Task cancelled")

    def to_struct(self):
        return Cancelled(self.reason)


class TaskFailedError(Exception):
    """Wraps the exception a task failed with."""
    def __init__(self, error):
        self.error = error
        super().__init__(f"Task failed: {error!r}")

    def to_struct(self):
        return Failure(self.error)


class SelectError(ValueError):
    """Malformed select request (empty, duplicate channel, not a case)."""


class Closed(msgspec.Struct, frozen=True, gc=False):
    """The channel is closed. Sends fail with this; receives report closed-empty instead."""
    reason: str | None = None

    def to_exception(self):
        return ChannelClosedError(self.reason)


class TimedOut(msgspec.Struct, frozen=True, gc=False):
    """The deadline elapsed while the operation was suspended."""
    timeout: float | None = None

    def to_exception(self):
        return OperationTimedOut(self.timeout)


class Cancelled(msgspec.Struct, frozen=True, gc=False):
    """The waiting task or thread was cancelled."""
    reason: str | None = None

    def to_exception(self):
        return TaskCancelledError(self.reason)


class Failure(msgspec.Struct, frozen=True):
    """Tagged failure value: the exception a task raised, delivered as its result."""
    error: BaseException

    def to_exception(self):
        return TaskFailedError(self.error)


OP_ERRORS = (Closed, TimedOut, Cancelled)
ERRORS = OP_ERRORS + (Failure,)


def is_error(result):
    "Returns True if result is one of the failure values."
    return isinstance(result, ERRORS)


def check(result):
    """Returns result unchanged, unless it is a failure value, in which case
    the matching exception is raised. Lets raise-based code write
        check(await ch.send(val))
    """
    if isinstance(result, ERRORS):
        raise result.to_exception()
    return result
