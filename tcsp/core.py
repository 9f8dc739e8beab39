#!/usr/bin/env python3

"""
Core code: processes, spawning and composition.
"""

import functools
import logging
import types

from .blocking import spawn_blocking
from .errors import ChannelClosedError
from .waiters import current_pool

log = logging.getLogger(__name__)


def process(verbose_closed=False):
    """Decorator for creating process functions.
    Annotates a function as a process and lets raise-based process code stop
    on closed channels: a ChannelClosedError escaping the process ends it
    normally, returning None.

    If the optional 'verbose_closed' parameter is true, the decorator will log
    a message when it captures the ChannelClosedError.
    """
    def inner_dec(func):
        @functools.wraps(func)
        async def proc_wrapped(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except ChannelClosedError as e:
                if verbose_closed:
                    log.info("Process %s stopped on closed channel: %s", func.__qualname__, e)
                return None
        return proc_wrapped

    # Decorators with optional arguments are a bit tricky in Python.
    # 1) If the user did not specify an argument, the first argument will be the function to decorate.
    # 2) If the user specified an argument, the arguments are to the decorator.
    # In the first case, return a decorated function.
    # In the second case, return a decorator function that returns a decorated function.
    if isinstance(verbose_closed, (types.FunctionType, types.MethodType)):
        func = verbose_closed
        verbose_closed = False
        return inner_dec(func)
    return inner_dec


def _running_pool():
    pool = current_pool()
    if pool is None:
        raise RuntimeError("no running pool: call pool.spawn() from outside tasks")
    return pool


# pylint: disable-next=C0103
def Spawn(proc, name=None):
    """For running a process in the background on the pool running the
    calling task. Returns a TaskHandle.
    """
    return _running_pool().spawn(proc, name)


# pylint: disable-next=C0103
def SpawnBlocking(fn, *args, **kwargs):
    """Runs fn(*args, **kwargs) on a dedicated thread. Returns a BlockingTaskHandle."""
    return spawn_blocking(fn, *args, **kwargs)


def go(proc, pool=None):
    """Spawns proc and returns its result channel, which delivers the
    outcome once and is then closed."""
    pool = pool or _running_pool()
    return pool.spawn(proc).channel


# pylint: disable-next=C0103
async def Parallel(*procs):
    """Used to run a set of processes concurrently.
    Takes a list of processes which are started on the current pool.
    Waits for the processes to complete, and returns a list of their outcomes
    in the order the processes were given. A process that raised is
    represented by its Failure.
    """
    pool = _running_pool()
    handles = [pool.spawn(p) for p in procs]
    return [await h.wait() for h in handles]


# pylint: disable-next=C0103
async def Sequence(*procs):
    """Runs and waits for each process or coroutine in sequence.
    The return values from each process are returned in the same order as the processes
    were specified.
    """
    return [await p for p in procs]
