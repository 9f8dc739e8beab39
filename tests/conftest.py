#!/usr/bin/env python3
"""
Shared fixtures.

Testing a concurrent library has a few interesting challenges.

Challenge 1 - wait until a task has blocked in the correct state
---------------------------------------------------------------

Immediately after spawning a few writers, it is likely that they haven't
even started, so checking that N writers queued up on a channel is not safe
to do right away. The wait_until fixture polls a condition (typically
channel.waiting_senders() or handle.state) with a short sleep until it holds
or a deadline passes.

Challenge 2 - failing tests must not hang
-----------------------------------------

Joins use timeouts, and the pool fixture cancels whatever is still live when
the test ends.
"""
import time

import pytest

from tcsp import Pool


@pytest.fixture
def pool():
    p = Pool(workers=4, name='test-pool')
    yield p
    p.shutdown(wait=True, cancel=True)


@pytest.fixture
def run(pool):
    """Returns a function that runs a coroutine as a task on the pool and
    returns its outcome."""
    def run_task(coro, timeout=10):
        handle = pool.spawn(coro)
        res = handle.join(timeout)
        assert handle.done(), f"task {handle} did not finish within {timeout}s"
        return res
    return run_task


def _wait_until(pred, timeout=5, interval=0.005):
    deadline = time.monotonic() + timeout
    while not pred():
        if time.monotonic() > deadline:
            raise AssertionError(f"condition {pred} not reached within {timeout}s")
        time.sleep(interval)


@pytest.fixture
def wait_until():
    return _wait_until
