#!/usr/bin/env python3
"""Core implementation of the tcsp library: CSP channels with a cooperative
worker pool, blocking task threads and non-deterministic selection.

"""

# flake8:  noqa: F401
# pylint: disable=unused-import
from .errors import Closed, TimedOut, Cancelled, Failure, check, is_error
from .errors import ChannelClosedError, OperationTimedOut, TaskCancelledError, TaskFailedError, SelectError
from .buffers import OverflowPolicy
from .channels import Channel, Received, CLOSED_EMPTY, close_chans
from .scheduler import Pool, TaskHandle, TaskState
from .blocking import BlockingTaskHandle, spawn_blocking
from .guards import SelectCase, RecvCase, SendCase, timeout
from .alternative import Alternative, Selected, NO_DEFAULT, alts, alts_blocking
from .core import process, go, Spawn, SpawnBlocking, Parallel, Sequence
from .waiters import current_pool, current_task
