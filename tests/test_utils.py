#!/usr/bin/env python3
"""
Configuration helpers.
"""
import os

import pytest

from tcsp import Pool
from tcsp.errors import check, is_error, Closed, TimedOut, Cancelled, Failure
from tcsp.errors import ChannelClosedError, OperationTimedOut, TaskCancelledError, TaskFailedError
from tcsp.utils import WORKERS_ENV, avg, default_workers, handle_common_args


def test_default_workers_from_env(monkeypatch):
    monkeypatch.setenv(WORKERS_ENV, '3')
    assert default_workers() == 3
    pool = Pool()
    try:
        assert pool.workers == 3
    finally:
        pool.shutdown()


@pytest.mark.parametrize("val", ['0', '-2', 'many'])
def test_default_workers_invalid(monkeypatch, caplog, val):
    monkeypatch.setenv(WORKERS_ENV, val)
    assert default_workers() == (os.cpu_count() or 1)
    assert WORKERS_ENV in caplog.text


def test_default_workers_unset(monkeypatch):
    monkeypatch.delenv(WORKERS_ENV, raising=False)
    assert default_workers() == (os.cpu_count() or 1)


def test_handle_common_args(monkeypatch):
    monkeypatch.delenv(WORKERS_ENV, raising=False)
    args = handle_common_args([(("-n",), dict(type=int, default=10))], argv=['-w', '2', '-n', '5'])
    assert args.workers == 2
    assert args.n == 5
    args = handle_common_args(argv=['-l', 'debug'])
    assert args.workers == default_workers()
    assert args.log_level == 'debug'


def test_avg():
    assert avg([1, 2, 3, 6]) == 3


@pytest.mark.parametrize("value, exc", [
    (Closed('ch'), ChannelClosedError),
    (TimedOut(0.5), OperationTimedOut),
    (Cancelled(), TaskCancelledError),
    (Failure(ValueError('x')), TaskFailedError),
])
def test_check_raises(value, exc):
    assert is_error(value)
    with pytest.raises(exc) as info:
        check(value)
    assert info.value.to_struct() == value


@pytest.mark.parametrize("value", [None, 0, 'ok', [1]])
def test_check_passes_values(value):
    assert not is_error(value)
    assert check(value) is value


def test_timed_out_is_timeout_error():
    assert isinstance(TimedOut(1.0).to_exception(), TimeoutError)
