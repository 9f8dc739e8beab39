#!/usr/bin/env python3
"""
Channel tests: cooperative tasks, blocking threads and the two mixed.
"""
import threading
import time

import pytest

from tcsp import (Channel, OverflowPolicy, Parallel, Received, CLOSED_EMPTY, Closed, TimedOut,
                  ChannelClosedError, process, spawn_blocking)
from tcsp.errors import check
from tcsp.utils import aenumerate


@process
async def n_writer(N, pid, cout):
    """Process that sends N messages, printing out status for every write."""
    for i in range(1, N + 1):
        msg = f"p{pid}-m{i}/{N}"
        print("Writer sending", msg)
        check(await cout.send(msg))
    print("Writer finished")
    return (pid, 'ok')


@process
async def n_reader(N, pid, cin):
    """Process that reads N messages, printing out status for every read + the received message."""
    for i in range(1, N + 1):
        msg = (await cin.receive()).unwrap()
        print(f"reader {pid} got {msg} on read {i}/{N}")
    print("Reader finished")
    return (pid, 'ok')


@process
async def inf_reader(pid, cin):
    """Process that reads from a channel until the channel is closed."""
    msgs = []
    async for i, msg in aenumerate(cin):
        print(f"reader {pid} got msg #{i}: {msg}")
        msgs.append(msg)
    print(f"reader {pid} terminating")
    return msgs


def test_read_write(pool, wait_until, N=5):
    """N writers first queue up on a rendezvous channel, then the main thread reads."""
    ch = Channel(name='rw')
    writers = [pool.spawn(ch.send(i)) for i in range(N)]
    wait_until(lambda: ch.waiting_senders() == N)
    ch.verify()

    vals = []
    for i in range(1, N + 1):
        vals.append(ch.receive_blocking().unwrap())
        assert ch.waiting_senders() == N - i, f"After reading {i} messages, {N - i} writers should wait"
        ch.verify()
    assert set(vals) == set(range(N)), f"Set of received values (in any order) should be the same as written {vals}"
    assert all(w.join(5) is None for w in writers), "Successful sends return None"


@pytest.mark.parametrize("NW, NR", [(1, 5), (5, 1), (1, 1), (5, 5)])
@pytest.mark.parametrize("capacity", [0, 3])
def test_writers_and_readers(run, NW, NR, capacity):
    """Varying numbers of readers and writers on a single channel."""
    TOTAL_OPS = 4 * NR * NW
    N_WRITES = TOTAL_OPS // NW
    N_READS = TOTAL_OPS // NR
    ch = Channel(capacity, name='nw-nr')

    async def main():
        return await Parallel(
            *[n_writer(N_WRITES, f"w-{rn}", ch) for rn in range(NW)],
            *[n_reader(N_READS, f"r-{rn}", ch) for rn in range(NR)])

    res = run(main())
    assert len(res) == NW + NR, "Should have one result per reader and writer"
    assert all(r[1] == 'ok' for r in res), f"All results should be 'ok': {res}"
    assert ch.verify()
    assert ch.buffered() == 0


def test_fifo_round_trip(run):
    ch = Channel(3)

    async def main():
        for item in ['a', 'b', 'c']:
            assert await ch.send(item) is None
        return [(await ch.receive()).value for _ in range(3)]

    assert run(main()) == ['a', 'b', 'c'], "Items should come out in the order they went in"


@pytest.mark.parametrize("capacity", [0, 1, 4])
def test_send_blocks_when_full(wait_until, capacity):
    """The (N+1)th send on a channel with capacity N blocks until a receive."""
    ch = Channel(capacity, name=f'cap-{capacity}')
    sent = []

    def producer():
        for i in range(capacity + 1):
            ch.send_blocking(i)
            sent.append(i)

    handle = spawn_blocking(producer)
    wait_until(lambda: ch.waiting_senders() == 1)
    time.sleep(0.05)
    assert sent == list(range(capacity)), f"Only {capacity} sends should have completed, got {sent}"
    assert ch.buffered() == capacity
    assert not handle.done(), "The producer should still be blocked"

    assert ch.receive_blocking() == Received(0)
    assert handle.join(5) is None
    assert sent == list(range(capacity + 1))
    assert ch.buffered() == capacity
    ch.verify()


def test_drop_oldest_capacity_one():
    ch = Channel(1, OverflowPolicy.DROP_OLDEST)
    assert ch.send_blocking("x") is None
    assert ch.send_blocking("y") is None, "DROP_OLDEST sends never block"
    assert ch.receive_blocking() == Received("y")
    assert ch.poll() is None, "x should be gone"


def test_drop_newest_capacity_one():
    ch = Channel(1, OverflowPolicy.DROP_NEWEST)
    assert ch.send_blocking("x") is None
    assert ch.send_blocking("y") is None, "DROP_NEWEST sends never block"
    assert ch.receive_blocking() == Received("x")
    assert ch.poll() is None, "y should never have been stored"


def test_dropping_policies_need_capacity():
    with pytest.raises(ValueError):
        Channel(0, OverflowPolicy.DROP_OLDEST)


def test_close_then_drain():
    ch = Channel(2, name='drain')
    ch.send_blocking(1)
    ch.send_blocking(2)
    ch.close()
    assert ch.receive_blocking() == Received(1, True)
    assert ch.receive_blocking() == Received(2, True)
    assert ch.receive_blocking() == Received(None, False)
    assert ch.receive_blocking() == CLOSED_EMPTY, "closed-empty should be returned forever after"
    assert ch.send_blocking(3) == Closed('drain'), "Sending on a closed channel fails"
    ch.close()    # idempotent
    assert ch.closed
    assert ch.verify()


def test_closed_empty_unwrap():
    ch = Channel()
    ch.close()
    res = ch.receive_blocking()
    assert not res.ok and res.value is None
    with pytest.raises(ChannelClosedError):
        res.unwrap()


def test_close_wakes_waiters(pool, wait_until):
    readers = Channel(name='readers')
    writers = Channel(name='writers')
    rh = [pool.spawn(readers.receive()) for _ in range(3)]
    wh = [pool.spawn(writers.send(i)) for i in range(3)]
    wait_until(lambda: readers.waiting_receivers() == 3 and writers.waiting_senders() == 3)

    readers.close()
    writers.close()
    assert all(h.join(5) == CLOSED_EMPTY for h in rh), "Waiting receivers should get closed-empty"
    assert all(h.join(5) == Closed('writers') for h in wh), "Waiting senders should get Closed"
    assert readers.verify() and writers.verify()


def test_waiting_receivers_served_in_order(wait_until):
    ch = Channel(name='fifo-waiters')
    handles = []
    for i in range(3):
        handles.append(spawn_blocking(lambda: ch.receive_blocking().value))
        wait_until(lambda: ch.waiting_receivers() == i + 1)
    for i in range(3):
        assert ch.send_blocking(i) is None
    assert [h.join(5) for h in handles] == [0, 1, 2], "The longest waiting receiver should be served first"


def test_waiting_senders_served_in_order(wait_until):
    ch = Channel(name='fifo-senders')
    handles = []
    for i in range(3):
        handles.append(spawn_blocking(ch.send_blocking, i))
        wait_until(lambda: ch.waiting_senders() == i + 1)
    assert [ch.receive_blocking().value for _ in range(3)] == [0, 1, 2]
    assert all(h.join(5) is None for h in handles)


def test_receive_timeout_blocking():
    ch = Channel()
    t1 = time.monotonic()
    res = ch.receive_blocking(timeout=0.010)
    dt = time.monotonic() - t1
    assert res == TimedOut(0.010)
    assert 0.009 <= dt < 1.0, f"Should time out after about 10ms, took {dt}"
    assert ch.waiting_receivers() == 0 and len(ch.recvq) == 0, "Timed out receiver should have been removed"


def test_receive_timeout_cooperative(run):
    ch = Channel()

    async def main():
        t1 = time.monotonic()
        res = await ch.receive(timeout=0.010)
        return res, time.monotonic() - t1

    res, dt = run(main())
    assert isinstance(res, TimedOut), f"Expected TimedOut, got {res}"
    assert 0.009 <= dt < 1.0, f"Should time out after about 10ms, took {dt}"
    assert len(ch.recvq) == 0


def test_send_timeout(run):
    ch = Channel(1, name='full')

    async def main():
        assert await ch.send('a') is None
        return await ch.send('b', timeout=0.05)

    assert run(main()) == TimedOut(0.05)
    assert len(ch.sendq) == 0, "Timed out sender should have been removed"
    assert ch.poll() == Received('a')
    assert ch.poll() is None, "The timed out value must not have been delivered"


def test_offer_and_poll():
    ch = Channel(1)
    assert ch.poll() is None, "Nothing to receive yet"
    assert ch.offer(1) is True
    assert ch.offer(2) is False, "Channel is full"
    assert ch.poll() == Received(1)
    ch.close()
    assert ch.offer(3) == Closed()
    assert ch.poll() == CLOSED_EMPTY


def test_offer_to_waiting_receiver(wait_until):
    ch = Channel()
    assert ch.offer('x') is False, "No receiver waiting on a rendezvous channel"
    handle = spawn_blocking(ch.receive_blocking)
    wait_until(lambda: ch.waiting_receivers() == 1)
    assert ch.offer('x') is True
    assert handle.join(5) == Received('x')


def test_put_and_take_callbacks():
    ch = Channel(name='cb')
    got = []
    sent = []
    ch.take(got.append)
    assert got == [], "take should wait for an item"
    ch.put('a', sent.append)
    assert got == [Received('a')] and sent == [None], "put should complete the waiting take"

    ch.put('b', sent.append)
    assert sent == [None], "Nobody is receiving 'b' yet"
    assert ch.waiting_senders() == 1
    ch.take(got.append)
    assert got[-1] == Received('b') and sent == [None, None]

    ch.put('c', sent.append)
    ch.close()
    assert sent[-1] == Closed('cb'), "Close should fail the pending put"
    ch.take(got.append)
    assert got[-1] == CLOSED_EMPTY


def test_put_callback_runs_on_completing_thread(wait_until):
    ch = Channel()
    threads = []
    ch.put('v', lambda res: threads.append(threading.current_thread().name))
    handle = spawn_blocking(ch.receive_blocking, name='taker')
    assert handle.join(5) == Received('v')
    assert threads == ['taker']


def test_iteration(run):
    ch = Channel(2)

    async def main():
        for i in range(5):
            await ch.send(i)
        ch.close()

    reader = spawn_blocking(lambda: list(ch))
    run(main())
    assert reader.join(5) == [0, 1, 2, 3, 4]


def test_async_iteration(pool, run):
    ch = Channel()
    reader = pool.spawn(inf_reader('r-1', ch))
    for msg in 'abc':
        ch.send_blocking(msg)
    ch.close()
    assert reader.join(5) == ['a', 'b', 'c']


def test_cooperative_op_outside_pool():
    ch = Channel()
    coro = ch.send(1)
    with pytest.raises(RuntimeError):
        coro.send(None)
    assert len(ch.sendq) == 0, "Nothing should have been queued"
