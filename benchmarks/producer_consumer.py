#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import sys
import time
from tcsp import process, Channel, Parallel, Pool, spawn_blocking
from tcsp.utils import handle_common_args, avg

print("--------------------- Producer/consumer --------------------")
args = handle_common_args([
    (("-profile",), dict(help="profile", action="store_const", const=True, default=False)),
    (("-c", "--capacity"), dict(help="channel capacity", type=int, default=0)),
])


@process
async def producer(cout, n_warm, n_runs):
    for i in range(n_warm):
        await cout.send(i)
    for i in range(n_runs):
        await cout.send(i)


@process
async def consumer(cin, n_warm, n_runs, run_no):
    for i in range(n_warm):
        await cin.receive()
    ts = time.time
    t1 = ts()
    for i in range(n_runs):
        await cin.receive()
    t2 = ts()
    dt = (t2 - t1) * 1_000_000  # in microseconds
    per_rw = dt / n_runs
    print(f"Run {run_no} DT = {dt:f} us. Time per rw {per_rw:7.3f} us")
    return per_rw


def blocking_producer(cout, n_warm, n_runs):
    for i in range(n_warm + n_runs):
        cout.send_blocking(i)


N_BM = 10
N_WARM = 100
N_RUN = 10_000


def report(bmtype, res):
    print("Res with min, avg, max")
    nm_args = " ".join(sys.argv)
    print(f"| {bmtype} | {nm_args} | {min(res):7.3f} | {avg(res):7.3f} |{max(res):7.3f} |")


def run_bm(pool):
    chan = Channel(args.capacity, name='prod/cons')

    async def one_run(i):
        rets = await Parallel(
            producer(chan, N_WARM, N_RUN),
            consumer(chan, N_WARM, N_RUN, i))
        return rets[-1]

    res = [pool.spawn(one_run(i)).join() for i in range(N_BM)]
    report("task/task", res)
    return res


def run_bm_blocking(pool):
    """Producer on its own thread, consumer in the pool"""
    chan = Channel(args.capacity, name='prod/cons')
    res = []
    for i in range(N_BM):
        prod = spawn_blocking(blocking_producer, chan, N_WARM, N_RUN)
        res.append(pool.spawn(consumer(chan, N_WARM, N_RUN, i)).join())
        prod.join()
    report("thread/task", res)
    return res


if __name__ == "__main__":
    with Pool(workers=args.workers) as pool:
        run_bm(pool)
        run_bm_blocking(pool)
        if args.profile:
            import cProfile
            cProfile.run("run_bm(pool)", sort='tottime')
