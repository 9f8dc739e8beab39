#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""

  Prefix ---- a ---->  Delta2 -- d --> consume
   ^                      |
   |                      |
   b                      |
   |                      |
  Succ <------- c --------|

"""
import sys
import time
from tcsp import process, Channel, Parallel, Pool, Sequence
from tcsp import plugNplay
from tcsp.plugNplay import Prefix, Successor, close_chans
from tcsp.utils import handle_common_args

print("--------------------- Commstime --------------------")
args = handle_common_args()


@process
async def consumer(cin, run_no):
    "Commstime consumer process"
    N = 5000
    ts = time.time
    t1 = ts()
    await cin.receive()
    t1 = ts()
    for _ in range(N):
        await cin.receive()
    t2 = ts()
    dt = t2 - t1
    tchan = dt / (4 * N)
    tchan_us = tchan * 1_000_000
    print(f"Run {run_no} DT = {dt:.4f}.  Time per ch : {dt:.4f}/(4*{N}) = {tchan:.8f} s = {tchan_us:.4f} us")
    return tchan


# pylint: disable-next=redefined-outer-name, invalid-name
async def comms_time_bm(run_no, Delta2=plugNplay.Delta2):
    """Run the benchmark with the provided Delta2 implementation (default=Delta2)"""
    a = Channel(name="a")
    b = Channel(name="b")
    c = Channel(name="c")
    d = Channel(name="d")

    rets = await Parallel(
        Prefix(c, a, prefix_item=0),    # initiator
        Delta2(a, b, d),                # forwarding to two
        Successor(b, c),                # feeding back to prefix
        Sequence(
            consumer(d, run_no),        # timing process
            close_chans(a, b, c, d)
        ))
    return rets[-1][0]  # return the results from consumer


# pylint: disable-next=redefined-outer-name, invalid-name
def run_bm(pool, Delta2=plugNplay.Delta2):
    "Run the benchmark a number of times to check variation in execution time"
    print(f"Running with Delta2 = {Delta2.__name__} on {pool.workers} workers")
    N_BM = 10
    tchans = []
    for i in range(N_BM):
        tchans.append(pool.spawn(comms_time_bm(i, Delta2)).join())
    t_min = 1_000_000 * min(tchans)
    t_avg = 1_000_000 * sum(tchans) / len(tchans)
    t_max = 1_000_000 * max(tchans)
    print(f"Min {t_min:7.3f}  Avg {t_avg:7.3f} Max {t_max:7.3f}")
    return (t_min, t_avg, t_max)


with Pool(workers=args.workers) as pool:
    tpd = run_bm(pool, plugNplay.ParDelta2)
    tsd = run_bm(pool, plugNplay.SeqDelta2)
hdrs = ['    min', '    avg', '    max'] * 2
vals = tpd + tsd
print("For easier markdown tables:")
print("| " + " | ".join([" ".join(sys.argv)] + hdrs) + " |")
print("| " + " | ".join([" ".join(sys.argv)] + [f"{v:7.3f}" for v in vals]) + " |")
