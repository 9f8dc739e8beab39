#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# Copyright (c) 2018 John Markus Bjørndalen, jmb@cs.uit.no.
# See LICENSE.txt for licensing details (MIT License).

import random
from tcsp import process, Channel, Alternative, Parallel, Pool, timeout
from tcsp.utils import handle_common_args

args = handle_common_args()


@process
async def producer(ch, name):
    await timeout(random.random()).receive()    # sleep
    await ch.send(name)


@process
async def consumer(ch1, ch2):
    alt = Alternative(ch1.recv_case(), ch2.recv_case())
    for _ in range(2):
        async with alt as sel:
            print(sel.value)


async def run_test():
    ch1 = Channel(name='ch1')
    ch2 = Channel(name='ch2')
    await Parallel(
        producer(ch1, 'p1'),
        producer(ch2, 'p2'),
        consumer(ch1, ch2))


with Pool(workers=args.workers) as pool:
    pool.spawn(run_test()).join()
