#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Contains common CSP processes such as Identity, Delta, Prefix etc.

The processes run until one of their channels is closed. Combine them with
close_chans() in a Sequence to propagate the close further along:

    await Parallel(
        Sequence(Identity(a, b), close_chans(b)),
        ...)
"""

from tcsp.alternative import Alternative
from tcsp.channels import close_chans as _close_chans
from tcsp.core import process, Parallel
from tcsp.errors import check


@process
async def Identity(cin, cout):
    """Copies its input stream to its output stream, adding a one-place buffer
    to the stream."""
    while True:
        t = (await cin.receive()).unwrap()
        check(await cout.send(t))


@process
async def Prefix(cin, cout, prefix_item=None):
    "Outputs prefix_item, then behaves like Identity."
    t = prefix_item
    while True:
        check(await cout.send(t))
        t = (await cin.receive()).unwrap()


@process
async def SeqDelta2(cin, cout1, cout2):
    "Copies each item to both outputs, first cout1, then cout2."
    while True:
        t = (await cin.receive()).unwrap()
        check(await cout1.send(t))
        check(await cout2.send(t))


@process
async def ParDelta2(cin, cout1, cout2):
    "Copies each item to both outputs in parallel."
    while True:
        t = (await cin.receive()).unwrap()
        for res in await Parallel(cout1.send(t), cout2.send(t)):
            check(res)


Delta2 = ParDelta2


@process
async def Successor(cin, cout):
    """Adds 1 to the value read on the input channel and outputs it on the output channel.
    Infinite loop.
    """
    while True:
        check(await cout.send((await cin.receive()).unwrap() + 1))


@process
async def SkipProcess():
    pass


@process
async def Mux2(cin1, cin2, cout):
    "Merges two input streams. Stops when either input or the output closes."
    alt = Alternative(cin1.recv_case(), cin2.recv_case())
    while True:
        sel = await alt.select()
        if not sel.ok:
            return
        check(await cout.send(sel.value))


async def pipe(cin, cout, close=True):
    """Copies everything from cin to cout until cin is closed and drained.
    Closes cout afterwards unless close is False. Returns the number of items copied.
    """
    n = 0
    async for item in cin:
        if await cout.send(item) is not None:
            break
        n += 1
    if close:
        cout.close()
    return n


async def onto_chan(cout, items, close=True):
    """Sends every item to cout, then closes it unless close is False.
    Returns the number of items sent (less than len(items) if cout was closed)."""
    n = 0
    for item in items:
        if await cout.send(item) is not None:
            break
        n += 1
    if close:
        cout.close()
    return n


async def close_chans(*chans):
    """Closes the channels. A coroutine, so it can be used in a Sequence."""
    _close_chans(*chans)
