#!/usr/bin/env python3
"""
Buffer policies for channels.

A Buffer is the bounded FIFO slot store of a channel. What happens when an
item arrives at a full buffer is decided by its OverflowPolicy:

- BLOCK: the item is refused and the sender has to wait for a free slot.
- DROP_NEWEST: the incoming item is discarded, the send still succeeds.
- DROP_OLDEST: the oldest buffered item is evicted to make room.

A capacity of 0 means no storage at all: every item is refused, and a send
can only complete by handing the item straight to a receiver (rendezvous).
The dropping policies need somewhere to drop from, so they require a
capacity of at least 1.
"""

import collections
import logging
from enum import Enum

log = logging.getLogger(__name__)


class OverflowPolicy(Enum):
    BLOCK = 'block'
    DROP_NEWEST = 'drop-newest'
    DROP_OLDEST = 'drop-oldest'


class Buffer:
    """FIFO slot store with a fixed capacity and an overflow policy.
    Not thread safe: the owning channel serialises access.
    """
    __slots__ = ['capacity', 'policy', 'items', 'dropped']

    def __init__(self, capacity=0, policy=OverflowPolicy.BLOCK):
        if not isinstance(capacity, int) or isinstance(capacity, bool) or capacity < 0:
            raise ValueError(f"Buffer capacity must be a non-negative int, got {capacity!r}")
        policy = OverflowPolicy(policy)
        if capacity == 0 and policy is not OverflowPolicy.BLOCK:
            raise ValueError(f"{policy} requires a capacity of at least 1")
        self.capacity = capacity
        self.policy = policy
        self.items = collections.deque()
        self.dropped = 0   # number of items lost to the policy so far

    def __repr__(self):
        return f"<Buffer {len(self.items)}/{self.capacity} {self.policy.value}>"

    def __len__(self):
        return len(self.items)

    def is_full(self):
        return len(self.items) >= self.capacity

    def push(self, item):
        """Try to store item. Returns True if the send is complete (the item was
        stored, or dropped by policy), False if the sender must wait.
        """
        if len(self.items) < self.capacity:
            self.items.append(item)
            return True
        if self.policy is OverflowPolicy.BLOCK:
            return False
        self.dropped += 1
        if self.policy is OverflowPolicy.DROP_NEWEST:
            log.debug("buffer full, dropping newest item %r", item)
            return True
        evicted = self.items.popleft()
        self.items.append(item)
        log.debug("buffer full, dropping oldest item %r", evicted)
        return True

    def pop(self):
        "Removes and returns the oldest item. The buffer must not be empty."
        return self.items.popleft()
