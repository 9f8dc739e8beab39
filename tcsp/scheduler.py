#!/usr/bin/env python3
"""
Cooperative worker pool.

A Pool runs many tasks on a small fixed set of worker threads. A task is an
`async def` coroutine. Its coroutine object is the task's continuation: the
pool steps it with coro.send() until it finishes or yields a Park request,
which happens exactly when a channel operation or a select cannot complete.
The task is then attached to the Park's waiter and the worker thread goes
back to the ready queue. Firing the waiter puts the task back on the ready
queue, and some worker resumes it with the result.

Bookkeeping is explicit: an arena (list) of task records with slot reuse, an
index-based ready deque, and a heap of timers for deadlines. There is no
hidden global pool; tasks spawn sub-tasks on the pool that runs them.

Caller contract: tasks may only await tcsp operations. A task that makes a
genuinely blocking call (sleep, blocking I/O, a *_blocking channel op) holds
on to its worker thread, and enough of those starve the pool. Use
spawn_blocking() for such work.
"""

import collections
import heapq
import inspect
import itertools
import logging
import threading
import time
from enum import Enum

from .channels import Channel
from .errors import Cancelled, Failure, TimedOut
from .utils import default_workers
from .waiters import Park, _local, current_pool

log = logging.getLogger(__name__)

_pool_ids = itertools.count()
_task_ids = itertools.count(1)


class TaskState(Enum):
    RUNNABLE = 'runnable'
    RUNNING = 'running'
    SUSPENDED = 'suspended'
    COMPLETED = 'completed'
    FAILED = 'failed'
    CANCELLED = 'cancelled'


TERMINAL = frozenset([TaskState.COMPLETED, TaskState.FAILED, TaskState.CANCELLED])

# Result a parked task is resumed with when it is cancelled.
_CANCEL = (None, Cancelled("task cancelled"))


class _Timer:
    """Timer heap entry. A cancelled or fired entry has callback None and is
    skipped when it reaches the top of the heap."""
    __slots__ = ['deadline', 'seq', 'callback']

    def __init__(self, deadline, seq, callback):
        self.deadline = deadline
        self.seq = seq
        self.callback = callback

    def __lt__(self, other):
        return (self.deadline, self.seq) < (other.deadline, other.seq)


class Task:
    """Task record. Owned by the pool; handles refer to it."""
    __slots__ = ['tid', 'name', 'slot', 'coro', 'pool', 'state', 'reason', 'waiter',
                 'started', 'cancel_requested', 'handle']

    def __init__(self, coro, pool, slot, name=None):
        self.tid = next(_task_ids)
        self.name = name or getattr(coro, '__qualname__', 'task')
        self.slot = slot
        self.coro = coro
        self.pool = pool
        self.state = TaskState.RUNNABLE
        self.reason = None    # ('send' | 'receive', chan) or ('select', chans) while suspended
        self.waiter = None
        self.started = False
        self.cancel_requested = False
        self.handle = TaskHandle(self)

    def __repr__(self):
        return f"<Task {self.tid} {self.name} {self.state.value}>"


class _HandleBase:
    """Common part of cooperative and blocking task handles.

    The outcome of a task is its return value, a Failure wrapping the
    exception it raised, or Cancelled. It is available from result() once the
    task is done, and is also delivered exactly once on `channel` (capacity 1,
    closed right after), like the channel returned by a go block.
    """
    def __init__(self, name):
        self.name = name
        self.channel = Channel(1, name=f"{name}-result")
        self._done = Channel(name=f"{name}-done")   # closed when the task terminates
        self._outcome = None

    def done(self):
        return self.state in TERMINAL

    def result(self):
        """Returns the outcome. The task must be done."""
        if not self.done():
            raise RuntimeError(f"{self!r} has not finished")
        return self._outcome

    def join(self, timeout=None):
        """Blocks the calling thread until the task is done. Returns the
        outcome, or TimedOut."""
        res = self._done.receive_blocking(timeout)
        if isinstance(res, TimedOut):
            return res
        return self._outcome

    async def wait(self, timeout=None):
        """Suspends the calling task until this task is done. Returns the
        outcome, or TimedOut."""
        res = await self._done.receive(timeout)
        if isinstance(res, TimedOut):
            return res
        return self._outcome

    def _settle(self, outcome):
        self._outcome = outcome
        self.channel.offer(outcome)
        self.channel.close()
        self._done.close()


class TaskHandle(_HandleBase):
    """Handle to a cooperative task."""
    def __init__(self, task):
        super().__init__(f"task-{task.tid}")
        self._task = task

    def __repr__(self):
        return f"<TaskHandle {self._task.tid} {self._task.name} {self.state.value}>"

    @property
    def state(self):
        return self._task.state

    @property
    def reason(self):
        "What the task is suspended on, or None."
        return self._task.reason

    def cancel(self):
        """Cancel the task. A suspended task is removed from the queues it
        waits in and terminates as CANCELLED; a running task is cancelled at
        its next suspension point. Returns False if the task already finished.
        """
        return self._task.pool._cancel(self._task)


class Pool:
    """Fixed size pool of worker threads running cooperative tasks.

    Use as a context manager, or call shutdown() when done:

        with Pool(workers=4) as pool:
            handle = pool.spawn(producer(ch))
            ...
    """
    def __init__(self, workers=None, name=None):
        if workers is None:
            workers = default_workers()
        if workers < 1:
            raise ValueError(f"a pool needs at least one worker, got {workers}")
        self.workers = workers
        self.name = name or f"tcsp-pool-{next(_pool_ids)}"
        self._cond = threading.Condition(threading.Lock())
        self._arena = []                       # task records, by slot
        self._free = []                        # free slots in the arena
        self._ready = collections.deque()      # slots of runnable tasks
        self._timers = []                      # heap of _Timer
        self._timer_seq = itertools.count()
        self._stale_timers = 0                 # cancelled entries still in the heap
        self._live = 0
        self._closing = False
        self._stopped = False
        self._threads = [threading.Thread(target=self._worker, name=f"{self.name}-w{i}", daemon=True)
                         for i in range(workers)]
        for t in self._threads:
            t.start()
        log.debug("started %s with %d workers", self.name, workers)

    def __repr__(self):
        return f"<Pool {self.name} workers={self.workers} live={self._live} ready={len(self._ready)}>"

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown(wait=True, cancel=exc is not None)

    def live_tasks(self):
        """Number of tasks that have not terminated yet."""
        return self._live

    def spawn(self, coro, name=None):
        """Schedule the coroutine as a new task. Returns a TaskHandle."""
        if not inspect.iscoroutine(coro):
            raise TypeError(f"spawn expects a coroutine object, got {coro!r}")
        with self._cond:
            if self._stopped:
                coro.close()
                raise RuntimeError(f"{self.name} is shut down")
            slot = self._free.pop() if self._free else len(self._arena)
            if slot == len(self._arena):
                self._arena.append(None)
            task = Task(coro, self, slot, name)
            self._arena[slot] = task
            self._live += 1
            self._ready.append(slot)
            self._cond.notify()
        log.debug("spawned %r", task)
        return task.handle

    def call_later(self, delay, callback):
        """Run callback on a worker thread after delay seconds.
        Returns the timer, which cancel_timer() accepts."""
        return self._call_at(time.monotonic() + delay, callback)

    def _call_at(self, deadline, callback):
        timer = _Timer(deadline, next(self._timer_seq), callback)
        with self._cond:
            heapq.heappush(self._timers, timer)
            self._cond.notify()
        return timer

    def cancel_timer(self, timer):
        """Drop a pending timer. No-op if it already ran or was cancelled.
        The heap is compacted once cancelled entries make up half of it."""
        with self._cond:
            if timer.callback is None:
                return
            timer.callback = None
            self._stale_timers += 1
            if self._stale_timers * 2 > len(self._timers):
                self._timers = [t for t in self._timers if t.callback is not None]
                heapq.heapify(self._timers)
                self._stale_timers = 0

    def _pop_due(self, now, due):
        "Move the callbacks of expired timers to due. Pool lock held."
        while self._timers and self._timers[0].deadline <= now:
            timer = heapq.heappop(self._timers)
            if timer.callback is None:
                self._stale_timers -= 1
                continue
            due.append(timer.callback)
            timer.callback = None

    def shutdown(self, wait=True, cancel=False):
        """Stop the workers once every task has terminated. With cancel=True,
        live tasks are cancelled first. With wait=True, blocks until the
        workers have exited. Tasks that never terminate keep the pool alive.
        """
        if current_pool() is self and wait:
            raise RuntimeError("a pool can not wait for its own shutdown from one of its tasks")
        with self._cond:
            self._closing = True
            tasks = [t for t in self._arena if t is not None] if cancel else []
            self._cond.notify_all()
        for task in tasks:
            self._cancel(task)
        if wait:
            for t in self._threads:
                t.join()
            log.debug("%s stopped", self.name)

    def _wake(self, task):
        "Called through Waiter.fire() for a parked task."
        with self._cond:
            task.state = TaskState.RUNNABLE
            task.reason = None
            self._ready.append(task.slot)
            self._cond.notify()

    def _cancel(self, task):
        with self._cond:
            if task.state in TERMINAL:
                return False
            task.cancel_requested = True
            waiter = task.waiter if task.state is TaskState.SUSPENDED else None
        log.debug("cancel requested for %r", task)
        if waiter is not None and waiter.claim():
            waiter.fire(_CANCEL)
        return True

    def _worker(self):
        _local.pool = self
        while True:
            due = []
            task = None
            with self._cond:
                while True:
                    # Due timers run before the next ready task.
                    now = time.monotonic()
                    self._pop_due(now, due)
                    if due or self._ready:
                        break
                    if self._closing and self._live == 0:
                        self._stopped = True
                        self._cond.notify_all()
                        return
                    self._cond.wait(self._timers[0].deadline - now if self._timers else None)
                if self._ready:
                    task = self._arena[self._ready.popleft()]
            for callback in due:
                try:
                    callback()
                except Exception:    # pylint: disable=broad-except
                    log.exception("timer callback %r failed", callback)
            if task is not None:
                self._step(task)

    def _step(self, task):
        """Run task until it parks or terminates."""
        waiter, task.waiter = task.waiter, None
        value = None
        if waiter is not None:
            value = waiter.result
            if waiter.timer is not None:
                self.cancel_timer(waiter.timer)
        if not task.started and task.cancel_requested:
            # Never ran
            self._close_cancelled(task)
            return
        task.started = True
        with self._cond:
            task.state = TaskState.RUNNING
        while True:
            if value is _CANCEL:
                self._close_cancelled(task)
                return
            _local.task = task
            try:
                park = task.coro.send(value)
            except StopIteration as e:
                self._finish(task, TaskState.COMPLETED, e.value)
                return
            except Exception as e:    # pylint: disable=broad-except
                log.error("task %r failed", task, exc_info=True)
                self._finish(task, TaskState.FAILED, Failure(e))
                return
            finally:
                _local.task = None
            if not isinstance(park, Park):
                err = TypeError(f"tcsp tasks can only await tcsp operations, {task!r} awaited {park!r}")
                log.error("%s", err)
                task.coro.close()
                self._finish(task, TaskState.FAILED, Failure(err))
                return
            waiter = park.waiter
            with self._cond:
                task.state = TaskState.SUSPENDED
                task.reason = park.reason
                task.waiter = waiter
                cancel_now = task.cancel_requested
            # A cancel() arriving after this point sees the task as suspended
            # and fires the waiter itself.
            if cancel_now and waiter.claim():
                self._close_cancelled(task)
                return
            if waiter.deadline is not None:
                waiter.timer = self._call_at(waiter.deadline, waiter.expire)
            if waiter.attach(task):
                return
            # Completed between queueing and parking. Carry on.
            if waiter.timer is not None:
                self.cancel_timer(waiter.timer)
            with self._cond:
                task.state = TaskState.RUNNING
                task.reason = None
                task.waiter = None
            value = waiter.result

    def _close_cancelled(self, task):
        _local.task = task
        try:
            # Raises GeneratorExit at the suspension point. Finally blocks run,
            # including the one withdrawing the task from channel queues.
            task.coro.close()
        except Exception:    # pylint: disable=broad-except
            log.warning("exception while closing cancelled task %r", task, exc_info=True)
        finally:
            _local.task = None
        self._finish(task, TaskState.CANCELLED, Cancelled("task cancelled"))

    def _finish(self, task, state, outcome):
        with self._cond:
            task.handle._outcome = outcome
            task.state = state
            task.reason = None
            task.waiter = None
            self._arena[task.slot] = None
            self._free.append(task.slot)
            self._live -= 1
            if self._live == 0:
                self._cond.notify_all()
        log.debug("%r finished", task)
        task.handle._settle(outcome)
