"""
Schedulers decide *when* the continuations of futures run.

All future settlement and continuation dispatch happens on a single cooperative scheduler: continuations are queued and
run one at a time, never re-entrantly, so the future machinery needs no locks. The only way into a scheduler from
another thread is `Scheduler.call_soon_threadsafe`, which is what the worker bridge uses to deliver results.

Two implementations are provided:

- `AsyncioScheduler`, which forwards everything to an asyncio event loop. This is what you want in real code.
- `ManualScheduler`, a deterministic queue with a virtual clock that is stepped explicitly. This is what you want in
  tests, as timers fire without actually waiting for them.

Durations are always given in seconds.
"""

import asyncio
import heapq
import itertools
import threading
import time

from abc import ABC, abstractmethod
from collections import deque
from typing import Callable, Any, Optional, Deque, List, Tuple, TYPE_CHECKING

from creatartis.base.errors import SchedulerNotAvailableError

if TYPE_CHECKING:
    from creatartis.base.future import Future


class TimerHandle(ABC):
    @abstractmethod
    def cancel(self):
        raise NotImplementedError

    @abstractmethod
    def cancelled(self) -> bool:
        raise NotImplementedError


class Scheduler(ABC):
    """
    Interface through which futures and combinators queue work. Implementations must run callbacks queued with
    `call_soon` in FIFO order, one at a time, and never synchronously from within the `call_soon` call itself.
    """

    @abstractmethod
    def call_soon(self, callback: Callable[..., Any], *args):
        """
        Queues a callback to run on a later turn of the scheduler. Must only be called from the scheduler's own context.
        """
        raise NotImplementedError

    @abstractmethod
    def call_soon_threadsafe(self, callback: Callable[..., Any], *args):
        """
        Like `call_soon`, but safe to call from any thread. This is the only sanctioned way for other threads to get
        code running in the scheduler's context.
        """
        raise NotImplementedError

    @abstractmethod
    def call_later(self, seconds: float, callback: Callable[..., Any], *args) -> TimerHandle:
        raise NotImplementedError

    @abstractmethod
    def time(self) -> float:
        raise NotImplementedError


class _ManualTimerHandle(TimerHandle):
    when: float
    _callback: Callable[..., Any]
    _args: tuple
    _cancelled: bool = False

    def __init__(self, when: float, callback: Callable[..., Any], args: tuple):
        self.when = when
        self._callback = callback
        self._args = args

    def cancel(self):
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled

    def _run(self):
        self._callback(*self._args)


class ManualScheduler(Scheduler):
    """
    A scheduler that only does something when explicitly told to. Time is virtual: it starts at 0 and only moves
    forward via `advance()` (or when `run_until_complete()` runs out of other things to do and skips ahead to the next
    timer).

    Typical use in a test::

        scheduler = ManualScheduler()
        future = timeout(Future(scheduler), 0.05)
        scheduler.advance(0.05)
        assert future.is_rejected()

    Exceptions raised by raw callbacks propagate out of the stepping method. Callbacks queued by futures never raise,
    as the future machinery converts all exceptions to rejections.
    """

    _ready: Deque[Tuple[Callable[..., Any], tuple]]
    _timers: List[Tuple[float, int, _ManualTimerHandle]]
    _incoming: List[Tuple[Callable[..., Any], tuple]]
    _incoming_cond: threading.Condition
    _now: float
    _seq: Any

    def __init__(self):
        self._ready = deque()
        self._timers = []
        self._incoming = []
        self._incoming_cond = threading.Condition()
        self._now = 0.0
        self._seq = itertools.count()

    def call_soon(self, callback: Callable[..., Any], *args):
        self._ready.append((callback, args))

    def call_soon_threadsafe(self, callback: Callable[..., Any], *args):
        with self._incoming_cond:
            self._incoming.append((callback, args))
            self._incoming_cond.notify_all()

    def call_later(self, seconds: float, callback: Callable[..., Any], *args) -> TimerHandle:
        handle = _ManualTimerHandle(self._now + max(0.0, seconds), callback, args)
        heapq.heappush(self._timers, (handle.when, next(self._seq), handle))

        return handle

    def time(self) -> float:
        return self._now

    def has_pending_timers(self) -> bool:
        return any(not handle.cancelled() for _, _, handle in self._timers)

    def run_once(self) -> bool:
        """
        Runs a single queued callback, if any.

        Returns:
            True if a callback was run, False if the queue was empty
        """
        self._collect_incoming()

        if len(self._ready) == 0:
            return False

        callback, args = self._ready.popleft()
        callback(*args)

        return True

    def run_until_idle(self) -> int:
        """
        Runs queued callbacks (including those queued while running) until the queue is empty. Virtual time does not
        move, so timers that are not yet due stay pending.

        Returns:
            The number of callbacks that were run
        """
        count = 0
        while self.run_once():
            count += 1

        return count

    def advance(self, seconds: float):
        """
        Moves virtual time forward, firing all timers that become due along the way, in chronological order. The queue
        is drained before the first timer and after each timer fires.
        """
        target = self._now + seconds

        self.run_until_idle()

        while len(self._timers) > 0 and self._timers[0][0] <= target:
            self._fire_next_timer()

        self._now = max(self._now, target)
        self.run_until_idle()

    def run_until_complete(self, future: 'Future', timeout: Optional[float] = 10.0) -> 'Future':
        """
        Runs the scheduler until the given future settles.

        Whenever the queue is empty, the scheduler skips ahead in virtual time to the next pending timer. If there are
        no timers either, it blocks (in real time) waiting for other threads to post callbacks via
        `call_soon_threadsafe`, for at most `timeout` seconds in total.

        Returns:
            The future itself, now settled

        Raises:
            TimeoutError: If the real-time `timeout` is exceeded before the future settles
        """
        deadline = (time.monotonic() + timeout) if timeout is not None else None

        while True:
            self.run_until_idle()

            if not future.is_pending():
                return future

            if self.has_pending_timers():
                self._fire_next_timer()
                continue

            with self._incoming_cond:
                if len(self._incoming) > 0:
                    continue

                remaining = (deadline - time.monotonic()) if deadline is not None else None
                if remaining is not None and remaining <= 0:
                    raise TimeoutError(f"Future did not settle within {timeout}s")

                self._incoming_cond.wait(remaining)

    def _fire_next_timer(self):
        when, _, handle = heapq.heappop(self._timers)
        if handle.cancelled():
            return

        self._now = max(self._now, when)
        handle._run()
        self.run_until_idle()

    def _collect_incoming(self):
        with self._incoming_cond:
            if len(self._incoming) == 0:
                return

            self._ready.extend(self._incoming)
            self._incoming.clear()


class AsyncioScheduler(Scheduler):
    """
    Scheduler that runs everything on an asyncio event loop.
    """

    _loop: asyncio.AbstractEventLoop

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        """
        Constructor.

        Args:
            loop: The event loop to use. If None, the currently running loop is used (an error is thrown if there is
                none).
        """
        self._loop = loop if loop is not None else asyncio.get_running_loop()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    def call_soon(self, callback: Callable[..., Any], *args):
        self._loop.call_soon(callback, *args)

    def call_soon_threadsafe(self, callback: Callable[..., Any], *args):
        self._loop.call_soon_threadsafe(callback, *args)

    def call_later(self, seconds: float, callback: Callable[..., Any], *args) -> TimerHandle:
        return self._loop.call_later(seconds, callback, *args)

    def time(self) -> float:
        return self._loop.time()


_default_scheduler: Optional[Scheduler] = None


def set_default_scheduler(scheduler: Optional[Scheduler]):
    """
    Sets the scheduler used by futures and combinators that are not given one explicitly. Pass None to go back to the
    fallback behavior (see `get_default_scheduler`).
    """
    global _default_scheduler
    _default_scheduler = scheduler


def get_default_scheduler() -> Scheduler:
    """
    Gets the scheduler set via `set_default_scheduler`, or, if there is none, an `AsyncioScheduler` for the currently
    running event loop.

    Raises:
        SchedulerNotAvailableError: If there is no default scheduler and no running event loop
    """
    if _default_scheduler is not None:
        return _default_scheduler

    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        raise SchedulerNotAvailableError() from None

    return AsyncioScheduler(loop)


def as_asyncio_future(future: 'Future', loop: Optional[asyncio.AbstractEventLoop] = None) -> asyncio.Future:
    """
    Wraps a `Future` in an asyncio future, so that it can be awaited in async code::

        value = await as_asyncio_future(bridge.run(compute, 42))

    The result is delivered through `call_soon_threadsafe`, so this works even if the future lives on a scheduler other
    than the event loop. Canceling the asyncio future does not affect the wrapped future in any way.
    """
    loop = loop if loop is not None else asyncio.get_running_loop()
    aio_future = loop.create_future()

    def _set_result(value):
        if not aio_future.done():
            aio_future.set_result(value)

    def _set_exception(reason):
        if not aio_future.done():
            aio_future.set_exception(reason)

    future.then(
        lambda value: loop.call_soon_threadsafe(_set_result, value),
        lambda reason: loop.call_soon_threadsafe(_set_exception, reason),
    )

    return aio_future
