"""
Functions that build new futures out of existing futures or plain callables.

None of these functions modifies its inputs: each returns a fresh future whose settlement is derived from them. When an
input future "loses" (e.g. the slower candidates in `any_of()`, or the wrapped future in a `timeout()` that fired), its
computation is not stopped in any way. It runs to completion in the background and its outcome is simply ignored.

All functions accept a `scheduler=` keyword argument. If it is not provided, the scheduler of the first input future is
used, or the default scheduler if there is no input future.
"""

import logging
import math
import random

from typing import Callable, Iterable, Any, Optional, List, TypeVar

from creatartis.base.errors import TimeoutFailure, NoCandidatesError, StopSequence
from creatartis.base.future import Future
from creatartis.base.scheduling import Scheduler, get_default_scheduler


T = TypeVar('T')
R = TypeVar('R')

DelayPolicy = Callable[[int], float]

LOG = logging.getLogger(__name__)


def when(value: Any, scheduler: Optional[Scheduler] = None) -> Future:
    """
    Returns `value` unchanged if it is already a future, or a future fulfilled with `value` otherwise.
    """
    if isinstance(value, Future):
        return value

    return Future.fulfilled(value, _pick_scheduler(scheduler))


def invoke(fn: Callable[..., Any], *args, scheduler_: Optional[Scheduler] = None, **kwargs) -> Future:
    """
    Calls a function and returns its result as a future, regardless of whether the function returns a future, returns
    a plain value, or raises an exception (which results in a rejected future).

    This makes it possible to treat synchronous and asynchronous code uniformly. Note that the function itself is
    called right away, synchronously.

    Args:
        fn: The function to call
        *args: Positional arguments for the function
        scheduler_: The scheduler for the resulting future (the underscore is there to avoid clashing with any keyword
            argument intended for `fn`)
        **kwargs: Keyword arguments for the function
    """
    scheduler = _pick_scheduler(scheduler_)

    try:
        result = fn(*args, **kwargs)
    except Exception as error:
        return Future.rejected(error, scheduler)

    return when(result, scheduler)


def all_of(futures: Iterable[Any], scheduler: Optional[Scheduler] = None) -> Future:
    """
    Waits for several futures at once.

    Args:
        futures: The futures to wait for. Plain values are accepted too and treated as fulfilled futures.

    Returns:
        A future that fulfills with a list of the values of all the inputs, in the same order as the inputs (not the
        order in which they settled). If any input fails, the result fails immediately with the same reason, and the
        values of the other inputs are discarded. An empty input produces a future fulfilled with an empty list.
    """
    futures = list(futures)
    scheduler = _pick_scheduler(scheduler, futures)
    result = Future(scheduler)

    if len(futures) == 0:
        result.fulfill([])
        return result

    values: List[Any] = [None] * len(futures)
    remaining = len(futures)

    def _make_on_fulfilled(index: int):
        def _on_fulfilled(value):
            nonlocal remaining

            values[index] = value
            remaining -= 1
            if remaining == 0:
                result.fulfill(values)

        return _on_fulfilled

    for index, future in enumerate(futures):
        when(future, scheduler).then(_make_on_fulfilled(index), result.fail)

    return result


def any_of(futures: Iterable[Any], scheduler: Optional[Scheduler] = None) -> Future:
    """
    Races several futures against each other.

    Returns:
        A future that settles in the same way as the first input to settle, whether successfully or not. The other
        inputs are ignored from then on. If there are no inputs, the result fails with `NoCandidatesError`.
    """
    futures = list(futures)
    scheduler = _pick_scheduler(scheduler, futures)
    result = Future(scheduler)

    if len(futures) == 0:
        result.fail(NoCandidatesError())
        return result

    for future in futures:
        when(future, scheduler).then(result.fulfill, result.fail)

    return result


def sequence(
    items: Iterable[T], step: Callable[[T], Any], scheduler: Optional[Scheduler] = None
) -> Future:
    """
    Applies an asynchronous step to each item of a (possibly lazy, or even infinite) iterable, strictly one item at a
    time: the step is only called on an item after the future returned for the previous item has been fulfilled.

    The step may end the sequence early by raising `StopSequence` (or returning a future that fails with it). This
    does not count as a failure.

    Returns:
        A future that fulfills with the list of step results, in order, once the items are exhausted or the sequence is
        stopped. It fails as soon as a step fails (or the iterable itself raises), and no further items are processed.
    """
    scheduler = _pick_scheduler(scheduler)
    iterator = iter(items)
    results: List[Any] = []
    result = Future(scheduler)

    def _on_step_done(value):
        results.append(value)
        _next_step()

    def _on_step_failed(reason):
        if isinstance(reason, StopSequence):
            result.fulfill(results)
        else:
            result.fail(reason)

    def _next_step():
        try:
            item = next(iterator)
        except StopIteration:
            result.fulfill(results)
            return
        except Exception as error:
            result.fail(error)
            return

        invoke(step, item, scheduler_=scheduler).then(_on_step_done, _on_step_failed)

    _next_step()

    return result


def retry(
    action: Callable[[], Any], attempts: int, delay_policy: Optional[DelayPolicy] = None,
    scheduler: Optional[Scheduler] = None
) -> Future:
    """
    Calls an action (which may return a future) until it succeeds, for at most `attempts` times.

    Args:
        action: The action to perform. It is called without arguments.
        attempts: The maximum number of times the action will be called. Must be at least 1.
        delay_policy: Decides how long to wait before each retry. It receives the number of failed attempts so far
            (starting with 1) and returns a delay in seconds. See `fixed_delay()` and `exponential_backoff()`. If None,
            retries happen immediately. If the policy itself raises, the result fails with that exception.

    Returns:
        A future that fulfills with the value of the first successful attempt, or fails with the reason of the last
        attempt if all of them fail.
    """
    if attempts < 1:
        raise ValueError(f"The number of attempts must be at least 1, got {attempts}")

    scheduler = _pick_scheduler(scheduler)
    delay_policy = delay_policy if delay_policy is not None else no_delay()
    result = Future(scheduler)
    failures = 0

    def _on_failure(reason):
        nonlocal failures

        failures += 1
        if failures >= attempts:
            result.fail(reason)
            return

        try:
            wait = delay_policy(failures)
        except Exception as error:
            result.fail(error)
            return

        LOG.debug("Attempt %d/%d failed with %r, retrying in %ss", failures, attempts, reason, wait)

        delay(wait, scheduler=scheduler).then(lambda _: _attempt())

    def _attempt():
        invoke(action, scheduler_=scheduler).then(result.fulfill, _on_failure)

    _attempt()

    return result


def delay(seconds: float, value: Any = None, scheduler: Optional[Scheduler] = None) -> Future:
    """
    Returns a future that fulfills with `value` after the given number of seconds.
    """
    result = Future(_pick_scheduler(scheduler))
    result.scheduler.call_later(seconds, result.fulfill, value)

    return result


def timeout(future: Future, seconds: float, scheduler: Optional[Scheduler] = None) -> Future:
    """
    Races a future against a timer.

    Returns:
        A future that settles like `future` if it settles within the given number of seconds, or fails with
        `TimeoutFailure` otherwise. In the latter case, the eventual outcome of `future` is ignored (the underlying
        computation is not stopped).
    """
    scheduler = _pick_scheduler(scheduler, [future])
    result = Future(scheduler)

    timer = scheduler.call_later(seconds, result.fail, TimeoutFailure(seconds))

    def _on_fulfilled(value):
        timer.cancel()
        result.fulfill(value)

    def _on_rejected(reason):
        timer.cancel()
        result.fail(reason)

    when(future, scheduler).then(_on_fulfilled, _on_rejected)

    return result


def do_while(
    action: Callable[[Any], Any], condition: Callable[[Any], bool], initial: Any = None,
    scheduler: Optional[Scheduler] = None
) -> Future:
    """
    Asynchronous equivalent of a do-while loop. The action is called with the value produced by its previous call
    (`initial` for the first call), and then the condition is checked on the new value. The loop ends when the
    condition returns false.

    Returns:
        A future that fulfills with the last value produced by the action, or fails as soon as the action or the
        condition fails.
    """
    scheduler = _pick_scheduler(scheduler)
    result = Future(scheduler)

    def _on_value(value):
        if condition(value):
            scheduler.call_soon(_iterate, value)
        else:
            result.fulfill(value)

    def _iterate(previous):
        invoke(action, previous, scheduler_=scheduler).then(_on_value).then(None, result.fail)

    _iterate(initial)

    return result


def while_do(
    condition: Callable[[Any], bool], action: Callable[[Any], Any], initial: Any = None,
    scheduler: Optional[Scheduler] = None
) -> Future:
    """
    Asynchronous equivalent of a while loop: like `do_while()`, but the condition is checked (on `initial`) before the
    first call of the action, which may thus never be called at all.
    """
    scheduler = _pick_scheduler(scheduler)

    try:
        go_on = condition(initial)
    except Exception as error:
        return Future.rejected(error, scheduler)

    if not go_on:
        return Future.fulfilled(initial, scheduler)

    return do_while(action, condition, initial, scheduler=scheduler)


def no_delay() -> DelayPolicy:
    return lambda failures: 0.0


def fixed_delay(seconds: float) -> DelayPolicy:
    """
    Delay policy for `retry()` that always waits the same amount of time.
    """
    return lambda failures: seconds


def exponential_backoff(
    initial: float, factor: float = 2.0, maximum: Optional[float] = None, jitter: float = 0.0,
    rng: Optional[random.Random] = None
) -> DelayPolicy:
    """
    Delay policy for `retry()` in which the delay grows exponentially with each failure.

    Args:
        initial: The delay after the first failure, in seconds
        factor: The delay is multiplied by this after every subsequent failure
        maximum: If not None, the delay (before jitter) never exceeds this value
        jitter: A fraction (e.g. 0.1 for 10%) by which the delay is randomly increased or decreased, so that multiple
            clients retrying at the same time do not stay in lockstep
        rng: The random number generator used for the jitter. Defaults to a freshly seeded `random.Random`.
    """
    rng = rng if rng is not None else random.Random()

    def _policy(failures: int) -> float:
        try:
            wait = initial * (factor ** (failures - 1))
        except OverflowError:
            wait = math.inf

        if maximum is not None:
            wait = min(wait, maximum)
        if jitter > 0:
            wait *= 1.0 + rng.uniform(-jitter, jitter)

        return max(0.0, wait)

    return _policy


def _pick_scheduler(scheduler: Optional[Scheduler], futures: Iterable[Any] = ()) -> Scheduler:
    if scheduler is not None:
        return scheduler

    for future in futures:
        if isinstance(future, Future):
            return future.scheduler

    return get_default_scheduler()
