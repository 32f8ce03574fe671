"""
A callback-based future: a single-assignment container for a value that will be available later, or for the reason
why it never will be.

A `Future` starts out pending and is settled at most once, either by `fulfill()`-ing it with a value or by `fail()`-ing
it with an exception. Code interested in the outcome registers continuations with `then()`, which returns a new,
dependent future that settles with whatever the continuation returns (or raises). Failures propagate down a chain of
`then()` calls until a failure continuation handles them, much like exceptions propagate up a call stack::

    fetch_config(path) \\
        .then(parse_config) \\
        .then(apply_config, lambda error: apply_config(DEFAULT_CONFIG))

Continuations always run on a later turn of the future's scheduler, never synchronously from within `then()` or
`fulfill()`. Those registered on the same future run in the order in which they were registered.

Settling an already settled future is silently ignored (the settling method returns False). This is what allows racing
combinators such as `any_of()` and `timeout()` to let the losing branches settle into the void.

There is no cancellation: a future only represents the *outcome* of a computation, not the computation itself. Code that
"gives up" on a future simply stops listening to it.
"""

import logging

from enum import Enum
from typing import Generic, TypeVar, Callable, Optional, Any, List, Tuple

from creatartis.base.errors import InvalidFutureStateError
from creatartis.base.scheduling import Scheduler, get_default_scheduler


T = TypeVar('T')
R = TypeVar('R')

LOG = logging.getLogger(__name__)


class FutureState(Enum):
    PENDING = 'pending'
    FULFILLED = 'fulfilled'
    REJECTED = 'rejected'


OnFulfilled = Callable[[Any], Any]
OnRejected = Callable[[BaseException], Any]

_Continuation = Tuple[Optional[OnFulfilled], Optional[OnRejected], 'Future']


class Future(Generic[T]):
    _scheduler: Scheduler
    _state: FutureState = FutureState.PENDING
    _value: Any = None
    _reason: Optional[BaseException] = None
    _continuations: Optional[List[_Continuation]]
    _observed: bool = False

    def __init__(self, scheduler: Optional[Scheduler] = None):
        """
        Creates a pending future.

        Args:
            scheduler: The scheduler on which continuations will run. If None, the default scheduler is used (see
                `get_default_scheduler`).
        """
        self._scheduler = scheduler if scheduler is not None else get_default_scheduler()
        self._continuations = []

    @classmethod
    def fulfilled(cls, value: T, scheduler: Optional[Scheduler] = None) -> 'Future[T]':
        future = cls(scheduler)
        future.fulfill(value)
        return future

    @classmethod
    def rejected(cls, reason: BaseException, scheduler: Optional[Scheduler] = None) -> 'Future':
        future = cls(scheduler)
        future.fail(reason)
        return future

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    @property
    def state(self) -> FutureState:
        return self._state

    def is_pending(self) -> bool:
        return self._state == FutureState.PENDING

    def is_fulfilled(self) -> bool:
        return self._state == FutureState.FULFILLED

    def is_rejected(self) -> bool:
        return self._state == FutureState.REJECTED

    @property
    def value(self) -> T:
        """
        The value of a fulfilled future.

        Raises:
            InvalidFutureStateError: If the future is not fulfilled
        """
        if self._state != FutureState.FULFILLED:
            raise InvalidFutureStateError(f"Cannot get the value of a {self._state.value} future")

        return self._value

    @property
    def reason(self) -> BaseException:
        """
        The reason why a rejected future failed. Reading it marks the rejection as handled.

        Raises:
            InvalidFutureStateError: If the future is not rejected
        """
        if self._state != FutureState.REJECTED:
            raise InvalidFutureStateError(f"Cannot get the failure reason of a {self._state.value} future")

        self._observed = True
        return self._reason

    def fulfill(self, value: T) -> bool:
        """
        Settles the future successfully with the given value. The value is stored as-is, even if it is itself a future
        (use `resolve()` to follow it instead).

        Returns:
            True if the future was settled by this call, False if it had already been settled (in which case nothing
            happens)
        """
        if self._state != FutureState.PENDING:
            LOG.debug("Ignoring attempt to fulfill %r", self)
            return False

        self._state = FutureState.FULFILLED
        self._value = value
        self._dispatch_all()

        return True

    def fail(self, reason: BaseException) -> bool:
        """
        Settles the future with a failure.

        Args:
            reason: The exception describing the failure

        Returns:
            True if the future was settled by this call, False if it had already been settled (in which case nothing
            happens)
        """
        if not isinstance(reason, BaseException):
            raise TypeError(f"A future can only fail with an exception, got {reason!r}")

        if self._state != FutureState.PENDING:
            LOG.debug("Ignoring attempt to fail %r with %r", self, reason)
            return False

        self._state = FutureState.REJECTED
        self._reason = reason
        self._dispatch_all()

        return True

    def resolve(self, value: Any) -> bool:
        """
        Like `fulfill()`, except that if `value` is a future, this future will follow it and settle in the same way once
        it settles.

        Returns:
            False if the future was already settled, True otherwise (even if the settlement is deferred)
        """
        if self._state != FutureState.PENDING:
            LOG.debug("Ignoring attempt to resolve %r", self)
            return False

        if value is self:
            return self.fail(TypeError("A future cannot be resolved with itself"))

        if isinstance(value, Future):
            value.pass_to(self)
            return True

        return self.fulfill(value)

    def then(
        self, on_fulfilled: Optional[OnFulfilled] = None, on_rejected: Optional[OnRejected] = None
    ) -> 'Future':
        """
        Registers continuations to be called when this future settles.

        Args:
            on_fulfilled: Called with the value if this future is fulfilled. If None, the value passes through to the
                returned future unchanged.
            on_rejected: Called with the reason if this future fails. If None, the failure propagates to the returned
                future.

        Returns:
            A new future that settles with the return value of whichever continuation is called (following it if it is
            a future), or fails with the exception raised by the continuation.
        """
        dependent = Future(self._scheduler)

        self._observed = True

        if self._state == FutureState.PENDING:
            self._continuations.append((on_fulfilled, on_rejected, dependent))
        else:
            self._scheduler.call_soon(self._run_continuation, on_fulfilled, on_rejected, dependent)

        return dependent

    def done(self, on_fulfilled: OnFulfilled) -> 'Future':
        """
        Shortcut for ``then(on_fulfilled)``.
        """
        return self.then(on_fulfilled)

    def catch(self, on_rejected: OnRejected) -> 'Future':
        """
        Shortcut for ``then(None, on_rejected)``. The returned future fulfills with the value returned by the handler,
        so this is the equivalent of an ``except`` block.
        """
        return self.then(None, on_rejected)

    def always(self, callback: Callable[[], Any]) -> 'Future[T]':
        """
        Calls `callback` (without arguments) when the future settles, whichever way it does, like a ``finally`` block.
        The returned future settles exactly like this one, unless the callback itself raises.
        """
        def _on_fulfilled(value):
            callback()
            return value

        def _on_rejected(reason):
            callback()
            return Future.rejected(reason, self._scheduler)

        return self.then(_on_fulfilled, _on_rejected)

    def pass_to(self, other: 'Future') -> 'Future':
        """
        Settles another future in the same way as this one, once this one settles.

        Returns:
            The other future
        """
        self.then(other.fulfill, other.fail)
        return other

    def _dispatch_all(self):
        continuations, self._continuations = self._continuations, None

        if self._state == FutureState.REJECTED:
            LOG.debug("%r failed: %r", self, self._reason)
        else:
            LOG.debug("%r fulfilled", self)

        for on_fulfilled, on_rejected, dependent in continuations:
            self._scheduler.call_soon(self._run_continuation, on_fulfilled, on_rejected, dependent)

    def _run_continuation(
        self, on_fulfilled: Optional[OnFulfilled], on_rejected: Optional[OnRejected], dependent: 'Future'
    ):
        if self._state == FutureState.FULFILLED:
            handler, argument = on_fulfilled, self._value
        else:
            handler, argument = on_rejected, self._reason

        if handler is None:
            if self._state == FutureState.FULFILLED:
                dependent.fulfill(argument)
            else:
                dependent.fail(argument)
            return

        try:
            result = handler(argument)
        except Exception as error:
            dependent.fail(error)
            return

        dependent.resolve(result)

    def __repr__(self) -> str:
        if self._state == FutureState.FULFILLED:
            return f"<Future {id(self):#x} fulfilled value={self._value!r}>"
        if self._state == FutureState.REJECTED:
            return f"<Future {id(self):#x} rejected reason={self._reason!r}>"

        return f"<Future {id(self):#x} pending>"

    def __del__(self):
        if self._state == FutureState.REJECTED and not self._observed:
            LOG.error(
                "Unhandled rejection in %r", self,
                exc_info=(self._reason.__class__, self._reason, self._reason.__traceback__)
            )
