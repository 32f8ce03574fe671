import asyncio
import gc
import unittest

from creatartis.base.errors import InvalidFutureStateError, SchedulerNotAvailableError
from creatartis.base.future import Future, FutureState
from creatartis.base.scheduling import ManualScheduler, set_default_scheduler


class FutureTestBase(unittest.TestCase):
    def setUp(self):
        self.scheduler = ManualScheduler()

    def new_future(self) -> Future:
        return Future(self.scheduler)


class FutureStateTest(FutureTestBase):
    def test_starts_pending(self):
        future = self.new_future()

        self.assertEqual(future.state, FutureState.PENDING)
        self.assertTrue(future.is_pending())
        self.assertFalse(future.is_fulfilled())
        self.assertFalse(future.is_rejected())

    def test_fulfill(self):
        future = self.new_future()

        self.assertTrue(future.fulfill(42))
        self.assertTrue(future.is_fulfilled())
        self.assertEqual(future.value, 42)

    def test_fail(self):
        future = self.new_future()
        error = ValueError("boom")

        self.assertTrue(future.fail(error))
        self.assertTrue(future.is_rejected())
        self.assertIs(future.reason, error)

    def test_settles_only_once(self):
        future = self.new_future()

        self.assertTrue(future.fulfill(1))
        self.assertFalse(future.fulfill(2))
        self.assertFalse(future.fail(ValueError()))
        self.assertFalse(future.resolve(3))

        self.assertEqual(future.value, 1)

    def test_value_of_pending_future(self):
        with self.assertRaises(InvalidFutureStateError):
            _ = self.new_future().value

    def test_reason_of_fulfilled_future(self):
        with self.assertRaises(InvalidFutureStateError):
            _ = Future.fulfilled(1, self.scheduler).reason

    def test_fail_requires_exception(self):
        with self.assertRaises(TypeError):
            self.new_future().fail("not an exception")

    def test_factories(self):
        self.assertEqual(Future.fulfilled('x', self.scheduler).value, 'x')
        self.assertIsInstance(Future.rejected(KeyError('k'), self.scheduler).reason, KeyError)


class ContinuationsTest(FutureTestBase):
    def test_continuations_are_never_synchronous(self):
        calls = []
        future = Future.fulfilled(1, self.scheduler)

        future.then(calls.append)
        self.assertEqual(calls, [])

        self.scheduler.run_until_idle()
        self.assertEqual(calls, [1])

    def test_registration_order(self):
        calls = []
        future = self.new_future()

        for index in range(5):
            future.then(lambda value, index=index: calls.append(index))

        future.fulfill(None)
        self.assertEqual(calls, [])

        self.scheduler.run_until_idle()
        self.assertEqual(calls, [0, 1, 2, 3, 4])

    def test_repeated_settlement_does_not_call_continuations_again(self):
        calls = []
        future = self.new_future()
        future.then(calls.append, calls.append)

        future.fulfill('first')
        future.fulfill('second')
        future.fail(ValueError())
        self.scheduler.run_until_idle()

        self.assertEqual(calls, ['first'])

    def test_chaining_values(self):
        future = self.new_future()
        result = future.then(lambda x: x + 1).then(lambda x: x * 10)

        future.fulfill(1)
        self.scheduler.run_until_idle()

        self.assertEqual(result.value, 20)

    def test_continuation_returning_future_is_followed(self):
        inner = self.new_future()
        outer = Future.fulfilled(1, self.scheduler).then(lambda _: inner)

        self.scheduler.run_until_idle()
        self.assertTrue(outer.is_pending())

        inner.fulfill('inner value')
        self.scheduler.run_until_idle()
        self.assertEqual(outer.value, 'inner value')

    def test_raising_continuation_rejects_dependent(self):
        error = RuntimeError("in continuation")

        def _raise(_):
            raise error

        result = Future.fulfilled(1, self.scheduler).then(_raise)
        self.scheduler.run_until_idle()

        self.assertIs(result.reason, error)

    def test_failure_propagates_until_handled(self):
        error = ValueError("original")
        calls = []

        future = self.new_future()
        result = future \
            .then(lambda x: calls.append('skipped 1')) \
            .then(lambda x: calls.append('skipped 2')) \
            .catch(lambda reason: f"handled {reason}") \
            .then(lambda x: x.upper())

        future.fail(error)
        self.scheduler.run_until_idle()

        self.assertEqual(calls, [])
        self.assertEqual(result.value, "HANDLED ORIGINAL")

    def test_always_passes_outcome_through(self):
        calls = []

        fulfilled = Future.fulfilled(5, self.scheduler).always(lambda: calls.append('a'))
        rejected = Future.rejected(KeyError('k'), self.scheduler).always(lambda: calls.append('b'))
        self.scheduler.run_until_idle()

        self.assertEqual(calls, ['a', 'b'])
        self.assertEqual(fulfilled.value, 5)
        self.assertIsInstance(rejected.reason, KeyError)

    def test_always_passes_non_exception_failures_through(self):
        calls = []
        future = self.new_future()
        result = future.always(lambda: calls.append('cleanup'))

        future.fail(asyncio.CancelledError())
        self.scheduler.run_until_idle()

        self.assertEqual(calls, ['cleanup'])
        self.assertIsInstance(result.reason, asyncio.CancelledError)

    def test_done(self):
        result = Future.fulfilled(2, self.scheduler).done(lambda x: x * x)
        self.scheduler.run_until_idle()

        self.assertEqual(result.value, 4)

    def test_pass_to(self):
        source = self.new_future()
        target = self.new_future()

        self.assertIs(source.pass_to(target), target)

        source.fail(ValueError('passed'))
        self.scheduler.run_until_idle()

        self.assertEqual(str(target.reason), 'passed')

    def test_resolve_adopts_future_state(self):
        inner = self.new_future()
        outer = self.new_future()

        self.assertTrue(outer.resolve(inner))
        self.assertTrue(outer.is_pending())

        inner.fail(OSError('inner failure'))
        self.scheduler.run_until_idle()

        self.assertIsInstance(outer.reason, OSError)

    def test_resolve_with_itself(self):
        future = self.new_future()
        future.resolve(future)

        self.assertIsInstance(future.reason, TypeError)


class UnhandledRejectionTest(FutureTestBase):
    def test_unobserved_rejection_is_logged(self):
        with self.assertLogs('creatartis.base.future', level='ERROR') as logs:
            future = Future.rejected(ValueError('nobody cares'), self.scheduler)
            del future
            gc.collect()

        self.assertIn('Unhandled rejection', logs.output[0])

    def test_handled_rejection_is_not_logged(self):
        with self.assertLogs('creatartis.base.future', level='DEBUG') as logs:
            future = Future.rejected(ValueError('handled'), self.scheduler)
            future.catch(lambda reason: None)
            self.scheduler.run_until_idle()
            del future
            gc.collect()

        self.assertFalse(any('Unhandled rejection' in line for line in logs.output))


class DefaultSchedulerTest(unittest.TestCase):
    def tearDown(self):
        set_default_scheduler(None)

    def test_no_scheduler_available(self):
        with self.assertRaises(SchedulerNotAvailableError):
            Future()

    def test_explicit_default(self):
        scheduler = ManualScheduler()
        set_default_scheduler(scheduler)

        self.assertIs(Future().scheduler, scheduler)

    def test_dependents_inherit_scheduler(self):
        scheduler = ManualScheduler()

        self.assertIs(Future(scheduler).then(print).scheduler, scheduler)
