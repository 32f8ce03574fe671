import functools
import itertools
import logging
import multiprocessing

from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor
from concurrent.futures import Future as ConcurrentFuture
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Union

from atmfjstc.lib.error_utils import format_exception_head

from creatartis.base.errors import ProtocolError, TaskFailedError, UnknownTaskError, WorkerCrashedError
from creatartis.base.future import Future
from creatartis.base.parallel.wire import TaskMessage, CompletionMessage, CompletionStatus, callable_reference
from creatartis.base.parallel.worker import execute_task
from creatartis.base.scheduling import Scheduler, get_default_scheduler


LOG = logging.getLogger(__name__)


class WorkerKind(Enum):
    PROCESS = 'process'
    THREAD = 'thread'


@dataclass(frozen=True)
class WorkerBridgeConfig:
    """
    Configuration for the pool of workers created by a `WorkerBridge`.
    """

    kind: WorkerKind = WorkerKind.PROCESS
    "Whether tasks run in separate processes (true parallelism) or separate threads (for I/O-bound work)."

    max_workers: Optional[int] = None
    """
    The number of workers in the pool. If None, the default of the underlying `concurrent.futures` executor is used.
    Tasks in excess of this number are queued by the executor, not refused.
    """

    mp_context: Optional[str] = None
    "For process workers, the `multiprocessing` start method ('fork', 'spawn', 'forkserver'). None for the default."

    def create_executor(self) -> Executor:
        if self.kind == WorkerKind.THREAD:
            return ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix='creatartis-worker')

        return ProcessPoolExecutor(
            max_workers=self.max_workers,
            mp_context=multiprocessing.get_context(self.mp_context) if self.mp_context is not None else None,
        )


class WorkerBridge:
    """
    Runs functions in a pool of worker processes (or threads) and delivers their outcomes as futures.

    Usage::

        with WorkerBridge(scheduler) as bridge:
            future = bridge.run(compute_stats, 'data.csv', bins=10)
            future.then(show_stats, report_error)

    The function must be referable by name from the worker (i.e. a module-level function, not a lambda or a closure)
    and its arguments and return value must be JSON-serializable, since all communication with the worker happens
    through JSON messages (see the `wire` module). The outcome is then reported as follows:

    - A successful result fulfills the future with the (JSON round-tripped) return value
    - An exception raised by the function fails the future with `TaskFailedError`, which describes the original
      exception, as the exception object itself cannot be transferred
    - If the worker dies or the bridge is shut down before the task completes, the future fails with
      `WorkerCrashedError`
    - If the task cannot even be submitted (e.g. unserializable arguments), the future fails right away with the
      corresponding error. A malformed callable reference fails it with `ProtocolError`

    Results cross back into the caller's context exclusively through `Scheduler.call_soon_threadsafe`, so futures are
    always settled on their scheduler, never directly from a worker thread.

    The bridge imposes no limit on the number of tasks in flight. Callers that need backpressure can watch the
    `pending` count. Note also that tasks cannot be canceled: if a caller stops waiting for a future (e.g. due to a
    `timeout()`), the task still runs to completion and its result is discarded.
    """

    _scheduler: Scheduler
    _executor: Executor
    _owns_executor: bool
    _pending: Dict[int, Future]
    _closed: bool = False

    def __init__(
        self, scheduler: Optional[Scheduler] = None, config: Optional[WorkerBridgeConfig] = None,
        executor: Optional[Executor] = None,
    ):
        """
        Constructor.

        Args:
            scheduler: The scheduler on which the returned futures will be settled. If None, the default scheduler is
                used.
            config: Configuration for the worker pool created by the bridge. Ignored if `executor` is provided.
            executor: An existing `concurrent.futures` executor to submit tasks to. The bridge will not shut it down.
        """
        self._scheduler = scheduler if scheduler is not None else get_default_scheduler()

        if executor is not None:
            self._executor = executor
            self._owns_executor = False
        else:
            self._executor = (config if config is not None else WorkerBridgeConfig()).create_executor()
            self._owns_executor = True

        self._pending = dict()
        self._task_ids = itertools.count(1)

    @property
    def pending(self) -> int:
        """
        The number of tasks dispatched whose outcome has not been received yet.
        """
        return len(self._pending)

    def run(self, fn: Union[Callable, str], *args, **kwargs) -> Future:
        """
        Runs a function in a worker.

        Args:
            fn: The function to run, or a reference to it in ``module:qualified.name`` format
            *args: Positional arguments (must be JSON-serializable)
            **kwargs: Keyword arguments (must be JSON-serializable)

        Returns:
            A pending future for the outcome of the function (see the class description)
        """
        try:
            reference = fn if isinstance(fn, str) else callable_reference(fn)
        except ValueError as error:
            return Future.rejected(error, self._scheduler)

        return self.run_task(TaskMessage(next(self._task_ids), reference, args, kwargs))

    def run_task(self, task: TaskMessage) -> Future:
        """
        Dispatches an explicitly built task message. The task ID must not collide with any task currently pending.
        """
        future = Future(self._scheduler)

        try:
            message = task.encode()
        except (TypeError, ValueError) as error:
            future.fail(error)
            return future

        try:
            TaskMessage.decode(message)
        except ProtocolError as error:
            future.fail(error)
            return future

        if task.task_id in self._pending:
            future.fail(ProtocolError(f"Task ID {task.task_id} is already in use"))
            return future

        if self._closed:
            future.fail(WorkerCrashedError(task.task_id, "the worker bridge has been shut down"))
            return future

        try:
            concurrent_future = self._executor.submit(execute_task, message)
        except Exception as error:
            future.fail(WorkerCrashedError(task.task_id, format_exception_head(error)))
            return future

        self._pending[task.task_id] = future
        LOG.debug("Dispatched task %d (%s)", task.task_id, task.callable_ref)

        concurrent_future.add_done_callback(functools.partial(self._on_worker_done, task.task_id))

        return future

    def deliver_completion(self, message: str):
        """
        Settles the future corresponding to a JSON completion message. Must be called in the scheduler's context.

        This is normally called only by the bridge itself, but it can be used to feed messages from other sources.
        Malformed messages and messages for unknown or already settled tasks are logged and discarded.
        """
        try:
            completion = CompletionMessage.decode(message)
        except ProtocolError as error:
            LOG.error("Discarding malformed completion message: %s", error)
            return

        future = self._pending.pop(completion.task_id, None)
        if future is None:
            LOG.warning("Discarding completion message: %s", UnknownTaskError(completion.task_id))
            return

        if completion.status == CompletionStatus.SUCCESS:
            future.fulfill(completion.payload)
        else:
            payload = completion.payload
            future.fail(TaskFailedError(
                completion.task_id, payload['type'], payload['message'], payload.get('traceback')
            ))

    def shutdown(self, wait: bool = True):
        """
        Stops accepting tasks and shuts down the worker pool (if it was created by the bridge). Tasks that have not
        started yet are canceled and their futures fail with `WorkerCrashedError`, on a later turn of the scheduler.

        Args:
            wait: Whether to wait for the tasks that are already running to finish
        """
        self._closed = True

        if self._owns_executor:
            self._executor.shutdown(wait=wait, cancel_futures=True)

    def __enter__(self) -> 'WorkerBridge':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()

    def _on_worker_done(self, task_id: int, concurrent_future: ConcurrentFuture):
        # Called in a thread of the executor, so anything we do must go through call_soon_threadsafe
        if concurrent_future.cancelled():
            self._post(self._on_worker_crashed, task_id, "the task was canceled before it could start")
            return

        error = concurrent_future.exception()
        if error is not None:
            self._post(self._on_worker_crashed, task_id, format_exception_head(error))
            return

        self._post(self.deliver_completion, concurrent_future.result())

    def _post(self, callback: Callable, *args):
        try:
            self._scheduler.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            LOG.warning("Could not deliver outcome of a worker task, the scheduler is no longer running")

    def _on_worker_crashed(self, task_id: int, detail: str):
        future = self._pending.pop(task_id, None)
        if future is None:
            LOG.warning("Discarding crash report: %s", UnknownTaskError(task_id))
            return

        LOG.warning("Worker failed while running task %d: %s", task_id, detail)
        future.fail(WorkerCrashedError(task_id, detail))
