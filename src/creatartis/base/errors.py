"""
Exceptions representing the various ways in which a future or a worker task can fail.
"""

from enum import Enum
from typing import Optional


class ErrorCode(Enum):
    INVALID_STATE = 'invalid-state'
    NO_SCHEDULER = 'no-scheduler'
    TIMEOUT = 'timeout'
    NO_CANDIDATES = 'no-candidates'
    TASK_FAILED = 'task-failed'
    UNKNOWN_TASK = 'unknown-task'
    WORKER_CRASHED = 'worker-crashed'
    PROTOCOL_ERROR = 'protocol-error'


class FutureError(Exception):
    _code: ErrorCode

    def __init__(self, code: ErrorCode, message: str):
        self._code = code
        super().__init__(message)

    @property
    def code(self) -> ErrorCode:
        return self._code


class InvalidFutureStateError(FutureError):
    def __init__(self, message: str):
        super().__init__(ErrorCode.INVALID_STATE, message)


class SchedulerNotAvailableError(FutureError):
    def __init__(self):
        super().__init__(
            ErrorCode.NO_SCHEDULER,
            "No scheduler was given, no default scheduler is set and there is no running asyncio event loop"
        )


class TimeoutFailure(FutureError):
    """
    Reason with which `timeout()` rejects when its timer fires before the wrapped future settles. Note that this is
    distinct from the built-in `TimeoutError`, which the wrapped operation itself might fail with.
    """
    seconds: float

    def __init__(self, seconds: float):
        self.seconds = seconds

        super().__init__(ErrorCode.TIMEOUT, f"Timed out after {seconds}s")


class NoCandidatesError(FutureError):
    def __init__(self):
        super().__init__(ErrorCode.NO_CANDIDATES, "Cannot race an empty collection of futures")


class WorkerError(FutureError):
    """
    Base class for failures reported by the worker bridge. All of them refer to a specific task.
    """
    task_id: int

    def __init__(self, code: ErrorCode, task_id: int, message: str):
        self.task_id = task_id

        super().__init__(code, message)


class TaskFailedError(WorkerError):
    """
    The task raised an exception inside the worker. Since the original exception object cannot cross the context
    boundary, only its description is available: the class name, the formatted message and the formatted traceback.
    """
    error_type: str
    error_message: str
    error_traceback: Optional[str]

    def __init__(self, task_id: int, error_type: str, error_message: str, error_traceback: Optional[str] = None):
        self.error_type = error_type
        self.error_message = error_message
        self.error_traceback = error_traceback

        super().__init__(ErrorCode.TASK_FAILED, task_id, f"Task {task_id} failed in worker: {error_message}")


class UnknownTaskError(WorkerError):
    def __init__(self, task_id: int):
        super().__init__(
            ErrorCode.UNKNOWN_TASK, task_id, f"Received completion for unknown or already settled task {task_id}"
        )


class WorkerCrashedError(WorkerError):
    detail: str

    def __init__(self, task_id: int, detail: str):
        self.detail = detail

        super().__init__(
            ErrorCode.WORKER_CRASHED, task_id, f"Worker terminated before completing task {task_id}: {detail}"
        )


class ProtocolError(FutureError):
    def __init__(self, message: str):
        super().__init__(ErrorCode.PROTOCOL_ERROR, message)


class StopSequence(Exception):
    """
    Raise this from a `sequence()` step (or fail the future returned by the step with it) in order to end the sequence
    early. The sequence then fulfills with the results gathered so far, as if the input had been exhausted.
    """
