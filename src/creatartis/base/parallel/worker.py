"""
Code that runs inside the worker context. It is kept separate from the bridge so that a worker process only needs to
import what it actually uses.
"""

import logging

from creatartis.base.parallel.wire import TaskMessage, CompletionMessage, resolve_callable_reference


LOG = logging.getLogger(__name__)


def execute_task(message: str) -> str:
    """
    Executes the task described by a JSON task message and returns the JSON completion message.

    Any exception raised by the task (including failing to find the function, or producing a result that is not
    JSON-serializable) is reported as a failure completion rather than raised. Only a malformed task message makes this
    function raise, since there is no task ID to report the failure under.
    """
    task = TaskMessage.decode(message)

    try:
        fn = resolve_callable_reference(task.callable_ref)
        return CompletionMessage.success(task.task_id, fn(*task.args, **task.kwargs)).encode()
    except Exception as error:
        LOG.debug("Task %d (%s) failed", task.task_id, task.callable_ref, exc_info=True)
        return CompletionMessage.failure(task.task_id, error).encode()
