"""
Running work in other threads or processes, with the outcome delivered as a `Future`.

See `WorkerBridge` for details.
"""

from creatartis.base.parallel.bridge import WorkerBridge, WorkerBridgeConfig, WorkerKind
from creatartis.base.parallel.wire import TaskMessage, CompletionMessage, CompletionStatus, callable_reference, \
    resolve_callable_reference, describe_exception
from creatartis.base.parallel.worker import execute_task
