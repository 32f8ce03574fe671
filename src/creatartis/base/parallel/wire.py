"""
The messages exchanged between the worker bridge and its workers.

Everything that crosses the boundary between the caller's context and a worker is JSON text: task arguments, results,
and failure descriptions alike. Nothing is shared, and no live object (in particular no exception object) ever crosses
over. Both kinds of message are validated against a JSON schema upon decoding.

A task message looks like::

    {"task_id": 12, "callable": "my_package.my_module:compute", "args": [1, 2], "kwargs": {"mode": "fast"}}

and the corresponding completion message looks like either of::

    {"task_id": 12, "status": "success", "payload": 42}
    {"task_id": 12, "status": "failure", "payload": {"type": "ValueError", "message": "ValueError: bad"}}
"""

import importlib
import json

import jsonschema

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Tuple

from atmfjstc.lib.error_utils import format_exception_head, format_exception_trace

from creatartis.base.errors import ProtocolError


JSONSchema = dict

_TASK_ID_SCHEMA: JSONSchema = dict(type='integer', minimum=0)

TASK_MESSAGE_SCHEMA: JSONSchema = dict(
    type='object',
    properties=dict(
        task_id=_TASK_ID_SCHEMA,
        callable=dict(type='string', pattern=r'^[\w.]+:[\w.]+$'),
        args=dict(type='array'),
        kwargs=dict(type='object'),
    ),
    required=['task_id', 'callable', 'args', 'kwargs'],
    additionalProperties=False,
)

FAILURE_PAYLOAD_SCHEMA: JSONSchema = dict(
    type='object',
    properties=dict(
        type=dict(type='string'),
        message=dict(type='string'),
        traceback=dict(type=['string', 'null']),
    ),
    required=['type', 'message'],
)

COMPLETION_MESSAGE_SCHEMA: JSONSchema = dict(
    oneOf=[
        dict(
            type='object',
            properties=dict(task_id=_TASK_ID_SCHEMA, status=dict(const='success'), payload=dict()),
            required=['task_id', 'status', 'payload'],
            additionalProperties=False,
        ),
        dict(
            type='object',
            properties=dict(task_id=_TASK_ID_SCHEMA, status=dict(const='failure'), payload=FAILURE_PAYLOAD_SCHEMA),
            required=['task_id', 'status', 'payload'],
            additionalProperties=False,
        ),
    ]
)


class CompletionStatus(Enum):
    SUCCESS = 'success'
    FAILURE = 'failure'


@dataclass(frozen=True)
class TaskMessage:
    """
    Describes a unit of work for a worker: which function to call, with which arguments, and under which identifier
    the result should be reported.
    """

    task_id: int
    "Correlates the eventual completion message with the future awaiting it."

    callable_ref: str
    "Reference to the function to call, in ``module:qualified.name`` format (see `callable_reference`)."

    args: Tuple[Any, ...] = ()
    kwargs: dict = field(default_factory=dict)

    def encode(self) -> str:
        """
        Raises:
            TypeError: If the arguments are not JSON-serializable
        """
        return json.dumps(dict(
            task_id=self.task_id,
            callable=self.callable_ref,
            args=list(self.args),
            kwargs=self.kwargs,
        ))

    @staticmethod
    def decode(text: str) -> 'TaskMessage':
        data = _decode_and_validate(text, TASK_MESSAGE_SCHEMA)

        return TaskMessage(
            task_id=data['task_id'],
            callable_ref=data['callable'],
            args=tuple(data['args']),
            kwargs=data['kwargs'],
        )


@dataclass(frozen=True)
class CompletionMessage:
    """
    The single message a worker sends back for each task. For failures, the payload is a description of the exception,
    as produced by `describe_exception`.
    """

    task_id: int
    status: CompletionStatus
    payload: Any = None

    @staticmethod
    def success(task_id: int, value: Any) -> 'CompletionMessage':
        return CompletionMessage(task_id, CompletionStatus.SUCCESS, value)

    @staticmethod
    def failure(task_id: int, error: BaseException) -> 'CompletionMessage':
        return CompletionMessage(task_id, CompletionStatus.FAILURE, describe_exception(error))

    def encode(self) -> str:
        """
        Raises:
            TypeError: If the payload is not JSON-serializable
        """
        return json.dumps(dict(task_id=self.task_id, status=self.status.value, payload=self.payload))

    @staticmethod
    def decode(text: str) -> 'CompletionMessage':
        data = _decode_and_validate(text, COMPLETION_MESSAGE_SCHEMA)

        return CompletionMessage(
            task_id=data['task_id'],
            status=CompletionStatus(data['status']),
            payload=data['payload'],
        )


def describe_exception(error: BaseException) -> dict:
    """
    Converts an exception to a JSON-compatible description that can be sent in place of the exception itself.
    """
    return dict(
        type=error.__class__.__name__,
        message=format_exception_head(error),
        traceback=format_exception_trace(error) or None,
    )


def callable_reference(fn: Callable) -> str:
    """
    Produces a reference by which a worker can find a function on its own, i.e. its module and qualified name.

    Raises:
        ValueError: If the function cannot be found by name, e.g. for lambdas and functions defined inside other
            functions
    """
    module = getattr(fn, '__module__', None)
    qualname = getattr(fn, '__qualname__', None)

    if (module is None) or (qualname is None) or ('<' in qualname):
        raise ValueError(
            f"{fn!r} cannot be referenced by name (lambdas and functions defined in a local scope are not supported)"
        )

    return f"{module}:{qualname}"


def resolve_callable_reference(reference: str) -> Callable:
    """
    The reverse of `callable_reference`: imports the module and looks up the function.
    """
    module_name, sep, qualname = reference.partition(':')
    if sep == '' or module_name == '' or qualname == '':
        raise ValueError(f"Invalid callable reference: {reference!r}")

    target: Any = importlib.import_module(module_name)
    for part in qualname.split('.'):
        target = getattr(target, part)

    if not callable(target):
        raise TypeError(f"{reference!r} does not refer to a callable")

    return target


def _decode_and_validate(text: str, schema: JSONSchema) -> Any:
    try:
        data = json.loads(text)
    except (TypeError, json.JSONDecodeError) as e:
        raise ProtocolError(f"Message is not valid JSON: {e}") from None

    try:
        jsonschema.validate(data, schema)
    except jsonschema.ValidationError as e:
        raise ProtocolError(f"Message does not match the expected format: {e.message}") from None

    return data

