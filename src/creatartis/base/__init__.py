"""
A base library of general purpose helpers, centered around a callback-based `Future` abstraction, a small algebra of
combinators for composing futures, and a bridge for running work in separate threads or processes.

The most commonly used names are re-exported here, so one can write::

    from creatartis.base import Future, all_of, WorkerBridge
"""

__version__ = '0.1.0'


from creatartis.base.errors import FutureError, InvalidFutureStateError, SchedulerNotAvailableError, TimeoutFailure, \
    NoCandidatesError, WorkerError, TaskFailedError, UnknownTaskError, WorkerCrashedError, ProtocolError, StopSequence
from creatartis.base.scheduling import Scheduler, ManualScheduler, AsyncioScheduler, get_default_scheduler, \
    set_default_scheduler, as_asyncio_future
from creatartis.base.future import Future, FutureState
from creatartis.base.combinators import when, invoke, all_of, any_of, sequence, retry, delay, timeout, do_while, \
    while_do, no_delay, fixed_delay, exponential_backoff
from creatartis.base.parallel import WorkerBridge, WorkerBridgeConfig
from creatartis.base.statistics import Statistic, Statistics
from creatartis.base.chronometer import Chronometer
