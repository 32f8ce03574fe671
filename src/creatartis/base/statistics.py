"""
Statistical accounting: accumulators for numeric samples, and bundles of such accumulators indexed by keys.

A `Statistic` accumulates values (count, sum, sum of squares, extremes) so that the average, variance and so on can be
queried at any time without keeping the samples themselves. A `Statistics` object manages many such accumulators,
each identified by a set of keys, e.g.::

    stats = Statistics()
    stats.add(['latency', 'server-a'], 0.12)
    stats.add(['latency', 'server-b'], 0.31)
    stats.add({'kind': 'error', 'server': 'server-a'}, 1)

    stats.average('latency')   # Accumulates over all statistics having the 'latency' key

Keys can be given as a single string, an iterable of strings (order does not matter), or a mapping from names to
values. Strings are treated as names mapped to ``True``.
"""

import json
import math

from collections.abc import Mapping, Iterable
from typing import Any, Dict, Optional, List, Union, Callable

from creatartis.base.chronometer import Chronometer
from creatartis.base.future import Future


Keys = Union[None, str, Iterable, Mapping]


def normalize_keys(keys: Keys) -> Dict[str, Any]:
    """
    Converts any accepted form of keys to a dict from key names to values.
    """
    if keys is None:
        return dict()
    if isinstance(keys, str):
        return {keys: True}
    if isinstance(keys, Mapping):
        return dict(keys)
    if isinstance(keys, Iterable):
        return {key: True for key in keys}

    raise TypeError(f"Invalid statistic keys: {keys!r}")


def keys_id(keys: Keys) -> str:
    """
    Produces a string that identifies a set of keys, regardless of the form in which they were given or their order.
    """
    return json.dumps(normalize_keys(keys), sort_keys=True, default=repr)


class Statistic:
    """
    An accumulator of numeric values. Each value may be accompanied by arbitrary data, which is remembered for the
    minimum and maximum values (e.g. to know *which* request had the worst latency).
    """

    keys: Dict[str, Any]

    _count: float
    _sum: float
    _square_sum: float
    _minimum: float
    _maximum: float
    _minimum_data: Any
    _maximum_data: Any
    _chronometer: Optional[Chronometer] = None

    def __init__(self, keys: Keys = None):
        self.keys = normalize_keys(keys)
        self.reset()

    def reset(self) -> 'Statistic':
        self._count = 0
        self._sum = 0.0
        self._square_sum = 0.0
        self._minimum = math.inf
        self._maximum = -math.inf
        self._minimum_data = None
        self._maximum_data = None

        return self

    def applies(self, keys: Keys) -> bool:
        """
        Checks whether this statistic matches the given keys. Key names given as strings only need to be present,
        whereas keys given in a mapping must also have the same value. Empty or None keys match any statistic.
        """
        if keys is None:
            return True
        if isinstance(keys, Mapping):
            return all((name in self.keys) and (self.keys[name] == value) for name, value in keys.items())

        return all(name in self.keys for name in normalize_keys(keys))

    def count(self) -> float:
        return self._count

    def sum(self) -> float:
        return self._sum

    def square_sum(self) -> float:
        return self._square_sum

    def minimum(self) -> float:
        return self._minimum

    def minimum_data(self) -> Any:
        return self._minimum_data

    def maximum(self) -> float:
        return self._maximum

    def maximum_data(self) -> Any:
        return self._maximum_data

    def average(self) -> float:
        """
        The mean of all values, or NaN if there are none.
        """
        return (self._sum / self._count) if self._count > 0 else math.nan

    def variance(self, center: Optional[float] = None) -> float:
        """
        The (population) variance of the values around `center`, which defaults to the average. NaN if there are no
        values.
        """
        if self._count <= 0:
            return math.nan
        if center is None:
            center = self.average()

        return max(0.0, (self._square_sum - 2 * center * self._sum) / self._count + center * center)

    def standard_deviation(self, center: Optional[float] = None) -> float:
        return math.sqrt(self.variance(center))

    def add(self, value: float, data: Any = None) -> 'Statistic':
        value = float(value)

        self._count += 1
        self._sum += value
        self._square_sum += value * value
        self._update_extremes(value, data)

        return self

    def gain(self, value: float, factor: float, data: Any = None) -> 'Statistic':
        """
        Adds a value after scaling down the weight of all previous values by `factor` (a number between 0 and 1). This
        makes the statistic represent an exponentially weighted moving accumulation, in which recent values count more.
        The extremes are not affected by the scaling.
        """
        value = float(value)

        self._count = self._count * factor + 1
        self._sum = self._sum * factor + value
        self._square_sum = self._square_sum * factor + value * value
        self._update_extremes(value, data)

        return self

    def add_all(self, values: Iterable, data: Any = None) -> 'Statistic':
        for value in values:
            self.add(value, data)

        return self

    def add_statistic(self, other: 'Statistic') -> 'Statistic':
        """
        Accumulates all the values of another statistic into this one.
        """
        self._count += other._count
        self._sum += other._sum
        self._square_sum += other._square_sum

        if other._minimum < self._minimum:
            self._minimum, self._minimum_data = other._minimum, other._minimum_data
        if other._maximum > self._maximum:
            self._maximum, self._maximum_data = other._maximum, other._maximum_data

        return self

    def start_time(self, timestamp: Optional[float] = None) -> 'Statistic':
        """
        Starts (or restarts) the timer of this statistic. See `add_time` and `add_tick`.

        Args:
            timestamp: A `time.perf_counter` reading to start from. Defaults to now.
        """
        self._chronometer = Chronometer(timestamp)
        return self

    def add_time(self, data: Any = None) -> 'Statistic':
        """
        Adds the seconds elapsed since the timer was started.
        """
        return self.add(self._started_chronometer().time(), data)

    def add_tick(self, data: Any = None) -> 'Statistic':
        """
        Adds the seconds elapsed since the timer was started, and restarts it.
        """
        return self.add(self._started_chronometer().tick(), data)

    def _started_chronometer(self) -> Chronometer:
        if self._chronometer is None:
            raise RuntimeError("The timer of this statistic has not been started")

        return self._chronometer

    def _update_extremes(self, value: float, data: Any):
        if value < self._minimum:
            self._minimum, self._minimum_data = value, data
        if value > self._maximum:
            self._maximum, self._maximum_data = value, data

    def format(self, separator: str = '\t') -> str:
        """
        Formats the keys, count, minimum, average, maximum and standard deviation as a single line.
        """
        return separator.join(str(part) for part in [
            json.dumps(self.keys, sort_keys=True, default=repr), self._count, self._minimum, self.average(),
            self._maximum, self.standard_deviation()
        ])

    def __str__(self) -> str:
        return self.format()

    def __repr__(self) -> str:
        return f"Statistic(keys={self.keys!r}, count={self._count!r})"


class Statistics:
    """
    A bundle of `Statistic` objects, each identified by its keys. Statistics are created on demand the first time
    values are added under a given set of keys.

    Operations that query or reset take keys that are matched against the keys of every statistic in the bundle (see
    `Statistic.applies`), and so may involve any number of statistics.
    """

    _stats: Dict[str, Statistic]

    def __init__(self):
        self._stats = dict()

    def stat(self, keys: Keys) -> Statistic:
        """
        Gets the statistic with exactly the given keys, creating it if it does not exist yet.
        """
        stat_id = keys_id(keys)

        stat = self._stats.get(stat_id)
        if stat is None:
            stat = self._stats[stat_id] = Statistic(keys)

        return stat

    def stats(self, keys: Keys = None) -> List[Statistic]:
        """
        Gets all the statistics that match the given keys.
        """
        return [stat for stat in self._stats.values() if stat.applies(keys)]

    def add(self, keys: Keys, value: float, data: Any = None) -> Statistic:
        return self.stat(keys).add(value, data)

    def gain(self, keys: Keys, value: float, factor: float, data: Any = None) -> Statistic:
        return self.stat(keys).gain(value, factor, data)

    def add_all(self, keys: Keys, values: Iterable, data: Any = None) -> Statistic:
        return self.stat(keys).add_all(values, data)

    def add_object(self, obj: Mapping, data: Any = None) -> 'Statistics':
        """
        Adds the values of a mapping, one statistic per member (keyed by the member name). Members that are lists or
        tuples have all their items added.
        """
        if not obj:
            raise ValueError(f"Cannot add object {obj!r}")

        for name, value in obj.items():
            if isinstance(value, (list, tuple)):
                self.add_all(name, value, data)
            else:
                self.add(name, value, data)

        return self

    def add_statistic(self, stat: Statistic, keys: Keys = None) -> Statistic:
        """
        Accumulates the values of a statistic into the one of this bundle having the given keys (by default, the same
        keys as `stat`). The argument itself does not become part of the bundle.
        """
        return self.stat(keys if keys is not None else stat.keys).add_statistic(stat)

    def add_statistics(self, other: 'Statistics', keys: Keys = None) -> 'Statistics':
        """
        Accumulates the statistics of another bundle (only those matching `keys`, if given) into this one.
        """
        for stat in other.stats(keys):
            self.stat(stat.keys).add_statistic(stat)

        return self

    def add_future(self, keys: Keys, future: Future, data: Any = None) -> Future:
        """
        Adds the value of a future to the statistic with the given keys, once (and if) the future is fulfilled. Failures
        are ignored here, as they are still visible through the future itself.

        Returns:
            The same future, for chaining
        """
        future.then(lambda value: self.add(keys, value, data), _ignore_failure)
        return future

    def add_future_time(self, keys: Keys, future: Future, data: Any = None) -> Future:
        """
        Adds the number of seconds that a future takes to settle (either way), counting from now.

        Returns:
            The same future, for chaining
        """
        chronometer = Chronometer()
        on_settled: Callable[[Any], Any] = lambda _: self.add(keys, chronometer.time(), data)

        future.then(on_settled, on_settled)
        return future

    def reset(self, keys: Keys = None) -> 'Statistics':
        for stat in self.stats(keys):
            stat.reset()

        return self

    def start_time(self, keys: Keys, timestamp: Optional[float] = None) -> Statistic:
        return self.stat(keys).start_time(timestamp)

    def add_time(self, keys: Keys, data: Any = None) -> Statistic:
        return self.stat(keys).add_time(data)

    def add_tick(self, keys: Keys, data: Any = None) -> Statistic:
        return self.stat(keys).add_tick(data)

    def accumulation(self, keys: Keys = None) -> Statistic:
        """
        Creates a new statistic that accumulates all the statistics matching the given keys.
        """
        result = Statistic(keys)
        for stat in self.stats(keys):
            result.add_statistic(stat)

        return result

    def count(self, keys: Keys = None) -> float:
        return self.accumulation(keys).count()

    def sum(self, keys: Keys = None) -> float:
        return self.accumulation(keys).sum()

    def square_sum(self, keys: Keys = None) -> float:
        return self.accumulation(keys).square_sum()

    def minimum(self, keys: Keys = None) -> float:
        return self.accumulation(keys).minimum()

    def maximum(self, keys: Keys = None) -> float:
        return self.accumulation(keys).maximum()

    def average(self, keys: Keys = None) -> float:
        return self.accumulation(keys).average()

    def variance(self, keys: Keys = None, center: Optional[float] = None) -> float:
        return self.accumulation(keys).variance(center)

    def standard_deviation(self, keys: Keys = None, center: Optional[float] = None) -> float:
        return self.accumulation(keys).standard_deviation(center)

    def format(self, field_separator: str = '\t', record_separator: str = '\n') -> str:
        """
        Formats all the statistics in the bundle, one per record (see `Statistic.format`).
        """
        return record_separator.join(stat.format(field_separator) for stat in self._stats.values())

    def __str__(self) -> str:
        return self.format()


def _ignore_failure(reason: BaseException):
    return None
