"""
A simple stopwatch for measuring elapsed time.
"""

import time

from typing import Optional


class Chronometer:
    """
    Measures the time elapsed since it was started (or last reset), in seconds, using `time.perf_counter`.
    """

    _start: float

    def __init__(self, start: Optional[float] = None):
        """
        Constructor.

        Args:
            start: The `time.perf_counter` reading to measure from. If None, the chronometer starts now.
        """
        self.reset(start)

    def reset(self, start: Optional[float] = None) -> 'Chronometer':
        self._start = start if start is not None else time.perf_counter()
        return self

    def time(self) -> float:
        """
        Returns the seconds elapsed since the chronometer was started.
        """
        return time.perf_counter() - self._start

    def tick(self) -> float:
        """
        Returns the seconds elapsed since the chronometer was started, and restarts it.
        """
        now = time.perf_counter()
        elapsed = now - self._start
        self._start = now

        return elapsed
