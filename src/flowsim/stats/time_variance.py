"""
Time-weighted statistics.

Tracks the area under a piecewise-constant signal (queue length, load)
so its time average can be reported. Unlike C++SIM TimeVariance, the
clock is passed in by the caller rather than read from a global
scheduler.
"""

from __future__ import annotations


class TimeWeighted:
    """Time-weighted average and maximum of a piecewise-constant value."""

    def __init__(self, start_time: float = 0.0, value: float = 0.0) -> None:
        self.reset(start_time, value)

    def reset(self, start_time: float = 0.0, value: float = 0.0) -> None:
        """Restart tracking at ``start_time`` holding ``value``."""
        self._start = start_time
        self._stime = start_time
        self._current_value = value
        self._area = 0.0
        self._max = value

    @property
    def current_value(self) -> float:
        """Value currently held."""
        return self._current_value

    @property
    def max(self) -> float:
        """Largest value held so far."""
        return self._max

    def area(self, time: float) -> float:
        """Integral of the signal from the start up to ``time``."""
        return self._area + self._current_value * max(time - self._stime, 0.0)

    def set_value(self, value: float, time: float) -> None:
        """
        Switch to a new value at ``time``.

        The area held by the previous value is accumulated first.
        """
        if time < self._stime:
            raise ValueError(f"time moved backward: {time} < {self._stime}")
        self._area += self._current_value * (time - self._stime)
        self._current_value = value
        self._stime = time
        if value > self._max:
            self._max = value

    def mean(self, time: float) -> float:
        """Time average over [start, time]."""
        elapsed = time - self._start
        if elapsed <= 0:
            return self._current_value
        return self.area(time) / elapsed

    def __str__(self) -> str:
        return "\n".join(
            [
                f"Current value     : {self._current_value}",
                f"Maximum           : {self._max}",
                f"Accumulated area  : {self._area}",
            ]
        )
