"""
Quantile estimation over retained samples.

Keeps every sample in sorted order (as C++SIM Quantile does through
PrecisionHistogram) and interpolates linearly between order statistics.
"""

from __future__ import annotations

import bisect
import math

from flowsim.stats.variance import Variance


class Quantile(Variance):
    """Variance plus exact percentiles."""

    def __init__(self, q: float = 0.95) -> None:
        """
        Args:
            q: Default quantile returned by calling the instance.
               Must be in range (0, 1].
        """
        super().__init__()
        if q <= 0.0 or q > 1.0:
            raise ValueError(f"quantile must be in (0, 1], got {q}")
        self._q_prob = q

    def reset(self) -> None:
        super().reset()
        self._sorted: list[float] = []

    def set_value(self, value: float) -> None:
        super().set_value(value)
        bisect.insort(self._sorted, value)

    @property
    def values(self) -> list[float]:
        """Samples in ascending order."""
        return list(self._sorted)

    def percentile(self, p: float) -> float:
        """
        Percentile ``p`` in [0, 100] by linear interpolation.

        0.0 with no samples.
        """
        if not 0.0 <= p <= 100.0:
            raise ValueError(f"percentile must be in [0, 100], got {p}")
        if not self._sorted:
            return 0.0
        index = (p / 100.0) * (len(self._sorted) - 1)
        lower = math.floor(index)
        upper = math.ceil(index)
        weight = index - lower
        return self._sorted[lower] * (1.0 - weight) + self._sorted[upper] * weight

    @property
    def median(self) -> float:
        return self.percentile(50.0)

    def __call__(self) -> float:
        """Value of the default quantile."""
        return self.percentile(self._q_prob * 100.0)

    def range(self) -> float:
        """Range (max - min) of observed values."""
        return self.max - self.min

    def __str__(self) -> str:
        lines = [
            f"Quantile percentage : {self._q_prob}",
            f"Value below which percentage occurs {self()}",
            super().__str__(),
        ]
        return "\n".join(lines)
