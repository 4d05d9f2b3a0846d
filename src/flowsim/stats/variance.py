"""
Variance statistics class.

Extends the running mean with sample variance and a Student-t
confidence half-width.
"""

from __future__ import annotations

import math

from scipy import stats as scipy_stats

from flowsim.stats.mean import Mean


def t_critical(level: float, dof: int) -> float:
    """Two-sided Student-t critical value for a confidence level in (0, 1)."""
    if not 0.0 < level < 1.0:
        raise ValueError(f"confidence level must be in (0, 1), got {level}")
    if dof < 1:
        raise ValueError(f"degrees of freedom must be positive, got {dof}")
    return float(scipy_stats.t.ppf((1.0 + level) / 2.0, dof))


class Variance(Mean):
    """
    Running variance calculation.

    Uses Welford's update, so samples that share a large offset (long
    horizons, busy times) keep their spread.
    """

    def __init__(self) -> None:
        super().__init__()
        self._m2: float = 0.0

    def reset(self) -> None:
        """Reset all statistics."""
        super().reset()
        self._m2 = 0.0

    def set_value(self, value: float) -> None:
        """Add a sample value."""
        delta = value - self._mean
        super().set_value(value)
        self._m2 += delta * (value - self._mean)

    @property
    def variance(self) -> float:
        """
        Sample variance.

        Uses n-1 denominator (Bessel's correction).
        """
        if self._number < 2:
            return 0.0
        # Rounding in the running mean can leave a residue below zero for constant samples
        return max(self._m2 / (self._number - 1), 0.0)

    @property
    def std_dev(self) -> float:
        """Sample standard deviation."""
        return math.sqrt(self.variance)

    def confidence(self, level: float = 0.95) -> float:
        """
        Confidence interval half-width for the mean.

        t(n-1) * s / sqrt(n); 0.0 with fewer than two samples.
        """
        if self._number < 2:
            return 0.0
        return t_critical(level, self._number - 1) * self.std_dev / math.sqrt(self._number)

    def __str__(self) -> str:
        lines = [
            f"Variance          : {self.variance}",
            f"Standard Deviation: {self.std_dev}",
        ]
        lines.append(super().__str__())
        return "\n".join(lines)
