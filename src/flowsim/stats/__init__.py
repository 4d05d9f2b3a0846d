"""Statistics collection classes."""

from flowsim.stats.mean import Mean
from flowsim.stats.variance import Variance, t_critical
from flowsim.stats.time_variance import TimeWeighted
from flowsim.stats.quantile import Quantile
from flowsim.stats.summary import ResourceStats, RunStats, RunWarnings

__all__ = [
    "Mean",
    "Variance",
    "t_critical",
    "TimeWeighted",
    "Quantile",
    "ResourceStats",
    "RunStats",
    "RunWarnings",
]
