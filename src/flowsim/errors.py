"""
Exception taxonomy.

Configuration errors are systemic and fail fast before a run can start.
Numeric anomalies are never raised; they are counted in RunStats.warnings.
"""

from __future__ import annotations


class FlowSimError(Exception):
    """Base class for all flowsim errors."""


class ConfigurationError(FlowSimError, ValueError):
    """Malformed model configuration (bad reference, parameter or capacity)."""


class SimulationStateError(FlowSimError, RuntimeError):
    """Kernel operation called in the wrong run state."""


class ReplicationCancelled(FlowSimError):
    """A cancel token was set between two kernel steps."""
