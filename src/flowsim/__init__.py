"""
flowsim - discrete-event simulation kernel for process flow analysis.

Entities flow through a network of capacity-constrained resources over
simulated time; the replication engine turns many seeded runs into
confidence-bounded performance metrics.
"""

from flowsim.config import ModelConfig, ResourceSpec, RouteSpec, StepSpec
from flowsim.entity import Entity, EntityState, EntityStore, HistoryRecord
from flowsim.errors import ConfigurationError, FlowSimError, ReplicationCancelled, SimulationStateError
from flowsim.events import Event, EventKind, EventQueue
from flowsim.kernel import KernelSnapshot, RunState, SimulationKernel
from flowsim.process import ProcessStep, Route
from flowsim.random import (
    Constant,
    Distribution,
    Erlang,
    Exponential,
    Gamma,
    Lognormal,
    Normal,
    RandomVariateGenerator,
    Triangular,
    Uniform,
    Weibull,
    distribution_from_dict,
)
from flowsim.replication import (
    AggregateStats,
    Convergence,
    MetricSummary,
    aggregate,
    drive,
    run_replication,
    run_replications,
)
from flowsim.resource import QueueDiscipline, Resource, WaitQueue
from flowsim.stats import Mean, Quantile, ResourceStats, RunStats, RunWarnings, TimeWeighted, Variance

__version__ = "0.1.0"
__all__ = [
    # Configuration
    "ModelConfig",
    "ResourceSpec",
    "RouteSpec",
    "StepSpec",
    # Kernel
    "SimulationKernel",
    "RunState",
    "KernelSnapshot",
    "Event",
    "EventKind",
    "EventQueue",
    # Data model
    "Entity",
    "EntityState",
    "EntityStore",
    "HistoryRecord",
    "Resource",
    "WaitQueue",
    "QueueDiscipline",
    "ProcessStep",
    "Route",
    # Random
    "RandomVariateGenerator",
    "Distribution",
    "Constant",
    "Uniform",
    "Exponential",
    "Normal",
    "Triangular",
    "Lognormal",
    "Gamma",
    "Weibull",
    "Erlang",
    "distribution_from_dict",
    # Replication
    "run_replications",
    "run_replication",
    "drive",
    "aggregate",
    "AggregateStats",
    "MetricSummary",
    "Convergence",
    # Statistics
    "Mean",
    "Variance",
    "Quantile",
    "TimeWeighted",
    "RunStats",
    "ResourceStats",
    "RunWarnings",
    # Errors
    "FlowSimError",
    "ConfigurationError",
    "SimulationStateError",
    "ReplicationCancelled",
]
