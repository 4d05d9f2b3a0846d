"""
Model configuration.

A ModelConfig is the plain data structure handed to the kernel by the
extraction collaborator: resources, process steps, an entry step, an
arrival distribution and a run horizon. All checks run when the config
is built, so a kernel can never be initialized from a malformed model.
"""

from __future__ import annotations

import json
import math
from collections import deque
from dataclasses import dataclass, field, replace
from numbers import Real
from pathlib import Path
from typing import Any, Mapping, Sequence

from flowsim.errors import ConfigurationError
from flowsim.random import Distribution, distribution_from_dict
from flowsim.resource import QueueDiscipline

# Tolerance when checking that route probabilities sum to at most one
PROBABILITY_EPS = 1e-9


@dataclass(frozen=True)
class ResourceSpec:
    id: str
    name: str = ""
    capacity: int = 1
    discipline: QueueDiscipline = QueueDiscipline.FIFO

    def __post_init__(self) -> None:
        if not self.id:
            raise ConfigurationError("resource id must be a non-empty string")
        if isinstance(self.capacity, bool) or not isinstance(self.capacity, int) or self.capacity < 1:
            raise ConfigurationError(f"resource {self.id!r}: capacity must be an integer >= 1, got {self.capacity!r}")
        object.__setattr__(self, "discipline", QueueDiscipline.parse(self.discipline))
        if not self.name:
            object.__setattr__(self, "name", self.id)


@dataclass(frozen=True)
class RouteSpec:
    """Branch to ``step`` with the given probability."""

    step: str
    probability: float

    def __post_init__(self) -> None:
        p = self.probability
        if isinstance(p, bool) or not isinstance(p, Real) or not 0.0 < p <= 1.0:
            raise ConfigurationError(f"route to {self.step!r}: probability must be in (0, 1], got {p!r}")


@dataclass(frozen=True)
class StepSpec:
    """
    One process step: a resource, a duration and where to go next.

    Either ``successor`` (deterministic) or ``routes`` (probabilistic,
    residual probability means departure) may be given, not both. With
    neither, completing the step departs the system. ``travel_time`` is
    the delay for an entity to reach this step.
    """

    id: str
    resource_id: str
    duration: Distribution
    successor: str | None = None
    routes: tuple[RouteSpec, ...] = ()
    travel_time: Distribution | None = None
    name: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            raise ConfigurationError("step id must be a non-empty string")
        if not isinstance(self.duration, Distribution):
            raise ConfigurationError(f"step {self.id!r}: duration must be a Distribution")
        if self.travel_time is not None and not isinstance(self.travel_time, Distribution):
            raise ConfigurationError(f"step {self.id!r}: travel_time must be a Distribution")
        object.__setattr__(self, "routes", tuple(self.routes))
        if self.successor is not None and self.routes:
            raise ConfigurationError(f"step {self.id!r}: give either a successor or routes, not both")
        total = sum(r.probability for r in self.routes)
        if total > 1.0 + PROBABILITY_EPS:
            raise ConfigurationError(f"step {self.id!r}: route probabilities sum to {total:.6g} > 1")
        if not self.name:
            object.__setattr__(self, "name", self.id)

    @property
    def exit_probability(self) -> float:
        """Probability that completing this step departs the system."""
        if self.successor is not None:
            return 0.0
        if not self.routes:
            return 1.0
        return max(0.0, 1.0 - sum(r.probability for r in self.routes))

    def targets(self) -> list[str]:
        if self.successor is not None:
            return [self.successor]
        return [r.step for r in self.routes]


@dataclass(frozen=True)
class ModelConfig:
    """
    Complete description of a model run.

    ``priority_weights`` optionally assigns arriving entities to priority
    classes 0..k-1 with the given relative weights; ``due_date`` is an
    optional offset from arrival used by EDD queues.

    ``warmup`` is the initial transient deleted from the statistics:
    entities arriving before it are not measured, and resource and
    throughput figures cover only [warmup, end]. It must be below the
    horizon.
    """

    resources: tuple[ResourceSpec, ...]
    steps: tuple[StepSpec, ...]
    entry_step: str
    arrival: Distribution
    horizon: float
    warmup: float = 0.0
    priority_weights: tuple[float, ...] = ()
    due_date: Distribution | None = None
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "resources", tuple(self.resources))
        object.__setattr__(self, "steps", tuple(self.steps))
        object.__setattr__(self, "priority_weights", tuple(self.priority_weights))
        self.validate()

    def validate(self) -> None:
        """Raise ConfigurationError describing the first problem found."""
        h = self.horizon
        if isinstance(h, bool) or not isinstance(h, Real) or not math.isfinite(h) or h <= 0:
            raise ConfigurationError(f"horizon must be a positive finite number, got {h!r}")
        w = self.warmup
        if isinstance(w, bool) or not isinstance(w, Real) or not math.isfinite(w) or w < 0:
            raise ConfigurationError(f"warmup must be a non-negative finite number, got {w!r}")
        if w >= h:
            raise ConfigurationError(f"warmup {w!r} must end before the horizon {h!r}")
        if not isinstance(self.arrival, Distribution):
            raise ConfigurationError("arrival must be a Distribution")
        if not self.arrival.expected_value() > 0:
            raise ConfigurationError("arrival distribution must have a positive mean inter-arrival time")
        if self.due_date is not None and not isinstance(self.due_date, Distribution):
            raise ConfigurationError("due_date must be a Distribution")
        if self.priority_weights:
            if any(isinstance(w, bool) or not isinstance(w, Real) or w < 0 for w in self.priority_weights):
                raise ConfigurationError("priority weights must be non-negative numbers")
            if sum(self.priority_weights) <= 0:
                raise ConfigurationError("priority weights must not all be zero")

        if not self.resources:
            raise ConfigurationError("model defines no resources")
        if not self.steps:
            raise ConfigurationError("model defines no process steps")

        resource_ids = _unique_ids("resource", [r.id for r in self.resources])
        steps = {s.id: s for s in self.steps}
        _unique_ids("step", [s.id for s in self.steps])

        for step in self.steps:
            if step.resource_id not in resource_ids:
                raise ConfigurationError(f"step {step.id!r} references undefined resource {step.resource_id!r}")
            for target in step.targets():
                if target not in steps:
                    raise ConfigurationError(f"step {step.id!r} routes to undefined step {target!r}")

        if self.entry_step not in steps:
            raise ConfigurationError(f"entry step {self.entry_step!r} is not defined")

        reachable = _reachable(self.entry_step, {s.id: s.targets() for s in self.steps})
        unreachable = [s.id for s in self.steps if s.id not in reachable]
        if unreachable:
            raise ConfigurationError(f"steps unreachable from entry {self.entry_step!r}: {', '.join(unreachable)}")

        # Every step must have some path to departure, or entities loop forever
        exits = {s.id for s in self.steps if s.exit_probability > PROBABILITY_EPS}
        reverse: dict[str, list[str]] = {s.id: [] for s in self.steps}
        for step in self.steps:
            for target in step.targets():
                reverse[target].append(step.id)
        can_exit: set[str] = set()
        for sid in exits:
            can_exit |= _reachable(sid, reverse)
        trapped = [s.id for s in self.steps if s.id not in can_exit]
        if trapped:
            raise ConfigurationError(f"steps that can never reach departure: {', '.join(trapped)}")

    def resource(self, resource_id: str) -> ResourceSpec:
        for spec in self.resources:
            if spec.id == resource_id:
                return spec
        raise KeyError(resource_id)

    def step(self, step_id: str) -> StepSpec:
        for spec in self.steps:
            if spec.id == step_id:
                return spec
        raise KeyError(step_id)

    def with_capacity(self, resource_id: str, capacity: int) -> ModelConfig:
        """Copy of this config with one resource's capacity changed."""
        self.resource(resource_id)
        resources = tuple(
            replace(r, capacity=capacity) if r.id == resource_id else r for r in self.resources
        )
        return replace(self, resources=resources)

    def with_horizon(self, horizon: float) -> ModelConfig:
        return replace(self, horizon=horizon)

    def with_warmup(self, warmup: float) -> ModelConfig:
        return replace(self, warmup=warmup)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ModelConfig:
        """
        Build from the plain mapping produced by the extraction pipeline.

        Expected keys: ``resources``, ``steps``, ``entry_step`` (defaults to
        the first step), ``arrival`` and ``horizon``; ``warmup`` is optional.
        """
        try:
            resources = [
                ResourceSpec(
                    id=str(r["id"]),
                    name=str(r.get("name", "")),
                    capacity=r.get("capacity", 1),
                    discipline=r.get("discipline", QueueDiscipline.FIFO),
                )
                for r in data["resources"]
            ]
            steps = [_step_from_dict(s) for s in data["steps"]]
            entry = data.get("entry_step") or (steps[0].id if steps else "")
            due_date = data.get("due_date")
            return cls(
                resources=tuple(resources),
                steps=tuple(steps),
                entry_step=str(entry),
                arrival=distribution_from_dict(data["arrival"]),
                horizon=data["horizon"],
                warmup=data.get("warmup", 0.0),
                priority_weights=tuple(data.get("priority_weights", ())),
                due_date=distribution_from_dict(due_date) if due_date is not None else None,
                metadata=dict(data.get("metadata", {})),
            )
        except KeyError as exc:
            raise ConfigurationError(f"missing required field {exc.args[0]!r}") from exc
        except (TypeError, AttributeError) as exc:
            raise ConfigurationError(f"malformed configuration: {exc}") from exc

    @classmethod
    def from_json(cls, path: Path | str) -> ModelConfig:
        """Load the from_dict() structure from a JSON file."""
        with open(path) as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as exc:
                raise ConfigurationError(f"{path}: invalid JSON: {exc}") from exc
        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        """Inverse of from_dict()."""
        out: dict[str, Any] = {
            "resources": [
                {"id": r.id, "name": r.name, "capacity": r.capacity, "discipline": r.discipline.value}
                for r in self.resources
            ],
            "steps": [_step_to_dict(s) for s in self.steps],
            "entry_step": self.entry_step,
            "arrival": self.arrival.to_dict(),
            "horizon": self.horizon,
        }
        if self.warmup:
            out["warmup"] = self.warmup
        if self.priority_weights:
            out["priority_weights"] = list(self.priority_weights)
        if self.due_date is not None:
            out["due_date"] = self.due_date.to_dict()
        if self.metadata:
            out["metadata"] = dict(self.metadata)
        return out


def _unique_ids(what: str, ids: Sequence[str]) -> set[str]:
    seen: set[str] = set()
    for i in ids:
        if i in seen:
            raise ConfigurationError(f"duplicate {what} id {i!r}")
        seen.add(i)
    return seen


def _reachable(start: str, edges: Mapping[str, Sequence[str]]) -> set[str]:
    seen = {start}
    todo = deque([start])
    while todo:
        for nxt in edges.get(todo.popleft(), ()):
            if nxt not in seen:
                seen.add(nxt)
                todo.append(nxt)
    return seen


def _step_from_dict(s: Mapping[str, Any]) -> StepSpec:
    travel = s.get("travel_time")
    successor = s.get("successor", s.get("successor_id"))
    return StepSpec(
        id=str(s["id"]),
        name=str(s.get("name", "")),
        resource_id=str(s["resource_id"]),
        duration=distribution_from_dict(s["duration"]),
        successor=str(successor) if successor is not None else None,
        routes=tuple(RouteSpec(str(r["step"]), r["probability"]) for r in s.get("routes", ())),
        travel_time=distribution_from_dict(travel) if travel is not None else None,
    )


def _step_to_dict(s: StepSpec) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": s.id,
        "name": s.name,
        "resource_id": s.resource_id,
        "duration": s.duration.to_dict(),
    }
    if s.successor is not None:
        out["successor"] = s.successor
    if s.routes:
        out["routes"] = [{"step": r.step, "probability": r.probability} for r in s.routes]
    if s.travel_time is not None:
        out["travel_time"] = s.travel_time.to_dict()
    return out
