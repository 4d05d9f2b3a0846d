"""
Process steps compiled for the kernel.

StepSpec ids are resolved to integer handles once, when the kernel is
built; at run time a step only ever refers to arenas by index.
"""

from __future__ import annotations

from dataclasses import dataclass

from flowsim.config import ModelConfig
from flowsim.random import Distribution, RandomVariateGenerator

# Successor value meaning "depart the system"
DEPART = None


@dataclass(frozen=True)
class Route:
    step: int
    probability: float


@dataclass(frozen=True)
class ProcessStep:
    """A resource, a duration distribution and the next hop."""

    index: int
    id: str
    name: str
    resource: int
    duration: Distribution
    successor: int | None = DEPART
    routes: tuple[Route, ...] = ()
    travel_time: Distribution | None = None

    @property
    def is_terminal(self) -> bool:
        """True when completing this step always departs."""
        return self.successor is None and not self.routes

    def next_step(self, rng: RandomVariateGenerator) -> int | None:
        """
        Handle of the step to visit next, or None to depart.

        Probabilistic routes consume exactly one uniform draw; the
        deterministic cases consume none.
        """
        if self.successor is not None:
            return self.successor
        if not self.routes:
            return DEPART
        u = rng.uniform01()
        cumulative = 0.0
        for route in self.routes:
            cumulative += route.probability
            if u < cumulative:
                return route.step
        return DEPART


def compile_steps(config: ModelConfig, resource_index: dict[str, int]) -> tuple[list[ProcessStep], dict[str, int]]:
    """Resolve a validated config's steps to handles."""
    step_index = {spec.id: i for i, spec in enumerate(config.steps)}
    steps = []
    for i, spec in enumerate(config.steps):
        steps.append(
            ProcessStep(
                index=i,
                id=spec.id,
                name=spec.name,
                resource=resource_index[spec.resource_id],
                duration=spec.duration,
                successor=step_index[spec.successor] if spec.successor is not None else DEPART,
                routes=tuple(Route(step_index[r.step], r.probability) for r in spec.routes),
                travel_time=spec.travel_time,
            )
        )
    return steps, step_index
