"""
Reference models for validating the kernel.

``simulate_with_simpy`` renders a ModelConfig in SimPy's
process-interaction style: each entity is a generator that requests,
holds and releases ``simpy.Resource`` slots. For deterministic models
it must reproduce the kernel's results exactly; for stochastic ones the
two agree in distribution.

``mm1`` and ``mmc`` give the closed-form steady-state measures used to
check long runs.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Generator

import simpy

from flowsim.config import ModelConfig, StepSpec
from flowsim.random import Distribution, RandomVariateGenerator
from flowsim.resource import QueueDiscipline


@dataclass
class ReferenceResult:
    created: int = 0
    departed: int = 0
    measured_departed: int = 0
    elapsed_time: float = 0.0
    cycle_times: list[float] = field(default_factory=list)
    busy_time: dict[str, float] = field(default_factory=dict)
    capacity: dict[str, int] = field(default_factory=dict)

    @property
    def avg_cycle_time(self) -> float:
        return sum(self.cycle_times) / len(self.cycle_times) if self.cycle_times else 0.0

    @property
    def throughput(self) -> float:
        return self.measured_departed / self.elapsed_time if self.elapsed_time > 0 else 0.0

    @property
    def utilization(self) -> dict[str, float]:
        if self.elapsed_time <= 0:
            return {rid: 0.0 for rid in self.busy_time}
        return {
            rid: min(1.0, busy / (self.capacity[rid] * self.elapsed_time)) for rid, busy in self.busy_time.items()
        }


def simulate_with_simpy(config: ModelConfig, seed: int = 0) -> ReferenceResult:
    """
    Run ``config`` once on a SimPy environment.

    Warm-up is deleted the same way the kernel does it: late arrivals
    only, and busy time clipped to [warmup, end].
    """
    env = simpy.Environment()
    warmup = float(config.warmup)
    rng = RandomVariateGenerator(seed)
    result = ReferenceResult(
        busy_time={r.id: 0.0 for r in config.resources},
        capacity={r.id: r.capacity for r in config.resources},
    )
    steps = {s.id: s for s in config.steps}
    disciplines = {r.id: r.discipline for r in config.resources}
    resources: dict[str, simpy.Resource] = {}
    for spec in config.resources:
        if spec.discipline is QueueDiscipline.FIFO:
            resources[spec.id] = simpy.Resource(env, capacity=spec.capacity)
        else:
            resources[spec.id] = simpy.PriorityResource(env, capacity=spec.capacity)
    tickets = iter(range(1 << 62))

    def draw(dist: Distribution | None) -> float:
        if dist is None:
            return 0.0
        value = rng.sample(dist)
        return value if math.isfinite(value) and value > 0 else 0.0

    def next_step(step: StepSpec) -> StepSpec | None:
        if step.successor is not None:
            return steps[step.successor]
        if not step.routes:
            return None
        u = rng.uniform01()
        cumulative = 0.0
        for route in step.routes:
            cumulative += route.probability
            if u < cumulative:
                return steps[route.step]
        return None

    def request(resource_id: str, priority: int, due_date: float | None) -> simpy.Event:
        discipline = disciplines[resource_id]
        resource = resources[resource_id]
        if discipline is QueueDiscipline.FIFO:
            return resource.request()
        if discipline is QueueDiscipline.PRIORITY:
            return resource.request(priority=priority)
        if discipline is QueueDiscipline.EDD:
            return resource.request(priority=due_date if due_date is not None else math.inf)
        return resource.request(priority=-next(tickets))

    def part(priority: int, due_date: float | None) -> Generator[simpy.Event, None, None]:
        arrival = env.now
        step: StepSpec | None = steps[config.entry_step]
        while step is not None:
            travel = draw(step.travel_time)
            if travel > 0:
                yield env.timeout(travel)
            with request(step.resource_id, priority, due_date) as req:
                yield req
                duration = draw(step.duration)
                result.busy_time[step.resource_id] += max(env.now + duration - max(env.now, warmup), 0.0)
                yield env.timeout(duration)
            step = next_step(step)
        result.departed += 1
        if arrival >= warmup:
            result.measured_departed += 1
            result.cycle_times.append(env.now - arrival)

    def source() -> Generator[simpy.Event, None, None]:
        while True:
            result.created += 1
            priority = _draw_priority(rng, config.priority_weights)
            due = env.now + rng.sample(config.due_date) if config.due_date is not None else None
            env.process(part(priority, due))
            gap = draw(config.arrival)
            if env.now + gap >= config.horizon:
                return
            yield env.timeout(gap)

    env.process(source())
    env.run()
    result.elapsed_time = max(env.now, float(config.horizon)) - warmup
    return result


def _draw_priority(rng: RandomVariateGenerator, weights: tuple[float, ...]) -> int:
    if not weights:
        return 0
    u = rng.uniform01() * sum(weights)
    cumulative = 0.0
    for level, weight in enumerate(weights):
        cumulative += weight
        if u < cumulative:
            return level
    return len(weights) - 1


@dataclass(frozen=True)
class QueueingMetrics:
    """Steady-state measures; infinite when the queue is unstable."""

    arrival_rate: float
    service_rate: float
    servers: int
    rho: float
    L: float
    Lq: float
    W: float
    Wq: float
    P0: float
    stable: bool


def mm1(arrival_rate: float, service_rate: float) -> QueueingMetrics:
    """M/M/1: Poisson arrivals, exponential service, one server."""
    return mmc(arrival_rate, service_rate, 1)


def mmc(arrival_rate: float, service_rate: float, servers: int) -> QueueingMetrics:
    """M/M/c by the Erlang C formula."""
    if arrival_rate <= 0 or service_rate <= 0:
        raise ValueError("arrival and service rates must be positive")
    if servers < 1:
        raise ValueError(f"need at least one server, got {servers}")

    a = arrival_rate / service_rate
    rho = a / servers
    if rho >= 1.0:
        inf = math.inf
        return QueueingMetrics(arrival_rate, service_rate, servers, rho, inf, inf, inf, inf, 0.0, False)

    head = sum(a**k / math.factorial(k) for k in range(servers))
    tail = a**servers / (math.factorial(servers) * (1.0 - rho))
    p0 = 1.0 / (head + tail)
    erlang_c = tail * p0
    lq = erlang_c * rho / (1.0 - rho)
    wq = lq / arrival_rate
    w = wq + 1.0 / service_rate
    return QueueingMetrics(
        arrival_rate=arrival_rate,
        service_rate=service_rate,
        servers=servers,
        rho=rho,
        L=arrival_rate * w,
        Lq=lq,
        W=w,
        Wq=wq,
        P0=p0,
        stable=True,
    )
