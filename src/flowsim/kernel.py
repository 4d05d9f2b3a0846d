"""
SimulationKernel - event-scheduling core.

The kernel is a plain state machine: initialize() seeds one arrival,
each step() pops the earliest event and dispatches it, and run() steps
until the queue is empty. Arrivals stop at the horizon but every
admitted entity is carried through to departure, so the system always
drains before statistics are final.

An optional warm-up deletes the initial transient: resource statistics
restart at the warm-up instant and entities that arrived earlier are
left out of cycle, wait and throughput figures.

Run states::

    UNINITIALIZED --initialize()--> RUNNING --queue empty--> DRAINED
                                       ^                        |
                                       +-----initialize()-------+
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from flowsim.config import ModelConfig
from flowsim.entity import Entity, EntityState, EntityStore, HistoryRecord
from flowsim.errors import SimulationStateError
from flowsim.events import Event, EventKind, EventQueue
from flowsim.process import ProcessStep, compile_steps
from flowsim.random import Distribution, RandomVariateGenerator
from flowsim.resource import Resource
from flowsim.stats.mean import Mean
from flowsim.stats.summary import RunStats, RunWarnings

logger = logging.getLogger(__name__)


class RunState(Enum):
    UNINITIALIZED = "uninitialized"
    RUNNING = "running"
    DRAINED = "drained"


@dataclass(frozen=True)
class EntityView:
    id: int
    state: EntityState
    step: str | None
    resource: str | None
    arrival_time: float


@dataclass(frozen=True)
class ResourceView:
    id: str
    name: str
    load: int
    capacity: int
    queue_length: int
    queue: tuple[int, ...]


@dataclass(frozen=True)
class KernelSnapshot:
    """Read-only view of live state, cheap enough to poll every step."""

    time: float
    state: RunState
    created: int
    departed: int
    pending_events: int
    entities: tuple[EntityView, ...]
    resources: tuple[ResourceView, ...]


Observer = Callable[[Event, "SimulationKernel"], None]


class SimulationKernel:
    """
    Discrete-event kernel for one model and one seed.

    Construction validates and compiles the configuration; a malformed
    model raises ConfigurationError here, before initialize() can run.
    """

    def __init__(self, config: ModelConfig, seed: int = 0) -> None:
        config.validate()
        self._config = config
        self._seed = seed
        self._horizon = float(config.horizon)
        self._warmup = float(config.warmup)

        self._resources = [
            Resource(i, spec.id, spec.name, spec.capacity, spec.discipline)
            for i, spec in enumerate(config.resources)
        ]
        self._resource_index = {r.id: r.index for r in self._resources}
        self._steps, self._step_index = compile_steps(config, self._resource_index)
        self._entry = self._step_index[config.entry_step]

        self._queue = EventQueue()
        self._entities = EntityStore()
        self._rng = RandomVariateGenerator(seed)
        self._clock = 0.0
        self._state = RunState.UNINITIALIZED
        self._observers: list[Observer] = []
        self._handlers: dict[EventKind, Callable[[Event], None]] = {
            EventKind.ARRIVAL: self._on_arrival,
            EventKind.START_PROCESS: self._on_start_process,
            EventKind.END_PROCESS: self._on_end_process,
        }
        self._reset_counters()

    def _reset_counters(self) -> None:
        self._cycle_times = Mean()
        self._wait_times = Mean()
        self._process_times = Mean()
        self._events_processed = 0
        self._measured_departed = 0
        self._observing = False
        self._negative_samples = 0
        self._nan_samples = 0

    # Properties

    @property
    def config(self) -> ModelConfig:
        return self._config

    @property
    def seed(self) -> int:
        return self._seed

    @property
    def clock(self) -> float:
        """Current simulated time."""
        return self._clock

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def events_processed(self) -> int:
        return self._events_processed

    @property
    def pending_events(self) -> int:
        return len(self._queue)

    @property
    def created(self) -> int:
        return self._entities.created

    @property
    def departed(self) -> int:
        return self._entities.departed

    @property
    def entities(self) -> EntityStore:
        return self._entities

    @property
    def resources(self) -> list[Resource]:
        return list(self._resources)

    def resource(self, resource_id: str) -> Resource:
        return self._resources[self._resource_index[resource_id]]

    def step_by_id(self, step_id: str) -> ProcessStep:
        return self._steps[self._step_index[step_id]]

    # Observers

    def subscribe(self, observer: Observer) -> None:
        """Call ``observer(event, kernel)`` after every processed event."""
        self._observers.append(observer)

    def unsubscribe(self, observer: Observer) -> None:
        self._observers.remove(observer)

    # Run control

    def initialize(self) -> None:
        """
        Reset clock, entities, queue and statistics; schedule the first
        arrival at time 0.

        The generator is re-seeded, so every initialize() starts the same
        sample path.
        """
        self._clock = 0.0
        self._rng = RandomVariateGenerator(self._seed)
        self._queue.clear()
        self._entities.clear()
        for resource in self._resources:
            resource.reset(0.0)
        self._reset_counters()
        self._queue.schedule(0.0, EventKind.ARRIVAL)
        self._state = RunState.RUNNING

    def step(self) -> bool:
        """
        Process one event.

        Returns False once no events remain; the clock is then clamped up
        to the horizon and the run is DRAINED.
        """
        if self._state is RunState.UNINITIALIZED:
            raise SimulationStateError("step() called before initialize()")
        if self._state is RunState.DRAINED:
            return False

        event = self._queue.pop_next()
        if event is None:
            if self._clock < self._horizon:
                self._clock = self._horizon
            if not self._observing:
                self._end_warmup()
            self._state = RunState.DRAINED
            logger.debug(
                "drained at t=%.4f after %d events (%d entities)",
                self._clock,
                self._events_processed,
                self._entities.created,
            )
            return False

        if event.time < self._clock:
            raise SimulationStateError(f"event at t={event.time} precedes clock t={self._clock}")
        if not self._observing and event.time >= self._warmup:
            self._end_warmup()
        self._clock = event.time
        self._events_processed += 1
        logger.debug("t=%.4f %s entity=%d step=%d", event.time, event.kind.value, event.entity, event.step)

        self._handlers[event.kind](event)

        for observer in self._observers:
            observer(event, self)
        return True

    def _end_warmup(self) -> None:
        """Restart resource statistics at the warm-up instant."""
        self._observing = True
        for resource in self._resources:
            resource.begin_observation(self._warmup)
        if self._warmup > 0:
            logger.debug(
                "warm-up ended at t=%.4f with %d entities in system",
                self._warmup,
                self._entities.created - self._entities.departed,
            )

    def run(self) -> RunStats:
        """Step until drained and return the final statistics."""
        while self.step():
            pass
        return self.stats()

    # Sampling

    def _draw(self, distribution: Distribution, what: str) -> float:
        """
        Sample a duration; negative or non-finite values become 0.0.

        Simulated time must never move backward, so anomalies are clamped
        and counted instead of propagated.
        """
        value = self._rng.sample(distribution)
        if math.isnan(value) or math.isinf(value):
            self._nan_samples += 1
            self._warn_anomaly(what, value)
            return 0.0
        if value < 0:
            self._negative_samples += 1
            self._warn_anomaly(what, value)
            return 0.0
        return value

    def _warn_anomaly(self, what: str, value: float) -> None:
        count = self._negative_samples + self._nan_samples
        if count == 1:
            logger.warning(
                "seed %d: %s sample %r at t=%.4f clamped to 0 (further anomalies are counted)",
                self._seed,
                what,
                value,
                self._clock,
            )
        else:
            logger.debug("%s sample %r at t=%.4f clamped to 0", what, value, self._clock)

    def _assign_attributes(self, entity: Entity) -> None:
        weights = self._config.priority_weights
        if weights:
            u = self._rng.uniform01() * sum(weights)
            cumulative = 0.0
            entity.priority = len(weights) - 1
            for level, weight in enumerate(weights):
                cumulative += weight
                if u < cumulative:
                    entity.priority = level
                    break
        if self._config.due_date is not None:
            entity.due_date = self._clock + self._rng.sample(self._config.due_date)

    # Event handlers

    def _measured(self, entity: Entity) -> bool:
        """Entities that arrived during warm-up are left out of the statistics."""
        return entity.arrival_time >= self._warmup

    def _route(self, entity: Entity, step: ProcessStep) -> None:
        """Send an entity toward a step, after the step's travel delay."""
        entity.step = step.index
        entity.resource = None
        entity.state = EntityState.TRAVELING
        delay = self._draw(step.travel_time, f"travel to {step.id}") if step.travel_time is not None else 0.0
        entity.log(self._clock, "TRAVELING", step.name)
        self._queue.schedule(self._clock + delay, EventKind.START_PROCESS, entity.id, step.index)

    def _on_arrival(self, event: Event) -> None:
        entity = self._entities.create(self._clock)
        self._assign_attributes(entity)
        self._route(entity, self._steps[self._entry])

        next_time = self._clock + self._draw(self._config.arrival, "inter-arrival")
        if next_time < self._horizon:
            self._queue.schedule(next_time, EventKind.ARRIVAL)

    def _on_start_process(self, event: Event) -> None:
        entity = self._entities.get(event.entity)
        step = self._steps[event.step]
        resource = self._resources[step.resource]

        if not resource.try_seize(entity, self._clock):
            if entity.queued_at is None:
                entity.queued_at = self._clock
                entity.log(self._clock, "QUEUED", resource.name)
            entity.state = EntityState.WAITING
            return

        waited = 0.0
        if entity.queued_at is not None:
            waited = self._clock - entity.queued_at
            entity.wait_time += waited
            entity.queued_at = None
        if self._measured(entity):
            self._wait_times += waited
        entity.state = EntityState.PROCESSING
        entity.resource = resource.index
        entity.log(self._clock, "SEIZED", resource.name)

        duration = self._draw(step.duration, f"duration of {step.id}")
        resource.record_busy(duration, self._clock)
        entity.process_time += duration
        if self._measured(entity):
            self._process_times += duration
        self._queue.schedule(self._clock + duration, EventKind.END_PROCESS, entity.id, step.index)

    def _on_end_process(self, event: Event) -> None:
        entity = self._entities.get(event.entity)
        step = self._steps[event.step]
        resource = self._resources[step.resource]

        woken = resource.release(self._clock)
        entity.resource = None
        entity.log(self._clock, "RELEASED", resource.name)
        if woken is not None:
            waiter = self._entities.get(woken)
            waiter.state = EntityState.TRAVELING
            self._queue.schedule(self._clock, EventKind.START_PROCESS, woken, waiter.step, resumed=True)

        next_step = step.next_step(self._rng)
        if next_step is None:
            self._entities.depart(entity.id, self._clock)
            if self._measured(entity):
                self._cycle_times += self._clock - entity.arrival_time
                self._measured_departed += 1
        else:
            self._route(entity, self._steps[next_step])

    # Results

    def elapsed_time(self) -> float:
        """
        Simulated time covered by the statistics.

        Measured from the end of warm-up to the clock; once drained the
        clock is at least the horizon.
        """
        return max(self._clock - self._warmup, 0.0)

    def stats(self, guard_tripped: bool = False) -> RunStats:
        """
        Statistics for the run so far.

        Final once the kernel is DRAINED. Called mid-run (or after the
        event budget trips), resource busy time counts only service that
        has already happened.
        """
        elapsed = self.elapsed_time()
        measured = self._measured_departed
        return RunStats(
            seed=self._seed,
            created=self._entities.created,
            departed=self._entities.departed,
            measured_departed=measured,
            elapsed_time=elapsed,
            avg_cycle_time=self._cycle_times.mean,
            max_cycle_time=self._cycle_times.max,
            avg_wait_time=self._wait_times.mean,
            avg_process_time=self._process_times.mean,
            throughput=measured / elapsed if elapsed > 0 else 0.0,
            resources={r.id: r.stats(self._clock) for r in self._resources},
            events_processed=self._events_processed,
            drained=self._state is RunState.DRAINED,
            warnings=RunWarnings(
                negative_samples=self._negative_samples,
                nan_samples=self._nan_samples,
                guard_tripped=guard_tripped,
            ),
        )

    def snapshot(self) -> KernelSnapshot:
        """Immutable view of entities and resources for visualization."""
        entities = tuple(
            EntityView(
                id=e.id,
                state=e.state,
                step=self._steps[e.step].id if e.step is not None else None,
                resource=self._resources[e.resource].id if e.resource is not None else None,
                arrival_time=e.arrival_time,
            )
            for e in self._entities.live()
        )
        resources = tuple(
            ResourceView(
                id=r.id,
                name=r.name,
                load=r.load,
                capacity=r.capacity,
                queue_length=r.queue_length,
                queue=tuple(r.queue),
            )
            for r in self._resources
        )
        return KernelSnapshot(
            time=self._clock,
            state=self._state,
            created=self._entities.created,
            departed=self._entities.departed,
            pending_events=len(self._queue),
            entities=entities,
            resources=resources,
        )

    def entity_history(self, handle: int) -> list[HistoryRecord]:
        """History log of any entity, departed or not."""
        return list(self._entities.get(handle).history)
