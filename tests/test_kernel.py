"""
Tests for SimulationKernel.

Hand-traced deterministic models pin down exact event semantics; the
stochastic ones check invariants after every processed event.
"""

import logging
import math
from dataclasses import dataclass, replace
from typing import ClassVar

import pytest

from flowsim import (
    Constant,
    Distribution,
    EntityState,
    EventKind,
    ModelConfig,
    Normal,
    ResourceSpec,
    RouteSpec,
    RunState,
    SimulationKernel,
    SimulationStateError,
    StepSpec,
    Uniform,
    drive,
)


@dataclass(frozen=True)
class BrokenDuration(Distribution):
    """Always yields NaN."""

    kind: ClassVar[str] = "broken"

    def draw(self, rng) -> float:
        return math.nan

    def expected_value(self) -> float:
        return 1.0


def check_invariants(event, kernel: SimulationKernel) -> None:
    """Observer asserting the structural invariants of a live kernel."""
    assert kernel.departed <= kernel.created
    for resource in kernel.resources:
        assert 0 <= resource.load <= resource.capacity
    for entity in kernel.entities.live():
        queued_at = [r.id for r in kernel.resources if r.is_waiting(entity.id)]
        if entity.state is EntityState.WAITING:
            assert len(queued_at) == 1
        else:
            assert queued_at == []
        if entity.state is EntityState.PROCESSING:
            assert entity.resource is not None
        else:
            assert entity.resource is None


class TestLifecycle:
    """Run-state machine: initialize, step, drain."""

    def test_step_before_initialize(self, deterministic_line: ModelConfig) -> None:
        kernel = SimulationKernel(deterministic_line)
        assert kernel.state is RunState.UNINITIALIZED
        with pytest.raises(SimulationStateError):
            kernel.step()

    def test_initialize_schedules_first_arrival(self, deterministic_line: ModelConfig) -> None:
        kernel = SimulationKernel(deterministic_line)
        kernel.initialize()
        assert kernel.state is RunState.RUNNING
        assert kernel.clock == 0.0
        assert kernel.pending_events == 1

    def test_initialize_is_idempotent(self, line_config: ModelConfig) -> None:
        """Re-initializing a used kernel restarts the same sample path."""
        kernel = SimulationKernel(line_config, seed=3)
        kernel.initialize()
        fresh = kernel.snapshot()
        first = kernel.run()

        kernel.initialize()
        assert kernel.snapshot() == fresh
        kernel.initialize()
        assert kernel.snapshot() == fresh
        assert kernel.run() == first

    def test_every_event_kind_has_a_handler(self, deterministic_line: ModelConfig) -> None:
        kernel = SimulationKernel(deterministic_line)
        assert set(kernel._handlers) == set(EventKind)

    def test_drained_step_returns_false(self, deterministic_line: ModelConfig) -> None:
        kernel = SimulationKernel(deterministic_line)
        kernel.initialize()
        kernel.run()
        assert kernel.state is RunState.DRAINED
        assert kernel.step() is False
        assert kernel.pending_events == 0

    def test_stepwise_equals_run(self, line_config: ModelConfig) -> None:
        stepped = SimulationKernel(line_config, seed=8)
        stepped.initialize()
        while stepped.step():
            pass
        ran = SimulationKernel(line_config, seed=8)
        ran.initialize()
        assert ran.run() == stepped.stats()

    def test_clock_clamped_to_horizon(self, make_server) -> None:
        """A model that drains early still reports the full horizon."""
        config = make_server(Constant(50.0), Constant(1.0), horizon=100.0)
        kernel = SimulationKernel(config)
        kernel.initialize()
        stats = kernel.run()
        # arrivals at 0 and 50, last departure at 51
        assert stats.created == 2
        assert kernel.clock == 100.0
        assert stats.elapsed_time == 100.0
        assert stats.throughput == pytest.approx(2 / 100.0)


class TestDeterministicLine:
    """Two stations in series, arrivals every 8, service 5 then 3."""

    def test_counts_and_times(self, deterministic_line: ModelConfig, run_kernel) -> None:
        kernel = run_kernel(deterministic_line)
        stats = kernel.stats()

        # arrivals at 0, 8, ..., 56; the last departs at 64
        assert stats.created == 8
        assert stats.departed == 8
        assert stats.drained
        assert stats.elapsed_time == 64.0
        assert stats.avg_cycle_time == pytest.approx(8.0)
        assert stats.max_cycle_time == pytest.approx(8.0)
        assert stats.avg_wait_time == 0.0
        assert stats.throughput == pytest.approx(8 / 64.0)

    def test_resource_statistics(self, deterministic_line: ModelConfig, run_kernel) -> None:
        stats = run_kernel(deterministic_line).stats()
        cutter, packer = stats.resources["r1"], stats.resources["r2"]
        assert cutter.busy_time == pytest.approx(40.0)
        assert cutter.utilization == pytest.approx(40.0 / 64.0)
        assert packer.utilization == pytest.approx(24.0 / 64.0)
        assert cutter.seized_count == 8
        assert cutter.max_queue_length == 0

    def test_entity_history(self, deterministic_line: ModelConfig, run_kernel) -> None:
        kernel = run_kernel(deterministic_line)
        labels = [(r.time, r.label, r.location) for r in kernel.entity_history(0)]
        assert labels == [
            (0.0, "CREATED", "ENTRY"),
            (0.0, "TRAVELING", "cut"),
            (0.0, "SEIZED", "Cutter"),
            (5.0, "RELEASED", "Cutter"),
            (5.0, "TRAVELING", "pack"),
            (5.0, "SEIZED", "Packer"),
            (8.0, "RELEASED", "Packer"),
            (8.0, "DEPARTED", "EXIT"),
        ]

    def test_travel_time(self, run_kernel) -> None:
        config = ModelConfig(
            resources=(ResourceSpec("r1"), ResourceSpec("r2")),
            steps=(
                StepSpec("cut", "r1", Constant(5.0), successor="pack"),
                StepSpec("pack", "r2", Constant(3.0), travel_time=Constant(2.0)),
            ),
            entry_step="cut",
            arrival=Constant(8.0),
            horizon=60.0,
        )
        stats = run_kernel(config).stats()
        assert stats.avg_cycle_time == pytest.approx(10.0)
        assert stats.avg_process_time == pytest.approx(4.0)


class TestContention:
    """Arrivals every 2, service 5, one server; arrivals stop at t=10."""

    def test_queueing(self, congested_server: ModelConfig, run_kernel) -> None:
        stats = run_kernel(congested_server).stats()
        machine = stats.resources["m"]

        # departures at 5, 10, 15, 20, 25
        assert stats.created == 5
        assert stats.departed == 5
        assert stats.elapsed_time == 25.0
        assert stats.avg_cycle_time == pytest.approx(11.0)
        assert stats.max_cycle_time == pytest.approx(17.0)
        assert stats.avg_wait_time == pytest.approx(6.0)
        assert machine.utilization == pytest.approx(1.0)
        assert machine.max_queue_length == 3
        assert machine.avg_queue_length == pytest.approx(30.0 / 25.0)

    def test_waiting_history(self, congested_server: ModelConfig, run_kernel) -> None:
        kernel = run_kernel(congested_server)
        entity = kernel.entities.get(1)
        assert entity.wait_time == pytest.approx(3.0)
        assert [r.label for r in entity.history] == [
            "CREATED",
            "TRAVELING",
            "QUEUED",
            "SEIZED",
            "RELEASED",
            "DEPARTED",
        ]

    def test_resumed_start_events(self, congested_server: ModelConfig) -> None:
        kernel = SimulationKernel(congested_server)
        resumed: list[tuple[float, int]] = []

        def on_event(event, _kernel) -> None:
            if event.kind is EventKind.START_PROCESS and event.resumed:
                resumed.append((event.time, event.entity))

        kernel.subscribe(on_event)
        kernel.initialize()
        kernel.run()
        assert resumed == [(5.0, 1), (10.0, 2), (15.0, 3), (20.0, 4)]

    def test_snapshot_mid_run(self, congested_server: ModelConfig) -> None:
        kernel = SimulationKernel(congested_server)
        kernel.initialize()
        # through the start-process of the fifth arrival at t=8
        for _ in range(12):
            kernel.step()

        snap = kernel.snapshot()
        machine = snap.resources[0]
        assert snap.time == 8.0
        assert (snap.created, snap.departed) == (5, 1)
        assert machine.load == 1
        assert machine.queue == (2, 3, 4)
        states = {e.id: e.state for e in snap.entities}
        assert states[1] is EntityState.PROCESSING
        assert states[4] is EntityState.WAITING

    def test_stats_after_budget_count_only_elapsed_service(self, congested_server: ModelConfig) -> None:
        """Stopped at t=8 the machine has been busy for 8, not the 10 already booked."""
        kernel = SimulationKernel(congested_server)
        stats = drive(kernel, max_events=12)
        machine = stats.resources["m"]

        assert stats.warnings.guard_tripped
        assert stats.elapsed_time == 8.0
        # first service over [0, 5), second started at 5 and runs to 10
        assert machine.seized_count == 2
        assert machine.busy_time == pytest.approx(8.0)
        assert machine.utilization == pytest.approx(1.0)

    def test_stats_mid_service_with_idle_time(self, make_server) -> None:
        config = make_server(Constant(10.0), Constant(4.0), horizon=20.0)
        kernel = SimulationKernel(config)
        kernel.initialize()
        # arrival and start at 0, end at 4, arrival and start at 10
        for _ in range(5):
            kernel.step()
        assert kernel.clock == 10.0
        assert kernel.stats().resources["m"].busy_time == pytest.approx(4.0)
        assert kernel.stats().resources["m"].utilization == pytest.approx(0.4)

    def test_multi_server(self, make_server, run_kernel) -> None:
        config = make_server(Constant(2.0), Constant(5.0), capacity=3)
        stats = run_kernel(config).stats()
        assert stats.avg_wait_time == 0.0
        assert stats.avg_cycle_time == pytest.approx(5.0)
        assert stats.resources["m"].max_queue_length == 0


class TestWarmup:
    """
    The congested server with the first five time units deleted.

    Arrivals at 0, 2, 4, 6, 8 and service 5 give cycle times 5, 8, 11,
    14, 17; only the parts arriving at 6 and 8 are measured.
    """

    def setup_method(self) -> None:
        self.config = ModelConfig(
            resources=(ResourceSpec("m", "Machine"),),
            steps=(StepSpec("work", "m", Constant(5.0)),),
            entry_step="work",
            arrival=Constant(2.0),
            horizon=10.0,
            warmup=5.0,
        )

    def test_transient_entities_excluded(self, run_kernel) -> None:
        stats = run_kernel(self.config).stats()
        assert (stats.created, stats.departed) == (5, 5)
        assert stats.measured_departed == 2
        assert stats.avg_cycle_time == pytest.approx(15.5)
        assert stats.max_cycle_time == pytest.approx(17.0)
        assert stats.avg_wait_time == pytest.approx(10.5)
        assert stats.avg_process_time == pytest.approx(5.0)

    def test_elapsed_and_throughput_from_warmup(self, run_kernel) -> None:
        stats = run_kernel(self.config).stats()
        assert stats.elapsed_time == 20.0
        assert stats.throughput == pytest.approx(2 / 20.0)

    def test_resource_statistics_restart(self, run_kernel) -> None:
        machine = run_kernel(self.config).stats().resources["m"]
        # services over [5, 25); queue 2 at t=5, then 1, 2, 3, 2, 1, 0
        assert machine.seized_count == 4
        assert machine.busy_time == pytest.approx(20.0)
        assert machine.utilization == pytest.approx(1.0)
        assert machine.max_queue_length == 3
        assert machine.avg_queue_length == pytest.approx(26.0 / 20.0)

    def test_warmup_between_events(self, make_server, run_kernel) -> None:
        """Warm-up ending while a service runs keeps only its remainder."""
        config = replace(make_server(Constant(10.0), Constant(4.0), horizon=20.0), warmup=2.0)
        stats = run_kernel(config).stats()
        # service [0, 4) contributes 2, service [10, 14) contributes 4
        assert stats.resources["m"].busy_time == pytest.approx(6.0)
        assert stats.elapsed_time == 18.0
        assert stats.measured_departed == 1

    def test_zero_warmup_changes_nothing(self, congested_server: ModelConfig, run_kernel) -> None:
        stats = run_kernel(congested_server).stats()
        assert stats.measured_departed == stats.departed
        assert stats.elapsed_time == 25.0

    def test_invariants_hold(self, make_line) -> None:
        config = replace(make_line(horizon=200.0), warmup=50.0)
        kernel = SimulationKernel(config, seed=4)
        kernel.subscribe(check_invariants)
        kernel.initialize()
        stats = kernel.run()
        assert stats.created == stats.departed
        assert stats.measured_departed <= stats.departed


class TestInvariants:
    """Properties that must hold after every event."""

    @pytest.mark.parametrize("seed", [0, 1, 2, 3])
    def test_invariants_every_step(self, seed: int, make_line) -> None:
        config = make_line(first=Uniform(2.0, 9.0), second=Uniform(1.0, 8.0), horizon=200.0)
        kernel = SimulationKernel(config, seed)
        kernel.subscribe(check_invariants)
        kernel.initialize()
        stats = kernel.run()
        assert stats.departed == stats.created
        assert stats.drained

    def test_clock_never_decreases(self, make_server) -> None:
        config = make_server(Normal(1.0, 2.0), Normal(1.0, 5.0), horizon=100.0)
        kernel = SimulationKernel(config, seed=4)
        times: list[float] = []
        kernel.subscribe(lambda e, k: times.append(k.clock))
        kernel.initialize()
        kernel.run()
        assert times == sorted(times)

    def test_reproducible(self, line_config: ModelConfig) -> None:
        """Same config and seed give identical statistics."""
        a = SimulationKernel(line_config, seed=99)
        b = SimulationKernel(line_config, seed=99)
        a.initialize()
        b.initialize()
        assert a.run() == b.run()

    def test_seeds_differ(self, line_config: ModelConfig) -> None:
        a = SimulationKernel(line_config, seed=1)
        b = SimulationKernel(line_config, seed=2)
        a.initialize()
        b.initialize()
        assert a.run().metrics() != b.run().metrics()

    def test_observer_called_per_event(self, line_config: ModelConfig) -> None:
        kernel = SimulationKernel(line_config, seed=5)
        seen = []
        observer = lambda e, k: seen.append(e)  # noqa: E731
        kernel.subscribe(observer)
        kernel.initialize()
        stats = kernel.run()
        assert len(seen) == stats.events_processed

        kernel.unsubscribe(observer)
        kernel.initialize()
        kernel.run()
        assert len(seen) == stats.events_processed


class TestSampleAnomalies:
    """Negative and non-finite samples are clamped and counted."""

    def test_negative_durations_clamped(self, make_server, caplog) -> None:
        config = make_server(Constant(2.0), Normal(1.0, 5.0), horizon=200.0)
        kernel = SimulationKernel(config, seed=2)
        kernel.subscribe(check_invariants)
        kernel.initialize()
        with caplog.at_level(logging.WARNING, logger="flowsim.kernel"):
            stats = kernel.run()

        assert stats.warnings.negative_samples > 0
        assert stats.warnings.nan_samples == 0
        assert stats.departed == stats.created
        assert stats.avg_process_time >= 0.0
        # one warning per run, later anomalies only counted
        assert len([r for r in caplog.records if "clamped" in r.getMessage()]) == 1

    def test_nan_durations_clamped(self, make_server, run_kernel) -> None:
        config = make_server(Constant(2.0), BrokenDuration())
        stats = run_kernel(config).stats()
        assert stats.warnings.nan_samples == stats.created
        assert stats.avg_cycle_time == 0.0
        assert stats.resources["m"].busy_time == 0.0


class TestRouting:
    """Probabilistic routes and priority attributes."""

    def rework_model(self, back: float) -> ModelConfig:
        return ModelConfig(
            resources=(ResourceSpec("m", "Machine"), ResourceSpec("q", "Inspector")),
            steps=(
                StepSpec("work", "m", Constant(1.0), successor="inspect"),
                StepSpec("inspect", "q", Constant(0.5), routes=(RouteSpec("work", back),)),
            ),
            entry_step="work",
            arrival=Constant(4.0),
            horizon=400.0,
        )

    def test_rework_terminates(self, run_kernel) -> None:
        kernel = run_kernel(self.rework_model(0.3), seed=6)
        stats = kernel.stats()
        assert stats.departed == stats.created == 100
        # some parts visit the machine more than once
        assert stats.resources["m"].seized_count > stats.created
        assert stats.resources["m"].seized_count == stats.resources["q"].seized_count

    def test_rework_rate(self, run_kernel) -> None:
        """Expected visits per part are 1 / (1 - p)."""
        stats = run_kernel(self.rework_model(0.5), seed=7).stats()
        visits = stats.resources["m"].seized_count / stats.created
        assert 1.6 < visits < 2.4

    def test_priority_classes(self, make_server) -> None:
        base = make_server(Constant(1.0), Constant(0.5), horizon=500.0, discipline="priority")
        config = replace(base, priority_weights=(1.0, 3.0))
        kernel = SimulationKernel(config, seed=1)
        kernel.initialize()
        kernel.run()
        levels = [e.priority for e in kernel.entities.all()]
        assert set(levels) == {0, 1}
        assert 0.15 < levels.count(0) / len(levels) < 0.35

    def test_due_dates(self, make_server) -> None:
        base = make_server(Constant(1.0), Constant(0.5), discipline="edd")
        config = replace(base, due_date=Constant(20.0))
        kernel = SimulationKernel(config)
        kernel.initialize()
        kernel.run()
        assert all(e.due_date == e.arrival_time + 20.0 for e in kernel.entities.all())
