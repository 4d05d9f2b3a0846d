"""Per-run statistics snapshots."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class RunWarnings:
    """Recoverable anomalies seen during one run."""

    negative_samples: int = 0
    nan_samples: int = 0
    guard_tripped: bool = False

    @property
    def total(self) -> int:
        return self.negative_samples + self.nan_samples + int(self.guard_tripped)


@dataclass(frozen=True)
class ResourceStats:
    id: str
    name: str
    capacity: int
    seized_count: int
    busy_time: float
    utilization: float
    max_queue_length: int
    avg_queue_length: float
    queue_length: int
    load: int


@dataclass(frozen=True)
class RunStats:
    """
    Performance metrics of one kernel run.

    Final once the kernel is drained; a guard-tripped run reports what
    was available when it stopped.

    ``created`` and ``departed`` count every entity. Cycle, wait and
    process times, ``measured_departed`` and ``throughput`` cover only
    entities that arrived after warm-up, and ``elapsed_time`` starts at
    the end of warm-up.
    """

    seed: int
    created: int
    departed: int
    measured_departed: int
    elapsed_time: float
    avg_cycle_time: float
    max_cycle_time: float
    avg_wait_time: float
    avg_process_time: float
    throughput: float
    resources: dict[str, ResourceStats]
    events_processed: int
    drained: bool
    warnings: RunWarnings = field(default_factory=RunWarnings)

    @property
    def in_system(self) -> int:
        return self.created - self.departed

    @property
    def utilization(self) -> dict[str, float]:
        """Utilization keyed by resource id."""
        return {rid: r.utilization for rid, r in self.resources.items()}

    def metrics(self) -> dict[str, float]:
        """
        Flatten to ``{metric: value}``.

        Resource metrics are keyed ``"<resource_id>.<metric>"``.
        """
        out: dict[str, float] = {
            "created": float(self.created),
            "departed": float(self.departed),
            "measured_departed": float(self.measured_departed),
            "elapsed_time": self.elapsed_time,
            "avg_cycle_time": self.avg_cycle_time,
            "max_cycle_time": self.max_cycle_time,
            "avg_wait_time": self.avg_wait_time,
            "avg_process_time": self.avg_process_time,
            "throughput": self.throughput,
        }
        for rid, r in self.resources.items():
            out[f"{rid}.utilization"] = r.utilization
            out[f"{rid}.busy_time"] = r.busy_time
            out[f"{rid}.seized_count"] = float(r.seized_count)
            out[f"{rid}.max_queue_length"] = float(r.max_queue_length)
            out[f"{rid}.avg_queue_length"] = r.avg_queue_length
        return out
