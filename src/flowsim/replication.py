"""
Replication engine.

Runs a model N times with seeds ``base_seed + i`` on fresh kernels and
folds the per-run statistics into confidence-bounded aggregates. Runs
share nothing, so they may execute on worker threads or processes; the
result order always follows the replication index.
"""

from __future__ import annotations

import csv
import io
import logging
import math
import threading
import time
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Sequence

from flowsim.config import ModelConfig
from flowsim.errors import ReplicationCancelled
from flowsim.kernel import RunState, SimulationKernel
from flowsim.stats.quantile import Quantile
from flowsim.stats.summary import RunStats
from flowsim.stats.variance import t_critical

logger = logging.getLogger(__name__)

PERCENTILES = (10, 25, 50, 75, 90, 95, 99)
DEFAULT_BASE_SEED = 12345


def drive(
    kernel: SimulationKernel,
    max_events: int | None = None,
    cancel: threading.Event | None = None,
) -> RunStats:
    """
    Step a kernel to completion under an optional event budget.

    The budget guards against rework loops that never drain: when it is
    exhausted the run stops, a warning is logged and the statistics
    available at that point are returned with ``guard_tripped`` set.
    ``cancel`` is only checked between steps, never inside a handler.
    """
    if kernel.state is RunState.UNINITIALIZED:
        kernel.initialize()

    processed = 0
    while True:
        if cancel is not None and cancel.is_set():
            raise ReplicationCancelled(f"seed {kernel.seed}: cancelled at t={kernel.clock:.4f}")
        if max_events is not None and processed >= max_events and kernel.pending_events:
            logger.warning(
                "seed %d: event budget of %d exhausted at t=%.4f with %d entities in system",
                kernel.seed,
                max_events,
                kernel.clock,
                kernel.created - kernel.departed,
            )
            return kernel.stats(guard_tripped=True)
        if not kernel.step():
            break
        processed += 1
    return kernel.stats()


def run_replication(
    config: ModelConfig,
    seed: int,
    max_events: int | None = None,
    cancel: threading.Event | None = None,
) -> RunStats:
    """One independent run on a freshly initialized kernel."""
    started = time.perf_counter()
    kernel = SimulationKernel(config, seed)
    kernel.initialize()
    stats = drive(kernel, max_events, cancel)
    logger.info(
        "replication seed=%d: %d events, %d entities, %.3fs",
        seed,
        stats.events_processed,
        stats.created,
        time.perf_counter() - started,
    )
    return stats


@dataclass(frozen=True)
class MetricSummary:
    """Across-replication summary of one metric."""

    name: str
    n: int
    mean: float
    std_dev: float
    min: float
    max: float
    median: float
    half_width: float
    confidence: float
    percentiles: dict[int, float] = field(default_factory=dict)

    @property
    def lower(self) -> float:
        return self.mean - self.half_width

    @property
    def upper(self) -> float:
        return self.mean + self.half_width

    @classmethod
    def from_values(cls, name: str, values: Sequence[float], confidence: float = 0.95) -> MetricSummary:
        q = Quantile()
        for v in values:
            q += v
        return cls(
            name=name,
            n=q.number_of_samples,
            mean=q.mean,
            std_dev=q.std_dev,
            min=q.min,
            max=q.max,
            median=q.median,
            half_width=q.confidence(confidence),
            confidence=confidence,
            percentiles={p: q.percentile(p) for p in PERCENTILES},
        )


@dataclass(frozen=True)
class Convergence:
    """Whether the CI half-width is within a relative error of the mean."""

    converged: bool
    required_replications: int
    target_half_width: float
    actual_half_width: float


@dataclass(frozen=True)
class AggregateStats:
    """Per-replication and aggregated statistics of a batch."""

    replications: tuple[RunStats, ...]
    metrics: dict[str, MetricSummary]
    confidence: float
    base_seed: int
    wall_time: float = 0.0

    @property
    def n(self) -> int:
        return len(self.replications)

    @property
    def negative_samples(self) -> int:
        return sum(r.warnings.negative_samples for r in self.replications)

    @property
    def nan_samples(self) -> int:
        return sum(r.warnings.nan_samples for r in self.replications)

    @property
    def guard_trips(self) -> int:
        return sum(1 for r in self.replications if r.warnings.guard_tripped)

    def metric(self, name: str) -> MetricSummary:
        return self.metrics[name]

    def resource_metrics(self, resource_id: str) -> dict[str, MetricSummary]:
        """Summaries for one resource, keyed by metric name without prefix."""
        prefix = f"{resource_id}."
        return {k[len(prefix):]: v for k, v in self.metrics.items() if k.startswith(prefix)}

    def convergence(self, metric: str = "avg_cycle_time", relative_error: float = 0.05) -> Convergence:
        """
        Compare the half-width with ``relative_error * |mean|``.

        ``required_replications`` estimates the n needed to get there,
        (t * s / target)^2, never less than the current n.
        """
        summary = self.metrics[metric]
        target = relative_error * abs(summary.mean)
        if summary.n < 2:
            return Convergence(False, max(summary.n, 2), target, summary.half_width)
        if target <= 0:
            converged = summary.half_width == 0
            return Convergence(converged, summary.n, target, summary.half_width)
        t = t_critical(summary.confidence, summary.n - 1)
        required = math.ceil((t * summary.std_dev / target) ** 2)
        return Convergence(
            converged=summary.half_width <= target,
            required_replications=max(summary.n, required),
            target_half_width=target,
            actual_half_width=summary.half_width,
        )

    def to_csv(self) -> str:
        """One row per metric: mean, spread and confidence bounds."""
        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow(["metric", "mean", "std_dev", "min", "max", "median", "ci_lower", "ci_upper", "ci_half_width"])
        for name, s in self.metrics.items():
            writer.writerow(
                [name]
                + [f"{v:.6g}" for v in (s.mean, s.std_dev, s.min, s.max, s.median, s.lower, s.upper, s.half_width)]
            )
        return buf.getvalue()

    def report(self, keys: Sequence[str] = ("avg_cycle_time", "throughput", "avg_wait_time", "departed")) -> str:
        """Plain-text summary for the reporting client."""
        level = f"{self.confidence * 100:.0f}%"
        lines = [
            "=" * 72,
            "SIMULATION OUTPUT ANALYSIS",
            "=" * 72,
            f"Replications      : {self.n} (seeds {self.base_seed}..{self.base_seed + self.n - 1})",
            f"Wall time         : {self.wall_time:.2f}s",
            f"Confidence level  : {level}",
            f"Clamped samples   : {self.negative_samples + self.nan_samples}",
            f"Event budget hits : {self.guard_trips}",
            "",
        ]
        if "avg_cycle_time" in self.metrics:
            c = self.convergence()
            lines += [
                "CONVERGENCE (avg_cycle_time, 5% relative error)",
                "-" * 72,
                f"Converged             : {'YES' if c.converged else 'NO'}",
                f"Required replications : {c.required_replications}",
                f"Target half-width     : {c.target_half_width:.4f}",
                f"Actual half-width     : {c.actual_half_width:.4f}",
                "",
            ]
        lines += ["KEY PERFORMANCE INDICATORS", "-" * 72]
        names = [k for k in keys if k in self.metrics]
        names += sorted(k for k in self.metrics if k.endswith(".utilization"))
        for name in names:
            s = self.metrics[name]
            lines.append(
                f"{name:<28} mean {s.mean:10.4f}  sd {s.std_dev:9.4f}  "
                f"{level} CI [{s.lower:.4f}, {s.upper:.4f}]"
            )
        lines.append("=" * 72)
        return "\n".join(lines)


def aggregate(
    runs: Sequence[RunStats],
    confidence: float = 0.95,
    base_seed: int = DEFAULT_BASE_SEED,
    wall_time: float = 0.0,
) -> AggregateStats:
    """Fold per-run statistics into per-metric summaries."""
    columns: dict[str, list[float]] = {}
    for run in runs:
        for name, value in run.metrics().items():
            columns.setdefault(name, []).append(value)
    metrics = {name: MetricSummary.from_values(name, values, confidence) for name, values in columns.items()}
    return AggregateStats(tuple(runs), metrics, confidence, base_seed, wall_time)


def run_replications(
    config: ModelConfig,
    n: int,
    base_seed: int = DEFAULT_BASE_SEED,
    *,
    confidence: float = 0.95,
    max_events: int | None = None,
    workers: int = 1,
    executor: str = "thread",
    cancel: threading.Event | None = None,
    warmup: float | None = None,
) -> AggregateStats:
    """
    Run ``n`` replications and aggregate them.

    Replication i uses seed ``base_seed + i``. A ConfigurationError is
    raised before any run starts; numeric-anomaly and budget warnings are
    collected per run and never abort the batch.

    ``warmup``, if given, replaces the config's warm-up period for every
    replication.
    """
    if n < 1:
        raise ValueError(f"need at least one replication, got {n}")
    if warmup is not None:
        config = config.with_warmup(warmup)
    t_critical(confidence, 1)  # reject a bad level before doing any work
    SimulationKernel(config, base_seed)

    started = time.perf_counter()
    seeds = [base_seed + i for i in range(n)]
    logger.info("starting %d replications (seeds %d..%d, workers=%d)", n, seeds[0], seeds[-1], workers)

    if workers <= 1:
        runs = [run_replication(config, seed, max_events, cancel) for seed in seeds]
    else:
        runs = _run_parallel(config, seeds, max_events, workers, executor, cancel)

    result = aggregate(runs, confidence, base_seed, time.perf_counter() - started)
    if result.guard_trips:
        logger.warning("%d of %d replications hit the event budget", result.guard_trips, n)
    if result.negative_samples or result.nan_samples:
        logger.warning(
            "%d negative and %d non-finite samples were clamped to 0 across the batch",
            result.negative_samples,
            result.nan_samples,
        )
    logger.info("finished %d replications in %.2fs", n, result.wall_time)
    return result


def _run_parallel(
    config: ModelConfig,
    seeds: list[int],
    max_events: int | None,
    workers: int,
    executor: str,
    cancel: threading.Event | None,
) -> list[RunStats]:
    pool: Executor
    if executor == "thread":
        pool = ThreadPoolExecutor(max_workers=workers)
    elif executor == "process":
        if cancel is not None:
            raise ValueError("cancel tokens are only supported with the thread executor")
        pool = ProcessPoolExecutor(max_workers=workers)
    else:
        raise ValueError(f"executor must be 'thread' or 'process', got {executor!r}")

    try:
        if cancel is None:
            futures = [pool.submit(run_replication, config, seed, max_events) for seed in seeds]
        else:
            futures = [pool.submit(run_replication, config, seed, max_events, cancel) for seed in seeds]
        return [f.result() for f in futures]
    except BaseException:
        pool.shutdown(wait=True, cancel_futures=True)
        raise
    finally:
        pool.shutdown(wait=True)
