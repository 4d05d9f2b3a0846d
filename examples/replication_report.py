"""
Replication analysis example.

Runs the two-station line 30 times, prints the confidence-interval
report, then asks what a second packer would change.

Usage:
    python examples/replication_report.py [model.json] [--csv out.csv] [--warmup MINUTES]

Without a JSON model the built-in two-station line is used.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from flowsim import ModelConfig, run_replications

from two_station_line import build_model


def main() -> None:
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    args = sys.argv[1:]
    csv_path = None
    if "--csv" in args:
        i = args.index("--csv")
        csv_path = Path(args[i + 1])
        del args[i : i + 2]
    warmup = None
    if "--warmup" in args:
        i = args.index("--warmup")
        warmup = float(args[i + 1])
        del args[i : i + 2]
    config = ModelConfig.from_json(args[0]) if args else build_model()

    baseline = run_replications(config, 30, workers=4, warmup=warmup)
    print(baseline.report())

    if csv_path is not None:
        csv_path.write_text(baseline.to_csv())
        print(f"Wrote {csv_path}")

    # What-if: one more unit of the busiest resource
    busiest = max(config.resources, key=lambda r: baseline.metric(f"{r.id}.utilization").mean)
    variant = config.with_capacity(busiest.id, busiest.capacity + 1)
    improved = run_replications(variant, 30, workers=4, warmup=warmup)

    before = baseline.metric("avg_cycle_time")
    after = improved.metric("avg_cycle_time")
    print()
    print(f"Adding one {busiest.name}:")
    print(f"  avg cycle time {before.mean:.3f} +/- {before.half_width:.3f}")
    print(f"              -> {after.mean:.3f} +/- {after.half_width:.3f}")


if __name__ == "__main__":
    main()
