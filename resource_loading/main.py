from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import pandas as pd

from .engine import ResourceEngine
from .io_utils import (
    InMemoryRepository,
    distribution_frame,
    ensure_directory,
    load_config,
    load_repository,
    parse_date,
    write_csv,
)
from .models import EngineConfig
from .timephase import GROUP_BY_OPTIONS


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Resource loading engine: conflicts, histograms, distribution and S-curves (CSV out)."
    )
    parser.add_argument(
        "--project-dir",
        help="Project directory containing input/ and output/ subfolders",
    )
    parser.add_argument("--resources", help="Path to resources JSON (overrides project-dir default)")
    parser.add_argument("--allocations", help="Path to allocations CSV (overrides project-dir default)")
    parser.add_argument("--periods", help="Path to assignment periods CSV (optional)")
    parser.add_argument("--config", help="Path to configuration JSON file (optional)")
    parser.add_argument(
        "--outdir",
        default=None,
        help="Output directory for generated CSV files (default: <project-dir>/output or ./out)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print results instead of writing CSV files",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    conflicts = sub.add_parser("conflicts", help="Detect over-allocation episodes")
    conflicts.add_argument("--resource", help="Limit detection to one resource id")

    histogram = sub.add_parser("histogram", help="Daily load vs capacity for one resource")
    histogram.add_argument("--resource", required=True)
    histogram.add_argument("--start", required=True, help="ISO start date")
    histogram.add_argument("--end", required=True, help="ISO end date (inclusive)")

    dist = sub.add_parser("distribute", help="Spread a quantity over a date span with a curve")
    dist.add_argument("--total", type=float, required=True)
    dist.add_argument("--start", required=True, help="ISO start date")
    dist.add_argument("--end", required=True, help="ISO end date (inclusive)")
    dist.add_argument("--curve", default=None, help="Curve preset or configured curve name")

    scurve = sub.add_parser("scurve", help="Cumulative planned/actual/earned series with EVM metrics")
    scurve.add_argument("--group-by", choices=GROUP_BY_OPTIONS, default="week")
    scurve.add_argument("--measure", choices=("cost", "quantity"), default="cost")
    scurve.add_argument("--resource", help="Limit the series to one resource id")
    scurve.add_argument("--activity", help="Limit the series to one activity id")

    commodity = sub.add_parser("commodity", help="Cumulative planned cost per resource category")
    commodity.add_argument("--group-by", choices=GROUP_BY_OPTIONS, default="week")
    commodity.add_argument("--resource", help="Limit the curves to one resource id")
    commodity.add_argument("--activity", help="Limit the curves to one activity id")
    return parser


def _resolve_io_paths(
    args: argparse.Namespace,
) -> Tuple[Optional[Path], Optional[Path], Optional[Path], Optional[Path], Path]:
    project_dir = Path(args.project_dir).resolve() if args.project_dir else None
    if project_dir and not project_dir.exists():
        raise ValueError(f"project directory not found: {project_dir}")
    input_dir = project_dir / "input" if project_dir else None

    def _pick(path_value: Optional[str], default_name: str, required: bool) -> Optional[Path]:
        if path_value:
            path = Path(path_value)
        elif input_dir and (required or (input_dir / default_name).exists()):
            path = input_dir / default_name
        else:
            return None
        if not path.exists():
            raise ValueError(f"{default_name} not found at {path}")
        return path

    needs_data = args.command != "distribute"
    resources_path = _pick(args.resources, "resources.json", needs_data)
    allocations_path = _pick(args.allocations, "allocations.csv", needs_data)
    periods_path = _pick(args.periods, "periods.csv", False)
    config_path = _pick(args.config, "config.json", False)

    if needs_data:
        missing = [
            f"--{name}"
            for name, value in (("resources", resources_path), ("allocations", allocations_path))
            if value is None
        ]
        if missing:
            raise ValueError(f"missing required input paths: {', '.join(missing)} (or provide --project-dir)")

    if args.outdir:
        outdir = Path(args.outdir)
    elif project_dir:
        outdir = project_dir / "output"
    else:
        outdir = Path("out")
    return resources_path, allocations_path, periods_path, config_path, outdir


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(levelname)s %(message)s")


def _emit(frames: Sequence[Tuple[str, pd.DataFrame]], outdir: Path, dry_run: bool) -> None:
    if dry_run:
        for name, frame in frames:
            print(f"# {name}")
            print("(empty)" if frame.empty else frame.to_string(index=False))
        return
    outdir_path = ensure_directory(outdir)
    for name, frame in frames:
        path = outdir_path / name
        write_csv(frame, path)
        print(f"Wrote {path}")


def _run(args: argparse.Namespace, engine: ResourceEngine) -> List[Tuple[str, pd.DataFrame]]:
    if args.command == "conflicts":
        scan = engine.scan_conflicts(args.resource)
        for diagnostic in scan.skipped:
            print(f"Skipped {diagnostic.resource_id}: {diagnostic.detail}", file=sys.stderr)
        return [("conflicts.csv", scan.to_frame())]
    if args.command == "histogram":
        frame = engine.build_histogram(
            args.resource, parse_date(args.start, "--start"), parse_date(args.end, "--end")
        )
        summary = pd.DataFrame([asdict(frame.attrs["summary"])])
        return [
            (f"histogram_{args.resource}.csv", frame),
            (f"histogram_{args.resource}_summary.csv", summary),
        ]
    if args.command == "distribute":
        increments = engine.distribute(
            args.total, parse_date(args.start, "--start"), parse_date(args.end, "--end"), args.curve
        )
        frame = pd.DataFrame(
            [{"date": inc.date, "quantity": inc.quantity} for inc in increments],
            columns=["date", "quantity"],
        )
        frame["cumulative"] = frame["quantity"].cumsum()
        return [("distribution.csv", frame)]
    if args.command == "scurve":
        s_curve = engine.build_s_curve(
            args.group_by, args.measure, resource_id=args.resource, activity_id=args.activity
        )
        metrics = pd.DataFrame([s_curve.metrics.as_dict()])
        return [("s_curve.csv", s_curve.series), ("evm_metrics.csv", metrics)]
    if args.command == "commodity":
        curves = engine.build_commodity_curves(
            args.group_by, resource_id=args.resource, activity_id=args.activity
        )
        return [
            ("commodity_curves.csv", curves.series),
            ("commodity_distribution.csv", distribution_frame(curves.distribution)),
        ]
    raise ValueError(f"unknown command '{args.command}'")


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = _build_parser().parse_args(argv)
    try:
        resources_path, allocations_path, periods_path, config_path, outdir = _resolve_io_paths(args)
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(2)

    try:
        cfg = load_config(config_path) if config_path else EngineConfig()
        _configure_logging(cfg.logging_level)
        if resources_path and allocations_path:
            repository = load_repository(resources_path, allocations_path, periods_path)
        else:
            repository = InMemoryRepository()
        engine = ResourceEngine(
            resources=repository,
            allocations=repository,
            periods=repository if periods_path else None,
            config=cfg,
        )
        frames = _run(args, engine)
    except (KeyError, ValueError) as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    _emit(frames, outdir, args.dry_run)


if __name__ == "__main__":
    main()
