#!/usr/bin/env python3
"""
OPTICS Reachability CLI

Command-line interface for computing cluster orders of vector datasets.

Usage:
    reachability order --input data.npy --epsilon 0.5 --min-pts 5
    reachability order --input data.csv --id-column --epsilon 2 --min-pts 3 --metric manhattan
    reachability order --input data.npy --config config/settings.yaml --neighborhood faiss
    reachability describe                          # Algorithm description
"""

import argparse
import csv
import json
import math
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import numpy as np

from reachability.config.settings_loader import ConfigManager, Settings
from reachability.core.cluster_order import ClusterOrder
from reachability.core.optics import OPTICS
from reachability.core.ordering_engine import OrderingEngine
from reachability.schemas.data_models import OrderingSummary
from reachability.storage.cluster_order_storage import ClusterOrderStorage
from reachability.utils.advanced_logging import configure_logging, log_exceptions
from reachability.utils.error_handling import ReachabilityError


def load_vectors(path: Path, id_column: bool = False) -> Tuple[np.ndarray, Optional[List[str]]]:
    """
    Load a dataset from .npy or .csv.

    Args:
        path: Input file
        id_column: CSV only; first column holds object ids

    Returns:
        Tuple of (vectors N x D, object ids or None for row numbers)
    """
    if path.suffix == ".npy":
        return np.load(path), None

    ids: List[str] = []
    rows: List[List[float]] = []
    with path.open("r", newline="", encoding="utf-8") as handle:
        for row in csv.reader(handle):
            if not row:
                continue
            if id_column:
                ids.append(row[0])
                row = row[1:]
            rows.append([float(value) for value in row])

    return np.array(rows, dtype=np.float64), (ids if id_column else None)


def build_summary(
    cluster_order: ClusterOrder,
    run_id: str,
    settings: Settings,
    engine: Optional[OPTICS],
    elapsed_ms: float,
    output_path: Optional[Path],
) -> OrderingSummary:
    reachabilities = cluster_order.reachability_array()
    finite = reachabilities[np.isfinite(reachabilities)]

    return OrderingSummary(
        run_id=run_id,
        epsilon=settings.optics.epsilon,
        min_pts=settings.optics.min_pts,
        metric=settings.optics.metric,
        neighborhood=settings.optics.neighborhood,
        total_objects=len(cluster_order),
        runs=len(cluster_order.run_starts()),
        max_finite_reachability=float(finite.max()) if finite.size else None,
        processing_time_ms=round(elapsed_ms, 3),
        created_at=datetime.now(timezone.utc).isoformat(),
        output_path=str(output_path) if output_path else None,
        settings=engine.attribute_settings() if engine else {},
    )


def print_json(data: dict, indent: int = 2):
    """Pretty print JSON."""
    print(json.dumps(data, indent=indent, default=str))


def print_summary(summary: OrderingSummary):
    """Print run summary."""
    print(f"✅ Ordered {summary.total_objects} objects into {summary.runs} runs")
    print(f"   epsilon={summary.epsilon} min_pts={summary.min_pts} metric={summary.metric}")
    print(f"   neighborhood={summary.neighborhood} time={summary.processing_time_ms}ms")
    if summary.output_path:
        print(f"   output={summary.output_path}")


def resolve_settings(args: argparse.Namespace) -> Settings:
    """Load settings and apply command-line overrides."""
    settings = ConfigManager.reload_config(args.config) if args.config else ConfigManager.get_settings()

    overrides = {
        "epsilon": args.epsilon,
        "min_pts": args.min_pts,
        "metric": args.metric,
        "neighborhood": args.neighborhood,
    }
    optics = settings.optics.model_copy(
        update={key: value for key, value in overrides.items() if value is not None}
    )
    if args.verbose:
        optics = optics.model_copy(update={"verbose": True})

    storage = settings.storage
    if args.output_dir is not None:
        jsonl = storage.jsonl.model_copy(update={"output_dir": str(args.output_dir)})
        storage = storage.model_copy(update={"jsonl": jsonl})

    return settings.model_copy(update={"optics": optics, "storage": storage})


def run_order(args: argparse.Namespace) -> int:
    settings = resolve_settings(args)

    configure_logging(
        log_level=args.log_level or settings.logging.level,
        log_format=settings.logging.format,
        log_file=settings.logging.file.path if settings.logging.file.enabled else None,
        service_name=settings.service.name,
    )

    vectors, object_ids = load_vectors(args.input, id_column=args.id_column)

    engine = OrderingEngine(use_gpu=settings.faiss.use_gpu, run_retries=settings.optics.run_retries)
    start = time.time()
    cluster_order = engine.order(
        vectors,
        epsilon=settings.optics.epsilon,
        min_pts=settings.optics.min_pts,
        metric=settings.optics.metric,
        neighborhood=settings.optics.neighborhood,
        object_ids=object_ids,
        verbose=settings.optics.verbose,
        progress_interval=settings.optics.progress_interval,
    )
    elapsed_ms = (time.time() - start) * 1000

    output_path = None
    if settings.storage.jsonl.enabled:
        storage = ClusterOrderStorage(
            output_dir=settings.storage.jsonl.output_dir,
            file_pattern=settings.storage.jsonl.file_pattern,
        )
        with log_exceptions(operation="export_cluster_order"):
            output_path = storage.save(cluster_order, run_id=engine.last_run_id)

    summary = build_summary(
        cluster_order, engine.last_run_id, settings, engine.last_engine, elapsed_ms, output_path
    )

    if args.json:
        print_json(json.loads(summary.model_dump_json()))
    else:
        print_summary(summary)
    return 0


def run_describe(args: argparse.Namespace) -> int:
    description = OPTICS.DESCRIPTION
    print(f"{description.title}: {description.summary}")
    print()
    print(description.description)
    print()
    print(f"Reference: {description.reference}")
    return 0


def _positive_float(value: str) -> float:
    parsed = float(value)
    if math.isnan(parsed) or parsed < 0:
        raise argparse.ArgumentTypeError(f"{value} is not a non-negative number")
    return parsed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="reachability",
        description="OPTICS reachability ordering CLI",
    )
    subparsers = parser.add_subparsers(dest="command")

    order_parser = subparsers.add_parser("order", help="Compute the cluster order of a dataset")
    order_parser.add_argument("--input", type=Path, required=True, help="Dataset (.npy or .csv)")
    order_parser.add_argument("--id-column", action="store_true", help="CSV first column holds object ids")
    order_parser.add_argument("--epsilon", type=_positive_float, default=None)
    order_parser.add_argument("--min-pts", type=int, default=None)
    order_parser.add_argument("--metric", choices=["euclidean", "manhattan", "cosine"], default=None)
    order_parser.add_argument("--neighborhood", choices=list(OrderingEngine.NEIGHBORHOODS), default=None)
    order_parser.add_argument("--config", type=str, default=None, help="Settings YAML file")
    order_parser.add_argument("--output-dir", type=Path, default=None)
    order_parser.add_argument("--log-level", type=str, default=None)
    order_parser.add_argument("--verbose", action="store_true", help="Log expansion progress")
    order_parser.add_argument("--json", action="store_true", help="Print the summary as JSON")

    subparsers.add_parser("describe", help="Describe the algorithm")

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        if args.command == "order":
            return run_order(args)
        if args.command == "describe":
            return run_describe(args)
    except ReachabilityError as e:
        print(f"❌ {e.error_code}: {e.message}", file=sys.stderr)
        return 1
    except (FileNotFoundError, ValueError) as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1

    parser.print_help()
    return 2


if __name__ == "__main__":
    sys.exit(main())
