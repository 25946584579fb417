#!/usr/bin/env python3
"""
CLI script to query time-travel state and SLA metrics of a run.

Example usage:
    python query_state.py snapshot run_001 --bin 3
    python query_state.py window run_001 --start 0 --end 11 --full
    python query_state.py metrics run_001 --output metrics.json
"""
import sys
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parent.parent))

import argparse
import json
import logging
from typing import Any, Dict

from flowstate.config import Container, Settings
from flowstate.core.exceptions import StateQueryError
from flowstate.state import GraphQueryMode


def run_query(args: argparse.Namespace, container: Container) -> Dict[str, Any]:
    if args.command == "snapshot":
        return container.state_service().get_state(args.run_id, args.bin).to_dict()
    if args.command == "window":
        mode = GraphQueryMode.FULL if args.full else GraphQueryMode.OPERATIONAL
        return container.state_service().get_state_window(args.run_id, args.start, args.end, mode).to_dict()
    return container.metrics_service().get_metrics(args.run_id, args.start, args.end).to_dict()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Query run state snapshots, state windows and SLA metrics",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--data-dir", help="Run data directory (defaults to FLOWSTATE_DATA_DIR)")
    parser.add_argument("--output", "-o", help="Write JSON to this file instead of stdout")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    snapshot = subparsers.add_parser("snapshot", help="State of every node at one bin")
    snapshot.add_argument("run_id", help="Run identifier")
    snapshot.add_argument("--bin", type=int, required=True, help="Bin index")

    window = subparsers.add_parser("window", help="Node and edge series over a bin range")
    window.add_argument("run_id", help="Run identifier")
    window.add_argument("--start", type=int, required=True, help="First bin (inclusive)")
    window.add_argument("--end", type=int, required=True, help="Last bin (inclusive)")
    window.add_argument("--full", action="store_true", help="Include computed const/expr/pmf nodes")

    metrics = subparsers.add_parser("metrics", help="Per-service SLA metrics")
    metrics.add_argument("run_id", help="Run identifier")
    metrics.add_argument("--start", type=int, default=None, help="First bin (inclusive)")
    metrics.add_argument("--end", type=int, default=None, help="Last bin (inclusive)")

    return parser


def main() -> int:
    """Main entry point for the state query CLI."""
    args = build_parser().parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    settings = Settings.from_env()
    if args.data_dir:
        settings.data_dir = args.data_dir
    container = Container.from_settings(settings)

    try:
        result = run_query(args, container)
    except StateQueryError as e:
        print(f"Error ({e.status_code}): {e.message}", file=sys.stderr)
        return 1

    text = json.dumps(result, indent=2)
    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(text + "\n", encoding="utf-8")
        print(f"Results written to {output_path}")
    else:
        print(text)
    return 0


if __name__ == "__main__":
    sys.exit(main())
