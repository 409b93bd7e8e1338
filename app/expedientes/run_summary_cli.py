from __future__ import annotations

"""CLI helper for printing the outcome of a reconciliation run."""

import argparse
from typing import Any, Dict, Optional, Sequence

from . import config, telemetry
from .utils import load_json_file


def _build_parser() -> argparse.ArgumentParser:
    """Return an argument parser for the run summary CLI."""

    parser = argparse.ArgumentParser(
        description="Show the summary of a reconciliation run.",
    )
    parser.add_argument(
        "--run-file",
        help="Telemetry JSON of the run to summarise.",
    )
    parser.add_argument(
        "--latest",
        action="store_true",
        help="Summarise the most recent run.",
    )
    return parser


def _load_run(args: argparse.Namespace) -> Optional[Dict[str, Any]]:
    path = args.run_file
    if path is None and args.latest:
        path = telemetry.latest_run_path()
    if path is None:
        return None
    payload = load_json_file(path)
    return payload if isinstance(payload, dict) else None


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the run summary CLI."""

    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.run_file is None and not args.latest:
        parser.error("You must provide --run-file or --latest")

    run = _load_run(args)
    if run is None:
        parser.error("No run telemetry found")

    print(f"Run {run.get('run_id')} ({run.get('mode')})")
    for status, count in sorted((run.get("summary") or {}).items()):
        print(f"  {status}: {count}")
    for label, count in sorted((run.get("labels") or {}).items()):
        print(f"  {label}: {count}")

    statistics = run.get("statistics") or {}
    if statistics:
        print("\nStatistics:")
        for key in ("total", "completed", "pending", "failed", "with_cost", "success_rate_percent"):
            if key in statistics:
                print(f"  {key}: {statistics[key]}")

    failures = [entry for entry in run.get("entries") or [] if entry.get("status") == "failed"]
    if failures:
        print("\nFailed cases:")
        for entry in failures:
            phase = f" [{entry['phase']}]" if entry.get("phase") else ""
            print(f"  {entry.get('case_id')}{phase}: {entry.get('reason')}")

    last_summary = load_json_file(config.SUMMARY_FILE)
    if isinstance(last_summary, dict) and last_summary.get("file_path"):
        print(f"\nLast workbook: {last_summary['file_path']}")

    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry
    raise SystemExit(main())
