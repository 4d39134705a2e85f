#!/usr/bin/env python3
"""
Analyze an issue tracker export from the command line.

Usage:
    python -m sprintboard.scripts.analyze_export EXPORT.csv [--sprint S]
        [--assignee A] [--multiplier M] [--json]

Uses the capacities and targets saved in the preferences store.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from sprintboard.core.config import settings
from sprintboard.core.logging_config import configure_logging
from sprintboard.services import aggregation_service, parser_service, preferences_store

logger = logging.getLogger(__name__)


def log(msg: str) -> None:
    """Unbuffered output for real-time reporting."""
    print(msg, flush=True)


def read_export(path: Path) -> str:
    """Read and decode an export file. Raises OSError on read failure."""
    return parser_service.decode_export(path.read_bytes())


def format_summary(dashboard: dict, store_stats: dict | None = None) -> list[str]:
    summary = dashboard["summary"]
    lines = [
        f"Rows: {dashboard['row_count']} ({dashboard['filtered_count']} selected)",
        f"Story points: {summary['completed_sp']:g} / {summary['total_sp']:g} done "
        f"({summary['completion_rate']}%)",
        f"High risks: {summary['high_risks']}, over-allocated assignees: {summary['overloaded_count']}",
        "",
        "Capacity:",
    ]
    for name, stats in sorted(dashboard["stats"].items()):
        lines.append(
            f"  {name}: {stats['capacity_used']:g}/{stats['sprint_capacity']:g} SP "
            f"({stats['capacity_utilization']:.0f}%, {stats['allocation_status']})"
        )

    if dashboard["suggestions"]:
        lines += ["", "Rebalancing suggestions:"]
        for s in dashboard["suggestions"]:
            lines.append(f"  {s['id']}: {s['from']} -> {s['to']} ({s['sp']:g} SP) {s['summary']}")

    what_if = dashboard["what_if"]
    lines += [
        "",
        f"What-if: capacity {what_if['current_capacity']:g} -> {what_if['projected_capacity']:g}, "
        f"projected completion {what_if['projected_completion']:.1f}%",
    ]

    if store_stats is not None:
        keys = [e["key"] for e in store_stats.get("entries", [])]
        lines.append(f"Saved preferences: {', '.join(keys) if keys else 'none'}")
    return lines


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Summarize a sprint export")
    parser.add_argument("path", type=Path, help="Export file (.csv, .tsv or .txt)")
    parser.add_argument("--sprint", default="all", help="Sprint to select (default: all)")
    parser.add_argument("--assignee", default="all", help="Assignee to select (default: all)")
    parser.add_argument("--multiplier", type=float, default=1.0, help="What-if capacity multiplier")
    parser.add_argument("--json", action="store_true", help="Print the full dashboard as JSON")
    args = parser.parse_args(argv)

    configure_logging(settings.log_level)

    if not parser_service.is_supported_filename(args.path.name):
        log(f"Unsupported file type: {args.path.name} (expected .csv, .tsv or .txt)")
        return 2

    try:
        text = read_export(args.path)
    except OSError as exc:
        logger.error("Failed to read export %s: %s", args.path, exc)
        log(f"Failed to read export: {exc}")
        return 1

    preferences_store.init_db()
    parsed = parser_service.parse_export(text)
    dashboard = aggregation_service.build_dashboard(
        parsed["rows"],
        parsed["sprint_dates"],
        preferences_store.load_dashboard_config(),
        sprint=args.sprint,
        assignee=args.assignee,
        what_if_multiplier=args.multiplier,
        default_capacity=settings.default_sprint_capacity,
        rebalance_default_capacity=settings.rebalance_default_capacity,
    )

    if args.json:
        log(json.dumps(dashboard, indent=2, default=str))
    else:
        for line in format_summary(dashboard, preferences_store.get_store_stats()):
            log(line)
    return 0


if __name__ == "__main__":
    sys.exit(main())
