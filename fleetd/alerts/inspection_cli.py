"""
Inspection CLI.

Command-line interface for crossing pre-operational inspection reports
with the ignition events recorded by the alert engine.

Usage:
    python -m fleetd.alerts.inspection_cli crosscheck REPORT.csv --date 2024-05-20
    python -m fleetd.alerts.inspection_cli ignitions --date 2024-05-20
    python -m fleetd.alerts.inspection_cli list --date 2024-05-20
"""

import argparse
import asyncio
import logging
import sys
from datetime import date

from fleetd.storage.sqlite_gateway import SQLiteGateway
from .inspections import (
    InspectionLoadError, day_bounds, load_inspection_reports, record_cross_check, summarize
)
from .models import InspectionStatus

STATUS_LABELS = {
    InspectionStatus.OK.value: "OK",
    InspectionStatus.LATE.value: "Late",
    InspectionStatus.MISSING.value: "No inspection",
}


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


def print_crossings(day: date, crossings) -> None:
    summary = summarize(day, crossings)

    print(f"Inspection cross-check for {day.isoformat()}")
    print("=" * 40)
    for crossing in crossings:
        label = STATUS_LABELS.get(crossing.state, crossing.state)
        print(f"{crossing.plate}: ignition {crossing.ignition_at:%H:%M:%S} -> {label}")

    print(f"\nIgnitions: {summary.total}")
    print(f"OK: {summary.ok} ({summary.percentage(summary.ok):.1f}%)")
    print(f"Late: {summary.late} ({summary.percentage(summary.late):.1f}%)")
    print(f"No inspection: {summary.missing} ({summary.percentage(summary.missing):.1f}%)")

    if summary.by_contract:
        print("\nBy contract:")
        for contract, counts in sorted(summary.by_contract.items()):
            print(f"  {contract}: " + ", ".join(
                f"{STATUS_LABELS[status.value]} {counts[status.value]}" for status in InspectionStatus
            ))


async def run_cross_check(args) -> bool:
    """Load a report and cross it with the day's ignition events."""
    try:
        reports = load_inspection_reports(args.report, start=args.date, end=args.date,
                                          limit=args.limit)
    except InspectionLoadError as e:
        print(f"Error: {e}")
        return False

    gateway = SQLiteGateway(args.db)
    result = await record_cross_check(gateway, reports, args.date)
    if not result.success:
        print(f"Error: {result.error}")
        return False

    print_crossings(args.date, result.data)
    return True


async def show_ignitions(args) -> bool:
    """List the ignition events recorded on a day."""
    gateway = SQLiteGateway(args.db)
    start, end = day_bounds(args.date)
    result = await gateway.list_ignition_events(start, end)
    if not result.success:
        print(f"Error: {result.error}")
        return False

    print(f"Ignition events on {args.date.isoformat()}: {len(result.data)}")
    for event in result.data:
        print(f"  {event.occurred_at:%H:%M:%S} {event.plate} {event.event_type.value}"
              f"{f' ({event.driver})' if event.driver else ''}")
    return True


async def show_crossings(args) -> bool:
    """Show the crossings already stored for a day."""
    gateway = SQLiteGateway(args.db)
    start, end = day_bounds(args.date)
    result = await gateway.list_inspections(start, end)
    if not result.success:
        print(f"Error: {result.error}")
        return False

    print_crossings(args.date, [c for c in result.data if c.ignition_at is not None])
    return True


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(description="Fleet pre-operational inspection cross-check")
    parser.add_argument('--db', default='data/fleetd.db',
                        help='Path to the alert history database')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose logging')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    cross_parser = subparsers.add_parser('crosscheck',
                                         help='Cross an inspection report with ignition events')
    cross_parser.add_argument('report', help='Inspection report (CSV)')
    cross_parser.add_argument('--date', type=date.fromisoformat, required=True,
                              help='Day to check (YYYY-MM-DD, UTC)')
    cross_parser.add_argument('--limit', type=int, default=3000,
                              help='Maximum report rows to read')

    for name, help_text in (('ignitions', 'List recorded ignition events'),
                            ('list', 'Show stored crossings')):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument('--date', type=date.fromisoformat, required=True,
                         help='Day to show (YYYY-MM-DD, UTC)')

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(args.verbose)

    commands = {
        'crosscheck': run_cross_check,
        'ignitions': show_ignitions,
        'list': show_crossings,
    }
    try:
        return 0 if asyncio.run(commands[args.command](args)) else 1

    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        return 1


if __name__ == '__main__':
    sys.exit(main())
