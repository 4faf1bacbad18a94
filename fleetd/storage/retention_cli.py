"""
Retention CLI.

Command-line interface for running retention sweeps and inspecting the
retention policies and storage use of the alert history database.

Usage:
    python -m fleetd.storage.retention_cli sweep [--categories resolved_alerts ...]
    python -m fleetd.storage.retention_cli status
    python -m fleetd.storage.retention_cli policies
    python -m fleetd.storage.retention_cli storage
"""

import argparse
import asyncio
import logging
import sys

from .gateway import RecordCategory
from .retention_manager import create_retention_engine
from .retention_scheduler import RetentionScheduler


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


async def run_sweep(args) -> bool:
    """Run a retention sweep."""
    engine = create_retention_engine(args.config, args.db, logs_dir=args.logs_dir)
    scheduler = RetentionScheduler(engine, state_path=args.state)

    print("Starting retention sweep...")
    result = await scheduler.trigger_manual_sweep(args.categories)

    print(f"\nSweep completed: {len(result.operations)} operations")
    print(f"Total records deleted: {result.total_deleted}")

    for operation in result.operations:
        status_icon = "✓" if operation.status != 'failed' else "✗"
        print(f"{status_icon} {operation.category}: {operation.records_deleted} of "
              f"{operation.records_processed} records deleted ({operation.status})")
        if operation.export_path:
            print(f"  Exported to: {operation.export_path}")
        if operation.error_message:
            print(f"  Error: {operation.error_message}")

    return result.success


async def show_status(args):
    """Show retention system status."""
    engine = create_retention_engine(args.config, args.db, logs_dir=args.logs_dir)
    scheduler = RetentionScheduler(engine, state_path=args.state)
    status = engine.get_retention_status()
    scheduler_status = scheduler.get_status()

    print("Data Retention Status")
    print("=" * 40)
    print(f"Enabled: {status['enabled']}")
    print(f"Export format: {status['export_format']}")
    print(f"Export directory: {status['export_directory']}")
    last = scheduler_status.last_cleanup.isoformat() if scheduler_status.last_cleanup else 'never'
    print(f"Last sweep: {last}")

    print("\nRecord counts:")
    for category, count in (await engine.get_record_counts()).items():
        print(f"  {category}: {count}")


async def show_policies(args):
    """Show retention policies."""
    engine = create_retention_engine(args.config, args.db, logs_dir=args.logs_dir)

    print("Retention Policies")
    print("=" * 40)
    for name, policy in engine.policies.items():
        print(f"\n{name}:")
        print(f"  Enabled: {policy.enabled}")
        print(f"  Retention: {policy.retention_days} days")
        print(f"  Max records: {policy.max_records}")
        print(f"  Description: {policy.description}")


async def show_storage(args):
    """Show estimated storage use."""
    engine = create_retention_engine(args.config, args.db, logs_dir=args.logs_dir)
    estimate = await engine.estimate_storage()

    print("Storage Estimate")
    print("=" * 40)
    print(f"Estimated size: {estimate.estimated_mb:.2f} MB")
    print(f"Budget used: {estimate.usage_ratio:.1%}")
    if estimate.warning:
        print("WARNING: storage is near the configured limit")


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(description="Fleet alert history retention")
    parser.add_argument('--config', default='configs/retention.yaml',
                        help='Path to retention configuration file')
    parser.add_argument('--db', default='data/fleetd.db',
                        help='Path to the alert history database')
    parser.add_argument('--logs-dir', default='logs/retention',
                        help='Directory for the retention audit trail')
    parser.add_argument('--state', default='data/retention_state.json',
                        help='Path to the scheduler state file')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose logging')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    sweep_parser = subparsers.add_parser('sweep', help='Run a retention sweep now')
    sweep_parser.add_argument('--categories', nargs='+',
                              choices=[category.value for category in RecordCategory],
                              help='Categories to sweep (default: all)')

    subparsers.add_parser('status', help='Show retention status')
    subparsers.add_parser('policies', help='Show retention policies')
    subparsers.add_parser('storage', help='Show estimated storage use')

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(args.verbose)

    try:
        if args.command == 'sweep':
            return 0 if asyncio.run(run_sweep(args)) else 1
        elif args.command == 'status':
            asyncio.run(show_status(args))
        elif args.command == 'policies':
            asyncio.run(show_policies(args))
        elif args.command == 'storage':
            asyncio.run(show_storage(args))
        return 0

    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        return 1


if __name__ == '__main__':
    sys.exit(main())
