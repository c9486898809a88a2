#!/usr/bin/env python3
"""
Command-line entry point for ServiceSync reconciliation.

Usage:
    python reconcile.py run [--snapshot PATH] [--data-dir DIR] [--dry-run] [--if-due]
    python reconcile.py status [--data-dir DIR]

Exit codes:
    0  run completed (identifier-level failures are reported in the counts)
    1  configuration error
    2  run-fatal failure (snapshot, credentials or an unusable staging store);
       recorded in the run ledger
"""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict
from typing import Optional

from reconciliation.engine import ReconciliationEngine, ReconciliationResult
from reconciliation.existence import ExistenceResolver, FirestoreDownstreamStore
from reconciliation.reconciler import Reconciler
from reconciliation.scheduler import ReconciliationScheduler
from shared.logging_config import configure_logging
from shared_lib.firestore_client import FirestoreClient
from shared_lib.snapshot_source import JsonSnapshotSource
from staging.repository import SQLiteStagingRepository
from validation.config import ServiceSyncConfig, validate_config
from validation.errors import PersistenceError, ServiceSyncError, is_run_fatal

logger = logging.getLogger('ServiceSync.cli')

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_FATAL = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Reconcile provider services into the staging collection')
    subparsers = parser.add_subparsers(dest='command', required=True)

    run = subparsers.add_parser('run', help='Run one reconciliation batch')
    run.add_argument('--snapshot', help='Path of the snapshot export (or set SSYNC_SNAPSHOT_PATH)')
    run.add_argument('--data-dir', '-d', help='Directory holding staging.db and the run ledger')
    run.add_argument('--dry-run', action='store_true', help='Compute decisions without writing')
    run.add_argument('--if-due', action='store_true',
                     help='Only run if reconcile_interval has elapsed since the last run')

    status = subparsers.add_parser('status', help='Print the last run recorded in the ledger')
    status.add_argument('--data-dir', '-d', help='Directory holding the run ledger')
    return parser


def load_config(args: argparse.Namespace) -> tuple[Optional[ServiceSyncConfig], Optional[str]]:
    """Build configuration with command-line overrides on top of env/YAML."""
    overrides = {}
    if getattr(args, 'snapshot', None):
        overrides['snapshot_path'] = args.snapshot
    if getattr(args, 'data_dir', None):
        overrides['data_dir'] = args.data_dir
    if getattr(args, 'dry_run', False):
        overrides['dry_run'] = True
    return validate_config(overrides)


async def run_once(config: ServiceSyncConfig) -> ReconciliationResult:
    """Build the engine from configuration and run one batch.

    Raises:
        SnapshotError: run-fatal failure, nothing written
        PersistenceError / OSError: the staging store could not be opened
    """
    source = JsonSnapshotSource(config.snapshot_path)
    repository = SQLiteStagingRepository(config.staging_db_path, config.staging_collection)
    reconciler = Reconciler(config.provider_name)

    if not config.firestore_enabled:
        logger.warning("No Firestore project configured: every service resolves as not found downstream")
        resolver = ExistenceResolver(None, [])  # type: ignore[arg-type]
        engine = ReconciliationEngine(source, resolver, repository, reconciler, dry_run=config.dry_run)
        return await engine.run()

    async with FirestoreClient(
        config.firestore_project_id,
        token=config.firestore_token,
        base_url=config.firestore_base_url,
        timeout=config.firestore_timeout,
    ) as client:
        resolver = ExistenceResolver(
            FirestoreDownstreamStore(client, config.downstream_stores),
            config.downstream_stores,
            batch_size=config.existence_batch_size,
            concurrency=config.existence_concurrency,
            completed_statuses=config.completed_statuses,
        )
        engine = ReconciliationEngine(source, resolver, repository, reconciler, dry_run=config.dry_run)
        return await engine.run()


def abort_run(scheduler: ReconciliationScheduler, error: BaseException) -> int:
    """Record a run that failed before any write and return the fatal exit code."""
    logger.error(f"Run aborted before any write: {type(error).__name__}: {error}")
    scheduler.record_failure(error)
    return EXIT_FATAL


def cmd_run(args: argparse.Namespace) -> int:
    config, error = load_config(args)
    if config is None:
        print(f"Configuration error: {error}", file=sys.stderr)
        return EXIT_CONFIG

    configure_logging(config.log_level)
    config.log_config()

    if not config.snapshot_path:
        logger.error("No snapshot configured (use --snapshot or SSYNC_SNAPSHOT_PATH)")
        return EXIT_CONFIG
    if not config.firestore_enabled and not config.dry_run:
        logger.error("firestore_project_id is required unless running with --dry-run")
        return EXIT_CONFIG

    scheduler = ReconciliationScheduler(config.data_dir)
    if args.if_due and not scheduler.is_due(config.reconcile_interval):
        logger.info(f"Reconciliation not due (interval: {config.reconcile_interval})")
        print(json.dumps({'skipped': True, 'reason': 'not due'}))
        return EXIT_OK

    try:
        result = asyncio.run(run_once(config))
    except ServiceSyncError as e:
        # Staging persistence errors inside a run are isolated per id; one
        # escaping here means the staging store could not be opened at all
        if not (is_run_fatal(e) or isinstance(e, PersistenceError)):
            raise
        return abort_run(scheduler, e)
    except OSError as e:
        return abort_run(scheduler, e)

    if not result.dry_run:
        scheduler.record_run(result)
    print(json.dumps({**result.counts(), 'dry_run': result.dry_run, 'errors': result.errors}, indent=2))
    return EXIT_OK


def cmd_status(args: argparse.Namespace) -> int:
    config, error = load_config(args)
    if config is None:
        print(f"Configuration error: {error}", file=sys.stderr)
        return EXIT_CONFIG

    state = ReconciliationScheduler(config.data_dir).load_state()
    print(json.dumps(asdict(state), indent=2))
    return EXIT_OK


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == 'run':
        return cmd_run(args)
    return cmd_status(args)


if __name__ == '__main__':
    sys.exit(main())
