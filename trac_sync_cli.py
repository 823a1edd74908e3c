#!/usr/bin/env python3
"""
Trac Ticket Sync CLI
One-off syncs, schema setup and the long-running scheduler.

Examples:
  trac-sync recent 50        # latest 50 tickets from the report listing
  trac-sync ticket 12345     # a single ticket
  trac-sync bulk 500         # page through the listing, 100 per page
  trac-sync serve            # scheduled syncs (requires ENABLE_SCRAPING=true)
"""

import argparse
import json
import sys
import logging
from pathlib import Path
from typing import List, Optional

from trac_core.config import TracSyncConfig, configure_logging, validate_config
from trac_core.database_manager import DatabaseManager
from trac_core.exceptions import ConfigurationError, TracSyncError
from trac_core.secure_config import AppConfig, SecureConfigManager, config_manager, get_app_config
from trac_core.ticket_store import TicketStore
from trac_harvesters.run_guard import RunGuard
from trac_harvesters.sync_runner import SyncReport, TicketSyncRunner
from trac_harvesters.sync_scheduler import start_scheduler_if_enabled

logger = logging.getLogger(__name__)


def load_config(config_file: Optional[str] = None) -> AppConfig:
    if config_file:
        return SecureConfigManager(Path(config_file)).get_config()
    return get_app_config()


def build_runner(app_config: AppConfig) -> TicketSyncRunner:
    store = TicketStore(DatabaseManager(app_config.database))
    return TicketSyncRunner.from_config(app_config, store=store)


def print_report(report: SyncReport):
    if report.skipped:
        print(f"[INFO] {report.summary()}")
        return
    status = "[ERROR]" if report.aborted else "[OK]"
    print(f"{status} {report.summary()}")
    for ticket_id, reason in report.failed.items():
        print(f"  ticket {ticket_id}: {reason}")


def run_guarded(runner: TicketSyncRunner, mode: str, action) -> SyncReport:
    """Run a listing sync unless another run (here or in a server) holds the lock"""
    guard = RunGuard(lock_provider=runner.store.sync_lock)
    with guard.hold(mode) as acquired:
        if not acquired:
            report = SyncReport(mode=mode, started_at=runner.clock(), skipped=True)
            report.finished_at = report.started_at
            return report
        return action()


def cmd_recent(args, app_config: AppConfig) -> int:
    runner = build_runner(app_config)
    runner.store.ensure_schema()
    print(f"[INFO] Syncing the {args.count} most recent tickets...")
    report = run_guarded(runner, 'recent', lambda: runner.sync_recent(args.count))
    print_report(report)
    return 1 if report.aborted or report.skipped else 0


def cmd_bulk(args, app_config: AppConfig) -> int:
    runner = build_runner(app_config)
    runner.store.ensure_schema()
    print(f"[INFO] Bulk sync of up to {args.count} tickets ({args.page_size} per page)...")
    report = run_guarded(runner, 'bulk', lambda: runner.sync_bulk(args.count, args.page_size))
    print_report(report)
    return 1 if report.aborted or report.skipped else 0


def cmd_ticket(args, app_config: AppConfig) -> int:
    runner = build_runner(app_config)
    runner.store.ensure_schema()
    print(f"[INFO] Syncing ticket #{args.ticket_id}...")
    report = runner.sync_ticket(args.ticket_id)
    if report.saved:
        print(f"[OK] Ticket #{args.ticket_id} saved")
        return 0
    if report.not_found:
        print(f"[ERROR] Ticket #{args.ticket_id} not found or inaccessible")
    else:
        print(f"[ERROR] Ticket #{args.ticket_id} failed: {report.failed.get(args.ticket_id)}")
    return 1


def cmd_serve(args, app_config: AppConfig) -> int:
    runner = build_runner(app_config)
    runner.store.ensure_schema()
    guard = RunGuard(lock_provider=runner.store.sync_lock)
    scheduler = start_scheduler_if_enabled(runner, app_config.scheduler, guard)
    if scheduler is None:
        print("[INFO] Scheduled scraping is disabled; set ENABLE_SCRAPING=true to enable it")
        return 0

    print("[OK] Scheduler running (Ctrl+C to stop)")
    if args.run_now:
        scheduler.run_incremental()
    scheduler.wait()
    return 0


def cmd_init_db(args, app_config: AppConfig) -> int:
    store = TicketStore(DatabaseManager(app_config.database))
    store.ensure_schema()
    print(f"[OK] Table '{TracSyncConfig.TICKETS_TABLE}' and indexes are ready")
    return 0


def cmd_status(args, app_config: AppConfig) -> int:
    manager = SecureConfigManager(Path(args.config)) if args.config else config_manager
    print(json.dumps(manager.get_config_info(), indent=2, default=str))

    db = DatabaseManager(app_config.database)
    if not db.ping():
        print("[ERROR] Database connection failed")
        return 1
    count = TicketStore(db).count_tickets()
    print(f"[OK] Database reachable, {count} tickets stored")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='trac-sync',
        description='Sync Trac tickets into PostgreSQL',
    )
    parser.add_argument('--config', help='Path to config.json (default: $TRAC_SYNC_CONFIG or ./config.json)')
    parser.add_argument('--log-level', help='Logging level (default: $LOG_LEVEL or INFO)')
    parser.add_argument('--log-file', help='Also write logs to this file')
    subparsers = parser.add_subparsers(dest='command')

    recent = subparsers.add_parser('recent', help='Sync the most recent tickets')
    recent.add_argument('count', type=int, nargs='?', default=TracSyncConfig.DEFAULT_RECENT_COUNT,
                        help='Number of tickets (default: %(default)s)')
    recent.set_defaults(func=cmd_recent)

    ticket = subparsers.add_parser('ticket', help='Sync a single ticket')
    ticket.add_argument('ticket_id', type=int, help='Ticket number')
    ticket.set_defaults(func=cmd_ticket)

    bulk = subparsers.add_parser('bulk', help='Page through the listing')
    bulk.add_argument('count', type=int, nargs='?', default=TracSyncConfig.DEFAULT_BULK_COUNT,
                      help='Maximum number of tickets (default: %(default)s)')
    bulk.add_argument('--page-size', type=int, default=TracSyncConfig.BULK_PAGE_SIZE,
                      help='Tickets per listing page (default: %(default)s)')
    bulk.set_defaults(func=cmd_bulk)

    serve = subparsers.add_parser('serve', help='Run the incremental and bulk schedules')
    serve.add_argument('--run-now', action='store_true', help='Run one incremental sync on startup')
    serve.set_defaults(func=cmd_serve)

    init_db = subparsers.add_parser('init-db', help='Create the tickets table and indexes')
    init_db.set_defaults(func=cmd_init_db)

    status = subparsers.add_parser('status', help='Show configuration and database status')
    status.set_defaults(func=cmd_status)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    for name in ('count', 'ticket_id', 'page_size'):
        value = getattr(args, name, None)
        if value is not None and value < 1:
            print(f"[ERROR] {name.replace('_', ' ')} must be a positive integer")
            return 1

    configure_logging(args.log_level, Path(args.log_file) if args.log_file else None)

    try:
        app_config = load_config(args.config)
        validate_config(app_config)
        return args.func(args, app_config)
    except (ConfigurationError, ValueError) as e:
        print(f"[ERROR] Configuration: {e}")
        return 1
    except TracSyncError as e:
        print(f"[ERROR] {e}")
        return 1
    except KeyboardInterrupt:
        print("\n[INFO] Interrupted")
        return 130
    except Exception as e:
        logger.exception("Sync command failed")
        print(f"[ERROR] {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
