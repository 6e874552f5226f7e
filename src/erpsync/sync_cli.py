#!/usr/bin/env python3
"""
CLI entry point for the ERP sync engine.

Usage:
    erpsync --config config/erpsync.yaml start --connection main --start-date 2025-01-01
    erpsync --config config/erpsync.yaml status <job-id>
    erpsync --config config/erpsync.yaml count --connection main --date-from 2025-01-01
    erpsync --config config/erpsync.yaml sync-page --connection main --limit 60
    erpsync start --dry-run
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .config import SyncConfig, load_environment
from .core.exceptions import SyncError
from .core.logging import configure_logging
from .rpc.memory_remote import MemoryRemote, build_sample_dataset
from .service import SyncService
from .state import MEMORY_PATH, create_sync_store


logger = logging.getLogger("erpsync.cli")

DRY_RUN_CONNECTION = "demo"


def setup_logging(verbose: bool = False, json_logs: bool = False) -> None:
    """Configure logging."""
    configure_logging(
        level=logging.DEBUG if verbose else logging.INFO,
        structured=json_logs,
    )


def build_service(config: SyncConfig) -> SyncService:
    """Build the service from configuration."""
    return SyncService.from_config(config)


def build_dry_run_service(config: SyncConfig) -> SyncService:
    """Service wired to an in-memory remote with sample data and a throwaway store."""
    remote = MemoryRemote(records=build_sample_dataset(invoice_count=3, lines_per_invoice=2))
    demo = SyncConfig.from_dict({
        "connections": [{
            "id": DRY_RUN_CONNECTION,
            "url": "memory://demo",
            "database": remote.database,
            "username": remote.username,
            "api_key": remote.api_key,
            "tenant_id": "demo-tenant",
        }],
        "runner": config.get_runner_config(),
        "staging": config.get_staging_config(),
    })
    return SyncService.from_config(
        demo,
        store=create_sync_store(backend="sqlite", db_path=MEMORY_PATH),
        transport_factory=lambda connection: remote,
    )


def print_json(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="ERP staging sync CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--config",
        type=Path,
        help="Path to configuration YAML file",
    )

    parser.add_argument(
        "--env-file",
        type=Path,
        help="Path to a .env file (defaults to ./.env when present)",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose/debug logging",
    )

    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit JSON log lines",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    start = subparsers.add_parser("start", help="Run a full three-phase sync")
    start.add_argument("--connection", help="Connection id")
    start.add_argument("--tenant", help="Tenant id (defaults to the connection's)")
    start.add_argument("--start-date", help="Invoice date lower bound (YYYY-MM-DD)")
    start.add_argument("--end-date", help="Invoice date upper bound (YYYY-MM-DD)")
    start.add_argument("--session-id", help="Sync session id stamped on staged records")
    start.add_argument("--dry-run", action="store_true", help="Use built-in sample data")

    status = subparsers.add_parser("status", help="Show a job's status")
    status.add_argument("job_id", help="Job id returned by start")

    count = subparsers.add_parser("count", help="Estimate a sync window without writing")
    count.add_argument("--connection", help="Connection id")
    count.add_argument("--date-from", help="Invoice date lower bound (YYYY-MM-DD)")
    count.add_argument("--date-to", help="Invoice date upper bound (YYYY-MM-DD)")
    count.add_argument("--dry-run", action="store_true", help="Use built-in sample data")

    page = subparsers.add_parser("sync-page", help="Stage one page of invoice lines")
    page.add_argument("--connection", help="Connection id")
    page.add_argument("--tenant", help="Tenant id (defaults to the connection's)")
    page.add_argument("--limit", type=int, default=60, help="Lines per page (default: 60)")
    page.add_argument("--offset", type=int, default=0, help="Lines to skip")
    page.add_argument("--date-from", help="Invoice date lower bound (YYYY-MM-DD)")
    page.add_argument("--date-to", help="Invoice date upper bound (YYYY-MM-DD)")
    page.add_argument("--session-id", help="Sync session id stamped on staged records")
    page.add_argument("--estimate-only", action="store_true", help="Only count, do not stage")
    page.add_argument("--dry-run", action="store_true", help="Use built-in sample data")

    return parser.parse_args(argv)


def _connection_id(args: argparse.Namespace) -> str:
    if getattr(args, "dry_run", False):
        return DRY_RUN_CONNECTION
    if not args.connection:
        raise SyncError("--connection is required unless --dry-run is given")
    return args.connection


def run_command(service: SyncService, args: argparse.Namespace) -> int:
    """Execute one subcommand against a built service."""
    if args.command == "start":
        started = service.start_sync(
            _connection_id(args),
            tenant_id=args.tenant,
            start_date=args.start_date,
            end_date=args.end_date,
            sync_session_id=args.session_id,
        )
        print_json(started)

        service.wait_for(started["run_id"])
        statuses = {key: service.get_job_status(job_id) for key, job_id in started["job_ids"].items()}
        print_json(statuses)
        return 0 if all(status["status"] == "completed" for status in statuses.values()) else 1

    if args.command == "status":
        print_json(service.get_job_status(args.job_id))
        return 0

    if args.command == "count":
        print_json(service.count_records(_connection_id(args), args.date_from, args.date_to))
        return 0

    if args.command == "sync-page":
        result = service.sync_invoices(
            _connection_id(args),
            tenant_id=args.tenant,
            limit=args.limit,
            offset=args.offset,
            date_from=args.date_from,
            date_to=args.date_to,
            sync_session_id=args.session_id,
            estimate_only=args.estimate_only,
        )
        print_json(result)
        return 0

    raise SyncError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    setup_logging(verbose=args.verbose, json_logs=args.json_logs)
    load_environment(args.env_file)

    try:
        config = SyncConfig(config_path=args.config)
        logger.debug("Configuration loaded")

        if getattr(args, "dry_run", False):
            service = build_dry_run_service(config)
        else:
            service = build_service(config)
    except (SyncError, FileNotFoundError) as e:
        logger.error(f"Could not start: {e}")
        return 2

    try:
        return run_command(service, args)

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 1
    except SyncError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1
    finally:
        service.close()
        service.store.close()


if __name__ == "__main__":
    sys.exit(main())
