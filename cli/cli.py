# cli/cli.py
"""
Operator CLI for the seeding service: migrations, cron jobs, housekeeping.
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from typing import Callable, Dict, Optional

from seeding.core.exceptions import BaseAPIException
from seeding.core.logging import configure_structlog
from seeding.db.session import create_database_engine, dispose_engine, get_sessionmaker, health_check
from seeding.services import rate_limit
from seeding.services.cron_jobs import JOBS, run_job
from seeding.services.migration_lock import run_migrations


def _supports_color() -> bool:
    """Check if terminal supports ANSI color codes."""
    if sys.platform == "win32":
        return os.getenv("TERM") == "xterm" or os.getenv("ANSICON") is not None
    return sys.stdout.isatty()


SUPPORTS_COLOR = _supports_color()

GREEN = '\033[92m' if SUPPORTS_COLOR else ''
RED = '\033[91m' if SUPPORTS_COLOR else ''
YELLOW = '\033[93m' if SUPPORTS_COLOR else ''
BLUE = '\033[94m' if SUPPORTS_COLOR else ''
RESET = '\033[0m' if SUPPORTS_COLOR else ''


def print_success(message: str):
    print(f"{GREEN}[ok]{RESET} {message}")


def print_error(message: str):
    print(f"{RED}[x]{RESET} {message}")


def print_warning(message: str):
    print(f"{YELLOW}[!]{RESET} {message}")


def print_info(message: str):
    print(f"{BLUE}[i]{RESET} {message}")


async def cmd_migrate(args: argparse.Namespace) -> int:
    """Command: create the schema under the migration advisory lock."""
    print_info("Running migrations...")
    engine = create_database_engine()
    applied = await run_migrations(engine, lock_key=args.lock_key)
    if applied:
        print_success("Schema is up to date")
    else:
        print_warning("Another process holds the migration lock; skipped")
    return 0


async def cmd_cron(args: argparse.Namespace) -> int:
    """Command: run one scheduled job under its lock."""
    create_database_engine()
    result = await run_job(get_sessionmaker(), args.job, ttl_seconds=args.ttl)
    if result.get("skipped"):
        print_warning(f"{args.job}: already running elsewhere, skipped")
        return 0
    summary = ", ".join(f"{k}={v}" for k, v in result.items() if k not in ("job", "skipped"))
    print_success(f"{args.job}: {summary or 'done'}")
    return 0


async def cmd_prune_rate_limits(args: argparse.Namespace) -> int:
    """Command: delete rate-limit buckets older than the retention window."""
    create_database_engine()
    async with get_sessionmaker()() as session:
        deleted = await rate_limit.prune_buckets(session, retention_hours=args.hours)
    print_success(f"Deleted {deleted} rate-limit buckets")
    return 0


async def cmd_db_status(args: argparse.Namespace) -> int:
    """Command: quick database connectivity check."""
    create_database_engine()
    result = await health_check()
    if result.get("status") == "healthy":
        print_success(f"Database: healthy ({result.get('dialect')})")
        return 0
    print_error(f"Database: {result.get('status')}")
    if result.get("error"):
        print_error(f"  Error: {result['error']}")
    return 1


COMMANDS: Dict[str, Callable] = {
    'migrate': cmd_migrate,
    'cron': cmd_cron,
    'prune-rate-limits': cmd_prune_rate_limits,
    'db-status': cmd_db_status,
}


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser with all commands."""
    parser = argparse.ArgumentParser(
        description='Seeding service CLI',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    migrate_parser = subparsers.add_parser('migrate', help='Create the schema under the migration lock')
    migrate_parser.add_argument('--lock-key', type=int, default=None, help='Advisory lock key override')

    cron_parser = subparsers.add_parser('cron', help='Run a scheduled job')
    cron_parser.add_argument('job', choices=sorted(JOBS), help='Job name')
    cron_parser.add_argument('--ttl', type=int, default=None, help='Lease length in seconds')

    prune_parser = subparsers.add_parser('prune-rate-limits', help='Delete stale rate-limit buckets')
    prune_parser.add_argument('--hours', type=int, default=None, help='Retention in hours')

    subparsers.add_parser('db-status', help='Check database connectivity')

    return parser


async def _run(command_func: Callable, args: argparse.Namespace) -> int:
    try:
        return await command_func(args)
    finally:
        await dispose_engine()


def main(args: Optional[list] = None) -> int:
    """Main CLI entry point."""
    configure_structlog()
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return 1

    command_func = COMMANDS[parsed_args.command]

    try:
        return asyncio.run(_run(command_func, parsed_args))
    except KeyboardInterrupt:
        print_error("\nInterrupted by user")
        return 130
    except BaseAPIException as e:
        print_error(f"{e.code}: {e.message}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
