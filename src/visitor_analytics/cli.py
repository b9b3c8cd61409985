"""
Operator command line for Visitor Analytics.

Commands:
    cleanup   Delete data older than the retention window
    status    Show configuration, row counts and database health
    stats     Show dashboard statistics for a recent period
    export    Dump every row tied to one subject (GDPR access)
    erase     Delete every row tied to one subject (GDPR erasure)
"""

import argparse
import asyncio
import json
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles
from rich.console import Console
from rich.prompt import Confirm
from rich.table import Table

from . import __version__
from .analytics.manager import AnalyticsManager
from .utils.config import AnalyticsConfig, load_config
from .utils.errors import ConfigurationError
from .utils.logging import setup_logging, get_logger


logger = get_logger("visitor-analytics.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="visitor-analytics",
        description="Visitor Analytics - tracking data maintenance"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", action="append", type=Path, default=[], help="Configuration file (repeatable)")
    parser.add_argument("--database", type=Path, help="SQLite database (overrides database.path)")
    parser.add_argument("--log-dir", type=Path, help="Log directory (overrides logging.directory)")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    cleanup = subparsers.add_parser("cleanup", help="Clean up old analytics data based on retention policy")
    cleanup.add_argument("--days", type=int, help="Number of days to retain data (overrides config)")
    cleanup.add_argument("--dry-run", action="store_true", help="Show what would be deleted without deleting")
    cleanup.add_argument("--force", action="store_true", help="Skip the confirmation prompt")
    cleanup.add_argument("--batch-size", type=int, help="Number of records to delete per batch")

    subparsers.add_parser("status", help="Show configuration and data counts")

    stats = subparsers.add_parser("stats", help="Show dashboard statistics")
    stats.add_argument("--days", type=int, help="Period length in days (overrides dashboard.default_date_range)")

    for name, help_text in (("export", "Export a subject's analytics data"), ("erase", "Delete a subject's analytics data")):
        sub = subparsers.add_parser(name, help=help_text)
        subject = sub.add_mutually_exclusive_group(required=True)
        subject.add_argument("--user-id", help="Authenticated user id")
        subject.add_argument("--session-id", help="Raw session identifier")
        if name == "export":
            sub.add_argument("--output", type=Path, help="Write JSON to this file instead of stdout")
        else:
            sub.add_argument("--force", action="store_true", help="Skip the confirmation prompt")

    return parser


def _counts_table(title: str, counts: Dict[str, Any]) -> Table:
    table = Table(title=title)
    table.add_column("Data Type")
    table.add_column("Count", justify="right")
    table.add_row("Page Views", f"{counts['page_views']:,}")
    table.add_row("Sessions", f"{counts['sessions']:,}")
    table.add_row("Total", f"{counts['page_views'] + counts['sessions']:,}")
    return table


def _mapping_table(title: str, values: Dict[str, Any]) -> Table:
    table = Table(title=title)
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    for key, value in values.items():
        table.add_row(key.replace("_", " ").title(), "-" if value is None else str(value))
    return table


async def run_cleanup(manager: AnalyticsManager, args: argparse.Namespace, console: Console) -> int:
    config = manager.config
    janitor = manager.janitor

    console.print("[bold]Analytics Data Cleanup[/bold]")

    days = config.retention.retention_days if args.days is None else args.days
    if days < 0:
        console.print("[red]Invalid retention days specified. Must be a positive number.[/red]")
        return 1
    if days == 0:
        console.print("[yellow]Data retention is disabled (retention_days = 0). No cleanup will be performed.[/yellow]")
        return 0

    batch_size = args.batch_size if args.batch_size and args.batch_size > 0 else config.retention.cleanup_batch_size
    cutoff = janitor.cutoff_for(days)

    console.print(_mapping_table("Configuration", {
        "retention_days": days,
        "mode": "DRY RUN (no data will be deleted)" if args.dry_run else "LIVE",
        "batch_size": f"{batch_size:,}",
        "cutoff_date": cutoff.strftime("%Y-%m-%d %H:%M:%S"),
    }))

    if not config.enabled:
        console.print("[yellow]Analytics system is disabled. No cleanup will be performed.[/yellow]")
        return 0

    console.print(_counts_table("Current Data Counts", await janitor.get_data_counts()))

    delete_counts = await janitor.get_delete_counts(days)
    if delete_counts["page_views"] == 0 and delete_counts["sessions"] == 0:
        console.print(f"No data older than {days} days found. Nothing to clean up.")
        return 0

    console.print(_counts_table(
        f"Data to be deleted (older than {cutoff.strftime('%Y-%m-%d %H:%M:%S')})",
        delete_counts
    ))

    if args.dry_run:
        console.print("DRY RUN: No data was actually deleted.")
        return 0

    total = delete_counts["page_views"] + delete_counts["sessions"]
    if not args.force and not Confirm.ask(f"Are you sure you want to delete {total:,} records?", console=console):
        console.print("Cleanup cancelled.")
        return 0

    console.print("Starting cleanup...")
    started = time.perf_counter()
    results = await janitor.cleanup_old_data(days, batch_size=batch_size)
    elapsed = time.perf_counter() - started

    if "error" in results:
        console.print(f"[red]Cleanup failed: {results['error']}[/red]")
        return 1

    console.print(_mapping_table("Cleanup Results", {
        "page_views_deleted": f"{results['page_views_deleted']:,}",
        "sessions_deleted": f"{results['sessions_deleted']:,}",
        "total_records_deleted": f"{results['page_views_deleted'] + results['sessions_deleted']:,}",
        "retention_days": results["retention_days"],
        "execution_time": f"{elapsed:.2f} seconds",
        "cleanup_date": results["cleanup_date"],
    }))
    console.print(_counts_table("Final Data Counts", await janitor.get_data_counts()))
    console.print("[green]Cleanup completed successfully![/green]")
    return 0


async def run_status(manager: AnalyticsManager, args: argparse.Namespace, console: Console) -> int:
    status = manager.settings_summary()
    status["database_accessible"] = await manager.check_database()
    console.print(_mapping_table("Analytics Status", status))

    if not status["database_accessible"]:
        return 1

    counts = await manager.janitor.get_data_counts()
    console.print(_counts_table("Current Data Counts", counts))
    console.print(_mapping_table("Oldest Records", {
        "page_view": counts["oldest_page_view"],
        "session": counts["oldest_session"],
    }))
    console.print(_counts_table("Eligible For Cleanup", await manager.janitor.get_delete_counts()))
    return 0


async def run_stats(manager: AnalyticsManager, args: argparse.Namespace, console: Console) -> int:
    overview = await manager.dashboard.overview(args.days)
    if not overview["enabled"]:
        console.print("[yellow]Dashboard is disabled.[/yellow]")
        return 0

    period = overview["period"]
    console.print(f"[bold]{period['label']}[/bold] ({period['from']} to {period['to']})")
    console.print(_mapping_table("Page Views", overview["page_views"]))
    console.print(_mapping_table("Engagement", overview["engagement"]))

    pages = Table(title="Popular Pages")
    pages.add_column("Path")
    pages.add_column("Views", justify="right")
    for row in overview["popular_pages"]:
        pages.add_row(row["path"], f"{row['views']:,}")
    console.print(pages)

    devices = Table(title="Devices")
    devices.add_column("Device")
    devices.add_column("Views", justify="right")
    for row in overview["device_breakdown"]:
        devices.add_row(row["device_type"], f"{row['views']:,}")
    console.print(devices)
    return 0


async def run_export(manager: AnalyticsManager, args: argparse.Namespace, console: Console) -> int:
    data = await manager.privacy.export_user_data(user_id=args.user_id, session_id=args.session_id)
    payload = json.dumps(data, indent=2)

    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(args.output, "w") as f:
            await f.write(payload)
        console.print(
            f"Exported {len(data['page_views'])} page views and "
            f"{len(data['sessions'])} sessions to {args.output}"
        )
    else:
        console.print_json(payload)
    return 0


async def run_erase(manager: AnalyticsManager, args: argparse.Namespace, console: Console) -> int:
    subject = f"user {args.user_id}" if args.user_id is not None else "the given session"
    if not args.force and not Confirm.ask(f"Delete all analytics data for {subject}?", console=console):
        console.print("Erasure cancelled.")
        return 0

    if not await manager.privacy.delete_user_data(user_id=args.user_id, session_id=args.session_id):
        console.print("[red]Erasure failed. See the error log for details.[/red]")
        return 1

    console.print(f"[green]Analytics data for {subject} deleted.[/green]")
    return 0


COMMANDS = {
    "cleanup": run_cleanup,
    "status": run_status,
    "stats": run_stats,
    "export": run_export,
    "erase": run_erase,
}


async def main_async(args: argparse.Namespace, config: AnalyticsConfig, console: Console) -> int:
    """Open the store, run one command, close the store."""
    manager = AnalyticsManager(config, db_path=args.database)
    try:
        await manager.initialize()
        return await COMMANDS[args.command](manager, args, console)
    finally:
        await manager.close()


def main(argv: Optional[List[str]] = None, console: Optional[Console] = None) -> int:
    """Entry point; returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    console = console or Console()

    if not args.command:
        parser.print_help()
        return 1

    try:
        config = load_config(config_paths=args.config)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error: {e.message}[/red]")
        return 1

    setup_logging(
        log_level=config.logging.level,
        log_dir=args.log_dir or config.logging.directory,
        enable_json=config.logging.format == "json",
        enable_sentry=config.logging.enable_sentry,
        sentry_dsn=config.logging.sentry_dsn,
    )

    try:
        return asyncio.run(main_async(args, config, console))
    except KeyboardInterrupt:
        console.print("Interrupted.")
        return 130
    except Exception as e:
        logger.error("command_failed", command=args.command, error=str(e), exc_info=True)
        console.print(f"[red]{args.command} failed: {e}[/red]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
