#!/usr/bin/env python3
"""
FeedBar - Feed Ingestion Worker
===============================

Main application entry point with CLI interface for operating the worker.

Usage:
    python main.py --help              # Show all commands
    python main.py check-config        # Validate configuration
    python main.py init-db             # Initialize database
    python main.py ingest              # Run one ingestion batch
    python main.py update-icons        # Resolve missing feed icons
    python main.py cleanup             # Delete expired items
    python main.py manifest            # Print the latest-items manifest
    python main.py feed-errors         # Show recently disabled feeds
    python main.py serve               # Run the interval scheduler
"""

import sys
import json
import asyncio
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from feedbar.config.settings import get_settings
from feedbar.database.connection import DatabaseConnection
from feedbar.database.schema import DatabaseSchema
from feedbar.processing.manifest import load_manifest
from feedbar.scheduler.interval_scheduler import IngestionScheduler
from feedbar.storage.feed_error_repository import FeedErrorRepository
from feedbar.storage.item_repository import ItemRepository
from feedbar.utils.logging import configure_application_logging
from feedbar.utils.exceptions import FeedBarError

console = Console()
logger = logging.getLogger(__name__)


def _setup(ctx):
    """Load settings and configure logging for a command."""
    settings = get_settings()
    configure_application_logging(
        log_level="DEBUG" if ctx.obj.get('debug') else settings.get_effective_log_level(),
        log_file=settings.logging.file_path,
        enable_console=settings.logging.console_logging,
        structured_logging=settings.logging.structured_logging,
        max_file_size_mb=settings.logging.max_file_size_mb,
        backup_count=settings.logging.backup_count,
    )
    return settings


def _open_database(settings) -> DatabaseConnection:
    DatabaseSchema(settings.database.path).create_tables()
    return DatabaseConnection(settings.database.path, pool_size=settings.database.pool_size)


@click.group(invoke_without_command=True)
@click.option('--debug', is_flag=True, help='Enable debug logging')
@click.pass_context
def cli(ctx, debug):
    """FeedBar - feed ingestion worker."""
    ctx.ensure_object(dict)
    ctx.obj['debug'] = debug

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
def check_config():
    """Validate configuration and environment variables."""
    console.print("[bold blue]🔧 Checking FeedBar Configuration[/bold blue]")

    try:
        settings = get_settings()

        table = Table(title="Configuration Status")
        table.add_column("Component", style="cyan")
        table.add_column("Status", style="green")
        table.add_column("Details")

        checks = [
            ("Database", _check_database_config),
            ("Logging", _check_logging_config),
            ("Ingestion", _check_ingestion_config),
            ("Retention", _check_retention_config),
            ("Run Lease", _check_lease_config),
        ]

        all_passed = True
        for name, check_func in checks:
            try:
                status, details = check_func(settings)
                table.add_row(name, "✅ Valid" if status else "❌ Invalid", details)
                if not status:
                    all_passed = False
            except Exception as e:
                table.add_row(name, "❌ Error", str(e))
                all_passed = False

        console.print(table)

        if all_passed:
            console.print("[bold green]✅ All configuration checks passed![/bold green]")
            sys.exit(0)
        else:
            console.print("[bold red]❌ Configuration validation failed[/bold red]")
            sys.exit(1)

    except FeedBarError as e:
        console.print(f"[bold red]❌ Configuration error: {e.user_message}[/bold red]")
        sys.exit(1)


@cli.command()
@click.pass_context
def init_db(ctx):
    """Initialize database with schema."""
    console.print("[bold blue]🗄️ Initializing FeedBar Database[/bold blue]")

    try:
        settings = _setup(ctx)
        schema = DatabaseSchema(settings.database.path)
        schema.create_tables()

        if not schema.verify_schema():
            console.print("[bold red]❌ Database schema verification failed[/bold red]")
            sys.exit(1)

        console.print("[bold green]✅ Database initialized successfully![/bold green]")

        db = DatabaseConnection(settings.database.path, pool_size=settings.database.pool_size)
        try:
            info = db.get_database_info()
        finally:
            db.close_all_connections()

        info_table = Table(title="Database Information")
        info_table.add_column("Property", style="cyan")
        info_table.add_column("Value", style="green")

        info_table.add_row("Database Path", settings.database.path)
        info_table.add_row("Size", f"{info['database_size_mb']:.2f} MB")
        for table_name, count in info['table_counts'].items():
            info_table.add_row(f"Rows in {table_name}", str(count))

        console.print(info_table)

    except Exception as e:
        console.print(f"[bold red]❌ Database initialization error: {e}[/bold red]")
        sys.exit(1)


@cli.command()
@click.pass_context
def ingest(ctx):
    """Run one ingestion batch."""
    settings = _setup(ctx)
    console.print(f"[bold blue]📡 Running ingestion batch (up to {settings.ingestion.batch_size} feeds)[/bold blue]")

    scheduler = IngestionScheduler(settings, _open_database(settings))
    try:
        result = asyncio.run(scheduler.run_ingestion())
    except FeedBarError as e:
        console.print(f"[bold red]❌ Ingestion failed: {e}[/bold red]")
        sys.exit(1)
    finally:
        scheduler.close()

    if result.skipped:
        console.print("[yellow]⏭️ Another run holds the lease; nothing done[/yellow]")
        return

    table = Table(title="Batch Result")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Feeds processed", str(result.processed))
    table.add_row("Feeds disabled", str(result.disabled))
    table.add_row("New items", str(result.items_inserted))
    table.add_row("Transient failures", str(result.transient_failures))
    table.add_row("Store errors", str(result.store_errors))
    table.add_row("Items expired", str(result.items_deleted))
    table.add_row("Duration", f"{result.duration_seconds:.2f}s")
    console.print(table)

    if result.store_errors:
        sys.exit(1)


@cli.command()
@click.pass_context
def update_icons(ctx):
    """Resolve icons for feeds that have none."""
    settings = _setup(ctx)
    console.print("[bold blue]🖼️ Updating feed icons[/bold blue]")

    scheduler = IngestionScheduler(settings, _open_database(settings))
    try:
        result = asyncio.run(scheduler.run_icon_backfill())
    except FeedBarError as e:
        console.print(f"[bold red]❌ Icon update failed: {e}[/bold red]")
        sys.exit(1)
    finally:
        scheduler.close()

    if result.skipped:
        console.print("[yellow]⏭️ Another icon update is running[/yellow]")
        return

    console.print(
        f"[green]✅ {result.updated} icons updated, {result.unresolved} unresolved "
        f"({result.checked} feeds checked)[/green]"
    )


@cli.command()
@click.pass_context
def cleanup(ctx):
    """Delete items older than the retention window."""
    settings = _setup(ctx)
    console.print(f"[bold blue]🧹 Removing items older than {settings.retention.days} days[/bold blue]")

    scheduler = IngestionScheduler(settings, _open_database(settings))
    try:
        deleted = scheduler.run_cleanup()
    except FeedBarError as e:
        console.print(f"[bold red]❌ Cleanup failed: {e}[/bold red]")
        sys.exit(1)
    finally:
        scheduler.close()

    console.print(f"[green]✅ Deleted {deleted} items[/green]")


@cli.command()
@click.option('--limit', default=100, show_default=True, help='Number of items to include')
@click.option('--output', '-o', type=click.Path(dir_okay=False), help='Write JSON to a file instead of stdout')
@click.pass_context
def manifest(ctx, limit, output):
    """Print the latest items as a JSON manifest."""
    settings = _setup(ctx)
    db = _open_database(settings)
    try:
        document = load_manifest(ItemRepository(db), limit=limit)
    finally:
        db.close_all_connections()

    payload = json.dumps(document, indent=2, ensure_ascii=False)
    if output:
        Path(output).write_text(payload, encoding="utf-8")
        console.print(f"[green]✅ Wrote {len(document['items'])} items to {output}[/green]")
    else:
        click.echo(payload)


@cli.command()
@click.option('--limit', default=20, show_default=True, help='Number of audit rows to show')
@click.pass_context
def feed_errors(ctx, limit):
    """Show the most recent feed disablements."""
    settings = _setup(ctx)
    db = _open_database(settings)
    try:
        errors = FeedErrorRepository(db).get_recent_errors(limit)
    finally:
        db.close_all_connections()

    if not errors:
        console.print("[green]No feeds have been disabled[/green]")
        return

    table = Table(title=f"Recent Feed Errors ({len(errors)})")
    table.add_column("When", style="dim")
    table.add_column("Feed", style="cyan")
    table.add_column("Code", style="red")
    table.add_column("Message")

    for record in errors:
        table.add_row(
            record.created_at.strftime("%Y-%m-%d %H:%M"),
            f"{record.feed_id} {record.feed_name or ''}".strip(),
            record.error_code,
            (record.message or "")[:80],
        )

    console.print(table)


@cli.command()
@click.option('--no-icons', is_flag=True, help='Do not run the icon backfill job')
@click.pass_context
def serve(ctx, no_icons):
    """Run ingestion on a fixed interval until interrupted."""
    settings = _setup(ctx)
    console.print(
        f"[bold blue]🕐 FeedBar scheduler: ingestion every {settings.ingestion.interval_minutes} min[/bold blue]"
    )
    console.print("Press Ctrl+C to stop.")

    scheduler = IngestionScheduler(settings, _open_database(settings))
    try:
        asyncio.run(scheduler.run_forever(run_icons=not no_icons))
    finally:
        scheduler.close()


def _check_database_config(settings) -> tuple[bool, str]:
    try:
        db_path = Path(settings.database.path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return True, f"Path: {settings.database.path}, pool: {settings.database.pool_size}"
    except OSError as e:
        return False, str(e)


def _check_logging_config(settings) -> tuple[bool, str]:
    try:
        if settings.logging.file_path:
            Path(settings.logging.file_path).parent.mkdir(parents=True, exist_ok=True)
        return True, f"Level: {settings.logging.level.value}, Console: {settings.logging.console_logging}"
    except OSError as e:
        return False, str(e)


def _check_ingestion_config(settings) -> tuple[bool, str]:
    ingestion = settings.ingestion
    if ingestion.feed_task_timeout < ingestion.fetch_timeout:
        return False, "feed_task_timeout is shorter than fetch_timeout"
    return True, (
        f"Batch: {ingestion.batch_size}, every {ingestion.interval_minutes} min, "
        f"fetch timeout {ingestion.fetch_timeout}s"
    )


def _check_retention_config(settings) -> tuple[bool, str]:
    return True, f"Keep {settings.retention.days} days"


def _check_lease_config(settings) -> tuple[bool, str]:
    if not settings.lease.enabled:
        return True, "Disabled (overlapping runs possible)"
    return True, f"Lease '{settings.lease.name}' in {settings.lease.lock_dir or 'system temp dir'}"


if __name__ == "__main__":
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n[yellow]👋 Stopped by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[bold red]❌ Unexpected error: {e}[/bold red]")
        sys.exit(1)
