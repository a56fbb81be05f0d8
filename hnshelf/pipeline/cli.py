"""CLI interface for hnshelf.

Usage:
    python -m hnshelf.pipeline.cli fetch
    python -m hnshelf.pipeline.cli fetch --force
    python -m hnshelf.pipeline.cli status
    python -m hnshelf.pipeline.cli cleanup
    python -m hnshelf.pipeline.cli expiring --days 3
    python -m hnshelf.pipeline.cli serve
"""

from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator, Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from hnshelf.cache.store import CacheStore, SQLiteSlotStorage
from hnshelf.clock import utcnow
from hnshelf.config import DEFAULT_CONFIG_PATH, Settings, load_settings
from hnshelf.errors import ConfigError
from hnshelf.pipeline.fetch import FetchPipeline
from hnshelf.pipeline.refresher import BackgroundRefresher
from hnshelf.retention.cleanup import RetentionCleanupService
from hnshelf.sources.factory import build_sources
from hnshelf.storage.db import DatabaseManager
from hnshelf.storage.models import Category, CleanupResult, RetentionRecord, RetrievalResult

console = Console()
logger = logging.getLogger(__name__)

CATEGORY_CHOICE = click.Choice([c.value for c in Category] + ["saved", "read-later"])


def run_async(coro):
    """Run an async function to completion."""
    return asyncio.run(coro)


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=verbose)],
    )


class App:
    """Wired components for one CLI invocation."""

    def __init__(self, settings: Settings, db: DatabaseManager):
        self.settings = settings
        self.db = db
        self.cache = CacheStore(
            SQLiteSlotStorage(db),
            ttl=settings.cache_ttl,
            too_old=settings.cache_too_old,
        )
        self.pipeline = FetchPipeline(
            self.cache,
            build_sources(settings.sources),
            target_count=settings.target_count,
        )
        self.refresher = BackgroundRefresher(self.pipeline)
        self.cleanup = RetentionCleanupService(db, policy=settings.retention)


@asynccontextmanager
async def open_app(settings: Settings) -> AsyncIterator[App]:
    db = DatabaseManager(settings.db_path)
    await db.initialize()
    try:
        yield App(settings, db)
    finally:
        await db.close()


@click.group()
@click.option("--config", default=DEFAULT_CONFIG_PATH, help="Config file path")
@click.option("--db", default=None, help="Database path (overrides config)")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx, config: str, db: Optional[str], verbose: bool):
    """hnshelf: cached Hacker News with saved and read-later lists."""
    setup_logging(verbose)
    try:
        settings = load_settings(config)
        if db:
            settings.db_path = db
        # Surface bad source definitions before any command runs.
        build_sources(settings.sources)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {escape(str(e))}")
        sys.exit(2)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


def _print_items(result: RetrievalResult) -> None:
    table = Table(title=f"Stories ({result.origin.value}, via {result.source or 'placeholder'})")
    table.add_column("#", style="dim", width=3)
    table.add_column("Title", max_width=70)
    table.add_column("Score", justify="right")
    table.add_column("Comments", justify="right")
    table.add_column("By", style="cyan")
    for i, item in enumerate(result.items, 1):
        table.add_row(str(i), escape(item.title), str(item.score), str(item.comment_count), escape(item.author))
    console.print(table)
    if result.warning:
        console.print(f"[yellow]Warning:[/yellow] {result.warning}")


@cli.command()
@click.option("--force", is_flag=True, help="Ignore cache freshness and hit the network")
@click.pass_context
def fetch(ctx, force: bool):
    """Retrieve stories (cache first)."""

    async def _run():
        async with open_app(ctx.obj["settings"]) as app:
            with console.status("[bold green]Fetching stories..."):
                result = await app.pipeline.retrieve(force=force)
            _print_items(result)

    run_async(_run())


@cli.command()
@click.pass_context
def refresh(ctx):
    """Clear the cache and refresh it from the network."""

    async def _run():
        async with open_app(ctx.obj["settings"]) as app:
            with console.status("[bold green]Refreshing..."):
                result = await app.refresher.force_refresh()
            _print_items(result)

    run_async(_run())


@cli.command("clear-cache")
@click.pass_context
def clear_cache(ctx):
    """Remove the cached stories."""

    async def _run():
        async with open_app(ctx.obj["settings"]) as app:
            await app.cache.clear()
        console.print("[green]Cache cleared")

    run_async(_run())


@cli.command()
@click.pass_context
def status(ctx):
    """Show cache, record and expiry status."""

    async def _run():
        async with open_app(ctx.obj["settings"]) as app:
            cache_stats = await app.cache.stats()
            db_stats = await app.db.get_stats()
            expiring = await app.cleanup.get_expiring_soon()

        console.print("\n[bold]Cache[/bold]")
        if cache_stats["present"]:
            state = "[green]fresh" if cache_stats["fresh"] else "[yellow]stale"
            if cache_stats["too_old"]:
                state = "[red]too old"
            console.print(f"  Items: {cache_stats['item_count']}")
            console.print(f"  Age: {cache_stats['age_minutes']}m ({state}[/])")
        else:
            console.print("  [dim]empty")

        console.print("\n[bold]Database[/bold]")
        console.print(f"  Path: {ctx.obj['settings'].db_path}")
        console.print(f"  Size: {db_stats['db_size_bytes'] / 1024:.1f} KB")
        console.print(f"  Records: {db_stats['total_records']}")

        table = Table(title="Records by Category")
        table.add_column("Category", style="cyan")
        table.add_column("Records", justify="right")
        table.add_column("Expiring soon", justify="right", style="yellow")
        for category in Category:
            table.add_row(
                category.value,
                str(db_stats["records_by_category"].get(category.value, 0)),
                str(expiring.get(category, 0)),
            )
        console.print(table)

    run_async(_run())


def _print_cleanup(result: CleanupResult, settings: Settings) -> None:
    if not result.success:
        console.print(f"[red]Cleanup failed:[/red] {escape(str(result.error))}")
        return
    table = Table(title="Cleanup Results")
    table.add_column("Category", style="cyan")
    table.add_column("Retention", justify="right")
    table.add_column("Deleted", justify="right", style="red")
    for category, count in result.deleted_by_category.items():
        table.add_row(category.value, f"{settings.retention.retention_days[category]}d", str(count))
    table.add_section()
    table.add_row("[bold]Total", "", f"[bold red]{result.total_deleted}")
    console.print(table)


@cli.command()
@click.pass_context
def cleanup(ctx):
    """Delete records past their retention window now."""
    settings = ctx.obj["settings"]

    async def _run() -> CleanupResult:
        async with open_app(settings) as app:
            return await app.cleanup.trigger_manual()

    result = run_async(_run())
    _print_cleanup(result, settings)
    if not result.success:
        sys.exit(1)


@cli.command()
@click.option("--days", "-d", type=int, default=None, help="Warning window in days (default: per category)")
@click.pass_context
def expiring(ctx, days: Optional[int]):
    """Count records that will be deleted soon."""
    settings = ctx.obj["settings"]

    async def _run():
        async with open_app(settings) as app:
            window = timedelta(days=days) if days is not None else None
            return await app.cleanup.get_expiring_soon(warning_window=window)

    counts = run_async(_run())
    table = Table(title="Expiring Soon")
    table.add_column("Category", style="cyan")
    table.add_column("Within", justify="right")
    table.add_column("Records", justify="right", style="yellow")
    for category in Category:
        within = days if days is not None else settings.retention.warning_days[category]
        table.add_row(category.value, f"{within}d", str(counts.get(category, 0)))
    console.print(table)


@cli.command()
@click.argument("owner_id")
@click.argument("item_id")
@click.option("--category", "-c", type=CATEGORY_CHOICE, default="ephemeral", help="Retention category")
@click.pass_context
def save(ctx, owner_id: str, item_id: str, category: str):
    """Save an item for a user under a retention category."""

    async def _run() -> bool:
        async with open_app(ctx.obj["settings"]) as app:
            record = RetentionRecord(
                owner_id=owner_id,
                item_id=item_id,
                category=Category.parse(category),
                saved_at=utcnow(),
            )
            return await app.db.save_record(record)

    if run_async(_run()):
        console.print(f"[green]Saved {item_id} for {owner_id} ({Category.parse(category).value})")
    else:
        console.print(f"[yellow]Item {item_id} already {Category.parse(category).value} for {owner_id}")


@cli.command()
@click.argument("owner_id")
@click.argument("item_id")
@click.option("--to", "to_category", type=CATEGORY_CHOICE, default="durable", help="Target category")
@click.pass_context
def move(ctx, owner_id: str, item_id: str, to_category: str):
    """Move a record to another category (its retention clock restarts)."""
    target = Category.parse(to_category)
    source = Category.DURABLE if target is Category.EPHEMERAL else Category.EPHEMERAL

    async def _run():
        async with open_app(ctx.obj["settings"]) as app:
            return await app.db.move_record(owner_id, item_id, source, target, utcnow())

    if run_async(_run()) is None:
        console.print(f"[red]No {source.value} record for {item_id} ({owner_id})")
        sys.exit(1)
    console.print(f"[green]Moved {item_id} to {target.value}")


@cli.command()
@click.pass_context
def serve(ctx):
    """Keep the cache warm and run the daily cleanup until interrupted."""
    settings: Settings = ctx.obj["settings"]

    async def _run():
        async with open_app(settings) as app:
            app.refresher.subscribe(
                lambda result: logger.info("Cache updated: %d stories", len(result.items))
            )
            app.refresher.start(settings.refresh_interval)
            app.cleanup.schedule(settings.cleanup_time)
            try:
                await asyncio.Event().wait()
            finally:
                await app.refresher.stop()
                await app.cleanup.stop()

    try:
        run_async(_run())
    except KeyboardInterrupt:
        console.print("[dim]Stopped")


def main():
    cli()


if __name__ == "__main__":
    main()
