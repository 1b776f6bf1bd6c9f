"""
anivia command line interface.

Usage:
    anivia sync-notion-page <page-id-or-url>
    anivia sync-notion-database <database-id> [START] [END] [--force]
    anivia query-notion-database <database-id> [START] [END]
    anivia sync-local <path> [--no-recursive] [--force]
    anivia export [--output DIR] [--no-overwrite] [--no-metadata]
    anivia verify-notion | verify-storage | verify-db
    anivia update-sync-time

Times are ``yyyyMMddHHmmss`` in the display timezone (DISPLAY_TIMEZONE).
"""

import sys
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, TypeVar

import click
from rich.table import Table

from . import __version__
from .config import Config
from .database import PostStore
from .errors import AniviaError, ConfigurationError
from .export import ExportService
from .log_setup import console, setup_logging
from .normalizer import normalize_notion
from .notion_api import NotionAPI, extract_page_id
from .storage import ObjectStore
from .sync_engine import SyncEngine

T = TypeVar("T")

CLI_TIME_FORMAT = "%Y%m%d%H%M%S"
DEFAULT_START = "20000101000000"


def _load_config(ctx: click.Context, **needs: bool) -> Config:
    """Load configuration for a command and set up logging."""
    try:
        config = Config.from_env(**needs)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        console.print("\n[dim]Make sure you have created a .env file with your credentials.[/dim]")
        console.print("[dim]See .env.example for the required variables.[/dim]")
        sys.exit(1)

    if ctx.obj.get("debug"):
        config.debug = True
        config.log_level = "DEBUG"
    elif ctx.obj.get("verbose"):
        config.log_level = "INFO"

    setup_logging(config.log_level)
    return config


def _run(ctx: click.Context, action: Callable[[], T]) -> T:
    """Run a command body with the CLI's error handling."""
    try:
        return action()
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(130)
    except AniviaError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        if ctx.obj.get("debug"):
            console.print_exception()
        sys.exit(1)


def _parse_time(value: Optional[str], config: Config, default: Optional[str] = None) -> datetime:
    if value is None:
        if default is None:
            return datetime.now(config.tz)
        value = default
    try:
        return datetime.strptime(value, CLI_TIME_FORMAT).replace(tzinfo=config.tz)
    except ValueError:
        raise click.BadParameter(f"expected yyyyMMddHHmmss, got {value!r}")


def _page_id(value: str) -> str:
    try:
        return extract_page_id(value)
    except ValueError as e:
        raise click.BadParameter(str(e))


def _print_checks(title: str, checks: list[tuple[str, str]]) -> None:
    table = Table(title=title, show_header=False)
    table.add_column("Check", style="cyan")
    table.add_column("Result", style="green")
    for name, detail in checks:
        table.add_row(name, f"✓ {detail}")
    console.print(table)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option("--debug", "-d", is_flag=True, help="Enable debug output")
@click.pass_context
def cli(ctx, verbose: bool, debug: bool):
    """
    anivia: Notion / Obsidian → Postgres sync

    Synchronizes Notion pages and local Markdown notes into the posts
    table, rehosting their images on Cloudflare R2.
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["debug"] = debug


@cli.command("sync-notion-page")
@click.argument("page")
@click.option("--force", "-f", is_flag=True, help="Write even if the stored row is up to date")
@click.pass_context
def sync_notion_page(ctx, page: str, force: bool):
    """Sync one Notion page (ID or URL)."""
    page_id = _page_id(page)
    config = _load_config(ctx)
    engine = SyncEngine(config)

    try:
        outcome = _run(ctx, lambda: engine.sync_notion_page(page_id, force=force))
    finally:
        engine.close()

    if not outcome.success:
        console.print(f"[red]Sync failed:[/red] {outcome.message}")
        sys.exit(1)
    console.print(f"[green]✓[/green] {outcome.message} ({outcome.images_processed} image(s))")


@cli.command("sync-notion-database")
@click.argument("database")
@click.argument("start", required=False)
@click.argument("end", required=False)
@click.option("--force", "--ignore-update-time", "force", is_flag=True,
              help="Write every page regardless of its edit time")
@click.pass_context
def sync_notion_database(ctx, database: str, start: Optional[str], end: Optional[str], force: bool):
    """Sync pages of a Notion database edited between START and END."""
    database_id = _page_id(database)
    config = _load_config(ctx)
    start_time = _parse_time(start, config, DEFAULT_START)
    end_time = _parse_time(end, config)
    console.print(f"[bold blue]Syncing pages edited {start_time:%Y-%m-%d %H:%M:%S} → {end_time:%Y-%m-%d %H:%M:%S}[/bold blue]")

    engine = SyncEngine(config)
    try:
        report = _run(ctx, lambda: engine.sync_notion_database(database_id, start_time, end_time, force=force))
    finally:
        engine.close()

    if not report.success:
        sys.exit(1)


@cli.command("query-notion-database")
@click.argument("database")
@click.argument("start", required=False)
@click.argument("end", required=False)
@click.pass_context
def query_notion_database(ctx, database: str, start: Optional[str], end: Optional[str]):
    """List pages of a Notion database edited between START and END."""
    database_id = _page_id(database)
    config = _load_config(ctx, need_storage=False, need_database=False)
    start_time = _parse_time(start, config, DEFAULT_START)
    end_time = _parse_time(end, config)

    pages = _run(ctx, lambda: NotionAPI(config.notion_token).query_database(database_id, start_time, end_time))

    table = Table(title=f"{len(pages)} page(s) edited in range")
    table.add_column("Title", style="cyan")
    table.add_column("Page ID", style="dim")
    table.add_column("Last Edited", style="yellow")
    table.add_column("Published", justify="center")
    for page in pages:
        doc = normalize_notion(page, "")
        table.add_row(
            doc.title,
            page.id,
            page.last_edited_time.astimezone(config.tz).strftime("%Y-%m-%d %H:%M"),
            "✓" if doc.flags.published else "✗",
        )
    console.print(table)


@cli.command("sync-local")
@click.argument("path", type=click.Path(exists=True, path_type=Path))
@click.option("--recursive/--no-recursive", default=True, help="Descend into subdirectories")
@click.option("--force", "-f", is_flag=True, help="Write even if the stored row is up to date")
@click.pass_context
def sync_local(ctx, path: Path, recursive: bool, force: bool):
    """Sync a local Markdown note or a directory of notes (e.g. an Obsidian vault)."""
    config = _load_config(ctx, need_notion=False)
    engine = SyncEngine(config)
    try:
        report = _run(ctx, lambda: engine.sync_local_path(path, recursive=recursive, force=force))
    finally:
        engine.close()

    if not report.success:
        sys.exit(1)


@cli.command()
@click.option("--output", "-o", type=click.Path(file_okay=False, path_type=Path), help="Output directory")
@click.option("--no-overwrite", is_flag=True, help="Keep files that already exist")
@click.option("--no-metadata", is_flag=True, help="Omit YAML front matter")
@click.pass_context
def export(ctx, output: Optional[Path], no_overwrite: bool, no_metadata: bool):
    """Export published posts to Markdown files."""
    config = _load_config(ctx, need_notion=False, need_storage=False)
    store = PostStore(config.database_url, table=config.table_name, config_table=config.config_table_name)
    service = ExportService(store, tz=config.tz)

    try:
        result = _run(ctx, lambda: service.export_all(
            output or config.export_dir,
            overwrite=not no_overwrite,
            include_metadata=not no_metadata,
        ))
    finally:
        store.close()

    console.print(
        f"\nExported [green]{result.exported}[/green] of {result.total} published post(s) "
        f"to {result.output_dir} ({result.skipped} skipped)"
    )
    for error in result.errors:
        console.print(f"  [red]✗[/red] {error}", markup=False)
    if not result.success:
        sys.exit(1)


@cli.command("verify-notion")
@click.pass_context
def verify_notion(ctx):
    """Check the Notion token and integration access."""
    config = _load_config(ctx, need_storage=False, need_database=False)
    checks = _run(ctx, lambda: NotionAPI(config.notion_token).verify())
    _print_checks("Notion", checks)


@cli.command("verify-storage")
@click.pass_context
def verify_storage(ctx):
    """Check the object storage credentials and bucket."""
    config = _load_config(ctx, need_notion=False, need_database=False)
    checks = _run(ctx, lambda: ObjectStore(config.storage).verify())
    _print_checks("Object storage", checks)


@cli.command("verify-db")
@click.pass_context
def verify_db(ctx):
    """Check the database connection and tables."""
    config = _load_config(ctx, need_notion=False, need_storage=False)
    store = PostStore(config.database_url, table=config.table_name, config_table=config.config_table_name)
    try:
        checks = _run(ctx, store.verify)
    finally:
        store.close()
    _print_checks("Database", checks)


@cli.command("update-sync-time")
@click.pass_context
def update_sync_time(ctx):
    """Record the current time as the last Notion sync time."""
    config = _load_config(ctx, need_notion=False, need_storage=False)
    store = PostStore(config.database_url, table=config.table_name, config_table=config.config_table_name)
    try:
        _run(ctx, store.touch_last_sync_time)
    finally:
        store.close()
    console.print("[green]✓[/green] Last sync time updated")


@cli.command()
def version():
    """Show version information."""
    console.print(f"anivia v{__version__}")


def main():
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
