"""
Main sync engine for Notion / local Markdown → Postgres synchronization.

Orchestrates, per document:
- Normalization of the source into a ``NormalizedDocument``
- The create / update / skip decision
- Image rehosting and URL rewriting
- The database write

Documents in a batch are processed one after another; only the images
of a single document are fetched concurrently.
"""

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .config import Config
from .database import PostStore
from .errors import ConfigurationError, DatabaseError, DocumentValidationError, NotionError
from .git_times import GitTimestamps
from .images import FetchBytes, ImageDeduplicator, default_fetcher
from .log_setup import console
from .markdown_converter import MarkdownConverter
from .models import BatchReport, ImageRef, NormalizedDocument, SyncOutcome
from .normalizer import normalize_local, normalize_notion
from .notion_api import NotionAPI, NotionPage
from .reconcile import Decision, ReconciliationEngine
from .rewriter import rewrite_document
from .storage import ObjectStore

logger = logging.getLogger(__name__)

SKIP_REASONS = {
    Decision.SKIP_UNPUBLISHED: "not published",
    Decision.SKIP_UNCHANGED: "unchanged",
}


def write_github_output(name: str, value: str) -> bool:
    """Append ``name=value`` to $GITHUB_OUTPUT when running in GitHub Actions."""
    path = os.getenv("GITHUB_OUTPUT")
    if not path:
        return False
    with open(path, "a", encoding="utf-8") as f:
        f.write(f"{name}={value}\n")
    return True


class SyncEngine:
    """
    Main orchestrator for synchronization into the posts table.

    Collaborators are built lazily from the config, so commands only need
    the credentials of the services they touch. Tests pass fakes instead.
    """

    def __init__(
        self,
        config: Config,
        *,
        notion_api: Optional[NotionAPI] = None,
        store: Optional[PostStore] = None,
        object_store: Optional[ObjectStore] = None,
        converter: Optional[MarkdownConverter] = None,
        git: Optional[GitTimestamps] = None,
        fetcher_for: Callable[[ImageRef], FetchBytes] = default_fetcher,
    ):
        self.config = config
        self._notion_api = notion_api
        self._store = store
        self._object_store = object_store
        self._deduplicator: Optional[ImageDeduplicator] = None
        self.converter = converter or MarkdownConverter()
        self.git = git or GitTimestamps()
        self.fetcher_for = fetcher_for

    # =========================================================================
    # Collaborators
    # =========================================================================

    @property
    def notion_api(self) -> NotionAPI:
        if self._notion_api is None:
            if not self.config.notion_token:
                raise ConfigurationError("NOTION_TOKEN environment variable is required.")
            self._notion_api = NotionAPI(self.config.notion_token)
        return self._notion_api

    @property
    def store(self) -> PostStore:
        if self._store is None:
            if not self.config.database_url:
                raise ConfigurationError("DATABASE_URL environment variable is required.")
            self._store = PostStore(
                self.config.database_url,
                table=self.config.table_name,
                config_table=self.config.config_table_name,
            )
        return self._store

    @property
    def deduplicator(self) -> ImageDeduplicator:
        if self._deduplicator is None:
            if self._object_store is None:
                if self.config.storage is None:
                    raise ConfigurationError("Object storage (R2_*) settings are required to sync images.")
                self._object_store = ObjectStore(self.config.storage)
            self._deduplicator = ImageDeduplicator(self._object_store)
        return self._deduplicator

    @property
    def reconciler(self) -> ReconciliationEngine:
        return ReconciliationEngine(self.store)

    # =========================================================================
    # Pipeline
    # =========================================================================

    def _sync_document(
        self,
        doc: NormalizedDocument,
        force: bool,
        render: Optional[Callable[[], NormalizedDocument]] = None,
    ) -> SyncOutcome:
        """
        Decide, rehost images, rewrite and write one document.

        Args:
            doc: Normalized document.
            force: Write even when the stored row is as new.
            render: Rebuilds the document with its full body; called only
                when the document is going to be written.
        """
        reconciler = self.reconciler
        decision, existing = reconciler.decide(doc, force)

        if decision.is_skip:
            reason = SKIP_REASONS[decision]
            logger.info("Skipping %s (%s)", doc.title, reason)
            return SyncOutcome(
                success=True,
                natural_key=doc.natural_key,
                message=f"Skipped: {reason}",
                skipped=True,
                decision=decision.value,
                title=doc.title,
            )

        if render is not None:
            doc = render()

        images = doc.all_images
        if images:
            logger.info("Resolving %d image(s) for %s", len(images), doc.title)
            self.deduplicator.resolve_all(images, self.fetcher_for)

        rewrite_document(doc)
        reconciler.apply(decision, doc, existing)

        resolved = sum(1 for ref in images if ref.resolved)
        verb = "Created" if decision is Decision.CREATE else "Updated"
        return SyncOutcome(
            success=True,
            natural_key=doc.natural_key,
            message=f"{verb} {doc.title}",
            images_processed=resolved,
            decision=decision.value,
            title=doc.title,
        )

    def _sync_notion(self, page: NotionPage, force: bool) -> SyncOutcome:
        # Properties alone decide; blocks are only fetched for pages being written
        def render() -> NormalizedDocument:
            markdown = self.converter.convert(self.notion_api.get_page_blocks(page.id))
            return normalize_notion(page, markdown)

        try:
            return self._sync_document(normalize_notion(page, ""), force, render)
        except (NotionError, DocumentValidationError, DatabaseError) as e:
            logger.error("Failed to sync page %s: %s", page.id, e.message)
            return SyncOutcome(success=False, natural_key=page.id, message=e.message)

    def sync_notion_page(self, page_id: str, force: bool = False) -> SyncOutcome:
        """
        Sync one Notion page.

        Args:
            page_id: Dashless or dashed page ID.
            force: Write even when the stored row is as new.

        Returns:
            The outcome; failures are reported in it, not raised.

        Raises:
            StorageAuthError: If object storage rejects the credentials.
        """
        force = force or self.config.force_sync
        try:
            page = self.notion_api.get_page(page_id)
        except NotionError as e:
            logger.error("Failed to fetch page %s: %s", page_id, e.message)
            return SyncOutcome(success=False, natural_key=page_id.replace("-", ""), message=e.message)

        return self._sync_notion(page, force)

    def sync_notion_database(
        self,
        database_id: str,
        start: datetime,
        end: datetime,
        force: bool = False,
    ) -> BatchReport:
        """
        Sync every page of a database edited within [start, end].

        After the batch the last sync time is recorded and, in GitHub
        Actions, ``has_updates`` is written to the step outputs.

        Raises:
            NotionError: If the database query itself fails.
        """
        force = force or self.config.force_sync
        report = BatchReport()

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task("Querying Notion database...", total=None)
            pages = self.notion_api.query_database(database_id, start, end)
            progress.update(task, description=f"Found {len(pages)} pages")

        for index, page in enumerate(pages, start=1):
            logger.info("[%d/%d] %s", index, len(pages), page.id)
            outcome = self._sync_notion(page, force)
            report.record(outcome, outcome.title or page.id)

        try:
            self.store.touch_last_sync_time()
        except DatabaseError as e:
            logger.warning("Could not record last sync time: %s", e.message)

        if write_github_output("has_updates", "true" if report.has_updates else "false"):
            logger.debug("Wrote has_updates to GITHUB_OUTPUT")

        self._print_summary(report, "Notion Database Sync", notion_requests=self.notion_api.request_count)
        return report

    def sync_local_file(self, path: Path, force: bool = False) -> SyncOutcome:
        """
        Sync one local Markdown note.

        Raises:
            StorageAuthError: If object storage rejects the credentials.
        """
        force = force or self.config.force_sync
        doc = None
        try:
            doc = normalize_local(path, git=self.git, tz=self.config.tz)
            return self._sync_document(doc, force)
        except (DocumentValidationError, DatabaseError) as e:
            logger.error("Failed to sync %s: %s", path, e.message)
            return SyncOutcome(
                success=False,
                natural_key=doc.natural_key if doc else "",
                message=e.message,
                title=(doc.title if doc else "") or Path(path).name,
            )
        except (OSError, UnicodeDecodeError) as e:
            logger.error("Failed to read %s: %s", path, e)
            return SyncOutcome(success=False, natural_key="", message=str(e), title=Path(path).name)

    def sync_local_path(self, path: Path, recursive: bool = True, force: bool = False) -> BatchReport:
        """Sync a note, or every ``.md`` file under a directory."""
        path = Path(path)
        report = BatchReport()

        if path.is_file():
            files = [path]
        else:
            pattern = "**/*.md" if recursive else "*.md"
            # Skip Obsidian's own folders (.obsidian, .trash)
            files = sorted(
                p for p in path.glob(pattern)
                if p.is_file() and not any(part.startswith(".") for part in p.relative_to(path).parts)
            )

        logger.info("Found %d Markdown file(s) in %s", len(files), path)
        for index, file in enumerate(files, start=1):
            logger.info("[%d/%d] %s", index, len(files), file)
            outcome = self.sync_local_file(file, force)
            report.record(outcome, outcome.title or file.name)

        self._print_summary(report, "Local Markdown Sync")
        return report

    def close(self) -> None:
        if self._store is not None:
            self._store.close()

    # =========================================================================
    # Output
    # =========================================================================

    def _print_summary(self, report: BatchReport, heading: str, notion_requests: Optional[int] = None) -> None:
        """Print sync summary."""
        console.print(f"\n[bold]{heading} Summary[/bold]")

        table = Table(show_header=False, box=None)
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="white")

        table.add_row("Total", str(report.total))
        table.add_row("Created", f"[green]{report.created}[/green]")
        table.add_row("Updated", f"[blue]{report.updated}[/blue]")
        table.add_row("Skipped", f"[dim]{report.skipped}[/dim]")
        table.add_row("Failed", f"[red]{report.failed}[/red]" if report.failed else "0")
        table.add_row("Images rehosted", str(sum(o.images_processed for o in report.outcomes)))
        if self._deduplicator is not None:
            table.add_row("Images uploaded", str(len(self._deduplicator.uploaded)))
        if notion_requests is not None:
            table.add_row("Notion API requests", str(notion_requests))

        console.print(table)

        if report.failures:
            console.print("\n[red]Failed:[/red]")
            for failure in report.failures:
                console.print(f"  - {failure}", markup=False)

        console.print("")
