"""
Export published posts from the database to Markdown files.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

import yaml

from .errors import DatabaseError

logger = logging.getLogger(__name__)

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_FILENAME_LENGTH = 200


@dataclass
class ExportResult:
    """Result of an export run."""

    output_dir: Path
    total: int = 0
    exported: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


def sanitize_filename(title: str) -> str:
    """Make a title safe to use as a file name."""
    name = re.sub(r'[<>:"/\\|?*]', "-", title)
    name = re.sub(r"\s+", "-", name)
    name = re.sub(r"-+", "-", name).strip("-")
    return name[:MAX_FILENAME_LENGTH] or "untitled"


class ExportService:
    """Writes every published row of the posts table as a Markdown file."""

    def __init__(self, store, tz=timezone.utc, now: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self.store = store
        self.tz = tz
        self.now = now

    def _format_time(self, value: Any) -> str:
        if isinstance(value, datetime):
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            return value.astimezone(self.tz).strftime(TIME_FORMAT)
        return "" if value is None else str(value)

    def render(self, row: dict[str, Any], include_metadata: bool = True) -> str:
        """Render one row as Markdown, optionally with YAML front matter."""
        parts = []

        if include_metadata:
            meta: dict[str, Any] = {
                "title": row.get("title", ""),
                "notion_page_id": row.get("notion_page_id") or "",
                "slug": row.get("slug") or "",
                "created_time": self._format_time(row.get("created_time")),
                "last_edited_time": self._format_time(row.get("last_edited_time")),
                "exported_time": self._format_time(self.now()),
                "published": bool(row.get("published")),
                "draft": bool(row.get("draft")),
                "archived": bool(row.get("archived")),
            }
            # Optional keys only when they carry something
            for key in ("categories", "tags", "excerpt", "featured_img", "gallery_imgs", "properties"):
                if row.get(key):
                    meta[key] = row[key]

            front_matter = yaml.safe_dump(meta, allow_unicode=True, sort_keys=False, default_flow_style=False)
            parts.append(f"---\n{front_matter}---\n\n")

        parts.append(f"# {row.get('title', '')}\n\n")
        parts.append(row.get("content") or "")
        return "".join(parts)

    def export_all(
        self,
        output_dir: Path,
        overwrite: bool = True,
        include_metadata: bool = True,
    ) -> ExportResult:
        """
        Export every published post.

        Args:
            output_dir: Created if missing.
            overwrite: Replace files that already exist.
            include_metadata: Write YAML front matter.

        Returns:
            ExportResult; per-file failures are collected, not raised.
        """
        output_dir = Path(output_dir)
        result = ExportResult(output_dir=output_dir)

        try:
            rows = self.store.list_all()
        except DatabaseError as e:
            result.errors.append(f"Could not read posts: {e.message}")
            logger.error(result.errors[-1])
            return result

        published = [row for row in rows if row.get("published")]
        result.total = len(published)
        logger.info("Found %d post(s), %d published", len(rows), len(published))

        if not published:
            logger.warning("No published posts to export")
            return result

        output_dir.mkdir(parents=True, exist_ok=True)

        for row in published:
            title = row.get("title") or ""
            target = output_dir / f"{sanitize_filename(title)}.md"

            if target.exists() and not overwrite:
                logger.warning("File exists, skipping: %s", target.name)
                result.skipped += 1
                continue

            try:
                target.write_text(self.render(row, include_metadata), encoding="utf-8")
            except (OSError, yaml.YAMLError) as e:
                result.errors.append(f"{title}: {e}")
                logger.error("Export failed for %s: %s", title, e)
                continue

            result.exported += 1
            logger.info("Exported %s", target.name)

        return result
