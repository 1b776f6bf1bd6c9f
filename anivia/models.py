"""
Data model shared by the sync pipeline.

A ``NormalizedDocument`` is built fresh on every sync from the source of
truth and discarded once the backing store call returns.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

# JSON-compatible values carried through ``extra_properties``
JSONValue = Union[str, int, float, bool, None, dict[str, Any], list[Any]]


class Origin(Enum):
    """Where a document came from."""

    NOTION = "notion"
    LOCAL = "obsidian"


class ImageRole(Enum):
    """Placement of an image; each role has its own storage prefix."""

    EMBEDDED = "embedded"
    COVER = "cover"
    GALLERY = "gallery"


@dataclass
class ImageRef:
    """One embedded or metadata-referenced image."""

    locator: str
    role: ImageRole
    content_fingerprint: str = ""
    resolved_url: Optional[str] = None

    @property
    def is_remote(self) -> bool:
        return self.locator.startswith(("http://", "https://"))

    @property
    def resolved(self) -> bool:
        return bool(self.resolved_url)


@dataclass
class DocumentFlags:
    published: bool = False
    draft: bool = False
    archived: bool = False


@dataclass
class Taxonomy:
    categories: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)


@dataclass
class NormalizedDocument:
    """Canonical in-flight representation of one synchronized item."""

    natural_key: str
    title: str
    body_markdown: str
    created_at: datetime
    last_modified_at: datetime
    origin: Origin
    flags: DocumentFlags = field(default_factory=DocumentFlags)
    taxonomy: Taxonomy = field(default_factory=Taxonomy)
    excerpt: str = ""
    post_type: str = ""
    # Notion pages may carry a slug property; local notes use it as natural_key
    slug: str = ""
    cover_image: Optional[ImageRef] = None
    gallery_images: list[ImageRef] = field(default_factory=list)
    embedded_images: list[ImageRef] = field(default_factory=list)
    extra_properties: dict[str, JSONValue] = field(default_factory=dict)
    source_path: Optional[Path] = None

    @property
    def all_images(self) -> list[ImageRef]:
        """Embedded, cover and gallery images in that order."""
        images = list(self.embedded_images)
        if self.cover_image:
            images.append(self.cover_image)
        images.extend(self.gallery_images)
        return images

    def to_record(self) -> dict[str, Any]:
        """Column values for the posts table (every mutable column)."""
        is_notion = self.origin is Origin.NOTION
        return {
            "notion_page_id": self.natural_key if is_notion else "",
            "slug": self.slug if is_notion else self.natural_key,
            "title": self.title,
            "content": self.body_markdown,
            "created_time": self.created_at,
            "last_edited_time": self.last_modified_at,
            "published": self.flags.published,
            "draft": self.flags.draft,
            "archived": self.flags.archived,
            "categories": list(self.taxonomy.categories),
            "tags": list(self.taxonomy.tags),
            "excerpt": self.excerpt,
            "featured_img": (self.cover_image.resolved_url or "") if self.cover_image else "",
            "gallery_imgs": [img.resolved_url for img in self.gallery_images if img.resolved_url],
            "properties": self.extra_properties,
            "post_origin": self.origin.value,
            "post_type": self.post_type,
        }


@dataclass
class ExistingRecord:
    """A row already in the backing store, as seen by reconciliation."""

    id: int
    notion_page_id: str
    slug: str
    last_edited_time: Optional[datetime]
    title: str = ""


@dataclass
class SyncOutcome:
    """Per-document result of a sync call."""

    success: bool
    natural_key: str
    message: str
    images_processed: int = 0
    skipped: bool = False
    decision: Optional[str] = None
    title: str = ""


@dataclass
class BatchReport:
    """Tally of a batch sync."""

    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    failures: list[str] = field(default_factory=list)
    outcomes: list[SyncOutcome] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def success(self) -> bool:
        return self.failed == 0

    @property
    def has_updates(self) -> bool:
        return self.created + self.updated > 0

    def record(self, outcome: SyncOutcome, label: str) -> None:
        self.outcomes.append(outcome)
        if not outcome.success:
            self.failed += 1
            self.failures.append(f"{label}: {outcome.message}")
        elif outcome.skipped:
            self.skipped += 1
        elif outcome.decision == "update":
            self.updated += 1
        else:
            self.created += 1
