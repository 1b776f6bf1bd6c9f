"""
Document normalizer.

Turns a Notion page (properties plus rendered Markdown) or a local
Markdown note (YAML front matter plus body) into a ``NormalizedDocument``
with its image references collected by role.
"""

import logging
import re
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional
from urllib.parse import unquote

import yaml

from .errors import DocumentValidationError
from .field_mapping import (
    LOCAL_FIELD_MAPPINGS,
    NOTION_FIELD_MAPPINGS,
    extract_local_value,
    extract_notion_value,
    parse_datetime,
    resolve_fields,
)
from .git_times import GitTimestamps
from .models import DocumentFlags, ImageRef, ImageRole, NormalizedDocument, Origin, Taxonomy
from .notion_api import NotionPage

logger = logging.getLogger(__name__)

UNTITLED = "Untitled"

# Simple YAML frontmatter at top-of-file: --- ... ---
TOP_YAML_RE = re.compile(r"^\s*---\n(.*?)\n---\s*\n?", re.DOTALL)

# Remote images as rendered from Notion
REMOTE_IMG_RE = re.compile(r"!\[[^\]]*\]\((?P<url>https?://[^)\s]+)\)")

# Markdown images
MD_IMG_RE = re.compile(
    r'!\[(?P<alt>[^\]]*)\]\('
    r'\s*(?P<target><[^>]+>|"[^"]+"|[^)\s]+)'
    r'(?:\s+"(?P<title>[^"]*)")?'
    r'\s*\)',
)

# Obsidian embedded images: ![[file.png]] or ![[file.png|alt]]
OBSIDIAN_IMG_RE = re.compile(r'!\[\[(?P<target>[^|\]]+)(?:\|(?P<alt>[^\]]+))?\]\]')

# Obsidian link in a front matter value: [[file.png]]
WIKI_LINK_RE = re.compile(r'^!?\[\[(?P<target>[^|\]]+)(?:\|[^\]]*)?\]\]$')

IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".webp", ".bmp", ".tif", ".tiff", ".svg", ".avif", ".heic"}


def is_remote(target: str) -> bool:
    return target.lower().startswith(("http://", "https://"))


def clean_target(raw: str) -> str:
    """Strip the <...> or quote wrapping Markdown allows around a link target."""
    target = raw.strip()
    if len(target) >= 2 and (target[0], target[-1]) in (("<", ">"), ('"', '"')):
        target = target[1:-1].strip()
    return target


def resolve_local_target(target: str, base_dir: Path) -> str:
    """
    Resolve an image reference from a note to its full locator.

    URLs are returned as-is; paths are percent-decoded and made absolute
    relative to the note's directory.
    """
    target = clean_target(target)
    if is_remote(target):
        return target
    path = Path(unquote(target)).expanduser()
    if not path.is_absolute():
        path = base_dir / path
    return str(path.resolve())


def _dedupe(locators: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    ordered = []
    for locator in locators:
        if locator not in seen:
            seen.add(locator)
            ordered.append(locator)
    return ordered


def _existing_or_remote(locator: str, context: str) -> bool:
    if is_remote(locator) or Path(locator).is_file():
        return True
    logger.warning("Image not found, skipping: %s (%s)", locator, context)
    return False


# =========================================================================
# Body image extraction
# =========================================================================

def extract_remote_images(markdown: str) -> list[ImageRef]:
    """Embedded remote images, first-occurrence order, each locator once."""
    urls = _dedupe(match.group("url") for match in REMOTE_IMG_RE.finditer(markdown))
    return [ImageRef(locator=url, role=ImageRole.EMBEDDED) for url in urls]


def extract_local_images(markdown: str, base_dir: Path) -> list[ImageRef]:
    """
    Embedded images of a local note.

    Both ``![alt](path)`` and ``![[name]]`` forms are read, in document
    order. Local targets that do not exist on disk are dropped.
    """
    found: list[tuple[int, str]] = []

    for match in MD_IMG_RE.finditer(markdown):
        found.append((match.start(), resolve_local_target(match.group("target"), base_dir)))

    for match in OBSIDIAN_IMG_RE.finditer(markdown):
        target = match.group("target").strip()
        if not is_remote(target) and Path(target).suffix.lower() not in IMAGE_EXTENSIONS:
            # note transclusion, not an image
            continue
        found.append((match.start(), resolve_local_target(target, base_dir)))

    found.sort(key=lambda item: item[0])
    locators = [loc for loc in _dedupe(loc for _, loc in found) if _existing_or_remote(loc, "embedded")]
    return [ImageRef(locator=loc, role=ImageRole.EMBEDDED) for loc in locators]


# =========================================================================
# Notion
# =========================================================================

def _any_title(properties: dict[str, Any]) -> tuple[Optional[str], Optional[str]]:
    """Fall back to whichever property has the Notion title type."""
    for key, prop in properties.items():
        if isinstance(prop, dict) and prop.get("type") == "title":
            text = "".join(part.get("plain_text", "") for part in prop.get("title") or []).strip()
            if text:
                return key, text
    return None, None


def normalize_notion(page: NotionPage, markdown: str) -> NormalizedDocument:
    """
    Build a document from a Notion page and its rendered Markdown.

    Args:
        page: Page metadata with its raw property bag.
        markdown: Body rendered by ``MarkdownConverter``.

    Returns:
        Document with natural key set to the dashless page ID.
    """
    properties = page.properties or {}
    values, consumed = resolve_fields(properties, NOTION_FIELD_MAPPINGS, extract_notion_value)

    title = values["title"]
    if title == UNTITLED:
        key, text = _any_title(properties)
        if key:
            consumed.add(key)
            title = text

    cover_urls = values["featured_img"]
    cover = ImageRef(locator=cover_urls[0], role=ImageRole.COVER) if cover_urls else None
    gallery = [ImageRef(locator=url, role=ImageRole.GALLERY) for url in values["gallery_imgs"]]

    return NormalizedDocument(
        natural_key=page.id.replace("-", ""),
        title=title,
        body_markdown=markdown,
        created_at=page.created_time,
        last_modified_at=page.last_edited_time,
        origin=Origin.NOTION,
        flags=DocumentFlags(
            published=values["published"],
            draft=values["draft"],
            archived=values["archived"],
        ),
        taxonomy=Taxonomy(categories=values["categories"], tags=values["tags"]),
        excerpt=values["excerpt"],
        post_type=values["post_type"],
        slug=values["slug"],
        cover_image=cover,
        gallery_images=gallery,
        embedded_images=extract_remote_images(markdown),
        extra_properties={key: prop for key, prop in properties.items() if key not in consumed},
    )


# =========================================================================
# Local Markdown
# =========================================================================

def split_front_matter(text: str) -> tuple[dict[str, Any], str]:
    """
    Split a note into (front matter, body).

    Raises:
        DocumentValidationError: If the front matter is not a YAML mapping.
    """
    match = TOP_YAML_RE.match(text)
    if not match:
        return {}, text

    try:
        meta = yaml.safe_load(match.group(1))
    except yaml.YAMLError as e:
        raise DocumentValidationError(f"Invalid YAML front matter: {e}") from e

    if meta is None:
        meta = {}
    if not isinstance(meta, dict):
        raise DocumentValidationError("Front matter must be a YAML mapping")

    return {str(key): value for key, value in meta.items()}, text[match.end():]


def _json_safe(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return value


def _metadata_image(value: str, base_dir: Path, role: ImageRole) -> Optional[ImageRef]:
    wiki = WIKI_LINK_RE.match(value.strip())
    locator = resolve_local_target(wiki.group("target") if wiki else value, base_dir)
    if not _existing_or_remote(locator, role.value):
        return None
    return ImageRef(locator=locator, role=role)


def normalize_local(
    path: Path,
    *,
    git: Optional[GitTimestamps] = None,
    tz=timezone.utc,
) -> NormalizedDocument:
    """
    Build a document from a local Markdown note.

    Args:
        path: The note file.
        git: Timestamp source; a fresh ``GitTimestamps`` when not given.
        tz: Timezone for naive front matter dates.

    Raises:
        DocumentValidationError: If the front matter is invalid or lacks a slug.
    """
    path = Path(path).resolve()
    base_dir = path.parent
    meta, body = split_front_matter(path.read_text(encoding="utf-8"))

    try:
        values, consumed = resolve_fields(meta, LOCAL_FIELD_MAPPINGS, extract_local_value)
    except DocumentValidationError as e:
        raise DocumentValidationError(f"{path.name}: {e.message}", missing_fields=e.missing_fields) from e

    # Git history, then front matter, then the file system
    git_created, git_modified = (git or GitTimestamps()).times_for(path)
    mtime = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
    created_at = git_created or parse_datetime(values["created_time"], tz) or mtime
    modified_at = git_modified or parse_datetime(values["last_edited_time"], tz) or mtime

    cover = _metadata_image(values["featured_img"], base_dir, ImageRole.COVER) if values["featured_img"] else None
    gallery = [
        ref
        for ref in (_metadata_image(value, base_dir, ImageRole.GALLERY) for value in values["gallery_imgs"])
        if ref is not None
    ]

    return NormalizedDocument(
        natural_key=values["slug"],
        title=values["title"] or path.stem,
        body_markdown=body,
        created_at=created_at,
        last_modified_at=modified_at,
        origin=Origin.LOCAL,
        flags=DocumentFlags(
            published=values["published"],
            draft=values["draft"],
            archived=values["archived"],
        ),
        taxonomy=Taxonomy(categories=values["categories"], tags=values["tags"]),
        excerpt=values["excerpt"],
        post_type=values["post_type"],
        slug=values["slug"],
        cover_image=cover,
        gallery_images=gallery,
        embedded_images=extract_local_images(body, base_dir),
        extra_properties={key: _json_safe(value) for key, value in meta.items() if key not in consumed},
        source_path=path,
    )
