"""
Image URL rewriting.

Runs after every image of a document has been through the deduplicator.
References whose image resolved point at the rehosted copy afterwards;
anything unresolved keeps its original reference.
"""

import re
from pathlib import Path

from .models import ImageRef, NormalizedDocument
from .normalizer import MD_IMG_RE, OBSIDIAN_IMG_RE, resolve_local_target


def build_url_map(refs: list[ImageRef]) -> dict[str, str]:
    """Map locator -> resolved URL for the refs that resolved."""
    return {ref.locator: ref.resolved_url for ref in refs if ref.resolved_url}


def rewrite_remote(body: str, refs: list[ImageRef]) -> str:
    """Replace every occurrence of each resolved source URL."""
    for locator, url in build_url_map(refs).items():
        body = body.replace(locator, url)
    return body


def rewrite_local(body: str, refs: list[ImageRef], base_dir: Path) -> str:
    """
    Point a local note's image references at their rehosted copies.

    Obsidian embeds (``![[name|alt]]``) become standard Markdown images;
    standard images keep their alt text. Targets are resolved against
    ``base_dir`` exactly as during extraction before the lookup.
    """
    url_map = build_url_map(refs)
    if not url_map:
        return body

    def replace_obsidian(match: re.Match) -> str:
        url = url_map.get(resolve_local_target(match.group("target").strip(), base_dir))
        if url is None:
            return match.group(0)
        alt = (match.group("alt") or "").strip()
        return f"![{alt}]({url})"

    def replace_markdown(match: re.Match) -> str:
        url = url_map.get(resolve_local_target(match.group("target"), base_dir))
        if url is None:
            return match.group(0)
        return f"![{match.group('alt')}]({url})"

    body = OBSIDIAN_IMG_RE.sub(replace_obsidian, body)
    return MD_IMG_RE.sub(replace_markdown, body)


def apply_to_metadata(doc: NormalizedDocument) -> None:
    """Drop unresolved gallery images; the cover is written as its URL or ""."""
    doc.gallery_images = [ref for ref in doc.gallery_images if ref.resolved_url]
    if doc.cover_image is not None and not doc.cover_image.resolved_url:
        doc.cover_image = None


def rewrite_document(doc: NormalizedDocument) -> NormalizedDocument:
    """Rewrite body and metadata of a document whose images were resolved."""
    if doc.source_path is not None:
        doc.body_markdown = rewrite_local(doc.body_markdown, doc.embedded_images, doc.source_path.parent)
    else:
        doc.body_markdown = rewrite_remote(doc.body_markdown, doc.embedded_images)
    apply_to_metadata(doc)
    return doc
