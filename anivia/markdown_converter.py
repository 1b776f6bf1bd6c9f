"""
Notion blocks to Markdown converter.

Renders a fetched block tree as Markdown. Media blocks keep their source
URL: images are rehosted later by the sync pipeline, which finds them as
``![caption](url)`` in the rendered body.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from .notion_api import NotionBlock

LIST_TYPES = {"bulleted_list_item", "numbered_list_item", "to_do"}

# Notion language names that differ from the fenced-code tag
LANGUAGE_MAP = {
    "plain text": "",
    "c++": "cpp",
    "c#": "csharp",
    "shell": "bash",
    "f#": "fsharp",
}


@dataclass
class ConversionContext:
    """Context passed during markdown conversion."""

    numbered_list_counter: int = 0


def rich_text_to_markdown(rich_text: list[dict]) -> str:
    """Convert a Notion rich text array to a markdown string."""
    parts = []
    for text_obj in rich_text or []:
        if text_obj.get("type") == "equation":
            parts.append(f"${text_obj.get('equation', {}).get('expression', '')}$")
            continue

        content = text_obj.get("plain_text", "")
        annotations = text_obj.get("annotations", {})
        if content.strip():
            if annotations.get("code"):
                content = f"`{content}`"
            if annotations.get("bold"):
                content = f"**{content}**"
            if annotations.get("italic"):
                content = f"*{content}*"
            if annotations.get("strikethrough"):
                content = f"~~{content}~~"
            if annotations.get("underline"):
                content = f"<u>{content}</u>"

        href = text_obj.get("href")
        if href:
            content = f"[{content}]({href})"
        parts.append(content)

    return "".join(parts)


def _media_url(content: dict) -> Optional[str]:
    kind = content.get("type")
    if kind in ("external", "file"):
        return content.get(kind, {}).get("url")
    return None


class MarkdownConverter:
    """
    Converts Notion blocks to Markdown.

    Handles recursive block structures and maintains proper formatting.
    """

    def __init__(self):
        # Block type handlers
        self._handlers: dict[str, Callable[[NotionBlock, ConversionContext], str]] = {
            "paragraph": self._convert_paragraph,
            "heading_1": self._convert_heading,
            "heading_2": self._convert_heading,
            "heading_3": self._convert_heading,
            "bulleted_list_item": self._convert_list_item,
            "numbered_list_item": self._convert_list_item,
            "to_do": self._convert_list_item,
            "toggle": self._convert_toggle,
            "code": self._convert_code,
            "quote": self._convert_quote,
            "callout": self._convert_quote,
            "divider": lambda block, context: "---",
            "image": self._convert_image,
            "video": self._convert_link_media,
            "file": self._convert_link_media,
            "pdf": self._convert_link_media,
            "audio": self._convert_link_media,
            "embed": self._convert_bookmark,
            "bookmark": self._convert_bookmark,
            "link_preview": self._convert_bookmark,
            "table": self._convert_table,
            "column_list": self._convert_container,
            "column": self._convert_container,
            "synced_block": self._convert_container,
            "equation": lambda block, context: f"$$\n{block.content.get('expression', '')}\n$$",
            "child_page": lambda block, context: f"**{block.content.get('title', 'Untitled')}**",
            "child_database": lambda block, context: f"**{block.content.get('title', 'Untitled Database')}**",
            "breadcrumb": lambda block, context: "",
            "table_of_contents": lambda block, context: "",
        }

    def convert(self, blocks: list[NotionBlock]) -> str:
        """
        Convert a list of Notion blocks to Markdown.

        Args:
            blocks: List of NotionBlock objects (children populated).

        Returns:
            Markdown content ending in a single newline, or "" for an empty page.
        """
        content = self._convert_sequence(blocks, ConversionContext())
        return self._normalize_whitespace(content)

    def _convert_sequence(self, blocks: list[NotionBlock], context: ConversionContext) -> str:
        chunks: list[str] = []
        prev_type = None

        for block in blocks:
            if block.type != "numbered_list_item":
                context.numbered_list_counter = 0

            markdown = self._convert_block(block, context)
            if markdown is None or markdown == "":
                prev_type = block.type
                continue

            # consecutive list items stay tight, everything else is a paragraph
            if chunks:
                tight = prev_type in LIST_TYPES and block.type in LIST_TYPES
                chunks.append("\n" if tight else "\n\n")
            chunks.append(markdown)
            prev_type = block.type

        return "".join(chunks)

    def _convert_block(self, block: NotionBlock, context: ConversionContext) -> Optional[str]:
        """Convert a single block to markdown."""
        handler = self._handlers.get(block.type)
        if handler is None:
            return f"<!-- Unsupported block type: {block.type} -->"
        return handler(block, context)

    def _convert_children(self, block: NotionBlock, context: ConversionContext, indent: bool = True) -> str:
        if not block.children:
            return ""

        saved_counter = context.numbered_list_counter
        context.numbered_list_counter = 0
        text = self._convert_sequence(block.children, context)
        context.numbered_list_counter = saved_counter

        if indent:
            text = "\n".join(f"    {line}" if line else line for line in text.split("\n"))
        return text

    # =========================================================================
    # Block type handlers
    # =========================================================================

    def _convert_paragraph(self, block: NotionBlock, context: ConversionContext) -> str:
        text = rich_text_to_markdown(block.content.get("rich_text", []))
        children = self._convert_children(block, context)
        return f"{text}\n{children}" if children else text

    def _convert_heading(self, block: NotionBlock, context: ConversionContext) -> str:
        level = int(block.type[-1])
        text = rich_text_to_markdown(block.content.get("rich_text", []))
        return f"{'#' * level} {text}"

    def _convert_list_item(self, block: NotionBlock, context: ConversionContext) -> str:
        """Bulleted, numbered and to-do items, with nested children indented."""
        text = rich_text_to_markdown(block.content.get("rich_text", []))

        if block.type == "numbered_list_item":
            context.numbered_list_counter += 1
            marker = f"{context.numbered_list_counter}."
        elif block.type == "to_do":
            marker = "- [x]" if block.content.get("checked") else "- [ ]"
        else:
            marker = "-"

        children = self._convert_children(block, context)
        return f"{marker} {text}\n{children}" if children else f"{marker} {text}"

    def _convert_toggle(self, block: NotionBlock, context: ConversionContext) -> str:
        summary = rich_text_to_markdown(block.content.get("rich_text", []))
        children = self._convert_children(block, context, indent=False)
        return f"<details>\n<summary>{summary}</summary>\n\n{children}\n</details>"

    def _convert_code(self, block: NotionBlock, context: ConversionContext) -> str:
        code = "".join(part.get("plain_text", "") for part in block.content.get("rich_text", []))
        language = block.content.get("language", "").lower()
        return f"```{LANGUAGE_MAP.get(language, language)}\n{code}\n```"

    def _convert_quote(self, block: NotionBlock, context: ConversionContext) -> str:
        """Quotes and callouts both render as blockquotes."""
        text = rich_text_to_markdown(block.content.get("rich_text", []))
        icon = block.content.get("icon") or {}
        if icon.get("type") == "emoji":
            text = f"{icon['emoji']} {text}"

        children = self._convert_children(block, context, indent=False)
        if children:
            text = f"{text}\n{children}"
        return "\n".join(f"> {line}" if line else ">" for line in text.split("\n"))

    def _convert_image(self, block: NotionBlock, context: ConversionContext) -> str:
        url = _media_url(block.content)
        if not url:
            return ""
        caption = rich_text_to_markdown(block.content.get("caption", []))
        return f"![{caption}]({url})"

    def _convert_link_media(self, block: NotionBlock, context: ConversionContext) -> str:
        url = _media_url(block.content)
        if not url:
            return ""
        label = (
            rich_text_to_markdown(block.content.get("caption", []))
            or block.content.get("name")
            or block.type.capitalize()
        )
        return f"[{label}]({url})"

    def _convert_bookmark(self, block: NotionBlock, context: ConversionContext) -> str:
        url = block.content.get("url", "")
        caption = rich_text_to_markdown(block.content.get("caption", []))
        return f"[{caption or url}]({url})" if url else ""

    def _convert_table(self, block: NotionBlock, context: ConversionContext) -> str:
        rows = [child for child in block.children if child.type == "table_row"]
        if not rows:
            return ""

        lines = []
        for i, row in enumerate(rows):
            cells = [rich_text_to_markdown(cell).replace("|", "\\|") for cell in row.content.get("cells", [])]
            lines.append(f"| {' | '.join(cells)} |")
            # Markdown tables always need a header row
            if i == 0:
                lines.append(f"| {' | '.join('---' for _ in cells)} |")
        return "\n".join(lines)

    def _convert_container(self, block: NotionBlock, context: ConversionContext) -> str:
        """Columns and synced blocks are flattened into their children."""
        return self._convert_children(block, context, indent=False)

    # =========================================================================
    # Utilities
    # =========================================================================

    def _normalize_whitespace(self, content: str) -> str:
        # Code blocks keep their inner whitespace, so only the ends are trimmed
        content = content.strip("\n")
        return f"{content}\n" if content.strip() else ""
