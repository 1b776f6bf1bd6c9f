"""
Notion API wrapper for the sync system.

Provides a clean interface to Notion's API with:
- Rate limiting compliance
- Recursive block fetching
- Database queries by edit time
- Error classification
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional
from urllib.parse import urlparse

from notion_client import Client
from notion_client.errors import APIResponseError
from ratelimit import limits, sleep_and_retry

from .errors import NotionError
from .retry import with_retry

logger = logging.getLogger(__name__)

# Notion API rate limit: 3 requests per second
RATE_LIMIT_CALLS = 3
RATE_LIMIT_PERIOD = 1  # second

_HEX_ID_RE = re.compile(r"[a-f0-9]{32}", re.IGNORECASE)
_UUID_RE = re.compile(r"[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}", re.IGNORECASE)


def extract_page_id(value: str) -> str:
    """
    Extract a 32-character page ID from a Notion URL or ID.

    Accepts:
        https://www.notion.so/Title-270baa810695804981e8e432c4fafe3a?source=copy_link
        270baa810695804981e8e432c4fafe3a
        270baa81-0695-8049-81e8-e432c4fafe3a

    Raises:
        ValueError: If no page ID can be found.
    """
    text = (value or "").strip()
    if not text:
        raise ValueError("Page ID or URL must not be empty")

    if _HEX_ID_RE.fullmatch(text.replace("-", "")):
        return text.replace("-", "").lower()

    parsed = urlparse(text)
    if parsed.scheme in ("http", "https") and parsed.netloc:
        match = _HEX_ID_RE.search(parsed.path) or _UUID_RE.search(parsed.path)
        if match:
            return match.group(0).replace("-", "").lower()
        raise ValueError(f"Could not find a Notion page ID in URL: {text}")

    raise ValueError(
        f"Invalid Notion page ID or URL: {text}\n"
        "Expected a Notion URL, a 32-character hex ID or a dashed UUID."
    )


def format_page_id(page_id: str) -> str:
    """Add dashes in standard UUID format."""
    clean_id = page_id.replace("-", "")
    if len(clean_id) == 32:
        return f"{clean_id[:8]}-{clean_id[8:12]}-{clean_id[12:16]}-{clean_id[16:20]}-{clean_id[20:]}"
    return page_id


def _parse_time(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass
class NotionPage:
    """A Notion page with its raw property bag."""

    id: str
    created_time: datetime
    last_edited_time: datetime
    properties: dict[str, Any] = field(default_factory=dict)
    url: str = ""

    @classmethod
    def from_api_response(cls, page: dict) -> "NotionPage":
        """Create NotionPage from API response."""
        return cls(
            id=page["id"].replace("-", ""),
            created_time=_parse_time(page["created_time"]),
            last_edited_time=_parse_time(page["last_edited_time"]),
            properties=page.get("properties") or {},
            url=page.get("url", ""),
        )


@dataclass
class NotionBlock:
    """Represents a Notion block."""

    id: str
    type: str
    has_children: bool
    content: dict
    children: list["NotionBlock"] = field(default_factory=list)

    @classmethod
    def from_api_response(cls, block: dict) -> "NotionBlock":
        """Create NotionBlock from API response."""
        block_type = block["type"]
        return cls(
            id=block["id"].replace("-", ""),
            type=block_type,
            has_children=block.get("has_children", False),
            content=block.get(block_type, {}),
        )


class NotionAPI:
    """
    Wrapper around Notion API with rate limiting and utilities.

    Every call goes through the 3 req/sec limiter, is retried on transient
    failures and surfaces ``notion_client`` errors as ``NotionError``.
    """

    def __init__(self, token: str, client: Optional[Client] = None):
        """
        Initialize the Notion API client.

        Args:
            token: Notion integration token.
            client: Pre-built client, mainly for tests.
        """
        self.client = client or Client(auth=token)
        self._request_count = 0

    @sleep_and_retry
    @limits(calls=RATE_LIMIT_CALLS, period=RATE_LIMIT_PERIOD)
    def _rate_limited_call(self, func: Callable, **kwargs) -> Any:
        """Execute a rate-limited API call."""
        self._request_count += 1
        return func(**kwargs)

    def _call(self, func: Callable, **kwargs) -> Any:
        try:
            return with_retry(lambda: self._rate_limited_call(func, **kwargs))
        except APIResponseError as e:
            raise NotionError.from_api_error(e) from e

    def get_page(self, page_id: str) -> NotionPage:
        """
        Get a single page by ID.

        Raises:
            NotionError: If the page cannot be read.
        """
        response = self._call(self.client.pages.retrieve, page_id=format_page_id(page_id))
        return NotionPage.from_api_response(response)

    def get_page_blocks(self, page_id: str, recursive: bool = True) -> list[NotionBlock]:
        """
        Get all blocks from a page.

        Args:
            page_id: The Notion page ID.
            recursive: Whether to fetch children recursively.

        Returns:
            List of NotionBlock objects (with children populated if recursive).
        """
        blocks = []
        for block_data in self._paginate(self.client.blocks.children.list, block_id=format_page_id(page_id)):
            block = NotionBlock.from_api_response(block_data)
            # child pages are documents of their own
            if recursive and block.has_children and block.type != "child_page":
                block.children = self.get_page_blocks(block.id, recursive)
            blocks.append(block)
        return blocks

    def query_database(
        self,
        database_id: str,
        start: datetime,
        end: datetime,
    ) -> list[NotionPage]:
        """
        List database pages last edited within [start, end], newest first.

        Args:
            database_id: The Notion database ID.
            start: Inclusive lower bound (aware datetime).
            end: Inclusive upper bound (aware datetime).
        """
        time_filter = {
            "and": [
                {
                    "timestamp": "last_edited_time",
                    "last_edited_time": {"on_or_after": _to_utc_iso(start)},
                },
                {
                    "timestamp": "last_edited_time",
                    "last_edited_time": {"on_or_before": _to_utc_iso(end)},
                },
            ]
        }
        results = self._paginate(
            self.client.databases.query,
            database_id=format_page_id(database_id),
            filter=time_filter,
            sorts=[{"timestamp": "last_edited_time", "direction": "descending"}],
        )
        pages = [NotionPage.from_api_response(page) for page in results if page.get("object") == "page"]
        logger.info("Database query returned %d page(s)", len(pages))
        return pages

    def _paginate(self, func: Callable, **kwargs) -> list[dict]:
        results: list[dict] = []
        start_cursor = None
        while True:
            if start_cursor:
                kwargs["start_cursor"] = start_cursor
            response = self._call(func, **kwargs)
            results.extend(response.get("results", []))
            if not response.get("has_more"):
                return results
            start_cursor = response.get("next_cursor")

    def verify(self) -> list[tuple[str, str]]:
        """
        Check that the token works and the integration can read content.

        Returns:
            List of (check, detail) pairs that passed.

        Raises:
            NotionError: On the first failing check.
        """
        checks = []

        user = self._call(self.client.users.me)
        checks.append(("Token", f"authenticated as {user.get('name') or user.get('id')}"))

        found = self._call(
            self.client.search,
            filter={"property": "object", "value": "page"},
            page_size=1,
        )
        results = found.get("results", [])
        if not results:
            checks.append(("Search", "no pages shared with the integration"))
            return checks
        checks.append(("Search", "at least one page is shared with the integration"))

        self._call(self.client.blocks.children.list, block_id=results[0]["id"], page_size=1)
        checks.append(("Read", "page content is readable"))
        return checks

    @property
    def request_count(self) -> int:
        """Number of API requests made."""
        return self._request_count


def _to_utc_iso(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
