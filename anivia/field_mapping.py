"""
Field mapping tables.

Each logical post field is described by the property names it may appear
under (users rename Notion properties and front matter keys freely, e.g.
"Category" vs "分类"), the kind of value expected there, and a default.
Candidate order is the tie-break: the first name present with a usable
value of the expected kind wins.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Optional

from .errors import DocumentValidationError


@dataclass(frozen=True)
class FieldMapping:
    """Declarative alias list for one output field."""

    candidates: tuple[str, ...]
    kind: str
    target: str
    default: Any = None
    required: bool = False
    # Other source kinds accepted for the same field
    accepts: tuple[str, ...] = ()
    description: str = ""

    @property
    def kinds(self) -> tuple[str, ...]:
        return (self.kind,) + self.accepts

    def default_value(self) -> Any:
        # Never hand out the shared default list
        return list(self.default) if isinstance(self.default, list) else self.default


# =========================================================================
# Notion page properties
# =========================================================================

NOTION_LIST_KINDS = {"multi_select", "files"}

NOTION_FIELD_MAPPINGS: list[FieldMapping] = [
    FieldMapping(("标题", "Title", "Name"), "title", "title", default="Untitled",
                 description="Page title"),
    FieldMapping(("slug", "handler", "处理人"), "rich_text", "slug", default=""),
    FieldMapping(("发布", "Published", "Publish"), "checkbox", "published", default=False),
    FieldMapping(("草稿", "Draft"), "checkbox", "draft", default=False),
    FieldMapping(("归档", "Archived"), "checkbox", "archived", default=False),
    FieldMapping(("categories", "分类", "category"), "multi_select", "categories",
                 default=[], accepts=("select",)),
    FieldMapping(("tags", "标签"), "multi_select", "tags", default=[]),
    FieldMapping(("excerpt", "摘要", "简介"), "rich_text", "excerpt", default=""),
    FieldMapping(("post_type", "类型", "Type"), "select", "post_type", default="",
                 accepts=("rich_text",)),
    FieldMapping(("配图", "Featured Image", "Featured Img", "Cover"), "files", "featured_img",
                 default=[], accepts=("url", "rich_text"), description="Cover image (single)"),
    FieldMapping(("组图", "Gallery", "Gallery Imgs", "Images", "图片集"), "files", "gallery_imgs",
                 default=[], description="Gallery images"),
]


def _plain_text(rich_text: Iterable[dict]) -> str:
    return "".join(part.get("plain_text", "") for part in rich_text or [])


def _file_urls(files: Iterable[dict]) -> list[str]:
    """Unwrap Notion file attachments (uploaded or external) into URLs."""
    urls = []
    for item in files or []:
        kind = item.get("type")
        url = (item.get(kind) or {}).get("url") if kind in ("file", "external") else None
        if url:
            urls.append(url)
    return urls


def extract_notion_value(prop: Any, mapping: FieldMapping) -> Any:
    """
    Read a Notion property value if it is one of the mapping's kinds.

    Returns None when the property has another type or holds nothing, so
    the resolver moves on to the next candidate. Checkbox values are never
    empty: an unchecked box is a real ``False``.
    """
    if not isinstance(prop, dict):
        return None

    ptype = prop.get("type")
    if ptype not in mapping.kinds:
        return None

    raw = prop.get(ptype)
    value: Any
    if ptype in ("title", "rich_text"):
        value = _plain_text(raw).strip() or None
    elif ptype == "select":
        value = (raw or {}).get("name") or None
    elif ptype == "multi_select":
        value = [option["name"] for option in raw or [] if option.get("name")] or None
    elif ptype == "checkbox":
        value = bool(raw)
    elif ptype == "files":
        value = _file_urls(raw) or None
    elif ptype == "date":
        value = (raw or {}).get("start") or None
    elif ptype in ("url", "email", "phone_number"):
        value = (raw or "").strip() or None
    elif ptype == "number":
        value = raw
    else:
        value = None

    if value is None:
        return None

    if mapping.kind in NOTION_LIST_KINDS and not isinstance(value, list):
        value = [value]
    elif mapping.kind not in NOTION_LIST_KINDS and isinstance(value, list):
        value = value[0]

    return value


# =========================================================================
# Local Markdown front matter
# =========================================================================

LOCAL_FIELD_MAPPINGS: list[FieldMapping] = [
    FieldMapping(("title", "标题"), "string", "title", default="",
                 description="Falls back to the file name"),
    FieldMapping(("slug",), "string", "slug", required=True,
                 description="Unique identifier of a local post"),
    FieldMapping(("post_type", "postType", "type"), "string", "post_type", default=""),
    FieldMapping(("published", "发布"), "boolean", "published", default=False),
    FieldMapping(("draft", "草稿"), "boolean", "draft", default=False),
    FieldMapping(("archived", "归档"), "boolean", "archived", default=False),
    FieldMapping(("categories", "分类", "category"), "array", "categories", default=[]),
    FieldMapping(("tags", "标签"), "array", "tags", default=[]),
    FieldMapping(("excerpt", "摘要", "简介", "description"), "string", "excerpt", default=""),
    FieldMapping(("featured_img", "featuredImg", "cover", "配图"), "image", "featured_img", default=""),
    FieldMapping(("gallery_imgs", "galleryImgs", "gallery", "组图"), "images", "gallery_imgs", default=[]),
    FieldMapping(("created_time", "createdTime", "created"), "date", "created_time"),
    FieldMapping(("last_edited_time", "lastEditedTime", "updated", "modified"), "date", "last_edited_time"),
]

_DATE_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d %H:%M", "%Y-%m-%d")


def parse_datetime(value: Any, tz=timezone.utc) -> Optional[datetime]:
    """
    Parse a front matter or API timestamp into an aware datetime.

    Naive values are taken to be in ``tz``.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        text = value.strip().replace("Z", "+00:00")
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            for fmt in _DATE_FORMATS:
                try:
                    parsed = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
            else:
                return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


def _scalar_text(value: Any) -> Optional[str]:
    if isinstance(value, bool) or isinstance(value, (list, dict)) or value is None:
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    text = str(value).strip()
    return text or None


def extract_local_value(value: Any, mapping: FieldMapping) -> Any:
    """Coerce a front matter value to the mapping's kind, or None if it does not fit."""
    if value is None or value == "":
        return None

    kind = mapping.kind
    if kind == "string" or kind == "image":
        return _scalar_text(value)

    if kind == "boolean":
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "false"):
            return value.strip().lower() == "true"
        return None

    if kind in ("array", "images"):
        items = value if isinstance(value, list) else [value]
        texts = [text for text in (_scalar_text(item) for item in items) if text]
        return texts or None

    if kind == "date":
        # Left raw so the caller can apply its own timezone to naive values
        return value if parse_datetime(value) is not None else None

    return None


# =========================================================================
# Resolution
# =========================================================================

Extractor = Callable[[Any, FieldMapping], Any]


def resolve_field(
    bag: Mapping[str, Any],
    mapping: FieldMapping,
    extract: Extractor,
) -> tuple[Optional[str], Any]:
    """
    Resolve one mapping against a property bag.

    Candidate names are compared case-insensitively and tried in declared
    order; the first that is present and yields a value wins.

    Returns:
        Tuple of (matched source key or None, value or the mapping default).
    """
    by_lower: dict[str, str] = {}
    for key in bag:
        by_lower.setdefault(str(key).lower(), key)

    for candidate in mapping.candidates:
        key = by_lower.get(candidate.lower())
        if key is None:
            continue
        value = extract(bag[key], mapping)
        if value is not None:
            return key, value

    return None, mapping.default_value()


def resolve_fields(
    bag: Mapping[str, Any],
    mappings: Iterable[FieldMapping],
    extract: Extractor,
) -> tuple[dict[str, Any], set[str]]:
    """
    Resolve a whole mapping table.

    Returns:
        Tuple of (target field -> value, source keys consumed).

    Raises:
        DocumentValidationError: If a required field did not resolve.
    """
    values: dict[str, Any] = {}
    consumed: set[str] = set()
    missing: list[str] = []

    for mapping in mappings:
        key, value = resolve_field(bag, mapping, extract)
        if key is None and mapping.required:
            missing.append(mapping.target)
            continue
        if key is not None:
            consumed.add(key)
        values[mapping.target] = value

    if missing:
        raise DocumentValidationError(
            f"Missing required field(s): {', '.join(missing)}",
            missing_fields=missing,
        )

    return values, consumed
