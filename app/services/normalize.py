from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from typing import Any

from dateutil import parser as dt_parser

from app.models import utcnow
from app.services.common import parse_flag, split_delimited
from app.services.import_types import ImportSource, NormalizedBookmark

FINGERPRINT_LENGTH = 16
DEFAULT_AUTHOR_USERNAME = "imported"
DEFAULT_AUTHOR_DISPLAY_NAME = "Imported User"

_CONTENT_FIELDS = ("content", "text", "title", "name")
_DATE_FIELDS = ("bookmarkedAt", "dateAdded", "date")


def _first_present(raw: dict, *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "" and value != []:
            return value
    return None


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_date(value: Any, source: ImportSource | str | None = None) -> datetime | None:
    """Parse the date encodings seen across import formats.

    Numbers are epoch offsets: microseconds for Chrome exports, milliseconds
    for everything else. Returns ``None`` when nothing usable is found.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, (int, float)):
        divisor = 1_000_000 if source == ImportSource.CHROME else 1_000
        try:
            return datetime.fromtimestamp(value / divisor, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return _as_utc(dt_parser.parse(text))
        except (ValueError, OverflowError):
            return None
    return None


def normalize_record(raw: Any, source: ImportSource | str) -> NormalizedBookmark:
    """Map one raw import record onto the canonical bookmark shape.

    Total over any input: missing or malformed fields fall back to defaults
    (empty content, the ``imported`` author, "now" for the date).
    """
    if not isinstance(raw, dict):
        raw = {}
    source_tag = source.value if isinstance(source, ImportSource) else str(source)

    author = _as_text(raw.get("author"))
    url = _as_text(raw.get("url"))
    links = split_delimited(_first_present(raw, "links", "urls") or [])
    if url and url not in links:
        links.append(url)

    bookmarked_at = parse_date(_first_present(raw, *_DATE_FIELDS), source)

    return NormalizedBookmark(
        content=_as_text(_first_present(raw, *_CONTENT_FIELDS)) or "",
        author_username=_as_text(raw.get("authorUsername"))
        or author
        or DEFAULT_AUTHOR_USERNAME,
        author_display_name=_as_text(raw.get("authorDisplayName"))
        or author
        or DEFAULT_AUTHOR_DISPLAY_NAME,
        author_avatar_url=_as_text(raw.get("authorAvatarUrl")) or None,
        media_urls=split_delimited(_first_present(raw, "mediaUrls", "media") or []),
        links=links,
        hashtags=split_delimited(raw.get("hashtags") or []),
        mentions=split_delimited(raw.get("mentions") or []),
        tags=split_delimited(raw.get("tags") or []),
        bookmarked_at=bookmarked_at or utcnow(),
        is_archived=parse_flag(_first_present(raw, "isArchived", "archived")),
        import_source=source_tag,
        imported_at=utcnow(),
    )


def record_fingerprint(record: NormalizedBookmark) -> str:
    payload = "|".join(
        [
            record.content,
            record.author_username,
            _as_utc(record.bookmarked_at).isoformat(),
        ]
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]
