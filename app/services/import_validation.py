from __future__ import annotations

import csv
import io
import json
import re
from typing import Callable

from app.services.import_types import (
    PREVIEW_LIMIT,
    ImportSource,
    ImportValidationResult,
)

NETSCAPE_DOCTYPE = "<!DOCTYPE NETSCAPE-Bookmark-file-1>"
CSV_SAMPLE_ROWS = 10
CSV_ESTIMATE_FACTOR = 10
JSON_FIELD_CHECK_LIMIT = 10

_ANCHOR_PATTERN = re.compile(r"<A HREF=", re.IGNORECASE)
_ANCHOR_PREVIEW_PATTERN = re.compile(
    r'<A HREF="([^"]*)"[^>]*>([^<]*)</A>', re.IGNORECASE
)
_CSV_CONTENT_HINTS = ("content", "text", "title", "url")


def _validate_x_bookmarker(content: str) -> ImportValidationResult:
    fmt = ImportSource.X_BOOKMARKER.value
    try:
        data = json.loads(content)
    except ValueError:
        return ImportValidationResult.failure(
            fmt, "Invalid X-Bookmarker export JSON format"
        )

    result = ImportValidationResult(valid=True, detected_format=fmt)
    if not isinstance(data, dict) or "metadata" not in data or "bookmarks" not in data:
        result.errors.append("Invalid X-Bookmarker export format")
        data = data if isinstance(data, dict) else {}

    bookmarks = data.get("bookmarks")
    if bookmarks is not None and not isinstance(bookmarks, list):
        result.errors.append('"bookmarks" must be a list')
        bookmarks = []

    bookmarks = bookmarks or []
    result.estimated_records = len(bookmarks)
    result.preview = bookmarks[:PREVIEW_LIMIT]
    result.valid = not result.errors
    return result


def _validate_json(content: str) -> ImportValidationResult:
    fmt = ImportSource.JSON.value
    try:
        data = json.loads(content)
    except ValueError:
        return ImportValidationResult.failure(fmt, "Invalid JSON format")

    result = ImportValidationResult(valid=True, detected_format=fmt)
    if isinstance(data, list):
        bookmarks = data
    elif isinstance(data, dict) and isinstance(data.get("bookmarks"), list):
        bookmarks = data["bookmarks"]
    else:
        result.errors.append(
            'JSON format must be an array or contain a "bookmarks" property'
        )
        bookmarks = []

    for index, bookmark in enumerate(bookmarks[:JSON_FIELD_CHECK_LIMIT], start=1):
        if not isinstance(bookmark, dict) or not any(
            bookmark.get(key) for key in ("content", "text", "title")
        ):
            result.warnings.append(f"Record {index}: Missing content/text/title field")

    result.estimated_records = len(bookmarks)
    result.preview = bookmarks[:PREVIEW_LIMIT]
    result.valid = not result.errors
    return result


def _validate_csv(content: str) -> ImportValidationResult:
    fmt = ImportSource.CSV.value
    result = ImportValidationResult(valid=True, detected_format=fmt)
    rows: list[dict] = []
    fieldnames: list[str] = []
    try:
        reader = csv.DictReader(io.StringIO(content.lstrip("\ufeff")))
        for row in reader:
            rows.append(row)
            if len(rows) >= CSV_SAMPLE_ROWS:
                break
        fieldnames = [name for name in (reader.fieldnames or []) if name]
    except csv.Error as exc:
        result.errors.append(f"CSV parsing error: {exc}")

    if not rows:
        result.errors.append("No valid records found in CSV")

    has_content_column = any(
        hint in name.lower() for name in fieldnames for hint in _CSV_CONTENT_HINTS
    )
    if not has_content_column:
        result.warnings.append("CSV may not contain bookmark content fields")

    # Overestimate from the sampled rows only.
    result.estimated_records = len(rows) * CSV_ESTIMATE_FACTOR
    result.preview = rows[:PREVIEW_LIMIT]
    result.valid = not result.errors
    return result


def _walk_chrome_nodes(node, preview: list[dict]) -> int:
    if not isinstance(node, dict):
        return 0
    count = 0
    if node.get("type") == "url":
        count += 1
        if len(preview) < PREVIEW_LIMIT:
            preview.append(
                {
                    "title": node.get("name"),
                    "url": node.get("url"),
                    "dateAdded": node.get("date_added"),
                }
            )
    for child in node.get("children") or []:
        count += _walk_chrome_nodes(child, preview)
    return count


def _validate_chrome(content: str) -> ImportValidationResult:
    fmt = ImportSource.CHROME.value
    try:
        data = json.loads(content)
    except ValueError:
        return ImportValidationResult.failure(
            fmt, "Invalid Chrome bookmarks JSON format"
        )

    result = ImportValidationResult(valid=True, detected_format=fmt)
    if not isinstance(data, dict) or "roots" not in data:
        result.errors.append(
            'Invalid Chrome bookmarks format: missing "roots" property'
        )

    roots = data.get("roots") if isinstance(data, dict) else None
    count = 0
    if isinstance(roots, dict):
        for root in roots.values():
            count += _walk_chrome_nodes(root, result.preview)

    if count == 0:
        result.warnings.append("No bookmarks found in Chrome export")

    result.estimated_records = count
    result.valid = not result.errors
    return result


def _validate_firefox(content: str) -> ImportValidationResult:
    fmt = ImportSource.FIREFOX.value
    result = ImportValidationResult(valid=True, detected_format=fmt)
    if NETSCAPE_DOCTYPE not in content:
        result.errors.append("Invalid Firefox bookmarks format")

    estimated = len(_ANCHOR_PATTERN.findall(content))
    if estimated == 0:
        result.warnings.append("No bookmarks found in Firefox export")

    for match in _ANCHOR_PREVIEW_PATTERN.finditer(content):
        if len(result.preview) >= PREVIEW_LIMIT:
            break
        result.preview.append({"title": match.group(2), "url": match.group(1)})

    result.estimated_records = estimated
    result.valid = not result.errors
    return result


VALIDATORS: dict[ImportSource, Callable[[str], ImportValidationResult]] = {
    ImportSource.X_BOOKMARKER: _validate_x_bookmarker,
    ImportSource.JSON: _validate_json,
    ImportSource.CSV: _validate_csv,
    ImportSource.CHROME: _validate_chrome,
    ImportSource.FIREFOX: _validate_firefox,
}

_missing = set(ImportSource) - set(VALIDATORS)
if _missing:
    raise RuntimeError(f"no validator registered for: {sorted(_missing)}")


def validate_import(content: str, source: ImportSource | str) -> ImportValidationResult:
    """Cheap pre-flight check of an uploaded import file. Never raises."""
    try:
        source = ImportSource.parse(source)
    except ValueError as exc:
        return ImportValidationResult.failure("unknown", str(exc))

    try:
        return VALIDATORS[source](content)
    except Exception as exc:
        return ImportValidationResult.failure(
            source.value, f"Validation failed: {exc}"
        )
