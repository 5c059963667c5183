from __future__ import annotations

import csv
import io
import json
from typing import Any, Callable, Iterable

from bs4 import BeautifulSoup, Tag

from app.services.import_types import ImportedRecord, ImportSource
from app.services.normalize import normalize_record, record_fingerprint

_FOLDER_HEADINGS = ["h3", "h2", "h1"]


def _build_record(
    raw: Any, source: ImportSource, original: Any = None
) -> ImportedRecord:
    normalized = normalize_record(raw, source)
    return ImportedRecord(
        original_data=raw if original is None else original,
        normalized_data=normalized,
        hash=record_fingerprint(normalized),
    )


def _build_records(
    rows: Iterable[Any], source: ImportSource
) -> list[ImportedRecord]:
    return [_build_record(row, source) for row in rows]


def _bookmarks_list(data: Any) -> list:
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get("bookmarks"), list):
        return data["bookmarks"]
    return []


def _parse_x_bookmarker(content: str) -> list[ImportedRecord]:
    data = json.loads(content)
    bookmarks = data.get("bookmarks") if isinstance(data, dict) else None
    return _build_records(bookmarks or [], ImportSource.X_BOOKMARKER)


def _parse_json(content: str) -> list[ImportedRecord]:
    return _build_records(_bookmarks_list(json.loads(content)), ImportSource.JSON)


def _parse_csv(content: str) -> list[ImportedRecord]:
    reader = csv.DictReader(io.StringIO(content.lstrip("\ufeff")))
    return _build_records(reader, ImportSource.CSV)


def _chrome_date(value: Any) -> Any:
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return value


def _walk_chrome(node: Any, folder: str, out: list[ImportedRecord]) -> None:
    if not isinstance(node, dict):
        return

    if node.get("type") == "url":
        raw = {
            "title": node.get("name"),
            "url": node.get("url"),
            "dateAdded": _chrome_date(node.get("date_added")),
            "folder": folder,
        }
        out.append(_build_record(raw, ImportSource.CHROME, original=node))

    children = node.get("children")
    if isinstance(children, list):
        name = node.get("name") or ""
        child_folder = f"{folder}/{name}" if folder else name
        for child in children:
            _walk_chrome(child, child_folder, out)


def _parse_chrome(content: str) -> list[ImportedRecord]:
    data = json.loads(content)
    roots = data.get("roots") if isinstance(data, dict) else None
    records: list[ImportedRecord] = []
    if isinstance(roots, dict):
        for root in roots.values():
            _walk_chrome(root, "", records)
    return records


def _direct_children(dl: Tag, name: str | list[str], container: str) -> list[Tag]:
    return [
        node
        for node in dl.find_all(name)
        if isinstance(node, Tag) and node.find_parent(container) is dl
    ]


def _nested_list(dt: Tag) -> Tag | None:
    nested = dt.find("dl")
    if isinstance(nested, Tag):
        return nested

    sibling = dt.next_sibling
    while sibling is not None:
        if isinstance(sibling, Tag):
            tag_name = (sibling.name or "").lower()
            if tag_name == "dl":
                return sibling
            if tag_name == "dt":
                return None
        sibling = sibling.next_sibling
    return None


def _anchor_entry(anchor: Tag, folder_path: list[str]) -> dict | None:
    href = anchor.get("href")
    href = href.strip() if isinstance(href, str) else ""
    if not href:
        return None

    entry: dict[str, Any] = {
        "title": anchor.get_text(strip=True),
        "url": href,
        "folder": "/".join(folder_path),
    }
    add_date = anchor.get("add_date")
    if isinstance(add_date, str) and add_date.strip().isdigit():
        # ADD_DATE is in seconds; the normalizer expects milliseconds.
        entry["dateAdded"] = int(add_date.strip()) * 1000
    tags = anchor.get("tags")
    if isinstance(tags, str) and tags.strip():
        entry["tags"] = tags
    return entry


def _walk_netscape(dl: Tag, folder_path: list[str], out: list[dict]) -> None:
    for dt in _direct_children(dl, "dt", "dl"):
        anchors = [a for a in dt.find_all("a") if a.find_parent("dt") is dt]
        if anchors:
            entry = _anchor_entry(anchors[0], folder_path)
            if entry:
                out.append(entry)

        nested = _nested_list(dt)
        if nested is None:
            continue
        headings = [
            h for h in dt.find_all(_FOLDER_HEADINGS) if h.find_parent("dt") is dt
        ] or dt.find_all(_FOLDER_HEADINGS)
        if headings:
            folder_name = headings[0].get_text(strip=True)
            _walk_netscape(nested, folder_path + [folder_name], out)


def _parse_firefox(content: str) -> list[ImportedRecord]:
    soup = BeautifulSoup(content, "lxml")
    entries: list[dict] = []
    root = soup.find("dl")
    if isinstance(root, Tag):
        _walk_netscape(root, [], entries)
    else:
        for anchor in soup.find_all("a"):
            entry = _anchor_entry(anchor, [])
            if entry:
                entries.append(entry)
    return _build_records(entries, ImportSource.FIREFOX)


PARSERS: dict[ImportSource, Callable[[str], list[ImportedRecord]]] = {
    ImportSource.X_BOOKMARKER: _parse_x_bookmarker,
    ImportSource.JSON: _parse_json,
    ImportSource.CSV: _parse_csv,
    ImportSource.CHROME: _parse_chrome,
    ImportSource.FIREFOX: _parse_firefox,
}

_missing = set(ImportSource) - set(PARSERS)
if _missing:
    raise RuntimeError(f"no parser registered for: {sorted(_missing)}")


def parse_import_content(
    content: str, source: ImportSource | str
) -> list[ImportedRecord]:
    """Convert a whole import file into records ready for duplicate resolution.

    Folder hierarchies from browser exports are flattened; the folder path is
    kept on the original data only and never becomes a category.
    """
    return PARSERS[ImportSource.parse(source)](content)
