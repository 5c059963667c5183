from __future__ import annotations

from app.extensions import db
from app.models import Bookmark, Category, utcnow
from app.services.import_types import (
    RECORD_STATUS_IMPORTED,
    RECORD_STATUS_SKIPPED,
    DuplicateStrategy,
    ImportedRecord,
    NormalizedBookmark,
)

MAX_CONTENT_LENGTH = 2000


class RecordRejected(ValueError):
    pass


def check_record(data: NormalizedBookmark) -> str | None:
    if not data.content or not data.content.strip():
        return "Empty content"
    if len(data.content) > MAX_CONTENT_LENGTH:
        return "Content too long"
    return None


def find_duplicate(user_id: int, data: NormalizedBookmark) -> Bookmark | None:
    return Bookmark.query.filter_by(
        user_id=user_id,
        content=data.content,
        author_username=data.author_username,
    ).first()


def find_category_id(user_id: int, name: str | None) -> int | None:
    if not name:
        return None
    category = Category.query.filter_by(user_id=user_id, name=name).first()
    return category.id if category else None


def create_bookmark(
    user_id: int, data: NormalizedBookmark, category_id: int | None
) -> Bookmark:
    bookmark = Bookmark(
        user_id=user_id,
        category_id=category_id,
        content=data.content,
        author_username=data.author_username,
        author_display_name=data.author_display_name,
        author_avatar_url=data.author_avatar_url,
        media_urls=list(data.media_urls),
        links=list(data.links),
        hashtags=list(data.hashtags),
        mentions=list(data.mentions),
        tags=list(data.tags),
        bookmarked_at=data.bookmarked_at,
        is_archived=data.is_archived,
        import_source=data.import_source,
        imported_at=data.imported_at,
    )
    db.session.add(bookmark)
    db.session.flush()
    return bookmark


def update_bookmark(bookmark: Bookmark, data: NormalizedBookmark) -> Bookmark:
    bookmark.content = data.content
    bookmark.media_urls = list(data.media_urls)
    bookmark.links = list(data.links)
    bookmark.hashtags = list(data.hashtags)
    bookmark.mentions = list(data.mentions)
    bookmark.tags = list(data.tags)
    bookmark.updated_at = utcnow()
    db.session.flush()
    return bookmark


def resolve_record(
    record: ImportedRecord,
    user_id: int,
    strategy: DuplicateStrategy,
    category_id: int | None = None,
) -> str:
    """Apply the duplicate strategy to one record and return its status.

    Matching is by exact ``(content, author_username)`` within the user's
    bookmarks; the record hash is not consulted. Writes are flushed, not
    committed, so the caller owns the transaction.
    """
    data = record.normalized_data
    reason = check_record(data)
    if reason:
        raise RecordRejected(reason)

    existing = find_duplicate(user_id, data)
    if existing is None:
        create_bookmark(user_id, data, category_id)
        status = RECORD_STATUS_IMPORTED
    elif strategy is DuplicateStrategy.SKIP:
        status = RECORD_STATUS_SKIPPED
    elif strategy is DuplicateStrategy.UPDATE:
        update_bookmark(existing, data)
        status = RECORD_STATUS_IMPORTED
    elif strategy is DuplicateStrategy.CREATE_DUPLICATE:
        create_bookmark(user_id, data, category_id)
        status = RECORD_STATUS_IMPORTED
    else:
        raise ValueError(f"Invalid duplicate strategy: {strategy}")

    record.status = status
    return status


def dry_run_record(record: ImportedRecord) -> tuple[str, str | None]:
    reason = check_record(record.normalized_data)
    record.status = RECORD_STATUS_SKIPPED if reason else RECORD_STATUS_IMPORTED
    return record.status, reason
