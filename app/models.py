from datetime import datetime, timezone

from app.extensions import db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _isoformat(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(120), unique=True, nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    bookmarks = db.relationship("Bookmark", backref="user", lazy=True)
    categories = db.relationship("Category", backref="user", lazy=True)


class Category(db.Model):
    __tablename__ = "categories"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False, index=True
    )
    name = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        db.UniqueConstraint("user_id", "name", name="uq_category_user_name"),
    )


class Bookmark(db.Model):
    __tablename__ = "bookmarks"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False, index=True
    )
    category_id = db.Column(
        db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True
    )

    content = db.Column(db.Text, nullable=False)
    author_username = db.Column(db.String(255), nullable=False)
    author_display_name = db.Column(db.String(255), nullable=False)
    author_avatar_url = db.Column(db.Text, nullable=True)
    media_urls = db.Column(db.JSON, nullable=False, default=list)
    links = db.Column(db.JSON, nullable=False, default=list)
    hashtags = db.Column(db.JSON, nullable=False, default=list)
    mentions = db.Column(db.JSON, nullable=False, default=list)
    tags = db.Column(db.JSON, nullable=False, default=list)
    bookmarked_at = db.Column(db.DateTime(timezone=True), nullable=False)
    is_archived = db.Column(db.Boolean, nullable=False, default=False)
    import_source = db.Column(db.String(32), nullable=True)
    imported_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    category = db.relationship("Category", backref="bookmarks")

    __table_args__ = (
        db.Index("ix_bookmark_user_author", "user_id", "author_username"),
    )

    def as_dict(self):
        return {
            "id": self.id,
            "content": self.content,
            "authorUsername": self.author_username,
            "authorDisplayName": self.author_display_name,
            "authorAvatarUrl": self.author_avatar_url,
            "mediaUrls": list(self.media_urls or []),
            "links": list(self.links or []),
            "hashtags": list(self.hashtags or []),
            "mentions": list(self.mentions or []),
            "tags": list(self.tags or []),
            "categoryId": self.category_id,
            "bookmarkedAt": _isoformat(self.bookmarked_at),
            "isArchived": self.is_archived,
            "importSource": self.import_source,
            "importedAt": _isoformat(self.imported_at),
            "createdAt": _isoformat(self.created_at),
            "updatedAt": _isoformat(self.updated_at),
        }
