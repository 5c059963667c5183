from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from app.models import utcnow
from app.services.common import parse_flag

JOB_STATUS_PENDING = "pending"
JOB_STATUS_PROCESSING = "processing"
JOB_STATUS_COMPLETED = "completed"
JOB_STATUS_FAILED = "failed"

JOB_STATUS_ORDER = {
    JOB_STATUS_PENDING: 0,
    JOB_STATUS_PROCESSING: 1,
    JOB_STATUS_COMPLETED: 2,
    JOB_STATUS_FAILED: 2,
}

RECORD_STATUS_IMPORTED = "imported"
RECORD_STATUS_SKIPPED = "skipped"
RECORD_STATUS_ERROR = "error"

PREVIEW_LIMIT = 5


class UnsupportedImportSource(ValueError):
    pass


class ImportSource(str, Enum):
    X_BOOKMARKER = "x-bookmarker"
    JSON = "json"
    CSV = "csv"
    CHROME = "chrome"
    FIREFOX = "firefox"

    @classmethod
    def parse(cls, value: str | None) -> ImportSource:
        try:
            return cls((value or "").strip().lower())
        except ValueError as exc:
            message = f"Unsupported import source: {value}"
            raise UnsupportedImportSource(message) from exc

    @property
    def content_type(self) -> str:
        if self is ImportSource.CSV:
            return "text/csv"
        if self is ImportSource.FIREFOX:
            return "text/html"
        return "application/json"


class DuplicateStrategy(str, Enum):
    SKIP = "skip"
    UPDATE = "update"
    CREATE_DUPLICATE = "create_duplicate"

    @classmethod
    def parse(cls, value: str | None) -> DuplicateStrategy:
        if not value:
            return cls.SKIP
        try:
            return cls(value.strip().lower())
        except ValueError as exc:
            raise ValueError(f"Invalid duplicate strategy: {value}") from exc


@dataclass(frozen=True)
class ImportOptions:
    source: ImportSource
    duplicate_strategy: DuplicateStrategy = DuplicateStrategy.SKIP
    default_category: str | None = None
    validate: bool = False
    dry_run: bool = False

    @classmethod
    def from_form(cls, form) -> ImportOptions:
        default_category = (form.get("defaultCategory") or "").strip() or None
        return cls(
            source=ImportSource.parse(form.get("source")),
            duplicate_strategy=DuplicateStrategy.parse(form.get("duplicateStrategy")),
            default_category=default_category,
            validate=parse_flag(form.get("validate")),
            dry_run=parse_flag(form.get("dryRun")),
        )

    def as_dict(self) -> dict:
        return {
            "source": self.source.value,
            "duplicateStrategy": self.duplicate_strategy.value,
            "defaultCategory": self.default_category,
            "validate": self.validate,
            "dryRun": self.dry_run,
        }


@dataclass
class ImportValidationResult:
    valid: bool
    detected_format: str
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    estimated_records: int = 0
    preview: list[Any] = field(default_factory=list)

    @classmethod
    def failure(cls, detected_format: str, message: str) -> ImportValidationResult:
        return cls(valid=False, detected_format=detected_format, errors=[message])

    def as_dict(self) -> dict:
        return {
            "valid": self.valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "estimatedRecords": self.estimated_records,
            "detectedFormat": self.detected_format,
            "preview": list(self.preview),
        }


@dataclass
class NormalizedBookmark:
    """Canonical bookmark shape every import format converges to.

    List fields behave as ordered sets: duplicates are dropped on
    normalization and insertion order is kept.
    """

    content: str
    author_username: str
    author_display_name: str
    bookmarked_at: datetime
    author_avatar_url: str | None = None
    media_urls: list[str] = field(default_factory=list)
    links: list[str] = field(default_factory=list)
    hashtags: list[str] = field(default_factory=list)
    mentions: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    is_archived: bool = False
    import_source: str = ""
    imported_at: datetime = field(default_factory=utcnow)


@dataclass
class ImportedRecord:
    original_data: Any
    normalized_data: NormalizedBookmark
    hash: str
    status: str = RECORD_STATUS_IMPORTED
    error: str | None = None


@dataclass(frozen=True)
class ImportProgress:
    current: int = 0
    total: int = 0
    percentage: int = 0
    current_step: str = ""

    def as_dict(self) -> dict:
        return {
            "current": self.current,
            "total": self.total,
            "percentage": self.percentage,
            "currentStep": self.current_step,
        }


@dataclass
class ImportResult:
    total_processed: int = 0
    imported: int = 0
    skipped: int = 0
    errors: int = 0
    warnings: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "totalProcessed": self.total_processed,
            "imported": self.imported,
            "skipped": self.skipped,
            "errors": self.errors,
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class ImportJobStatus:
    job_id: str
    user_id: int
    status: str = JOB_STATUS_PENDING
    progress: ImportProgress = field(default_factory=ImportProgress)
    result: ImportResult | None = None
    error: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None

    def as_dict(self) -> dict:
        payload = {
            "jobId": self.job_id,
            "userId": self.user_id,
            "status": self.status,
            "progress": self.progress.as_dict(),
            "createdAt": self.created_at.isoformat(),
        }
        if self.result is not None:
            payload["result"] = self.result.as_dict()
        if self.error is not None:
            payload["error"] = self.error
        if self.completed_at is not None:
            payload["completedAt"] = self.completed_at.isoformat()
        return payload


@dataclass(frozen=True)
class ImportJobPayload:
    """Unit of work handed to the worker that runs an import."""

    job_id: str
    user_id: int
    storage_key: str
    options: ImportOptions
    validation: ImportValidationResult
