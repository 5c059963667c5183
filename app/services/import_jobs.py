from __future__ import annotations

import math
import shutil
import threading
import uuid
from dataclasses import dataclass, field
from pathlib import Path

from flask import Flask

from app.extensions import db
from app.models import utcnow
from app.services.import_parsers import parse_import_content
from app.services.import_resolver import (
    dry_run_record,
    find_category_id,
    resolve_record,
)
from app.services.import_status import get_status_store
from app.services.import_types import (
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    JOB_STATUS_PROCESSING,
    RECORD_STATUS_ERROR,
    RECORD_STATUS_IMPORTED,
    ImportedRecord,
    ImportJobPayload,
    ImportJobStatus,
    ImportOptions,
    ImportProgress,
    ImportResult,
    ImportValidationResult,
)
from app.services.import_validation import validate_import
from app.services.storage import LocalStorage, StorageError, get_storage

PARSE_PROGRESS = 10


class InvalidImportFile(ValueError):
    def __init__(self, validation: ImportValidationResult):
        self.validation = validation
        super().__init__(f"Invalid import file: {', '.join(validation.errors)}")


@dataclass
class ImportSubmission:
    validation: ImportValidationResult
    job_id: str | None = None


@dataclass
class CleanupReport:
    removed: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def _read_text(path: str | Path) -> str:
    return Path(path).read_bytes().decode("utf-8", errors="replace")


def submit_import(
    app: Flask,
    user_id: int,
    local_path: str | Path,
    filename: str,
    options: ImportOptions,
) -> ImportSubmission:
    """Validate an uploaded file, stage it and queue the import job.

    Raises ``InvalidImportFile`` when validation fails. With
    ``options.validate`` set, only the validation result is returned and
    nothing is staged or queued.
    """
    validation = validate_import(_read_text(local_path), options.source)
    if not validation.valid:
        raise InvalidImportFile(validation)
    if options.validate:
        return ImportSubmission(validation=validation)

    job_id = uuid.uuid4().hex
    basename = Path(filename).name or "import-file"
    storage_key = f"imports/{user_id}/{job_id}/{basename}"
    get_storage(app).upload(
        storage_key,
        local_path,
        {
            "userId": user_id,
            "jobId": job_id,
            "source": options.source.value,
            "contentType": options.source.content_type,
            "uploadedAt": utcnow().isoformat(),
        },
    )

    get_status_store(app).create(
        ImportJobStatus(
            job_id=job_id,
            user_id=user_id,
            progress=ImportProgress(
                total=validation.estimated_records,
                current_step="Preparing import...",
            ),
        )
    )
    start_import_job(
        app,
        ImportJobPayload(
            job_id=job_id,
            user_id=user_id,
            storage_key=storage_key,
            options=options,
            validation=validation,
        ),
    )
    return ImportSubmission(validation=validation, job_id=job_id)


def start_import_job(app: Flask, payload: ImportJobPayload) -> None:
    if app.config.get("IMPORT_RUN_INLINE"):
        _run_import_job(app, payload)
        return

    thread = threading.Thread(
        target=_run_import_job,
        args=(app, payload),
        daemon=True,
        name=f"import-job-{payload.job_id}",
    )
    thread.start()


def get_import_status(app: Flask, job_id: str) -> ImportJobStatus | None:
    return get_status_store(app).get(job_id)


def get_import_history(
    app: Flask, user_id: int, limit: int = 10
) -> list[ImportJobStatus]:
    return get_status_store(app).history(user_id, limit=limit)


def batch_percentage(batch_index: int, total_batches: int) -> int:
    if total_batches <= 0:
        return PARSE_PROGRESS
    # Round half up; the first 10% covers download and parsing.
    return PARSE_PROGRESS + math.floor(batch_index / total_batches * 90 + 0.5)


def _run_import_job(app: Flask, payload: ImportJobPayload) -> ImportResult | None:
    with app.app_context():
        db.session.remove()
        store = get_status_store(app)
        storage = get_storage(app)
        job_id = payload.job_id
        temp_dir = Path(app.config["IMPORT_TEMP_DIR"]) / job_id
        result = None
        try:
            app.logger.info(
                "Starting import job %s for user %s (%s)",
                job_id,
                payload.user_id,
                payload.options.source.value,
            )
            store.update(
                job_id,
                status=JOB_STATUS_PROCESSING,
                progress=ImportProgress(
                    total=payload.validation.estimated_records,
                    current_step="Reading import file...",
                ),
            )

            temp_path = temp_dir / "import-file"
            temp_dir.mkdir(parents=True, exist_ok=True)
            storage.download(payload.storage_key, temp_path)

            store.update(
                job_id,
                progress=ImportProgress(
                    total=payload.validation.estimated_records,
                    percentage=PARSE_PROGRESS,
                    current_step="Parsing records...",
                ),
            )
            content = _read_text(temp_path)
            records = parse_import_content(content, payload.options.source)

            result = _process_records(app, payload, records)

            store.update(
                job_id,
                status=JOB_STATUS_COMPLETED,
                progress=ImportProgress(
                    current=result.total_processed,
                    total=result.total_processed,
                    percentage=100,
                    current_step="Completed",
                ),
                result=result,
                completed_at=utcnow(),
            )
            app.logger.info(
                "Import job %s finished: %s imported, %s skipped, %s errors",
                job_id,
                result.imported,
                result.skipped,
                result.errors,
            )
        except Exception as exc:
            db.session.rollback()
            app.logger.exception("Import job %s failed", job_id)
            store.update(
                job_id,
                status=JOB_STATUS_FAILED,
                error=str(exc) or exc.__class__.__name__,
                completed_at=utcnow(),
            )
        finally:
            store.append_history(payload.user_id, job_id)
            _cleanup(
                app,
                storage,
                payload.storage_key,
                temp_dir,
                remove_staged=result is not None,
            )
            db.session.remove()
        return result


def _process_records(
    app: Flask, payload: ImportJobPayload, records: list[ImportedRecord]
) -> ImportResult:
    """Resolve records batch by batch, isolating per-record failures.

    Batches run strictly in order and every record is committed on its own,
    so later duplicate lookups see rows written earlier in the same job.
    """
    options = payload.options
    store = get_status_store(app)
    batch_size = max(1, int(app.config["IMPORT_BATCH_SIZE"]))
    warning_limit = int(app.config["IMPORT_WARNING_LIMIT"])
    total = len(records)
    total_batches = math.ceil(total / batch_size)
    result = ImportResult(total_processed=total)

    category_id = None
    if not options.dry_run:
        category_id = find_category_id(payload.user_id, options.default_category)

    def warn(message: str) -> None:
        if len(result.warnings) < warning_limit:
            result.warnings.append(message)

    for batch_index in range(total_batches):
        start = batch_index * batch_size
        batch = records[start : start + batch_size]
        store.update(
            payload.job_id,
            progress=ImportProgress(
                current=start,
                total=total,
                percentage=batch_percentage(batch_index, total_batches),
                current_step=f"Processing batch {batch_index + 1}/{total_batches}...",
            ),
        )

        for record in batch:
            try:
                if options.dry_run:
                    status, reason = dry_run_record(record)
                    if reason:
                        warn(f"Skipped: {reason}")
                else:
                    status = resolve_record(
                        record,
                        payload.user_id,
                        options.duplicate_strategy,
                        category_id,
                    )
                    db.session.commit()
            except Exception as exc:
                db.session.rollback()
                record.status = RECORD_STATUS_ERROR
                record.error = str(exc) or exc.__class__.__name__
                result.errors += 1
                warn(f"Error: {record.error}")
                continue

            if status == RECORD_STATUS_IMPORTED:
                result.imported += 1
            else:
                result.skipped += 1

    return result


def _cleanup(
    app: Flask,
    storage: LocalStorage,
    storage_key: str,
    temp_dir: Path,
    remove_staged: bool,
) -> CleanupReport:
    """Best-effort removal of the job's files; failures are reported, not raised."""
    report = CleanupReport()
    try:
        if temp_dir.exists():
            shutil.rmtree(temp_dir)
            report.removed.append(str(temp_dir))
    except OSError as exc:
        report.errors.append(f"temp dir {temp_dir}: {exc}")

    if remove_staged:
        try:
            storage.delete(storage_key)
            report.removed.append(storage_key)
        except (OSError, StorageError) as exc:
            report.errors.append(f"storage object {storage_key}: {exc}")

    for error in report.errors:
        app.logger.warning("Import cleanup warning: %s", error)
    return report
