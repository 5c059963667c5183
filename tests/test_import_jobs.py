import json
from pathlib import Path

import pytest

from app.extensions import db
from app.models import Bookmark, Category
from app.services import import_jobs
from app.services.import_jobs import (
    InvalidImportFile,
    _run_import_job,
    batch_percentage,
    get_import_history,
    get_import_status,
    submit_import,
)
from app.services.import_status import ImportStatusStore, get_status_store
from app.services.import_types import (
    DuplicateStrategy,
    ImportJobPayload,
    ImportJobStatus,
    ImportOptions,
    ImportSource,
)
from app.services.import_validation import validate_import
from app.services.storage import LocalStorage, StorageError


def _submit(app, tmp_path, user_id, content, source="json", filename=None, **options):
    filename = filename or f"bookmarks.{'html' if source == 'firefox' else 'json'}"
    path = tmp_path / filename
    path.write_text(content, encoding="utf-8")
    return submit_import(
        app,
        user_id,
        path,
        filename,
        ImportOptions(source=ImportSource(source), **options),
    )


def _json_records(count, **overrides):
    return [
        dict(
            {
                "content": f"bookmark {index}",
                "authorUsername": "alice",
                "bookmarkedAt": "2024-01-01T00:00:00Z",
            },
            **overrides,
        )
        for index in range(count)
    ]


def test_batch_percentage_reserves_parse_phase():
    assert batch_percentage(0, 3) == 10
    assert batch_percentage(1, 3) == 40
    assert batch_percentage(2, 3) == 70
    assert batch_percentage(1, 2) == 55
    assert batch_percentage(0, 0) == 10


def test_single_json_record_imports(app, tmp_path, user_id):
    content = json.dumps(
        [
            {
                "content": "hello",
                "authorUsername": "a",
                "bookmarkedAt": "2024-01-01T00:00:00Z",
            }
        ]
    )
    submission = _submit(app, tmp_path, user_id, content)

    status = get_import_status(app, submission.job_id)
    assert status.status == "completed"
    assert status.progress.percentage == 100
    assert status.completed_at is not None
    assert status.result.as_dict() == {
        "totalProcessed": 1,
        "imported": 1,
        "skipped": 0,
        "errors": 0,
        "warnings": [],
    }
    with app.app_context():
        bookmark = Bookmark.query.filter_by(user_id=user_id).one()
        assert bookmark.content == "hello"
        assert bookmark.author_username == "a"
        assert bookmark.import_source == "json"


def test_native_export_round_trip_skips_everything(app, tmp_path, user_id):
    _submit(app, tmp_path, user_id, json.dumps(_json_records(3)))
    with app.app_context():
        exported = [
            row.as_dict() for row in Bookmark.query.filter_by(user_id=user_id).all()
        ]
    export = {
        "metadata": {"version": "1.0", "count": len(exported)},
        "bookmarks": exported,
    }

    submission = _submit(
        app,
        tmp_path,
        user_id,
        json.dumps(export),
        source="x-bookmarker",
        duplicate_strategy=DuplicateStrategy.SKIP,
    )

    result = get_import_status(app, submission.job_id).result
    assert result.imported == 0
    assert result.skipped == result.total_processed == 3
    with app.app_context():
        assert Bookmark.query.filter_by(user_id=user_id).count() == 3


@pytest.mark.parametrize(
    "strategy, expected_rows",
    [
        (DuplicateStrategy.SKIP, 1),
        (DuplicateStrategy.UPDATE, 1),
        (DuplicateStrategy.CREATE_DUPLICATE, 2),
    ],
)
def test_duplicate_strategies(app, tmp_path, user_id, strategy, expected_rows):
    _submit(app, tmp_path, user_id, json.dumps(_json_records(1, tags="old")))
    _submit(
        app,
        tmp_path,
        user_id,
        json.dumps(_json_records(1, tags="new;tags")),
        duplicate_strategy=strategy,
    )

    with app.app_context():
        rows = Bookmark.query.filter_by(user_id=user_id).order_by(Bookmark.id).all()
        assert len(rows) == expected_rows
        if strategy is DuplicateStrategy.UPDATE:
            assert rows[0].tags == ["new", "tags"]
        if strategy is DuplicateStrategy.SKIP:
            assert rows[0].tags == ["old"]


def test_one_bad_record_does_not_abort_the_batch(app, tmp_path, user_id):
    records = _json_records(50)
    records[17] = {"authorUsername": "alice", "url": ""}
    submission = _submit(app, tmp_path, user_id, json.dumps(records))

    status = get_import_status(app, submission.job_id)
    assert status.status == "completed"
    assert status.result.total_processed == 50
    assert status.result.imported + status.result.skipped == 49
    assert status.result.errors == 1
    assert status.result.warnings == ["Error: Empty content"]
    with app.app_context():
        assert Bookmark.query.count() == 49


def test_warnings_are_capped(app, tmp_path, user_id):
    app.config["IMPORT_WARNING_LIMIT"] = 5
    records = [{"authorUsername": "x"} for _ in range(12)]
    submission = _submit(app, tmp_path, user_id, json.dumps(records))

    result = get_import_status(app, submission.job_id).result
    assert result.errors == 12
    assert len(result.warnings) == 5


def test_dry_run_counts_validity_without_writing(app, tmp_path, user_id):
    records = _json_records(3) + [{"content": "x" * 2001}]
    submission = _submit(app, tmp_path, user_id, json.dumps(records), dry_run=True)

    result = get_import_status(app, submission.job_id).result
    assert (result.imported, result.skipped, result.errors) == (3, 1, 0)
    assert result.warnings == ["Skipped: Content too long"]
    with app.app_context():
        assert Bookmark.query.count() == 0


def test_progress_is_monotonic_and_ends_at_100(app, tmp_path, user_id, monkeypatch):
    seen = []
    original_update = ImportStatusStore.update

    def recording_update(self, job_id, **changes):
        updated = original_update(self, job_id, **changes)
        if updated is not None:
            seen.append((updated.status, updated.progress.percentage))
        return updated

    monkeypatch.setattr(ImportStatusStore, "update", recording_update)
    submission = _submit(app, tmp_path, user_id, json.dumps(_json_records(120)))

    percentages = [percentage for _status, percentage in seen]
    assert percentages == sorted(percentages)
    assert 40 in percentages and 70 in percentages
    assert seen[-1] == ("completed", 100)
    assert get_import_status(app, submission.job_id).result.imported == 120


def test_default_category_is_assigned(app, tmp_path, user_id):
    with app.app_context():
        db.session.add(Category(user_id=user_id, name="Inbox"))
        db.session.commit()
        category_id = Category.query.filter_by(name="Inbox").one().id

    content = json.dumps(_json_records(2))
    _submit(app, tmp_path, user_id, content, default_category="Inbox")
    with app.app_context():
        assert {row.category_id for row in Bookmark.query.all()} == {category_id}


def test_staged_and_temp_files_are_removed_after_completion(app, tmp_path, user_id):
    submission = _submit(app, tmp_path, user_id, json.dumps(_json_records(1)))

    storage_root = Path(app.config["IMPORT_STORAGE_DIR"])
    assert not list(storage_root.rglob("bookmarks.json"))
    assert not (Path(app.config["IMPORT_TEMP_DIR"]) / submission.job_id).exists()


def test_cleanup_failure_does_not_fail_the_job(app, tmp_path, user_id, monkeypatch):
    def broken_delete(self, key):
        raise StorageError("bucket unavailable")

    monkeypatch.setattr(LocalStorage, "delete", broken_delete)
    submission = _submit(app, tmp_path, user_id, json.dumps(_json_records(1)))
    assert get_import_status(app, submission.job_id).status == "completed"


def test_missing_staged_file_fails_the_job(app, user_id):
    content = json.dumps(_json_records(1))
    validation = validate_import(content, "json")
    store = get_status_store(app)
    store.create(ImportJobStatus(job_id="lost", user_id=user_id))
    payload = ImportJobPayload(
        job_id="lost",
        user_id=user_id,
        storage_key=f"imports/{user_id}/lost/bookmarks.json",
        options=ImportOptions(source=ImportSource.JSON),
        validation=validation,
    )

    assert _run_import_job(app, payload) is None

    status = store.get("lost")
    assert status.status == "failed"
    assert "not found" in status.error
    assert status.result is None
    assert [item.job_id for item in get_import_history(app, user_id)] == ["lost"]


def test_unparseable_staged_file_fails_with_progress_kept(app, tmp_path, user_id):
    upload = tmp_path / "broken.json"
    upload.write_text("{broken", encoding="utf-8")
    key = f"imports/{user_id}/broken/broken.json"
    LocalStorage(app.config["IMPORT_STORAGE_DIR"]).upload(key, upload)
    store = get_status_store(app)
    store.create(ImportJobStatus(job_id="broken", user_id=user_id))

    _run_import_job(
        app,
        ImportJobPayload(
            job_id="broken",
            user_id=user_id,
            storage_key=key,
            options=ImportOptions(source=ImportSource.JSON),
            validation=validate_import("[]", "json"),
        ),
    )

    status = store.get("broken")
    assert status.status == "failed"
    assert status.progress.percentage == 10
    assert LocalStorage(app.config["IMPORT_STORAGE_DIR"]).metadata(key) == {}


def test_invalid_file_is_never_submitted(app, tmp_path, user_id, monkeypatch):
    started = []
    monkeypatch.setattr(
        import_jobs, "start_import_job", lambda *args: started.append(args)
    )

    with pytest.raises(InvalidImportFile) as excinfo:
        _submit(app, tmp_path, user_id, "{not json")
    assert excinfo.value.validation.errors == ["Invalid JSON format"]
    assert started == []


def test_validate_only_submission_has_no_side_effects(app, tmp_path, user_id):
    content = json.dumps(_json_records(2))
    submission = _submit(app, tmp_path, user_id, content, validate=True)

    assert submission.job_id is None
    assert submission.validation.estimated_records == 2
    assert not Path(app.config["IMPORT_STORAGE_DIR"]).exists()
    with app.app_context():
        assert Bookmark.query.count() == 0


def test_staged_upload_carries_metadata(app, tmp_path, user_id, monkeypatch):
    monkeypatch.setattr(import_jobs, "start_import_job", lambda *args: None)
    submission = _submit(app, tmp_path, user_id, json.dumps(_json_records(1)))

    key = f"imports/{user_id}/{submission.job_id}/bookmarks.json"
    metadata = LocalStorage(app.config["IMPORT_STORAGE_DIR"]).metadata(key)
    assert metadata["jobId"] == submission.job_id
    assert metadata["source"] == "json"
    assert metadata["contentType"] == "application/json"

    status = get_import_status(app, submission.job_id)
    assert status.status == "pending"
    assert status.progress.total == 1


def test_firefox_import_end_to_end(app, tmp_path, user_id):
    html = """<!DOCTYPE NETSCAPE-Bookmark-file-1>
<DL><p>
  <DT><H3>Reading</H3>
  <DL><p>
    <DT><A HREF="https://example.com/article" ADD_DATE="1700000000">Article</A>
  </DL><p>
</DL><p>
"""
    submission = _submit(app, tmp_path, user_id, html, source="firefox")
    assert get_import_status(app, submission.job_id).result.imported == 1
    with app.app_context():
        bookmark = Bookmark.query.one()
        assert bookmark.content == "Article"
        assert bookmark.links == ["https://example.com/article"]
        assert bookmark.category_id is None


def test_invalid_utf8_bytes_are_replaced_not_dropped(app, tmp_path, user_id):
    path = tmp_path / "latin1.json"
    path.write_bytes(b'[{"content": "caf\xe9 menu", "authorUsername": "a"}]')
    submission = submit_import(
        app,
        user_id,
        path,
        "latin1.json",
        ImportOptions(source=ImportSource.JSON),
    )

    assert get_import_status(app, submission.job_id).result.imported == 1
    with app.app_context():
        assert Bookmark.query.one().content == "caf\ufffd menu"
