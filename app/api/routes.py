from __future__ import annotations

import uuid
from pathlib import Path

from flask import current_app, g, jsonify, request
from werkzeug.utils import secure_filename

from app.api import api_bp
from app.services.import_jobs import (
    InvalidImportFile,
    get_import_history,
    get_import_status,
    submit_import,
)
from app.services.import_types import ImportOptions, ImportSource
from app.services.import_validation import validate_import
from app.services.security import api_user_required

ALLOWED_IMPORT_EXTENSIONS = {".json", ".csv", ".html", ".htm"}


def _uploaded_file():
    upload = request.files.get("file")
    if not upload or not upload.filename:
        return None, (jsonify({"error": "file field is required"}), 400)

    filename = secure_filename(upload.filename) or "import-file"
    if Path(filename).suffix.lower() not in ALLOWED_IMPORT_EXTENSIONS:
        return None, (jsonify({"error": "unsupported file type"}), 400)
    return upload, None


def _save_upload(upload) -> tuple[Path, str]:
    upload_dir = Path(current_app.config["IMPORT_UPLOAD_DIR"])
    upload_dir.mkdir(parents=True, exist_ok=True)
    filename = secure_filename(upload.filename) or "import-file"
    path = upload_dir / f"{uuid.uuid4().hex}-{filename}"
    upload.save(path)
    return path, filename


@api_bp.route("/import/validate", methods=["POST"])
@api_user_required
def validate_import_api():
    upload, error = _uploaded_file()
    if error:
        return error
    try:
        source = ImportSource.parse(request.form.get("source"))
    except ValueError:
        return jsonify({"error": "invalid source"}), 400

    content = upload.read().decode("utf-8", errors="replace")
    return jsonify(validate_import(content, source).as_dict())


@api_bp.route("/import", methods=["POST"])
@api_user_required
def start_import_api():
    user = g.api_user
    upload, error = _uploaded_file()
    if error:
        return error
    try:
        options = ImportOptions.from_form(request.form)
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400

    path, filename = _save_upload(upload)
    try:
        submission = submit_import(
            current_app._get_current_object(),
            user.id,
            path,
            filename,
            options,
        )
    except InvalidImportFile as exc:
        return (
            jsonify({"error": str(exc), "validation": exc.validation.as_dict()}),
            400,
        )
    finally:
        path.unlink(missing_ok=True)

    if submission.job_id is None:
        return jsonify(
            {
                "jobId": None,
                "options": options.as_dict(),
                "validation": submission.validation.as_dict(),
            }
        )
    return jsonify({"jobId": submission.job_id, "options": options.as_dict()}), 202


@api_bp.route("/import/status/<job_id>", methods=["GET"])
@api_user_required
def import_status_api(job_id: str):
    user = g.api_user
    status = get_import_status(current_app, job_id)
    if status is None or status.user_id != user.id:
        return jsonify({"error": "job not found"}), 404
    return jsonify(status.as_dict())


@api_bp.route("/import/history", methods=["GET"])
@api_user_required
def import_history_api():
    user = g.api_user
    limit = request.args.get("limit", default=10, type=int)
    limit = max(1, min(limit or 10, 100))
    history = get_import_history(current_app, user.id, limit=limit)
    return jsonify({"history": [item.as_dict() for item in history]})
