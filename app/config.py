import os
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "default-secret-key")
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", f"sqlite:///{BASE_DIR / 'bookmarks.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SCHEDULER_ENABLED = os.environ.get("SCHEDULER_ENABLED", "1") == "1"
    MAX_CONTENT_LENGTH = int(
        os.environ.get("MAX_CONTENT_LENGTH", str(50 * 1024 * 1024))
    )
    USER_ID_HEADER = os.environ.get("USER_ID_HEADER", "X-User-Id")

    IMPORT_STORAGE_DIR = os.environ.get(
        "IMPORT_STORAGE_DIR", str(BASE_DIR / "storage")
    )
    IMPORT_TEMP_DIR = os.environ.get(
        "IMPORT_TEMP_DIR", str(BASE_DIR / "temp" / "imports")
    )
    IMPORT_UPLOAD_DIR = os.environ.get(
        "IMPORT_UPLOAD_DIR", str(BASE_DIR / "temp" / "uploads")
    )
    IMPORT_BATCH_SIZE = int(os.environ.get("IMPORT_BATCH_SIZE", "50"))
    IMPORT_WARNING_LIMIT = int(os.environ.get("IMPORT_WARNING_LIMIT", "50"))
    IMPORT_STATUS_TTL_SECONDS = int(os.environ.get("IMPORT_STATUS_TTL_SECONDS", "3600"))
    IMPORT_HISTORY_TTL_SECONDS = int(
        os.environ.get("IMPORT_HISTORY_TTL_SECONDS", "86400")
    )
    IMPORT_HISTORY_LIMIT = int(os.environ.get("IMPORT_HISTORY_LIMIT", "20"))
    IMPORT_RUN_INLINE = os.environ.get("IMPORT_RUN_INLINE", "0") == "1"
    STATUS_PURGE_INTERVAL_MINUTES = int(
        os.environ.get("STATUS_PURGE_INTERVAL_MINUTES", "10")
    )


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SCHEDULER_ENABLED = False
    IMPORT_RUN_INLINE = True
