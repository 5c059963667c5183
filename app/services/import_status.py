from __future__ import annotations

import threading
import time
from dataclasses import replace
from typing import Callable

from flask import Flask, current_app

from app.services.import_types import JOB_STATUS_ORDER, ImportJobStatus

EXTENSION_KEY = "import_status"


class InvalidStatusTransition(ValueError):
    pass


def _can_transition(current: str, new: str) -> bool:
    if current == new:
        return True
    return JOB_STATUS_ORDER[new] > JOB_STATUS_ORDER[current]


class ImportStatusStore:
    """Expiring, thread-safe record of import job lifecycles.

    Holds two keyed views: ``status:{job_id}`` for a single job, refreshed on
    every write, and ``history:{user_id}`` with the most recent finished jobs
    of a user, newest first. Entries vanish once their TTL lapses, so callers
    must treat a missing job as "unknown or expired".
    """

    def __init__(
        self,
        status_ttl: int = 3600,
        history_ttl: int = 86400,
        history_limit: int = 20,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.status_ttl = status_ttl
        self.history_ttl = history_ttl
        self.history_limit = history_limit
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[float, object]] = {}

    def _read(self, key: str):
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return None
        return value

    def _write(self, key: str, value, ttl: int) -> None:
        self._entries[key] = (self._clock() + ttl, value)

    def create(self, status: ImportJobStatus) -> ImportJobStatus:
        with self._lock:
            self._write(f"status:{status.job_id}", status, self.status_ttl)
        return status

    def get(self, job_id: str) -> ImportJobStatus | None:
        with self._lock:
            return self._read(f"status:{job_id}")

    def update(self, job_id: str, **changes) -> ImportJobStatus | None:
        key = f"status:{job_id}"
        with self._lock:
            current = self._read(key)
            if current is None:
                return None

            new_status = changes.get("status", current.status)
            if not _can_transition(current.status, new_status):
                raise InvalidStatusTransition(
                    f"job {job_id} cannot move from {current.status} to {new_status}"
                )

            progress = changes.get("progress")
            floor = current.progress.percentage
            if progress is not None and progress.percentage < floor:
                changes["progress"] = replace(progress, percentage=floor)

            updated = replace(current, **changes)
            self._write(key, updated, self.status_ttl)
            return updated

    def append_history(self, user_id: int, job_id: str) -> list[ImportJobStatus]:
        history_key = f"history:{user_id}"
        with self._lock:
            status = self._read(f"status:{job_id}")
            history = list(self._read(history_key) or [])
            if status is None:
                return history
            history = [status] + [item for item in history if item.job_id != job_id]
            history = history[: self.history_limit]
            self._write(history_key, history, self.history_ttl)
            return history

    def history(self, user_id: int, limit: int = 10) -> list[ImportJobStatus]:
        with self._lock:
            history = list(self._read(f"history:{user_id}") or [])
        history.sort(key=lambda item: item.created_at, reverse=True)
        return history[: max(0, limit)]

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [
                key
                for key, (expires_at, _value) in self._entries.items()
                if expires_at <= now
            ]
            for key in expired:
                del self._entries[key]
        return len(expired)


def init_status_store(app: Flask) -> ImportStatusStore:
    store = ImportStatusStore(
        status_ttl=int(app.config["IMPORT_STATUS_TTL_SECONDS"]),
        history_ttl=int(app.config["IMPORT_HISTORY_TTL_SECONDS"]),
        history_limit=int(app.config["IMPORT_HISTORY_LIMIT"]),
    )
    app.extensions[EXTENSION_KEY] = store
    return store


def get_status_store(app: Flask | None = None) -> ImportStatusStore:
    return (app or current_app).extensions[EXTENSION_KEY]
