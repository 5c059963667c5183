from __future__ import annotations

import json
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from flask import Flask, current_app

_METADATA_SUFFIX = ".meta.json"


class StorageError(Exception):
    pass


@dataclass
class StoredFile:
    key: str
    size: int
    metadata: dict = field(default_factory=dict)


class LocalStorage:
    """Filesystem-backed object storage for staged import files."""

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if path == self.root or self.root not in path.parents:
            raise StorageError(f"invalid storage key: {key}")
        return path

    def upload(
        self, key: str, local_path: str | Path, metadata: dict | None = None
    ) -> StoredFile:
        target = self._path(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(local_path, target)
        meta = dict(metadata or {})
        target.with_name(target.name + _METADATA_SUFFIX).write_text(
            json.dumps(meta), encoding="utf-8"
        )
        return StoredFile(key=key, size=target.stat().st_size, metadata=meta)

    def download(self, key: str, dest_path: str | Path) -> None:
        source = self._path(key)
        if not source.is_file():
            raise StorageError(f"storage object not found: {key}")
        Path(dest_path).parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, dest_path)

    def delete(self, key: str) -> None:
        target = self._path(key)
        if not target.is_file():
            raise StorageError(f"storage object not found: {key}")
        target.unlink()
        target.with_name(target.name + _METADATA_SUFFIX).unlink(missing_ok=True)

    def metadata(self, key: str) -> dict:
        target = self._path(key)
        meta_path = target.with_name(target.name + _METADATA_SUFFIX)
        if not meta_path.is_file():
            raise StorageError(f"storage object not found: {key}")
        return json.loads(meta_path.read_text(encoding="utf-8"))


def get_storage(app: Flask | None = None) -> LocalStorage:
    app = app or current_app
    return LocalStorage(app.config["IMPORT_STORAGE_DIR"])
