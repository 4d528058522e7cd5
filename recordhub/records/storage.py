"""Named-blob persistence for the record store."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Protocol


class BlobStorage(Protocol):
    """Opaque key-value store holding one JSON-serializable blob per key."""

    def load(self, key: str) -> dict[str, Any] | None: ...

    def save(self, key: str, blob: dict[str, Any]) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryStorage:
    """Storage that lives only as long as the process."""

    def __init__(self) -> None:
        self._blobs: dict[str, str] = {}

    def load(self, key: str) -> dict[str, Any] | None:
        raw = self._blobs.get(key)
        return json.loads(raw) if raw is not None else None

    def save(self, key: str, blob: dict[str, Any]) -> None:
        self._blobs[key] = json.dumps(blob)

    def delete(self, key: str) -> None:
        self._blobs.pop(key, None)


class JsonFileStorage:
    """Storage backed by one ``<key>.json`` file per key under ``data_dir``.

    Writes go to a temporary file first and are moved into place, so a crash
    mid-write never leaves a truncated blob behind.
    """

    def __init__(self, data_dir: Path) -> None:
        self._data_dir = data_dir
        self._data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def path_for(self, key: str) -> Path:
        return self._data_dir / f"{key}.json"

    def load(self, key: str) -> dict[str, Any] | None:
        path = self.path_for(key)
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    def save(self, key: str, blob: dict[str, Any]) -> None:
        path = self.path_for(key)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(blob, indent=2), encoding="utf-8")
        os.replace(tmp_path, path)

    def delete(self, key: str) -> None:
        path = self.path_for(key)
        if path.exists():
            path.unlink()
