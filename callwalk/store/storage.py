"""Key/value storage backends used by the write queue."""

from __future__ import annotations

import json
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

from callwalk.errors import StorageError, StorageQuotaError


class Storage:
    """Interface for persisting JSON-serializable values by key."""

    def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def keys(self) -> List[str]:
        raise NotImplementedError


def _serialize(key: str, value: Any, quota_bytes: Optional[int]) -> str:
    try:
        payload = json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError) as exc:
        raise StorageError(f"Cannot serialize {key}: {exc}") from exc
    if quota_bytes is not None:
        size = len(payload.encode("utf-8"))
        if size > quota_bytes:
            raise StorageQuotaError(key, size, quota_bytes)
    return payload


class MemoryStorage(Storage):
    """In-process storage. Values are stored serialized so reads never alias writes."""

    def __init__(self, quota_bytes: Optional[int] = None):
        self.quota_bytes = quota_bytes
        self._data: Dict[str, str] = {}
        self.write_log: List[str] = []

    def get(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = _serialize(key, value, self.quota_bytes)
        self.write_log.append(key)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return sorted(self._data)


class JsonFileStorage(Storage):
    """One ``<key>.json`` file per key under ``root``."""

    _safe_key = re.compile(r"^[A-Za-z0-9_.-]+$")

    def __init__(self, root: Path, quota_bytes: Optional[int] = None):
        self.root = Path(root)
        self.quota_bytes = quota_bytes

    def _path(self, key: str) -> Path:
        if not self._safe_key.match(key):
            raise StorageError(f"Invalid storage key: {key!r}")
        return self.root / f"{key}.json"

    def get(self, key: str) -> Optional[Any]:
        path = self._path(key)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"Cannot read {key}: {exc}") from exc
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StorageError(f"Corrupt value for {key}: {exc}") from exc

    def set(self, key: str, value: Any) -> None:
        path = self._path(key)
        payload = _serialize(key, value, self.quota_bytes)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=f".{key}.", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_name, path)
        except OSError as exc:
            raise StorageError(f"Cannot write {key}: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StorageError(f"Cannot delete {key}: {exc}") from exc

    def keys(self) -> List[str]:
        if not self.root.is_dir():
            return []
        return sorted(path.stem for path in self.root.glob("*.json"))
