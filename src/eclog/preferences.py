"""Small private key-value store kept as a JSON file.

Every write goes straight to disk so the next read sees it, even from a new
process. Reads never raise: a missing or broken file reads as empty.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# One lock per file, shared by every Preferences opened on it.
_locks: dict[Path, threading.Lock] = {}
_locks_guard = threading.Lock()


def _lock_for(path: Path) -> threading.Lock:
    key = path.resolve()
    with _locks_guard:
        lock = _locks.get(key)
        if lock is None:
            lock = _locks[key] = threading.Lock()
        return lock


class Preferences:
    """Typed get/put over one JSON file (one namespace)."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = _lock_for(self.path)

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Could not read preferences at %s: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring preferences at %s: not a JSON object", self.path)
            return {}
        return data

    def _save(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=self.path.parent,
            prefix=self.path.name + ".",
            suffix=".tmp",
            delete=False,
        ) as tmp:
            tmp.write(json.dumps(data, indent=4, ensure_ascii=False) + "\n")
        try:
            os.replace(tmp.name, self.path)
        except OSError:
            os.unlink(tmp.name)
            raise

    def all(self) -> dict[str, Any]:
        return self._load()

    def get_string(self, key: str, default: str | None = None) -> str | None:
        value = self._load().get(key)
        return value if isinstance(value, str) else default

    def get_int(self, key: str, default: int) -> int:
        value = self._load().get(key)
        if isinstance(value, bool) or not isinstance(value, int):
            return default
        return value

    def get_bool(self, key: str, default: bool) -> bool:
        value = self._load().get(key)
        return value if isinstance(value, bool) else default

    def contains(self, key: str) -> bool:
        return key in self._load()

    def put(self, key: str, value: str | int | bool) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._save(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if key in data:
                del data[key]
                self._save(data)

    def clear(self) -> None:
        with self._lock:
            self._save({})
