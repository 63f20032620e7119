from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

BOOK_NAME_KEY = "book:name"
BOOK_SIZE_KEY = "book:size"
SCROLL_POSITION_KEY = "book:scroll"
_SHELF_FILENAME = "current.epub"


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class MemoryStore:
    """Dict-backed store; used for tests and throwaway sessions."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class JsonFileStore:
    """
    String store persisted as a single JSON object.

    The file is loaded once and rewritten (via a temporary file and an atomic
    rename) after every mutation. A missing or unreadable file starts empty.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._data = self._load()

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return {}
        if not isinstance(payload, dict):
            return {}
        return {str(key): value for key, value in payload.items() if isinstance(value, str)}

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".cache-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(self._data, handle, ensure_ascii=False, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value
        self._flush()

    def delete(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._flush()

    def keys(self) -> list[str]:
        return list(self._data)


@dataclass
class BookRecord:
    name: str
    size: int


def save_book_record(store: KeyValueStore, name: str, size: int) -> None:
    store.set(BOOK_NAME_KEY, name)
    store.set(BOOK_SIZE_KEY, str(size))


def load_book_record(store: KeyValueStore) -> BookRecord | None:
    name = store.get(BOOK_NAME_KEY)
    if not name:
        return None
    size_raw = store.get(BOOK_SIZE_KEY) or "0"
    size = int(size_raw) if size_raw.isdigit() else 0
    return BookRecord(name=name, size=size)


def save_scroll_position(store: KeyValueStore, offset: int) -> bool:
    if offset <= 0:
        return False
    store.set(SCROLL_POSITION_KEY, str(int(offset)))
    return True


def get_scroll_position(store: KeyValueStore) -> int:
    raw = store.get(SCROLL_POSITION_KEY)
    if raw is None:
        return 0
    try:
        return int(raw)
    except ValueError:
        return 0


class BookShelf:
    """Keeps a copy of the last opened archive so it can be reopened later."""

    def __init__(self, state_dir: Path) -> None:
        self.state_dir = Path(state_dir)

    @property
    def path(self) -> Path:
        return self.state_dir / _SHELF_FILENAME

    def save(self, data: bytes) -> Path:
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self.path.write_bytes(data)
        return self.path

    def load(self) -> bytes | None:
        if not self.path.exists():
            return None
        return self.path.read_bytes()

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


__all__ = [
    "BookRecord",
    "BookShelf",
    "JsonFileStore",
    "KeyValueStore",
    "MemoryStore",
    "get_scroll_position",
    "load_book_record",
    "save_book_record",
    "save_scroll_position",
]
