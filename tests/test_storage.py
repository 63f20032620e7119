from __future__ import annotations

import json
from pathlib import Path

from glossread.storage import (
    BookShelf,
    JsonFileStore,
    MemoryStore,
    get_scroll_position,
    load_book_record,
    save_book_record,
    save_scroll_position,
)


def test_json_file_store_persists(tmp_path: Path) -> None:
    path = tmp_path / "state" / "cache.json"
    store = JsonFileStore(path)
    store.set("definition:tide", '{"definition": "Sea level."}')
    store.set("définition:ébène", "ü")
    assert json.loads(path.read_text(encoding="utf-8"))["definition:tide"] == '{"definition": "Sea level."}'

    reopened = JsonFileStore(path)
    assert reopened.get("définition:ébène") == "ü"
    reopened.delete("definition:tide")
    assert JsonFileStore(path).get("definition:tide") is None
    assert not list(path.parent.glob(".cache-*"))


def test_json_file_store_tolerates_corrupt_file(tmp_path: Path) -> None:
    path = tmp_path / "cache.json"
    path.write_text("{not json", encoding="utf-8")
    store = JsonFileStore(path)
    assert store.keys() == []
    store.set("a", "b")
    assert JsonFileStore(path).get("a") == "b"


def test_book_record_round_trip() -> None:
    store = MemoryStore()
    assert load_book_record(store) is None
    save_book_record(store, "moby.epub", 12345)
    record = load_book_record(store)
    assert record is not None
    assert (record.name, record.size) == ("moby.epub", 12345)


def test_scroll_position_only_saved_when_positive() -> None:
    store = MemoryStore()
    assert get_scroll_position(store) == 0
    assert not save_scroll_position(store, 0)
    assert store.keys() == []
    assert save_scroll_position(store, 840)
    assert not save_scroll_position(store, 0)
    assert get_scroll_position(store) == 840


def test_bookshelf(tmp_path: Path) -> None:
    shelf = BookShelf(tmp_path / "state")
    assert shelf.load() is None
    shelf.save(b"PK-data")
    assert shelf.load() == b"PK-data"
    shelf.clear()
    assert shelf.load() is None
    shelf.clear()
