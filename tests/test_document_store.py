"""Tests for whole-document JSON persistence."""

import json
from pathlib import Path

from cryptography.fernet import Fernet

from common.document_store import JsonDocumentStore, MemoryDocumentStore


def test_missing_file_loads_empty(tmp_path: Path) -> None:
    assert JsonDocumentStore(tmp_path / "nope.json").load() == {}


def test_save_replaces_document_and_leaves_no_temp_files(tmp_path: Path) -> None:
    path = tmp_path / "data" / "usage.json"
    store = JsonDocumentStore(path)

    store.save({"a": 1})
    store.save({"b": 2})

    assert json.loads(path.read_text()) == {"b": 2}
    assert sorted(p.name for p in path.parent.iterdir()) == ["usage.json"]


def test_corrupt_document_loads_empty(tmp_path: Path) -> None:
    path = tmp_path / "usage.json"
    path.write_text("{not json")
    assert JsonDocumentStore(path).load() == {}


def test_encrypted_round_trip_is_not_plaintext(tmp_path: Path) -> None:
    key = Fernet.generate_key().decode()
    path = tmp_path / "usage.json"
    store = JsonDocumentStore(path, fernet_key=key)

    store.save({"secret-key": {"uploadsThisMonth": 3}})

    assert b"secret-key" not in path.read_bytes()
    assert JsonDocumentStore(path, fernet_key=key).load() == {"secret-key": {"uploadsThisMonth": 3}}
    assert JsonDocumentStore(path, fernet_key=Fernet.generate_key().decode()).load() == {}


def test_memory_store_isolates_callers() -> None:
    store = MemoryDocumentStore({"x": {"n": 1}})
    loaded = store.load()
    loaded["x"]["n"] = 99
    assert store.load() == {"x": {"n": 1}}
    store.save(loaded)
    assert store.saves == 1
