"""Tests for session asset directories."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from server.errors import MissingAssetError
from server.sessions import AssetStore


@pytest.fixture
def store(tmp_path: Path, transcoder) -> AssetStore:
    root = tmp_path / "temp"
    root.mkdir()
    return AssetStore(root, public_root=tmp_path, transcoder=transcoder)


def _write(folder: Path, *names: str) -> None:
    folder.mkdir(parents=True, exist_ok=True)
    for name in names:
        (folder / name).write_bytes(b"x")


def test_require_assets_reports_what_is_missing(store: AssetStore) -> None:
    with pytest.raises(MissingAssetError, match="Session has expired"):
        store.require_assets("abc")

    _write(store.root / "abc", "image.jpg")
    with pytest.raises(MissingAssetError, match="Audio file not found."):
        store.require_assets("abc")

    (store.root / "abc" / "image.jpg").unlink()
    _write(store.root / "abc", "audio_1.mp3")
    with pytest.raises(MissingAssetError, match="Image file not found."):
        store.require_assets("abc")


def test_require_assets_accepts_legacy_single_audio(store: AssetStore) -> None:
    _write(store.root / "abc", "audio.mp3", "image.jpg")
    assets = store.require_assets("abc")
    assert assets.audio_path.name == "audio.mp3"
    assert assets.image_path.name == "image.jpg"


def test_session_ids_cannot_escape_root(store: AssetStore) -> None:
    with pytest.raises(MissingAssetError):
        store.session_dir("../etc")


def test_summary_formats_total_duration(store: AssetStore, transcoder) -> None:
    _write(store.root / "abc", "audio_1.mp3", "audio_2.mp3", "image.jpg")
    transcoder.durations = {"audio_1.mp3": 40.2, "audio_2.mp3": 30.1}

    payload = store.summary("abc").to_payload()

    assert payload["audioCount"] == 2
    assert payload["totalDuration"] == "1:10"
    assert payload["imageUrl"] == "/temp/abc/image.jpg"


def test_resolve_overlay_under_public_root(store: AssetStore, tmp_path: Path) -> None:
    _write(store.root / "abc", "overlay_1.png")
    overlay = store.resolve_overlay(
        {"type": "image", "path": "/temp/abc/overlay_1.png", "x": 0.1, "y": 0.2, "w": 0.3, "h": 0.4}
    )
    assert overlay is not None
    assert overlay.path == (tmp_path / "temp" / "abc" / "overlay_1.png").resolve()
    assert store.resolve_overlay(None) is None

    with pytest.raises(MissingAssetError):
        store.resolve_overlay({"type": "image", "path": "/../../etc/passwd"})


def test_reap_abandoned_skips_recent_and_active(store: AssetStore) -> None:
    for name in ("old", "busy", "fresh"):
        _write(store.root / name, "audio_1.mp3")
    now = 10 * 24 * 3600.0
    os.utime(store.root / "old", (0, 0))
    os.utime(store.root / "busy", (0, 0))
    os.utime(store.root / "fresh", (now, now))

    removed = store.reap_abandoned(lambda sid: sid == "busy", max_age=3 * 24 * 3600, now=now)

    assert removed == ["old"]
    assert (store.root / "busy").exists()
    assert (store.root / "fresh").exists()
