"""Tests for best-effort removal of session temporaries."""

from pathlib import Path

from server.helpers.cleanup import remove_paths


def test_remove_paths_handles_files_dirs_and_missing(tmp_path: Path) -> None:
    session = tmp_path / "session"
    session.mkdir()
    (session / "audio_1.mp3").write_bytes(b"x")
    video = tmp_path / "out.mp4"
    video.write_bytes(b"v")

    remove_paths([session, video, tmp_path / "missing.mp4", None, video])

    assert not session.exists()
    assert not video.exists()
