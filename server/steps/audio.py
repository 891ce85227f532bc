"""Audio consolidation and duration probing for a session."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Optional

from common.file_utils import MERGED_AUDIO_PREFIX, list_audio_parts

from ..errors import EmptyAudioError
from ..transcoder import FfmpegTranscoder

logger = logging.getLogger(__name__)

CONCAT_LIST_NAME = "concat_list.txt"


def _concat_line(path: Path) -> str:
    escaped = str(path.resolve()).replace("'", "'\\''")
    return f"file '{escaped}'"


def write_concat_list(parts: list[Path], list_path: Path) -> Path:
    """Write an ffmpeg concat demuxer list for ``parts``."""

    list_path.write_text("\n".join(_concat_line(p) for p in parts), encoding="utf-8")
    return list_path


def consolidate_audio(
    session_dir: Path,
    transcoder: FfmpegTranscoder,
    *,
    fallback: Optional[Path] = None,
) -> Path:
    """Return a single audio track for ``session_dir``.

    Parts are ordered by name, which embeds their arrival timestamp. More than
    one part is joined losslessly with the concat demuxer; a single part is
    returned unchanged. ``fallback`` covers sessions holding only a legacy
    ``audio.<ext>`` file.
    """

    parts = list_audio_parts(session_dir)
    if not parts:
        if fallback is not None and fallback.exists():
            return fallback
        raise EmptyAudioError("Audio file not found.")
    if len(parts) == 1:
        return parts[0]

    logger.info("Concatenating %d audio parts in %s", len(parts), session_dir)
    list_path = write_concat_list(parts, session_dir / CONCAT_LIST_NAME)
    extension = parts[0].suffix or ".mp3"
    output = session_dir / f"{MERGED_AUDIO_PREFIX}{int(time.time() * 1000)}{extension}"
    transcoder.run(
        ["-f", "concat", "-safe", "0", "-i", str(list_path), "-c", "copy", str(output)],
        step="audio concat",
    )
    return output


def probe_audio_duration(audio_path: Path, transcoder: FfmpegTranscoder) -> float:
    """Return the duration of ``audio_path`` or raise :class:`EmptyAudioError`."""

    try:
        size = audio_path.stat().st_size
    except OSError as exc:
        raise EmptyAudioError(f"Audio file error: {exc}") from exc
    if size == 0:
        raise EmptyAudioError("Audio file error: Audio file is empty")

    duration = transcoder.probe_duration(audio_path)
    if not duration or duration <= 0:
        raise EmptyAudioError("Could not determine audio duration or audio is empty.")
    return duration


__all__ = ["CONCAT_LIST_NAME", "consolidate_audio", "probe_audio_duration", "write_concat_list"]
