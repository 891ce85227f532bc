"""Naming conventions for files inside a session directory."""

from __future__ import annotations

import re
from pathlib import Path
from typing import List


# ``audio_<millis>...`` parts sort in arrival order; merged tracks are excluded.
AUDIO_PART_RE = re.compile(r"^audio_\d+.*\.(opus|mp3|m4a|wav|webm)$", re.IGNORECASE)
# Any audio the session holds, including a legacy single ``audio.<ext>`` file.
ANY_AUDIO_RE = re.compile(r"^(audio_|audio\.).*\.(opus|mp3|m4a|wav|webm)$", re.IGNORECASE)

IMAGE_NAME = "image.jpg"
MERGED_AUDIO_PREFIX = "audio_merged_"


def list_audio_parts(folder: Path) -> List[Path]:
    """Return the ordered audio parts in ``folder`` (merged tracks excluded)."""

    if not folder.is_dir():
        return []
    names = sorted(p.name for p in folder.iterdir() if p.is_file() and AUDIO_PART_RE.match(p.name))
    return [folder / name for name in names]


def list_session_audio(folder: Path) -> List[Path]:
    """Return every audio file in ``folder`` that counts toward the session."""

    if not folder.is_dir():
        return []
    return sorted(
        p for p in folder.iterdir() if p.is_file() and ANY_AUDIO_RE.match(p.name)
    )


__all__ = [
    "ANY_AUDIO_RE",
    "AUDIO_PART_RE",
    "IMAGE_NAME",
    "MERGED_AUDIO_PREFIX",
    "list_audio_parts",
    "list_session_audio",
]
