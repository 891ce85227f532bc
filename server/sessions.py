"""Session-scoped asset directories."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable, List, Mapping, Optional

from common.file_utils import IMAGE_NAME, list_session_audio

from . import config
from .errors import MissingAssetError
from .helpers.cleanup import remove_paths
from .helpers.formatting import format_duration
from .steps.loop import Overlay
from .transcoder import FfmpegTranscoder

logger = logging.getLogger(__name__)

SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


@dataclass(frozen=True)
class SessionAssets:
    session_dir: Path
    audio_path: Path
    image_path: Path


@dataclass(frozen=True)
class SessionSummary:
    audio_count: int
    total_duration: Optional[str]
    image: bool
    image_url: Optional[str]

    def to_payload(self) -> dict:
        return {
            "success": True,
            "audio": self.audio_count > 0,
            "audioCount": self.audio_count,
            "totalDuration": self.total_duration,
            "image": self.image,
            "imageUrl": self.image_url,
        }


class AssetStore:
    """Directory-per-session store for audio parts, the image and overlays."""

    def __init__(
        self,
        root: Path = config.TEMP_DIR,
        *,
        public_root: Path = config.PUBLIC_ROOT,
        transcoder: Optional[FfmpegTranscoder] = None,
    ) -> None:
        self.root = Path(root)
        self.public_root = Path(public_root)
        self.transcoder = transcoder or FfmpegTranscoder()

    def session_dir(self, session_id: str) -> Path:
        if not SESSION_ID_RE.match(session_id or ""):
            raise MissingAssetError("Session ID is invalid.")
        return self.root / session_id

    def require_assets(self, session_id: str) -> SessionAssets:
        """Return the session's assets or raise :class:`MissingAssetError`."""

        folder = self.session_dir(session_id)
        if not folder.is_dir():
            raise MissingAssetError("Session has expired or files were not uploaded.")
        audio = list_session_audio(folder)
        if not audio:
            raise MissingAssetError("Audio file not found.")
        image = folder / IMAGE_NAME
        if not image.is_file():
            raise MissingAssetError("Image file not found.")
        return SessionAssets(folder, audio[0], image)

    def resolve_overlay(self, data: Optional[Mapping[str, Any]]) -> Optional[Overlay]:
        """Parse a client overlay descriptor and resolve its path on disk.

        Paths are given as served to the client (``/temp/<session>/overlay_x.png``)
        and must stay under the public root.
        """

        if not data or not data.get("path"):
            return None
        overlay = Overlay.from_dict(data)
        relative = str(overlay.path).lstrip("/")
        resolved = (self.public_root / relative).resolve()
        if self.public_root.resolve() not in resolved.parents:
            raise MissingAssetError("Overlay file not found.")
        if not resolved.is_file():
            raise MissingAssetError("Overlay file not found.")
        return replace(overlay, path=resolved)

    def summary(self, session_id: str) -> SessionSummary:
        folder = self.session_dir(session_id)
        audio: List[Path] = list_session_audio(folder)
        image = (folder / IMAGE_NAME).is_file()

        total_duration = None
        if audio:
            total = 0.0
            for part in audio:
                duration = self.transcoder.probe_duration(part)
                if duration is None:
                    logger.warning("Failed to get duration for %s", part.name)
                    continue
                total += duration
            total_duration = format_duration(round(total))

        return SessionSummary(
            audio_count=len(audio),
            total_duration=total_duration,
            image=image,
            image_url=f"/temp/{session_id}/{IMAGE_NAME}" if image else None,
        )

    def reap_abandoned(
        self,
        is_active: Callable[[str], bool],
        *,
        max_age: float = config.ABANDONED_SESSION_MAX_AGE_SECONDS,
        now: Optional[float] = None,
    ) -> List[str]:
        """Delete session directories older than ``max_age`` with no live job.

        Returns the removed session ids.
        """

        if not self.root.is_dir():
            return []
        cutoff = (now if now is not None else time.time()) - max_age
        removed: List[str] = []
        for folder in sorted(self.root.iterdir()):
            try:
                if not folder.is_dir() or folder.stat().st_mtime >= cutoff:
                    continue
            except OSError as exc:
                logger.warning("Error inspecting session folder %s: %s", folder, exc)
                continue
            if is_active(folder.name):
                continue
            logger.info("Deleting abandoned session folder: %s", folder)
            remove_paths([folder])
            removed.append(folder.name)
        return removed


__all__ = ["AssetStore", "SESSION_ID_RE", "SessionAssets", "SessionSummary"]
