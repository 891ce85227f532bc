"""Thin wrapper around the ffmpeg/ffprobe command line tools."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Optional, Sequence

from . import config
from .errors import AssemblyError

logger = logging.getLogger(__name__)


class FfmpegTranscoder:
    """Run ffmpeg invocations and probe media durations.

    Every invocation is non-interactive and overwrites its output. A non-zero
    exit status is raised as :class:`AssemblyError` carrying the tail of the
    tool's stderr.
    """

    def __init__(
        self,
        ffmpeg: str = config.FFMPEG_PATH,
        ffprobe: str = config.FFPROBE_PATH,
        *,
        timeout: float | None = config.TRANSCODE_TIMEOUT_SECONDS,
    ) -> None:
        self.ffmpeg = ffmpeg
        self.ffprobe = ffprobe
        self.timeout = timeout

    def run(self, args: Sequence[str], *, step: str = "ffmpeg") -> None:
        cmd = [self.ffmpeg, "-y", "-hide_banner", "-loglevel", "error", *args]
        logger.debug("%s: %s", step, " ".join(cmd))
        try:
            subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                check=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as exc:
            raise AssemblyError(f"{step} failed: {self.ffmpeg} is not installed") from exc
        except subprocess.TimeoutExpired as exc:
            raise AssemblyError(f"{step} timed out after {self.timeout:.0f}s") from exc
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or b"").decode(errors="ignore").strip()
            raise AssemblyError(f"{step} failed: {stderr[-500:] or exc}") from exc

    def probe_duration(self, path: str | Path) -> Optional[float]:
        """Return the duration of ``path`` in seconds, or ``None`` if unreadable."""

        try:
            result = subprocess.run(
                [
                    self.ffprobe,
                    "-v",
                    "error",
                    "-show_entries",
                    "format=duration",
                    "-of",
                    "default=noprint_wrappers=1:nokey=1",
                    str(path),
                ],
                check=True,
                text=True,
                capture_output=True,
                timeout=self.timeout,
            )
        except (FileNotFoundError, subprocess.CalledProcessError, subprocess.TimeoutExpired):
            return None

        output = (result.stdout or "").strip()
        if not output:
            return None

        try:
            return float(output)
        except ValueError:
            return None


__all__ = ["FfmpegTranscoder"]
