"""Turn a session's audio and still image into a finished video file."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from common.backoff import RetryPolicy

from . import config
from .helpers.cleanup import remove_paths
from .helpers.logging import run_step
from .steps.audio import consolidate_audio, probe_audio_duration
from .steps.loop import Overlay, build_base_loop
from .steps.mux import mux_loop_with_audio
from .transcoder import FfmpegTranscoder

logger = logging.getLogger(__name__)


def base_loop_duration(total_duration: float, cap: int = config.MAX_BASE_LOOP_SECONDS) -> int:
    """Return the length of the base loop for ``total_duration`` seconds of audio."""

    if total_duration < cap:
        return math.ceil(total_duration) + 1
    return cap


def loop_count(total_duration: float, base_duration: int) -> int:
    """Return how many times the base loop is played; one spare repetition is included."""

    return math.ceil(total_duration / base_duration) + 1


@dataclass(frozen=True)
class LoopPlan:
    total_duration: float
    base_duration: int
    loop_count: int

    @classmethod
    def for_duration(cls, total_duration: float) -> "LoopPlan":
        base = base_loop_duration(total_duration)
        return cls(total_duration, base, loop_count(total_duration, base))

    @property
    def video_duration(self) -> int:
        return self.base_duration * self.loop_count


class VideoAssembler:
    """Run the audio, base loop and mux steps for one session."""

    def __init__(
        self,
        transcoder: Optional[FfmpegTranscoder] = None,
        *,
        mux_policy: RetryPolicy = config.MUX_RETRY,
        sleep: Callable[[float], None] = time.sleep,
        free_plan: str = config.FREE_PLAN,
    ) -> None:
        self.transcoder = transcoder or FfmpegTranscoder()
        self.mux_policy = mux_policy
        self.sleep = sleep
        self.free_plan = free_plan

    def assemble(
        self,
        session_dir: Path,
        audio_hint: Optional[Path],
        image_path: Path,
        *,
        overlay: Optional[Overlay] = None,
        plan: str = config.FREE_PLAN,
        output_path: Optional[Path] = None,
    ) -> Path:
        """Return the path of the finished video for ``session_dir``.

        Raises :class:`~server.errors.AssemblyError` when a transcode step
        fails and :class:`~server.errors.EmptyAudioError` for unusable audio.
        """

        session_dir = Path(session_dir)
        output = Path(output_path) if output_path else session_dir / f"{session_dir.name}.mp4"
        loop_path = output.with_name(f"loop_{session_dir.name}.mp4")
        watermark = (plan or self.free_plan) == self.free_plan

        audio = run_step(
            "Consolidating audio",
            consolidate_audio,
            session_dir,
            self.transcoder,
            fallback=audio_hint,
        )
        total = run_step("Probing audio duration", probe_audio_duration, audio, self.transcoder)
        loop_plan = LoopPlan.for_duration(total)
        logger.info(
            "Audio %.2fs: base loop %ds played %d times (watermark=%s, overlay=%s)",
            total,
            loop_plan.base_duration,
            loop_plan.loop_count,
            watermark,
            overlay.type if overlay else None,
        )

        loop_path.parent.mkdir(parents=True, exist_ok=True)
        run_step(
            f"Building {loop_plan.base_duration}s base loop",
            build_base_loop,
            self.transcoder,
            image_path,
            loop_path,
            loop_plan.base_duration,
            overlay=overlay,
            watermark=watermark,
        )
        run_step(
            f"Muxing base loop x{loop_plan.loop_count} with audio",
            mux_loop_with_audio,
            self.transcoder,
            loop_path,
            audio,
            output,
            loop_plan.loop_count,
            policy=self.mux_policy,
            sleep=self.sleep,
        )
        remove_paths([loop_path])
        return output


__all__ = ["LoopPlan", "VideoAssembler", "base_loop_duration", "loop_count"]
