"""Final mux: repeat the base loop against the consolidated audio."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, List

from common.backoff import RetryPolicy, retry

from .. import config
from ..errors import AssemblyError
from ..transcoder import FfmpegTranscoder

logger = logging.getLogger(__name__)


def mux_args(loop_path: Path, audio_path: Path, output_path: Path, loop_count: int) -> List[str]:
    """Return ffmpeg arguments playing ``loop_path`` ``loop_count`` times under the audio.

    ``-stream_loop`` counts extra repetitions, so the loop is repeated
    ``loop_count - 1`` times. Both streams are copied and cut at the shorter one.
    """

    return [
        "-stream_loop", str(max(0, loop_count - 1)),
        "-i", str(loop_path),
        "-i", str(audio_path),
        "-c", "copy",
        "-map", "0:v",
        "-map", "1:a",
        "-shortest",
        "-movflags", "+faststart",
        str(output_path),
    ]


def mux_loop_with_audio(
    transcoder: FfmpegTranscoder,
    loop_path: Path,
    audio_path: Path,
    output_path: Path,
    loop_count: int,
    *,
    policy: RetryPolicy = config.MUX_RETRY,
    sleep: Callable[[float], None] = time.sleep,
) -> Path:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    args = mux_args(loop_path, audio_path, output_path, loop_count)

    def _log_attempt(attempt: int, exc: BaseException) -> None:
        logger.warning("Mux attempt %d/%d failed: %s", attempt, policy.attempts, exc)

    try:
        retry(
            lambda: transcoder.run(args, step="final mux"),
            policy,
            retry_on=(AssemblyError,),
            sleep=sleep,
            on_error=_log_attempt,
        )
    except AssemblyError as exc:
        raise AssemblyError(f"Final assembly failed after {policy.attempts} attempts: {exc}") from exc
    return output_path


__all__ = ["mux_args", "mux_loop_with_audio"]
