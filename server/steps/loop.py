"""Base loop construction: still image, optional overlay and free-plan watermark."""

from __future__ import annotations

import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Mapping, Optional, Tuple

from .. import config
from ..config import WatermarkSettings
from ..transcoder import FfmpegTranscoder

OVERLAY_TYPES = ("image", "video")


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class Overlay:
    """Overlay placement in normalized ``[0, 1]`` canvas coordinates."""

    type: str
    path: Path
    x: float
    y: float
    w: float
    h: float

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Overlay":
        kind = str(data.get("type") or "image").lower()
        if kind not in OVERLAY_TYPES:
            raise ValueError(f"Unsupported overlay type: {kind}")
        path = data.get("path")
        if not path:
            raise ValueError("Overlay path is missing")

        def _coord(name: str) -> float:
            try:
                value = float(data.get(name, 0.0))
            except (TypeError, ValueError) as exc:
                raise ValueError(f"Overlay {name} must be a number") from exc
            return min(1.0, max(0.0, value))

        return cls(
            type=kind,
            path=Path(str(path)),
            x=_coord("x"),
            y=_coord("y"),
            w=_coord("w"),
            h=_coord("h"),
        )

    @property
    def is_video(self) -> bool:
        return self.type == "video"


def overlay_box(overlay: Overlay, canvas: Tuple[int, int] = config.CANVAS_SIZE) -> Tuple[int, int, int, int]:
    """Return ``(x, y, w, h)`` in pixels; width and height are even and at least 2."""

    width, height = canvas
    x = round_half_up(overlay.x * width)
    y = round_half_up(overlay.y * height)
    w = max(2, round_half_up(overlay.w * width / 2) * 2)
    h = max(2, round_half_up(overlay.h * height / 2) * 2)
    return x, y, w, h


def _escape_drawtext(text: str) -> str:
    # Characters that break filtergraph parsing inside drawtext values
    return (
        text.replace("\\", "\\\\")
        .replace("'", "\\'")
        .replace(":", "\\:")
        .replace("%", "\\%")
    )


def _fit_canvas(canvas: Tuple[int, int]) -> str:
    width, height = canvas
    return (
        f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
        f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2,setsar=1"
    )


def watermark_filters(
    source: str,
    target: str,
    *,
    icon_input: Optional[int],
    settings: WatermarkSettings = config.WATERMARK,
    canvas: Tuple[int, int] = config.CANVAS_SIZE,
) -> List[str]:
    """Return filter chains drawing the watermark bar, icon and text.

    The bar spans the bottom of the canvas. ``icon_input`` is the ffmpeg input
    index of the icon image; without one a plain badge is drawn in its place.
    """

    width, height = canvas
    bar = settings.bar_height
    bar_top = height - bar
    margin = (bar - settings.icon_size) // 2
    text_x = margin * 2 + settings.icon_size
    drawtext = (
        f"drawtext=text='{_escape_drawtext(settings.text)}'"
        f":fontcolor=white:fontsize={settings.font_size}"
        f":x={text_x}:y={bar_top}+({bar}-text_h)/2"
    )
    if settings.font_file:
        drawtext += f":fontfile='{_escape_drawtext(settings.font_file)}'"
    bar_chain = f"drawbox=x=0:y={bar_top}:w={width}:h={bar}:color=black@0.6:t=fill"

    if icon_input is None:
        badge = (
            f"drawbox=x={margin}:y={bar_top + margin}:w={settings.icon_size}"
            f":h={settings.icon_size}:color=red@0.9:t=fill"
        )
        return [f"[{source}]{bar_chain},{badge},{drawtext}[{target}]"]

    return [
        f"[{source}]{bar_chain},{drawtext}[wmbar]",
        f"[{icon_input}:v]scale={settings.icon_size}:{settings.icon_size}[wmicon]",
        f"[wmbar][wmicon]overlay={margin}:{bar_top + margin}[{target}]",
    ]


def _encoder_args(duration: int, output: Path) -> List[str]:
    return [
        "-t", str(duration),
        "-r", str(config.OUTPUT_FPS),
        "-c:v", config.VIDEO_CODEC,
        "-preset", config.ENCODER_PRESET,
        "-tune", config.ENCODER_TUNE,
        "-crf", str(config.ENCODER_CRF),
        "-threads", "0",
        "-pix_fmt", "yuv420p",
        "-an",
        str(output),
    ]


def base_loop_args(
    image_path: Path,
    output_path: Path,
    duration: int,
    *,
    overlay: Optional[Overlay] = None,
    watermark: bool = False,
    settings: WatermarkSettings = config.WATERMARK,
    canvas: Tuple[int, int] = config.CANVAS_SIZE,
) -> List[str]:
    """Return the ffmpeg arguments building a silent base loop of ``duration`` seconds."""

    args = ["-loop", "1", "-framerate", str(config.INPUT_FPS), "-i", str(image_path)]

    if overlay is None and not watermark:
        return args + ["-vf", _fit_canvas(canvas)] + _encoder_args(duration, output_path)

    chains = [f"[0:v]{_fit_canvas(canvas)}[bg]"]
    current = "bg"
    next_input = 1

    if overlay is not None:
        if overlay.is_video:
            args += ["-stream_loop", "-1", "-i", str(overlay.path)]
        else:
            args += ["-loop", "1", "-i", str(overlay.path)]
        x, y, w, h = overlay_box(overlay, canvas)
        chains.append(f"[{next_input}:v]scale={w}:{h}[ovrl]")
        chains.append(f"[{current}][ovrl]overlay={x}:{y}:shortest=1[withovrl]")
        current = "withovrl"
        next_input += 1

    if watermark:
        icon_input: Optional[int] = None
        if settings.icon_path is not None and Path(settings.icon_path).is_file():
            args += ["-loop", "1", "-i", str(settings.icon_path)]
            icon_input = next_input
            next_input += 1
        chains.extend(
            watermark_filters(current, "wm", icon_input=icon_input, settings=settings, canvas=canvas)
        )
        current = "wm"

    args += ["-filter_complex", ";".join(chains), "-map", f"[{current}]"]
    return args + _encoder_args(duration, output_path)


def build_base_loop(
    transcoder: FfmpegTranscoder,
    image_path: Path,
    output_path: Path,
    duration: int,
    *,
    overlay: Optional[Overlay] = None,
    watermark: bool = False,
) -> Path:
    transcoder.run(
        base_loop_args(image_path, output_path, duration, overlay=overlay, watermark=watermark),
        step="base loop",
    )
    return output_path


__all__ = [
    "OVERLAY_TYPES",
    "Overlay",
    "base_loop_args",
    "build_base_loop",
    "overlay_box",
    "round_half_up",
    "watermark_filters",
]
