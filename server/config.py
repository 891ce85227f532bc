"""Central configuration for the publishing pipeline.

Sections are grouped by feature for easier editing. Every value can be
overridden through the environment (``.env`` is loaded on import).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from common.backoff import RetryPolicy, fixed_delay

load_dotenv(dotenv_path=os.environ.get("MP3TOYT_ENV_FILE", ".env"))


def _env_path(name: str, default: Path) -> Path:
    override = os.environ.get(name)
    return Path(override).expanduser().resolve() if override else default


def _env_csv(name: str) -> list[str]:
    raw = os.environ.get(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


BASE_DIR = Path(__file__).resolve().parents[1]

# ---------------------------------------
# Storage locations
# ---------------------------------------
# Session-scoped asset directories (audio parts, image, overlay)
TEMP_DIR = _env_path("TEMP_DIR", BASE_DIR / "temp")
# Rendered videos waiting for upload
UPLOADS_DIR = _env_path("UPLOADS_DIR", BASE_DIR / "uploads")
# Usage ledger, channel registry and automation state
DATA_DIR = _env_path("DATA_DIR", BASE_DIR / "data")
# Client-visible overlay paths (``/temp/<session>/overlay_x.mp4``) resolve against this
PUBLIC_ROOT = _env_path("PUBLIC_ROOT", BASE_DIR)

LEDGER_FILE = DATA_DIR / "usage.json"
CHANNELS_FILE = DATA_DIR / "channels.json"
AUTOMATION_FILE = DATA_DIR / "automation.json"
# Optional Fernet key; the ledger is keyed by secret API keys
LEDGER_FERNET_KEY = os.environ.get("LEDGER_FERNET_KEY") or None

# ---------------------------------------
# Transcoding
# ---------------------------------------
FFMPEG_PATH = os.environ.get("FFMPEG_PATH", "ffmpeg")
FFPROBE_PATH = os.environ.get("FFPROBE_PATH", "ffprobe")
TRANSCODE_TIMEOUT_SECONDS = float(os.environ.get("TRANSCODE_TIMEOUT_SECONDS", "3600"))
VIDEO_CODEC = os.environ.get("VIDEO_CODEC", "libx264")
# Geometry is always computed against this canvas, whatever the image aspect
CANVAS_SIZE: tuple[int, int] = (1280, 720)
# The still image is read at 1 fps and re-timed to OUTPUT_FPS
INPUT_FPS = 1
OUTPUT_FPS = 24
ENCODER_PRESET = "ultrafast"
ENCODER_TUNE = "stillimage"
ENCODER_CRF = 32
MAX_BASE_LOOP_SECONDS = 60
MUX_RETRY = RetryPolicy(attempts=3, delay=fixed_delay(2.0))


@dataclass(frozen=True)
class WatermarkSettings:
    text: str = "Made with MP3toYT"
    font_file: str | None = None
    icon_path: Path | None = None
    bar_height: int = 60
    icon_size: int = 40
    font_size: int = 26


WATERMARK = WatermarkSettings(
    text=os.environ.get("WATERMARK_TEXT", "Made with MP3toYT"),
    font_file=os.environ.get("WATERMARK_FONT_FILE") or None,
    icon_path=_env_path("WATERMARK_ICON", BASE_DIR / "assets" / "watermark_icon.png"),
)

FREE_PLAN = "free"
PLANS = ("free", "basic", "pro")

# ---------------------------------------
# Job queue
# ---------------------------------------
# Grace delay before session files are removed, so polling clients never race
CLEANUP_DELAY_SECONDS = float(os.environ.get("CLEANUP_DELAY_SECONDS", "5"))
# Terminal job statuses are forgotten after this long
STATUS_TTL_SECONDS = float(os.environ.get("STATUS_TTL_SECONDS", "60"))
ABANDONED_SESSION_MAX_AGE_SECONDS = float(
    os.environ.get("ABANDONED_SESSION_MAX_AGE_SECONDS", str(3 * 24 * 60 * 60))
)
# Platforms whose post creation is fired without waiting for the response
DETACHED_POST_PLATFORMS = frozenset(_env_csv("DETACHED_POST_PLATFORMS") or ["facebook"])

# ---------------------------------------
# Credential pool and slot allocation
# ---------------------------------------
PLATFORMS = ("facebook", "youtube")


@dataclass(frozen=True)
class AllocatorConfig:
    monthly_upload_quota: int = 100
    displacement_grace_seconds: float = 5 * 60
    idle_threshold_seconds: float = 10 * 60
    reaper_interval_seconds: float = 60


ALLOCATOR = AllocatorConfig(
    monthly_upload_quota=int(os.environ.get("MONTHLY_UPLOAD_QUOTA", "100")),
    displacement_grace_seconds=float(os.environ.get("DISPLACEMENT_GRACE_SECONDS", "300")),
    idle_threshold_seconds=float(os.environ.get("IDLE_THRESHOLD_SECONDS", "600")),
    reaper_interval_seconds=float(os.environ.get("REAPER_INTERVAL_SECONDS", "60")),
)

BUNDLE_API_KEYS = _env_csv("BUNDLE_API_KEYS") or _env_csv("BUNDLE_API_KEY")
BUNDLE_API_URL = os.environ.get("BUNDLE_API_URL", "https://api.bundle.social/api/v1").rstrip("/")
BUNDLE_DASHBOARD_URL = os.environ.get("BUNDLE_DASHBOARD_URL", "https://bundle.social").rstrip("/")
BUNDLE_TEAM_NAME = os.environ.get("BUNDLE_TEAM_NAME", "MP3toYT Team")
REQUEST_TIMEOUT_SECONDS = float(os.environ.get("REQUEST_TIMEOUT_SECONDS", "30"))
UPLOAD_TIMEOUT_SECONDS = float(os.environ.get("UPLOAD_TIMEOUT_SECONDS", "600"))
# Unscheduled posts are dated slightly in the future
POST_DATE_BUFFER_SECONDS = 10

# ---------------------------------------
# Automation cycle
# ---------------------------------------


@dataclass(frozen=True)
class AutomationSettings:
    cycle_length: int = 6
    day_spacing: int = 2
    immediate_delay_odds: float = 0.15
    immediate_delay_minutes: tuple[int, int] = (5, 45)
    publish_hours: tuple[int, int] = (9, 21)


AUTOMATION = AutomationSettings()

__all__ = [
    "ABANDONED_SESSION_MAX_AGE_SECONDS",
    "ALLOCATOR",
    "AUTOMATION",
    "AUTOMATION_FILE",
    "AllocatorConfig",
    "AutomationSettings",
    "BUNDLE_API_KEYS",
    "BUNDLE_API_URL",
    "BUNDLE_DASHBOARD_URL",
    "BUNDLE_TEAM_NAME",
    "CANVAS_SIZE",
    "CHANNELS_FILE",
    "CLEANUP_DELAY_SECONDS",
    "DATA_DIR",
    "DETACHED_POST_PLATFORMS",
    "ENCODER_CRF",
    "ENCODER_PRESET",
    "ENCODER_TUNE",
    "FFMPEG_PATH",
    "FFPROBE_PATH",
    "FREE_PLAN",
    "INPUT_FPS",
    "LEDGER_FERNET_KEY",
    "LEDGER_FILE",
    "MAX_BASE_LOOP_SECONDS",
    "MUX_RETRY",
    "OUTPUT_FPS",
    "PLANS",
    "PLATFORMS",
    "POST_DATE_BUFFER_SECONDS",
    "PUBLIC_ROOT",
    "REQUEST_TIMEOUT_SECONDS",
    "STATUS_TTL_SECONDS",
    "TEMP_DIR",
    "TRANSCODE_TIMEOUT_SECONDS",
    "UPLOADS_DIR",
    "UPLOAD_TIMEOUT_SECONDS",
    "VIDEO_CODEC",
    "WATERMARK",
    "WatermarkSettings",
]
