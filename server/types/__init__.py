"""Type definitions for the MP3toYT server."""

from .timer import Timer

__all__ = ["Timer"]
