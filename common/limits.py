"""Platform specific limits applied to outgoing posts."""

PLATFORM_LIMITS = {
    "facebook": {"text": 5000, "title": 50},
    "youtube": {"text": 5000, "title": 100, "tags": 500},
}

DEFAULT_POST_TEXT = "New video upload from MP3toYT"
DEFAULT_POST_TITLE = "New Video Post"


__all__ = ["PLATFORM_LIMITS", "DEFAULT_POST_TEXT", "DEFAULT_POST_TITLE"]
