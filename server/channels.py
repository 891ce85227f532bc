"""Registry of connected destination channels."""

from __future__ import annotations

import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from common.document_store import DocumentStore

from .publishers.base import ConnectedChannel

ACTIVE = "active"
DISCONNECTED = "disconnected"


@dataclass
class Channel:
    channel_id: str
    channel_title: str
    thumbnail: str
    platform: str
    credential_id: str
    user_id: Optional[str] = None
    status: str = ACTIVE
    connected_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "channelId": self.channel_id,
            "channelTitle": self.channel_title,
            "thumbnail": self.thumbnail,
            "platform": self.platform,
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Channel":
        return cls(
            channel_id=str(data["channel_id"]),
            channel_title=str(data.get("channel_title") or ""),
            thumbnail=str(data.get("thumbnail") or ""),
            platform=str(data.get("platform") or ""),
            credential_id=str(data.get("credential_id") or ""),
            user_id=data.get("user_id"),
            status=str(data.get("status") or ACTIVE),
            connected_at=data.get("connected_at"),
        )


class ChannelRegistry:
    """Persisted list of channels, stored as ``{"channels": [...]}``."""

    def __init__(self, repository: DocumentStore) -> None:
        self.repository = repository
        self._lock = threading.RLock()

    def _load(self) -> List[Channel]:
        raw = self.repository.load().get("channels") or []
        return [Channel.from_dict(entry) for entry in raw if isinstance(entry, dict) and entry.get("channel_id")]

    def _save(self, channels: List[Channel]) -> None:
        self.repository.save({"channels": [channel.to_dict() for channel in channels]})

    # ------------------------------------------------------------------
    def list(self, user_id: Optional[str] = None, platform: Optional[str] = None) -> List[Channel]:
        with self._lock:
            return [
                channel
                for channel in self._load()
                if (user_id is None or channel.user_id == user_id)
                and (platform is None or channel.platform == platform)
            ]

    def get(self, channel_id: str) -> Optional[Channel]:
        with self._lock:
            return next((c for c in self._load() if c.channel_id == channel_id), None)

    def record_seen(
        self,
        remote: ConnectedChannel,
        credential_id: str,
        user_id: Optional[str] = None,
    ) -> Optional[Channel]:
        """Register or refresh ``remote`` as owned by ``credential_id``.

        Unknown channels are only registered when the owning user is known.
        """

        with self._lock:
            channels = self._load()
            existing = next((c for c in channels if c.channel_id == remote.channel_id), None)
            if existing is None:
                if user_id is None:
                    return None
                existing = Channel(
                    channel_id=remote.channel_id,
                    channel_title=remote.title,
                    thumbnail=remote.thumbnail,
                    platform=remote.platform,
                    credential_id=credential_id,
                    user_id=user_id,
                    connected_at=datetime.now(timezone.utc).isoformat(),
                )
                channels.append(existing)
            else:
                existing.channel_title = remote.title or existing.channel_title
                existing.thumbnail = remote.thumbnail or existing.thumbnail
                existing.platform = remote.platform
                existing.credential_id = credential_id
                existing.status = ACTIVE
                if user_id is not None:
                    existing.user_id = user_id
            self._save(channels)
            return existing

    def mark_disconnected(self, credential_id: str, platform: str) -> int:
        with self._lock:
            channels = self._load()
            changed = 0
            for channel in channels:
                if channel.credential_id == credential_id and channel.platform == platform and channel.status != DISCONNECTED:
                    channel.status = DISCONNECTED
                    changed += 1
            if changed:
                self._save(channels)
            return changed

    def remove(self, channel_id: str) -> bool:
        with self._lock:
            channels = self._load()
            remaining = [c for c in channels if c.channel_id != channel_id]
            if len(remaining) == len(channels):
                return False
            self._save(remaining)
            return True


__all__ = ["ACTIVE", "Channel", "ChannelRegistry", "DISCONNECTED"]
