"""Publisher capability shared by every destination platform."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class ConnectedChannel:
    """A remote destination visible to one credential."""

    channel_id: str
    title: str
    thumbnail: str
    platform: str
    # Parent remote account; equals ``channel_id`` for top-level accounts
    account_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channelId": self.channel_id,
            "channelTitle": self.title,
            "thumbnail": self.thumbnail,
            "platform": self.platform,
            "socialAccountId": self.account_id or self.channel_id,
        }


@dataclass(frozen=True)
class PostRequest:
    channel_id: str
    platform: str
    media_id: str
    text: str = ""
    title: str = ""
    tags: Tuple[str, ...] = ()
    visibility: str = "public"
    scheduled_at: Optional[str] = None


@dataclass(frozen=True)
class PostResult:
    success: bool
    url: Optional[str] = None
    error: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


class Publisher(ABC):
    """Uploads media and creates posts for the channels of one credential."""

    @abstractmethod
    def connect_url(self, platform: str, redirect_url: str) -> Optional[str]:
        """Return an authorization URL, raising ``AlreadyConnectedError`` on a slot conflict."""

    @abstractmethod
    def disconnect(self, platform: str) -> None:
        ...

    @abstractmethod
    def list_connected_channels(self, platform: Optional[str] = None) -> List[ConnectedChannel]:
        ...

    @abstractmethod
    def upload(self, video_path: Path) -> str:
        """Upload ``video_path`` and return the remote media id."""

    @abstractmethod
    def post(self, request: PostRequest) -> PostResult:
        ...


__all__ = ["ConnectedChannel", "PostRequest", "PostResult", "Publisher"]
