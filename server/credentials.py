"""API credentials, their monthly usage ledger and the pool that owns them."""

from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from common.document_store import DocumentStore

from . import config
from .config import AllocatorConfig
from .errors import PublisherError
from .publishers.base import Publisher

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def month_stamp(moment: datetime) -> str:
    return moment.strftime("%Y-%m")


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class ChannelActivity:
    platform: str
    last_active_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform": self.platform,
            "lastActiveAt": self.last_active_at.isoformat() if self.last_active_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChannelActivity":
        return cls(
            platform=str(data.get("platform") or ""),
            last_active_at=_parse_timestamp(data.get("lastActiveAt")),
        )


@dataclass
class UsageRecord:
    """Monthly usage and slot state for one credential."""

    month: str
    uploads_this_month: int = 0
    facebook_connected: bool = False
    youtube_connected: bool = False
    channels: Dict[str, ChannelActivity] = field(default_factory=dict)

    def connected(self, platform: str) -> bool:
        return bool(getattr(self, f"{platform}_connected", False))

    def set_connected(self, platform: str, value: bool) -> None:
        if platform not in config.PLATFORMS:
            raise ValueError(f"Unknown platform: {platform}")
        setattr(self, f"{platform}_connected", value)

    def platform_activity(self, platform: str) -> List[Optional[datetime]]:
        """Return the last-active timestamps of every known channel on ``platform``."""

        return [a.last_active_at for a in self.channels.values() if a.platform == platform]

    def last_activity(self, platform: str) -> Optional[datetime]:
        stamps = [ts for ts in self.platform_activity(platform) if ts is not None]
        return max(stamps) if stamps else None

    def roll_over(self, month: str) -> bool:
        """Reset the counter when ``month`` differs; channels are kept."""

        if self.month == month:
            return False
        self.month = month
        self.uploads_this_month = 0
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uploadsThisMonth": self.uploads_this_month,
            "facebookConnected": self.facebook_connected,
            "youtubeConnected": self.youtube_connected,
            "month": self.month,
            "channels": {cid: activity.to_dict() for cid, activity in self.channels.items()},
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], month: str) -> "UsageRecord":
        if not data:
            return cls(month=month)
        channels = data.get("channels") or {}
        return cls(
            month=str(data.get("month") or month),
            uploads_this_month=int(data.get("uploadsThisMonth") or 0),
            facebook_connected=bool(data.get("facebookConnected")),
            youtube_connected=bool(data.get("youtubeConnected")),
            channels={
                str(cid): ChannelActivity.from_dict(entry)
                for cid, entry in channels.items()
                if isinstance(entry, dict)
            },
        )


class UsageStore:
    """Read-modify-write access to the usage ledger document.

    Reads are served from an in-memory copy; every mutation reloads the
    document from the repository, applies the change and saves it whole.
    """

    def __init__(self, repository: DocumentStore, *, clock: Clock = utcnow) -> None:
        self.repository = repository
        self.clock = clock
        self._document: Optional[Dict[str, Any]] = None
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    def reload(self) -> None:
        """Drop the cached document so the next read hits the repository."""

        with self._lock:
            self._document = None

    def reset(self) -> None:
        """Erase the whole ledger."""

        with self._lock:
            self.repository.save({})
            self._document = {}

    def _loaded(self) -> Dict[str, Any]:
        if self._document is None:
            self._document = self.repository.load()
        return self._document

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(self._loaded())

    # ------------------------------------------------------------------
    def get(self, key: str) -> UsageRecord:
        """Return the record for ``key``, rolling the month over when needed."""

        with self._lock:
            month = month_stamp(self.clock())
            record = UsageRecord.from_dict(self._loaded().get(key), month)
            if record.roll_over(month):
                logger.info("Monthly usage reset for credential %s", _mask(key))
                return self._mutate(key, lambda rec: None)
            return record

    def _mutate(self, key: str, change: Callable[[UsageRecord], None]) -> UsageRecord:
        with self._lock:
            document = self.repository.load()
            month = month_stamp(self.clock())
            record = UsageRecord.from_dict(document.get(key), month)
            record.roll_over(month)
            change(record)
            document[key] = record.to_dict()
            self.repository.save(document)
            self._document = document
            return record

    def record_upload(self, key: str) -> UsageRecord:
        def _increment(record: UsageRecord) -> None:
            record.uploads_this_month += 1

        return self._mutate(key, _increment)

    def set_connected(self, key: str, platform: str, value: bool) -> UsageRecord:
        return self._mutate(key, lambda record: record.set_connected(platform, value))

    def touch_channel(
        self,
        key: str,
        channel_id: str,
        platform: str,
        when: Optional[datetime] = None,
    ) -> UsageRecord:
        stamp = when or self.clock()

        def _touch(record: UsageRecord) -> None:
            record.channels[channel_id] = ChannelActivity(platform=platform, last_active_at=stamp)

        return self._mutate(key, _touch)

    def forget_channel(self, key: str, channel_id: str) -> UsageRecord:
        return self._mutate(key, lambda record: record.channels.pop(channel_id, None))

    def release_platform(self, key: str, platform: str) -> UsageRecord:
        """Clear the ``platform`` slot of ``key`` and forget the channels it held."""

        def _release(record: UsageRecord) -> None:
            record.set_connected(platform, False)
            for channel_id in [cid for cid, a in record.channels.items() if a.platform == platform]:
                del record.channels[channel_id]

        return self._mutate(key, _release)

    def owner_of(self, channel_id: str, platform: Optional[str] = None) -> Optional[str]:
        """Return the credential key whose ledger lists ``channel_id``.

        When several do, the most recently active one is returned.
        """

        best: Optional[str] = None
        best_seen: Optional[datetime] = None
        with self._lock:
            for key, data in self._loaded().items():
                entry = (data.get("channels") or {}).get(channel_id) if isinstance(data, dict) else None
                if not isinstance(entry, dict):
                    continue
                activity = ChannelActivity.from_dict(entry)
                if platform and activity.platform != platform:
                    continue
                stamp = activity.last_active_at
                if best is None or (stamp is not None and (best_seen is None or stamp > best_seen)):
                    best, best_seen = key, stamp
        return best


def _mask(key: str) -> str:
    return f"...{key[-4:]}" if len(key) > 4 else "****"


@dataclass
class CredentialInstance:
    """One configured API key and the publisher acting on its behalf."""

    id: str
    key: str
    publisher: Publisher

    @property
    def cached_team_id(self) -> Optional[str]:
        return getattr(self.publisher, "cached_team_id", None)

    @property
    def label(self) -> str:
        return f"{self.id} ({_mask(self.key)})"


class CredentialPool:
    """The fixed set of credentials plus their usage ledger."""

    def __init__(
        self,
        instances: Iterable[CredentialInstance],
        usage: UsageStore,
        *,
        settings: AllocatorConfig = config.ALLOCATOR,
        channels: Any = None,
    ) -> None:
        self.instances: List[CredentialInstance] = list(instances)
        self.usage = usage
        self.settings = settings
        self.channels = channels

    # ------------------------------------------------------------------
    def get(self, instance_id: str) -> Optional[CredentialInstance]:
        return next((inst for inst in self.instances if inst.id == instance_id), None)

    def by_key(self, key: str) -> Optional[CredentialInstance]:
        return next((inst for inst in self.instances if inst.key == key), None)

    def record(self, instance: CredentialInstance) -> UsageRecord:
        return self.usage.get(instance.key)

    def has_quota(self, instance: CredentialInstance) -> bool:
        return self.record(instance).uploads_this_month < self.settings.monthly_upload_quota

    def candidates(self, platform: str) -> List[CredentialInstance]:
        """Credentials with quota left and no connection for ``platform``, in pool order."""

        result = []
        for instance in self.instances:
            if self.has_quota(instance) and not self.record(instance).connected(platform):
                result.append(instance)
        return result

    def find_available(self, platform: str) -> Optional[CredentialInstance]:
        candidates = self.candidates(platform)
        return candidates[0] if candidates else None

    def owner_of(self, channel_id: str, platform: Optional[str] = None) -> Optional[CredentialInstance]:
        key = self.usage.owner_of(channel_id, platform)
        if key is not None:
            instance = self.by_key(key)
            if instance is not None:
                return instance
        if self.channels is not None:
            channel = self.channels.get(channel_id)
            if channel is not None:
                return self.get(channel.credential_id)
        return None

    # ------------------------------------------------------------------
    def mark_connected(self, instance: CredentialInstance, platform: str, value: bool = True) -> None:
        self.usage.set_connected(instance.key, platform, value)

    def disconnect(self, instance: CredentialInstance, platform: str, *, reason: str = "") -> None:
        """Free the ``platform`` slot of ``instance``.

        A failing remote call is logged; the local flag is cleared regardless and
        the channels the slot held are dropped from the ledger.
        """

        try:
            instance.publisher.disconnect(platform)
        except PublisherError as exc:
            logger.warning("Remote disconnect of %s on %s failed: %s", platform, instance.label, exc)
        self.usage.release_platform(instance.key, platform)
        if self.channels is not None:
            self.channels.mark_disconnected(instance.id, platform)
        logger.info("Disconnected %s on %s%s", platform, instance.label, f" ({reason})" if reason else "")

    def record_upload(self, instance: CredentialInstance) -> None:
        record = self.usage.record_upload(instance.key)
        logger.info(
            "%s has used %d/%d uploads this month",
            instance.label,
            record.uploads_this_month,
            self.settings.monthly_upload_quota,
        )

    def touch_channel(self, instance: CredentialInstance, channel_id: str, platform: str) -> None:
        self.usage.touch_channel(instance.key, channel_id, platform)

    def retire_channel(self, channel_id: str) -> bool:
        """Forget ``channel_id`` everywhere and free the slot it occupied."""

        channel = self.channels.get(channel_id) if self.channels is not None else None
        platform = channel.platform if channel is not None else None
        instance = self.owner_of(channel_id)
        if instance is None:
            if self.channels is not None:
                self.channels.remove(channel_id)
            return channel is not None

        if platform is None:
            activity = self.record(instance).channels.get(channel_id)
            platform = activity.platform if activity is not None else None
        self.usage.forget_channel(instance.key, channel_id)
        if self.channels is not None:
            self.channels.remove(channel_id)
        if platform:
            self.disconnect(instance, platform, reason=f"channel {channel_id} retired")
        return True


__all__ = [
    "ChannelActivity",
    "CredentialInstance",
    "CredentialPool",
    "UsageRecord",
    "UsageStore",
    "month_stamp",
    "utcnow",
]
