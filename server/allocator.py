"""Hand out credential slots for new platform connections."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Sequence
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from . import config
from .channels import ACTIVE
from .config import AllocatorConfig
from .credentials import Clock, CredentialInstance, CredentialPool, utcnow
from .errors import AllAccountsBusyError, AlreadyConnectedError, NoCapacityError, PublisherError
from .publishers.base import ConnectedChannel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectGrant:
    instance: CredentialInstance
    url: str


@dataclass(frozen=True)
class DisplacementChoice:
    instance: CredentialInstance
    last_active: datetime
    assumed_active: bool


def with_query(url: str, name: str, value: str) -> str:
    """Return ``url`` with the ``name`` query parameter set to ``value``."""

    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != name]
    query.append((name, value))
    return urlunsplit(parts._replace(query=urlencode(query)))


def with_instance(redirect_target: str, instance_id: str) -> str:
    """Tag ``redirect_target`` with the credential so the callback knows the slot."""

    return with_query(redirect_target, "instanceId", instance_id)


class SlotAllocator:
    """Admission control and displacement over a :class:`CredentialPool`.

    A credential admits a new connection for a platform when it has quota
    left and holds no connection for that platform. When nothing admits,
    the credential whose channels on the platform were active longest ago
    is disconnected, unless that activity is still inside the grace window.
    """

    def __init__(
        self,
        pool: CredentialPool,
        *,
        settings: AllocatorConfig = config.ALLOCATOR,
        clock: Clock = utcnow,
    ) -> None:
        self.pool = pool
        self.settings = settings
        self.clock = clock

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------
    def find_available(self, platform: str) -> Optional[CredentialInstance]:
        return self.pool.find_available(platform)

    def connect_url(self, platform: str, redirect_target: str) -> ConnectGrant:
        """Return a connect URL for ``platform`` backed by a free or reclaimed slot.

        Raises :class:`AllAccountsBusyError` when every reclaimable slot is
        still in use and :class:`NoCapacityError` when no credential has quota.
        """

        candidates = self.pool.candidates(platform)
        if candidates:
            grant = self._try_candidates(platform, redirect_target, candidates)
            if grant is not None:
                return grant
            logger.info("Every %s candidate was already connected; trying displacement", platform)
        return self._displace(platform, redirect_target)

    def _try_candidates(
        self,
        platform: str,
        redirect_target: str,
        candidates: Sequence[CredentialInstance],
    ) -> Optional[ConnectGrant]:
        conflicts = 0
        last_error: Optional[PublisherError] = None
        for instance in candidates:
            try:
                url = instance.publisher.connect_url(platform, with_instance(redirect_target, instance.id))
            except AlreadyConnectedError:
                conflicts += 1
                logger.warning("%s reports %s already connected; syncing flag", instance.label, platform)
                self.pool.mark_connected(instance, platform, True)
                continue
            except PublisherError as exc:
                last_error = exc
                logger.error("Connect URL request failed on %s: %s", instance.label, exc)
                continue
            if url:
                logger.info("Granting %s slot on %s", platform, instance.label)
                return ConnectGrant(instance, url)
            logger.warning("%s returned no connect URL for %s", instance.label, platform)
        if last_error is not None and not conflicts:
            raise PublisherError(f"Could not create a connect link: {last_error}")
        return None

    # ------------------------------------------------------------------
    # Displacement
    # ------------------------------------------------------------------
    def displacement_choice(self, platform: str) -> Optional[DisplacementChoice]:
        """Return the connected credential with free quota that was idle longest.

        A connected credential with no recorded activity counts as active now.
        """

        now = self.clock()
        best: Optional[DisplacementChoice] = None
        for instance in self.pool.instances:
            record = self.pool.record(instance)
            if record.uploads_this_month >= self.settings.monthly_upload_quota:
                continue
            if not record.connected(platform):
                continue
            last = record.last_activity(platform)
            choice = DisplacementChoice(instance, last or now, assumed_active=last is None)
            if best is None or choice.last_active < best.last_active:
                best = choice
        return best

    def _displace(self, platform: str, redirect_target: str) -> ConnectGrant:
        choice = self.displacement_choice(platform)
        if choice is None:
            raise NoCapacityError()

        idle = (self.clock() - choice.last_active).total_seconds()
        if idle < self.settings.displacement_grace_seconds:
            logger.info(
                "Refusing to displace %s on %s: active %.0fs ago%s",
                platform,
                choice.instance.label,
                idle,
                " (no activity recorded)" if choice.assumed_active else "",
            )
            raise AllAccountsBusyError()

        logger.warning("Displacing %s on %s, idle for %.0fs", platform, choice.instance.label, idle)
        self.pool.disconnect(choice.instance, platform, reason="displaced")
        grant = self._try_candidates(platform, redirect_target, [choice.instance])
        if grant is None:
            raise AllAccountsBusyError()
        return grant

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------
    def resolve_slot_conflicts(
        self,
        instance: CredentialInstance,
        channels: Iterable[ConnectedChannel],
    ) -> List[CredentialInstance]:
        """Disconnect older owners of remote accounts now seen under ``instance``.

        Returns the credentials that were disconnected. Never raises.
        """

        displaced: List[CredentialInstance] = []
        for channel in channels:
            previous = self._previous_owner(channel, instance)
            if previous is None:
                continue
            logger.warning(
                "Channel %s moved from %s to %s; disconnecting %s on the older credential",
                channel.channel_id,
                previous.label,
                instance.label,
                channel.platform,
            )
            self.pool.usage.forget_channel(previous.key, channel.channel_id)
            if previous not in displaced:
                self.pool.disconnect(previous, channel.platform, reason="slot conflict")
                displaced.append(previous)
        return displaced

    def _previous_owner(
        self,
        channel: ConnectedChannel,
        instance: CredentialInstance,
    ) -> Optional[CredentialInstance]:
        # Only a credential still holding the platform slot can own the channel
        candidate: Optional[CredentialInstance] = None
        key = self.pool.usage.owner_of(channel.channel_id, channel.platform)
        if key is not None and key != instance.key:
            candidate = self.pool.by_key(key)
        registry = self.pool.channels
        if candidate is None and registry is not None:
            known = registry.get(channel.channel_id)
            if (
                known is not None
                and known.status == ACTIVE
                and known.credential_id
                and known.credential_id != instance.id
            ):
                candidate = self.pool.get(known.credential_id)
        if candidate is None or not self.pool.record(candidate).connected(channel.platform):
            return None
        return candidate

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------
    def sync_instance(
        self,
        instance: CredentialInstance,
        *,
        user_id: Optional[str] = None,
    ) -> List[ConnectedChannel]:
        """Scan the remote channels of ``instance`` and align local state with them."""

        try:
            channels = instance.publisher.list_connected_channels()
        except PublisherError as exc:
            logger.error("Listing channels on %s failed: %s", instance.label, exc)
            return []

        self.resolve_slot_conflicts(instance, channels)
        for platform in config.PLATFORMS:
            connected = any(channel.platform == platform for channel in channels)
            if connected != self.pool.record(instance).connected(platform):
                self.pool.mark_connected(instance, platform, connected)
        for channel in channels:
            self.pool.touch_channel(instance, channel.channel_id, channel.platform)
            if self.pool.channels is not None:
                self.pool.channels.record_seen(channel, instance.id, user_id)
        return channels

    def sync_all(self) -> List[ConnectedChannel]:
        seen: List[ConnectedChannel] = []
        for instance in self.pool.instances:
            seen.extend(self.sync_instance(instance))
        return seen


__all__ = ["ConnectGrant", "DisplacementChoice", "SlotAllocator", "with_instance", "with_query"]
