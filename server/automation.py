"""Round-robin publication cycle for automated uploads."""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Optional

from common.document_store import DocumentStore

from . import config
from .config import AutomationSettings
from .credentials import Clock, utcnow
from .jobs import PublishJob

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AutomationDecision:
    position: int
    publish_at: Optional[datetime]
    visibility: str
    retire_channel: bool

    @property
    def immediate(self) -> bool:
        return self.publish_at is None


class AutomationScheduler:
    """Decide when an automated upload goes live and when its channel is retired.

    Each user walks positions ``0..cycle_length-1``. Position 0 publishes
    right away (occasionally after a short random delay); position ``n`` is
    scheduled ``day_spacing * n`` days out at a random time inside the
    publish window. The last position retires the channel and restarts the
    cycle.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        settings: AutomationSettings = config.AUTOMATION,
        rng: Optional[random.Random] = None,
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.settings = settings
        self.rng = rng or random.Random()
        self.clock = clock
        self._lock = threading.Lock()

    def position(self, user_id: str) -> int:
        return int(self.store.load().get(user_id, 0)) % self.settings.cycle_length

    def next_slot(self, user_id: str) -> AutomationDecision:
        """Consume the user's current position and return the resulting decision."""

        with self._lock:
            document = self.store.load()
            position = int(document.get(user_id, 0)) % self.settings.cycle_length
            retire = position == self.settings.cycle_length - 1
            document[user_id] = 0 if retire else position + 1
            self.store.save(document)

        now = self.clock()
        if position == 0:
            publish_at = None
            if self.rng.random() < self.settings.immediate_delay_odds:
                low, high = self.settings.immediate_delay_minutes
                publish_at = now + timedelta(minutes=self.rng.randint(low, high))
        else:
            first_hour, last_hour = self.settings.publish_hours
            day = now + timedelta(days=self.settings.day_spacing * position)
            publish_at = day.replace(
                hour=self.rng.randint(first_hour, last_hour),
                minute=self.rng.randint(0, 59),
                second=0,
                microsecond=0,
            )

        decision = AutomationDecision(
            position=position,
            publish_at=publish_at,
            visibility="private" if publish_at else "public",
            retire_channel=retire,
        )
        logger.info(
            "Automation for %s: position %d, publish %s%s",
            user_id,
            position,
            publish_at.isoformat() if publish_at else "now",
            ", retiring channel afterwards" if retire else "",
        )
        return decision

    def prepare(self, user_id: str, job: PublishJob) -> PublishJob:
        """Return ``job`` with the schedule and retirement flag of the next position."""

        decision = self.next_slot(user_id)
        return replace(
            job,
            publish_at=decision.publish_at.isoformat() if decision.publish_at else None,
            visibility=decision.visibility,
            retire_channel=decision.retire_channel,
        )

    def reset(self, user_id: str) -> None:
        with self._lock:
            document = self.store.load()
            document.pop(user_id, None)
            self.store.save(document)


__all__ = ["AutomationDecision", "AutomationScheduler"]
