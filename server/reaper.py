"""Background disconnection of idle platform slots."""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import List, Optional, Tuple

from . import config
from .config import AllocatorConfig
from .credentials import Clock, CredentialPool, utcnow

logger = logging.getLogger(__name__)


class IdleReaper:
    """Free slots whose known channels have all been idle past the threshold.

    A connected platform with no known channels is left alone, since its
    first activity sync may not have happened yet.
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
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def sweep(self, now: Optional[datetime] = None) -> List[Tuple[str, str]]:
        """Run one pass and return the ``(instance_id, platform)`` slots freed."""

        now = now or self.clock()
        threshold = self.settings.idle_threshold_seconds
        reaped: List[Tuple[str, str]] = []
        for instance in self.pool.instances:
            record = self.pool.record(instance)
            for platform in config.PLATFORMS:
                if not record.connected(platform):
                    continue
                stamps = record.platform_activity(platform)
                if not stamps:
                    continue
                if all(ts is not None and (now - ts).total_seconds() > threshold for ts in stamps):
                    logger.info("Reaping idle %s slot on %s", platform, instance.label)
                    self.pool.disconnect(instance, platform, reason="idle")
                    reaped.append((instance.id, platform))
        return reaped

    # ------------------------------------------------------------------
    def _loop(self) -> None:
        while not self._stop.wait(self.settings.reaper_interval_seconds):
            try:
                self.sweep()
            except Exception:
                logger.exception("Idle reaper sweep failed")

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="idle-reaper", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None


__all__ = ["IdleReaper"]
