"""Upload a rendered video and create its post through the owning credential."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Collection, Optional

from . import config
from .credentials import CredentialInstance, CredentialPool
from .errors import PublisherError
from .helpers.logging import log_timing
from .jobs import PublishJob
from .publishers.base import PostRequest

logger = logging.getLogger(__name__)

TaskRunner = Callable[[Callable[[], None]], Any]


def _detached(target: Callable[[], None]) -> threading.Thread:
    thread = threading.Thread(target=target, name="detached-post", daemon=True)
    thread.start()
    return thread


class PublishService:
    """Publishing half of a job: upload, post and ledger bookkeeping.

    Posts on ``detached_platforms`` are fired on a background task whose
    failure is only logged; the job completes as soon as the upload lands.
    """

    def __init__(
        self,
        pool: CredentialPool,
        *,
        detached_platforms: Collection[str] = config.DETACHED_POST_PLATFORMS,
        run_detached: TaskRunner = _detached,
    ) -> None:
        self.pool = pool
        self.detached_platforms = frozenset(detached_platforms)
        self._run_detached = run_detached

    def _owner(self, job: PublishJob) -> CredentialInstance:
        instance = self.pool.owner_of(job.channel_id, job.platform)
        if instance is None:
            raise PublisherError(f"No connected account owns channel {job.channel_id}.")
        return instance

    def _post_request(self, job: PublishJob, media_id: str) -> PostRequest:
        text = job.description or job.title
        return PostRequest(
            channel_id=job.channel_id,
            platform=job.platform,
            media_id=media_id,
            text=text,
            title=job.title,
            tags=job.tags,
            visibility=job.visibility,
            scheduled_at=job.publish_at,
        )

    def publish(self, job: PublishJob, video_path: Path) -> str:
        """Return the URL of the created (or pending) post."""

        instance = self._owner(job)
        with log_timing(f"Uploading {Path(video_path).name} via {instance.label}"):
            media_id = instance.publisher.upload(video_path)
        self.pool.record_upload(instance)
        self.pool.touch_channel(instance, job.channel_id, job.platform)
        request = self._post_request(job, media_id)

        if job.platform in self.detached_platforms:
            self._run_detached(lambda: self._post_detached(instance, request, job.retire_channel))
            return self._pending_url(instance)

        result = instance.publisher.post(request)
        if not result.success:
            raise PublisherError(result.error or f"{job.platform} post failed.")
        if job.retire_channel:
            self.pool.retire_channel(job.channel_id)
        return result.url or ""

    def _post_detached(self, instance: CredentialInstance, request: PostRequest, retire: bool) -> None:
        try:
            result = instance.publisher.post(request)
            if result.success:
                logger.info("Detached %s post created: %s", request.platform, result.url)
            else:
                logger.error("Detached %s post failed: %s", request.platform, result.error)
        except Exception:
            logger.exception("Detached %s post raised", request.platform)
        finally:
            if retire:
                self.pool.retire_channel(request.channel_id)

    def _pending_url(self, instance: CredentialInstance) -> str:
        team_id: Optional[str] = instance.cached_team_id
        if team_id:
            return f"{config.BUNDLE_DASHBOARD_URL}/teams/{team_id}/posts"
        return config.BUNDLE_DASHBOARD_URL


__all__ = ["PublishService"]
