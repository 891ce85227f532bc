"""Single-worker FIFO queue turning sessions into published videos."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Deque, Dict, Optional, Protocol, Tuple

from . import config
from .helpers.cleanup import remove_paths
from .helpers.notifications import notify_job_failed
from .steps.loop import Overlay
from .types.timer import Timer

logger = logging.getLogger(__name__)

Scheduler = Callable[[float, Callable[[], None]], Any]
WorkerStarter = Callable[[Callable[[], None]], Any]


class JobState(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    UPLOADING = "uploading"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobState.COMPLETE, JobState.FAILED)


ACTIVE_STATES = (JobState.QUEUED, JobState.PROCESSING, JobState.UPLOADING)


def parse_tags(raw: Any) -> Tuple[str, ...]:
    """Return tags from a comma separated string or a list, dropping blanks."""

    if not raw:
        return ()
    items = raw.split(",") if isinstance(raw, str) else list(raw)
    return tuple(tag for tag in (str(item).strip() for item in items) if tag)


@dataclass(frozen=True)
class PublishJob:
    session_id: str
    audio_path: Path
    image_path: Path
    channel_id: str
    platform: str
    title: str = ""
    description: str = ""
    tags: Tuple[str, ...] = ()
    visibility: str = "public"
    publish_at: Optional[str] = None
    overlay: Optional[Overlay] = None
    plan: str = config.FREE_PLAN
    # Set by the automation cycle on the publication that consumes a channel
    retire_channel: bool = False

    @property
    def session_dir(self) -> Path:
        return self.image_path.parent


@dataclass
class JobStatus:
    state: JobState
    message: str
    video_url: Optional[str] = None
    creation_time: Optional[int] = None
    upload_time: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"status": self.state.value, "message": self.message}
        if self.video_url is not None:
            payload["videoUrl"] = self.video_url
        if self.creation_time is not None:
            payload["creationTimeSeconds"] = self.creation_time
        if self.upload_time is not None:
            payload["uploadTimeSeconds"] = self.upload_time
        return payload


class Assembler(Protocol):
    def assemble(self, session_dir: Path, audio_hint: Optional[Path], image_path: Path, **kwargs: Any) -> Path:
        ...


class JobPublisher(Protocol):
    def publish(self, job: PublishJob, video_path: Path) -> str:
        ...


def _timer_schedule(delay: float, callback: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()
    return timer


def _thread_starter(target: Callable[[], None]) -> threading.Thread:
    thread = threading.Thread(target=target, name="publish-worker", daemon=True)
    thread.start()
    return thread


class JobQueue:
    """In-memory FIFO with exactly one job in flight process-wide.

    ``enqueue`` returns immediately; status is polled through :meth:`status`.
    Whatever happens to a job, the worker drains the next one, and the
    session directory plus the rendered video are removed after
    ``cleanup_delay`` seconds.
    """

    def __init__(
        self,
        assembler: Assembler,
        publisher: JobPublisher,
        *,
        output_dir: Path = config.UPLOADS_DIR,
        cleanup_delay: float = config.CLEANUP_DELAY_SECONDS,
        status_ttl: float = config.STATUS_TTL_SECONDS,
        schedule: Scheduler = _timer_schedule,
        start_worker: WorkerStarter = _thread_starter,
        notifier: Callable[[str, str, str], None] = notify_job_failed,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.assembler = assembler
        self.publisher = publisher
        self.output_dir = Path(output_dir)
        self.cleanup_delay = cleanup_delay
        self.status_ttl = status_ttl
        self._schedule = schedule
        self._start_worker = start_worker
        self._notifier = notifier
        self._clock = clock

        self._pending: Deque[PublishJob] = deque()
        self._statuses: Dict[str, JobStatus] = {}
        self._current: Optional[str] = None
        self._busy = False
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    def enqueue(self, job: PublishJob) -> None:
        with self._lock:
            self._statuses[job.session_id] = JobStatus(JobState.QUEUED, "Your video is in the queue.")
            self._pending.append(job)
        logger.info("Queued session %s for %s (%d pending)", job.session_id, job.platform, self.pending_count)
        self._drain()

    def status(self, session_id: str) -> Optional[JobStatus]:
        with self._lock:
            return self._statuses.get(session_id)

    def is_active(self, session_id: str) -> bool:
        """Return True while ``session_id`` is queued or in flight."""

        with self._lock:
            if self._current == session_id:
                return True
            if any(job.session_id == session_id for job in self._pending):
                return True
            status = self._statuses.get(session_id)
            return status is not None and status.state in ACTIVE_STATES

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def busy(self) -> bool:
        with self._lock:
            return self._busy

    # ------------------------------------------------------------------
    def _set_status(self, session_id: str, status: JobStatus) -> None:
        with self._lock:
            self._statuses[session_id] = status
        if status.state.terminal:
            self._schedule(self.status_ttl, lambda: self._expire_status(session_id, status))

    def _expire_status(self, session_id: str, status: JobStatus) -> None:
        with self._lock:
            if self._statuses.get(session_id) is status:
                del self._statuses[session_id]

    def _drain(self) -> None:
        with self._lock:
            if self._busy or not self._pending:
                return
            job = self._pending.popleft()
            self._busy = True
            self._current = job.session_id
        try:
            self._start_worker(lambda: self._run(job))
        except Exception:
            logger.exception("Failed to start queue processing for session %s", job.session_id)
            with self._lock:
                self._pending.appendleft(job)
                self._busy = False
                self._current = None

    def _run(self, job: PublishJob) -> None:
        output = self.output_dir / f"{job.session_id}_{int(time.time() * 1000)}.mp4"
        try:
            self._set_status(job.session_id, JobStatus(JobState.PROCESSING, "Creating video file..."))
            with Timer(clock=self._clock) as creation:
                video = self.assembler.assemble(
                    job.session_dir,
                    job.audio_path,
                    job.image_path,
                    overlay=job.overlay,
                    plan=job.plan,
                    output_path=output,
                )

            self._set_status(
                job.session_id,
                JobStatus(JobState.UPLOADING, f"Uploading to {job.platform.capitalize()}..."),
            )
            with Timer(clock=self._clock) as upload:
                url = self.publisher.publish(job, video)

            self._set_status(
                job.session_id,
                JobStatus(
                    JobState.COMPLETE,
                    "Upload Complete!",
                    video_url=url,
                    creation_time=creation.seconds,
                    upload_time=upload.seconds,
                ),
            )
            logger.info("Session %s published: %s", job.session_id, url)
        except Exception as exc:
            logger.exception("Job for session %s failed", job.session_id)
            self._set_status(job.session_id, JobStatus(JobState.FAILED, f"An error occurred: {exc}"))
            self._notifier(job.session_id, job.platform, str(exc))
        finally:
            session_dir = job.session_dir
            self._schedule(self.cleanup_delay, lambda: remove_paths([session_dir, output]))
            with self._lock:
                self._busy = False
                self._current = None
            self._drain()


__all__ = [
    "ACTIVE_STATES",
    "JobQueue",
    "JobState",
    "JobStatus",
    "PublishJob",
    "parse_tags",
]
