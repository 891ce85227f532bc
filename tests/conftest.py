"""Test configuration helpers for import path setup and shared fakes."""

from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]

root_path = str(ROOT)

if root_path not in sys.path:
    sys.path.insert(0, root_path)

from common.document_store import MemoryDocumentStore  # noqa: E402
from server.channels import ChannelRegistry  # noqa: E402
from server.config import AllocatorConfig  # noqa: E402
from server.credentials import CredentialInstance, CredentialPool, UsageStore  # noqa: E402
from server.errors import AlreadyConnectedError, AssemblyError, PublisherError  # noqa: E402
from server.publishers.base import ConnectedChannel, PostRequest, PostResult, Publisher  # noqa: E402

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


class ManualClock:
    """Clock returning a fixed instant until advanced."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)


class FakePublisher(Publisher):
    def __init__(self, name: str) -> None:
        self.name = name
        self.conflicts: set[str] = set()
        self.connect_errors: Dict[str, Exception] = {}
        self.channels: List[ConnectedChannel] = []
        self.disconnects: List[str] = []
        self.connect_calls: List[tuple[str, str]] = []
        self.uploads: List[Path] = []
        self.posts: List[PostRequest] = []
        self.post_result = PostResult(success=True, url=f"https://posts.example/{name}/1")
        self.fail_disconnect = False
        self.cached_team_id: Optional[str] = f"team-{name}"

    def connect_url(self, platform: str, redirect_url: str) -> Optional[str]:
        self.connect_calls.append((platform, redirect_url))
        if platform in self.connect_errors:
            raise self.connect_errors[platform]
        if platform in self.conflicts:
            raise AlreadyConnectedError(f"{platform} already connected")
        return f"https://connect.example/{self.name}/{platform}"

    def disconnect(self, platform: str) -> None:
        self.disconnects.append(platform)
        self.conflicts.discard(platform)
        if self.fail_disconnect:
            raise PublisherError("remote refused")

    def list_connected_channels(self, platform: Optional[str] = None) -> List[ConnectedChannel]:
        return [c for c in self.channels if platform is None or c.platform == platform]

    def upload(self, video_path: Path) -> str:
        self.uploads.append(Path(video_path))
        return f"media-{len(self.uploads)}"

    def post(self, request: PostRequest) -> PostResult:
        self.posts.append(request)
        return self.post_result


class RecordingTranscoder:
    """Stands in for ffmpeg: records argument lists and writes output files."""

    def __init__(self, durations: Optional[Dict[str, float]] = None) -> None:
        self.calls: List[tuple[str, List[str]]] = []
        self.durations = durations or {}
        self.failures: Dict[str, int] = {}
        self.default_duration: Optional[float] = None

    def run(self, args, *, step: str = "ffmpeg") -> None:
        self.calls.append((step, list(args)))
        remaining = self.failures.get(step, 0)
        if remaining:
            self.failures[step] = remaining - 1
            raise AssemblyError(f"{step} failed: boom")
        Path(args[-1]).write_bytes(b"media")

    def probe_duration(self, path) -> Optional[float]:
        return self.durations.get(Path(path).name, self.default_duration)

    def steps(self) -> List[str]:
        return [step for step, _ in self.calls]

    def args_for(self, step: str) -> List[str]:
        return next(args for name, args in self.calls if name == step)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def settings() -> AllocatorConfig:
    return AllocatorConfig()


@pytest.fixture
def usage(clock: ManualClock) -> UsageStore:
    return UsageStore(MemoryDocumentStore(), clock=clock)


@pytest.fixture
def registry() -> ChannelRegistry:
    return ChannelRegistry(MemoryDocumentStore())


@pytest.fixture
def make_pool(usage: UsageStore, settings: AllocatorConfig, registry: ChannelRegistry) -> Callable[..., CredentialPool]:
    def _make(count: int = 3) -> CredentialPool:
        instances = [
            CredentialInstance(id=f"bundle-{i}", key=f"key-{i}", publisher=FakePublisher(f"p{i}"))
            for i in range(1, count + 1)
        ]
        return CredentialPool(instances, usage, settings=settings, channels=registry)

    return _make


@pytest.fixture
def transcoder() -> RecordingTranscoder:
    return RecordingTranscoder()
