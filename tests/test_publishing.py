"""Tests for uploading and posting through the owning credential."""

from __future__ import annotations

from pathlib import Path

import pytest

from server import config
from server.errors import PublisherError
from server.jobs import PublishJob
from server.publishers.base import PostResult
from server.publishing import PublishService


def _job(platform: str, **overrides) -> PublishJob:
    values = dict(
        session_id="s1",
        audio_path=Path("s1/audio_1.mp3"),
        image_path=Path("s1/image.jpg"),
        channel_id="chan-1",
        platform=platform,
        title="My Song",
        tags=("rock",),
    )
    values.update(overrides)
    return PublishJob(**values)


@pytest.fixture
def pool(make_pool, clock):
    pool = make_pool(2)
    owner = pool.instances[1]
    for platform in ("facebook", "youtube"):
        pool.mark_connected(owner, platform, True)
    pool.usage.touch_channel(owner.key, "chan-1", "youtube")
    return pool


def test_awaited_post_returns_post_url_and_counts_upload(pool) -> None:
    owner = pool.instances[1]
    service = PublishService(pool, detached_platforms={"facebook"})

    url = service.publish(_job("youtube"), Path("out.mp4"))

    assert url == "https://posts.example/p2/1"
    assert owner.publisher.uploads == [Path("out.mp4")]
    request = owner.publisher.posts[0]
    assert request.media_id == "media-1"
    assert request.text == "My Song"
    assert request.tags == ("rock",)
    assert pool.record(owner).uploads_this_month == 1
    assert pool.instances[0].publisher.uploads == []


def test_failed_awaited_post_raises(pool) -> None:
    pool.instances[1].publisher.post_result = PostResult(success=False, error="quota exceeded")

    with pytest.raises(PublisherError, match="quota exceeded"):
        PublishService(pool, detached_platforms=()).publish(_job("youtube"), Path("out.mp4"))


def test_detached_post_completes_before_posting(pool) -> None:
    owner = pool.instances[1]
    tasks: list = []
    service = PublishService(pool, detached_platforms={"youtube"}, run_detached=tasks.append)

    url = service.publish(_job("youtube"), Path("out.mp4"))

    assert url == f"{config.BUNDLE_DASHBOARD_URL}/teams/team-p2/posts"
    assert owner.publisher.posts == []
    tasks[0]()
    assert len(owner.publisher.posts) == 1


def test_detached_post_failure_is_only_logged(pool) -> None:
    owner = pool.instances[1]
    owner.publisher.post_result = PostResult(success=False, error="rejected")
    tasks: list = []
    service = PublishService(pool, detached_platforms={"youtube"}, run_detached=tasks.append)

    service.publish(_job("youtube"), Path("out.mp4"))
    tasks[0]()

    assert pool.record(owner).uploads_this_month == 1


def test_retiring_publication_frees_the_slot(pool) -> None:
    owner = pool.instances[1]

    PublishService(pool, detached_platforms=()).publish(_job("youtube", retire_channel=True), Path("out.mp4"))

    record = pool.record(owner)
    assert "chan-1" not in record.channels
    assert record.youtube_connected is False
    assert owner.publisher.disconnects == ["youtube"]


def test_unknown_channel_owner_is_an_error(pool) -> None:
    with pytest.raises(PublisherError, match="No connected account"):
        PublishService(pool).publish(_job("youtube", channel_id="missing"), Path("out.mp4"))
