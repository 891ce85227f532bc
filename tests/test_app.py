"""HTTP tests for the FastAPI surface."""

from __future__ import annotations

import asyncio
import time
from datetime import timedelta
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from common.document_store import MemoryDocumentStore
from server import app as app_module
from server.allocator import SlotAllocator
from server.automation import AutomationScheduler
from server.jobs import JobQueue
from server.publishers.base import ConnectedChannel
from server.reaper import IdleReaper
from server.sessions import AssetStore


class IdleAssembler:
    def assemble(self, *args, **kwargs):
        raise AssertionError("worker should not run in these tests")


@pytest.fixture
def services(tmp_path: Path, make_pool, clock, registry, transcoder):
    temp = tmp_path / "temp"
    temp.mkdir()
    pool = make_pool(2)
    started: list = []
    queue = JobQueue(
        IdleAssembler(),
        publisher=None,
        output_dir=tmp_path / "uploads",
        schedule=lambda delay, callback: None,
        start_worker=started.append,
    )
    built = app_module.Services(
        assets=AssetStore(temp, public_root=tmp_path, transcoder=transcoder),
        queue=queue,
        pool=pool,
        allocator=SlotAllocator(pool, clock=clock),
        reaper=IdleReaper(pool, clock=clock),
        automation=AutomationScheduler(MemoryDocumentStore(), clock=clock),
        channels=registry,
    )
    app_module.set_services(built)
    yield built
    app_module.set_services(None)


@pytest.fixture
def client(services) -> TestClient:
    return TestClient(app_module.app)


def _session(services, session_id: str = "sess1") -> None:
    folder = services.assets.root / session_id
    folder.mkdir()
    (folder / "audio_1.mp3").write_bytes(b"mp3")
    (folder / "image.jpg").write_bytes(b"jpg")


def test_session_status_requires_id(client: TestClient) -> None:
    response = client.get("/session-status")
    assert response.status_code == 400
    assert response.json()["detail"] == "Session ID is missing."


def test_session_status_summarises_assets(client: TestClient, services, transcoder) -> None:
    _session(services)
    transcoder.default_duration = 65.0

    body = client.get("/session-status", params={"sessionId": "sess1"}).json()

    assert body["audioCount"] == 1
    assert body["totalDuration"] == "1:05"


def test_create_video_queues_job(client: TestClient, services) -> None:
    _session(services)

    response = client.post(
        "/create-video",
        json={"sessionId": "sess1", "channelId": "page-1", "title": "Song", "tags": "a, b"},
    )

    assert response.status_code == 202
    assert response.json()["sessionId"] == "sess1"
    status = client.get("/job-status/sess1").json()
    assert status == {"status": "queued", "message": "Your video is in the queue."}


def test_create_video_for_missing_session_is_rejected(client: TestClient) -> None:
    response = client.post("/create-video", json={"sessionId": "nope", "channelId": "page-1"})
    assert response.status_code == 400
    assert "expired" in response.json()["detail"]


def test_create_video_rejects_unknown_platform(client: TestClient, services) -> None:
    _session(services)
    response = client.post("/create-video", json={"sessionId": "sess1", "channelId": "c", "platform": "myspace"})
    assert response.status_code == 422


def test_unknown_job_is_404(client: TestClient) -> None:
    assert client.get("/job-status/ghost").status_code == 404


def test_automation_endpoint_reports_schedule(client: TestClient, services) -> None:
    _session(services)

    body = client.post(
        "/automation/create-video",
        json={"sessionId": "sess1", "channelId": "chan-1", "platform": "youtube", "userId": "u1"},
    ).json()

    assert body["retireChannel"] is False
    assert services.automation.position("u1") == 1


def test_connect_returns_grant(client: TestClient) -> None:
    response = client.get("/connect/facebook", params={"redirect": "https://app/cb", "userId": "u 1"})

    assert response.status_code == 200
    assert response.json() == {"url": "https://connect.example/p1/facebook", "instanceId": "bundle-1"}


def test_connect_unknown_platform_is_400(client: TestClient) -> None:
    assert client.get("/connect/myspace", params={"redirect": "https://app/cb"}).status_code == 400


def test_connect_when_busy_reports_reason(client: TestClient, services, clock) -> None:
    for instance in services.pool.instances:
        services.pool.mark_connected(instance, "facebook", True)
        services.pool.usage.touch_channel(instance.key, f"page-{instance.id}", "facebook", when=clock.now - timedelta(minutes=1))

    response = client.get("/connect/facebook", params={"redirect": "https://app/cb"})

    assert response.status_code == 503
    assert response.json()["detail"]["reason"] == "busy"


def test_connect_without_quota_reports_no_capacity(client: TestClient, services) -> None:
    for instance in services.pool.instances:
        for _ in range(services.pool.settings.monthly_upload_quota):
            services.pool.usage.record_upload(instance.key)

    response = client.get("/connect/youtube", params={"redirect": "https://app/cb"})

    assert response.status_code == 503
    assert response.json()["detail"]["reason"] == "no_capacity"


def test_callback_syncs_channels_and_lists_them(client: TestClient, services) -> None:
    instance = services.pool.instances[0]
    instance.publisher.channels = [ConnectedChannel("page-1", "Band", "t.png", "facebook", "acct")]

    body = client.get("/connect/callback", params={"instanceId": "bundle-1", "userId": "u1"}).json()

    assert body["channels"][0]["channelId"] == "page-1"
    listed = client.get("/channels", params={"userId": "u1"}).json()
    assert listed == [
        {"channelId": "page-1", "channelTitle": "Band", "thumbnail": "t.png", "platform": "facebook", "status": "active"}
    ]


def test_callback_for_unknown_instance_is_404(client: TestClient) -> None:
    assert client.get("/connect/callback", params={"instanceId": "bundle-9"}).status_code == 404


def test_delete_channel(client: TestClient, services) -> None:
    instance = services.pool.instances[0]
    instance.publisher.channels = [ConnectedChannel("page-1", "Band", "t.png", "facebook", "acct")]
    client.get("/connect/callback", params={"instanceId": "bundle-1", "userId": "u1"})

    assert client.post("/delete-channel", json={"channelId": "page-1"}).json() == {"success": True}
    assert instance.publisher.disconnects == ["facebook"]
    assert client.post("/delete-channel", json={"channelId": "page-1"}).status_code == 404


def test_slow_connect_does_not_stall_other_requests(services, monkeypatch) -> None:
    def slow_connect_url(platform: str, redirect_url: str) -> str:
        time.sleep(0.4)
        return "https://connect.example/slow"

    monkeypatch.setattr(services.pool.instances[0].publisher, "connect_url", slow_connect_url)

    async def scenario() -> float:
        started = time.monotonic()
        ticked: list[float] = []

        async def ticker() -> None:
            await asyncio.sleep(0.05)
            ticked.append(time.monotonic() - started)

        grant, _ = await asyncio.gather(
            app_module.connect("facebook", redirect="https://app/cb", user_id=None),
            ticker(),
        )
        assert grant["url"] == "https://connect.example/slow"
        return ticked[0]

    assert asyncio.run(scenario()) < 0.2
