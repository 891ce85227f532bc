"""FastAPI application exposing video creation, job status and channel connection."""

from __future__ import annotations

import asyncio
import logging
import threading
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field, field_validator

from common.document_store import JsonDocumentStore

from . import config
from .allocator import SlotAllocator, with_query
from .assembler import VideoAssembler
from .automation import AutomationScheduler
from .channels import ChannelRegistry
from .credentials import CredentialInstance, CredentialPool, UsageStore
from .errors import CapacityError, MissingAssetError, PublisherError
from .jobs import JobQueue, PublishJob, parse_tags
from .publishers.bundle import BundleSocialPublisher
from .publishing import PublishService
from .reaper import IdleReaper
from .sessions import AssetStore
from .transcoder import FfmpegTranscoder

logger = logging.getLogger(__name__)

handler = logging.StreamHandler()
handler.setFormatter(logging.Formatter("[%(asctime)s] %(levelname)s: %(message)s"))
_root_logger = logging.getLogger()
if not _root_logger.handlers:
    _root_logger.addHandler(handler)
    _root_logger.setLevel(logging.INFO)


@dataclass
class Services:
    assets: AssetStore
    queue: JobQueue
    pool: CredentialPool
    allocator: SlotAllocator
    reaper: IdleReaper
    automation: AutomationScheduler
    channels: ChannelRegistry


def build_services() -> Services:
    """Wire the production services from :mod:`server.config`."""

    transcoder = FfmpegTranscoder()
    channels = ChannelRegistry(JsonDocumentStore(config.CHANNELS_FILE))
    usage = UsageStore(JsonDocumentStore(config.LEDGER_FILE, fernet_key=config.LEDGER_FERNET_KEY))
    instances = [
        CredentialInstance(id=f"bundle-{index}", key=key, publisher=BundleSocialPublisher(key))
        for index, key in enumerate(config.BUNDLE_API_KEYS, start=1)
    ]
    if not instances:
        logger.warning("No BUNDLE_API_KEYS configured; connecting channels will fail")
    pool = CredentialPool(instances, usage, settings=config.ALLOCATOR, channels=channels)
    queue = JobQueue(VideoAssembler(transcoder), PublishService(pool))
    return Services(
        assets=AssetStore(config.TEMP_DIR, public_root=config.PUBLIC_ROOT, transcoder=transcoder),
        queue=queue,
        pool=pool,
        allocator=SlotAllocator(pool, settings=config.ALLOCATOR),
        reaper=IdleReaper(pool, settings=config.ALLOCATOR),
        automation=AutomationScheduler(JsonDocumentStore(config.AUTOMATION_FILE)),
        channels=channels,
    )


_services: Optional[Services] = None
_services_lock = threading.Lock()


def set_services(services: Optional[Services]) -> None:
    global _services
    with _services_lock:
        _services = services


def get_services() -> Services:
    global _services
    with _services_lock:
        if _services is None:
            _services = build_services()
        return _services


def _sweep_sessions(stop: threading.Event) -> None:
    interval = min(config.ABANDONED_SESSION_MAX_AGE_SECONDS, 6 * 60 * 60)
    while not stop.wait(interval):
        services = get_services()
        try:
            services.assets.reap_abandoned(services.queue.is_active)
        except OSError:
            logger.exception("Abandoned session sweep failed")


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    for folder in (config.TEMP_DIR, config.UPLOADS_DIR, config.DATA_DIR):
        folder.mkdir(parents=True, exist_ok=True)
    services = get_services()
    services.reaper.start()
    stop = threading.Event()
    sweeper = threading.Thread(target=_sweep_sessions, args=(stop,), name="session-sweeper", daemon=True)
    sweeper.start()
    try:
        yield
    finally:
        stop.set()
        services.reaper.stop()


app = FastAPI(title="MP3toYT Publishing API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class CreateVideoRequest(BaseModel):
    """Payload asking for a session to be rendered and published."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId", min_length=1, max_length=128)
    channel_id: str = Field(alias="channelId", min_length=1)
    platform: str = Field(default="facebook")
    title: str = Field(default="", max_length=500)
    description: str = Field(default="")
    tags: List[str] = Field(default_factory=list)
    visibility: str = Field(default="public")
    publish_at: Optional[str] = Field(default=None, alias="publishAt")
    overlay: Optional[Dict[str, Any]] = Field(default=None)
    plan: str = Field(default=config.FREE_PLAN)

    @field_validator("tags", mode="before")
    @classmethod
    def _parse_tags(cls, value: Any) -> List[str]:
        return list(parse_tags(value))

    @field_validator("platform")
    @classmethod
    def _known_platform(cls, value: str) -> str:
        value = value.lower()
        if value not in config.PLATFORMS:
            raise ValueError(f"Unsupported platform: {value}")
        return value

    @field_validator("plan")
    @classmethod
    def _known_plan(cls, value: str) -> str:
        value = (value or config.FREE_PLAN).lower()
        return value if value in config.PLANS else config.FREE_PLAN


class AutomationVideoRequest(CreateVideoRequest):
    user_id: str = Field(alias="userId", min_length=1, max_length=128)


class DeleteChannelRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    channel_id: str = Field(alias="channelId", min_length=1)


def _build_job(services: Services, payload: CreateVideoRequest) -> PublishJob:
    try:
        assets = services.assets.require_assets(payload.session_id)
        overlay = services.assets.resolve_overlay(payload.overlay)
    except MissingAssetError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return PublishJob(
        session_id=payload.session_id,
        audio_path=assets.audio_path,
        image_path=assets.image_path,
        channel_id=payload.channel_id,
        platform=payload.platform,
        title=payload.title,
        description=payload.description,
        tags=tuple(payload.tags),
        visibility=payload.visibility,
        publish_at=payload.publish_at,
        overlay=overlay,
        plan=payload.plan,
    )


@app.get("/session-status")
async def session_status(session_id: str = Query(default="", alias="sessionId")) -> Dict[str, Any]:
    """Summarise the assets uploaded for ``sessionId`` so far."""

    if not session_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Session ID is missing.")
    try:
        summary = await asyncio.to_thread(get_services().assets.summary, session_id)
    except MissingAssetError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return summary.to_payload()


@app.post("/create-video", status_code=status.HTTP_202_ACCEPTED)
async def create_video(payload: CreateVideoRequest) -> Dict[str, Any]:
    services = get_services()
    job = _build_job(services, payload)
    services.queue.enqueue(job)
    return {
        "success": True,
        "message": "Your video has been added to the queue.",
        "sessionId": job.session_id,
    }


@app.post("/automation/create-video", status_code=status.HTTP_202_ACCEPTED)
async def create_automated_video(payload: AutomationVideoRequest) -> Dict[str, Any]:
    """Queue a video whose schedule comes from the user's automation cycle."""

    services = get_services()
    job = services.automation.prepare(payload.user_id, _build_job(services, payload))
    services.queue.enqueue(job)
    return {
        "success": True,
        "message": "Your video has been added to the queue.",
        "sessionId": job.session_id,
        "publishAt": job.publish_at,
        "retireChannel": job.retire_channel,
    }


@app.get("/job-status/{session_id}")
async def job_status(session_id: str) -> Dict[str, Any]:
    current = get_services().queue.status(session_id)
    if current is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found.")
    return current.to_payload()


# Registered before ``/connect/{platform}`` so "callback" is not read as a platform
@app.get("/connect/callback")
async def connect_callback(
    instance_id: str = Query(..., alias="instanceId"),
    user_id: Optional[str] = Query(default=None, alias="userId"),
) -> Dict[str, Any]:
    """Record the channels that became visible after an authorization round trip."""

    services = get_services()
    instance = services.pool.get(instance_id)
    if instance is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown credential instance.")
    channels = await asyncio.to_thread(services.allocator.sync_instance, instance, user_id=user_id)
    return {"success": True, "channels": [channel.to_dict() for channel in channels]}


@app.get("/connect/{platform}")
async def connect(
    platform: str,
    redirect: str = Query(..., min_length=1),
    user_id: Optional[str] = Query(default=None, alias="userId"),
) -> Dict[str, Any]:
    """Return the authorization URL for a new ``platform`` connection."""

    platform = platform.lower()
    if platform not in config.PLATFORMS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unsupported platform: {platform}")
    target = with_query(redirect, "userId", user_id) if user_id else redirect
    try:
        grant = await asyncio.to_thread(get_services().allocator.connect_url, platform, target)
    except CapacityError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"reason": exc.reason, "message": str(exc)},
        ) from exc
    except PublisherError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return {"url": grant.url, "instanceId": grant.instance.id}


@app.get("/channels")
async def list_channels(
    user_id: Optional[str] = Query(default=None, alias="userId"),
    refresh: bool = Query(default=False),
) -> List[Dict[str, Any]]:
    services = get_services()
    if refresh:
        await asyncio.to_thread(services.allocator.sync_all)
    return [channel.to_payload() for channel in services.channels.list(user_id=user_id)]


@app.post("/delete-channel")
async def delete_channel(payload: DeleteChannelRequest) -> Dict[str, Any]:
    if not await asyncio.to_thread(get_services().pool.retire_channel, payload.channel_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Channel not found.")
    return {"success": True}


__all__ = [
    "AutomationVideoRequest",
    "CreateVideoRequest",
    "DeleteChannelRequest",
    "Services",
    "app",
    "build_services",
    "get_services",
    "set_services",
]
