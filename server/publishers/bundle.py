"""REST client for bundle.social, one instance per API key."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests
from requests import Response, Session
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from common.limits import DEFAULT_POST_TEXT, DEFAULT_POST_TITLE, PLATFORM_LIMITS

from .. import config
from ..errors import AlreadyConnectedError, PublisherError
from .base import ConnectedChannel, PostRequest, PostResult, Publisher

DEFAULT_THUMBNAILS = {
    "facebook": "https://www.facebook.com/favicon.ico",
    "youtube": "https://www.youtube.com/favicon.ico",
}

_CONFLICT_MARKERS = ("already connected", "already exists", "already linked")


def _build_session(api_key: str) -> Session:
    session = requests.Session()
    retry = Retry(
        total=3,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=("GET",),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.headers.update({"x-api-key": api_key, "Accept": "application/json"})
    return session


def _remote_type(platform: str) -> str:
    return platform.upper()


def _error_message(response: Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:300] or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        message = body.get("message") or body.get("error")
        if isinstance(message, list):
            message = "; ".join(str(m) for m in message)
        if message:
            return str(message)
    return str(body)[:300]


class BundleSocialPublisher(Publisher):
    """Talks to the bundle.social API on behalf of a single credential.

    The team id is resolved lazily and memoized for the process lifetime.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = config.BUNDLE_API_URL,
        dashboard_url: str = config.BUNDLE_DASHBOARD_URL,
        team_name: str = config.BUNDLE_TEAM_NAME,
        timeout: float = config.REQUEST_TIMEOUT_SECONDS,
        upload_timeout: float = config.UPLOAD_TIMEOUT_SECONDS,
        session: Optional[Session] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.dashboard_url = dashboard_url.rstrip("/")
        self.team_name = team_name
        self.timeout = timeout
        self.upload_timeout = upload_timeout
        self.session = session or _build_session(api_key)
        self.logger = logger or logging.getLogger(__name__)
        self._team_id: Optional[str] = None
        self._team_lock = threading.Lock()

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------
    def _request(self, method: str, path: str, *, timeout: Optional[float] = None, **kwargs: Any) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = self.session.request(method, url, timeout=timeout or self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise PublisherError(f"bundle.social request failed: {exc}") from exc
        if response.status_code >= 400:
            message = _error_message(response)
            if response.status_code in (400, 403, 409) and any(
                marker in message.lower() for marker in _CONFLICT_MARKERS
            ):
                raise AlreadyConnectedError(message)
            raise PublisherError(message, status_code=response.status_code)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise PublisherError("bundle.social returned a non-JSON response") from exc

    # ------------------------------------------------------------------
    # Team resolution
    # ------------------------------------------------------------------
    @property
    def cached_team_id(self) -> Optional[str]:
        return self._team_id

    def team_id(self) -> str:
        """Return the team id, listing, creating or falling back to the organization."""

        with self._team_lock:
            if self._team_id:
                return self._team_id
            self._team_id = self._resolve_team_id()
            self.logger.info("Using bundle.social team %s", self._team_id)
            return self._team_id

    def _resolve_team_id(self) -> str:
        listing = self._request("GET", "team/")
        items = listing.get("items") if isinstance(listing, dict) else None
        if items:
            return str(items[0]["id"])

        self.logger.info("No teams found; creating %r", self.team_name)
        try:
            created = self._request("POST", "team/", json={"name": self.team_name})
        except PublisherError as exc:
            if exc.status_code != 403 or "limit is 1" not in str(exc).lower():
                raise
            self.logger.warning("Team creation limit reached; looking up the organization's team")
            organization = self._request("GET", "organization/")
            teams = organization.get("teams") if isinstance(organization, dict) else None
            if teams:
                return str(teams[0]["id"])
            raise PublisherError("No bundle.social team is available") from exc
        if isinstance(created, dict) and created.get("id"):
            return str(created["id"])
        raise PublisherError("bundle.social did not return a team id")

    def _team(self) -> Dict[str, Any]:
        team = self._request("GET", f"team/{self.team_id()}")
        return team if isinstance(team, dict) else {}

    # ------------------------------------------------------------------
    # Publisher capability
    # ------------------------------------------------------------------
    def connect_url(self, platform: str, redirect_url: str) -> Optional[str]:
        response = self._request(
            "POST",
            "social-account/connect",
            json={"teamId": self.team_id(), "type": _remote_type(platform), "redirectUrl": redirect_url},
        )
        url = response.get("url") if isinstance(response, dict) else None
        return str(url) if url else None

    def disconnect(self, platform: str) -> None:
        self._request(
            "DELETE",
            "social-account/disconnect",
            json={"teamId": self.team_id(), "type": _remote_type(platform)},
        )

    def list_connected_channels(self, platform: Optional[str] = None) -> List[ConnectedChannel]:
        channels: List[ConnectedChannel] = []
        for account in self._team().get("socialAccounts") or []:
            kind = str(account.get("type", "")).lower()
            if kind not in config.PLATFORMS or (platform and kind != platform):
                continue
            account_id = str(account.get("id"))
            fallback_thumb = account.get("avatarUrl") or account.get("pictureUrl") or DEFAULT_THUMBNAILS[kind]
            subchannels = account.get("channels") or []
            if subchannels:
                for channel in subchannels:
                    channels.append(
                        ConnectedChannel(
                            channel_id=str(channel.get("id")),
                            title=channel.get("name") or account.get("displayName") or account.get("name") or "",
                            thumbnail=channel.get("avatarUrl") or channel.get("pictureUrl") or fallback_thumb,
                            platform=kind,
                            account_id=account_id,
                        )
                    )
            else:
                channels.append(
                    ConnectedChannel(
                        channel_id=account_id,
                        title=account.get("displayName") or account.get("name") or "",
                        thumbnail=fallback_thumb,
                        platform=kind,
                        account_id=account_id,
                    )
                )
        return channels

    def upload(self, video_path: Path) -> str:
        video_path = Path(video_path)
        size_mb = video_path.stat().st_size / (1024 * 1024)
        self.logger.info("Uploading %s (%.2f MB) to bundle.social", video_path.name, size_mb)
        with video_path.open("rb") as handle:
            response = self._request(
                "POST",
                "upload/",
                data={"teamId": self.team_id()},
                files={"file": (video_path.name, handle, "video/mp4")},
                timeout=self.upload_timeout,
            )
        media_id = response.get("id") if isinstance(response, dict) else None
        if not media_id:
            raise PublisherError("bundle.social upload returned no media id")
        return str(media_id)

    def _ensure_active_channel(self, platform: str, channel_id: str) -> None:
        try:
            self._request(
                "PATCH",
                "social-account/set-channel",
                json={"teamId": self.team_id(), "type": _remote_type(platform), "channelId": channel_id},
            )
        except PublisherError as exc:
            self.logger.warning("Failed to set active channel %s: %s", channel_id, exc)

    def _post_payload(self, request: PostRequest, team_id: str) -> Dict[str, Any]:
        limits = PLATFORM_LIMITS.get(request.platform, {})
        text = request.text if request.text and request.text.strip() else DEFAULT_POST_TEXT
        text = text[: limits.get("text", len(text))]
        title = (request.title or text)[: limits.get("title", 50)].strip() or DEFAULT_POST_TITLE
        post_date = request.scheduled_at or (
            datetime.now(timezone.utc) + timedelta(seconds=config.POST_DATE_BUFFER_SECONDS)
        ).isoformat()

        remote = _remote_type(request.platform)
        data: Dict[str, Any] = {"text": text, "uploadIds": [request.media_id]}
        if request.platform == "youtube":
            data.update(
                {
                    "type": "VIDEO",
                    "text": title,
                    "description": text,
                    "privacy": request.visibility.upper(),
                }
            )
            if request.tags:
                joined = ",".join(request.tags)[: limits.get("tags", 500)]
                data["tags"] = [tag for tag in joined.split(",") if tag]
        else:
            data["privacy"] = "PUBLIC"

        return {
            "teamId": team_id,
            "title": title,
            "socialAccountTypes": [remote],
            "postDate": post_date,
            "status": "SCHEDULED",
            "data": {remote: data},
        }

    def post(self, request: PostRequest) -> PostResult:
        try:
            team_id = self.team_id()
            account = self._owning_account(request.platform, request.channel_id)
            if account is None:
                raise PublisherError("Social account not found for this channel ID")
            if str(account.get("id")) != request.channel_id:
                self._ensure_active_channel(request.platform, request.channel_id)
            response = self._request("POST", "post/", json=self._post_payload(request, team_id))
        except PublisherError as exc:
            self.logger.error("Error creating %s post: %s", request.platform, exc)
            return PostResult(success=False, error=str(exc))
        post_id = response.get("id") if isinstance(response, dict) else None
        return PostResult(
            success=True,
            url=f"{self.dashboard_url}/teams/{team_id}/posts/{post_id}",
            data=response if isinstance(response, dict) else {},
        )

    def _owning_account(self, platform: str, channel_id: str) -> Optional[Dict[str, Any]]:
        remote = _remote_type(platform)
        for account in self._team().get("socialAccounts") or []:
            if account.get("type") != remote:
                continue
            if str(account.get("id")) == channel_id:
                return account
            if any(str(ch.get("id")) == channel_id for ch in account.get("channels") or []):
                return account
        return None


__all__ = ["BundleSocialPublisher", "DEFAULT_THUMBNAILS"]
