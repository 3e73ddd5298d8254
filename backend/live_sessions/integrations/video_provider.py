"""Video room provider integration.

Rooms are created when a live session starts and ended when it completes.
The production adapter talks to the 100ms REST API; management requests are
authenticated with a short-lived HS256 JWT signed with the app secret.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import time
from typing import Any, Optional, Protocol, cast
import uuid

import httpx
import jwt
from pydantic import SecretStr

from ..core.exceptions import ExternalServiceException

logger = logging.getLogger(__name__)

SERVICE_NAME = "video_provider"


@dataclass(frozen=True)
class RoomRef:
    room_id: str
    join_url: Optional[str] = None


class VideoProvider(Protocol):
    def create_room(self, session_id: str, host_id: str) -> RoomRef:
        ...

    def end_room(self, room_ref: RoomRef) -> None:
        ...

    def get_recording(self, room_ref: RoomRef) -> Optional[str]:
        ...


class HundredMsVideoProvider:
    """100ms-backed video provider."""

    def __init__(
        self,
        *,
        access_key: str,
        app_secret: str | SecretStr,
        base_url: str = "https://api.100ms.live/v2",
        meeting_base_url: str = "https://meet.100ms.live",
        template_id: str | None = None,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._access_key = access_key
        self._app_secret = (
            app_secret.get_secret_value() if isinstance(app_secret, SecretStr) else app_secret
        )
        self._base_url = base_url.rstrip("/")
        self._meeting_base_url = meeting_base_url.rstrip("/")
        self._template_id = template_id
        self._timeout = timeout
        self._transport = transport
        self._token: str | None = None
        self._token_refresh_at = 0.0

    def _management_token(self) -> str:
        """Signed management token, rotated ten minutes before its one-hour expiry."""
        now_mono = time.monotonic()
        if self._token is not None and now_mono < self._token_refresh_at:
            return self._token
        issued = int(time.time())
        self._token = jwt.encode(
            {
                "access_key": self._access_key,
                "type": "management",
                "version": 2,
                "jti": str(uuid.uuid4()),
                "iat": issued,
                "nbf": issued,
                "exp": issued + 3600,
            },
            self._app_secret,
            algorithm="HS256",
        )
        self._token_refresh_at = now_mono + 50 * 60
        return self._token

    def _call(
        self,
        method: str,
        path: str,
        *,
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = f"{self._base_url}/{path.lstrip('/')}"
        headers = {"Authorization": f"Bearer {self._management_token()}"}
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.request(method, url, headers=headers, json=body, params=params)
        except httpx.TransportError as exc:
            logger.error("100ms unreachable for %s %s: %s", method, path, exc)
            raise ExternalServiceException(SERVICE_NAME, f"100ms unreachable: {exc}") from exc

        if response.status_code >= 400:
            logger.error(
                "100ms returned %s for %s %s: %s",
                response.status_code,
                method,
                path,
                response.text[:500],
            )
            raise ExternalServiceException(
                SERVICE_NAME,
                f"100ms request failed with status {response.status_code}",
                details={"status_code": response.status_code},
            )
        if not response.content:
            return {}
        return cast(dict[str, Any], response.json())

    def create_room(self, session_id: str, host_id: str) -> RoomRef:
        """Create (or fetch, since 100ms dedupes on name) the room for a session."""
        body: dict[str, Any] = {
            "name": f"live-session-{session_id}",
            "description": f"Live session {session_id} hosted by {host_id}",
        }
        if self._template_id:
            body["template_id"] = self._template_id
        room = self._call("POST", "rooms", body=body)
        room_id = str(room["id"])
        return RoomRef(room_id=room_id, join_url=f"{self._meeting_base_url}/{room_id}")

    def end_room(self, room_ref: RoomRef) -> None:
        self._call(
            "POST",
            f"active-rooms/{room_ref.room_id}/end-room",
            body={"reason": "Session ended", "lock": True},
        )

    def get_recording(self, room_ref: RoomRef) -> Optional[str]:
        assets = self._call("GET", "recording-assets", params={"room_id": room_ref.room_id})
        items = assets.get("data") or []
        if not items:
            return None
        asset_id = items[0].get("id")
        if not asset_id:
            return None
        presigned = self._call("GET", f"recording-assets/{asset_id}/presigned-url")
        url = presigned.get("url")
        return str(url) if url else None


class FakeVideoProvider:
    """In-memory provider for tests and local development."""

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.recordings: dict[str, str] = {}
        self._errors: dict[str, Exception] = {}

    def set_error(self, method: str, error: Exception) -> None:
        self._errors[method] = error

    def clear_errors(self) -> None:
        self._errors.clear()

    def _raise_if_injected(self, method: str) -> None:
        error = self._errors.get(method)
        if error is not None:
            raise error

    def create_room(self, session_id: str, host_id: str) -> RoomRef:
        self.calls.append({"method": "create_room", "session_id": session_id, "host_id": host_id})
        self._raise_if_injected("create_room")
        room_id = f"fake_room_{uuid.uuid4().hex[:12]}"
        return RoomRef(room_id=room_id, join_url=f"https://video.test/{room_id}")

    def end_room(self, room_ref: RoomRef) -> None:
        self.calls.append({"method": "end_room", "room_id": room_ref.room_id})
        self._raise_if_injected("end_room")

    def get_recording(self, room_ref: RoomRef) -> Optional[str]:
        self.calls.append({"method": "get_recording", "room_id": room_ref.room_id})
        self._raise_if_injected("get_recording")
        return self.recordings.get(room_ref.room_id)
