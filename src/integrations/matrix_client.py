"""Matrix client-server API facade used for room membership and m.call.* events."""

from __future__ import annotations

import logging
import time
from typing import Any
from urllib.parse import quote

import httpx

from calls.errors import UpstreamProtocolError
from config.settings import get_settings
from integrations.base import BaseRoomResolver

LOGGER = logging.getLogger(__name__)


class MatrixRoomResolver(BaseRoomResolver):
    """Thin async HTTP client for a Matrix homeserver."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._base_url = (base_url or settings.matrix_homeserver_url).rstrip("/")
        self._timeout = timeout or settings.matrix_timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
        )

    @staticmethod
    def _headers(credential: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {credential}"}

    async def _request(self, method: str, path: str, credential: str, **kwargs: Any) -> Any:
        try:
            async with self._client() as client:
                response = await client.request(
                    method, path, headers=self._headers(credential), **kwargs
                )
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise UpstreamProtocolError(f"{method} {path} failed: {exc}") from exc

    async def joined_members(self, room_id: str, credential: str) -> list[str]:
        path = f"/_matrix/client/r0/rooms/{quote(room_id, safe='')}/joined_members"
        payload = await self._request("GET", path, credential)
        joined = payload.get("joined") if isinstance(payload, dict) else None
        if not isinstance(joined, dict):
            raise UpstreamProtocolError("joined_members response has no 'joined' mapping")
        return list(joined.keys())

    async def display_name(self, user_id: str, credential: str) -> str | None:
        path = f"/_matrix/client/r0/profile/{quote(user_id, safe='')}/displayname"
        payload = await self._request("GET", path, credential)
        if isinstance(payload, dict):
            return payload.get("displayname") or None
        return None

    async def send_room_event(
        self,
        room_id: str,
        credential: str,
        event_type: str,
        content: dict[str, Any],
    ) -> None:
        txn_id = str(time.time_ns())
        path = (
            f"/_matrix/client/r0/rooms/{quote(room_id, safe='')}"
            f"/send/{quote(event_type, safe='')}/{txn_id}"
        )
        await self._request("PUT", path, credential, json=content)
        LOGGER.debug("Sent %s to room %s", event_type, room_id)
