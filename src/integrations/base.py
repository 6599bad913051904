"""Shared abstractions for the chat homeserver collaborator."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class BaseRoomResolver(ABC):
    """Answers room membership queries and accepts informational chat events.

    Implementations raise ``UpstreamProtocolError`` on any transport or payload failure.
    """

    @abstractmethod
    async def joined_members(self, room_id: str, credential: str) -> list[str]:
        """Return the user ids currently joined to ``room_id``."""

    @abstractmethod
    async def display_name(self, user_id: str, credential: str) -> str | None:
        """Return the profile display name for ``user_id`` if it has one."""

    @abstractmethod
    async def send_room_event(
        self,
        room_id: str,
        credential: str,
        event_type: str,
        content: dict[str, Any],
    ) -> None:
        """Post an event into the chat room."""
