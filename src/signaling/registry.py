"""In-process registry of live connections, call rooms and queued ring events.

This is a single-process store. Running several server instances needs a shared
pub/sub backbone in front of it; nothing here is visible across processes.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

LOGGER = logging.getLogger(__name__)


def _connection_id() -> str:
    return uuid.uuid4().hex


@dataclass(eq=False)
class Connection:
    """One live device socket. Frames are written to ``outbox`` and pumped by the transport."""

    connection_id: str = field(default_factory=_connection_id)
    user_id: str | None = None
    call_ids: set[str] = field(default_factory=set)
    outbox: asyncio.Queue[dict[str, Any]] = field(default_factory=asyncio.Queue)
    closed: bool = False

    def deliver(self, frame: dict[str, Any]) -> bool:
        if self.closed:
            return False
        self.outbox.put_nowait(frame)
        return True


@dataclass
class PendingNotification:
    call_id: str
    frame: dict[str, Any]
    expires_at: float


class ConnectionRegistry:
    """Owns the user->connections map, call room membership and the pending ring queue."""

    def __init__(
        self,
        *,
        pending_ttl_seconds: float = 90.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._pending_ttl = pending_ttl_seconds
        self._clock = clock
        self._connections: dict[str, Connection] = {}
        self._user_connections: dict[str, set[str]] = {}
        self._rooms: dict[str, set[str]] = {}
        self._pending: dict[str, list[PendingNotification]] = {}

    # Connections

    def attach(self, connection: Connection) -> Connection:
        self._connections[connection.connection_id] = connection
        return connection

    def connection(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    def register(self, user_id: str, connection_id: str) -> bool:
        """Bind a connection to a user; returns True for the user's first live connection."""

        connection = self._connections.get(connection_id)
        if connection is None:
            connection = self.attach(Connection(connection_id=connection_id))

        if connection.user_id and connection.user_id != user_id:
            self._forget(connection.user_id, connection_id)

        connection.user_id = user_id
        devices = self._user_connections.setdefault(user_id, set())
        first = not devices
        devices.add(connection_id)
        LOGGER.info(
            "User %s registered on connection %s (%d device(s))",
            user_id,
            connection_id,
            len(devices),
        )
        return first

    def unregister(self, connection_id: str) -> tuple[Connection | None, bool]:
        """Drop a connection; returns it and whether it was its user's last one."""

        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return None, False
        connection.closed = True

        was_last = False
        if connection.user_id:
            was_last = self._forget(connection.user_id, connection_id)
        return connection, was_last

    def _forget(self, user_id: str, connection_id: str) -> bool:
        devices = self._user_connections.get(user_id)
        if devices is None:
            return False
        devices.discard(connection_id)
        if devices:
            return False
        del self._user_connections[user_id]
        return True

    def connections_for(self, user_id: str) -> set[str]:
        return set(self._user_connections.get(user_id, ()))

    def is_online(self, user_id: str) -> bool:
        return bool(self._user_connections.get(user_id))

    def deliver(self, connection_id: str, frame: dict[str, Any]) -> bool:
        connection = self._connections.get(connection_id)
        if connection is None:
            return False
        return connection.deliver(frame)

    def deliver_to_user(self, user_id: str, frame: dict[str, Any]) -> int:
        return sum(
            1 for connection_id in self.connections_for(user_id) if self.deliver(connection_id, frame)
        )

    # Call rooms

    def join_room(self, call_id: str, user_id: str, connection_id: str | None = None) -> None:
        self._rooms.setdefault(call_id, set()).add(user_id)
        if connection_id is not None:
            connection = self._connections.get(connection_id)
            if connection is not None:
                connection.call_ids.add(call_id)

    def leave_room(self, call_id: str, user_id: str) -> bool:
        for connection_id in self.connections_for(user_id):
            self._connections[connection_id].call_ids.discard(call_id)

        members = self._rooms.get(call_id)
        if members is None or user_id not in members:
            return False
        members.discard(user_id)
        if not members:
            del self._rooms[call_id]
        return True

    def room_members(self, call_id: str) -> set[str]:
        return set(self._rooms.get(call_id, ()))

    def rooms_for_user(self, user_id: str) -> set[str]:
        return {call_id for call_id, members in self._rooms.items() if user_id in members}

    def room_connections(self, call_id: str) -> set[str]:
        """Connections attached to the call room itself, whoever they belong to."""

        return {
            connection_id
            for connection_id, connection in self._connections.items()
            if call_id in connection.call_ids
        }

    def drop_room(self, call_id: str) -> set[str]:
        for connection in self._connections.values():
            connection.call_ids.discard(call_id)
        return self._rooms.pop(call_id, set())

    # Pending incoming-call notifications

    def enqueue_pending(self, user_id: str, call_id: str, frame: dict[str, Any]) -> PendingNotification:
        self._purge_expired()
        entry = PendingNotification(
            call_id=call_id,
            frame=frame,
            expires_at=self._clock() + self._pending_ttl,
        )
        self._pending.setdefault(user_id, []).append(entry)
        LOGGER.info("Queued incoming call %s for offline user %s", call_id, user_id)
        return entry

    def take_pending(self, user_id: str) -> list[PendingNotification]:
        """Remove and return the user's unexpired entries."""

        entries = self._pending.pop(user_id, [])
        now = self._clock()
        return [entry for entry in entries if entry.expires_at > now]

    def pending_for(self, user_id: str) -> list[PendingNotification]:
        now = self._clock()
        return [entry for entry in self._pending.get(user_id, ()) if entry.expires_at > now]

    def discard_pending_for_call(self, call_id: str) -> None:
        for user_id in list(self._pending):
            remaining = [entry for entry in self._pending[user_id] if entry.call_id != call_id]
            if remaining:
                self._pending[user_id] = remaining
            else:
                del self._pending[user_id]

    def _purge_expired(self) -> None:
        now = self._clock()
        for user_id in list(self._pending):
            remaining = [entry for entry in self._pending[user_id] if entry.expires_at > now]
            if remaining:
                self._pending[user_id] = remaining
            else:
                del self._pending[user_id]

    def close(self) -> None:
        for connection in self._connections.values():
            connection.closed = True
        self._connections.clear()
        self._user_connections.clear()
        self._rooms.clear()
        self._pending.clear()
