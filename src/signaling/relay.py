"""Signaling relay: call room membership, handshake fan-out and ring delivery."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from calls.errors import StoreError, UpstreamProtocolError
from calls.state_machine import CallKind, CallStatus
from db.repository import CallRepository
from integrations.base import BaseRoomResolver
from signaling.messages import BROADCAST_TARGET, server_event
from signaling.registry import ConnectionRegistry

LOGGER = logging.getLogger(__name__)

RELAY_EVENTS = {
    "offer": "webrtc-offer",
    "answer": "webrtc-answer",
    "ice_candidate": "ice-candidate",
}

# ICE candidates are relayed without an audit row.
AUDITED_RELAYS = {"offer": "offer_sent", "answer": "answer_sent"}


@dataclass
class IncomingCallFanout:
    """Who got a live incoming-call event and who had it queued."""

    notified: list[str] = field(default_factory=list)
    queued: list[str] = field(default_factory=list)


class SignalingRelay:
    def __init__(
        self,
        registry: ConnectionRegistry,
        repository: CallRepository,
        resolver: BaseRoomResolver,
        *,
        ice_servers: list[dict[str, Any]],
    ) -> None:
        self._registry = registry
        self._repo = repository
        self._resolver = resolver
        self._ice_servers = ice_servers

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    def notify_user(self, user_id: str, event: str, payload: dict[str, Any]) -> int:
        return self._registry.deliver_to_user(user_id, server_event(event, **payload))

    def broadcast_to_room(
        self,
        call_id: str,
        event: str,
        payload: dict[str, Any],
        *,
        exclude_user: str | None = None,
    ) -> int:
        frame = server_event(event, **payload)
        delivered = 0
        for user_id in self._registry.room_members(call_id):
            if user_id == exclude_user:
                continue
            delivered += self._registry.deliver_to_user(user_id, frame)
        return delivered

    async def join_call_room(self, call_id: str, user_id: str, connection_id: str) -> None:
        await self._repo.append_event(call_id, user_id, "socket_connected")
        self._registry.join_room(call_id, user_id, connection_id)
        self.broadcast_to_room(call_id, "user-joined", {"userId": user_id}, exclude_user=user_id)
        LOGGER.info("%s joined call %s", user_id, call_id)

    async def relay(
        self,
        kind: str,
        call_id: str,
        sender_id: str,
        target: str | None,
        payload: dict[str, Any],
    ) -> int:
        """Unicast to ``target`` on every device, or fan out to the rest of the room."""

        event = RELAY_EVENTS[kind]
        if kind in AUDITED_RELAYS:
            await self._repo.append_event(
                call_id, sender_id, AUDITED_RELAYS[kind], {"targetUserId": target}
            )

        frame = server_event(
            event, callId=call_id, targetUserId=target, fromUserId=sender_id, **payload
        )
        if target and target != BROADCAST_TARGET:
            recipients = {target}
        else:
            recipients = self._registry.room_members(call_id) - {sender_id}

        delivered = sum(self._registry.deliver_to_user(user_id, frame) for user_id in recipients)
        LOGGER.debug(
            "%s in %s from %s to %s reached %d connection(s)",
            event,
            call_id,
            sender_id,
            target or BROADCAST_TARGET,
            delivered,
        )
        return delivered

    async def leave_call_room(self, call_id: str, user_id: str) -> None:
        await self._repo.mark_participant_left(call_id, user_id, record_event=True)
        self._registry.leave_room(call_id, user_id)
        self.broadcast_to_room(call_id, "user-left", {"userId": user_id}, exclude_user=user_id)
        LOGGER.info("%s left call %s", user_id, call_id)

    async def on_disconnect(self, connection_id: str) -> None:
        connection, was_last = self._registry.unregister(connection_id)
        if connection is None or connection.user_id is None:
            return
        user_id = connection.user_id
        LOGGER.info("Connection %s of %s closed", connection_id, user_id)
        if not was_last:
            return

        for call_id in sorted(connection.call_ids | self._registry.rooms_for_user(user_id)):
            await self._repo.mark_participant_left(call_id, user_id, only_if_joined=True)
            self._registry.leave_room(call_id, user_id)
            self.broadcast_to_room(call_id, "user-left", {"userId": user_id}, exclude_user=user_id)
            LOGGER.info("%s dropped out of call %s", user_id, call_id)

    async def notify_incoming_call(
        self,
        *,
        room_id: str,
        call_id: str,
        call_kind: CallKind,
        initiator_id: str,
        display_name: str | None,
        credential: str,
    ) -> IncomingCallFanout:
        fanout = IncomingCallFanout()
        try:
            members = await self._resolver.joined_members(room_id, credential)
        except UpstreamProtocolError as exc:
            LOGGER.warning("Could not resolve members of %s: %s", room_id, exc.detail)
            members = []

        recipients = [member for member in dict.fromkeys(members) if member != initiator_id]
        if not recipients:
            LOGGER.info("No one to ring for call %s in room %s", call_id, room_id)
            return fanout

        try:
            await self._repo.invite_participants(call_id, recipients)
        except StoreError:
            LOGGER.exception("Could not record invited participants for call %s", call_id)

        frame = server_event(
            "incoming-call",
            callId=call_id,
            callKind=call_kind.value,
            roomId=room_id,
            callerName=display_name or initiator_id,
            callerId=initiator_id,
            iceServers=self._ice_servers,
        )
        for recipient in recipients:
            if self._registry.deliver_to_user(recipient, frame):
                fanout.notified.append(recipient)
            else:
                self._registry.enqueue_pending(recipient, call_id, frame)
                fanout.queued.append(recipient)

        LOGGER.info(
            "Call %s in %s: %d ringing live, %d queued",
            call_id,
            room_id,
            len(fanout.notified),
            len(fanout.queued),
        )
        return fanout

    async def on_register(self, user_id: str) -> int:
        """Redeliver queued rings whose call is still ringing; stale ones are dropped."""

        delivered = 0
        for entry in self._registry.take_pending(user_id):
            status = await self._repo.get_status(entry.call_id)
            if status != CallStatus.RINGING:
                LOGGER.debug("Dropping stale ring for call %s (%s)", entry.call_id, status)
                continue
            delivered += self._registry.deliver_to_user(user_id, entry.frame)
        return delivered

    def notify_call_ended(
        self,
        call_id: str,
        ended_by: str,
        extra_recipients: Iterable[str] = (),
    ) -> int:
        """Send call-ended to every other participant device once, then drop the room."""

        frame = server_event("call-ended", callId=call_id, endedBy=ended_by)
        targets: set[str] = set()
        for user_id in self._registry.room_members(call_id) | set(extra_recipients):
            targets |= self._registry.connections_for(user_id)
        targets |= self._registry.room_connections(call_id)
        targets -= self._registry.connections_for(ended_by)

        delivered = sum(1 for connection_id in targets if self._registry.deliver(connection_id, frame))
        self._registry.drop_room(call_id)
        self._registry.discard_pending_for_call(call_id)
        return delivered
