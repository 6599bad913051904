"""Call lifecycle operations: initiate, answer, reject, end and media toggles."""

from __future__ import annotations

import logging
from typing import Any

from calls.errors import CallError, UpstreamProtocolError, ValidationError
from calls.ice import build_ice_servers
from calls.state_machine import CallKind, MediaKind
from config.settings import Settings, get_settings
from db.models import CallSession
from db.repository import CallRepository
from integrations.base import BaseRoomResolver
from signaling.relay import SignalingRelay

LOGGER = logging.getLogger(__name__)

SIGNAL_EVENT_TYPES = {
    "offer": ("webrtc_offer", "offer"),
    "answer": ("webrtc_answer", "answer"),
    "ice_candidate": ("ice_candidate", "candidate"),
}


def _require(**fields: Any) -> None:
    missing = [name for name, value in fields.items() if value is None or value == ""]
    if missing:
        raise ValidationError(f"{', '.join(missing)} required")


def _parse_enum(enum_cls: type, value: Any, field_name: str):
    try:
        return enum_cls(value)
    except ValueError as exc:
        allowed = " or ".join(member.value for member in enum_cls)
        raise ValidationError(f"{field_name} must be {allowed}") from exc


class CallLifecycleController:
    """Drives call sessions through the state machine and triggers relay notifications.

    Every store write commits before any real-time event is emitted, so a client
    reacting to a notification always finds the session it refers to.
    """

    def __init__(
        self,
        repository: CallRepository,
        relay: SignalingRelay,
        resolver: BaseRoomResolver,
        *,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repo = repository
        self._relay = relay
        self._resolver = resolver
        self._ice_servers = build_ice_servers(self._settings)

    @property
    def ice_servers(self) -> list[dict[str, Any]]:
        return self._ice_servers

    async def initiate(
        self,
        room_id: str | None,
        call_kind: str | None,
        caller_id: str | None,
        credential: str | None,
    ) -> CallSession:
        _require(roomId=room_id, callKind=call_kind, callerId=caller_id, credential=credential)
        kind = _parse_enum(CallKind, call_kind, "callKind")

        call = await self._repo.create_session(
            room_id=room_id, call_kind=kind, initiator_id=caller_id
        )
        LOGGER.info("Call %s (%s) started by %s in %s", call.call_id, kind.value, caller_id, room_id)

        await self._send_chat_event(
            credential,
            room_id,
            "m.call.invite",
            {
                "call_id": call.call_id,
                "version": "1",
                "lifetime": self._settings.ring_lifetime_ms,
                "offer": {"type": kind.value},
            },
        )
        display_name = await self._display_name(caller_id, credential)

        try:
            await self._relay.notify_incoming_call(
                room_id=room_id,
                call_id=call.call_id,
                call_kind=kind,
                initiator_id=caller_id,
                display_name=display_name,
                credential=credential,
            )
        except CallError:
            LOGGER.exception("Incoming call notification failed for %s", call.call_id)
        return call

    async def answer(self, call_id: str, user_id: str | None, credential: str | None) -> CallSession:
        _require(userId=user_id, credential=credential)
        call = await self._repo.answer(call_id, user_id)
        LOGGER.info("Call %s answered by %s", call_id, user_id)

        await self._send_chat_event(
            credential, call.room_id, "m.call.answer", {"call_id": call_id, "version": "1"}
        )
        self._relay.notify_user(
            call.initiator_id, "call-answered", {"callId": call_id, "answeredBy": user_id}
        )
        return call

    async def reject(self, call_id: str, user_id: str | None, credential: str | None) -> CallSession:
        _require(userId=user_id, credential=credential)
        call, previous = await self._repo.reject(call_id, user_id)
        LOGGER.info("Call %s rejected by %s (was %s)", call_id, user_id, previous.value)

        await self._send_chat_event(
            credential,
            call.room_id,
            "m.call.hangup",
            {"call_id": call_id, "version": "1", "reason": "user_hangup"},
        )
        notified = self._relay.notify_user(
            call.initiator_id, "call-rejected", {"callId": call_id, "rejectedBy": user_id}
        )
        LOGGER.info("Told %s on %d device(s) that %s rejected", call.initiator_id, notified, user_id)
        return call

    async def end(
        self, call_id: str, user_id: str | None, credential: str | None = None
    ) -> CallSession:
        _require(userId=user_id)
        result = await self._repo.end(call_id, user_id)
        if not result.changed:
            LOGGER.info("Call %s already %s; end by %s ignored", call_id, result.call.status.value, user_id)
            return result.call

        if credential:
            await self._send_chat_event(
                credential,
                result.call.room_id,
                "m.call.hangup",
                {"call_id": call_id, "version": "1", "reason": "user_hangup"},
            )
        notified = self._relay.notify_call_ended(
            call_id,
            user_id,
            extra_recipients=[pid for pid in result.participant_ids if pid != user_id],
        )
        LOGGER.info("Call %s ended by %s; %d connection(s) notified", call_id, user_id, notified)
        return result.call

    async def toggle_media(
        self,
        call_id: str,
        user_id: str | None,
        kind: str | MediaKind,
        enabled: Any,
    ) -> bool:
        _require(userId=user_id)
        if not isinstance(enabled, bool):
            raise ValidationError("enabled (boolean) required")
        media = _parse_enum(MediaKind, kind, "kind")

        await self._repo.set_media(call_id, user_id, media, enabled)
        self._relay.broadcast_to_room(
            call_id,
            f"{media.value}-toggled",
            {"userId": user_id, "enabled": enabled},
            exclude_user=user_id,
        )
        return enabled

    async def record_signal(
        self, call_id: str, user_id: str | None, kind: str, payload: Any
    ) -> None:
        """Audit a handshake payload posted over HTTP instead of the socket."""

        event_type, key = SIGNAL_EVENT_TYPES[kind]
        _require(userId=user_id, **{key: payload})
        await self._repo.append_event(call_id, user_id, event_type, {key: payload})

    async def get_status(self, call_id: str) -> CallSession:
        return await self._repo.get_session(call_id)

    async def list_pending_for_user(self, user_id: str | None) -> list[CallSession]:
        _require(userId=user_id)
        return await self._repo.list_pending_for_user(
            user_id, window_seconds=self._settings.ring_window_seconds
        )

    async def _send_chat_event(
        self, credential: str, room_id: str, event_type: str, content: dict[str, Any]
    ) -> None:
        if not self._settings.chat_events_enabled:
            return
        try:
            await self._resolver.send_room_event(room_id, credential, event_type, content)
        except UpstreamProtocolError as exc:
            LOGGER.warning("Chat event %s failed (non-critical): %s", event_type, exc.detail)

    async def _display_name(self, user_id: str, credential: str) -> str:
        try:
            return await self._resolver.display_name(user_id, credential) or user_id
        except UpstreamProtocolError as exc:
            LOGGER.warning("Could not fetch display name for %s: %s", user_id, exc.detail)
            return user_id
