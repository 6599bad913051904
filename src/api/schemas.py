"""API-facing Pydantic models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from calls.state_machine import CallKind, CallStatus, ParticipantStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class InitiateCallRequest(CamelModel):
    room_id: str | None = None
    call_kind: str | None = None
    caller_id: str | None = None
    credential: str | None = None


class CallActionRequest(CamelModel):
    user_id: str | None = None
    credential: str | None = None


class ToggleMediaRequest(CamelModel):
    user_id: str | None = None
    # Validated by the controller; non-booleans are a 400.
    enabled: Any = None


class SignalPayloadRequest(CamelModel):
    user_id: str | None = None
    offer: Any = None
    answer: Any = None
    candidate: Any = None


class InitiateCallResponse(CamelModel):
    call_id: str
    room_id: str
    call_kind: CallKind
    status: CallStatus
    ice_servers: list[dict[str, Any]]


class AnswerCallResponse(CamelModel):
    call_id: str
    status: CallStatus
    ice_servers: list[dict[str, Any]]


class CallStateResponse(CamelModel):
    call_id: str
    status: CallStatus


class ToggleAudioResponse(CamelModel):
    success: bool = True
    audio_enabled: bool


class ToggleVideoResponse(CamelModel):
    success: bool = True
    video_enabled: bool


class SuccessResponse(CamelModel):
    success: bool = True


class SessionView(CamelModel):
    call_id: str
    room_id: str
    call_kind: CallKind
    status: CallStatus
    initiator_id: str
    created_at: datetime
    started_at: datetime | None = None
    ended_at: datetime | None = None


class ParticipantView(CamelModel):
    user_id: str
    status: ParticipantStatus
    audio_enabled: bool
    video_enabled: bool
    joined_at: datetime | None = None
    left_at: datetime | None = None


class CallStatusResponse(CamelModel):
    session: SessionView
    participants: list[ParticipantView]


class PendingCallsResponse(CamelModel):
    calls: list[SessionView]
    ice_servers: list[dict[str, Any]]


class HealthResponse(BaseModel):
    status: str = "ok"
