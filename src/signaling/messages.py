"""Typed real-time frames exchanged over the signaling WebSocket."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from calls.errors import ValidationError

# Sentinel target meaning "every other member of the call room".
BROADCAST_TARGET = "all"


class _ClientFrame(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class RegisterUser(_ClientFrame):
    type: Literal["register-user"]
    user_id: str = Field(min_length=1)


class JoinCall(_ClientFrame):
    type: Literal["join-call"]
    call_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)


class WebrtcOffer(_ClientFrame):
    type: Literal["webrtc-offer"]
    call_id: str = Field(min_length=1)
    offer: Any
    target_user_id: str | None = None


class WebrtcAnswer(_ClientFrame):
    type: Literal["webrtc-answer"]
    call_id: str = Field(min_length=1)
    answer: Any
    target_user_id: str | None = None


class IceCandidate(_ClientFrame):
    type: Literal["ice-candidate"]
    call_id: str = Field(min_length=1)
    candidate: Any = None
    target_user_id: str | None = None


class ToggleAudio(_ClientFrame):
    type: Literal["toggle-audio"]
    call_id: str = Field(min_length=1)
    enabled: StrictBool


class ToggleVideo(_ClientFrame):
    type: Literal["toggle-video"]
    call_id: str = Field(min_length=1)
    enabled: StrictBool


class LeaveCall(_ClientFrame):
    type: Literal["leave-call"]
    call_id: str = Field(min_length=1)


class Disconnect(BaseModel):
    """Queued by the transport when a socket closes; never sent by clients."""

    type: Literal["disconnect"] = "disconnect"


ClientMessage = Annotated[
    Union[
        RegisterUser,
        JoinCall,
        WebrtcOffer,
        WebrtcAnswer,
        IceCandidate,
        ToggleAudio,
        ToggleVideo,
        LeaveCall,
    ],
    Field(discriminator="type"),
]

InboundMessage = Union[ClientMessage, Disconnect]

_CLIENT_FRAME_ADAPTER: TypeAdapter[ClientMessage] = TypeAdapter(ClientMessage)


def parse_client_frame(raw: str | bytes | dict[str, Any]) -> ClientMessage:
    """Validate a client frame, raising the domain ``ValidationError`` on bad input."""

    try:
        if isinstance(raw, dict):
            return _CLIENT_FRAME_ADAPTER.validate_python(raw)
        return _CLIENT_FRAME_ADAPTER.validate_json(raw)
    except PydanticValidationError as exc:
        errors = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'frame'}: {error['msg']}"
            for error in exc.errors()
        )
        raise ValidationError(f"Invalid signaling frame ({errors})") from exc


def server_event(event: str, **payload: Any) -> dict[str, Any]:
    return {"type": event, **payload}
