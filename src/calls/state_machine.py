"""Closed status types and the transitions allowed between them."""

from __future__ import annotations

from enum import Enum

from calls.errors import InvalidStateError


class CallKind(str, Enum):
    VOICE = "voice"
    VIDEO = "video"


class CallStatus(str, Enum):
    RINGING = "ringing"
    ACTIVE = "active"
    ENDED = "ended"
    REJECTED = "rejected"
    MISSED = "missed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


class ParticipantStatus(str, Enum):
    INVITED = "invited"
    RINGING = "ringing"
    JOINED = "joined"
    LEFT = "left"
    REJECTED = "rejected"


class MediaKind(str, Enum):
    AUDIO = "audio"
    VIDEO = "video"


TERMINAL_STATUSES = frozenset({CallStatus.ENDED, CallStatus.REJECTED, CallStatus.MISSED})

# ACTIVE -> REJECTED mirrors what clients have always been allowed to do;
# whether an answered call may still be rejected is an open product question.
TRANSITIONS: dict[CallStatus, frozenset[CallStatus]] = {
    CallStatus.RINGING: frozenset(
        {CallStatus.ACTIVE, CallStatus.REJECTED, CallStatus.ENDED, CallStatus.MISSED}
    ),
    CallStatus.ACTIVE: frozenset({CallStatus.ENDED, CallStatus.REJECTED}),
    CallStatus.ENDED: frozenset(),
    CallStatus.REJECTED: frozenset(),
    CallStatus.MISSED: frozenset(),
}


def can_transition(current: CallStatus, target: CallStatus) -> bool:
    return target in TRANSITIONS[current]


def ensure_transition(current: CallStatus, target: CallStatus) -> None:
    """Raise InvalidStateError unless ``current -> target`` is allowed."""

    if not can_transition(current, target):
        raise InvalidStateError(
            f"Call cannot move from {current.value} to {target.value}."
        )
