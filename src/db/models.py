"""SQLAlchemy models for call sessions, participants and the call event log."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from calls.state_machine import CallKind, CallStatus, ParticipantStatus
from db.base import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_column(enum_cls: type, constraint_name: str) -> Enum:
    # Named like the CHECK constraints in the initial migration.
    return Enum(
        enum_cls,
        name=constraint_name,
        native_enum=False,
        create_constraint=True,
        length=20,
        values_callable=lambda members: [member.value for member in members],
    )


class CallSession(Base):
    """One row per call attempt."""

    __tablename__ = "call_sessions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    call_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    room_id: Mapped[str] = mapped_column(String(255), index=True)
    call_kind: Mapped[CallKind] = mapped_column(_enum_column(CallKind, "ck_call_sessions_call_kind"))
    status: Mapped[CallStatus] = mapped_column(
        _enum_column(CallStatus, "ck_call_sessions_status"),
        default=CallStatus.RINGING,
        index=True,
    )
    initiator_id: Mapped[str] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    participants: Mapped[list[CallParticipant]] = relationship(
        back_populates="call",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="CallParticipant.id",
    )


class CallParticipant(Base):
    """A room member's membership and media state within one call."""

    __tablename__ = "call_participants"
    __table_args__ = (
        UniqueConstraint("call_id", "user_id", name="uq_call_participants_call_user"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    call_id: Mapped[str] = mapped_column(
        ForeignKey("call_sessions.call_id", ondelete="CASCADE"), index=True
    )
    user_id: Mapped[str] = mapped_column(String(255), index=True)
    status: Mapped[ParticipantStatus] = mapped_column(
        _enum_column(ParticipantStatus, "ck_call_participants_status"),
        default=ParticipantStatus.INVITED,
    )
    audio_enabled: Mapped[bool] = mapped_column(default=True)
    video_enabled: Mapped[bool] = mapped_column(default=True)
    joined_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    left_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    call: Mapped[CallSession] = relationship(back_populates="participants")


class CallEvent(Base):
    """Append-only audit trail entry."""

    __tablename__ = "call_events"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    call_id: Mapped[str] = mapped_column(
        ForeignKey("call_sessions.call_id", ondelete="CASCADE"), index=True
    )
    user_id: Mapped[str] = mapped_column(String(255))
    event_type: Mapped[str] = mapped_column(String(30))
    # "metadata" is reserved on declarative classes.
    event_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
