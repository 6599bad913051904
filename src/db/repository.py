"""Repository for persisting call sessions, participants and call events."""

from __future__ import annotations

import logging
import secrets
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from sqlalchemy import desc, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from calls.errors import InvalidStateError, NotFoundError, StoreError
from calls.state_machine import (
    CallKind,
    CallStatus,
    MediaKind,
    ParticipantStatus,
    ensure_transition,
)
from db.models import CallEvent, CallParticipant, CallSession, utcnow

LOGGER = logging.getLogger(__name__)


def generate_call_id() -> str:
    return secrets.token_hex(16)


@dataclass
class EndResult:
    call: CallSession
    changed: bool
    participant_ids: list[str] = field(default_factory=list)


class CallRepository:
    """Async repository encapsulating call storage operations.

    Every public method runs in its own transaction; any SQLAlchemy failure
    rolls it back and surfaces as ``StoreError``.
    """

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    yield session
            except SQLAlchemyError as exc:
                LOGGER.exception("Call store transaction failed: %s", exc)
                raise StoreError() from exc

    async def _get_session_row(
        self, session: AsyncSession, call_id: str, *, for_update: bool = False
    ) -> CallSession:
        query = select(CallSession).where(CallSession.call_id == call_id)
        if for_update:
            query = query.with_for_update()
        result = await session.execute(query)
        call = result.scalar_one_or_none()
        if call is None:
            raise NotFoundError()
        return call

    @staticmethod
    def _insert_stmt(session: AsyncSession):
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(CallParticipant)
        if dialect == "sqlite":
            return sqlite.insert(CallParticipant)
        raise StoreError(f"Unsupported database dialect for upserts: {dialect}")

    async def _upsert_participant(
        self,
        session: AsyncSession,
        call_id: str,
        user_id: str,
        *,
        status: ParticipantStatus,
        **changes: Any,
    ) -> None:
        values = {"status": status, **changes}
        stmt = (
            self._insert_stmt(session)
            .values(call_id=call_id, user_id=user_id, **values)
            .on_conflict_do_update(index_elements=["call_id", "user_id"], set_=values)
        )
        await session.execute(stmt)

    @staticmethod
    def _add_event(
        session: AsyncSession,
        call_id: str,
        user_id: str,
        event_type: str,
        metadata: dict[str, Any] | None = None,
    ) -> CallEvent:
        event = CallEvent(
            call_id=call_id,
            user_id=user_id,
            event_type=event_type,
            event_metadata=metadata,
        )
        session.add(event)
        return event

    async def create_session(
        self, *, room_id: str, call_kind: CallKind, initiator_id: str
    ) -> CallSession:
        now = utcnow()
        async with self._transaction() as session:
            call = CallSession(
                call_id=generate_call_id(),
                room_id=room_id,
                call_kind=call_kind,
                status=CallStatus.RINGING,
                initiator_id=initiator_id,
                created_at=now,
            )
            session.add(call)
            await session.flush()
            session.add(
                CallParticipant(
                    call_id=call.call_id,
                    user_id=initiator_id,
                    status=ParticipantStatus.JOINED,
                    joined_at=now,
                )
            )
            self._add_event(session, call.call_id, initiator_id, "initiated")
        return call

    async def answer(self, call_id: str, user_id: str) -> CallSession:
        now = utcnow()
        async with self._transaction() as session:
            call = await self._get_session_row(session, call_id, for_update=True)
            # Conditional update: with two racing answers only one sees a matching row.
            result = await session.execute(
                update(CallSession)
                .where(
                    CallSession.call_id == call_id,
                    CallSession.status == CallStatus.RINGING,
                )
                .values(status=CallStatus.ACTIVE, started_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise InvalidStateError("Call is not in ringing state")
            await session.refresh(call)

            await self._upsert_participant(
                session, call_id, user_id, status=ParticipantStatus.JOINED, joined_at=now
            )
            self._add_event(session, call_id, user_id, "answered")
        return call

    async def reject(self, call_id: str, user_id: str) -> tuple[CallSession, CallStatus]:
        """Mark the call rejected; returns the call and its previous status."""

        async with self._transaction() as session:
            call = await self._get_session_row(session, call_id, for_update=True)
            previous = call.status
            ensure_transition(previous, CallStatus.REJECTED)
            if previous is CallStatus.ACTIVE:
                LOGGER.warning(
                    "Call %s rejected by %s after it was already answered", call_id, user_id
                )

            call.status = CallStatus.REJECTED
            call.ended_at = utcnow()
            await self._upsert_participant(
                session, call_id, user_id, status=ParticipantStatus.REJECTED
            )
            self._add_event(session, call_id, user_id, "rejected")
        return call, previous

    async def end(self, call_id: str, user_id: str) -> EndResult:
        now = utcnow()
        async with self._transaction() as session:
            call = await self._get_session_row(session, call_id, for_update=True)
            participant_ids = list(
                (
                    await session.execute(
                        select(CallParticipant.user_id).where(CallParticipant.call_id == call_id)
                    )
                ).scalars()
            )
            if call.status.is_terminal:
                return EndResult(call=call, changed=False, participant_ids=participant_ids)

            ensure_transition(call.status, CallStatus.ENDED)
            call.status = CallStatus.ENDED
            call.ended_at = now
            await session.execute(
                update(CallParticipant)
                .where(
                    CallParticipant.call_id == call_id,
                    CallParticipant.status == ParticipantStatus.JOINED,
                )
                .values(status=ParticipantStatus.LEFT, left_at=now)
                .execution_options(synchronize_session=False)
            )
            self._add_event(session, call_id, user_id, "ended")
        return EndResult(call=call, changed=True, participant_ids=participant_ids)

    async def set_media(
        self, call_id: str, user_id: str, kind: MediaKind, enabled: bool
    ) -> None:
        column = "audio_enabled" if kind is MediaKind.AUDIO else "video_enabled"
        async with self._transaction() as session:
            call = await self._get_session_row(session, call_id)
            if call.status.is_terminal:
                raise InvalidStateError(f"Call already {call.status.value}")

            result = await session.execute(
                update(CallParticipant)
                .where(
                    CallParticipant.call_id == call_id,
                    CallParticipant.user_id == user_id,
                )
                .values({column: enabled})
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise NotFoundError("Participant not found")
            self._add_event(
                session, call_id, user_id, f"{kind.value}_toggled", {"enabled": enabled}
            )

    async def invite_participants(self, call_id: str, user_ids: Iterable[str]) -> None:
        """Record room members as invited; existing rows are left untouched."""

        user_ids = list(user_ids)
        if not user_ids:
            return
        now = utcnow()
        async with self._transaction() as session:
            stmt = (
                self._insert_stmt(session)
                .values(
                    [
                        {
                            "call_id": call_id,
                            "user_id": user_id,
                            "status": ParticipantStatus.INVITED,
                            "audio_enabled": True,
                            "video_enabled": True,
                            "created_at": now,
                        }
                        for user_id in user_ids
                    ]
                )
                .on_conflict_do_nothing(index_elements=["call_id", "user_id"])
            )
            await session.execute(stmt)

    async def mark_participant_left(
        self,
        call_id: str,
        user_id: str,
        *,
        only_if_joined: bool = False,
        record_event: bool = False,
    ) -> bool:
        async with self._transaction() as session:
            query = update(CallParticipant).where(
                CallParticipant.call_id == call_id,
                CallParticipant.user_id == user_id,
            )
            if only_if_joined:
                query = query.where(CallParticipant.status == ParticipantStatus.JOINED)
            result = await session.execute(
                query.values(status=ParticipantStatus.LEFT, left_at=utcnow()).execution_options(
                    synchronize_session=False
                )
            )
            if record_event:
                self._add_event(session, call_id, user_id, "user_left")
            return result.rowcount > 0

    async def append_event(
        self,
        call_id: str,
        user_id: str,
        event_type: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        async with self._transaction() as session:
            await self._get_session_row(session, call_id)
            self._add_event(session, call_id, user_id, event_type, metadata)

    async def get_session(self, call_id: str) -> CallSession:
        async with self._transaction() as session:
            return await self._get_session_row(session, call_id)

    async def get_status(self, call_id: str) -> CallStatus | None:
        async with self._transaction() as session:
            result = await session.execute(
                select(CallSession.status).where(CallSession.call_id == call_id)
            )
            return result.scalar_one_or_none()

    async def list_pending_for_user(
        self, user_id: str, *, window_seconds: int
    ) -> list[CallSession]:
        cutoff = utcnow() - timedelta(seconds=window_seconds)
        async with self._transaction() as session:
            query = (
                select(CallSession)
                .join(CallParticipant, CallParticipant.call_id == CallSession.call_id)
                .where(
                    CallSession.status == CallStatus.RINGING,
                    CallSession.initiator_id != user_id,
                    CallSession.created_at > cutoff,
                    CallParticipant.user_id == user_id,
                    CallParticipant.status == ParticipantStatus.INVITED,
                )
                .order_by(desc(CallSession.created_at))
            )
            result = await session.execute(query)
            return list(result.scalars().all())

    async def list_events(self, call_id: str) -> list[CallEvent]:
        async with self._transaction() as session:
            query = (
                select(CallEvent)
                .where(CallEvent.call_id == call_id)
                .order_by(CallEvent.created_at, CallEvent.id)
            )
            result = await session.execute(query)
            return list(result.scalars().all())
