"""call sessions, participants and events

Revision ID: 0001_call_tables
Revises:
Create Date: 2026-10-17

"""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_call_tables"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "call_sessions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("call_id", sa.String(length=64), nullable=False),
        sa.Column("room_id", sa.String(length=255), nullable=False),
        sa.Column("call_kind", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("initiator_id", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("call_kind IN ('voice', 'video')", name="ck_call_sessions_call_kind"),
        sa.CheckConstraint(
            "status IN ('ringing', 'active', 'ended', 'rejected', 'missed')",
            name="ck_call_sessions_status",
        ),
    )
    op.create_index("ix_call_sessions_call_id", "call_sessions", ["call_id"], unique=True)
    op.create_index("ix_call_sessions_room_id", "call_sessions", ["room_id"], unique=False)
    op.create_index("ix_call_sessions_status", "call_sessions", ["status"], unique=False)

    op.create_table(
        "call_participants",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("call_id", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("audio_enabled", sa.Boolean(), nullable=False),
        sa.Column("video_enabled", sa.Boolean(), nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("left_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["call_id"],
            ["call_sessions.call_id"],
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("call_id", "user_id", name="uq_call_participants_call_user"),
        sa.CheckConstraint(
            "status IN ('invited', 'ringing', 'joined', 'left', 'rejected')",
            name="ck_call_participants_status",
        ),
    )
    op.create_index(
        "ix_call_participants_call_id", "call_participants", ["call_id"], unique=False
    )
    op.create_index(
        "ix_call_participants_user_id", "call_participants", ["user_id"], unique=False
    )

    op.create_table(
        "call_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("call_id", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("event_type", sa.String(length=30), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["call_id"],
            ["call_sessions.call_id"],
            ondelete="CASCADE",
        ),
    )
    op.create_index("ix_call_events_call_id", "call_events", ["call_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_call_events_call_id", table_name="call_events")
    op.drop_table("call_events")

    op.drop_index("ix_call_participants_user_id", table_name="call_participants")
    op.drop_index("ix_call_participants_call_id", table_name="call_participants")
    op.drop_table("call_participants")

    op.drop_index("ix_call_sessions_status", table_name="call_sessions")
    op.drop_index("ix_call_sessions_room_id", table_name="call_sessions")
    op.drop_index("ix_call_sessions_call_id", table_name="call_sessions")
    op.drop_table("call_sessions")
