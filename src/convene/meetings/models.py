"""Meeting persistence models -- tables for the meeting lifecycle.

Three SQLAlchemy models:
- MeetingModel: A hosted meeting with capacity and lifecycle status
- MembershipModel: One user's membership in one meeting, reused across rejoins
- SessionTokenModel: Short-lived tokens issued on successful join

No foreign key constraints (application-level referential integrity via
repository). Uniqueness of (meeting_id, user_id) is enforced by the
database so a rejoin can never produce a second membership row.

Timestamps are set by the repository rather than server defaults so that
ordering by created_at has sub-second resolution on every backend.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.convene.core.database import Base


class MeetingModel(Base):
    """Meeting owned by its host.

    Status moves scheduled -> active -> ended. started_at is set with the
    first transition, ended_at with the second.
    """

    __tablename__ = "meetings"
    __table_args__ = (
        Index("ix_meetings_status_created_at", "status", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    host_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    max_capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="scheduled")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class MembershipModel(Base):
    """A user's membership in a meeting.

    left_at is NULL while the user is present. Rows are never deleted;
    rejoining reopens the existing row.
    """

    __tablename__ = "meeting_participants"
    __table_args__ = (
        UniqueConstraint("meeting_id", "user_id", name="uq_participant_meeting_user"),
        Index("ix_participants_meeting_open", "meeting_id", "left_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    meeting_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    left_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class SessionTokenModel(Base):
    """Session token minted when a user is admitted to a meeting."""

    __tablename__ = "meeting_sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    token: Mapped[str] = mapped_column(String(128), unique=True, nullable=False, index=True)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    meeting_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
