"""Meeting repository -- async storage for meetings and participant memberships.

Provides MeetingRepository with the session_factory callable pattern.
Handles serialization between Pydantic schemas and SQLAlchemy models for
meetings and memberships.

Read-only lookups open their own short session. Every read-check-write
sequence goes through ``meeting_scope()``, which opens one transaction,
locks the meeting row (SELECT ... FOR UPDATE) and hands back a
MeetingScope bound to that transaction. The scope commits when the block
exits normally and rolls back on any exception, so a failed precondition
never leaves partial state behind. Locks are per meeting row; scopes on
different meetings never wait on each other.

Any SQLAlchemy failure is logged and re-raised as RepositoryError.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Iterator
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.convene.meetings.errors import RepositoryError
from src.convene.meetings.models import MeetingModel, MembershipModel
from src.convene.meetings.schemas import (
    Meeting,
    MeetingCreate,
    MeetingOccupancy,
    MeetingStatus,
    Membership,
)

logger = structlog.get_logger(__name__)

# Columns update_meeting_status may stamp alongside the new status.
STATUS_TIMESTAMP_FIELDS = frozenset({"started_at", "ended_at"})


# ── Serialization Helpers ───────────────────────────────────────────────────


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_id(value: str) -> uuid.UUID | None:
    """Parse an id string, returning None for anything that is not a UUID."""
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _model_to_meeting(model: MeetingModel) -> Meeting:
    """Convert MeetingModel to Meeting schema."""
    return Meeting(
        id=str(model.id),
        title=model.title,
        description=model.description,
        host_id=str(model.host_id),
        max_capacity=model.max_capacity,
        status=MeetingStatus(model.status),
        created_at=as_utc(model.created_at),
        started_at=as_utc(model.started_at),
        ended_at=as_utc(model.ended_at),
    )


def _model_to_membership(model: MembershipModel) -> Membership:
    """Convert MembershipModel to Membership schema."""
    return Membership(
        id=str(model.id),
        meeting_id=str(model.meeting_id),
        user_id=str(model.user_id),
        joined_at=as_utc(model.joined_at),
        left_at=as_utc(model.left_at),
    )


def _open_count_subquery() -> Any:
    return (
        select(func.count(MembershipModel.id))
        .where(
            MembershipModel.meeting_id == MeetingModel.id,
            MembershipModel.left_at.is_(None),
        )
        .correlate(MeetingModel)
        .scalar_subquery()
    )


@contextmanager
def storage_errors(
    operation: str, source: str = "meeting_repository", **context: Any
) -> Iterator[None]:
    """Translate SQLAlchemy failures into RepositoryError.

    ``source`` prefixes the log event, e.g. ``user_repository.storage_error``.
    """
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error(
            f"{source}.storage_error",
            operation=operation,
            error=str(exc),
            **context,
        )
        raise RepositoryError(f"Storage failure during {operation}") from exc


# ── Meeting Scope ───────────────────────────────────────────────────────────


class MeetingScope:
    """Transaction-bound handle on a single locked meeting.

    Created only by MeetingRepository.meeting_scope(). ``meeting`` is the
    snapshot read under the row lock, or None when the id does not exist.
    """

    def __init__(self, session: AsyncSession, model: MeetingModel | None) -> None:
        self._session = session
        self._model = model

    @property
    def meeting(self) -> Meeting | None:
        if self._model is None:
            return None
        return _model_to_meeting(self._model)

    def _require_model(self) -> MeetingModel:
        if self._model is None:
            raise RepositoryError("Meeting scope has no meeting row")
        return self._model

    async def update_meeting_status(
        self,
        expected: MeetingStatus,
        new: MeetingStatus,
        timestamp_field: str,
        at: datetime,
    ) -> Meeting | None:
        """Compare-and-swap the meeting status.

        Sets ``status = new`` and ``timestamp_field = at`` only if the row
        still holds ``expected``.

        Returns:
            The updated Meeting, or None if the expected status no longer
            matched (the conflict signal).
        """
        if timestamp_field not in STATUS_TIMESTAMP_FIELDS:
            raise ValueError(f"Unsupported status timestamp field: {timestamp_field}")
        model = self._require_model()

        stmt = (
            update(MeetingModel)
            .where(
                MeetingModel.id == model.id,
                MeetingModel.status == expected.value,
            )
            .values({"status": new.value, timestamp_field: at})
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            return None

        await self._session.refresh(model)
        return _model_to_meeting(model)

    async def count_open_memberships(self) -> int:
        model = self._require_model()
        stmt = select(func.count(MembershipModel.id)).where(
            MembershipModel.meeting_id == model.id,
            MembershipModel.left_at.is_(None),
        )
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

    async def _membership_model(self, user_id: str) -> MembershipModel | None:
        model = self._require_model()
        stmt = select(MembershipModel).where(
            MembershipModel.meeting_id == model.id,
            MembershipModel.user_id == uuid.UUID(user_id),
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_membership(self, user_id: str) -> Membership | None:
        membership = await self._membership_model(user_id)
        if membership is None:
            return None
        return _model_to_membership(membership)

    async def upsert_membership(self, user_id: str, joined_at: datetime) -> Membership:
        """Create the user's membership row, or reopen the existing one."""
        membership = await self._membership_model(user_id)
        if membership is None:
            membership = MembershipModel(
                meeting_id=self._require_model().id,
                user_id=uuid.UUID(user_id),
                joined_at=joined_at,
                left_at=None,
            )
            self._session.add(membership)
        else:
            membership.joined_at = joined_at
            membership.left_at = None

        await self._session.flush()
        return _model_to_membership(membership)

    async def close_membership(self, membership_id: str, left_at: datetime) -> bool:
        """Close one open membership. Returns False if it was not open."""
        stmt = (
            update(MembershipModel)
            .where(
                MembershipModel.id == uuid.UUID(membership_id),
                MembershipModel.left_at.is_(None),
            )
            .values(left_at=left_at)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount > 0

    async def close_all_open_memberships(self, left_at: datetime) -> int:
        """Close every open membership of the meeting. Returns rows closed."""
        model = self._require_model()
        stmt = (
            update(MembershipModel)
            .where(
                MembershipModel.meeting_id == model.id,
                MembershipModel.left_at.is_(None),
            )
            .values(left_at=left_at)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return int(result.rowcount)


# ── Repository ──────────────────────────────────────────────────────────────


class MeetingRepository:
    """Async storage operations for meetings and memberships.

    Args:
        session_factory: async_sessionmaker producing AsyncSession instances.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # ── Meetings ─────────────────────────────────────────────────────────

    async def create_meeting(self, host_id: str, data: MeetingCreate) -> Meeting:
        """Persist a new SCHEDULED meeting owned by ``host_id``."""
        with storage_errors("create_meeting", host_id=host_id):
            async with self._session_factory() as session:
                model = MeetingModel(
                    title=data.title,
                    description=data.description,
                    host_id=uuid.UUID(host_id),
                    max_capacity=data.max_capacity,
                    status=MeetingStatus.SCHEDULED.value,
                    created_at=datetime.now(timezone.utc),
                )
                session.add(model)
                await session.commit()
                await session.refresh(model)
                return _model_to_meeting(model)

    async def get_meeting(self, meeting_id: str) -> Meeting | None:
        """Get a meeting by ID. Returns None for unknown or malformed ids."""
        meeting_uuid = parse_id(meeting_id)
        if meeting_uuid is None:
            return None
        with storage_errors("get_meeting", meeting_id=meeting_id):
            async with self._session_factory() as session:
                model = await session.get(MeetingModel, meeting_uuid)
                if model is None:
                    return None
                return _model_to_meeting(model)

    async def list_active_meetings(self) -> list[MeetingOccupancy]:
        """ACTIVE meetings with live open-membership counts, newest first."""
        open_count = _open_count_subquery().label("open_count")
        stmt = (
            select(MeetingModel, open_count)
            .where(MeetingModel.status == MeetingStatus.ACTIVE.value)
            .order_by(MeetingModel.created_at.desc())
        )
        with storage_errors("list_active_meetings"):
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [
                    MeetingOccupancy(meeting=_model_to_meeting(model), open_count=count)
                    for model, count in result.all()
                ]

    # ── Memberships ──────────────────────────────────────────────────────

    async def count_open_memberships(self, meeting_id: str) -> int:
        meeting_uuid = parse_id(meeting_id)
        if meeting_uuid is None:
            return 0
        stmt = select(func.count(MembershipModel.id)).where(
            MembershipModel.meeting_id == meeting_uuid,
            MembershipModel.left_at.is_(None),
        )
        with storage_errors("count_open_memberships", meeting_id=meeting_id):
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return int(result.scalar_one())

    async def get_membership(self, meeting_id: str, user_id: str) -> Membership | None:
        meeting_uuid = parse_id(meeting_id)
        user_uuid = parse_id(user_id)
        if meeting_uuid is None or user_uuid is None:
            return None
        stmt = select(MembershipModel).where(
            MembershipModel.meeting_id == meeting_uuid,
            MembershipModel.user_id == user_uuid,
        )
        with storage_errors("get_membership", meeting_id=meeting_id, user_id=user_id):
            async with self._session_factory() as session:
                model = (await session.execute(stmt)).scalar_one_or_none()
                if model is None:
                    return None
                return _model_to_membership(model)

    async def list_open_participants(self, meeting_id: str) -> list[Membership]:
        """Open memberships of a meeting, earliest join first."""
        meeting_uuid = parse_id(meeting_id)
        if meeting_uuid is None:
            return []
        stmt = (
            select(MembershipModel)
            .where(
                MembershipModel.meeting_id == meeting_uuid,
                MembershipModel.left_at.is_(None),
            )
            .order_by(MembershipModel.joined_at)
        )
        with storage_errors("list_open_participants", meeting_id=meeting_id):
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [_model_to_membership(m) for m in result.scalars().all()]

    # ── Consistency Scope ────────────────────────────────────────────────

    @asynccontextmanager
    async def meeting_scope(self, meeting_id: str) -> AsyncGenerator[MeetingScope, None]:
        """Open a transaction with the meeting row locked.

        Yields a MeetingScope whose ``meeting`` is None if the id is unknown.
        Commits on normal exit; rolls back if the block raises.
        """
        meeting_uuid = parse_id(meeting_id)
        with storage_errors("meeting_scope", meeting_id=meeting_id):
            async with self._session_factory() as session:
                async with session.begin():
                    model = None
                    if meeting_uuid is not None:
                        stmt = (
                            select(MeetingModel)
                            .where(MeetingModel.id == meeting_uuid)
                            .with_for_update()
                        )
                        model = (await session.execute(stmt)).scalar_one_or_none()
                    yield MeetingScope(session, model)
