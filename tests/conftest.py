"""Shared test doubles and fixtures for the meeting core.

Provides:
- InMemoryMeetingRepository: MeetingRepository stand-in with a per-meeting
  asyncio.Lock and staged writes, so meeting_scope() commits on clean exit
  and discards everything on exception
- FakeSessionIssuer: records every issued grant
- InMemoryUserRepository: identity store keyed by user id
- Service fixtures wired over the doubles
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncGenerator, Iterable
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from src.convene.meetings.admission import ParticipantAdmissionController
from src.convene.meetings.lifecycle import MeetingLifecycleManager
from src.convene.meetings.queries import MeetingQueryService
from src.convene.meetings.schemas import (
    Meeting,
    MeetingCreate,
    MeetingOccupancy,
    MeetingStatus,
    Membership,
    SessionGrant,
    SessionToken,
)
from src.convene.schemas.user import UserRead
from src.convene.users.repository import EmailAlreadyRegisteredError


# ── In-Memory Meeting Repository ─────────────────────────────────────────────


class InMemoryMeetingScope:
    """Staged view of one meeting; changes land only when the scope commits."""

    def __init__(self, meeting: Meeting | None, memberships: dict[str, Membership]) -> None:
        self._meeting = meeting
        self.memberships = memberships

    @property
    def meeting(self) -> Meeting | None:
        return self._meeting

    async def update_meeting_status(
        self,
        expected: MeetingStatus,
        new: MeetingStatus,
        timestamp_field: str,
        at: datetime,
    ) -> Meeting | None:
        if self._meeting is None or self._meeting.status != expected:
            return None
        self._meeting = self._meeting.model_copy(
            update={"status": new, timestamp_field: at}
        )
        return self._meeting

    async def count_open_memberships(self) -> int:
        # Yield so that unserialized callers would interleave here.
        await asyncio.sleep(0)
        return sum(1 for m in self.memberships.values() if m.is_open)

    async def get_membership(self, user_id: str) -> Membership | None:
        return self.memberships.get(user_id)

    async def upsert_membership(self, user_id: str, joined_at: datetime) -> Membership:
        existing = self.memberships.get(user_id)
        if existing is None:
            membership = Membership(
                id=str(uuid.uuid4()),
                meeting_id=self._meeting.id,
                user_id=user_id,
                joined_at=joined_at,
            )
        else:
            membership = existing.model_copy(update={"joined_at": joined_at, "left_at": None})
        self.memberships[user_id] = membership
        return membership

    async def close_membership(self, membership_id: str, left_at: datetime) -> bool:
        for user_id, m in self.memberships.items():
            if m.id == membership_id and m.is_open:
                self.memberships[user_id] = m.model_copy(update={"left_at": left_at})
                return True
        return False

    async def close_all_open_memberships(self, left_at: datetime) -> int:
        closed = 0
        for user_id, m in list(self.memberships.items()):
            if m.is_open:
                self.memberships[user_id] = m.model_copy(update={"left_at": left_at})
                closed += 1
        return closed


class InMemoryMeetingRepository:
    """In-memory MeetingRepository for testing without database."""

    scope_class = InMemoryMeetingScope

    def __init__(self) -> None:
        self.meetings: dict[str, Meeting] = {}
        # meeting_id -> user_id -> Membership
        self.memberships: dict[str, dict[str, Membership]] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self.commits = 0
        self.rollbacks = 0

    async def create_meeting(self, host_id: str, data: MeetingCreate) -> Meeting:
        meeting = Meeting(
            id=str(uuid.uuid4()),
            title=data.title,
            description=data.description,
            host_id=host_id,
            max_capacity=data.max_capacity,
            status=MeetingStatus.SCHEDULED,
            created_at=datetime.now(timezone.utc),
        )
        self.meetings[meeting.id] = meeting
        self.memberships[meeting.id] = {}
        return meeting

    async def get_meeting(self, meeting_id: str) -> Meeting | None:
        return self.meetings.get(meeting_id)

    async def list_active_meetings(self) -> list[MeetingOccupancy]:
        active = [m for m in self.meetings.values() if m.status == MeetingStatus.ACTIVE]
        active.sort(key=lambda m: m.created_at, reverse=True)
        return [
            MeetingOccupancy(meeting=m, open_count=await self.count_open_memberships(m.id))
            for m in active
        ]

    async def count_open_memberships(self, meeting_id: str) -> int:
        return sum(1 for m in self.memberships.get(meeting_id, {}).values() if m.is_open)

    async def get_membership(self, meeting_id: str, user_id: str) -> Membership | None:
        return self.memberships.get(meeting_id, {}).get(user_id)

    async def list_open_participants(self, meeting_id: str) -> list[Membership]:
        open_rows = [m for m in self.memberships.get(meeting_id, {}).values() if m.is_open]
        return sorted(open_rows, key=lambda m: m.joined_at)

    @asynccontextmanager
    async def meeting_scope(self, meeting_id: str) -> AsyncGenerator[InMemoryMeetingScope, None]:
        lock = self._locks.setdefault(meeting_id, asyncio.Lock())
        async with lock:
            scope = self.scope_class(
                self.meetings.get(meeting_id),
                dict(self.memberships.get(meeting_id, {})),
            )
            try:
                yield scope
            except BaseException:
                self.rollbacks += 1
                raise
            if scope.meeting is not None:
                self.meetings[meeting_id] = scope.meeting
                self.memberships[meeting_id] = scope.memberships
            self.commits += 1


# ── Session Issuer / Identity Store ──────────────────────────────────────────


class FakeSessionIssuer:
    """Issues predictable tokens and remembers them."""

    def __init__(self, ttl: timedelta = timedelta(minutes=60)) -> None:
        self.ttl = ttl
        self.issued: list[SessionToken] = []

    async def issue_session(self, user_id: str, meeting_id: str | None = None) -> SessionGrant:
        now = datetime.now(timezone.utc)
        token = SessionToken(
            token=f"session-{len(self.issued) + 1}",
            user_id=user_id,
            meeting_id=meeting_id,
            expires_at=now + self.ttl,
            created_at=now,
        )
        self.issued.append(token)
        return SessionGrant(token=token.token, expires_at=token.expires_at)

    async def verify_session(self, token: str) -> SessionToken | None:
        for issued in self.issued:
            if issued.token == token and not issued.is_expired(datetime.now(timezone.utc)):
                return issued
        return None


class InMemoryUserRepository:
    """In-memory UserRepository; records keep the password hash for login."""

    def __init__(self) -> None:
        self._records: dict[str, SimpleNamespace] = {}

    def add(self, display_name: str, email: str | None = None, hashed_password: str = "") -> UserRead:
        user_id = str(uuid.uuid4())
        email = email or f"{display_name.lower()}@example.com"
        self._records[user_id] = SimpleNamespace(
            id=uuid.UUID(user_id),
            email=email,
            display_name=display_name,
            hashed_password=hashed_password,
        )
        return self._to_read(self._records[user_id])

    @staticmethod
    def _to_read(record: SimpleNamespace) -> UserRead:
        return UserRead(id=str(record.id), email=record.email, display_name=record.display_name)

    async def find_user_by_id(self, user_id: str) -> UserRead | None:
        record = self._records.get(user_id)
        return self._to_read(record) if record else None

    async def find_users_by_ids(self, user_ids: Iterable[str]) -> dict[str, UserRead]:
        return {
            uid: self._to_read(self._records[uid]) for uid in user_ids if uid in self._records
        }

    async def find_user_by_email(self, email: str) -> SimpleNamespace | None:
        for record in self._records.values():
            if record.email == email.lower():
                return record
        return None

    async def create_user(self, email: str, display_name: str, hashed_password: str) -> UserRead:
        if await self.find_user_by_email(email) is not None:
            raise EmailAlreadyRegisteredError(email)
        return self.add(display_name, email=email.lower(), hashed_password=hashed_password)


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def meeting_repo() -> InMemoryMeetingRepository:
    return InMemoryMeetingRepository()


@pytest.fixture
def session_issuer() -> FakeSessionIssuer:
    return FakeSessionIssuer()


@pytest.fixture
def user_repo() -> InMemoryUserRepository:
    return InMemoryUserRepository()


@pytest.fixture
def lifecycle(meeting_repo) -> MeetingLifecycleManager:
    return MeetingLifecycleManager(repository=meeting_repo, default_max_capacity=50)


@pytest.fixture
def admission(meeting_repo, session_issuer) -> ParticipantAdmissionController:
    return ParticipantAdmissionController(repository=meeting_repo, session_issuer=session_issuer)


@pytest.fixture
def queries(meeting_repo, user_repo) -> MeetingQueryService:
    return MeetingQueryService(repository=meeting_repo, user_repository=user_repo)
