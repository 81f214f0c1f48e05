"""Pydantic v2 schemas for the meeting domain.

Defines the data contracts for meetings, participant memberships, query
projections (summaries and detail views), and session tokens. The lifecycle
manager, admission controller, query service, and API layer all import
from this module.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from src.convene.schemas.user import UserRead


# ── Enums ────────────────────────────────────────────────────────────────────


class MeetingStatus(str, Enum):
    """Lifecycle status of a meeting."""

    SCHEDULED = "scheduled"
    ACTIVE = "active"
    ENDED = "ended"


# ── Meeting Models ───────────────────────────────────────────────────────────


class MeetingCreate(BaseModel):
    """Validated input for creating a meeting."""

    title: str
    description: str | None = None
    max_capacity: int = Field(gt=0)


class Meeting(BaseModel):
    """A meeting as stored."""

    id: str
    title: str
    description: str | None = None
    host_id: str
    max_capacity: int
    status: MeetingStatus = MeetingStatus.SCHEDULED
    created_at: datetime
    started_at: datetime | None = None
    ended_at: datetime | None = None


class Membership(BaseModel):
    """One user's membership in one meeting."""

    id: str
    meeting_id: str
    user_id: str
    joined_at: datetime
    left_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.left_at is None


# ── Query Projections ────────────────────────────────────────────────────────


class MeetingOccupancy(BaseModel):
    """An active meeting paired with its live open-membership count."""

    meeting: Meeting
    open_count: int = 0


class MeetingSummary(Meeting):
    """Entry in the active meetings list."""

    host: UserRead | None = None
    participant_count: int = 0


class Participant(BaseModel):
    """A user currently present in a meeting."""

    user_id: str
    joined_at: datetime
    user: UserRead | None = None


class MeetingDetail(Meeting):
    """Full meeting with host identity and live roster."""

    host: UserRead | None = None
    participants: list[Participant] = Field(default_factory=list)


# ── Session Tokens ───────────────────────────────────────────────────────────


class SessionGrant(BaseModel):
    """Token handed to a user on successful join."""

    token: str
    expires_at: datetime


class SessionToken(BaseModel):
    """A stored session token."""

    token: str
    user_id: str
    meeting_id: str | None = None
    expires_at: datetime
    created_at: datetime

    def is_expired(self, at: datetime) -> bool:
        return at >= self.expires_at
