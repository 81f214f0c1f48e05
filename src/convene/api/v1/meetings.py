"""REST API endpoints for meetings.

Lifecycle (create/start/end), admission (join/leave), and read-only
queries (active list, detail). All endpoints require an authenticated
caller; the caller id is what the core checks host ownership against.

Core failures propagate as MeetingError and are rendered by the handlers
in ``src.convene.api.errors``.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from src.convene.api.deps import (
    get_admission_controller,
    get_current_user,
    get_lifecycle_manager,
    get_query_service,
)
from src.convene.meetings.admission import ParticipantAdmissionController
from src.convene.meetings.lifecycle import MeetingLifecycleManager
from src.convene.meetings.queries import MeetingQueryService
from src.convene.meetings.schemas import (
    Meeting,
    MeetingDetail,
    MeetingSummary,
    Participant,
)
from src.convene.schemas.user import UserRead

router = APIRouter(prefix="/api/v1/meetings", tags=["meetings"])


# ── Request / Response Schemas ───────────────────────────────────────────────


class CreateMeetingRequest(BaseModel):
    """Body for POST /meetings. Title and capacity rules are enforced by the core."""

    title: str
    description: str | None = None
    max_capacity: int | None = None


class UserSummary(BaseModel):
    id: str
    display_name: str


class MeetingResponse(BaseModel):
    """Response for meeting data, serializes datetimes to ISO strings."""

    id: str
    title: str
    description: str | None = None
    host_id: str
    max_capacity: int
    status: str
    created_at: str
    started_at: str | None = None
    ended_at: str | None = None


class MeetingSummaryResponse(MeetingResponse):
    host: UserSummary | None = None
    participant_count: int = 0


class ParticipantResponse(BaseModel):
    user_id: str
    display_name: str | None = None
    joined_at: str


class MeetingDetailResponse(MeetingResponse):
    host: UserSummary | None = None
    participants: list[ParticipantResponse] = Field(default_factory=list)


class JoinResponse(BaseModel):
    message: str
    session_token: str
    expires_at: str


class LeaveResponse(BaseModel):
    message: str


# ── Conversion Helpers ───────────────────────────────────────────────────────


def _user_summary(user: UserRead | None) -> UserSummary | None:
    if user is None:
        return None
    return UserSummary(id=user.id, display_name=user.display_name)


def _meeting_fields(m: Meeting) -> dict:
    return {
        "id": m.id,
        "title": m.title,
        "description": m.description,
        "host_id": m.host_id,
        "max_capacity": m.max_capacity,
        "status": m.status.value,
        "created_at": m.created_at.isoformat(),
        "started_at": m.started_at.isoformat() if m.started_at else None,
        "ended_at": m.ended_at.isoformat() if m.ended_at else None,
    }


def _meeting_to_response(m: Meeting) -> MeetingResponse:
    return MeetingResponse(**_meeting_fields(m))


def _summary_to_response(s: MeetingSummary) -> MeetingSummaryResponse:
    return MeetingSummaryResponse(
        **_meeting_fields(s),
        host=_user_summary(s.host),
        participant_count=s.participant_count,
    )


def _participant_to_response(p: Participant) -> ParticipantResponse:
    return ParticipantResponse(
        user_id=p.user_id,
        display_name=p.user.display_name if p.user else None,
        joined_at=p.joined_at.isoformat(),
    )


def _detail_to_response(d: MeetingDetail) -> MeetingDetailResponse:
    return MeetingDetailResponse(
        **_meeting_fields(d),
        host=_user_summary(d.host),
        participants=[_participant_to_response(p) for p in d.participants],
    )


# ── Lifecycle ────────────────────────────────────────────────────────────────


@router.post("", response_model=MeetingResponse, status_code=status.HTTP_201_CREATED)
async def create_meeting(
    body: CreateMeetingRequest,
    user: UserRead = Depends(get_current_user),
    lifecycle: MeetingLifecycleManager = Depends(get_lifecycle_manager),
) -> MeetingResponse:
    """Create a SCHEDULED meeting hosted by the caller."""
    meeting = await lifecycle.create_meeting(
        title=body.title,
        description=body.description,
        host_id=user.id,
        max_capacity=body.max_capacity,
    )
    return _meeting_to_response(meeting)


@router.post("/{meeting_id}/start", response_model=MeetingResponse)
async def start_meeting(
    meeting_id: str,
    user: UserRead = Depends(get_current_user),
    lifecycle: MeetingLifecycleManager = Depends(get_lifecycle_manager),
) -> MeetingResponse:
    meeting = await lifecycle.start_meeting(meeting_id, user.id)
    return _meeting_to_response(meeting)


@router.post("/{meeting_id}/end", response_model=MeetingResponse)
async def end_meeting(
    meeting_id: str,
    user: UserRead = Depends(get_current_user),
    lifecycle: MeetingLifecycleManager = Depends(get_lifecycle_manager),
) -> MeetingResponse:
    """End the meeting; every participant still present is checked out."""
    meeting = await lifecycle.end_meeting(meeting_id, user.id)
    return _meeting_to_response(meeting)


# ── Admission ────────────────────────────────────────────────────────────────


@router.post("/{meeting_id}/join", response_model=JoinResponse)
async def join_meeting(
    meeting_id: str,
    user: UserRead = Depends(get_current_user),
    admission: ParticipantAdmissionController = Depends(get_admission_controller),
) -> JoinResponse:
    """Join an active meeting and receive a session token."""
    grant = await admission.join(meeting_id, user.id)
    return JoinResponse(
        message="Joined meeting",
        session_token=grant.token,
        expires_at=grant.expires_at.isoformat(),
    )


@router.post("/{meeting_id}/leave", response_model=LeaveResponse)
async def leave_meeting(
    meeting_id: str,
    user: UserRead = Depends(get_current_user),
    admission: ParticipantAdmissionController = Depends(get_admission_controller),
) -> LeaveResponse:
    await admission.leave(meeting_id, user.id)
    return LeaveResponse(message="Left meeting")


# ── Queries ──────────────────────────────────────────────────────────────────


@router.get("/active", response_model=list[MeetingSummaryResponse])
async def list_active_meetings(
    user: UserRead = Depends(get_current_user),
    queries: MeetingQueryService = Depends(get_query_service),
) -> list[MeetingSummaryResponse]:
    """Active meetings with live participant counts, newest first."""
    summaries = await queries.list_active_meetings()
    return [_summary_to_response(s) for s in summaries]


@router.get("/{meeting_id}", response_model=MeetingDetailResponse)
async def get_meeting(
    meeting_id: str,
    user: UserRead = Depends(get_current_user),
    queries: MeetingQueryService = Depends(get_query_service),
) -> MeetingDetailResponse:
    """Get meeting details with the current roster."""
    detail = await queries.get_meeting_detail(meeting_id)
    if detail is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Meeting not found: {meeting_id}",
        )
    return _detail_to_response(detail)
