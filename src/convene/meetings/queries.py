"""Query service -- read-only projections over meetings.

Nothing here takes a meeting scope. Projections are assembled from
independent reads, and host/participant identities are resolved through
the identity store in one batch lookup per call.
"""

from __future__ import annotations

import structlog

from src.convene.meetings.repository import MeetingRepository
from src.convene.meetings.schemas import MeetingDetail, MeetingSummary, Participant
from src.convene.users.repository import UserRepository

logger = structlog.get_logger(__name__)


class MeetingQueryService:
    """Builds the active meetings list and meeting detail views."""

    def __init__(self, repository: MeetingRepository, user_repository: UserRepository) -> None:
        self._repository = repository
        self._users = user_repository

    async def list_active_meetings(self) -> list[MeetingSummary]:
        """ACTIVE meetings with live participant counts, newest first."""
        occupancies = await self._repository.list_active_meetings()
        hosts = await self._users.find_users_by_ids(
            {o.meeting.host_id for o in occupancies}
        )
        return [
            MeetingSummary(
                **o.meeting.model_dump(),
                host=hosts.get(o.meeting.host_id),
                participant_count=o.open_count,
            )
            for o in occupancies
        ]

    async def get_meeting_detail(self, meeting_id: str) -> MeetingDetail | None:
        """Full meeting with host and open roster, or None if unknown."""
        meeting = await self._repository.get_meeting(meeting_id)
        if meeting is None:
            logger.debug("meeting.detail_not_found", meeting_id=meeting_id)
            return None

        memberships = await self._repository.list_open_participants(meeting_id)
        users = await self._users.find_users_by_ids(
            {meeting.host_id} | {m.user_id for m in memberships}
        )
        return MeetingDetail(
            **meeting.model_dump(),
            host=users.get(meeting.host_id),
            participants=[
                Participant(
                    user_id=m.user_id,
                    joined_at=m.joined_at,
                    user=users.get(m.user_id),
                )
                for m in memberships
            ],
        )
