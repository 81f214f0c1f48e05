"""Participant admission controller -- join, leave and rejoin.

All checks for one call run inside a single meeting scope. The capacity
count and the membership write therefore see the same locked snapshot,
and two joins racing for the last slot cannot both be admitted.

Capacity is always the live count of open membership rows; there is no
stored counter to drift.

A session token is issued only after the admission has committed. If
issuing fails the membership stays open; the caller can leave and rejoin.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog

from src.convene.core.monitoring import meeting_admissions_total
from src.convene.meetings.errors import MeetingError, MeetingErrorKind
from src.convene.meetings.repository import MeetingRepository
from src.convene.meetings.schemas import MeetingStatus, SessionGrant
from src.convene.meetings.sessions import SessionIssuer

logger = structlog.get_logger(__name__)


class ParticipantAdmissionController:
    """Admits users into active meetings and records their departures.

    Args:
        repository: MeetingRepository (or any object with the same interface).
        session_issuer: Issues the token returned on a successful join.
    """

    def __init__(self, repository: MeetingRepository, session_issuer: SessionIssuer) -> None:
        self._repository = repository
        self._session_issuer = session_issuer

    async def join(self, meeting_id: str, user_id: str) -> SessionGrant:
        """Admit ``user_id`` into the meeting.

        Checks run in order: existence, status, capacity, duplicate
        membership. A user with a closed membership row gets that row
        reopened rather than a second one.

        Raises:
            MeetingError: NOT_FOUND, INVALID_STATE (meeting not ACTIVE),
                CAPACITY (meeting full), or CONFLICT (already joined).
        """
        try:
            async with self._repository.meeting_scope(meeting_id) as scope:
                meeting = scope.meeting
                if meeting is None:
                    raise MeetingError(
                        MeetingErrorKind.NOT_FOUND, "Meeting not found", meeting_id=meeting_id
                    )
                if meeting.status != MeetingStatus.ACTIVE:
                    raise MeetingError(
                        MeetingErrorKind.INVALID_STATE,
                        f"Cannot join a meeting that is {meeting.status.value}",
                        meeting_id=meeting_id,
                    )

                open_count = await scope.count_open_memberships()
                if open_count >= meeting.max_capacity:
                    raise MeetingError(
                        MeetingErrorKind.CAPACITY,
                        f"Meeting is full ({meeting.max_capacity} participants)",
                        meeting_id=meeting_id,
                    )

                existing = await scope.get_membership(user_id)
                if existing is not None and existing.is_open:
                    raise MeetingError(
                        MeetingErrorKind.CONFLICT,
                        "Already in meeting",
                        meeting_id=meeting_id,
                    )

                membership = await scope.upsert_membership(
                    user_id, datetime.now(timezone.utc)
                )
        except MeetingError as exc:
            meeting_admissions_total.labels(action="join", outcome=exc.kind.value).inc()
            logger.info(
                "participant.join_rejected",
                meeting_id=meeting_id,
                user_id=user_id,
                reason=exc.kind.value,
            )
            raise

        meeting_admissions_total.labels(action="join", outcome="admitted").inc()
        logger.info(
            "participant.joined",
            meeting_id=meeting_id,
            user_id=user_id,
            rejoin=existing is not None,
            open_count=open_count + 1,
            membership_id=membership.id,
        )

        return await self._session_issuer.issue_session(user_id, meeting_id)

    async def leave(self, meeting_id: str, user_id: str) -> None:
        """Close the user's open membership.

        Raises:
            MeetingError(CONFLICT): The user has no open membership.
        """
        try:
            async with self._repository.meeting_scope(meeting_id) as scope:
                membership = None
                if scope.meeting is not None:
                    membership = await scope.get_membership(user_id)
                if membership is None or not membership.is_open:
                    raise MeetingError(
                        MeetingErrorKind.CONFLICT,
                        "Not in meeting",
                        meeting_id=meeting_id,
                    )
                await scope.close_membership(membership.id, datetime.now(timezone.utc))
        except MeetingError as exc:
            meeting_admissions_total.labels(action="leave", outcome=exc.kind.value).inc()
            logger.info(
                "participant.leave_rejected",
                meeting_id=meeting_id,
                user_id=user_id,
                reason=exc.kind.value,
            )
            raise

        meeting_admissions_total.labels(action="leave", outcome="left").inc()
        logger.info("participant.left", meeting_id=meeting_id, user_id=user_id)
