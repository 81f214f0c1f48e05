"""Meeting lifecycle manager -- the status state machine and host checks.

Status moves strictly SCHEDULED -> ACTIVE -> ENDED. Only the host may
drive a transition. Each transition runs inside a repository meeting
scope, so the precondition checks and the write see the same locked row;
two concurrent starts can never both succeed.

Ending a meeting closes every open membership in the same transaction as
the status change. Either both happen or neither does.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog

from src.convene.core.monitoring import meeting_transitions_total
from src.convene.meetings.errors import MeetingError, MeetingErrorKind, RepositoryError
from src.convene.meetings.repository import MeetingRepository, MeetingScope
from src.convene.meetings.schemas import Meeting, MeetingCreate, MeetingStatus

logger = structlog.get_logger(__name__)

MAX_TITLE_LENGTH = 200

VALID_TRANSITIONS: dict[MeetingStatus, set[MeetingStatus]] = {
    MeetingStatus.SCHEDULED: {MeetingStatus.ACTIVE},
    MeetingStatus.ACTIVE: {MeetingStatus.ENDED},
    MeetingStatus.ENDED: set(),  # Terminal
}

# Timestamp column stamped when entering each status.
_TRANSITION_TIMESTAMPS: dict[MeetingStatus, str] = {
    MeetingStatus.ACTIVE: "started_at",
    MeetingStatus.ENDED: "ended_at",
}


def validate_status_transition(
    meeting_id: str, from_status: MeetingStatus, to_status: MeetingStatus
) -> None:
    """Validate that a status transition is allowed.

    Raises:
        MeetingError(INVALID_STATE): If the transition is not allowed.
    """
    if to_status not in VALID_TRANSITIONS.get(from_status, set()):
        raise MeetingError(
            MeetingErrorKind.INVALID_STATE,
            f"Meeting cannot move from {from_status.value} to {to_status.value}",
            meeting_id=meeting_id,
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MeetingLifecycleManager:
    """Creates meetings and drives their status transitions.

    Args:
        repository: MeetingRepository (or any object with the same interface).
        default_max_capacity: Capacity used when the caller gives none.
    """

    def __init__(self, repository: MeetingRepository, default_max_capacity: int = 50) -> None:
        self._repository = repository
        self._default_max_capacity = default_max_capacity

    async def create_meeting(
        self,
        title: str,
        description: str | None,
        host_id: str,
        max_capacity: int | None = None,
    ) -> Meeting:
        """Create a SCHEDULED meeting owned by ``host_id``.

        Raises:
            MeetingError(VALIDATION): Empty/oversized title or non-positive capacity.
        """
        title = (title or "").strip()
        if not title:
            raise MeetingError(MeetingErrorKind.VALIDATION, "Title is required")
        if len(title) > MAX_TITLE_LENGTH:
            raise MeetingError(
                MeetingErrorKind.VALIDATION,
                f"Title must be at most {MAX_TITLE_LENGTH} characters",
            )

        if max_capacity is None:
            max_capacity = self._default_max_capacity
        if max_capacity <= 0:
            raise MeetingError(
                MeetingErrorKind.VALIDATION, "Max capacity must be a positive integer"
            )

        meeting = await self._repository.create_meeting(
            host_id,
            MeetingCreate(
                title=title,
                description=description or None,
                max_capacity=max_capacity,
            ),
        )
        meeting_transitions_total.labels(status=MeetingStatus.SCHEDULED.value).inc()
        logger.info(
            "meeting.created",
            meeting_id=meeting.id,
            host_id=host_id,
            max_capacity=max_capacity,
        )
        return meeting

    async def start_meeting(self, meeting_id: str, caller_id: str) -> Meeting:
        """Move a SCHEDULED meeting to ACTIVE.

        Raises:
            MeetingError: NOT_FOUND, AUTHORIZATION (caller is not the host),
                or INVALID_STATE (meeting is not SCHEDULED).
        """
        async with self._repository.meeting_scope(meeting_id) as scope:
            meeting = self._authorize_host(scope, meeting_id, caller_id, action="start")
            updated = await self._transition(scope, meeting, MeetingStatus.ACTIVE)

        meeting_transitions_total.labels(status=MeetingStatus.ACTIVE.value).inc()
        logger.info("meeting.started", meeting_id=meeting_id, host_id=caller_id)
        return updated

    async def end_meeting(self, meeting_id: str, caller_id: str) -> Meeting:
        """Move an ACTIVE meeting to ENDED and close all open memberships.

        Raises:
            MeetingError: NOT_FOUND, AUTHORIZATION (caller is not the host),
                or INVALID_STATE (meeting is not ACTIVE).
        """
        async with self._repository.meeting_scope(meeting_id) as scope:
            meeting = self._authorize_host(scope, meeting_id, caller_id, action="end")
            now = _utcnow()
            updated = await self._transition(scope, meeting, MeetingStatus.ENDED, at=now)
            closed = await scope.close_all_open_memberships(now)

        meeting_transitions_total.labels(status=MeetingStatus.ENDED.value).inc()
        logger.info(
            "meeting.ended",
            meeting_id=meeting_id,
            host_id=caller_id,
            memberships_closed=closed,
        )
        return updated

    # ── Internals ────────────────────────────────────────────────────────

    @staticmethod
    def _authorize_host(
        scope: MeetingScope, meeting_id: str, caller_id: str, action: str
    ) -> Meeting:
        meeting = scope.meeting
        if meeting is None:
            raise MeetingError(
                MeetingErrorKind.NOT_FOUND, "Meeting not found", meeting_id=meeting_id
            )
        if meeting.host_id != caller_id:
            logger.warning(
                "meeting.host_check_failed",
                meeting_id=meeting_id,
                caller_id=caller_id,
                action=action,
            )
            raise MeetingError(
                MeetingErrorKind.AUTHORIZATION,
                f"Only the host can {action} the meeting",
                meeting_id=meeting_id,
            )
        return meeting

    @staticmethod
    async def _transition(
        scope: MeetingScope,
        meeting: Meeting,
        to_status: MeetingStatus,
        at: datetime | None = None,
    ) -> Meeting:
        validate_status_transition(meeting.id, meeting.status, to_status)

        updated = await scope.update_meeting_status(
            expected=meeting.status,
            new=to_status,
            timestamp_field=_TRANSITION_TIMESTAMPS[to_status],
            at=at or _utcnow(),
        )
        if updated is None:
            # The row is locked for this scope, so a lost swap means the
            # storage layer did not honour the lock.
            logger.error(
                "meeting.status_swap_lost",
                meeting_id=meeting.id,
                expected=meeting.status.value,
                target=to_status.value,
            )
            raise RepositoryError(
                f"Conditional status update lost for meeting {meeting.id}"
            )

        return updated
