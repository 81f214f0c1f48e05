"""Tests for MeetingLifecycleManager: creation rules, host checks, and
the SCHEDULED -> ACTIVE -> ENDED state machine including the end cascade.

Uses the InMemoryMeetingRepository double from conftest.
"""

from __future__ import annotations

import asyncio
import uuid

import pytest
from prometheus_client import REGISTRY

from src.convene.meetings.errors import MeetingError, MeetingErrorKind, RepositoryError
from src.convene.meetings.lifecycle import (
    VALID_TRANSITIONS,
    MeetingLifecycleManager,
    validate_status_transition,
)
from src.convene.meetings.schemas import MeetingStatus


HOST_ID = str(uuid.uuid4())
OTHER_ID = str(uuid.uuid4())


def _uid() -> str:
    return str(uuid.uuid4())


def _transitions(status: MeetingStatus) -> float:
    value = REGISTRY.get_sample_value("meeting_transitions_total", {"status": status.value})
    return value or 0.0


# ── State Machine ────────────────────────────────────────────────────────────


class TestStatusTransitions:
    def test_forward_transitions_allowed(self):
        validate_status_transition("m", MeetingStatus.SCHEDULED, MeetingStatus.ACTIVE)
        validate_status_transition("m", MeetingStatus.ACTIVE, MeetingStatus.ENDED)

    @pytest.mark.parametrize(
        "from_status,to_status",
        [
            (MeetingStatus.SCHEDULED, MeetingStatus.ENDED),
            (MeetingStatus.ACTIVE, MeetingStatus.SCHEDULED),
            (MeetingStatus.ENDED, MeetingStatus.ACTIVE),
            (MeetingStatus.ENDED, MeetingStatus.SCHEDULED),
            (MeetingStatus.ACTIVE, MeetingStatus.ACTIVE),
        ],
    )
    def test_other_transitions_rejected(self, from_status, to_status):
        with pytest.raises(MeetingError) as exc_info:
            validate_status_transition("m", from_status, to_status)
        assert exc_info.value.kind == MeetingErrorKind.INVALID_STATE
        assert exc_info.value.meeting_id == "m"

    def test_ended_is_terminal(self):
        assert VALID_TRANSITIONS[MeetingStatus.ENDED] == set()


# ── create_meeting ───────────────────────────────────────────────────────────


class TestCreateMeeting:
    @pytest.mark.asyncio
    async def test_creates_scheduled_meeting(self, lifecycle, meeting_repo):
        meeting = await lifecycle.create_meeting("Standup", "daily sync", HOST_ID, 10)

        assert meeting.status == MeetingStatus.SCHEDULED
        assert meeting.host_id == HOST_ID
        assert meeting.max_capacity == 10
        assert meeting.description == "daily sync"
        assert meeting.started_at is None
        assert meeting.ended_at is None
        assert await meeting_repo.count_open_memberships(meeting.id) == 0

    @pytest.mark.asyncio
    async def test_default_capacity(self, lifecycle):
        meeting = await lifecycle.create_meeting("Planning", None, HOST_ID)
        assert meeting.max_capacity == 50

    @pytest.mark.asyncio
    async def test_configured_default_capacity(self, meeting_repo):
        manager = MeetingLifecycleManager(repository=meeting_repo, default_max_capacity=8)
        meeting = await manager.create_meeting("Planning", None, HOST_ID)
        assert meeting.max_capacity == 8

    @pytest.mark.asyncio
    async def test_title_is_trimmed(self, lifecycle):
        meeting = await lifecycle.create_meeting("  Retro  ", None, HOST_ID)
        assert meeting.title == "Retro"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("title", ["", "   ", "\t\n"])
    async def test_empty_title_rejected(self, lifecycle, meeting_repo, title):
        with pytest.raises(MeetingError) as exc_info:
            await lifecycle.create_meeting(title, None, HOST_ID)
        assert exc_info.value.kind == MeetingErrorKind.VALIDATION
        assert meeting_repo.meetings == {}

    @pytest.mark.asyncio
    async def test_overlong_title_rejected(self, lifecycle):
        with pytest.raises(MeetingError) as exc_info:
            await lifecycle.create_meeting("x" * 201, None, HOST_ID)
        assert exc_info.value.kind == MeetingErrorKind.VALIDATION

    @pytest.mark.asyncio
    @pytest.mark.parametrize("capacity", [0, -1])
    async def test_non_positive_capacity_rejected(self, lifecycle, capacity):
        with pytest.raises(MeetingError) as exc_info:
            await lifecycle.create_meeting("Standup", None, HOST_ID, capacity)
        assert exc_info.value.kind == MeetingErrorKind.VALIDATION


# ── start_meeting ────────────────────────────────────────────────────────────


class TestStartMeeting:
    @pytest.mark.asyncio
    async def test_host_starts_meeting(self, lifecycle):
        meeting = await lifecycle.create_meeting("Standup", None, HOST_ID)

        started = await lifecycle.start_meeting(meeting.id, HOST_ID)

        assert started.status == MeetingStatus.ACTIVE
        assert started.started_at is not None
        assert started.ended_at is None

    @pytest.mark.asyncio
    async def test_unknown_meeting(self, lifecycle):
        with pytest.raises(MeetingError) as exc_info:
            await lifecycle.start_meeting(_uid(), HOST_ID)
        assert exc_info.value.kind == MeetingErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_non_host_rejected_in_every_status(self, lifecycle):
        meeting = await lifecycle.create_meeting("Standup", None, HOST_ID)

        for advance in (None, lifecycle.start_meeting, lifecycle.end_meeting):
            if advance is not None:
                await advance(meeting.id, HOST_ID)
            with pytest.raises(MeetingError) as exc_info:
                await lifecycle.start_meeting(meeting.id, OTHER_ID)
            assert exc_info.value.kind == MeetingErrorKind.AUTHORIZATION

    @pytest.mark.asyncio
    async def test_cannot_start_twice(self, lifecycle):
        meeting = await lifecycle.create_meeting("Standup", None, HOST_ID)
        await lifecycle.start_meeting(meeting.id, HOST_ID)

        with pytest.raises(MeetingError) as exc_info:
            await lifecycle.start_meeting(meeting.id, HOST_ID)
        assert exc_info.value.kind == MeetingErrorKind.INVALID_STATE

    @pytest.mark.asyncio
    async def test_concurrent_starts_exactly_one_wins(self, lifecycle, meeting_repo):
        meeting = await lifecycle.create_meeting("Standup", None, HOST_ID)

        results = await asyncio.gather(
            lifecycle.start_meeting(meeting.id, HOST_ID),
            lifecycle.start_meeting(meeting.id, HOST_ID),
            return_exceptions=True,
        )

        wins = [r for r in results if not isinstance(r, Exception)]
        errors = [r for r in results if isinstance(r, MeetingError)]
        assert len(wins) == 1
        assert len(errors) == 1
        assert errors[0].kind == MeetingErrorKind.INVALID_STATE
        assert meeting_repo.meetings[meeting.id].status == MeetingStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_lost_status_swap_is_repository_error(self, lifecycle, meeting_repo, monkeypatch):
        meeting = await lifecycle.create_meeting("Standup", None, HOST_ID)

        async def _always_conflict(self, expected, new, timestamp_field, at):
            return None

        monkeypatch.setattr(meeting_repo.scope_class, "update_meeting_status", _always_conflict)

        with pytest.raises(RepositoryError):
            await lifecycle.start_meeting(meeting.id, HOST_ID)
        assert meeting_repo.meetings[meeting.id].status == MeetingStatus.SCHEDULED


# ── end_meeting ──────────────────────────────────────────────────────────────


class TestEndMeeting:
    @pytest.mark.asyncio
    async def test_cannot_end_scheduled_meeting(self, lifecycle):
        meeting = await lifecycle.create_meeting("Standup", None, HOST_ID)

        with pytest.raises(MeetingError) as exc_info:
            await lifecycle.end_meeting(meeting.id, HOST_ID)
        assert exc_info.value.kind == MeetingErrorKind.INVALID_STATE

    @pytest.mark.asyncio
    async def test_non_host_cannot_end(self, lifecycle):
        meeting = await lifecycle.create_meeting("Standup", None, HOST_ID)
        await lifecycle.start_meeting(meeting.id, HOST_ID)

        with pytest.raises(MeetingError) as exc_info:
            await lifecycle.end_meeting(meeting.id, OTHER_ID)
        assert exc_info.value.kind == MeetingErrorKind.AUTHORIZATION

    @pytest.mark.asyncio
    async def test_end_closes_all_open_memberships(self, lifecycle, admission, meeting_repo):
        meeting = await lifecycle.create_meeting("All hands", None, HOST_ID, 10)
        await lifecycle.start_meeting(meeting.id, HOST_ID)
        users = [_uid() for _ in range(3)]
        for user_id in users:
            await admission.join(meeting.id, user_id)
        await admission.leave(meeting.id, users[0])
        assert await meeting_repo.count_open_memberships(meeting.id) == 2

        ended = await lifecycle.end_meeting(meeting.id, HOST_ID)

        assert ended.status == MeetingStatus.ENDED
        assert ended.ended_at is not None
        assert ended.started_at is not None
        assert await meeting_repo.count_open_memberships(meeting.id) == 0
        for user_id in users[1:]:
            membership = await meeting_repo.get_membership(meeting.id, user_id)
            assert membership.left_at == ended.ended_at

    @pytest.mark.asyncio
    async def test_cascade_failure_rolls_back_status(
        self, lifecycle, admission, meeting_repo, monkeypatch
    ):
        meeting = await lifecycle.create_meeting("Standup", None, HOST_ID)
        await lifecycle.start_meeting(meeting.id, HOST_ID)
        await admission.join(meeting.id, _uid())

        async def _storage_down(self, left_at):
            raise RepositoryError("storage unavailable")

        monkeypatch.setattr(meeting_repo.scope_class, "close_all_open_memberships", _storage_down)

        with pytest.raises(RepositoryError):
            await lifecycle.end_meeting(meeting.id, HOST_ID)

        assert meeting_repo.meetings[meeting.id].status == MeetingStatus.ACTIVE
        assert meeting_repo.meetings[meeting.id].ended_at is None
        assert await meeting_repo.count_open_memberships(meeting.id) == 1

    @pytest.mark.asyncio
    async def test_cannot_end_twice(self, lifecycle):
        meeting = await lifecycle.create_meeting("Standup", None, HOST_ID)
        await lifecycle.start_meeting(meeting.id, HOST_ID)
        await lifecycle.end_meeting(meeting.id, HOST_ID)

        with pytest.raises(MeetingError) as exc_info:
            await lifecycle.end_meeting(meeting.id, HOST_ID)
        assert exc_info.value.kind == MeetingErrorKind.INVALID_STATE

    @pytest.mark.asyncio
    async def test_failed_precondition_rolls_back_scope(self, lifecycle, meeting_repo):
        meeting = await lifecycle.create_meeting("Standup", None, HOST_ID)

        with pytest.raises(MeetingError):
            await lifecycle.end_meeting(meeting.id, OTHER_ID)

        assert meeting_repo.rollbacks == 1
        assert meeting_repo.meetings[meeting.id].status == MeetingStatus.SCHEDULED


# ── Transition Metrics ───────────────────────────────────────────────────────


class TestTransitionMetrics:
    @pytest.mark.asyncio
    async def test_counts_each_committed_transition(self, lifecycle):
        before = {s: _transitions(s) for s in MeetingStatus}

        meeting = await lifecycle.create_meeting("Standup", None, HOST_ID)
        await lifecycle.start_meeting(meeting.id, HOST_ID)
        await lifecycle.end_meeting(meeting.id, HOST_ID)

        for status in MeetingStatus:
            assert _transitions(status) == before[status] + 1

    @pytest.mark.asyncio
    async def test_rolled_back_end_is_not_counted(
        self, lifecycle, admission, meeting_repo, monkeypatch
    ):
        meeting = await lifecycle.create_meeting("Standup", None, HOST_ID)
        await lifecycle.start_meeting(meeting.id, HOST_ID)
        await admission.join(meeting.id, _uid())
        ended_before = _transitions(MeetingStatus.ENDED)

        async def _storage_down(self, left_at):
            raise RepositoryError("storage unavailable")

        monkeypatch.setattr(meeting_repo.scope_class, "close_all_open_memberships", _storage_down)

        with pytest.raises(RepositoryError):
            await lifecycle.end_meeting(meeting.id, HOST_ID)

        assert _transitions(MeetingStatus.ENDED) == ended_before

    @pytest.mark.asyncio
    async def test_rejected_start_is_not_counted(self, lifecycle):
        meeting = await lifecycle.create_meeting("Standup", None, HOST_ID)
        active_before = _transitions(MeetingStatus.ACTIVE)

        with pytest.raises(MeetingError):
            await lifecycle.start_meeting(meeting.id, OTHER_ID)

        assert _transitions(MeetingStatus.ACTIVE) == active_before
