"""Failure taxonomy for the meeting core.

Expected failures are one exception type tagged with a MeetingErrorKind,
so callers branch on ``exc.kind`` instead of catching subclasses.
Storage failures are a separate RepositoryError and are never part of
the taxonomy.
"""

from __future__ import annotations

from enum import Enum


class MeetingErrorKind(str, Enum):
    """Kinds of expected, caller-visible failure."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    AUTHORIZATION = "authorization"
    INVALID_STATE = "invalid_state"
    CAPACITY = "capacity"
    CONFLICT = "conflict"


class MeetingError(Exception):
    """A failed precondition on a meeting operation.

    Args:
        kind: Which precondition failed.
        message: Human-readable description suitable for the caller.
        meeting_id: Meeting the operation targeted, if any.
    """

    def __init__(
        self,
        kind: MeetingErrorKind,
        message: str,
        meeting_id: str | None = None,
    ) -> None:
        self.kind = kind
        self.message = message
        self.meeting_id = meeting_id
        super().__init__(message)

    def __repr__(self) -> str:
        return f"MeetingError(kind={self.kind.value!r}, message={self.message!r})"


class RepositoryError(Exception):
    """Storage-layer failure surfaced as a generic internal error."""
