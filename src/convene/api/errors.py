"""Exception handlers mapping meeting failures to HTTP responses."""

from __future__ import annotations

import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from src.convene.meetings.errors import MeetingError, MeetingErrorKind, RepositoryError

logger = structlog.get_logger(__name__)

ERROR_STATUS_CODES: dict[MeetingErrorKind, int] = {
    MeetingErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    MeetingErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    MeetingErrorKind.AUTHORIZATION: status.HTTP_403_FORBIDDEN,
    MeetingErrorKind.INVALID_STATE: status.HTTP_409_CONFLICT,
    MeetingErrorKind.CAPACITY: status.HTTP_409_CONFLICT,
    MeetingErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
}


async def meeting_error_handler(request: Request, exc: MeetingError) -> JSONResponse:
    return JSONResponse(
        status_code=ERROR_STATUS_CODES[exc.kind],
        content={"detail": exc.message, "error": exc.kind.value},
    )


async def repository_error_handler(request: Request, exc: RepositoryError) -> JSONResponse:
    logger.error(
        "api.repository_error",
        method=request.method,
        path=request.url.path,
        error=str(exc),
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error", "error": "internal"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MeetingError, meeting_error_handler)
    app.add_exception_handler(RepositoryError, repository_error_handler)
