"""FastAPI dependency injection for services and authentication.

Services are created once in the app lifespan and stored on app.state;
these dependencies fetch them per request and return 503 when startup
did not wire them.
"""

from __future__ import annotations

from typing import Any

from fastapi import Depends, HTTPException, Request, status

from src.convene.core.security import verify_token
from src.convene.meetings.admission import ParticipantAdmissionController
from src.convene.meetings.lifecycle import MeetingLifecycleManager
from src.convene.meetings.queries import MeetingQueryService
from src.convene.meetings.sessions import SessionIssuer
from src.convene.schemas.user import UserRead
from src.convene.users.repository import UserRepository


def _get_state_service(request: Request, name: str, label: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} not initialized",
        )
    return service


def get_user_repository(request: Request) -> UserRepository:
    return _get_state_service(request, "user_repository", "User repository")


def get_lifecycle_manager(request: Request) -> MeetingLifecycleManager:
    return _get_state_service(request, "lifecycle_manager", "Meeting lifecycle manager")


def get_admission_controller(request: Request) -> ParticipantAdmissionController:
    return _get_state_service(request, "admission_controller", "Admission controller")


def get_query_service(request: Request) -> MeetingQueryService:
    return _get_state_service(request, "query_service", "Meeting query service")


def get_session_issuer(request: Request) -> SessionIssuer:
    return _get_state_service(request, "session_issuer", "Session issuer")


async def get_current_user(
    request: Request,
    users: UserRepository = Depends(get_user_repository),
) -> UserRead:
    """Resolve the Bearer JWT in the Authorization header to a user.

    Raises:
        HTTPException(401): Missing or invalid token, or unknown user.
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = verify_token(auth_header[7:], token_type="access")
    user = await users.find_user_by_id(payload["sub"])
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    return user
