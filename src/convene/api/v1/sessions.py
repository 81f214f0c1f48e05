"""Session token verification endpoint.

Tokens handed out on join are checked here by whatever consumes them
(e.g. a media gateway). Expiry is evaluated at call time.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from src.convene.api.deps import get_session_issuer
from src.convene.meetings.sessions import SessionIssuer

router = APIRouter(prefix="/api/v1/sessions", tags=["sessions"])


class VerifySessionRequest(BaseModel):
    token: str


class SessionResponse(BaseModel):
    user_id: str
    meeting_id: str | None = None
    expires_at: str


@router.post("/verify", response_model=SessionResponse)
async def verify_session(
    body: VerifySessionRequest,
    issuer: SessionIssuer = Depends(get_session_issuer),
) -> SessionResponse:
    session = await issuer.verify_session(body.token)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired session token",
        )
    return SessionResponse(
        user_id=session.user_id,
        meeting_id=session.meeting_id,
        expires_at=session.expires_at.isoformat(),
    )
