"""Session issuer -- short-lived tokens granted on meeting admission.

Tokens are opaque random strings (secrets.token_urlsafe), stored so they
can be verified later. There is no revocation: a token stops being valid
when verify_session() is called after its expires_at. Nothing sweeps
expired rows.
"""

from __future__ import annotations

import secrets
import uuid
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.convene.meetings.models import SessionTokenModel
from src.convene.meetings.repository import as_utc, storage_errors
from src.convene.meetings.schemas import SessionGrant, SessionToken

logger = structlog.get_logger(__name__)

TOKEN_BYTES = 32


class SessionIssuer:
    """Mints and verifies session tokens scoped to (user, meeting).

    Args:
        session_factory: async_sessionmaker producing AsyncSession instances.
        ttl: Lifetime of each issued token.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ttl: timedelta,
    ) -> None:
        self._session_factory = session_factory
        self._ttl = ttl

    async def issue_session(
        self, user_id: str, meeting_id: str | None = None
    ) -> SessionGrant:
        """Create and store a new token for the user."""
        now = datetime.now(timezone.utc)
        model = SessionTokenModel(
            token=secrets.token_urlsafe(TOKEN_BYTES),
            user_id=uuid.UUID(user_id),
            meeting_id=uuid.UUID(meeting_id) if meeting_id else None,
            expires_at=now + self._ttl,
            created_at=now,
        )
        with storage_errors(
            "issue_session", source="session_issuer", user_id=user_id, meeting_id=meeting_id
        ):
            async with self._session_factory() as session:
                session.add(model)
                await session.commit()

        logger.info("session.issued", user_id=user_id, meeting_id=meeting_id)
        return SessionGrant(token=model.token, expires_at=model.expires_at)

    async def verify_session(self, token: str) -> SessionToken | None:
        """Return the stored token if it exists and has not expired."""
        with storage_errors("verify_session", source="session_issuer"):
            async with self._session_factory() as session:
                result = await session.execute(
                    select(SessionTokenModel).where(SessionTokenModel.token == token)
                )
                model = result.scalar_one_or_none()

        if model is None:
            return None

        session_token = SessionToken(
            token=model.token,
            user_id=str(model.user_id),
            meeting_id=str(model.meeting_id) if model.meeting_id else None,
            expires_at=as_utc(model.expires_at),
            created_at=as_utc(model.created_at),
        )
        if session_token.is_expired(datetime.now(timezone.utc)):
            logger.info("session.expired", user_id=session_token.user_id)
            return None
        return session_token
