"""User repository -- the identity store.

The meeting core only reads through find_user_by_id / find_users_by_ids
to resolve host and participant identity. Registration is the only writer.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.convene.models.user import User
from src.convene.meetings.repository import parse_id, storage_errors
from src.convene.schemas.user import UserRead

logger = structlog.get_logger(__name__)


class EmailAlreadyRegisteredError(ValueError):
    """Raised when registering an email that already has an account."""

    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__(f"Email already in use: {email}")


def _model_to_user(model: User) -> UserRead:
    """Convert User model to UserRead schema."""
    return UserRead(
        id=str(model.id),
        email=model.email,
        display_name=model.display_name,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


class UserRepository:
    """Async lookups and creation for user records.

    Args:
        session_factory: async_sessionmaker producing AsyncSession instances.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def find_user_by_id(self, user_id: str) -> UserRead | None:
        user_uuid = parse_id(user_id)
        if user_uuid is None:
            return None
        with storage_errors("find_user_by_id", source="user_repository", user_id=user_id):
            async with self._session_factory() as session:
                model = await session.get(User, user_uuid)
                return _model_to_user(model) if model else None

    async def find_users_by_ids(self, user_ids: Iterable[str]) -> dict[str, UserRead]:
        """Batch lookup keyed by user id string. Unknown ids are omitted."""
        uuids = {u for u in (parse_id(i) for i in user_ids) if u is not None}
        if not uuids:
            return {}
        with storage_errors("find_users_by_ids", source="user_repository"):
            async with self._session_factory() as session:
                result = await session.execute(select(User).where(User.id.in_(uuids)))
                return {str(m.id): _model_to_user(m) for m in result.scalars().all()}

    async def find_user_by_email(self, email: str) -> User | None:
        """Return the full model (including hash) for credential checks."""
        with storage_errors("find_user_by_email", source="user_repository"):
            async with self._session_factory() as session:
                result = await session.execute(select(User).where(User.email == email.lower()))
                return result.scalar_one_or_none()

    async def create_user(
        self, email: str, display_name: str, hashed_password: str
    ) -> UserRead:
        """Create a user.

        Raises:
            EmailAlreadyRegisteredError: If the email is taken.
        """
        with storage_errors("create_user", source="user_repository"):
            async with self._session_factory() as session:
                model = User(
                    id=uuid.uuid4(),
                    email=email.lower(),
                    display_name=display_name,
                    hashed_password=hashed_password,
                )
                session.add(model)
                try:
                    await session.commit()
                except IntegrityError as exc:
                    await session.rollback()
                    raise EmailAlreadyRegisteredError(email) from exc
                await session.refresh(model)
                logger.info("user.registered", user_id=str(model.id))
                return _model_to_user(model)
