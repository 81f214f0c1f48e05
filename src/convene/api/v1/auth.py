"""Authentication API endpoints.

Provides registration, login, token refresh, and current user info.
Only /me requires a valid access token.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from src.convene.api.deps import get_current_user, get_user_repository
from src.convene.core.security import (
    create_access_token,
    create_refresh_token,
    hash_password,
    verify_password,
    verify_token,
)
from src.convene.schemas.auth import (
    AuthResponse,
    LoginRequest,
    RegisterRequest,
    TokenRefreshRequest,
    TokenResponse,
)
from src.convene.schemas.user import UserRead
from src.convene.users.repository import EmailAlreadyRegisteredError, UserRepository

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


def _token_pair(user_id: str, email: str) -> tuple[str, str]:
    token_data = {"sub": user_id, "email": email}
    return create_access_token(token_data), create_refresh_token(token_data)


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(
    body: RegisterRequest,
    users: UserRepository = Depends(get_user_repository),
):
    """Create an account and return tokens for it."""
    try:
        user = await users.create_user(
            email=body.email,
            display_name=body.display_name,
            hashed_password=hash_password(body.password),
        )
    except EmailAlreadyRegisteredError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already in use",
        )

    access_token, refresh_token = _token_pair(user.id, user.email)
    return AuthResponse(access_token=access_token, refresh_token=refresh_token, user=user)


@router.post("/login", response_model=AuthResponse)
async def login(
    body: LoginRequest,
    users: UserRepository = Depends(get_user_repository),
):
    """Authenticate a user and return JWT tokens."""
    record = await users.find_user_by_email(body.email)
    if record is None or not verify_password(body.password, record.hashed_password):
        logger.info("auth.login_failed")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    user = await users.find_user_by_id(str(record.id))
    access_token, refresh_token = _token_pair(user.id, user.email)
    return AuthResponse(access_token=access_token, refresh_token=refresh_token, user=user)


@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(
    body: TokenRefreshRequest,
    users: UserRepository = Depends(get_user_repository),
):
    """Exchange a valid refresh token for a new token pair."""
    payload = verify_token(body.refresh_token, token_type="refresh")

    user = await users.find_user_by_id(payload["sub"])
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    access_token, new_refresh_token = _token_pair(user.id, user.email)
    return TokenResponse(access_token=access_token, refresh_token=new_refresh_token)


@router.get("/me", response_model=UserRead)
async def get_me(current_user: UserRead = Depends(get_current_user)):
    """Return the authenticated user."""
    return current_user
