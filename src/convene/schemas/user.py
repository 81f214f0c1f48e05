"""Pydantic schema for users as exposed by the identity store."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class UserRead(BaseModel):
    """Public view of a user record (never includes the password hash)."""

    id: str
    email: str
    display_name: str
    created_at: datetime | None = None
    updated_at: datetime | None = None
