"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.convene.api.v1 import auth, health, meetings, sessions

router = APIRouter()

router.include_router(health.router)
router.include_router(auth.router)
router.include_router(meetings.router)
router.include_router(sessions.router)
