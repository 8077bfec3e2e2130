"""API v1 ルーター集約モジュール。

各ドメインのルーターを統合し、プレフィックスとタグを設定する。
"""

from __future__ import annotations

from fastapi import APIRouter

from commitpulse.api.v1.dashboard import router as dashboard_router
from commitpulse.api.v1.github import router as github_router
from commitpulse.api.v1.goals import router as goals_router
from commitpulse.api.v1.notifications import router as notifications_router

router = APIRouter()

router.include_router(
    github_router,
    prefix="/github",
    tags=["github"],
)

router.include_router(
    goals_router,
    prefix="/goals",
    tags=["goals"],
)

router.include_router(
    notifications_router,
    prefix="/notifications",
    tags=["notifications"],
)

router.include_router(
    dashboard_router,
    prefix="/dashboard",
    tags=["dashboard"],
)
