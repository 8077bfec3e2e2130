"""ダッシュボードエンドポイント。

概要カード、日次集計の推移、最近のコミット、ストリーク診断のAPIを提供する。
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from commitpulse.api.deps import get_current_user, get_session
from commitpulse.core.exceptions import ConnectionRequiredError
from commitpulse.models import User
from commitpulse.schemas.dashboard import (
    ActivityItem,
    DailyStatItem,
    OverviewResponse,
    StreakDebugResponse,
)
from commitpulse.services.dashboard_service import (
    DEFAULT_ACTIVITY_LIMIT,
    MAX_ACTIVITY_LIMIT,
    MAX_STATS_RANGE_DAYS,
    DashboardService,
)

router = APIRouter()


# ---------------------------------------------------------------------------
# 概要
# ---------------------------------------------------------------------------


@router.get(
    "/overview",
    response_model=OverviewResponse,
    summary="概要カード",
)
async def get_overview(
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> OverviewResponse:
    """今日のコミット数・変更行数、ストリーク、直近7日分の集計を返す。"""
    service = DashboardService(session)
    return await service.get_overview(user_id=current_user.user_id)


# ---------------------------------------------------------------------------
# 推移・アクティビティ
# ---------------------------------------------------------------------------


@router.get(
    "/stats",
    response_model=list[DailyStatItem],
    summary="日次集計の推移",
)
async def get_stats(
    days: int = Query(default=14, ge=1, le=MAX_STATS_RANGE_DAYS, description="取得日数"),
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> list[DailyStatItem]:
    """直近の日次集計を新しい順に返す。

    Args:
        days: 取得件数。
        current_user: 認証済みユーザー。
        session: データベースセッション。

    Returns:
        日次集計のリスト。
    """
    service = DashboardService(session)
    return await service.get_stats_range(user_id=current_user.user_id, days=days)


@router.get(
    "/activity",
    response_model=list[ActivityItem],
    summary="最近のコミット",
)
async def get_activity(
    limit: int = Query(
        default=DEFAULT_ACTIVITY_LIMIT,
        ge=1,
        le=MAX_ACTIVITY_LIMIT,
        description="取得件数上限",
    ),
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> list[ActivityItem]:
    service = DashboardService(session)
    return await service.get_activity(user_id=current_user.user_id, limit=limit)


# ---------------------------------------------------------------------------
# ストリーク診断
# ---------------------------------------------------------------------------


@router.get(
    "/streak-debug",
    response_model=StreakDebugResponse,
    summary="ストリーク診断",
)
async def get_streak_debug(
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> StreakDebugResponse:
    """設定タイムゾーンとUTCでのストリーク計算の内訳を返す。

    Raises:
        ConnectionRequiredError: GitHub接続が無い場合。
    """
    service = DashboardService(session)
    debug = await service.get_streak_debug(user_id=current_user.user_id)
    if debug is None:
        raise ConnectionRequiredError(
            "Connect GitHub App before running this action",
            code="GITHUB_NOT_CONNECTED",
        )
    return debug
