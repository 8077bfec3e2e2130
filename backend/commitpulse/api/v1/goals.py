"""目標設定エンドポイント。"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from commitpulse.api.deps import get_current_user, get_session
from commitpulse.config import settings
from commitpulse.core.dates import resolve_timezone
from commitpulse.models import User
from commitpulse.schemas.goals import GoalsResponse, GoalsUpdateRequest
from commitpulse.services.goals_service import (
    DEFAULT_COMMITS_PER_DAY,
    DEFAULT_LOC_PER_DAY,
    DEFAULT_PUSH_BY_HOUR,
    GoalsService,
)

router = APIRouter()


@router.get(
    "",
    response_model=GoalsResponse,
    summary="目標取得",
)
async def get_goals(
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> GoalsResponse:
    """目標を返す。未設定の場合は既定値を返す。"""
    goal = await GoalsService(session).get_goal(current_user.user_id)
    if goal is None:
        return GoalsResponse(
            commits_per_day=DEFAULT_COMMITS_PER_DAY,
            loc_per_day=DEFAULT_LOC_PER_DAY,
            push_by_hour=DEFAULT_PUSH_BY_HOUR,
            timezone=resolve_timezone(settings.DEFAULT_TIMEZONE),
        )
    return GoalsResponse.model_validate(goal)


@router.put(
    "",
    response_model=GoalsResponse,
    summary="目標更新",
)
async def update_goals(
    request: GoalsUpdateRequest,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> GoalsResponse:
    """目標を更新する。

    値は四捨五入のうえ範囲内に収められる。未知のタイムゾーンや
    非有限値は422を返す。

    Args:
        request: 目標更新リクエスト。
        current_user: 認証済みユーザー。
        session: データベースセッション。

    Returns:
        保存後の目標。
    """
    goal = await GoalsService(session).set_goals(
        user_id=current_user.user_id,
        commits_per_day=request.commits_per_day,
        loc_per_day=request.loc_per_day,
        push_by_hour=request.push_by_hour,
        time_zone=request.timezone,
    )
    return GoalsResponse.model_validate(goal)
