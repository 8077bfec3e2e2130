"""目標設定サービス。

1日あたりのコミット数・変更行数・プッシュ期限時刻の目標を管理する。
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from commitpulse.config import settings
from commitpulse.core.dates import clamp, is_valid_timezone, resolve_timezone
from commitpulse.core.exceptions import ValidationError
from commitpulse.models import Goal, NotificationConnection

logger = logging.getLogger(__name__)

DEFAULT_COMMITS_PER_DAY = 1
DEFAULT_LOC_PER_DAY = 50
DEFAULT_PUSH_BY_HOUR = 18

MAX_COMMITS_PER_DAY = 100
MAX_LOC_PER_DAY = 5000


def user_timezone(goal_timezone: str | None, notification_timezone: str | None = None) -> str:
    """日付キー・時刻判定に使うユーザーのタイムゾーンを決める。

    目標の設定、通知設定の上書き、``DEFAULT_TIMEZONE`` の順に採用する。
    同期ワーカーの日次集計とリマインダーは必ずこの結果を共有する。
    """
    for candidate in (goal_timezone, notification_timezone):
        if candidate and is_valid_timezone(candidate):
            return candidate
    return resolve_timezone(settings.DEFAULT_TIMEZONE)


@dataclass(frozen=True)
class GoalValues:
    """丸め・範囲制限済みの目標値。"""

    commits_per_day: int
    loc_per_day: int
    push_by_hour: int
    timezone: str


def round_and_clamp(value: float, minimum: int, maximum: int, field: str) -> int:
    """数値を四捨五入し範囲内に収める。非有限値は ValidationError。"""
    if value is None or not math.isfinite(value):
        raise ValidationError(f"{field} must be a finite number")
    # JS の Math.round と同じく .5 は切り上げ
    return clamp(math.floor(value + 0.5), minimum, maximum)


def normalize_goals(
    commits_per_day: float,
    loc_per_day: float,
    push_by_hour: float,
    time_zone: str,
) -> GoalValues:
    """入力値を検証して GoalValues に正規化する。

    Raises:
        ValidationError: 非有限値、または未知のタイムゾーン名の場合。
    """
    if not is_valid_timezone(time_zone):
        raise ValidationError(f"Unknown time zone: {time_zone}")
    return GoalValues(
        commits_per_day=round_and_clamp(commits_per_day, 0, MAX_COMMITS_PER_DAY, "commits_per_day"),
        loc_per_day=round_and_clamp(loc_per_day, 0, MAX_LOC_PER_DAY, "loc_per_day"),
        push_by_hour=round_and_clamp(push_by_hour, 0, 23, "push_by_hour"),
        timezone=time_zone,
    )


class GoalsService:
    """目標の取得・保存を行うサービスクラス。"""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_goal(self, user_id: int) -> Goal | None:
        stmt = select(Goal).where(Goal.user_id == user_id)
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def resolve_user_timezone(self, user_id: int) -> str:
        """ユーザーの日付キー算出用タイムゾーン。"""
        goal = await self.get_goal(user_id)
        override = (
            await self.session.execute(
                select(NotificationConnection.timezone).where(
                    NotificationConnection.user_id == user_id
                )
            )
        ).scalar_one_or_none()
        return user_timezone(goal.timezone if goal else None, override)

    async def set_goals(
        self,
        user_id: int,
        commits_per_day: float,
        loc_per_day: float,
        push_by_hour: float,
        time_zone: str,
    ) -> Goal:
        """目標を保存する（存在しなければ作成）。

        Args:
            user_id: ユーザーID。
            commits_per_day: 1日のコミット数目標（0-100）。
            loc_per_day: 1日の変更行数目標（0-5000）。
            push_by_hour: プッシュ期限時刻（0-23）。
            time_zone: IANAタイムゾーン名。

        Returns:
            保存後のGoal。

        Raises:
            ValidationError: 入力値が不正な場合。
        """
        values = normalize_goals(commits_per_day, loc_per_day, push_by_hour, time_zone)
        goal = await self.get_goal(user_id)
        if goal is None:
            goal = Goal(user_id=user_id)
            self.session.add(goal)

        goal.commits_per_day = values.commits_per_day
        goal.loc_per_day = values.loc_per_day
        goal.push_by_hour = values.push_by_hour
        goal.timezone = values.timezone
        goal.updated_at = datetime.now(timezone.utc)
        await self.session.flush()

        logger.info(
            "Updated goals for user_id=%d: %d commits / %d LOC by %02d:00 %s",
            user_id,
            values.commits_per_day,
            values.loc_per_day,
            values.push_by_hour,
            values.timezone,
        )
        return goal
