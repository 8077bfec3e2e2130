"""リマインダー判定・送信サービス。

日次集計・目標・直近コミット・通知設定から、その時刻にリマインダーを
送るべきかを判定し（``decide_reminder``）、Telegram へ送信する。
同じ日の同じ時刻には一度しか送らない。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from commitpulse.core.dates import (
    hour_in_timezone,
    to_date_key,
    to_epoch_ms,
)
from commitpulse.core.exceptions import ConnectionRequiredError
from commitpulse.external.telegram_client import TelegramClient
from commitpulse.models import NotificationConnection
from commitpulse.models.enums import ReminderKind
from commitpulse.services.commit_store import CommitStore
from commitpulse.services.goals_service import (
    DEFAULT_COMMITS_PER_DAY,
    DEFAULT_LOC_PER_DAY,
    DEFAULT_PUSH_BY_HOUR,
    GoalsService,
    user_timezone,
)

logger = logging.getLogger(__name__)

RECENT_COMMIT_GRACE_MS = 90 * 60 * 1000
ZERO_PUSH_EXTRA_HOURS = frozenset({19, 20})
ZERO_PUSH_CRITICAL_HOURS = frozenset({22, 23})

TEST_MESSAGE = "CommitPulse test message ✅"


# ---------------------------------------------------------------------------
# 判定（純粋関数）
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ReminderContext:
    """1ユーザー・1ティック分の判定材料。時刻はエポックミリ秒。"""

    now_ms: int
    time_zone: str = "UTC"
    commit_count: int = 0
    loc_changed: int = 0
    commits_goal: int = DEFAULT_COMMITS_PER_DAY
    loc_goal: int = DEFAULT_LOC_PER_DAY
    push_by_hour: int = DEFAULT_PUSH_BY_HOUR
    quiet_hours_start: int | None = None
    quiet_hours_end: int | None = None
    last_notified_ms: int | None = None
    last_commit_ms: int | None = None


@dataclass(frozen=True)
class ReminderDecision:
    """判定結果。``kind`` が None なら送らない（``skip_reason`` に理由）。"""

    kind: ReminderKind | None
    hour: int
    message: str | None = None
    skip_reason: str | None = None

    @property
    def should_send(self) -> bool:
        return self.kind is not None


def is_quiet_hour(hour: int, start: int | None, end: int | None) -> bool:
    """ローカル時刻 ``hour`` が静音時間帯に含まれるか。

    開始と終了が同じ、または未設定なら静音時間帯なし。
    開始が終了より後の場合は深夜をまたぐ（例: 22 -> 7）。
    """
    if start is None or end is None or start == end:
        return False
    if start < end:
        return start <= hour < end
    return hour >= start or hour < end


def compose_message(kind: ReminderKind, hour: int, ctx: ReminderContext) -> str:
    if kind == ReminderKind.CRITICAL_ZERO_PUSH:
        return (
            "CRITICAL 🔴🔴\n"
            "No pushes today yet.\n"
            f"It is already {hour}:00.\n"
            "Push a commit now to keep your streak alive."
        )
    if kind == ReminderKind.ZERO_PUSH_FOLLOW_UP:
        return (
            "CommitPulse alert 🚨\n"
            "No pushes today yet.\n"
            f"Time: {hour}:00.\n"
            "Make your first push now."
        )
    remaining_commits = max(ctx.commits_goal - ctx.commit_count, 0)
    remaining_loc = max(ctx.loc_goal - ctx.loc_changed, 0)
    return (
        "CommitPulse nudge ⚡\n"
        f"Today: {ctx.commit_count} commits, {ctx.loc_changed} LOC.\n"
        f"Goal: {ctx.commits_goal} commits / {ctx.loc_goal} LOC.\n"
        f"Remaining: {remaining_commits} commits, {remaining_loc} LOC."
    )


def decide_reminder(ctx: ReminderContext) -> ReminderDecision:
    """リマインダーを送るべきか判定する。

    判定順:
        1. 静音時間帯なら送らない。
        2. 直近90分以内にコミットがあれば送らない。
        3. 目標未達（0でない目標のいずれかを下回る）を判定する。
        4. 発火条件: 目標期限時刻かつ未達 / 0コミットで19・20時 /
           0コミットで22・23時。本文は critical > follow-up > nudge の優先順。
        5. 最終通知が同じ日・同じ時刻なら送らない。

    Args:
        ctx: 判定材料。

    Returns:
        ReminderDecision。
    """
    hour = hour_in_timezone(ctx.now_ms, ctx.time_zone)

    if is_quiet_hour(hour, ctx.quiet_hours_start, ctx.quiet_hours_end):
        return ReminderDecision(kind=None, hour=hour, skip_reason="quiet_hours")

    recent_commit = (
        ctx.last_commit_ms is not None
        and ctx.now_ms - ctx.last_commit_ms < RECENT_COMMIT_GRACE_MS
    )
    if recent_commit:
        return ReminderDecision(kind=None, hour=hour, skip_reason="recent_commit")

    needs_commit = ctx.commits_goal > 0 and ctx.commit_count < ctx.commits_goal
    needs_loc = ctx.loc_goal > 0 and ctx.loc_changed < ctx.loc_goal
    missed_goals = needs_commit or needs_loc
    no_pushes_today = ctx.commit_count == 0

    if no_pushes_today and hour in ZERO_PUSH_CRITICAL_HOURS:
        kind = ReminderKind.CRITICAL_ZERO_PUSH
    elif no_pushes_today and hour in ZERO_PUSH_EXTRA_HOURS:
        kind = ReminderKind.ZERO_PUSH_FOLLOW_UP
    elif hour == ctx.push_by_hour and missed_goals:
        kind = ReminderKind.GOAL_NUDGE
    else:
        return ReminderDecision(kind=None, hour=hour, skip_reason="no_trigger")

    if ctx.last_notified_ms is not None:
        same_day = to_date_key(ctx.last_notified_ms, ctx.time_zone) == to_date_key(
            ctx.now_ms, ctx.time_zone
        )
        if same_day and hour_in_timezone(ctx.last_notified_ms, ctx.time_zone) == hour:
            return ReminderDecision(kind=None, hour=hour, skip_reason="already_notified")

    return ReminderDecision(kind=kind, hour=hour, message=compose_message(kind, hour, ctx))


# ---------------------------------------------------------------------------
# サービス
# ---------------------------------------------------------------------------

class ReminderService:
    """通知接続ごとにリマインダーを判定・送信するサービスクラス。"""

    def __init__(self, session: AsyncSession, telegram: TelegramClient) -> None:
        self.session = session
        self.telegram = telegram

    async def list_enabled_user_ids(self) -> list[int]:
        stmt = (
            select(NotificationConnection.user_id)
            .where(
                NotificationConnection.enabled.is_(True),
                NotificationConnection.chat_id != "",
            )
            .order_by(NotificationConnection.user_id)
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def get_connection(self, user_id: int) -> NotificationConnection | None:
        stmt = select(NotificationConnection).where(NotificationConnection.user_id == user_id)
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def build_context(
        self,
        connection: NotificationConnection,
        at_ms: int,
    ) -> ReminderContext:
        """DBから判定材料を集める。

        タイムゾーンは同期ワーカーと同じく ``user_timezone`` で決める。
        """
        goal = await GoalsService(self.session).get_goal(connection.user_id)
        time_zone = user_timezone(goal.timezone if goal else None, connection.timezone)

        store = CommitStore(self.session)
        stat = await store.get_daily_stat(connection.user_id, to_date_key(at_ms, time_zone))
        last_commit_at = await store.latest_commit_at(connection.user_id)

        return ReminderContext(
            now_ms=at_ms,
            time_zone=time_zone,
            commit_count=stat.commit_count if stat else 0,
            loc_changed=stat.loc_changed if stat else 0,
            commits_goal=goal.commits_per_day if goal else DEFAULT_COMMITS_PER_DAY,
            loc_goal=goal.loc_per_day if goal else DEFAULT_LOC_PER_DAY,
            push_by_hour=goal.push_by_hour if goal else DEFAULT_PUSH_BY_HOUR,
            quiet_hours_start=connection.quiet_hours_start,
            quiet_hours_end=connection.quiet_hours_end,
            last_notified_ms=(
                to_epoch_ms(connection.last_notified_at) if connection.last_notified_at else None
            ),
            last_commit_ms=to_epoch_ms(last_commit_at) if last_commit_at else None,
        )

    async def process_user(self, user_id: int, at_ms: int) -> ReminderDecision | None:
        """1ユーザー分の判定と送信。接続が無効化されていれば None。"""
        connection = await self.get_connection(user_id)
        if connection is None or not connection.enabled or not connection.chat_id:
            return None
        return await self.process_connection(connection, at_ms)

    async def process_connection(
        self,
        connection: NotificationConnection,
        at_ms: int,
    ) -> ReminderDecision:
        ctx = await self.build_context(connection, at_ms)
        decision = decide_reminder(ctx)
        if not decision.should_send:
            logger.debug(
                "No reminder for user_id=%d at %02d:00 (%s)",
                connection.user_id,
                decision.hour,
                decision.skip_reason,
            )
            return decision

        await self.telegram.send_message(connection.chat_id, decision.message)
        connection.last_notified_at = datetime.fromtimestamp(at_ms / 1000, tz=timezone.utc)
        await self.session.flush()
        logger.info(
            "Sent %s reminder to user_id=%d at %02d:00 %s",
            decision.kind.value,
            connection.user_id,
            decision.hour,
            ctx.time_zone,
        )
        return decision

    async def send_test_message(self, user_id: int) -> None:
        """接続確認用のテストメッセージを送る。

        Raises:
            ConnectionRequiredError: Telegram 接続が無い場合。
            MessagingError: 送信に失敗した場合。
        """
        connection = await self.get_connection(user_id)
        if connection is None:
            raise ConnectionRequiredError(
                "No Telegram connection", code="NO_TELEGRAM_CONNECTION"
            )
        await self.telegram.send_message(connection.chat_id, TEST_MESSAGE)
