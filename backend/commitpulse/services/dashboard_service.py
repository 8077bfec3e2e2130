"""ダッシュボードデータ取得サービス。

概要カード、日次集計の推移、最近のコミット、ストリークの診断情報を
提供する。いずれも読み取り専用で副作用はない。
"""

from __future__ import annotations

from collections import Counter

from sqlalchemy.ext.asyncio import AsyncSession

from commitpulse.core.dates import (
    DAY_MS,
    format_last_sync,
    now_ms,
    shift_date_key,
    to_date_key,
)
from commitpulse.core.streak import (
    StreakComputation,
    compute_current_streak,
    compute_current_streak_from_date_keys,
    touches_lookback_boundary,
)
from commitpulse.models.enums import SyncReason
from commitpulse.schemas.dashboard import (
    ActivityItem,
    DailyStatItem,
    DayWindowItem,
    JobCounts,
    LookbackInfo,
    OverviewResponse,
    StreakDebugResponse,
    StreakRule,
    StreakSnapshotItem,
)
from commitpulse.services.commit_store import CommitStore
from commitpulse.services.connection_service import ConnectionService
from commitpulse.services.goals_service import GoalsService
from commitpulse.services.job_queue import SyncJobQueue

DEFAULT_ACTIVITY_LIMIT = 6
MAX_ACTIVITY_LIMIT = 20
RECENT_STATS_LIMIT = 14
WEEK_DAYS = 7
MAX_STATS_RANGE_DAYS = 365

STREAK_DEBUG_MAX_PAGES = 240
STREAK_DEBUG_DAY_WINDOW = 45
STREAK_RULE_DEFINITION = (
    "streak starts from anchor day if it has commits, else yesterday if it has "
    "commits; then counts consecutive commit days backwards until first missing day"
)


class DashboardService:
    """ダッシュボード向けの読み取りクエリを実行するサービスクラス。"""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.store = CommitStore(session)

    # ------------------------------------------------------------------
    # 概要
    # ------------------------------------------------------------------

    async def get_overview(self, user_id: int, at_ms: int | None = None) -> OverviewResponse:
        """概要カード用データを取得する。

        週間の値は直近の日次集計7件（日付の新しい順）から算出する。
        ストリークは接続にキャッシュされた値を優先し、無ければ再計算する。

        Args:
            user_id: 対象ユーザーID。
            at_ms: 基準時刻（テスト用）。

        Returns:
            OverviewResponse。
        """
        at_ms = at_ms if at_ms is not None else now_ms()
        time_zone = await GoalsService(self.session).resolve_user_timezone(user_id)

        today = await self.store.get_daily_stat(user_id, to_date_key(at_ms, time_zone))
        recent = await self.store.recent_daily_stats(user_id, RECENT_STATS_LIMIT)
        week = recent[:WEEK_DAYS]

        weekly_commits = sum(stat.commit_count for stat in week)
        weekly_loc = sum(stat.loc_changed for stat in week)
        active_repos = {repo for stat in week for repo in (stat.repos_touched or [])}

        connections = ConnectionService(self.session)
        connection = await connections.get_by_user(user_id)
        if connection is not None and connection.streak_days is not None:
            streak_days = connection.streak_days
        else:
            snapshot = await connections.compute_streak_snapshot(
                user_id, anchor_ms=at_ms, time_zone=time_zone
            )
            streak_days = snapshot.streak_days

        return OverviewResponse(
            today_commits=today.commit_count if today else 0,
            today_loc=today.loc_changed if today else 0,
            streak_days=streak_days,
            avg_commit_size=round(weekly_loc / weekly_commits) if weekly_commits else 0,
            weekly_commits=weekly_commits,
            active_repos=len(active_repos),
            last_sync=format_last_sync(connection.last_synced_at if connection else None),
        )

    # ------------------------------------------------------------------
    # 推移・アクティビティ
    # ------------------------------------------------------------------

    async def get_stats_range(self, user_id: int, days: int) -> list[DailyStatItem]:
        """直近 ``days`` 件の日次集計を新しい順に返す。"""
        days = max(0, min(days, MAX_STATS_RANGE_DAYS))
        if days == 0:
            return []
        stats = await self.store.recent_daily_stats(user_id, days)
        return [DailyStatItem.model_validate(stat) for stat in stats]

    async def get_activity(self, user_id: int, limit: int | None = None) -> list[ActivityItem]:
        """最近のコミットを返す（既定6件、最大20件）。"""
        limit = min(limit or DEFAULT_ACTIVITY_LIMIT, MAX_ACTIVITY_LIMIT)
        commits = await self.store.recent_commits(user_id, limit)
        return [ActivityItem.model_validate(commit) for commit in commits]

    # ------------------------------------------------------------------
    # ストリーク診断
    # ------------------------------------------------------------------

    async def get_streak_debug(
        self,
        user_id: int,
        at_ms: int | None = None,
    ) -> StreakDebugResponse | None:
        """ストリーク計算の診断情報を返す。接続が無ければ None。

        設定タイムゾーンとUTCそれぞれでのストリーク、日次集計からの
        ストリーク、判定ルールの説明、取得期間境界、ジョブ件数を含む。
        """
        connection = await ConnectionService(self.session).get_by_user(user_id)
        if connection is None:
            return None

        at_ms = at_ms if at_ms is not None else now_ms()
        time_zone = await GoalsService(self.session).resolve_user_timezone(user_id)

        queue = SyncJobQueue(self.session)
        unresolved = await queue.unresolved_for_installation(connection.installation_id)
        counts = await queue.count_by_status(connection.installation_id)
        lookbacks = [
            job.lookback_days
            for job in unresolved
            if job.reason == SyncReason.INITIAL_BACKFILL.value and job.lookback_days is not None
        ]
        current_lookback = max(lookbacks) if lookbacks else None

        timestamps = await self.store.collect_commit_timestamps(
            user_id, max_pages=STREAK_DEBUG_MAX_PAGES
        )
        configured = compute_current_streak(timestamps, time_zone, at_ms)
        utc = compute_current_streak(timestamps, "UTC", at_ms)

        configured_counts = Counter(to_date_key(ts, time_zone) for ts in timestamps)
        utc_counts = Counter(to_date_key(ts, "UTC") for ts in timestamps)

        stats = await self.store.recent_daily_stats(user_id, STREAK_DEBUG_DAY_WINDOW * 2)
        from_daily_stats = compute_current_streak_from_date_keys(
            [stat.date for stat in stats if stat.commit_count > 0],
            configured.anchor_date_key,
        )

        lookback_start_key = (
            to_date_key(at_ms - current_lookback * DAY_MS, time_zone)
            if current_lookback is not None
            else None
        )

        return StreakDebugResponse(
            time_zone=time_zone,
            streak_days=configured.streak_days,
            stored_streak_days=connection.streak_days,
            rule=self._explain_rule(configured_counts, configured),
            configured_timezone=StreakSnapshotItem(**configured.to_dict()),
            utc=StreakSnapshotItem(**utc.to_dict()),
            from_daily_stats=StreakSnapshotItem(**from_daily_stats.to_dict()),
            lookback=LookbackInfo(
                current_backfill_lookback_days=current_lookback,
                lookback_start_date_key=lookback_start_key,
                touches_lookback_boundary=touches_lookback_boundary(
                    configured.streak_start_date_key, lookback_start_key
                ),
            ),
            commit_events_scanned=len(timestamps),
            unique_days_configured_timezone=len(configured_counts),
            unique_days_utc=len(utc_counts),
            configured_day_window=self._day_window(
                configured_counts, configured.anchor_date_key
            ),
            utc_day_window=self._day_window(utc_counts, utc.anchor_date_key),
            jobs=JobCounts(**counts),
            has_pending_sync=bool(unresolved),
        )

    @staticmethod
    def _explain_rule(counts: Counter[str], computation: StreakComputation) -> StreakRule:
        anchor = computation.anchor_date_key
        yesterday = shift_date_key(anchor, -1)
        has_anchor = counts.get(anchor, 0) > 0
        has_yesterday = counts.get(yesterday, 0) > 0
        start = anchor if has_anchor else yesterday if has_yesterday else None

        if start is None:
            reason = (
                f"No commit on anchor ({anchor}) or yesterday ({yesterday}); "
                "streak is forced to 0."
            )
        elif computation.streak_days <= 1:
            reason = (
                f"Start date {start} qualifies, but previous day is missing "
                f"({computation.first_gap_date_key or 'unknown'}), so streak is "
                f"{computation.streak_days}."
            )
        else:
            reason = (
                f"Start date {start} qualifies and consecutive days continue through "
                f"{computation.streak_start_date_key}; streak is {computation.streak_days}."
            )

        return StreakRule(
            definition=STREAK_RULE_DEFINITION,
            anchor_date_key=anchor,
            yesterday_date_key=yesterday,
            has_anchor_day_commit=has_anchor,
            has_yesterday_commit=has_yesterday,
            start_date_key_by_rule=start,
            reason=reason,
        )

    @staticmethod
    def _day_window(counts: Counter[str], anchor_date_key: str) -> list[DayWindowItem]:
        items = []
        for offset in range(STREAK_DEBUG_DAY_WINDOW):
            key = shift_date_key(anchor_date_key, -offset)
            items.append(DayWindowItem(date_key=key, commit_count=counts.get(key, 0)))
        return items
