"""ダッシュボード関連のPydanticスキーマ。

概要カード、日次集計の推移、最近のコミット、ストリーク診断用の
スキーマを定義する。
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# 概要
# ---------------------------------------------------------------------------

class OverviewResponse(BaseModel):
    """概要カードレスポンス。"""

    today_commits: int = Field(description="今日のコミット数")
    today_loc: int = Field(description="今日の変更行数")
    streak_days: int = Field(description="現在のストリーク日数")
    avg_commit_size: int = Field(description="直近7日分の平均コミットサイズ")
    weekly_commits: int = Field(description="直近7日分のコミット数")
    active_repos: int = Field(description="直近7日分で触れたリポジトリ数")
    last_sync: str | None = Field(default=None, description="最終同期時刻（表示用）")


# ---------------------------------------------------------------------------
# 推移・アクティビティ
# ---------------------------------------------------------------------------

class DailyStatItem(BaseModel):
    """日次集計1日分。"""

    model_config = ConfigDict(from_attributes=True)

    date: str
    commit_count: int
    loc_changed: int
    avg_commit_size: int
    repos_touched: list[str]
    updated_at: datetime


class ActivityItem(BaseModel):
    """最近のコミット1件。"""

    model_config = ConfigDict(from_attributes=True)

    message: str
    repo: str
    size: int
    committed_at: datetime


# ---------------------------------------------------------------------------
# ストリーク診断
# ---------------------------------------------------------------------------

class StreakSnapshotItem(BaseModel):
    anchor_date_key: str
    streak_days: int
    qualifying_date_key: str | None = None
    streak_start_date_key: str | None = None
    first_gap_date_key: str | None = None
    newest_date_key: str | None = None
    oldest_date_key: str | None = None


class StreakRule(BaseModel):
    """ストリーク判定ルールの説明。"""

    definition: str
    anchor_date_key: str
    yesterday_date_key: str
    has_anchor_day_commit: bool
    has_yesterday_commit: bool
    start_date_key_by_rule: str | None
    reason: str


class LookbackInfo(BaseModel):
    current_backfill_lookback_days: int | None
    lookback_start_date_key: str | None
    touches_lookback_boundary: bool


class DayWindowItem(BaseModel):
    date_key: str
    commit_count: int


class JobCounts(BaseModel):
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0


class StreakDebugResponse(BaseModel):
    """ストリーク診断レスポンス。"""

    time_zone: str
    streak_days: int
    stored_streak_days: int | None
    rule: StreakRule
    configured_timezone: StreakSnapshotItem
    utc: StreakSnapshotItem
    from_daily_stats: StreakSnapshotItem
    lookback: LookbackInfo
    commit_events_scanned: int
    unique_days_configured_timezone: int
    unique_days_utc: int
    configured_day_window: list[DayWindowItem]
    utc_day_window: list[DayWindowItem]
    jobs: JobCounts
    has_pending_sync: bool
