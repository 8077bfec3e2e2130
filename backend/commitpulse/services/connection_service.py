"""GitHub接続管理サービス。

GitHub App 接続の作成・状態更新・切断・再計算と、
ストリークのスナップショット計算を提供する。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from commitpulse.core.dates import DAY_MS, format_last_sync, to_date_key
from commitpulse.core.exceptions import ConnectionRequiredError
from commitpulse.core.streak import (
    StreakComputation,
    compute_current_streak,
    touches_lookback_boundary,
)
from commitpulse.models import GitHubConnection
from commitpulse.models.enums import (
    AuthMode,
    InstallationAccountType,
    RepoSelectionMode,
    SyncReason,
    SyncStatus,
)
from commitpulse.services.commit_store import STREAK_MAX_PAGES, CommitStore
from commitpulse.services.goals_service import GoalsService
from commitpulse.services.job_queue import SyncJobQueue, SyncJobSpec

logger = logging.getLogger(__name__)

INITIAL_BACKFILL_DAYS = 90
BACKFILL_STEP_DAYS = 90
MAX_BACKFILL_DAYS = 1825


@dataclass(frozen=True)
class StreakSnapshot:
    """保存済みコミットから計算したストリークと、取得期間境界との関係。"""

    time_zone: str
    computation: StreakComputation
    touches_lookback_boundary: bool
    lookback_start_date_key: str | None
    commit_events_scanned: int

    @property
    def streak_days(self) -> int:
        return self.computation.streak_days


class ConnectionService:
    """GitHub接続のライフサイクルを扱うサービスクラス。"""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # ------------------------------------------------------------------
    # 取得
    # ------------------------------------------------------------------

    async def get_by_user(self, user_id: int) -> GitHubConnection | None:
        stmt = select(GitHubConnection).where(GitHubConnection.user_id == user_id)
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def get_by_installation(self, installation_id: int) -> GitHubConnection | None:
        stmt = select(GitHubConnection).where(
            GitHubConnection.installation_id == installation_id
        )
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def require_connection(self, user_id: int) -> GitHubConnection:
        connection = await self.get_by_user(user_id)
        if connection is None:
            raise ConnectionRequiredError(
                "Connect GitHub App before running this action",
                code="GITHUB_NOT_CONNECTED",
            )
        return connection

    async def get_status(self, user_id: int) -> dict[str, Any]:
        """接続状態と未解決ジョブの有無を返す（副作用なし）。"""
        connection = await self.get_by_user(user_id)
        if connection is None:
            return {"connected": False, "has_pending_sync": False}

        jobs = await SyncJobQueue(self.session).unresolved_for_installation(
            connection.installation_id
        )
        lookbacks = [
            job.lookback_days
            for job in jobs
            if job.reason == SyncReason.INITIAL_BACKFILL.value and job.lookback_days is not None
        ]
        return {
            "connected": True,
            "auth_mode": connection.auth_mode,
            "login": connection.github_login or connection.installation_account_login,
            "installation_id": connection.installation_id,
            "installation_account_login": connection.installation_account_login,
            "installation_account_type": connection.installation_account_type,
            "repo_selection_mode": connection.repo_selection_mode,
            "sync_status": connection.sync_status or SyncStatus.IDLE.value,
            "last_sync": format_last_sync(connection.last_synced_at),
            "last_synced_at": connection.last_synced_at,
            "synced_from_at": connection.synced_from_at,
            "synced_to_at": connection.synced_to_at,
            "last_webhook_at": connection.last_webhook_at,
            "last_error_code": connection.last_error_code,
            "last_error_message": connection.last_error_message,
            "streak_days": connection.streak_days,
            "has_pending_sync": bool(jobs),
            "active_backfill_lookback_days": max(lookbacks) if lookbacks else None,
        }

    # ------------------------------------------------------------------
    # 接続の作成・状態更新
    # ------------------------------------------------------------------

    async def upsert_app_connection(
        self,
        user_id: int,
        installation_id: int,
        account_login: str,
        account_type: InstallationAccountType,
        repo_selection_mode: RepoSelectionMode = RepoSelectionMode.SELECTED,
    ) -> GitHubConnection:
        """App インストール情報で接続を作成・更新する。

        個人アカウントへのインストールではアカウント名をGitHubログインとみなす。
        組織の場合は既存のログイン（Webhookで推定済みのもの）を維持する。
        """
        connection = await self.get_by_user(user_id)
        if connection is None:
            connection = GitHubConnection(user_id=user_id)
            self.session.add(connection)

        connection.auth_mode = AuthMode.GITHUB_APP.value
        connection.installation_id = installation_id
        connection.installation_account_login = account_login
        connection.installation_account_type = account_type.value
        connection.repo_selection_mode = repo_selection_mode.value
        if account_type == InstallationAccountType.USER:
            connection.github_login = account_login
        connection.sync_status = SyncStatus.IDLE.value
        connection.connected_at = datetime.now(timezone.utc)
        connection.last_error_code = None
        connection.last_error_message = None
        await self.session.flush()
        return connection

    async def set_sync_status(
        self,
        connection: GitHubConnection,
        status: SyncStatus,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> None:
        connection.sync_status = status.value
        connection.last_error_code = error_code
        connection.last_error_message = error_message
        await self.session.flush()

    async def mark_synced(
        self,
        connection: GitHubConnection,
        now: datetime,
        *,
        streak_days: int,
        sync_status: SyncStatus = SyncStatus.IDLE,
        history_synced_at: datetime | None = None,
        synced_from_at: datetime | None = None,
        synced_to_at: datetime | None = None,
    ) -> None:
        """同期完了を記録する。エラー情報はクリアする。"""
        connection.last_synced_at = now
        connection.sync_status = sync_status.value
        connection.last_error_code = None
        connection.last_error_message = None
        connection.streak_days = streak_days
        connection.streak_updated_at = now
        if history_synced_at is not None:
            connection.history_synced_at = history_synced_at
        if synced_from_at is not None:
            connection.synced_from_at = synced_from_at
        if synced_to_at is not None:
            connection.synced_to_at = synced_to_at
        await self.session.flush()

    async def reset_for_resync(self, connection: GitHubConnection) -> None:
        """再計算に備えて同期記録とストリークキャッシュを初期化する。"""
        connection.last_synced_at = None
        connection.history_synced_at = None
        connection.synced_from_at = None
        connection.synced_to_at = None
        connection.sync_status = SyncStatus.IDLE.value
        connection.last_webhook_at = None
        connection.last_error_code = None
        connection.last_error_message = None
        connection.streak_days = None
        connection.streak_updated_at = None
        await self.session.flush()

    # ------------------------------------------------------------------
    # アクション
    # ------------------------------------------------------------------

    async def enqueue_initial_backfill(self, connection: GitHubConnection) -> None:
        await SyncJobQueue(self.session).enqueue(
            SyncJobSpec(
                user_id=connection.user_id,
                installation_id=connection.installation_id,
                reason=SyncReason.INITIAL_BACKFILL,
                lookback_days=INITIAL_BACKFILL_DAYS,
            )
        )
        await self.set_sync_status(connection, SyncStatus.SYNCING)

    async def complete_app_setup(
        self,
        user_id: int,
        installation_id: int,
        account_login: str,
        account_type: InstallationAccountType,
        repo_selection_mode: RepoSelectionMode = RepoSelectionMode.SELECTED,
    ) -> GitHubConnection:
        """App のセットアップを完了し、初回バックフィルを投入する。

        ワーカーの起動は呼び出し側（APIのバックグラウンドタスク）が行う。
        """
        connection = await self.upsert_app_connection(
            user_id,
            installation_id,
            account_login,
            account_type,
            repo_selection_mode,
        )
        await self.enqueue_initial_backfill(connection)
        logger.info(
            "GitHub App connected for user_id=%d (installation=%d, account=%s)",
            user_id,
            installation_id,
            account_login,
        )
        return connection

    async def request_sync(self, user_id: int) -> GitHubConnection:
        """手動同期（reconcile）を投入する。"""
        connection = await self.require_connection(user_id)
        await SyncJobQueue(self.session).enqueue(
            SyncJobSpec(
                user_id=user_id,
                installation_id=connection.installation_id,
                reason=SyncReason.RECONCILE,
            )
        )
        await self.set_sync_status(connection, SyncStatus.SYNCING)
        return connection

    async def recompute_from_scratch(self, user_id: int) -> GitHubConnection:
        """保存済みデータを消去し、初回バックフィルからやり直す。

        Raises:
            ConnectionRequiredError: 接続が存在しない場合。
        """
        connection = await self.require_connection(user_id)
        await self.clear_github_data(user_id, connection.installation_id, clear_connection=False)
        await self.reset_for_resync(connection)
        await self.enqueue_initial_backfill(connection)
        logger.info("Recompute from scratch requested for user_id=%d", user_id)
        return connection

    async def disconnect(self, user_id: int) -> bool:
        """接続と関連データを削除する。接続が無ければ False。"""
        connection = await self.get_by_user(user_id)
        if connection is None:
            return False
        await self.clear_github_data(user_id, connection.installation_id, clear_connection=True)
        logger.info("GitHub disconnected for user_id=%d", user_id)
        return True

    async def clear_github_data(
        self,
        user_id: int,
        installation_id: int | None,
        clear_connection: bool,
    ) -> None:
        """コミット・日次集計・ジョブを削除し、必要なら接続も削除する。"""
        await CommitStore(self.session).delete_user_data(user_id)
        if installation_id is not None:
            await SyncJobQueue(self.session).delete_for_installation(installation_id)
        if clear_connection:
            connection = await self.get_by_user(user_id)
            if connection is not None:
                await self.session.delete(connection)
        await self.session.flush()

    # ------------------------------------------------------------------
    # ストリーク
    # ------------------------------------------------------------------

    async def compute_streak_snapshot(
        self,
        user_id: int,
        anchor_ms: int,
        lookback_days: int | None = None,
        time_zone: str | None = None,
        max_pages: int = STREAK_MAX_PAGES,
    ) -> StreakSnapshot:
        """保存済みコミットからストリークを再計算する。

        Args:
            user_id: ユーザーID。
            anchor_ms: アンカー時刻（エポックミリ秒）。
            lookback_days: 指定時、その取得期間の開始日と比較して境界到達を判定する。
            time_zone: 日付キーのタイムゾーン。省略時はユーザーの目標設定。
            max_pages: 読み出すページ数の上限。

        Returns:
            StreakSnapshot。
        """
        if time_zone is None:
            time_zone = await GoalsService(self.session).resolve_user_timezone(user_id)

        timestamps = await CommitStore(self.session).collect_commit_timestamps(
            user_id, max_pages=max_pages
        )
        computation = compute_current_streak(timestamps, time_zone, anchor_ms)

        lookback_start_key = None
        if lookback_days is not None:
            lookback_start_key = to_date_key(anchor_ms - lookback_days * DAY_MS, time_zone)

        return StreakSnapshot(
            time_zone=time_zone,
            computation=computation,
            touches_lookback_boundary=touches_lookback_boundary(
                computation.streak_start_date_key, lookback_start_key
            ),
            lookback_start_date_key=lookback_start_key,
            commit_events_scanned=len(timestamps),
        )
