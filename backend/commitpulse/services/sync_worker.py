"""GitHub同期ワーカー。

キューから取得したジョブごとに、GitHub App API からリポジトリと
コミットを取得してコミットストアへ保存し、接続の同期状態と
ストリークキャッシュを更新する。初回バックフィルでストリークが
取得期間の境界に達している場合は、期間を広げたジョブを再投入する。
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from commitpulse.core.dates import clamp, parse_github_datetime, to_epoch_ms
from commitpulse.core.exceptions import AppException, GitHubAuthError
from commitpulse.database import async_session_factory
from commitpulse.external.github_client import GitHubAppClient
from commitpulse.models.enums import SyncReason, SyncStatus
from commitpulse.services.commit_store import CommitRecord, CommitStore
from commitpulse.services.connection_service import (
    BACKFILL_STEP_DAYS,
    INITIAL_BACKFILL_DAYS,
    MAX_BACKFILL_DAYS,
    ConnectionService,
)
from commitpulse.services.goals_service import GoalsService
from commitpulse.services.job_queue import ClaimedJob, SyncJobQueue, SyncJobSpec

logger = logging.getLogger(__name__)

SYNC_SAFETY_WINDOW = timedelta(hours=6)
WORKER_BATCH_SIZE = 8
WORKER_CONCURRENCY = 3
WORKER_MAX_ROUNDS = 6
EXTRA_CONTRIBUTION_BRANCHES = ("gh-pages",)

SYNC_JOB_FAILED = "SYNC_JOB_FAILED"


# ---------------------------------------------------------------------------
# 純粋関数
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SyncWindow:
    since: datetime
    until: datetime


def requested_lookback_days(reason: SyncReason, lookback_days: int | None) -> int | None:
    """初回バックフィルの取得日数（90..1825 に制限）。それ以外は None。"""
    if reason != SyncReason.INITIAL_BACKFILL:
        return None
    return clamp(lookback_days or INITIAL_BACKFILL_DAYS, INITIAL_BACKFILL_DAYS, MAX_BACKFILL_DAYS)


def select_sync_window(
    reason: SyncReason,
    now: datetime,
    lookback_days: int | None = None,
    last_synced_at: datetime | None = None,
) -> SyncWindow:
    """ジョブの取得期間を決める。

    - initial_backfill: ``[now - lookback, now]``
    - その他: 前回同期の6時間前から。前回同期が無ければ初回バックフィルと同じ期間。

    Args:
        reason: ジョブの理由。
        now: 基準時刻。
        lookback_days: ジョブに指定された取得日数。
        last_synced_at: 接続の最終同期時刻。

    Returns:
        SyncWindow。
    """
    if reason == SyncReason.INITIAL_BACKFILL or last_synced_at is None:
        days = requested_lookback_days(SyncReason.INITIAL_BACKFILL, lookback_days)
        return SyncWindow(since=now - timedelta(days=days), until=now)

    epoch = datetime.fromtimestamp(0, tz=timezone.utc)
    return SyncWindow(since=max(epoch, last_synced_at - SYNC_SAFETY_WINDOW), until=now)


def contribution_branches(default_branch: str | None) -> list[str]:
    """コントリビューションとして数えるブランチ（既定ブランチ + gh-pages）。"""
    branches: list[str] = []
    if default_branch and default_branch.strip():
        branches.append(default_branch.strip())
    for branch in EXTRA_CONTRIBUTION_BRANCHES:
        if branch not in branches:
            branches.append(branch)
    return branches


def is_syncable_repository(repo: dict[str, Any]) -> bool:
    return not (repo.get("archived") or repo.get("disabled") or repo.get("fork"))


def plan_backfill_extension(
    job: ClaimedJob,
    lookback_days: int | None,
    touches_boundary: bool,
) -> SyncJobSpec | None:
    """初回バックフィル完了後、取得期間を延長すべきか判定する。

    ストリークの最古日が取得期間の開始日以前に達しており、まだ上限
    （1825日）未満であれば、90日延ばしたバックフィルジョブを返す。
    """
    if job.reason != SyncReason.INITIAL_BACKFILL or not touches_boundary:
        return None
    current = lookback_days or INITIAL_BACKFILL_DAYS
    if current >= MAX_BACKFILL_DAYS:
        return None
    return SyncJobSpec(
        user_id=job.user_id,
        installation_id=job.installation_id,
        reason=SyncReason.INITIAL_BACKFILL,
        lookback_days=min(MAX_BACKFILL_DAYS, current + BACKFILL_STEP_DAYS),
    )


def commit_record_from_detail(
    user_id: int,
    repo: dict[str, Any],
    detail: dict[str, Any],
) -> CommitRecord | None:
    """コミット詳細APIのレスポンスを CommitRecord に変換する。

    GitHub のコントリビューションは author の日時で数えるため author.date を
    使い、無ければ committer.date を使う。どちらも解析できなければ None。
    """
    commit = detail.get("commit") or {}
    authored = (commit.get("author") or {}).get("date")
    committed = (commit.get("committer") or {}).get("date")
    committed_at = parse_github_datetime(authored) or parse_github_datetime(committed)
    if committed_at is None:
        return None

    stats = detail.get("stats") or {}
    return CommitRecord(
        user_id=user_id,
        repo=repo["full_name"],
        repo_id=repo.get("id"),
        sha=detail["sha"],
        message=commit.get("message") or "",
        url=detail.get("html_url") or "",
        additions=stats.get("additions") or 0,
        deletions=stats.get("deletions") or 0,
        files_changed=len(detail.get("files") or []),
        committed_at=committed_at,
    )


def error_code_for(exc: Exception) -> str:
    if isinstance(exc, GitHubAuthError):
        return exc.code
    return SYNC_JOB_FAILED


def error_message_for(exc: Exception) -> str:
    if isinstance(exc, AppException):
        return exc.detail
    return str(exc) or type(exc).__name__


# ---------------------------------------------------------------------------
# ワーカー
# ---------------------------------------------------------------------------

class SyncWorker:
    """同期ジョブを取得・実行するワーカー。

    各ジョブは専用のDBセッションで処理し、リポジトリごとにコミットする。
    途中で失敗しても、それまでに保存したコミットと集計は残る。
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
        client_factory: Callable[[], GitHubAppClient] = GitHubAppClient,
        batch_size: int = WORKER_BATCH_SIZE,
        concurrency: int = WORKER_CONCURRENCY,
        max_rounds: int = WORKER_MAX_ROUNDS,
    ) -> None:
        self._session_factory = session_factory
        self._client_factory = client_factory
        self.batch_size = batch_size
        self.concurrency = concurrency
        self.max_rounds = max_rounds

    async def run(self) -> int:
        """キューが空になるか上限ラウンドに達するまでジョブを処理する。

        Returns:
            処理したジョブ数。
        """
        processed = 0
        async with self._client_factory() as client:
            for _ in range(self.max_rounds):
                claimed = await self.claim_batch()
                if not claimed:
                    break
                for start in range(0, len(claimed), self.concurrency):
                    chunk = claimed[start:start + self.concurrency]
                    await asyncio.gather(
                        *(self.process_job_with_retry(job, client) for job in chunk)
                    )
                processed += len(claimed)
        return processed

    async def claim_batch(self) -> list[ClaimedJob]:
        async with self._session_factory() as session:
            claimed = await SyncJobQueue(session).claim(self.batch_size)
            await session.commit()
        return claimed

    async def process_job_with_retry(self, job: ClaimedJob, client: GitHubAppClient) -> None:
        """ジョブを処理し、失敗時は接続をエラー状態にしてキューに差し戻す。"""
        try:
            await self.process_job(job, client)
        except Exception as exc:
            logger.warning(
                "Sync job %d (%s) failed on attempt %d: %s",
                job.job_id,
                job.reason.value,
                job.attempt + 1,
                exc,
                exc_info=not isinstance(exc, AppException),
            )
            try:
                await self._record_failure(job, exc)
            except Exception:
                logger.exception("Failed to record failure for sync job %d", job.job_id)

    async def _record_failure(self, job: ClaimedJob, exc: Exception) -> None:
        message = error_message_for(exc)
        async with self._session_factory() as session:
            connections = ConnectionService(session)
            connection = await connections.get_by_user(job.user_id)
            if connection is not None:
                await connections.set_sync_status(
                    connection,
                    SyncStatus.ERROR,
                    error_code=error_code_for(exc),
                    error_message=message,
                )
            await SyncJobQueue(session).fail(job.job_id, job.attempt + 1, message)
            await session.commit()

    async def process_job(self, job: ClaimedJob, client: GitHubAppClient) -> None:
        """1ジョブ分の同期を実行する。

        Args:
            job: 取得済みジョブ。
            client: GitHub App クライアント。
        """
        async with self._session_factory() as session:
            connections = ConnectionService(session)
            queue = SyncJobQueue(session)

            connection = await connections.get_by_installation(job.installation_id)
            if connection is None:
                # 切断済み
                logger.info(
                    "No connection for installation %d; completing job %d",
                    job.installation_id,
                    job.job_id,
                )
                await queue.complete(job.job_id)
                await session.commit()
                return

            await connections.set_sync_status(connection, SyncStatus.SYNCING)
            await session.commit()

            token = await client.create_installation_token(job.installation_id)
            time_zone = await GoalsService(session).resolve_user_timezone(connection.user_id)

            now = datetime.now(timezone.utc)
            lookback_days = requested_lookback_days(job.reason, job.lookback_days)
            window = select_sync_window(
                job.reason,
                now,
                lookback_days=job.lookback_days,
                last_synced_at=connection.last_synced_at,
            )

            repos = await client.list_installation_repositories(token)
            if job.repo_full_name:
                repos = [r for r in repos if r.get("full_name") == job.repo_full_name]

            store = CommitStore(session)
            earliest = connection.synced_from_at
            latest = connection.synced_to_at
            inserted = 0

            for repo in repos:
                if not is_syncable_repository(repo):
                    logger.debug("Skipping repository %s", repo.get("full_name"))
                    continue

                shas: dict[str, None] = {}
                for branch in contribution_branches(repo.get("default_branch")):
                    commits = await client.list_commits(
                        token,
                        repo["full_name"],
                        since=window.since,
                        branch=branch,
                        author=connection.github_login,
                    )
                    for commit in commits:
                        shas.setdefault(commit["sha"], None)

                for sha in shas:
                    detail = await client.get_commit_detail(token, repo["full_name"], sha)
                    record = commit_record_from_detail(connection.user_id, repo, detail)
                    if record is None:
                        continue
                    at = record.committed_at
                    earliest = at if earliest is None else min(earliest, at)
                    latest = at if latest is None else max(latest, at)
                    result = await store.insert_commit_if_absent(record, time_zone)
                    inserted += int(result.inserted)

                await session.commit()

            snapshot = await connections.compute_streak_snapshot(
                connection.user_id,
                anchor_ms=to_epoch_ms(now),
                lookback_days=lookback_days,
                time_zone=time_zone,
            )
            extension = plan_backfill_extension(
                job, lookback_days, snapshot.touches_lookback_boundary
            )
            if extension is not None:
                await queue.enqueue(extension, now=now)
                logger.info(
                    "Extending initial backfill for user_id=%d: %d -> %d days (streak=%d)",
                    connection.user_id,
                    lookback_days,
                    extension.lookback_days,
                    snapshot.streak_days,
                )
            elif job.reason == SyncReason.INITIAL_BACKFILL:
                logger.info(
                    "Initial backfill boundary resolved for user_id=%d at %d days (streak=%d)",
                    connection.user_id,
                    lookback_days,
                    snapshot.streak_days,
                )

            history_done = job.reason == SyncReason.INITIAL_BACKFILL and extension is None
            await connections.mark_synced(
                connection,
                now,
                streak_days=snapshot.streak_days,
                sync_status=SyncStatus.SYNCING if extension is not None else SyncStatus.IDLE,
                history_synced_at=now if history_done else None,
                synced_from_at=earliest,
                synced_to_at=latest,
            )
            await queue.complete(job.job_id)
            await session.commit()

            logger.info(
                "Sync job %d (%s) completed: %d repos, %d new commits",
                job.job_id,
                job.reason.value,
                len(repos),
                inserted,
            )
