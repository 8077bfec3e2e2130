"""同期ジョブキュー。

``pending -> processing -> {completed | pending(再試行) | failed}`` の
状態遷移を持つ永続ジョブキューを sync_jobs テーブル上に実装する。
取得（claim）は ``SELECT ... FOR UPDATE SKIP LOCKED`` で行い、
並行するワーカーが同じジョブを受け取らないようにする。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from commitpulse.core.dates import clamp
from commitpulse.models import SyncJob
from commitpulse.models.enums import UNRESOLVED_JOB_STATUSES, JobStatus, SyncReason

logger = logging.getLogger(__name__)

MAX_JOB_ATTEMPTS = 6
BASE_BACKOFF_MS = 5_000
MAX_BACKOFF_MS = 5 * 60 * 1000
MAX_CLAIM_LIMIT = 20


# ---------------------------------------------------------------------------
# 再試行ポリシー（純粋関数）
# ---------------------------------------------------------------------------

def backoff_delay_ms(attempt: int) -> int:
    """``attempt`` 回目の失敗後の待機時間（ミリ秒）。"""
    return min(MAX_BACKOFF_MS, BASE_BACKOFF_MS * 2 ** max(0, attempt))


def is_terminal(attempt: int) -> bool:
    return attempt >= MAX_JOB_ATTEMPTS


def next_run_after(attempt: int, now: datetime) -> datetime:
    return now + timedelta(milliseconds=backoff_delay_ms(attempt))


# ---------------------------------------------------------------------------
# データ型
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SyncJobSpec:
    """投入するジョブの内容。"""

    user_id: int
    installation_id: int
    reason: SyncReason
    repo_full_name: str | None = None
    lookback_days: int | None = None
    delivery_id: str | None = None
    delay_ms: int = 0


@dataclass(frozen=True)
class ClaimedJob:
    """ワーカーに渡す、取得済みジョブのスナップショット。"""

    job_id: int
    user_id: int
    installation_id: int
    reason: SyncReason
    attempt: int
    repo_full_name: str | None = None
    lookback_days: int | None = None

    @classmethod
    def from_model(cls, job: SyncJob) -> ClaimedJob:
        return cls(
            job_id=job.job_id,
            user_id=job.user_id,
            installation_id=job.installation_id,
            reason=SyncReason(job.reason),
            attempt=job.attempt,
            repo_full_name=job.repo_full_name,
            lookback_days=job.lookback_days,
        )


# ---------------------------------------------------------------------------
# キュー
# ---------------------------------------------------------------------------

class SyncJobQueue:
    """sync_jobs テーブルを使ったジョブキュー。

    コミットは呼び出し側（セッション所有者）が行う。
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def enqueue(
        self,
        spec: SyncJobSpec,
        now: datetime | None = None,
    ) -> SyncJob | None:
        """ジョブを ``pending`` で投入する。

        以下の場合は重複として投入せず None を返す。

        - 同じ ``delivery_id`` のジョブが既に存在する。
        - 同じインストール・同じ ``lookback_days`` の ``initial_backfill`` が
          未解決（pending/processing）で存在する。

        Args:
            spec: 投入するジョブ内容。
            now: 基準時刻。

        Returns:
            作成したSyncJob。重複時は None。
        """
        now = now or datetime.now(timezone.utc)

        if spec.delivery_id:
            stmt = select(SyncJob.job_id).where(SyncJob.delivery_id == spec.delivery_id)
            if (await self.session.execute(stmt)).first() is not None:
                logger.info("Skipping duplicate delivery %s", spec.delivery_id)
                return None

        if spec.reason == SyncReason.INITIAL_BACKFILL and spec.lookback_days is not None:
            stmt = select(SyncJob.job_id).where(
                SyncJob.installation_id == spec.installation_id,
                SyncJob.reason == SyncReason.INITIAL_BACKFILL.value,
                SyncJob.lookback_days == spec.lookback_days,
                SyncJob.status.in_([s.value for s in UNRESOLVED_JOB_STATUSES]),
            )
            if (await self.session.execute(stmt)).first() is not None:
                logger.info(
                    "Skipping duplicate initial backfill (installation=%d, lookback=%d)",
                    spec.installation_id,
                    spec.lookback_days,
                )
                return None

        job = SyncJob(
            user_id=spec.user_id,
            installation_id=spec.installation_id,
            repo_full_name=spec.repo_full_name,
            reason=spec.reason.value,
            lookback_days=spec.lookback_days,
            status=JobStatus.PENDING.value,
            attempt=0,
            run_after=now + timedelta(milliseconds=spec.delay_ms),
            delivery_id=spec.delivery_id,
            created_at=now,
            updated_at=now,
        )
        self.session.add(job)
        await self.session.flush()
        logger.info(
            "Enqueued sync job %s (reason=%s, installation=%d, repo=%s, lookback=%s)",
            job.job_id,
            spec.reason.value,
            spec.installation_id,
            spec.repo_full_name,
            spec.lookback_days,
        )
        return job

    async def claim(
        self,
        limit: int,
        now: datetime | None = None,
    ) -> list[ClaimedJob]:
        """実行可能な ``pending`` ジョブを最大 ``limit`` 件取得し ``processing`` にする。

        ``limit`` は 1..20 に丸める。ロック済みの行は読み飛ばすため、
        並行する呼び出し同士が同じジョブを受け取ることはない。
        """
        now = now or datetime.now(timezone.utc)
        stmt = (
            select(SyncJob)
            .where(
                SyncJob.status == JobStatus.PENDING.value,
                SyncJob.run_after <= now,
            )
            .order_by(SyncJob.run_after)
            .limit(clamp(limit, 1, MAX_CLAIM_LIMIT))
            .with_for_update(skip_locked=True)
        )
        jobs = list((await self.session.execute(stmt)).scalars().all())
        for job in jobs:
            job.status = JobStatus.PROCESSING.value
            job.updated_at = now
        if jobs:
            await self.session.flush()
            logger.info("Claimed %d sync jobs", len(jobs))
        return [ClaimedJob.from_model(job) for job in jobs]

    async def complete(self, job_id: int) -> None:
        await self.session.execute(
            update(SyncJob)
            .where(SyncJob.job_id == job_id)
            .values(
                status=JobStatus.COMPLETED.value,
                error_message=None,
                updated_at=datetime.now(timezone.utc),
            )
        )

    async def fail(
        self,
        job_id: int,
        attempt: int,
        error_message: str,
        now: datetime | None = None,
    ) -> JobStatus:
        """失敗を記録する。上限到達なら ``failed``、それ以外は再試行待ちにする。

        Args:
            job_id: ジョブID。
            attempt: 今回の失敗を含めた試行回数。
            error_message: エラー内容。
            now: 基準時刻。

        Returns:
            遷移後のステータス。
        """
        now = now or datetime.now(timezone.utc)
        values: dict = {
            "attempt": attempt,
            "error_message": error_message,
            "updated_at": now,
        }
        if is_terminal(attempt):
            status = JobStatus.FAILED
            logger.warning(
                "Sync job %d failed permanently after %d attempts: %s",
                job_id,
                attempt,
                error_message,
            )
        else:
            status = JobStatus.PENDING
            values["run_after"] = next_run_after(attempt, now)
            logger.info(
                "Sync job %d will retry (attempt=%d, delay=%dms): %s",
                job_id,
                attempt,
                backoff_delay_ms(attempt),
                error_message,
            )
        values["status"] = status.value
        await self.session.execute(
            update(SyncJob).where(SyncJob.job_id == job_id).values(**values)
        )
        return status

    async def delete_for_installation(self, installation_id: int) -> None:
        await self.session.execute(
            delete(SyncJob).where(SyncJob.installation_id == installation_id)
        )

    async def unresolved_for_installation(
        self,
        installation_id: int,
        limit: int = 100,
    ) -> list[SyncJob]:
        """未解決（pending/processing）のジョブを返す。"""
        stmt = (
            select(SyncJob)
            .where(
                SyncJob.installation_id == installation_id,
                SyncJob.status.in_([s.value for s in UNRESOLVED_JOB_STATUSES]),
            )
            .order_by(SyncJob.run_after)
            .limit(limit)
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def count_by_status(self, installation_id: int) -> dict[str, int]:
        stmt = (
            select(SyncJob.status, func.count())
            .where(SyncJob.installation_id == installation_id)
            .group_by(SyncJob.status)
        )
        counts = {status.value: 0 for status in JobStatus}
        for status, count in (await self.session.execute(stmt)).all():
            counts[status] = count
        return counts
