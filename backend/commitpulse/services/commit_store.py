"""コミットイベントストア。

コミットの冪等な保存と、保存時の日次集計（DailyStat）の増分更新、
ストリーク計算向けのページング読み出し、切断時の一括削除を提供する。
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from commitpulse.core.dates import to_date_key, to_epoch_ms
from commitpulse.models import CommitEvent, DailyStat

logger = logging.getLogger(__name__)

STREAK_PAGE_SIZE = 256
STREAK_MAX_PAGES = 160
DELETE_BATCH_SIZE = 128


@dataclass(frozen=True)
class CommitRecord:
    """保存対象のコミット1件。"""

    user_id: int
    repo: str
    sha: str
    committed_at: datetime
    message: str = ""
    url: str = ""
    additions: int = 0
    deletions: int = 0
    files_changed: int = 0
    repo_id: int | None = None

    @property
    def size(self) -> int:
        return self.additions + self.deletions


@dataclass(frozen=True)
class InsertResult:
    inserted: bool
    date_key: str | None = None


def apply_commit_to_daily_stat(
    stat: DailyStat,
    size: int,
    repo: str,
    now: datetime | None = None,
) -> DailyStat:
    """既存の日次集計に新規コミット1件分を加算する。

    ``avg_commit_size`` は常に ``round(loc_changed / commit_count)`` となる。

    Args:
        stat: 更新対象のDailyStat（行ロック済み）。
        size: コミットの追加行数+削除行数。
        repo: リポジトリのフルネーム。
        now: 更新時刻。

    Returns:
        更新後の同じDailyStat。
    """
    stat.commit_count = (stat.commit_count or 0) + 1
    stat.loc_changed = (stat.loc_changed or 0) + size
    stat.avg_commit_size = round(stat.loc_changed / stat.commit_count)
    touched = list(stat.repos_touched or [])
    if repo not in touched:
        touched.append(repo)
    stat.repos_touched = touched
    stat.updated_at = now or datetime.now(timezone.utc)
    return stat


class CommitStore:
    """コミットイベントと日次集計へのアクセサ。"""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # ------------------------------------------------------------------
    # 書き込み
    # ------------------------------------------------------------------

    async def insert_commit_if_absent(
        self,
        record: CommitRecord,
        time_zone: str = "UTC",
    ) -> InsertResult:
        """コミットを保存し、新規の場合のみ日次集計を更新する。

        ``(user_id, sha)`` が既に存在する場合は何もしない（更新もしない）。

        Args:
            record: 保存するコミット。
            time_zone: 日次集計の日付キー算出に使うタイムゾーン。

        Returns:
            InsertResult。新規保存なら ``inserted=True``。
        """
        stmt = (
            pg_insert(CommitEvent)
            .values(
                user_id=record.user_id,
                repo=record.repo,
                repo_id=record.repo_id,
                sha=record.sha,
                message=record.message,
                url=record.url,
                additions=record.additions,
                deletions=record.deletions,
                files_changed=record.files_changed,
                committed_at=record.committed_at,
                size=record.size,
            )
            .on_conflict_do_nothing(constraint="uq_commit_events_user_sha")
            .returning(CommitEvent.event_id)
        )
        result = await self.session.execute(stmt)
        if result.scalar_one_or_none() is None:
            return InsertResult(inserted=False)

        date_key = to_date_key(to_epoch_ms(record.committed_at), time_zone)
        await self._bump_daily_stat(record, date_key)
        return InsertResult(inserted=True, date_key=date_key)

    async def _bump_daily_stat(self, record: CommitRecord, date_key: str) -> None:
        now = datetime.now(timezone.utc)
        size = record.size

        create_stmt = (
            pg_insert(DailyStat)
            .values(
                user_id=record.user_id,
                date=date_key,
                commit_count=1,
                loc_changed=size,
                avg_commit_size=size,
                repos_touched=[record.repo],
                updated_at=now,
            )
            .on_conflict_do_nothing(constraint="uq_daily_stats_user_date")
            .returning(DailyStat.stat_id)
        )
        created = await self.session.execute(create_stmt)
        if created.scalar_one_or_none() is not None:
            return

        stmt = (
            select(DailyStat)
            .where(DailyStat.user_id == record.user_id, DailyStat.date == date_key)
            .with_for_update()
        )
        stat = (await self.session.execute(stmt)).scalar_one()
        apply_commit_to_daily_stat(stat, size, record.repo, now)
        await self.session.flush()

    async def delete_user_data(
        self,
        user_id: int,
        batch_size: int = DELETE_BATCH_SIZE,
    ) -> tuple[int, int]:
        """ユーザーのコミットイベントと日次集計をバッチ単位で削除する。

        Returns:
            (削除したコミット数, 削除した日次集計数)。
        """
        deleted_commits = await self._delete_in_batches(
            CommitEvent, CommitEvent.event_id, user_id, batch_size
        )
        deleted_stats = await self._delete_in_batches(
            DailyStat, DailyStat.stat_id, user_id, batch_size
        )
        logger.info(
            "Deleted %d commit events and %d daily stats for user_id=%d",
            deleted_commits,
            deleted_stats,
            user_id,
        )
        return deleted_commits, deleted_stats

    async def _delete_in_batches(
        self,
        model: Any,
        pk_column: Any,
        user_id: int,
        batch_size: int,
    ) -> int:
        total = 0
        while True:
            ids = (
                await self.session.execute(
                    select(pk_column).where(model.user_id == user_id).limit(batch_size)
                )
            ).scalars().all()
            if not ids:
                return total
            await self.session.execute(delete(model).where(pk_column.in_(ids)))
            total += len(ids)

    # ------------------------------------------------------------------
    # 読み出し
    # ------------------------------------------------------------------

    async def iter_commit_pages(
        self,
        user_id: int,
        page_size: int = STREAK_PAGE_SIZE,
        max_pages: int = STREAK_MAX_PAGES,
    ) -> AsyncIterator[Sequence[Any]]:
        """コミットを新しい順にページ単位で返す非同期ジェネレータ。

        (committed_at, event_id) のキーセットで次ページを辿り、
        ``max_pages`` ページで打ち切る。各行は ``event_id`` と
        ``committed_at`` を持つ。
        """
        cursor: tuple[datetime, int] | None = None
        for _ in range(max_pages):
            stmt = (
                select(CommitEvent.event_id, CommitEvent.committed_at)
                .where(CommitEvent.user_id == user_id)
                .order_by(CommitEvent.committed_at.desc(), CommitEvent.event_id.desc())
                .limit(page_size)
            )
            if cursor is not None:
                last_at, last_id = cursor
                stmt = stmt.where(
                    or_(
                        CommitEvent.committed_at < last_at,
                        and_(
                            CommitEvent.committed_at == last_at,
                            CommitEvent.event_id < last_id,
                        ),
                    )
                )
            rows = (await self.session.execute(stmt)).all()
            if not rows:
                return
            yield rows
            if len(rows) < page_size:
                return
            cursor = (rows[-1].committed_at, rows[-1].event_id)

    async def iter_commit_timestamps(
        self,
        user_id: int,
        page_size: int = STREAK_PAGE_SIZE,
        max_pages: int = STREAK_MAX_PAGES,
    ) -> AsyncIterator[int]:
        """``iter_commit_pages`` を平坦化し、エポックミリ秒を返す。"""
        async for page in self.iter_commit_pages(user_id, page_size, max_pages):
            for row in page:
                yield to_epoch_ms(row.committed_at)

    async def collect_commit_timestamps(
        self,
        user_id: int,
        max_pages: int = STREAK_MAX_PAGES,
    ) -> list[int]:
        return [ts async for ts in self.iter_commit_timestamps(user_id, max_pages=max_pages)]

    async def latest_commit_at(self, user_id: int) -> datetime | None:
        stmt = (
            select(CommitEvent.committed_at)
            .where(CommitEvent.user_id == user_id)
            .order_by(CommitEvent.committed_at.desc())
            .limit(1)
        )
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def get_daily_stat(self, user_id: int, date_key: str) -> DailyStat | None:
        stmt = select(DailyStat).where(
            DailyStat.user_id == user_id,
            DailyStat.date == date_key,
        )
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def recent_daily_stats(self, user_id: int, limit: int) -> list[DailyStat]:
        """日次集計を日付の新しい順に最大 ``limit`` 件返す。"""
        stmt = (
            select(DailyStat)
            .where(DailyStat.user_id == user_id)
            .order_by(DailyStat.date.desc())
            .limit(limit)
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def recent_commits(self, user_id: int, limit: int) -> list[CommitEvent]:
        stmt = (
            select(CommitEvent)
            .where(CommitEvent.user_id == user_id)
            .order_by(CommitEvent.committed_at.desc(), CommitEvent.event_id.desc())
            .limit(limit)
        )
        return list((await self.session.execute(stmt)).scalars().all())
