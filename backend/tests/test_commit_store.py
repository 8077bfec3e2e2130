"""Tests for ``commitpulse.services.commit_store``."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from commitpulse.core.dates import to_epoch_ms
from commitpulse.models import DailyStat
from commitpulse.services.commit_store import (
    CommitRecord,
    CommitStore,
    apply_commit_to_daily_stat,
)
from tests.conftest import make_result

COMMITTED_AT = datetime(2026, 2, 16, 3, 0, tzinfo=timezone.utc)


def _record(sha: str = "a" * 40, additions: int = 10, deletions: int = 4) -> CommitRecord:
    return CommitRecord(
        user_id=1,
        repo="octo/repo",
        sha=sha,
        committed_at=COMMITTED_AT,
        message="Fix things",
        additions=additions,
        deletions=deletions,
        files_changed=2,
    )


# ---------------------------------------------------------------------------
# Aggregate arithmetic
# ---------------------------------------------------------------------------


class TestApplyCommit:
    def test_running_average_stays_rounded_mean(self) -> None:
        stat = DailyStat(
            user_id=1,
            date="2026-02-16",
            commit_count=2,
            loc_changed=11,
            avg_commit_size=6,
            repos_touched=["octo/repo"],
        )

        apply_commit_to_daily_stat(stat, size=20, repo="octo/other")

        assert stat.commit_count == 3
        assert stat.loc_changed == 31
        assert stat.avg_commit_size == round(31 / 3)
        assert stat.repos_touched == ["octo/repo", "octo/other"]

    def test_repo_is_not_duplicated(self) -> None:
        stat = DailyStat(commit_count=1, loc_changed=5, repos_touched=["octo/repo"])
        apply_commit_to_daily_stat(stat, size=5, repo="octo/repo")
        assert stat.repos_touched == ["octo/repo"]

    def test_record_size_is_additions_plus_deletions(self) -> None:
        assert _record(additions=7, deletions=3).size == 10


# ---------------------------------------------------------------------------
# Idempotent insert
# ---------------------------------------------------------------------------


class TestInsertCommit:
    @pytest.mark.asyncio
    async def test_existing_sha_is_a_noop(self, mock_session: AsyncMock) -> None:
        mock_session.execute.return_value = make_result(scalar=None)

        result = await CommitStore(mock_session).insert_commit_if_absent(_record())

        assert result.inserted is False
        # Only the commit insert ran; aggregates were not touched
        assert mock_session.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_new_commit_creates_daily_stat(self, mock_session: AsyncMock) -> None:
        mock_session.execute.side_effect = [
            make_result(scalar=101),  # commit inserted
            make_result(scalar=7),  # daily stat row created
        ]

        result = await CommitStore(mock_session).insert_commit_if_absent(_record())

        assert result.inserted is True
        assert result.date_key == "2026-02-16"
        assert mock_session.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_new_commit_bumps_existing_stat(self, mock_session: AsyncMock) -> None:
        stat = DailyStat(
            user_id=1,
            date="2026-02-15",
            commit_count=1,
            loc_changed=6,
            avg_commit_size=6,
            repos_touched=["octo/repo"],
        )
        mock_session.execute.side_effect = [
            make_result(scalar=102),  # commit inserted
            make_result(scalar=None),  # stat row already exists
            make_result(scalar=stat),  # locked read
        ]

        result = await CommitStore(mock_session).insert_commit_if_absent(
            _record(), time_zone="America/Los_Angeles"
        )

        # 03:00Z on the 16th is still the 15th in Los Angeles
        assert result.date_key == "2026-02-15"
        assert stat.commit_count == 2
        assert stat.loc_changed == 20
        assert stat.avg_commit_size == 10
        mock_session.flush.assert_awaited_once()


# ---------------------------------------------------------------------------
# Paged reads and deletes
# ---------------------------------------------------------------------------


class TestReads:
    @pytest.mark.asyncio
    async def test_pages_stop_on_short_page(self, mock_session: AsyncMock) -> None:
        rows = [
            SimpleNamespace(event_id=10 - i, committed_at=COMMITTED_AT - timedelta(hours=i))
            for i in range(3)
        ]
        mock_session.execute.side_effect = [make_result(rows=rows[:2]), make_result(rows=rows[2:])]

        timestamps = [
            ts async for ts in CommitStore(mock_session).iter_commit_timestamps(1, page_size=2)
        ]

        assert timestamps == [to_epoch_ms(row.committed_at) for row in rows]
        assert mock_session.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_page_cap_is_respected(self, mock_session: AsyncMock) -> None:
        full_page = [
            SimpleNamespace(event_id=i, committed_at=COMMITTED_AT) for i in range(2)
        ]
        mock_session.execute.return_value = make_result(rows=full_page)

        store = CommitStore(mock_session)
        timestamps = [
            ts async for ts in store.iter_commit_timestamps(1, page_size=2, max_pages=3)
        ]

        assert len(timestamps) == 6
        assert mock_session.execute.await_count == 3

    @pytest.mark.asyncio
    async def test_delete_user_data_in_batches(self, mock_session: AsyncMock) -> None:
        mock_session.execute.side_effect = [
            make_result(scalars=[1, 2]),  # commit ids, batch 1
            make_result(),  # delete
            make_result(scalars=[3]),  # commit ids, batch 2
            make_result(),  # delete
            make_result(scalars=[]),  # no more commits
            make_result(scalars=[11]),  # stat ids
            make_result(),  # delete
            make_result(scalars=[]),  # no more stats
        ]

        deleted = await CommitStore(mock_session).delete_user_data(1, batch_size=2)

        assert deleted == (3, 1)
