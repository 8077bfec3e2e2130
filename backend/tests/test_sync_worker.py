"""Tests for ``commitpulse.services.sync_worker``."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

from commitpulse.core.exceptions import GitHubAuthError, GitHubTimeoutError
from commitpulse.models.enums import SyncReason, SyncStatus
from commitpulse.services.commit_store import InsertResult
from commitpulse.services.job_queue import ClaimedJob
from commitpulse.services.sync_worker import (
    SYNC_JOB_FAILED,
    SyncWorker,
    commit_record_from_detail,
    contribution_branches,
    error_code_for,
    is_syncable_repository,
    plan_backfill_extension,
    requested_lookback_days,
    select_sync_window,
)

NOW = datetime(2026, 2, 15, 12, 0, tzinfo=timezone.utc)
MODULE = "commitpulse.services.sync_worker"


def _job(reason: SyncReason = SyncReason.INITIAL_BACKFILL, **kwargs: Any) -> ClaimedJob:
    defaults: dict[str, Any] = {
        "job_id": 11,
        "user_id": 1,
        "installation_id": 77,
        "reason": reason,
        "attempt": 0,
        "lookback_days": 90 if reason == SyncReason.INITIAL_BACKFILL else None,
    }
    defaults.update(kwargs)
    return ClaimedJob(**defaults)


def _detail(sha: str, date: str = "2026-02-15T09:00:00Z") -> dict[str, Any]:
    return {
        "sha": sha,
        "html_url": f"https://github.com/octo/repo/commit/{sha}",
        "commit": {
            "message": f"commit {sha}",
            "author": {"date": date},
            "committer": {"date": "2026-02-15T10:00:00Z"},
        },
        "stats": {"additions": 5, "deletions": 2},
        "files": [{"filename": "a.py"}],
    }


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


class TestSyncWindow:
    def test_initial_backfill_uses_lookback(self) -> None:
        window = select_sync_window(SyncReason.INITIAL_BACKFILL, NOW, lookback_days=180)
        assert window.since == NOW - timedelta(days=180)
        assert window.until == NOW

    def test_incremental_sync_overlaps_six_hours(self) -> None:
        last = NOW - timedelta(hours=1)
        window = select_sync_window(SyncReason.PUSH, NOW, last_synced_at=last)
        assert window.since == last - timedelta(hours=6)

    def test_incremental_without_prior_sync_falls_back_to_backfill(self) -> None:
        window = select_sync_window(SyncReason.RECONCILE, NOW)
        assert window.since == NOW - timedelta(days=90)

    @pytest.mark.parametrize(
        ("requested", "expected"),
        [(None, 90), (30, 90), (270, 270), (5000, 1825)],
    )
    def test_lookback_is_clamped(self, requested: int | None, expected: int) -> None:
        assert requested_lookback_days(SyncReason.INITIAL_BACKFILL, requested) == expected

    def test_non_backfill_has_no_lookback(self) -> None:
        assert requested_lookback_days(SyncReason.PUSH, 200) is None


class TestRepositoryFilters:
    def test_contribution_branches(self) -> None:
        assert contribution_branches("main") == ["main", "gh-pages"]
        assert contribution_branches("gh-pages") == ["gh-pages"]
        assert contribution_branches(None) == ["gh-pages"]

    def test_archived_disabled_and_forks_are_skipped(self) -> None:
        assert is_syncable_repository({"full_name": "a/b"}) is True
        assert is_syncable_repository({"archived": True}) is False
        assert is_syncable_repository({"disabled": True}) is False
        assert is_syncable_repository({"fork": True}) is False


class TestBackfillExtension:
    def test_extends_by_ninety_days_when_boundary_touched(self) -> None:
        spec = plan_backfill_extension(_job(), 90, touches_boundary=True)
        assert spec is not None
        assert spec.reason == SyncReason.INITIAL_BACKFILL
        assert spec.lookback_days == 180
        assert spec.installation_id == 77

    def test_extension_is_capped(self) -> None:
        assert plan_backfill_extension(_job(), 1800, True).lookback_days == 1825
        assert plan_backfill_extension(_job(), 1825, True) is None

    def test_no_extension_without_boundary_or_for_other_reasons(self) -> None:
        assert plan_backfill_extension(_job(), 90, touches_boundary=False) is None
        assert plan_backfill_extension(_job(SyncReason.PUSH), 90, True) is None


class TestCommitRecord:
    def test_author_date_is_preferred(self) -> None:
        record = commit_record_from_detail(1, {"full_name": "octo/repo", "id": 5}, _detail("abc"))
        assert record is not None
        assert record.committed_at == datetime(2026, 2, 15, 9, 0, tzinfo=timezone.utc)
        assert record.size == 7
        assert record.files_changed == 1
        assert record.repo_id == 5

    def test_unparseable_dates_are_dropped(self) -> None:
        detail = _detail("abc", date="garbage")
        detail["commit"]["committer"]["date"] = None
        assert commit_record_from_detail(1, {"full_name": "octo/repo"}, detail) is None

    def test_error_codes(self) -> None:
        assert error_code_for(GitHubAuthError()) == "GITHUB_AUTH_INVALID"
        assert error_code_for(GitHubTimeoutError()) == SYNC_JOB_FAILED
        assert error_code_for(RuntimeError("x")) == SYNC_JOB_FAILED


# ---------------------------------------------------------------------------
# Worker
# ---------------------------------------------------------------------------


class _SessionFactory:
    """Stands in for ``async_sessionmaker``; every call yields the same mock."""

    def __init__(self) -> None:
        self.session = AsyncMock()

    def __call__(self) -> _SessionFactory:
        return self

    async def __aenter__(self) -> AsyncMock:
        return self.session

    async def __aexit__(self, *args: Any) -> None:
        return None


class _FakeGitHub:
    def __init__(self, repos: list[dict[str, Any]], commits: dict[str, list[str]]) -> None:
        self.repos = repos
        self.commits = commits
        self.detail_calls: list[str] = []

    async def __aenter__(self) -> _FakeGitHub:
        return self

    async def __aexit__(self, *args: Any) -> None:
        return None

    async def create_installation_token(self, installation_id: int) -> str:
        return "inst-token"

    async def list_installation_repositories(self, token: str) -> list[dict[str, Any]]:
        return self.repos

    async def list_commits(self, token: str, repo: str, since: datetime, branch: str,
                           author: str | None = None) -> list[dict[str, Any]]:
        return [{"sha": sha} for sha in self.commits.get(branch, [])]

    async def get_commit_detail(self, token: str, repo: str, sha: str) -> dict[str, Any]:
        self.detail_calls.append(sha)
        return _detail(sha)


def _connection() -> SimpleNamespace:
    return SimpleNamespace(
        user_id=1,
        installation_id=77,
        github_login="octo",
        last_synced_at=None,
        synced_from_at=None,
        synced_to_at=None,
    )


@pytest.fixture()
def services():
    """Patch the collaborators the worker builds per session."""
    with (
        patch(f"{MODULE}.ConnectionService") as connections_cls,
        patch(f"{MODULE}.SyncJobQueue") as queue_cls,
        patch(f"{MODULE}.GoalsService") as goals_cls,
        patch(f"{MODULE}.CommitStore") as store_cls,
    ):
        connections = AsyncMock()
        queue = AsyncMock()
        goals = AsyncMock()
        store = AsyncMock()
        connections_cls.return_value = connections
        queue_cls.return_value = queue
        goals_cls.return_value = goals
        store_cls.return_value = store

        goals.resolve_user_timezone.return_value = "UTC"
        store.insert_commit_if_absent.return_value = InsertResult(inserted=True)
        yield SimpleNamespace(connections=connections, queue=queue, store=store)


class TestProcessJob:
    @pytest.mark.asyncio
    async def test_ingests_default_branch_and_gh_pages_once(self, services) -> None:
        connection = _connection()
        services.connections.get_by_installation.return_value = connection
        services.connections.compute_streak_snapshot.return_value = SimpleNamespace(
            streak_days=3, touches_lookback_boundary=False
        )
        github = _FakeGitHub(
            repos=[
                {"full_name": "octo/repo", "default_branch": "main"},
                {"full_name": "octo/old", "default_branch": "main", "archived": True},
            ],
            commits={"main": ["a", "b"], "gh-pages": ["b", "c"]},
        )
        worker = SyncWorker(session_factory=_SessionFactory())

        await worker.process_job(_job(), github)

        assert github.detail_calls == ["a", "b", "c"]
        assert services.store.insert_commit_if_absent.await_count == 3
        services.queue.enqueue.assert_not_awaited()
        services.queue.complete.assert_awaited_once_with(11)

        kwargs = services.connections.mark_synced.await_args.kwargs
        assert kwargs["streak_days"] == 3
        assert kwargs["sync_status"] == SyncStatus.IDLE
        assert kwargs["history_synced_at"] is not None
        assert kwargs["synced_from_at"] == datetime(2026, 2, 15, 9, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_boundary_touch_enqueues_wider_backfill(self, services) -> None:
        services.connections.get_by_installation.return_value = _connection()
        services.connections.compute_streak_snapshot.return_value = SimpleNamespace(
            streak_days=140, touches_lookback_boundary=True
        )
        github = _FakeGitHub(repos=[], commits={})

        await SyncWorker(session_factory=_SessionFactory()).process_job(_job(), github)

        spec = services.queue.enqueue.await_args.args[0]
        assert spec.lookback_days == 180
        kwargs = services.connections.mark_synced.await_args.kwargs
        assert kwargs["sync_status"] == SyncStatus.SYNCING
        assert kwargs["history_synced_at"] is None

    @pytest.mark.asyncio
    async def test_push_job_is_narrowed_to_repository(self, services) -> None:
        services.connections.get_by_installation.return_value = _connection()
        services.connections.compute_streak_snapshot.return_value = SimpleNamespace(
            streak_days=1, touches_lookback_boundary=False
        )
        github = _FakeGitHub(
            repos=[
                {"full_name": "octo/repo", "default_branch": "main"},
                {"full_name": "octo/other", "default_branch": "main"},
            ],
            commits={"main": ["a"]},
        )

        await SyncWorker(session_factory=_SessionFactory()).process_job(
            _job(SyncReason.PUSH, repo_full_name="octo/other"), github
        )

        assert github.detail_calls == ["a"]

    @pytest.mark.asyncio
    async def test_disconnected_installation_completes_without_effect(self, services) -> None:
        services.connections.get_by_installation.return_value = None
        github = _FakeGitHub(repos=[], commits={})

        await SyncWorker(session_factory=_SessionFactory()).process_job(_job(), github)

        services.queue.complete.assert_awaited_once_with(11)
        services.connections.mark_synced.assert_not_awaited()


class TestFailureHandling:
    @pytest.mark.asyncio
    async def test_failure_marks_connection_and_reschedules(self, services) -> None:
        connection = _connection()
        services.connections.get_by_user.return_value = connection
        worker = SyncWorker(session_factory=_SessionFactory())

        with patch.object(worker, "process_job", AsyncMock(side_effect=GitHubAuthError())):
            await worker.process_job_with_retry(_job(attempt=2), AsyncMock())

        args = services.connections.set_sync_status.await_args
        assert args.args[1] == SyncStatus.ERROR
        assert args.kwargs["error_code"] == "GITHUB_AUTH_INVALID"
        services.queue.fail.assert_awaited_once()
        assert services.queue.fail.await_args.args[:2] == (11, 3)

    @pytest.mark.asyncio
    async def test_run_drains_until_queue_is_empty(self) -> None:
        jobs = [_job(job_id=i) for i in range(4)]
        worker = SyncWorker(
            session_factory=_SessionFactory(),
            client_factory=lambda: _FakeGitHub(repos=[], commits={}),
            concurrency=3,
        )

        with (
            patch.object(worker, "claim_batch", AsyncMock(side_effect=[jobs, []])),
            patch.object(worker, "process_job_with_retry", AsyncMock()) as process,
        ):
            processed = await worker.run()

        assert processed == 4
        assert process.await_count == 4
