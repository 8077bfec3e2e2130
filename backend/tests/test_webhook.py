"""Tests for webhook ingestion and ``POST /api/v1/github/webhook``."""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import AsyncClient

from commitpulse.core.security import compute_webhook_signature
from commitpulse.models.enums import SyncReason, SyncStatus
from commitpulse.services.webhook_service import WebhookEvent, WebhookResult, WebhookService
from tests.conftest import WEBHOOK_SECRET, make_result

PUSH_PAYLOAD = {
    "ref": "refs/heads/main",
    "installation": {"id": 777},
    "repository": {"full_name": "octo/app"},
    "sender": {"login": "octocat"},
}


# ---------------------------------------------------------------------------
# WebhookEvent
# ---------------------------------------------------------------------------


class TestWebhookEvent:
    def test_extracts_fields(self) -> None:
        event = WebhookEvent.from_payload("d-1", "push", PUSH_PAYLOAD)
        assert event.installation_id == 777
        assert event.repo_full_name == "octo/app"
        assert event.sender_login == "octocat"
        assert event.action is None

    def test_tolerates_missing_sections(self) -> None:
        event = WebhookEvent.from_payload("d-2", "ping", {"zen": "Keep it simple."})
        assert event.installation_id is None
        assert event.repo_full_name is None


# ---------------------------------------------------------------------------
# WebhookService
# ---------------------------------------------------------------------------


def _connection() -> SimpleNamespace:
    return SimpleNamespace(user_id=9, github_login=None, last_webhook_at=None)


class TestWebhookService:
    @pytest.mark.asyncio
    async def test_duplicate_delivery(self, mock_session: AsyncMock) -> None:
        mock_session.execute.return_value = make_result(rows=[("d-1",)])

        result = await WebhookService(mock_session).ingest(
            WebhookEvent.from_payload("d-1", "push", PUSH_PAYLOAD)
        )

        assert result == WebhookResult(accepted=True, duplicate=True)
        mock_session.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_installation_is_recorded_only(self, mock_session: AsyncMock) -> None:
        mock_session.execute.return_value = make_result()

        with patch("commitpulse.services.webhook_service.ConnectionService") as MockConn:
            MockConn.return_value.get_by_installation = AsyncMock(return_value=None)
            result = await WebhookService(mock_session).ingest(
                WebhookEvent.from_payload("d-1", "push", PUSH_PAYLOAD)
            )

        assert result.accepted and not result.duplicate and not result.enqueued
        mock_session.add.assert_called_once()
        delivery = mock_session.add.call_args.args[0]
        assert delivery.delivery_id == "d-1"
        assert delivery.installation_id == 777

    @pytest.mark.asyncio
    async def test_push_enqueues_repo_job(self, mock_session: AsyncMock) -> None:
        mock_session.execute.return_value = make_result()
        connection = _connection()

        with (
            patch("commitpulse.services.webhook_service.ConnectionService") as MockConn,
            patch("commitpulse.services.webhook_service.SyncJobQueue") as MockQueue,
        ):
            MockConn.return_value.get_by_installation = AsyncMock(return_value=connection)
            MockConn.return_value.set_sync_status = AsyncMock()
            MockQueue.return_value.enqueue = AsyncMock(return_value=MagicMock())

            result = await WebhookService(mock_session).ingest(
                WebhookEvent.from_payload("d-1", "push", PUSH_PAYLOAD)
            )

        assert result.enqueued is True
        spec = MockQueue.return_value.enqueue.await_args.args[0]
        assert spec.reason == SyncReason.PUSH
        assert spec.repo_full_name == "octo/app"
        assert spec.delivery_id == "d-1"
        assert connection.last_webhook_at is not None
        MockConn.return_value.set_sync_status.assert_awaited_once_with(
            connection, SyncStatus.SYNCING
        )

    @pytest.mark.asyncio
    async def test_installation_event_reconciles_whole_installation(
        self, mock_session: AsyncMock
    ) -> None:
        mock_session.execute.return_value = make_result()
        payload = {"action": "created", "installation": {"id": 777}, "sender": {"login": "octocat"}}
        connection = _connection()

        with (
            patch("commitpulse.services.webhook_service.ConnectionService") as MockConn,
            patch("commitpulse.services.webhook_service.SyncJobQueue") as MockQueue,
        ):
            MockConn.return_value.get_by_installation = AsyncMock(return_value=connection)
            MockConn.return_value.set_sync_status = AsyncMock()
            MockQueue.return_value.enqueue = AsyncMock(return_value=None)

            result = await WebhookService(mock_session).ingest(
                WebhookEvent.from_payload("d-3", "installation", payload)
            )

        spec = MockQueue.return_value.enqueue.await_args.args[0]
        assert spec.reason == SyncReason.RECONCILE
        assert spec.repo_full_name is None
        assert connection.github_login == "octocat"
        # an equivalent job was already pending
        assert result.enqueued is False

    @pytest.mark.asyncio
    async def test_installation_deleted_clears_data(self, mock_session: AsyncMock) -> None:
        mock_session.execute.return_value = make_result()
        payload = {"action": "deleted", "installation": {"id": 777}}

        with (
            patch("commitpulse.services.webhook_service.ConnectionService") as MockConn,
            patch("commitpulse.services.webhook_service.SyncJobQueue") as MockQueue,
        ):
            MockConn.return_value.get_by_installation = AsyncMock(return_value=_connection())
            MockConn.return_value.clear_github_data = AsyncMock()

            result = await WebhookService(mock_session).ingest(
                WebhookEvent.from_payload("d-4", "installation", payload)
            )

        assert result.enqueued is False
        MockConn.return_value.clear_github_data.assert_awaited_once_with(
            9, 777, clear_connection=True
        )
        MockQueue.return_value.enqueue.assert_not_called()

    @pytest.mark.asyncio
    async def test_unhandled_event_is_accepted(self, mock_session: AsyncMock) -> None:
        mock_session.execute.return_value = make_result()

        with (
            patch("commitpulse.services.webhook_service.ConnectionService") as MockConn,
            patch("commitpulse.services.webhook_service.SyncJobQueue") as MockQueue,
        ):
            MockConn.return_value.get_by_installation = AsyncMock(return_value=_connection())
            result = await WebhookService(mock_session).ingest(
                WebhookEvent.from_payload("d-5", "star", {"installation": {"id": 777}})
            )

        assert result == WebhookResult(accepted=True, duplicate=False)
        MockQueue.return_value.enqueue.assert_not_called()


# ---------------------------------------------------------------------------
# Endpoint
# ---------------------------------------------------------------------------


def _signed_headers(body: bytes, event: str = "push", delivery: str = "d-1") -> dict[str, str]:
    return {
        "X-Hub-Signature-256": compute_webhook_signature(body, WEBHOOK_SECRET),
        "X-GitHub-Delivery": delivery,
        "X-GitHub-Event": event,
        "Content-Type": "application/json",
    }


class TestWebhookEndpoint:
    @pytest.mark.asyncio
    async def test_accepts_signed_push(
        self, async_client: AsyncClient, mock_session: AsyncMock
    ) -> None:
        body = json.dumps(PUSH_PAYLOAD).encode()

        with (
            patch("commitpulse.api.v1.github.WebhookService") as MockSvc,
            patch("commitpulse.api.v1.github.run_sync_worker_job") as mock_job,
        ):
            MockSvc.return_value.ingest = AsyncMock(
                return_value=WebhookResult(accepted=True, duplicate=False, enqueued=True)
            )
            resp = await async_client.post(
                "/api/v1/github/webhook", content=body, headers=_signed_headers(body)
            )

        assert resp.status_code == 200
        assert resp.json() == {"accepted": True, "duplicate": False}
        event = MockSvc.return_value.ingest.await_args.args[0]
        assert event.delivery_id == "d-1"
        assert event.installation_id == 777
        mock_session.commit.assert_awaited()
        mock_job.assert_called_once()

    @pytest.mark.asyncio
    async def test_duplicate_does_not_start_worker(self, async_client: AsyncClient) -> None:
        body = json.dumps(PUSH_PAYLOAD).encode()

        with (
            patch("commitpulse.api.v1.github.WebhookService") as MockSvc,
            patch("commitpulse.api.v1.github.run_sync_worker_job") as mock_job,
        ):
            MockSvc.return_value.ingest = AsyncMock(
                return_value=WebhookResult(accepted=True, duplicate=True)
            )
            resp = await async_client.post(
                "/api/v1/github/webhook", content=body, headers=_signed_headers(body)
            )

        assert resp.json()["duplicate"] is True
        mock_job.assert_not_called()

    @pytest.mark.asyncio
    async def test_rejects_bad_signature(self, async_client: AsyncClient) -> None:
        body = json.dumps(PUSH_PAYLOAD).encode()
        headers = _signed_headers(body)
        headers["X-Hub-Signature-256"] = "sha256=" + "0" * 64

        with patch("commitpulse.api.v1.github.WebhookService") as MockSvc:
            resp = await async_client.post(
                "/api/v1/github/webhook", content=body, headers=headers
            )

        assert resp.status_code == 401
        MockSvc.assert_not_called()

    @pytest.mark.asyncio
    async def test_rejects_tampered_body(self, async_client: AsyncClient) -> None:
        body = json.dumps(PUSH_PAYLOAD).encode()
        headers = _signed_headers(body)

        resp = await async_client.post(
            "/api/v1/github/webhook", content=body + b" ", headers=headers
        )

        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_missing_delivery_header(self, async_client: AsyncClient) -> None:
        body = json.dumps(PUSH_PAYLOAD).encode()
        headers = _signed_headers(body)
        del headers["X-GitHub-Delivery"]

        resp = await async_client.post(
            "/api/v1/github/webhook", content=body, headers=headers
        )

        assert resp.status_code == 400
        assert resp.json()["code"] == "BAD_REQUEST"

    @pytest.mark.asyncio
    async def test_invalid_json(self, async_client: AsyncClient) -> None:
        body = b"not-json"

        resp = await async_client.post(
            "/api/v1/github/webhook", content=body, headers=_signed_headers(body)
        )

        assert resp.status_code == 400
