"""Tests for ``NotificationService`` and ``/api/v1/notifications`` endpoints."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import AsyncClient

from commitpulse.core.exceptions import ConnectionRequiredError, MessagingError, ValidationError
from commitpulse.services.notification_service import (
    NotificationService,
    normalize_quiet_hour,
    validate_timezone,
)
from tests.conftest import TEST_USER_ID, make_result, setup_auth


def _connection(**kwargs: object) -> SimpleNamespace:
    defaults: dict[str, object] = {
        "user_id": TEST_USER_ID,
        "enabled": True,
        "chat_id": "555",
        "telegram_user_id": None,
        "telegram_username": "octo",
        "timezone": None,
        "quiet_hours_start": None,
        "quiet_hours_end": None,
        "last_notified_at": None,
    }
    defaults.update(kwargs)
    return SimpleNamespace(**defaults)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestNormalization:
    def test_quiet_hour_rounding(self) -> None:
        assert normalize_quiet_hour(None, "q") is None
        assert normalize_quiet_hour(21.5, "q") == 22
        assert normalize_quiet_hour(30, "q") == 23
        assert normalize_quiet_hour(-1, "q") == 0

    def test_timezone_validation(self) -> None:
        assert validate_timezone(None) is None
        assert validate_timezone("") is None
        assert validate_timezone("Europe/Paris") == "Europe/Paris"
        with pytest.raises(ValidationError):
            validate_timezone("Atlantis/Capital")


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class TestNotificationService:
    @pytest.mark.asyncio
    async def test_link_chat_creates_connection(self, mock_session: AsyncMock) -> None:
        mock_session.execute.return_value = make_result(scalar=None)

        connection = await NotificationService(mock_session).link_chat(
            TEST_USER_ID, "555", telegram_username="octo", time_zone="Asia/Tokyo"
        )

        mock_session.add.assert_called_once_with(connection)
        assert connection.chat_id == "555"
        assert connection.enabled is True
        assert connection.timezone == "Asia/Tokyo"
        assert connection.connected_at is not None

    @pytest.mark.asyncio
    async def test_update_requires_connection(self, mock_session: AsyncMock) -> None:
        mock_session.execute.return_value = make_result(scalar=None)

        with pytest.raises(ConnectionRequiredError) as exc_info:
            await NotificationService(mock_session).update_settings(
                TEST_USER_ID, True, None, None, None
            )
        assert exc_info.value.code == "NO_TELEGRAM_CONNECTION"

    @pytest.mark.asyncio
    async def test_update_settings(self, mock_session: AsyncMock) -> None:
        connection = _connection(timezone="Asia/Tokyo")
        mock_session.execute.return_value = make_result(scalar=connection)

        await NotificationService(mock_session).update_settings(
            TEST_USER_ID, False, 22.4, 6.6, None
        )

        assert connection.enabled is False
        assert connection.quiet_hours_start == 22
        assert connection.quiet_hours_end == 7
        # blank override falls back to the goal time zone
        assert connection.timezone is None

    @pytest.mark.asyncio
    async def test_disconnect(self, mock_session: AsyncMock) -> None:
        connection = _connection()
        mock_session.execute.return_value = make_result(scalar=connection)

        assert await NotificationService(mock_session).disconnect(TEST_USER_ID) is True
        mock_session.delete.assert_awaited_once_with(connection)

    @pytest.mark.asyncio
    async def test_disconnect_without_connection(self, mock_session: AsyncMock) -> None:
        mock_session.execute.return_value = make_result(scalar=None)
        assert await NotificationService(mock_session).disconnect(TEST_USER_ID) is False


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------


class TestNotificationEndpoints:
    @pytest.mark.asyncio
    async def test_get_settings(
        self,
        async_client: AsyncClient,
        auth_headers: dict[str, str],
        mock_session: AsyncMock,
        test_user: MagicMock,
    ) -> None:
        setup_auth(mock_session, test_user)

        with patch("commitpulse.api.v1.notifications.NotificationService") as MockSvc:
            MockSvc.return_value.get_connection = AsyncMock(
                return_value=_connection(quiet_hours_start=22, quiet_hours_end=7)
            )
            resp = await async_client.get(
                "/api/v1/notifications/settings", headers=auth_headers
            )

        assert resp.status_code == 200
        body = resp.json()
        assert body["connected"] is True
        assert body["chat_id"] == "555"
        assert body["quiet_hours_start"] == 22

    @pytest.mark.asyncio
    async def test_get_settings_not_linked(
        self,
        async_client: AsyncClient,
        auth_headers: dict[str, str],
        mock_session: AsyncMock,
        test_user: MagicMock,
    ) -> None:
        setup_auth(mock_session, test_user)

        with patch("commitpulse.api.v1.notifications.NotificationService") as MockSvc:
            MockSvc.return_value.get_connection = AsyncMock(return_value=None)
            resp = await async_client.get(
                "/api/v1/notifications/settings", headers=auth_headers
            )

        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_link_chat(
        self,
        async_client: AsyncClient,
        auth_headers: dict[str, str],
        mock_session: AsyncMock,
        test_user: MagicMock,
    ) -> None:
        setup_auth(mock_session, test_user)

        with patch("commitpulse.api.v1.notifications.NotificationService") as MockSvc:
            MockSvc.return_value.link_chat = AsyncMock(return_value=_connection())
            resp = await async_client.post(
                "/api/v1/notifications/telegram",
                headers=auth_headers,
                json={"chat_id": "555", "telegram_username": "octo"},
            )

        assert resp.status_code == 200
        MockSvc.return_value.link_chat.assert_awaited_once_with(
            user_id=TEST_USER_ID,
            chat_id="555",
            telegram_user_id=None,
            telegram_username="octo",
            time_zone=None,
        )

    @pytest.mark.asyncio
    async def test_link_chat_requires_chat_id(
        self,
        async_client: AsyncClient,
        auth_headers: dict[str, str],
        mock_session: AsyncMock,
        test_user: MagicMock,
    ) -> None:
        setup_auth(mock_session, test_user)
        resp = await async_client.post(
            "/api/v1/notifications/telegram", headers=auth_headers, json={"chat_id": ""}
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_send_test_message(
        self,
        async_client: AsyncClient,
        auth_headers: dict[str, str],
        mock_session: AsyncMock,
        test_user: MagicMock,
    ) -> None:
        setup_auth(mock_session, test_user)

        with (
            patch("commitpulse.api.v1.notifications.TelegramClient") as MockTelegram,
            patch("commitpulse.api.v1.notifications.ReminderService") as MockReminder,
        ):
            MockTelegram.return_value.__aenter__ = AsyncMock(return_value=MagicMock())
            MockTelegram.return_value.__aexit__ = AsyncMock(return_value=None)
            MockReminder.return_value.send_test_message = AsyncMock()

            resp = await async_client.post(
                "/api/v1/notifications/telegram/test", headers=auth_headers
            )

        assert resp.status_code == 200
        assert resp.json() == {"ok": True}
        MockReminder.return_value.send_test_message.assert_awaited_once_with(TEST_USER_ID)

    @pytest.mark.asyncio
    async def test_send_test_message_delivery_failure(
        self,
        async_client: AsyncClient,
        auth_headers: dict[str, str],
        mock_session: AsyncMock,
        test_user: MagicMock,
    ) -> None:
        setup_auth(mock_session, test_user)

        with (
            patch("commitpulse.api.v1.notifications.TelegramClient") as MockTelegram,
            patch("commitpulse.api.v1.notifications.ReminderService") as MockReminder,
        ):
            MockTelegram.return_value.__aenter__ = AsyncMock(return_value=MagicMock())
            MockTelegram.return_value.__aexit__ = AsyncMock(return_value=None)
            MockReminder.return_value.send_test_message = AsyncMock(
                side_effect=MessagingError("chat not found", retryable=False)
            )

            resp = await async_client.post(
                "/api/v1/notifications/telegram/test", headers=auth_headers
            )

        assert resp.status_code == 502
        assert resp.json()["code"] == "TELEGRAM_SEND_FAILED"
