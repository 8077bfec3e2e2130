"""通知設定サービス。

Telegram 通知接続の登録・設定変更・解除を提供する。
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from commitpulse.core.dates import is_valid_timezone
from commitpulse.core.exceptions import ConnectionRequiredError, ValidationError
from commitpulse.models import NotificationConnection
from commitpulse.services.goals_service import round_and_clamp

logger = logging.getLogger(__name__)


def normalize_quiet_hour(value: float | None, field: str) -> int | None:
    if value is None:
        return None
    return round_and_clamp(value, 0, 23, field)


def validate_timezone(time_zone: str | None) -> str | None:
    if time_zone is None or time_zone == "":
        return None
    if not is_valid_timezone(time_zone):
        raise ValidationError(f"Unknown time zone: {time_zone}")
    return time_zone


class NotificationService:
    """通知接続の設定を扱うサービスクラス。"""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_connection(self, user_id: int) -> NotificationConnection | None:
        stmt = select(NotificationConnection).where(NotificationConnection.user_id == user_id)
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def link_chat(
        self,
        user_id: int,
        chat_id: str,
        telegram_user_id: str | None = None,
        telegram_username: str | None = None,
        time_zone: str | None = None,
    ) -> NotificationConnection:
        """チャットを登録し通知を有効化する。既存の接続は上書きする。"""
        tz = validate_timezone(time_zone)
        connection = await self.get_connection(user_id)
        if connection is None:
            connection = NotificationConnection(user_id=user_id)
            self.session.add(connection)

        connection.chat_id = chat_id
        connection.telegram_user_id = telegram_user_id
        connection.telegram_username = telegram_username
        if tz is not None:
            connection.timezone = tz
        connection.enabled = True
        connection.connected_at = datetime.now(timezone.utc)
        await self.session.flush()
        logger.info("Telegram chat linked for user_id=%d", user_id)
        return connection

    async def update_settings(
        self,
        user_id: int,
        enabled: bool,
        quiet_hours_start: float | None,
        quiet_hours_end: float | None,
        time_zone: str | None,
    ) -> NotificationConnection:
        """通知の有効・静音時間帯・タイムゾーンを更新する。

        静音時間帯は四捨五入して 0-23 に収める。

        Raises:
            ConnectionRequiredError: Telegram 接続が無い場合。
            ValidationError: 非有限値または未知のタイムゾーン名の場合。
        """
        connection = await self.get_connection(user_id)
        if connection is None:
            raise ConnectionRequiredError(
                "No Telegram connection", code="NO_TELEGRAM_CONNECTION"
            )

        connection.enabled = enabled
        connection.quiet_hours_start = normalize_quiet_hour(quiet_hours_start, "quiet_hours_start")
        connection.quiet_hours_end = normalize_quiet_hour(quiet_hours_end, "quiet_hours_end")
        connection.timezone = validate_timezone(time_zone)
        await self.session.flush()
        return connection

    async def disconnect(self, user_id: int) -> bool:
        connection = await self.get_connection(user_id)
        if connection is None:
            return False
        await self.session.delete(connection)
        await self.session.flush()
        return True
