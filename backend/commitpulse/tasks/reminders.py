"""Telegram リマインダー送信タスク。

APSchedulerから定期的に呼ばれ、通知が有効な全ユーザーについて
リマインダーの要否を判定し送信する。
"""

from __future__ import annotations

import logging

from commitpulse.core.dates import now_ms
from commitpulse.core.exceptions import ConfigurationError, MessagingError
from commitpulse.database import async_session_factory
from commitpulse.external.telegram_client import TelegramClient
from commitpulse.services.reminder_service import ReminderService

logger = logging.getLogger(__name__)


async def send_reminders_job(at_ms: int | None = None) -> int:
    """1回分のリマインダー送信を行う。

    ユーザーごとに独立したセッションで処理するため、1ユーザーの
    失敗が他のユーザーの送信記録に影響しない。

    Args:
        at_ms: 判定の基準時刻（テスト用）。省略時は現在時刻。

    Returns:
        送信したリマインダー数。
    """
    at_ms = at_ms if at_ms is not None else now_ms()

    try:
        telegram = TelegramClient()
    except ConfigurationError:
        logger.warning("TELEGRAM_BOT_TOKEN is not set. Skipping reminders.")
        return 0

    sent = 0
    async with telegram:
        async with async_session_factory() as session:
            user_ids = await ReminderService(session, telegram).list_enabled_user_ids()

        if not user_ids:
            logger.debug("No enabled notification connections")
            return 0

        for user_id in user_ids:
            async with async_session_factory() as session:
                try:
                    decision = await ReminderService(session, telegram).process_user(
                        user_id, at_ms
                    )
                    await session.commit()
                except MessagingError as exc:
                    await session.rollback()
                    logger.warning(
                        "Reminder delivery failed for user_id=%d (retryable=%s): %s",
                        user_id,
                        exc.retryable,
                        exc.detail,
                    )
                    continue
                except Exception:
                    await session.rollback()
                    logger.exception("Reminder processing failed for user_id=%d", user_id)
                    continue

            if decision is not None and decision.should_send:
                sent += 1

    logger.info("Reminder run finished: %d sent to %d users", sent, len(user_ids))
    return sent
