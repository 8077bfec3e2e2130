"""通知設定エンドポイント。

Telegram チャットの登録、通知設定の取得・更新、テスト送信、
切断のAPIを提供する。
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from commitpulse.api.deps import get_current_user, get_session
from commitpulse.core.exceptions import NotFoundError
from commitpulse.external.telegram_client import TelegramClient
from commitpulse.models import User
from commitpulse.schemas.common import ActionResponse
from commitpulse.schemas.notifications import (
    NotificationSettingsResponse,
    NotificationSettingsUpdateRequest,
    TelegramLinkRequest,
)
from commitpulse.services.notification_service import NotificationService
from commitpulse.services.reminder_service import ReminderService

router = APIRouter()


# ---------------------------------------------------------------------------
# 設定
# ---------------------------------------------------------------------------


@router.get(
    "/settings",
    response_model=NotificationSettingsResponse,
    summary="通知設定取得",
)
async def get_notification_settings(
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> NotificationSettingsResponse:
    """通知設定を返す。

    Raises:
        NotFoundError: Telegram 接続が無い場合。
    """
    connection = await NotificationService(session).get_connection(current_user.user_id)
    if connection is None:
        raise NotFoundError(detail="No Telegram connection")
    return NotificationSettingsResponse.model_validate(connection)


@router.put(
    "/settings",
    response_model=NotificationSettingsResponse,
    summary="通知設定更新",
)
async def update_notification_settings(
    request: NotificationSettingsUpdateRequest,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> NotificationSettingsResponse:
    """通知の有効・静音時間帯・タイムゾーン上書きを更新する。

    Args:
        request: 通知設定更新リクエスト。
        current_user: 認証済みユーザー。
        session: データベースセッション。

    Returns:
        更新後の通知設定。
    """
    connection = await NotificationService(session).update_settings(
        user_id=current_user.user_id,
        enabled=request.enabled,
        quiet_hours_start=request.quiet_hours_start,
        quiet_hours_end=request.quiet_hours_end,
        time_zone=request.timezone,
    )
    return NotificationSettingsResponse.model_validate(connection)


# ---------------------------------------------------------------------------
# 接続
# ---------------------------------------------------------------------------


@router.post(
    "/telegram",
    response_model=NotificationSettingsResponse,
    summary="Telegram チャット登録",
)
async def link_telegram_chat(
    request: TelegramLinkRequest,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> NotificationSettingsResponse:
    """ボット側で確認済みのチャットを登録し、通知を有効化する。"""
    connection = await NotificationService(session).link_chat(
        user_id=current_user.user_id,
        chat_id=request.chat_id,
        telegram_user_id=request.telegram_user_id,
        telegram_username=request.telegram_username,
        time_zone=request.timezone,
    )
    return NotificationSettingsResponse.model_validate(connection)


@router.delete(
    "/telegram",
    response_model=ActionResponse,
    summary="Telegram 切断",
)
async def unlink_telegram_chat(
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> ActionResponse:
    removed = await NotificationService(session).disconnect(current_user.user_id)
    return ActionResponse(ok=removed)


@router.post(
    "/telegram/test",
    response_model=ActionResponse,
    summary="テストメッセージ送信",
)
async def send_test_message(
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> ActionResponse:
    """登録済みチャットにテストメッセージを送る。

    Raises:
        ConnectionRequiredError: Telegram 接続が無い場合。
        MessagingError: 送信に失敗した場合。
    """
    async with TelegramClient() as telegram:
        await ReminderService(session, telegram).send_test_message(current_user.user_id)
    return ActionResponse(ok=True)
