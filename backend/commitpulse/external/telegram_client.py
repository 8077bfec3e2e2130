"""Telegram Bot API 非同期クライアント。

httpx.AsyncClient を使用し、プレーンテキストのメッセージ送信を提供する。
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from commitpulse.config import settings
from commitpulse.core.exceptions import ConfigurationError, MessagingError
from commitpulse.core.rate_limiter import get_rate_limiter

logger = logging.getLogger(__name__)


class TelegramClient:
    """Telegram Bot API クライアント。"""

    def __init__(
        self,
        bot_token: str | None = None,
        base_url: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """TelegramClientを初期化する。

        Args:
            bot_token: ボットトークン。省略時は設定値。
            base_url: API のベースURL。省略時は設定値。
            timeout: リクエストタイムアウト秒。
            transport: テスト用に差し替える httpx トランスポート。

        Raises:
            ConfigurationError: ボットトークンが未設定の場合。
        """
        token = bot_token if bot_token is not None else settings.TELEGRAM_BOT_TOKEN
        if not token:
            raise ConfigurationError("TELEGRAM_BOT_TOKEN must be set")
        self._token = token
        self._rate_limiter = get_rate_limiter()
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.TELEGRAM_API_BASE_URL,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def send_message(self, chat_id: str, text: str) -> dict[str, Any]:
        """プレーンテキストのメッセージを送信する。

        Args:
            chat_id: 送信先チャットID。
            text: 本文。

        Returns:
            Telegram API の ``result`` オブジェクト。

        Raises:
            MessagingError: 送信に失敗した場合。429/5xx/タイムアウトは
                ``retryable=True``、それ以外の 4xx は ``retryable=False``。
        """
        await self._rate_limiter.acquire_telegram()

        try:
            response = await self._client.post(
                f"/bot{self._token}/sendMessage",
                json={"chat_id": chat_id, "text": text},
            )
        except httpx.HTTPError as e:
            # URL にトークンが含まれるため例外メッセージはログに出さない
            logger.warning("Telegram send to chat %s failed: %s", chat_id, type(e).__name__)
            raise MessagingError(
                detail=f"Telegram request failed: {type(e).__name__}",
                retryable=True,
            ) from e

        if response.status_code >= 400:
            retryable = response.status_code == 429 or response.status_code >= 500
            raise MessagingError(
                detail=f"Telegram send failed ({response.status_code}): {response.text[:200]}",
                retryable=retryable,
            )

        return response.json().get("result") or {}

    async def close(self) -> None:
        """HTTPクライアントセッションを閉じる。"""
        await self._client.aclose()

    async def __aenter__(self) -> TelegramClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
