"""外部APIレート制限管理モジュール。

GitHub APIのヘッダーベースレート制限と、
Telegram Bot APIのTokenBucketベースレート制限を管理する。
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

# GitHub のリセット時刻まで待つ上限。これを超える場合は待たずに例外側へ任せる。
MAX_GITHUB_RESET_WAIT_SECONDS = 60.0


class TokenBucket:
    """トークンバケットアルゴリズムによるレート制限。

    指定された速度でトークンが補充され、バースト上限まで蓄積される。

    Attributes:
        rate: 1秒あたりの許可リクエスト数。
        burst: バースト上限（最大蓄積トークン数）。
    """

    def __init__(self, rate: float, burst: int) -> None:
        self.rate = rate
        self.burst = burst
        self._tokens: float = float(burst)
        self._last_refill: float = time.monotonic()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last_refill
        self._tokens = min(self.burst, self._tokens + elapsed * self.rate)
        self._last_refill = now

    async def acquire(self) -> None:
        """トークンを1つ取得する。利用可能になるまで非同期で待機する。"""
        while True:
            async with self._lock:
                self._refill()
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return
                wait_time = (1.0 - self._tokens) / self.rate
            await asyncio.sleep(wait_time)


class ExternalAPIRateLimiter:
    """外部APIレート制限を一元管理するクラス。

    GitHub: X-RateLimit-Remaining / X-RateLimit-Reset ヘッダーベース。
    Telegram: TokenBucket (25 msg/s)。
    """

    def __init__(self) -> None:
        self._github_remaining: Optional[int] = None
        self._github_reset: Optional[float] = None
        self._github_lock = asyncio.Lock()

        self._telegram_bucket = TokenBucket(rate=25.0, burst=25)

    @property
    def github_remaining(self) -> Optional[int]:
        return self._github_remaining

    async def acquire_github(self) -> None:
        """GitHub APIリクエスト前に呼び出し、レート制限を遵守する。

        X-RateLimit-Remaining が0の場合、リセット時刻まで非同期で待機する。
        待ち時間が ``MAX_GITHUB_RESET_WAIT_SECONDS`` を超える場合は待たずに
        通過させ、403 をジョブキューの再試行に委ねる。
        """
        async with self._github_lock:
            if self._github_remaining is None or self._github_remaining > 0:
                return
            if self._github_reset is not None:
                wait_time = self._github_reset - time.time()
                if 0 < wait_time <= MAX_GITHUB_RESET_WAIT_SECONDS:
                    logger.info("GitHub rate limit exhausted, waiting %.1fs", wait_time)
                    await asyncio.sleep(wait_time)
            self._github_remaining = None
            self._github_reset = None

    def update_github_limits(self, headers: Mapping[str, str]) -> None:
        """GitHub APIレスポンスヘッダーからレート制限情報を更新する。

        Args:
            headers: HTTPレスポンスヘッダー。
                - X-RateLimit-Remaining: 残りリクエスト数
                - X-RateLimit-Reset: リセット時刻（UNIXタイムスタンプ）
        """
        remaining = headers.get("X-RateLimit-Remaining")
        reset = headers.get("X-RateLimit-Reset")

        try:
            if remaining is not None:
                self._github_remaining = int(remaining)
            if reset is not None:
                self._github_reset = float(reset)
        except ValueError:
            logger.debug("Ignoring malformed rate limit headers: %r / %r", remaining, reset)

    async def acquire_telegram(self) -> None:
        """Telegram送信前に呼び出し、ボット全体の送信レートを抑える。"""
        await self._telegram_bucket.acquire()


# ---------------------------------------------------------------------------
# シングルトン
# ---------------------------------------------------------------------------

_rate_limiter: Optional[ExternalAPIRateLimiter] = None


def get_rate_limiter() -> ExternalAPIRateLimiter:
    """ExternalAPIRateLimiterのシングルトンインスタンスを取得する。"""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = ExternalAPIRateLimiter()
    return _rate_limiter
