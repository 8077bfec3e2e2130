"""カスタム例外クラスおよびFastAPI例外ハンドラ登録。

アプリケーション全体で使用するドメイン固有の例外階層と、
FastAPIアプリケーションへのハンドラ登録関数を提供する。
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# 基底例外
# ---------------------------------------------------------------------------

class AppException(Exception):
    """アプリケーション基底例外。

    Attributes:
        status_code: HTTPステータスコード。
        detail: エラー詳細メッセージ。
        code: 機械可読なエラーコード（接続ステータスにも記録される）。
    """

    code = "APP_ERROR"

    def __init__(
        self,
        status_code: int = 500,
        detail: str = "Internal server error",
        code: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.detail = detail
        if code is not None:
            self.code = code
        super().__init__(detail)


class ConfigurationError(AppException):
    """必須設定の欠落 (500)。"""

    code = "MISSING_ENV"

    def __init__(self, detail: str = "Missing required configuration") -> None:
        super().__init__(status_code=500, detail=detail)


# ---------------------------------------------------------------------------
# 認証・認可
# ---------------------------------------------------------------------------

class AuthenticationError(AppException):
    """認証エラー (401 Unauthorized)。"""

    code = "UNAUTHORIZED"

    def __init__(self, detail: str = "Authentication failed") -> None:
        super().__init__(status_code=401, detail=detail)


# ---------------------------------------------------------------------------
# リソース・入力
# ---------------------------------------------------------------------------

class NotFoundError(AppException):
    """リソース未検出エラー (404 Not Found)。"""

    code = "NOT_FOUND"

    def __init__(self, detail: str = "Resource not found") -> None:
        super().__init__(status_code=404, detail=detail)


class BadRequestError(AppException):
    """リクエスト形式エラー (400 Bad Request)。"""

    code = "BAD_REQUEST"

    def __init__(self, detail: str = "Bad request") -> None:
        super().__init__(status_code=400, detail=detail)


class ValidationError(AppException):
    """入力値エラー (422)。一時的な障害とは区別される。"""

    code = "VALIDATION_ERROR"

    def __init__(self, detail: str = "Invalid input") -> None:
        super().__init__(status_code=422, detail=detail)


class ConnectionRequiredError(AppException):
    """接続が必要な操作で接続が存在しない (409 Conflict)。"""

    code = "CONNECTION_REQUIRED"

    def __init__(self, detail: str = "Connection required", code: str | None = None) -> None:
        super().__init__(status_code=409, detail=detail, code=code)


# ---------------------------------------------------------------------------
# 外部API
# ---------------------------------------------------------------------------

class ExternalAPIError(AppException):
    """外部APIエラー (502 Bad Gateway)。"""

    code = "EXTERNAL_API_ERROR"
    retryable = True

    def __init__(self, detail: str = "External API error") -> None:
        super().__init__(status_code=502, detail=detail)


class GitHubAPIError(ExternalAPIError):
    """GitHub APIエラー。

    Attributes:
        upstream_status: GitHubが返したHTTPステータス（通信失敗時は None）。
    """

    code = "GITHUB_API_ERROR"

    def __init__(
        self,
        detail: str = "GitHub API error",
        upstream_status: int | None = None,
    ) -> None:
        self.upstream_status = upstream_status
        super().__init__(detail=detail)


class GitHubRateLimitError(GitHubAPIError):
    """GitHub APIレート制限エラー。"""

    code = "GITHUB_RATE_LIMITED"

    def __init__(
        self,
        detail: str = "GitHub API rate limit exceeded",
        upstream_status: int | None = 403,
    ) -> None:
        super().__init__(detail=detail, upstream_status=upstream_status)


class GitHubTimeoutError(GitHubAPIError):
    """タイムアウト・通信失敗。ジョブキューのバックオフで再試行される。"""

    code = "GITHUB_TIMEOUT"

    def __init__(self, detail: str = "GitHub API request timed out") -> None:
        super().__init__(detail=detail, upstream_status=None)


class GitHubAuthError(GitHubAPIError):
    """401。再接続が必要であることを利用者に示す。"""

    code = "GITHUB_AUTH_INVALID"
    retryable = False

    def __init__(self, detail: str = "GitHub authorization is no longer valid") -> None:
        super().__init__(detail=detail, upstream_status=401)


class MessagingError(ExternalAPIError):
    """メッセージ送信エラー。

    Attributes:
        retryable: 一時的な障害（429/5xx/タイムアウト）なら True。
    """

    code = "TELEGRAM_SEND_FAILED"

    def __init__(self, detail: str = "Message delivery failed", retryable: bool = True) -> None:
        super().__init__(detail=detail)
        self.retryable = retryable


# ---------------------------------------------------------------------------
# FastAPI例外ハンドラ登録
# ---------------------------------------------------------------------------

def register_exception_handlers(app: FastAPI) -> None:
    """FastAPIアプリケーションにカスタム例外ハンドラを登録する。

    Args:
        app: FastAPIアプリケーションインスタンス。
    """

    @app.exception_handler(AppException)
    async def app_exception_handler(
        request: Request,
        exc: AppException,
    ) -> JSONResponse:
        """AppException系例外をJSON形式でレスポンスする。"""
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail, "code": exc.code},
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        """未処理例外をキャッチし500レスポンスを返す。"""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )
