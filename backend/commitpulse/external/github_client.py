"""GitHub App REST API 非同期クライアント。

httpx.AsyncClient を使用し、App JWT によるインストールトークン交換、
ページ番号ベースのページネーション、レート制限管理、
ステータスコード別の型付き例外を提供する。
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import httpx

from commitpulse.config import settings
from commitpulse.core.exceptions import (
    GitHubAPIError,
    GitHubAuthError,
    GitHubRateLimitError,
    GitHubTimeoutError,
)
from commitpulse.core.rate_limiter import get_rate_limiter
from commitpulse.core.security import create_github_app_jwt

logger = logging.getLogger(__name__)

PER_PAGE = 100
DEFAULT_REPO_LIMIT = 120
MAX_REPO_PAGES = 5
DEFAULT_COMMIT_PAGE_LIMIT = 8

# ブランチが存在しない・空リポジトリ等で返るステータス
MISSING_BRANCH_STATUSES = frozenset({404, 409, 422})


class GitHubAppClient:
    """GitHub App として API を呼び出す非同期クライアント。

    App 自身の呼び出し（インストール情報・トークン交換）は App JWT で、
    リポジトリ単位の呼び出しはインストールアクセストークンで認証する。
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """GitHubAppClientを初期化する。

        Args:
            base_url: API のベースURL。省略時は設定値。
            timeout: リクエストタイムアウト秒。省略時は設定値（12秒）。
            transport: テスト用に差し替える httpx トランスポート。
        """
        self._rate_limiter = get_rate_limiter()
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.GITHUB_API_BASE_URL,
            headers={
                "User-Agent": "commitpulse",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            timeout=httpx.Timeout(timeout or settings.GITHUB_REQUEST_TIMEOUT_SECONDS),
            transport=transport,
        )

    # ------------------------------------------------------------------
    # App 認証
    # ------------------------------------------------------------------

    async def create_installation_token(self, installation_id: int) -> str:
        """インストールアクセストークンを発行する。

        Args:
            installation_id: GitHub App インストールID。

        Returns:
            インストールアクセストークン（1時間有効）。
        """
        response = await self._request(
            "POST",
            f"/app/installations/{installation_id}/access_tokens",
            token=create_github_app_jwt(),
        )
        return response.json()["token"]

    async def get_installation(self, installation_id: int) -> dict[str, Any]:
        """インストール情報（account, repository_selection）を取得する。"""
        response = await self._request(
            "GET",
            f"/app/installations/{installation_id}",
            token=create_github_app_jwt(),
        )
        return response.json()

    # ------------------------------------------------------------------
    # インストールトークンでの呼び出し
    # ------------------------------------------------------------------

    async def list_installation_repositories(
        self,
        token: str,
        limit: int = DEFAULT_REPO_LIMIT,
    ) -> list[dict[str, Any]]:
        """インストールがアクセスできるリポジトリ一覧を取得する。

        最大 ``MAX_REPO_PAGES`` ページ、``limit`` 件で打ち切る。

        Args:
            token: インストールアクセストークン。
            limit: 取得上限件数。

        Returns:
            リポジトリ情報のリスト。
        """
        repos: list[dict[str, Any]] = []
        for page in range(1, MAX_REPO_PAGES + 1):
            response = await self._request(
                "GET",
                "/installation/repositories",
                token=token,
                params={"per_page": PER_PAGE, "page": page},
            )
            batch = response.json().get("repositories") or []
            if not batch:
                break
            repos.extend(batch)
            if len(batch) < PER_PAGE or len(repos) >= limit:
                break
        return repos[:limit]

    async def list_commits(
        self,
        token: str,
        repo_full_name: str,
        since: datetime,
        branch: str,
        author: str | None = None,
        page_limit: int = DEFAULT_COMMIT_PAGE_LIMIT,
    ) -> list[dict[str, Any]]:
        """ブランチのコミット一覧を取得する。

        ブランチが存在しない場合（404/409/422）はそれまでに取得できた
        コミットを返し、例外にしない。

        Args:
            token: インストールアクセストークン。
            repo_full_name: "owner/repo" 形式のリポジトリ名。
            since: この日時以降のコミットを取得。
            branch: 対象ブランチ名。
            author: 著者のGitHubログイン名でフィルタ。
            page_limit: 取得ページ数の上限。

        Returns:
            コミット情報（少なくとも ``sha`` を含む）のリスト。
        """
        params: dict[str, Any] = {
            "since": since.isoformat(),
            "sha": branch,
            "per_page": PER_PAGE,
        }
        if author:
            params["author"] = author

        commits: list[dict[str, Any]] = []
        for page in range(1, page_limit + 1):
            try:
                response = await self._request(
                    "GET",
                    f"/repos/{repo_full_name}/commits",
                    token=token,
                    params={**params, "page": page},
                )
            except GitHubAPIError as e:
                if e.upstream_status in MISSING_BRANCH_STATUSES:
                    logger.debug(
                        "No commits on %s@%s (status=%s)",
                        repo_full_name,
                        branch,
                        e.upstream_status,
                    )
                    return commits
                raise

            batch = response.json()
            if not isinstance(batch, list) or not batch:
                break
            commits.extend(batch)
            if len(batch) < PER_PAGE:
                break
        return commits

    async def get_commit_detail(
        self,
        token: str,
        repo_full_name: str,
        sha: str,
    ) -> dict[str, Any]:
        """コミットの詳細情報（stats, files含む）を取得する。"""
        response = await self._request(
            "GET",
            f"/repos/{repo_full_name}/commits/{sha}",
            token=token,
        )
        return response.json()

    # ------------------------------------------------------------------
    # Internal Helpers
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        url: str,
        token: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """共通HTTPリクエストメソッド。

        Args:
            method: HTTPメソッド。
            url: リクエストURL（相対パス）。
            token: Bearer トークン（App JWT またはインストールトークン）。
            **kwargs: httpx.AsyncClient.request に渡す追加引数。

        Returns:
            HTTPレスポンス。

        Raises:
            GitHubTimeoutError: タイムアウト・通信失敗時。
            GitHubAuthError: 401 の場合。
            GitHubRateLimitError: レート制限超過時。
            GitHubAPIError: その他のAPIエラー時。
        """
        await self._rate_limiter.acquire_github()

        headers = dict(kwargs.pop("headers", {}) or {})
        headers["Authorization"] = f"Bearer {token}"

        try:
            response = await self._client.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("GitHub API request timed out: %s %s", method, url)
            raise GitHubTimeoutError(detail=f"GitHub API request timed out: {url}") from e
        except httpx.HTTPError as e:
            logger.warning("GitHub API request failed: %s %s - %s", method, url, e)
            raise GitHubTimeoutError(detail=f"GitHub API request failed: {e}") from e

        self._rate_limiter.update_github_limits(response.headers)

        status = response.status_code
        if status < 400:
            return response

        if status == 401:
            raise GitHubAuthError()

        if status in (403, 429):
            remaining = response.headers.get("X-RateLimit-Remaining")
            if status == 429 or remaining == "0" or "retry-after" in response.headers:
                reset_at = response.headers.get("X-RateLimit-Reset", "unknown")
                raise GitHubRateLimitError(
                    detail=f"GitHub API rate limit exceeded. Resets at: {reset_at}",
                    upstream_status=status,
                )

        raise GitHubAPIError(
            detail=f"GitHub API error ({status}): {response.text[:200]}",
            upstream_status=status,
        )

    async def close(self) -> None:
        """HTTPクライアントセッションを閉じる。"""
        await self._client.aclose()
        logger.debug("GitHubAppClient session closed")

    async def __aenter__(self) -> GitHubAppClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
