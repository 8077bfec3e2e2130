"""FastAPI依存性注入モジュール。

Bearerスキーム、現在のユーザー取得を提供する。
データベースセッションは ``commitpulse.database.get_session`` を再利用する。
"""

from __future__ import annotations

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from commitpulse.core.exceptions import AuthenticationError
from commitpulse.core.security import verify_token
from commitpulse.database import get_session  # noqa: F401 – re-export for convenience
from commitpulse.models import User

# ---------------------------------------------------------------------------
# Bearer スキーム
# ---------------------------------------------------------------------------
# トークンは外部のIDプロバイダ連携で発行される。未指定時は 401 に揃える。
bearer_scheme = HTTPBearer(auto_error=False)


# ---------------------------------------------------------------------------
# 現在のユーザー取得
# ---------------------------------------------------------------------------

async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    session: AsyncSession = Depends(get_session),
) -> User:
    """アクセストークンから現在のユーザーを取得する。

    Args:
        credentials: Authorization ヘッダーのBearerトークン。
        session: データベースセッション。

    Returns:
        認証済みUserオブジェクト。

    Raises:
        AuthenticationError: トークンが無効、またはユーザーが存在しない場合。
    """
    if credentials is None:
        raise AuthenticationError("Missing bearer token")

    try:
        payload = verify_token(credentials.credentials, token_type="access")
    except JWTError:
        raise AuthenticationError("Invalid or expired access token")

    user_id = payload.get("sub")
    if user_id is None:
        raise AuthenticationError("Invalid token payload")

    stmt = select(User).where(User.user_id == int(user_id))
    result = await session.execute(stmt)
    user = result.scalar_one_or_none()

    if user is None:
        raise AuthenticationError("User not found")

    return user
