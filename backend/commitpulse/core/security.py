"""JWT認証、GitHub App署名、Webhook署名検証モジュール。

python-joseによるアクセストークン(HS256)の生成・検証と
GitHub App JWT(RS256)の生成、HMAC-SHA256によるWebhook署名検証を提供する。
"""

import hashlib
import hmac
import time
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from commitpulse.config import settings
from commitpulse.core.exceptions import ConfigurationError

# GitHub は iat の時計ずれを考慮し、有効期限は最大10分まで
GITHUB_APP_JWT_BACKDATE_SECONDS = 60
GITHUB_APP_JWT_TTL_SECONDS = 9 * 60

SIGNATURE_PREFIX = "sha256="


# ---------------------------------------------------------------------------
# JWT (HS256)
# ---------------------------------------------------------------------------

def create_access_token(user_id: int) -> str:
    """アクセストークンを生成する。

    トークンの発行は本来IDプロバイダーの責務であり、
    この関数はテストと運用ツール向けに提供する。

    Args:
        user_id: ユーザーID。

    Returns:
        JWT文字列（HS256署名）。
    """
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    payload: dict = {
        "sub": str(user_id),
        "type": "access",
        "exp": expire,
        "iat": now,
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm="HS256")


def verify_token(token: str, token_type: str = "access") -> dict:
    """JWTトークンを検証しペイロードを返す。

    Args:
        token: JWT文字列。
        token_type: 期待するトークン種別。

    Returns:
        デコード済みペイロード辞書。

    Raises:
        JWTError: トークンが無効、期限切れ、または種別が不一致の場合。
    """
    payload: dict = jwt.decode(
        token,
        settings.SECRET_KEY,
        algorithms=["HS256"],
    )

    if payload.get("type") != token_type:
        raise JWTError(f"Invalid token type: expected {token_type}")

    return payload


# ---------------------------------------------------------------------------
# GitHub App JWT (RS256)
# ---------------------------------------------------------------------------

def normalize_private_key(raw: str) -> str:
    """環境変数由来の秘密鍵文字列のリテラル ``\\n`` を改行に戻す。"""
    return raw.replace("\\n", "\n").strip()


def create_github_app_jwt(
    app_id: str | None = None,
    private_key: str | None = None,
    now: float | None = None,
) -> str:
    """インストールトークン交換に使う GitHub App JWT を生成する。

    Args:
        app_id: GitHub App ID。省略時は設定値。
        private_key: PEM形式のRSA秘密鍵。省略時は設定値。
        now: 発行時刻（UNIX秒）。テスト用。

    Returns:
        RS256署名済みJWT文字列。

    Raises:
        ConfigurationError: App ID または秘密鍵が未設定の場合。
    """
    app_id = app_id if app_id is not None else settings.GITHUB_APP_ID
    private_key = (
        private_key if private_key is not None else settings.GITHUB_APP_PRIVATE_KEY
    )
    if not app_id or not private_key:
        raise ConfigurationError("GITHUB_APP_ID and GITHUB_APP_PRIVATE_KEY must be set")

    issued_at = int(now if now is not None else time.time())
    payload = {
        "iat": issued_at - GITHUB_APP_JWT_BACKDATE_SECONDS,
        "exp": issued_at + GITHUB_APP_JWT_TTL_SECONDS,
        "iss": str(app_id),
    }
    return jwt.encode(payload, normalize_private_key(private_key), algorithm="RS256")


# ---------------------------------------------------------------------------
# Webhook 署名 (HMAC-SHA256)
# ---------------------------------------------------------------------------

def compute_webhook_signature(body: bytes, secret: str) -> str:
    """ペイロード本体に対する ``sha256=<hex>`` 形式の署名を計算する。"""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_webhook_signature(
    body: bytes,
    signature_header: str | None,
    secret: str | None = None,
) -> bool:
    """``X-Hub-Signature-256`` ヘッダーを定数時間比較で検証する。

    Args:
        body: 受信したリクエスト本体（生バイト列）。
        signature_header: ``X-Hub-Signature-256`` ヘッダー値。
        secret: Webhookシークレット。省略時は設定値。

    Returns:
        署名が一致する場合True。

    Raises:
        ConfigurationError: Webhookシークレットが未設定の場合。
    """
    secret = secret if secret is not None else settings.GITHUB_APP_WEBHOOK_SECRET
    if not secret:
        raise ConfigurationError("GITHUB_APP_WEBHOOK_SECRET must be set")
    if not signature_header or not signature_header.startswith(SIGNATURE_PREFIX):
        return False
    expected = compute_webhook_signature(body, secret)
    return hmac.compare_digest(expected, signature_header)
