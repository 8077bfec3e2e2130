"""Tests for ``commitpulse.core.security``: JWT, GitHub App JWT, webhook signatures."""

from __future__ import annotations

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import JWTError, jwt

from commitpulse.core.exceptions import ConfigurationError
from commitpulse.core.security import (
    compute_webhook_signature,
    create_access_token,
    create_github_app_jwt,
    normalize_private_key,
    verify_token,
    verify_webhook_signature,
)


@pytest.fixture(scope="module")
def rsa_key_pair() -> tuple[str, str]:
    """Generate a throwaway RSA key pair (PEM private, PEM public)."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")
    public_pem = key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")
    return private_pem, public_pem


# ---------------------------------------------------------------------------
# JWT tokens
# ---------------------------------------------------------------------------


class TestJWT:
    """Access token creation and verification."""

    def test_access_token_round_trip(self) -> None:
        token = create_access_token(user_id=1)
        payload = verify_token(token, token_type="access")
        assert payload["sub"] == "1"
        assert payload["type"] == "access"

    def test_verify_wrong_token_type_raises(self) -> None:
        token = create_access_token(user_id=1)
        with pytest.raises(JWTError, match="Invalid token type"):
            verify_token(token, token_type="refresh")

    def test_verify_garbage_token_raises(self) -> None:
        with pytest.raises(JWTError):
            verify_token("not.a.real.token", token_type="access")

    def test_access_token_contains_expected_fields(self) -> None:
        token = create_access_token(user_id=7)
        payload = verify_token(token, token_type="access")
        assert "sub" in payload
        assert "exp" in payload
        assert "iat" in payload
        assert "type" in payload


# ---------------------------------------------------------------------------
# GitHub App JWT
# ---------------------------------------------------------------------------


class TestGitHubAppJWT:
    """RS256 App JWT used for the installation token exchange."""

    def test_claims_are_backdated_and_short_lived(
        self, rsa_key_pair: tuple[str, str]
    ) -> None:
        private_pem, public_pem = rsa_key_pair
        token = create_github_app_jwt(app_id="999", private_key=private_pem, now=1_700_000_000)

        claims = jwt.decode(
            token,
            public_pem,
            algorithms=["RS256"],
            options={"verify_exp": False, "verify_iat": False},
        )
        assert claims["iss"] == "999"
        assert claims["iat"] == 1_700_000_000 - 60
        assert claims["exp"] == 1_700_000_000 + 540

    def test_escaped_newlines_in_private_key_are_accepted(
        self, rsa_key_pair: tuple[str, str]
    ) -> None:
        private_pem, _ = rsa_key_pair
        escaped = private_pem.replace("\n", "\\n")
        assert normalize_private_key(escaped) == private_pem.strip()
        assert create_github_app_jwt(app_id="1", private_key=escaped)

    def test_missing_credentials_raise_configuration_error(self) -> None:
        with pytest.raises(ConfigurationError):
            create_github_app_jwt(app_id="", private_key="")


# ---------------------------------------------------------------------------
# Webhook signatures
# ---------------------------------------------------------------------------


class TestWebhookSignature:
    """``X-Hub-Signature-256`` verification."""

    BODY = b'{"zen": "Keep it logically awesome."}'

    def test_valid_signature(self) -> None:
        header = compute_webhook_signature(self.BODY, "s3cret")
        assert header.startswith("sha256=")
        assert verify_webhook_signature(self.BODY, header, secret="s3cret") is True

    def test_tampered_body_is_rejected(self) -> None:
        header = compute_webhook_signature(self.BODY, "s3cret")
        assert verify_webhook_signature(self.BODY + b" ", header, secret="s3cret") is False

    def test_wrong_secret_is_rejected(self) -> None:
        header = compute_webhook_signature(self.BODY, "other")
        assert verify_webhook_signature(self.BODY, header, secret="s3cret") is False

    @pytest.mark.parametrize("header", [None, "", "sha1=abcdef", "deadbeef"])
    def test_missing_or_malformed_header_is_rejected(self, header: str | None) -> None:
        assert verify_webhook_signature(self.BODY, header, secret="s3cret") is False

    def test_unset_secret_raises_configuration_error(self) -> None:
        with pytest.raises(ConfigurationError):
            verify_webhook_signature(self.BODY, "sha256=00", secret="")
