"""Tests for token validation, principal mapping and sign-out.

Coverage:
- Dev token creation and validation
- Expired / wrong-secret / wrong-audience tokens
- Missing required claims
- Principal mapping from claims (UUID and non-UUID subjects)
- get_current_principal never raises
- Sign-out revokes the token's jti, expired revocations are pruned
- JWKS caching
"""

from __future__ import annotations

import time
import uuid
from unittest.mock import AsyncMock, patch

import jwt
import pytest

import src.auth.oidc as oidc
from src.auth.oidc import (
    TokenValidationError,
    _assert_required_claims,
    create_dev_token,
    get_current_principal,
    principal_from_claims,
    principal_id_from_sub,
    sign_out,
    validate_token,
)
from src.config import Environment, Settings
from tests.conftest import TEST_AUDIENCE, TEST_JWT_SECRET, make_token


@pytest.fixture
def prod_settings() -> Settings:
    return Settings(
        environment=Environment.PROD,
        dev_jwt_secret="f1e2d3c4b5a69788796a5b4c3d2e1f00",  # type: ignore[arg-type]
        database_url="postgresql+asyncpg://app:Zx9Qw8Er7Ty6@db:5432/workspaces",
        oidc_issuer_url="http://idp.test/realms/main",
        oidc_audience=TEST_AUDIENCE,
    )


class TestCreateDevToken:
    def test_round_trips_through_validation(self, fake_settings: Settings) -> None:
        token = create_dev_token(
            sub="user-123",
            email="dev@example.com",
            secret=TEST_JWT_SECRET,
            audience=TEST_AUDIENCE,
            name="Dev User",
        )
        claims = jwt.decode(token, TEST_JWT_SECRET, algorithms=["HS256"], audience=TEST_AUDIENCE)
        assert claims["sub"] == "user-123"
        assert claims["email_verified"] is True
        assert claims["name"] == "Dev User"
        assert claims["jti"]


class TestValidateToken:
    @pytest.mark.asyncio
    async def test_valid_dev_token(self, fake_settings: Settings) -> None:
        claims = await validate_token(make_token("abc", "abc@example.com"), fake_settings)
        assert claims["email"] == "abc@example.com"

    @pytest.mark.asyncio
    async def test_expired_token_rejected(self, fake_settings: Settings) -> None:
        with pytest.raises(TokenValidationError):
            await validate_token(make_token("abc", expires_in=-60), fake_settings)

    @pytest.mark.asyncio
    async def test_wrong_secret_rejected(self, fake_settings: Settings) -> None:
        token = create_dev_token(sub="abc", email="a@example.com", secret="some-other-secret")
        with pytest.raises(TokenValidationError):
            await validate_token(token, fake_settings)

    @pytest.mark.asyncio
    async def test_wrong_audience_rejected(self, fake_settings: Settings) -> None:
        token = create_dev_token(
            sub="abc", email="a@example.com", secret=TEST_JWT_SECRET, audience="another-api"
        )
        with pytest.raises(TokenValidationError):
            await validate_token(token, fake_settings)

    def test_missing_claims(self) -> None:
        with pytest.raises(TokenValidationError, match="email"):
            _assert_required_claims({"sub": "abc"})
        _assert_required_claims({"sub": "abc", "email": "a@example.com"})

    @pytest.mark.asyncio
    async def test_prod_mode_uses_jwks(self, prod_settings: Settings) -> None:
        with patch.object(oidc, "_get_jwks", AsyncMock(return_value={})) as get_jwks:
            with pytest.raises(TokenValidationError, match="No JWKS keys"):
                await validate_token(make_token("abc"), prod_settings)
        get_jwks.assert_awaited_once()


class TestPrincipalMapping:
    def test_uuid_subject_used_verbatim(self) -> None:
        sub = uuid.uuid4()
        assert principal_id_from_sub(str(sub)) == sub

    def test_non_uuid_subject_is_stable(self) -> None:
        assert principal_id_from_sub("auth0|42") == principal_id_from_sub("auth0|42")
        assert principal_id_from_sub("auth0|42") != principal_id_from_sub("auth0|43")

    def test_from_claims(self) -> None:
        principal = principal_from_claims(
            {"sub": "x", "email": "x@example.com", "name": "X", "picture": "http://img/x.png"}
        )
        assert principal.email == "x@example.com"
        assert principal.email_verified is False
        assert principal.display_name == "X"
        assert principal.avatar_url == "http://img/x.png"


class TestGetCurrentPrincipal:
    @pytest.mark.asyncio
    async def test_none_for_missing_handle(self, fake_settings: Settings) -> None:
        assert await get_current_principal(None, fake_settings) is None
        assert await get_current_principal("", fake_settings) is None

    @pytest.mark.asyncio
    async def test_none_for_garbage(self, fake_settings: Settings) -> None:
        assert await get_current_principal("not-a-jwt", fake_settings) is None

    @pytest.mark.asyncio
    async def test_principal_for_valid_token(self, fake_settings: Settings) -> None:
        sub = str(uuid.uuid4())
        principal = await get_current_principal(make_token(sub, "p@example.com"), fake_settings)
        assert principal is not None
        assert principal.id == uuid.UUID(sub)
        assert principal.email_verified is True


class TestSignOut:
    @pytest.mark.asyncio
    async def test_revoked_token_no_longer_resolves(self, fake_settings: Settings) -> None:
        token = make_token(str(uuid.uuid4()), "out@example.com")
        assert await get_current_principal(token, fake_settings) is not None

        assert await sign_out(token, fake_settings) is True

        assert await get_current_principal(token, fake_settings) is None
        # Second sign-out is a no-op on an already revoked token
        assert await sign_out(token, fake_settings) is False

    @pytest.mark.asyncio
    async def test_other_tokens_unaffected(self, fake_settings: Settings) -> None:
        sub = str(uuid.uuid4())
        first = make_token(sub, "same@example.com")
        second = make_token(sub, "same@example.com")
        await sign_out(first, fake_settings)
        assert await get_current_principal(second, fake_settings) is not None

    @pytest.mark.asyncio
    async def test_sign_out_prunes_expired_revocations(
        self, fake_settings: Settings, monkeypatch
    ) -> None:
        now = int(time.time())
        revoked = {"stale-1": now - 60, "stale-2": now - 1, "live": now + 600}
        monkeypatch.setattr(oidc, "_revoked_jtis", revoked)

        token = make_token(str(uuid.uuid4()), "out@example.com")
        assert await sign_out(token, fake_settings) is True

        assert "stale-1" not in revoked
        assert "stale-2" not in revoked
        assert "live" in revoked
        assert len(revoked) == 2


class TestJwksCache:
    @pytest.mark.asyncio
    async def test_jwks_fetched_once_within_ttl(self, prod_settings: Settings, monkeypatch) -> None:
        monkeypatch.setattr(oidc, "_jwks_cache", {})
        monkeypatch.setattr(oidc, "_jwks_fetched_at", 0.0)
        fetch = AsyncMock(return_value={"keys": [{"kid": "k1", "kty": "RSA"}]})
        monkeypatch.setattr(oidc, "_fetch_jwks", fetch)

        first = await oidc._get_jwks(prod_settings)
        second = await oidc._get_jwks(prod_settings)

        assert first == second == {"k1": {"kid": "k1", "kty": "RSA"}}
        fetch.assert_awaited_once()
