"""Identity provider adapter: OIDC discovery, token validation and sign-out.

The rest of the application only sees a Principal (or None). Credential
verification, OAuth and email-link flows live entirely in the identity
provider; this module turns the bearer token it issued into a Principal.

In production mode:
- Fetches JWKS from the OIDC discovery document
- Validates JWT signature against the public key set
- Caches JWKS with a TTL (5 minutes) to avoid hammering the IdP

In dev mode (ENVIRONMENT=dev or test):
- Validates JWTs using the symmetric DEV_JWT_SECRET
- Skips JWKS fetch entirely
- Logs a loud warning on first use

Required JWT claims:
  - sub: string - identity provider user id (UUID, or any string mapped to a UUID5)
  - email: string
  - exp: int - expiration timestamp
  - aud: string|list - must include OIDC_AUDIENCE

Optional claims:
  - email_verified: bool (defaults to false)
  - name: string
  - picture: string (avatar URL)
  - jti: string - required for sign-out to revoke the token
"""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import httpx
import jwt
import structlog
from jwt.exceptions import DecodeError, InvalidTokenError

from src.config import Settings

log = structlog.get_logger(__name__)

# JWKS cache: dict of kid -> key material, plus a fetch timestamp
_jwks_cache: dict[str, Any] = {}
_jwks_fetched_at: float = 0.0
_JWKS_TTL_SECONDS = 300  # Refresh JWKS every 5 minutes

# Revoked token ids -> token expiry (unix seconds)
_revoked_jtis: dict[str, int] = {}


@dataclass(frozen=True)
class Principal:
    """Authenticated identity as reported by the identity provider.

    Read-only to this system; the Profile row is the application's copy.
    """

    id: uuid.UUID
    email: str
    email_verified: bool
    display_name: str | None = None
    avatar_url: str | None = None


async def _fetch_jwks(issuer_url: str) -> dict[str, Any]:
    """Fetch JWKS from the OIDC discovery endpoint via HTTP."""
    discovery_url = f"{issuer_url.rstrip('/')}/.well-known/openid-configuration"
    async with httpx.AsyncClient(timeout=10.0) as client:
        discovery = await client.get(discovery_url)
        discovery.raise_for_status()
        jwks_uri = discovery.json()["jwks_uri"]

        jwks_response = await client.get(jwks_uri)
        jwks_response.raise_for_status()
        return jwks_response.json()  # type: ignore[no-any-return]


def _load_local_jwks(path: str) -> dict[str, Any]:
    """Load JWKS from a local file (air-gapped / offline mode).

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file is missing the 'keys' array.
    """
    jwks_path = Path(path)
    if not jwks_path.exists():
        raise FileNotFoundError(f"JWKS local file not found: {path}")

    log.warning("oidc.local_jwks_mode_active", jwks_local_path=path)

    raw = json.loads(jwks_path.read_text(encoding="utf-8"))
    if "keys" not in raw:
        raise ValueError(f"JWKS file at {path!r} is missing the 'keys' array")
    return raw  # type: ignore[no-any-return]


async def _get_jwks(settings: Settings) -> dict[str, Any]:
    """Return cached JWKS or fetch/load a fresh copy."""
    global _jwks_cache, _jwks_fetched_at
    now = time.monotonic()
    if not _jwks_cache or (now - _jwks_fetched_at) > _JWKS_TTL_SECONDS:
        if settings.jwks_local_path:
            raw = _load_local_jwks(settings.jwks_local_path)
        else:
            raw = await _fetch_jwks(settings.oidc_issuer_url)
        _jwks_cache = {key["kid"]: key for key in raw.get("keys", [])}
        _jwks_fetched_at = now
        log.info("oidc.jwks_refreshed", key_count=len(_jwks_cache))
    return _jwks_cache


class TokenValidationError(Exception):
    """Raised when a JWT cannot be validated."""


async def validate_token(token: str, settings: Settings) -> dict[str, Any]:
    """Validate a JWT and return its claims.

    Raises TokenValidationError if the token is invalid, expired, revoked,
    or has incorrect audience/issuer.
    """
    if settings.is_dev:
        claims = _validate_dev_token(token, settings)
    else:
        claims = await _validate_jwks_token(token, settings)

    jti = claims.get("jti")
    if jti and _is_revoked(jti):
        raise TokenValidationError("Token has been revoked")
    return claims


async def _validate_jwks_token(token: str, settings: Settings) -> dict[str, Any]:
    try:
        header = jwt.get_unverified_header(token)
        kid = header.get("kid")
    except (DecodeError, InvalidTokenError) as exc:
        raise TokenValidationError(f"Cannot decode token header: {exc}") from exc

    jwks = await _get_jwks(settings)

    if kid and kid in jwks:
        key_data = jwks[kid]
    elif jwks:
        # Single-key IdPs frequently omit kid
        key_data = next(iter(jwks.values()))
    else:
        raise TokenValidationError("No JWKS keys available")

    try:
        signing_key = jwt.PyJWK(key_data)
        claims: dict[str, Any] = jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256", "ES256"],
            audience=settings.oidc_audience,
            issuer=settings.oidc_issuer_url,
            options={"verify_exp": True, "verify_iat": True},
        )
    except (DecodeError, InvalidTokenError) as exc:
        raise TokenValidationError(f"Token validation failed: {exc}") from exc

    _assert_required_claims(claims)
    return claims


_dev_mode_warned = False


def _validate_dev_token(token: str, settings: Settings) -> dict[str, Any]:
    """Validate JWT using symmetric secret (dev only)."""
    global _dev_mode_warned
    if not _dev_mode_warned:
        log.warning(
            "oidc.dev_mode_validation",
            message="Using symmetric JWT secret - NOT for production",
        )
        _dev_mode_warned = True
    try:
        claims: dict[str, Any] = jwt.decode(
            token,
            settings.dev_jwt_secret.get_secret_value(),
            algorithms=["HS256"],
            audience=settings.oidc_audience,
            options={"verify_exp": True, "verify_aud": True},
        )
    except (DecodeError, InvalidTokenError) as exc:
        raise TokenValidationError(f"Dev token validation failed: {exc}") from exc

    _assert_required_claims(claims)
    return claims


def _assert_required_claims(claims: dict[str, Any]) -> None:
    """Raise TokenValidationError if required claims are missing."""
    required = ("sub", "email")
    missing = [c for c in required if not claims.get(c)]
    if missing:
        raise TokenValidationError(f"Missing required JWT claims: {missing}")


def principal_id_from_sub(sub: str) -> uuid.UUID:
    """Map the IdP subject to a profile id.

    UUID subjects are used as-is; anything else gets a stable UUID5 so
    non-UUID identity providers still key profiles deterministically.
    """
    try:
        return uuid.UUID(sub)
    except ValueError:
        return uuid.uuid5(uuid.NAMESPACE_URL, f"sub:{sub}")


def principal_from_claims(claims: dict[str, Any]) -> Principal:
    return Principal(
        id=principal_id_from_sub(str(claims["sub"])),
        email=str(claims["email"]),
        email_verified=bool(claims.get("email_verified", False)),
        display_name=claims.get("name") or None,
        avatar_url=claims.get("picture") or None,
    )


async def get_current_principal(session_handle: str | None, settings: Settings) -> Principal | None:
    """Return the authenticated Principal behind a bearer token, or None.

    Never raises for a bad token: an invalid, expired or revoked token is
    the same as no session at all.
    """
    if not session_handle:
        return None
    try:
        claims = await validate_token(session_handle, settings)
    except TokenValidationError as exc:
        log.info("oidc.token_rejected", reason=str(exc))
        return None
    return principal_from_claims(claims)


def _is_revoked(jti: str) -> bool:
    expires_at = _revoked_jtis.get(jti)
    if expires_at is None:
        return False
    if expires_at < int(time.time()):
        # Token would have expired anyway
        del _revoked_jtis[jti]
        return False
    return True


def _prune_revoked(now: int) -> None:
    """Drop revocations whose tokens have expired on their own."""
    expired = [jti for jti, expires_at in _revoked_jtis.items() if expires_at < now]
    for jti in expired:
        del _revoked_jtis[jti]
    if expired:
        log.debug("oidc.revocations_pruned", count=len(expired))


async def sign_out(session_handle: str, settings: Settings) -> bool:
    """Revoke the token's jti until it expires.

    Returns False when the token is already invalid or carries no jti.
    """
    try:
        claims = await validate_token(session_handle, settings)
    except TokenValidationError:
        return False
    jti = claims.get("jti")
    if not jti:
        log.warning("oidc.sign_out_without_jti", sub=claims.get("sub"))
        return False
    _prune_revoked(int(time.time()))
    _revoked_jtis[jti] = int(claims.get("exp", time.time()))
    log.info("oidc.signed_out", sub=claims.get("sub"))
    return True


def create_dev_token(
    *,
    sub: str,
    email: str,
    secret: str,
    audience: str = "workspaces-api",
    email_verified: bool = True,
    name: str | None = None,
    expires_in: int = 3600,
) -> str:
    """Create a dev JWT for testing purposes.

    Never call this in production code.
    """
    now = int(datetime.now(UTC).timestamp())
    payload: dict[str, Any] = {
        "sub": sub,
        "email": email,
        "email_verified": email_verified,
        "aud": audience,
        "iat": now,
        "exp": now + expires_in,
        "jti": str(uuid.uuid4()),
    }
    if name:
        payload["name"] = name
    return jwt.encode(payload, secret, algorithm="HS256")
