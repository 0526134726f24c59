"""
Shared test fixtures for pytest.

Provides common mocks and test data for all test modules:
- fake_settings: Test environment configuration (in-memory SQLite)
- mock_db_session: Async database session mock
- engine / db_session / session_factory: Real async SQLite database with the
  full schema, fresh for every test
- make_principal: Build a verified Principal for service-level tests
- make_token: Helper to create test JWT tokens
- mailer: InvitationMailer mock (no SMTP)
- test_app / client: FastAPI app wired to the test database
"""

import uuid
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Callable
from unittest.mock import AsyncMock, MagicMock

import httpx
import jwt
import pytest
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from src.auth.oidc import Principal
from src.config import Environment, Settings, get_settings
from src.database import Base, build_engine
from src.services.invitation_mailer import InvitationMailer

import src.models  # noqa: F401 - registers all tables on Base.metadata


# ------------------------------------------------------------------ #
# Session-scoped: clear settings cache between test sessions
# ------------------------------------------------------------------ #

@pytest.fixture(autouse=True, scope="session")
def _clear_settings_cache():
    """Clear the lru_cache on get_settings so test overrides take effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ------------------------------------------------------------------ #
# Constants for Test JWTs
# ------------------------------------------------------------------ #

TEST_JWT_SECRET = "dev-only-jwt-secret-not-for-production"
TEST_AUDIENCE = "workspaces-api"


def make_token(
    sub: str,
    email: str = "test@example.com",
    *,
    email_verified: bool = True,
    name: str | None = None,
    expires_in: int = 3600,
) -> str:
    """Create a test JWT token using HS256.

    Args:
        sub: Subject claim (identity provider user id)
        email: User email address
        email_verified: Whether the IdP verified the address
        name: Optional display name
        expires_in: Seconds until expiry (negative for an expired token)

    Returns:
        Encoded JWT token string
    """
    now = int(datetime.now(timezone.utc).timestamp())
    payload: dict[str, Any] = {
        "sub": sub,
        "email": email,
        "email_verified": email_verified,
        "aud": TEST_AUDIENCE,
        "iat": now,
        "exp": now + expires_in,
        "jti": str(uuid.uuid4()),
    }
    if name:
        payload["name"] = name
    return jwt.encode(payload, TEST_JWT_SECRET, algorithm="HS256")


def auth_headers_for(sub: str, email: str, **kwargs: Any) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(sub, email, **kwargs)}"}


# ------------------------------------------------------------------ #
# Settings
# ------------------------------------------------------------------ #

@pytest.fixture
def fake_settings() -> Settings:
    """Test environment settings with safe defaults."""
    return Settings(
        environment=Environment.TEST,
        database_url="sqlite+aiosqlite:///:memory:",
        oidc_issuer_url="http://localhost:8080/realms/test",
        oidc_audience=TEST_AUDIENCE,
        dev_jwt_secret=TEST_JWT_SECRET,  # type: ignore[arg-type]
        public_base_url="http://app.test",
        debug=True,
        db_echo_sql=False,
    )


# ------------------------------------------------------------------ #
# Database Fixtures
# ------------------------------------------------------------------ #

@pytest.fixture
def mock_db_session() -> AsyncSession:
    """Mock async database session for unit tests.

    The execute() return value is a MagicMock so that synchronous result
    methods like .scalar(), .scalar_one(), and .scalar_one_or_none() return
    plain values rather than coroutines (which AsyncMock would produce).
    """
    mock = AsyncMock(spec=AsyncSession)
    mock.execute = AsyncMock()
    mock.execute.return_value = MagicMock()  # Synchronous result object
    mock.commit = AsyncMock()
    mock.rollback = AsyncMock()
    mock.flush = AsyncMock()
    mock.close = AsyncMock()
    mock.add = MagicMock()
    return mock


@pytest.fixture
async def engine(fake_settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with the full schema (one database per test)."""
    eng = build_engine(fake_settings, for_test=True)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Real async session against the in-memory database."""
    async with session_factory() as session:
        yield session


# ------------------------------------------------------------------ #
# Identity Fixtures
# ------------------------------------------------------------------ #

@pytest.fixture
def make_principal() -> Callable[..., Principal]:
    """Factory for verified principals with fresh ids."""

    def _make(
        email: str = "ada@example.com",
        *,
        name: str | None = None,
        verified: bool = True,
        principal_id: uuid.UUID | None = None,
    ) -> Principal:
        return Principal(
            id=principal_id or uuid.uuid4(),
            email=email,
            email_verified=verified,
            display_name=name,
        )

    return _make


@pytest.fixture
def mailer() -> MagicMock:
    """InvitationMailer stand-in; records send_invitation calls."""
    mock = MagicMock(spec=InvitationMailer)
    mock.send_invitation.return_value = True
    return mock


# ------------------------------------------------------------------ #
# App & HTTP Client Fixtures
# ------------------------------------------------------------------ #

@pytest.fixture
def test_app(
    fake_settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    mailer: MagicMock,
) -> FastAPI:
    """FastAPI app wired to the per-test SQLite database.

    get_db_session keeps the production commit/rollback contract so tests
    exercise the real transaction boundaries.
    """
    from src.database import get_db_session
    from src.main import create_app
    from src.services.invitation_mailer import get_invitation_mailer

    app = create_app()

    async def _test_db_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_settings] = lambda: fake_settings
    app.dependency_overrides[get_db_session] = _test_db_session
    app.dependency_overrides[get_invitation_mailer] = lambda: mailer
    return app


@pytest.fixture
async def client(test_app: FastAPI) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Async HTTP client for testing the FastAPI application.

    Uses httpx.AsyncClient with ASGITransport to test the app without
    spinning up a real HTTP server.
    """
    transport = httpx.ASGITransport(app=test_app)  # type: ignore[arg-type]
    async with httpx.AsyncClient(
        transport=transport,
        base_url="http://testserver",
    ) as ac:
        yield ac


# ------------------------------------------------------------------ #
# Tenancy helpers (service-level tests)
# ------------------------------------------------------------------ #

@pytest.fixture
def bootstrap(
    db_session: AsyncSession,
    fake_settings: Settings,
    make_principal: Callable[..., Principal],
) -> Callable[..., Any]:
    """Sign a new principal in: profile + default workspace."""
    from src.services.profile_bootstrap import ProfileBootstrapper

    async def _bootstrap(email: str = "ada@example.com", **kwargs: Any) -> Principal:
        principal = make_principal(email, **kwargs)
        await ProfileBootstrapper(db_session, fake_settings).ensure_profile(principal)
        return principal

    return _bootstrap


@pytest.fixture
def gateway_for(db_session: AsyncSession, fake_settings: Settings) -> Callable[..., Any]:
    """Resolve the strict context for a principal and wrap it in a ScopedGateway."""
    from src.db.gateway import ScopedGateway
    from src.services.tenant_context import TenantContextResolver

    async def _gateway(principal: Principal) -> ScopedGateway:
        ctx = await TenantContextResolver(db_session, fake_settings).require_for_principal(principal)
        return ScopedGateway(ctx, db_session)

    return _gateway


@pytest.fixture
def add_member(db_session: AsyncSession) -> Callable[..., Any]:
    """Insert an ACTIVE membership for an existing profile."""
    from src.models.membership import Membership, MembershipStatus, Role

    async def _add(
        principal: Principal,
        tenant_id: uuid.UUID,
        role: Role,
        status: MembershipStatus = MembershipStatus.ACTIVE,
    ) -> Membership:
        membership = Membership(
            profile_id=principal.id,
            tenant_id=tenant_id,
            role=role,
            status=status,
        )
        db_session.add(membership)
        await db_session.flush()
        return membership

    return _add
