"""FastAPI dependencies for authentication and tenant context.

These dependencies are injected into route handlers via Depends().

Key dependencies:
- get_session_handle: Bearer token from the Authorization header (or None)
- get_principal: Principal behind the token, or None (never raises)
- get_tenant_context: lenient context resolution (always returns a context)
- require_tenant_context: strict resolution; raises ContextRedirect, which the
  app turns into a 307 to /auth, /auth/setup-profile or /auth/setup-tenant
- get_gateway: ScopedGateway built from the strict context

Context is passed to handlers explicitly; nothing is stored on a global or on
request.state beyond what FastAPI caches for the duration of one request.
"""

from __future__ import annotations

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.oidc import Principal, get_current_principal
from src.config import Settings, get_settings
from src.database import get_db_session
from src.db.gateway import ScopedGateway
from src.services.tenant_context import TenantContext, TenantContextResolver
from src.telemetry.logging import bind_tenant_context, bind_user_context


async def get_session_handle(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header.removeprefix("Bearer ").strip()
    return token or None


async def get_principal(
    session_handle: str | None = Depends(get_session_handle),
    settings: Settings = Depends(get_settings),
) -> Principal | None:
    principal = await get_current_principal(session_handle, settings)
    if principal is not None:
        bind_user_context(principal.id)
    return principal


async def get_tenant_context(
    principal: Principal | None = Depends(get_principal),
    db: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> TenantContext:
    ctx = await TenantContextResolver(db, settings).resolve_for_principal(principal)
    if ctx.current_tenant is not None:
        bind_tenant_context(ctx.current_tenant.tenant.id)
    return ctx


async def require_tenant_context(
    principal: Principal | None = Depends(get_principal),
    db: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> TenantContext:
    """Strict variant: raises ContextRedirect unless the context is resolved."""
    ctx = await TenantContextResolver(db, settings).require_for_principal(principal)
    if ctx.current_tenant is not None:
        bind_tenant_context(ctx.current_tenant.tenant.id)
    return ctx


async def get_gateway(
    ctx: TenantContext = Depends(require_tenant_context),
    db: AsyncSession = Depends(get_db_session),
) -> ScopedGateway:
    return ScopedGateway(ctx, db)
