"""Tenant Context Resolver.

Turns a session handle into the TenantContext that every protected
operation receives as an explicit argument. Resolution is a four-state
machine recomputed from scratch on every call:

  unauthenticated -> no principal behind the session handle
  no_profile      -> principal known, profile not bootstrapped yet
  no_tenant       -> profile exists but has no ACTIVE membership in a live tenant
  resolved        -> current tenant selected

Current tenant selection: the profile's current_tenant_id pointer if it
matches one of the caller's memberships, otherwise the oldest membership.
A stale or unset pointer is repaired (written back) so later resolutions are
stable. Nothing is cached across calls.

resolve_context() is the lenient variant (always returns a context);
require_context() raises ContextRedirect for every state but resolved.
"""

from __future__ import annotations

import uuid
from enum import StrEnum

import structlog
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.oidc import Principal, get_current_principal
from src.config import Settings, get_settings
from src.core.errors import AuthenticationRequiredError
from src.core.results import action_boundary
from src.models.profile import Profile
from src.services.membership_directory import MembershipDirectory, TenantWithPermissions
from src.services.profile_bootstrap import ProfileOut

log = structlog.get_logger(__name__)


class ContextState(StrEnum):
    UNAUTHENTICATED = "unauthenticated"
    NO_PROFILE = "no_profile"
    NO_TENANT = "no_tenant"
    RESOLVED = "resolved"


REDIRECT_TARGETS: dict[ContextState, str] = {
    ContextState.UNAUTHENTICATED: "/auth",
    ContextState.NO_PROFILE: "/auth/setup-profile",
    ContextState.NO_TENANT: "/auth/setup-tenant",
}


class ContextRedirect(Exception):
    """Strict resolution did not reach the resolved state."""

    def __init__(self, state: ContextState) -> None:
        self.state = state
        self.redirect_to = REDIRECT_TARGETS[state]
        super().__init__(f"Tenant context unavailable ({state}); redirect to {self.redirect_to}")


class TenantContext(BaseModel):
    state: ContextState
    user: ProfileOut | None = None
    current_tenant: TenantWithPermissions | None = None
    tenants: list[TenantWithPermissions] = []

    @property
    def is_resolved(self) -> bool:
        return self.state == ContextState.RESOLVED

    @classmethod
    def empty(cls, state: ContextState = ContextState.UNAUTHENTICATED) -> TenantContext:
        return cls(state=state)


class TenantRefresh(BaseModel):
    current_tenant: TenantWithPermissions | None
    tenants: list[TenantWithPermissions]


class TenantContextResolver:
    """Resolves the per-request tenant context.

    Usage:
        resolver = TenantContextResolver(db, settings)
        ctx = await resolver.require_context(bearer_token)
    """

    def __init__(self, db: AsyncSession, settings: Settings | None = None) -> None:
        self.db = db
        self.settings = settings or get_settings()
        self._directory = MembershipDirectory(db)

    async def resolve_context(self, session_handle: str | None) -> TenantContext:
        principal = await get_current_principal(session_handle, self.settings)
        return await self.resolve_for_principal(principal)

    async def require_context(self, session_handle: str | None) -> TenantContext:
        """Like resolve_context() but raises ContextRedirect unless resolved."""
        principal = await get_current_principal(session_handle, self.settings)
        return await self.require_for_principal(principal)

    async def require_for_principal(self, principal: Principal | None) -> TenantContext:
        ctx = await self.resolve_for_principal(principal)
        if not ctx.is_resolved:
            log.info("tenant_context.redirect", state=ctx.state.value)
            raise ContextRedirect(ctx.state)
        return ctx

    async def resolve_for_principal(self, principal: Principal | None) -> TenantContext:
        if principal is None:
            return TenantContext.empty()

        profile = await self.db.get(Profile, principal.id)
        if profile is None:
            return TenantContext.empty(ContextState.NO_PROFILE)

        tenants = await self._directory.list_memberships(profile.id)
        if not tenants:
            return TenantContext(
                state=ContextState.NO_TENANT,
                user=ProfileOut.model_validate(profile),
            )

        current = self._select_current(profile.current_tenant_id, tenants)
        if profile.current_tenant_id != current.tenant.id:
            log.info(
                "tenant_context.pointer_repaired",
                profile_id=str(profile.id),
                stale_tenant_id=str(profile.current_tenant_id) if profile.current_tenant_id else None,
                tenant_id=str(current.tenant.id),
            )
            profile.current_tenant_id = current.tenant.id
            await self.db.flush()

        log.debug(
            "tenant_context.resolved",
            profile_id=str(profile.id),
            tenant_id=str(current.tenant.id),
            role=current.membership.role.value,
        )
        return TenantContext(
            state=ContextState.RESOLVED,
            user=ProfileOut.model_validate(profile),
            current_tenant=current,
            tenants=tenants,
        )

    @staticmethod
    def _select_current(
        pointer: uuid.UUID | None,
        tenants: list[TenantWithPermissions],
    ) -> TenantWithPermissions:
        if pointer is not None:
            for entry in tenants:
                if entry.tenant.id == pointer:
                    return entry
        return tenants[0]

    @action_boundary("tenant.refresh")
    async def refresh_tenants(self, principal: Principal | None) -> TenantRefresh:
        """Recompute the caller's tenant list and current tenant.

        Raises:
            AuthenticationRequiredError: If there is no authenticated principal.
        """
        if principal is None:
            raise AuthenticationRequiredError("You must be signed in")
        ctx = await self.resolve_for_principal(principal)
        return TenantRefresh(current_tenant=ctx.current_tenant, tenants=ctx.tenants)
