"""Tenant Service.

Workspace-level operations:
- create_tenant: new workspace + OWNER membership, becomes the current tenant
- delete_tenant: soft delete (owner only, never the caller's last workspace)
- switch_tenant: move the caller's current-tenant pointer
- update_tenant_settings: owner-only PATCH of business/contact metadata

The current-tenant pointer is advisory and last-writer-wins; every context
resolution re-validates it, so no locking is done around it.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

import structlog
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.oidc import Principal
from src.config import Settings, get_settings
from src.core.audit import AuditService
from src.core.errors import (
    AuthenticationRequiredError,
    InvariantViolationError,
    NotFoundError,
    PermissionDeniedError,
    TenantAccessDeniedError,
)
from src.core.policy import live_filter
from src.core.results import action_boundary
from src.database import run_in_transaction
from src.db.gateway import ScopedGateway
from src.models.membership import Membership, MembershipStatus, Role
from src.models.profile import Profile
from src.models.tenant import Plan, Tenant
from src.services.membership_directory import (
    MembershipDirectory,
    TenantView,
    TenantWithPermissions,
)

log = structlog.get_logger(__name__)


class CreateTenantInput(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)


class SwitchTenantInput(BaseModel):
    tenant_id: uuid.UUID


class DeleteTenantInput(BaseModel):
    tenant_id: uuid.UUID


class TenantSettingsUpdate(BaseModel):
    """Input model for updating tenant settings (all fields optional)."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=255)
    business_name: str | None = Field(default=None, min_length=1, max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=50)
    website: str | None = Field(default=None, max_length=255)
    address: str | None = None
    city: str | None = Field(default=None, max_length=100)
    state: str | None = Field(default=None, max_length=100)
    postal_code: str | None = Field(default=None, max_length=20)
    country: str | None = Field(default=None, max_length=100)
    tax_id: str | None = Field(default=None, max_length=50)
    vat_number: str | None = Field(default=None, max_length=50)
    registration_number: str | None = Field(default=None, max_length=50)
    language: str | None = Field(default=None, min_length=2, max_length=10)
    timezone: str | None = Field(default=None, max_length=50)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    industry: str | None = Field(default=None, max_length=100)
    description: str | None = None
    logo_url: str | None = Field(default=None, max_length=500)

    @field_validator("name", "business_name", "email", "language")
    @classmethod
    def _not_null(cls, value: object) -> object:
        # Column is NOT NULL: omit the field instead of clearing it
        if value is None:
            raise ValueError("This field cannot be cleared")
        return value

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str | None) -> str | None:
        return value.upper() if value else value


class DeletedTenant(BaseModel):
    tenant_id: uuid.UUID
    current_tenant_id: uuid.UUID | None


class TenantService:
    """Business logic for workspace creation, deletion, switching and settings."""

    def __init__(self, db: AsyncSession, settings: Settings | None = None) -> None:
        self.db = db
        self.settings = settings or get_settings()
        self._audit = AuditService(db)
        self._directory = MembershipDirectory(db)

    async def _require_profile(self, principal: Principal | None) -> Profile:
        if principal is None:
            raise AuthenticationRequiredError("You must be signed in")
        profile = await self.db.get(Profile, principal.id)
        if profile is None:
            raise NotFoundError("Profile not found")
        return profile

    # ---------------------------------------------------------------- #
    # Create
    # ---------------------------------------------------------------- #

    @action_boundary("tenant.create")
    async def create_tenant(self, principal: Principal | None, name: str) -> TenantWithPermissions:
        data = CreateTenantInput.model_validate({"name": name})
        profile = await self._require_profile(principal)

        async def _create(tx: AsyncSession) -> tuple[Membership, Tenant]:
            tenant = Tenant(
                name=data.name,
                owner_id=profile.id,
                plan=Plan(self.settings.default_tenant_plan),
                business_name=data.name,
                email=profile.email,
            )
            tx.add(tenant)
            await tx.flush()

            membership = Membership(
                profile_id=profile.id,
                tenant_id=tenant.id,
                role=Role.OWNER,
                status=MembershipStatus.ACTIVE,
            )
            tx.add(membership)
            profile.current_tenant_id = tenant.id
            await tx.flush()
            return membership, tenant

        membership, tenant = await run_in_transaction(self.db, _create)

        await self._audit.log(
            tenant_id=tenant.id,
            actor_id=profile.id,
            action="tenant.create",
            target=str(tenant.id),
            meta={"source": "user", "name": tenant.name},
        )
        log.info("tenant.created", tenant_id=str(tenant.id), owner_id=str(profile.id))
        return TenantWithPermissions.build(membership, tenant)

    # ---------------------------------------------------------------- #
    # Delete
    # ---------------------------------------------------------------- #

    @action_boundary("tenant.delete")
    async def delete_tenant(self, principal: Principal | None, tenant_id: uuid.UUID | str) -> DeletedTenant:
        """Soft-delete a workspace the caller owns.

        Memberships move to REMOVED and, if it was the caller's current
        tenant, the pointer moves to their oldest remaining workspace.
        """
        data = DeleteTenantInput.model_validate({"tenant_id": tenant_id})
        profile = await self._require_profile(principal)

        if not await self._directory.is_owner(profile.id, data.tenant_id):
            raise PermissionDeniedError("Only owners can delete a workspace")
        if await self._directory.count_owned_tenants(profile.id) <= 1:
            raise InvariantViolationError("You cannot delete your only workspace")

        async def _delete(tx: AsyncSession) -> uuid.UUID | None:
            now = datetime.now(UTC)
            await tx.execute(
                update(Tenant)
                .where(Tenant.id == data.tenant_id, live_filter(Tenant))
                .values(deleted_at=now, updated_at=now)
            )
            await tx.execute(
                update(Membership)
                .where(Membership.tenant_id == data.tenant_id)
                .values(status=MembershipStatus.REMOVED)
            )
            if profile.current_tenant_id == data.tenant_id:
                remaining = await self._directory.list_memberships(profile.id)
                profile.current_tenant_id = remaining[0].tenant.id if remaining else None
                await tx.flush()
            return profile.current_tenant_id

        current_tenant_id = await run_in_transaction(self.db, _delete)

        await self._audit.log(
            tenant_id=data.tenant_id,
            actor_id=profile.id,
            action="tenant.delete",
            target=str(data.tenant_id),
        )
        log.info(
            "tenant.deleted",
            tenant_id=str(data.tenant_id),
            actor_id=str(profile.id),
            repointed_to=str(current_tenant_id) if current_tenant_id else None,
        )
        return DeletedTenant(tenant_id=data.tenant_id, current_tenant_id=current_tenant_id)

    # ---------------------------------------------------------------- #
    # Switch
    # ---------------------------------------------------------------- #

    @action_boundary("tenant.switch")
    async def switch_tenant(self, principal: Principal | None, tenant_id: uuid.UUID | str) -> TenantWithPermissions:
        """Point the caller's current tenant at a workspace they actively belong to."""
        data = SwitchTenantInput.model_validate({"tenant_id": tenant_id})
        profile = await self._require_profile(principal)

        membership = await self._directory.get_active_membership(profile.id, data.tenant_id)
        if membership is None:
            raise TenantAccessDeniedError()

        tenant = await self.db.get(Tenant, data.tenant_id)
        if tenant is None:
            raise TenantAccessDeniedError()

        profile.current_tenant_id = data.tenant_id
        await self.db.flush()

        log.info("tenant.switched", profile_id=str(profile.id), tenant_id=str(data.tenant_id))
        return TenantWithPermissions.build(membership, tenant)

    # ---------------------------------------------------------------- #
    # Settings
    # ---------------------------------------------------------------- #

    @action_boundary("tenant.update_settings")
    async def update_tenant_settings(self, gateway: ScopedGateway, patch: dict[str, object]) -> TenantView:
        """Apply a partial update to the current tenant's business metadata."""
        data = TenantSettingsUpdate.model_validate(patch)
        gateway.require_owner("Only owners can change workspace settings")

        tenant = await gateway.tenant()
        if tenant is None:
            raise NotFoundError("Workspace not found")

        changes = data.model_dump(exclude_unset=True)
        for key, value in changes.items():
            setattr(tenant, key, value)
        tenant.updated_at = datetime.now(UTC)
        await self.db.flush()

        await self._audit.log(
            tenant_id=gateway.tenant_id,
            actor_id=gateway.user_id,
            action="tenant.update_settings",
            target=str(tenant.id),
            meta={"fields": sorted(changes)},
        )
        log.info(
            "tenant.settings_updated",
            tenant_id=str(gateway.tenant_id),
            fields=sorted(changes),
        )
        return TenantView.model_validate(tenant)
