"""Membership Directory.

Read-side lookups over memberships:
- list_memberships: every ACTIVE membership of a profile, joined to its live
  tenant, oldest first, with derived permission flags
- get_role / is_owner_or_admin / is_owner: single lookups on the unique
  (profile, tenant) pair, ACTIVE status only

Permission flags are computed once per view by src.core.policy.capabilities_for;
callers read the flags, never the raw role string.
"""

from __future__ import annotations

import uuid
from datetime import datetime

import structlog
from pydantic import BaseModel, ConfigDict
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.policy import capabilities_for, live_filter
from src.models.membership import Membership, MembershipStatus, Role
from src.models.tenant import Plan, Tenant

log = structlog.get_logger(__name__)


# ------------------------------------------------------------------ #
# Views (Pydantic - not ORM)
# ------------------------------------------------------------------ #


class TenantView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    owner_id: uuid.UUID
    plan: Plan
    business_name: str
    email: str
    phone: str | None = None
    website: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str | None = None
    tax_id: str | None = None
    vat_number: str | None = None
    registration_number: str | None = None
    language: str = "en"
    timezone: str | None = "UTC"
    currency: str | None = "USD"
    industry: str | None = None
    description: str | None = None
    logo_url: str | None = None
    created_at: datetime
    updated_at: datetime


class MembershipView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    profile_id: uuid.UUID
    tenant_id: uuid.UUID
    role: Role
    status: MembershipStatus
    created_at: datetime


class TenantWithPermissions(BaseModel):
    """A tenant as seen by one member, with the flags derived from their role."""

    tenant: TenantView
    membership: MembershipView
    is_owner: bool
    is_admin: bool
    can_manage_members: bool
    can_manage_settings: bool

    @classmethod
    def build(cls, membership: Membership, tenant: Tenant) -> TenantWithPermissions:
        caps = capabilities_for(membership.role)
        return cls(
            tenant=TenantView.model_validate(tenant),
            membership=MembershipView.model_validate(membership),
            is_owner=caps.is_owner,
            is_admin=caps.is_admin,
            can_manage_members=caps.can_manage_members,
            can_manage_settings=caps.can_manage_settings,
        )


# ------------------------------------------------------------------ #
# Service
# ------------------------------------------------------------------ #


class MembershipDirectory:
    """Membership lookups for one profile."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def list_memberships(self, profile_id: uuid.UUID) -> list[TenantWithPermissions]:
        """Return ACTIVE memberships joined to live tenants, oldest first.

        The id tiebreaker keeps the order deterministic when two memberships
        share a creation timestamp.
        """
        stmt = (
            select(Membership, Tenant)
            .join(Tenant, Tenant.id == Membership.tenant_id)
            .where(
                Membership.profile_id == profile_id,
                Membership.status == MembershipStatus.ACTIVE,
                live_filter(Tenant),
            )
            .order_by(Membership.created_at.asc(), Membership.id.asc())
        )
        result = await self.db.execute(stmt)
        return [TenantWithPermissions.build(m, t) for m, t in result.all()]

    async def get_active_membership(
        self,
        profile_id: uuid.UUID,
        tenant_id: uuid.UUID,
    ) -> Membership | None:
        """Return the caller's ACTIVE membership in a live tenant, or None."""
        stmt = (
            select(Membership)
            .join(Tenant, Tenant.id == Membership.tenant_id)
            .where(
                Membership.profile_id == profile_id,
                Membership.tenant_id == tenant_id,
                Membership.status == MembershipStatus.ACTIVE,
                live_filter(Tenant),
            )
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_role(self, profile_id: uuid.UUID, tenant_id: uuid.UUID) -> Role | None:
        membership = await self.get_active_membership(profile_id, tenant_id)
        return membership.role if membership is not None else None

    async def is_owner_or_admin(self, profile_id: uuid.UUID, tenant_id: uuid.UUID) -> bool:
        return capabilities_for(await self.get_role(profile_id, tenant_id)).is_admin

    async def is_owner(self, profile_id: uuid.UUID, tenant_id: uuid.UUID) -> bool:
        return capabilities_for(await self.get_role(profile_id, tenant_id)).is_owner

    async def count_active_owners(self, tenant_id: uuid.UUID) -> int:
        """Number of ACTIVE OWNER memberships in a tenant (sole-owner invariant)."""
        result = await self.db.execute(
            select(func.count())
            .select_from(Membership)
            .where(
                Membership.tenant_id == tenant_id,
                Membership.role == Role.OWNER,
                Membership.status == MembershipStatus.ACTIVE,
            )
        )
        return result.scalar() or 0

    async def count_owned_tenants(self, profile_id: uuid.UUID) -> int:
        """Number of live tenants where the profile holds an ACTIVE OWNER membership."""
        result = await self.db.execute(
            select(func.count())
            .select_from(Membership)
            .join(Tenant, Tenant.id == Membership.tenant_id)
            .where(
                Membership.profile_id == profile_id,
                Membership.role == Role.OWNER,
                Membership.status == MembershipStatus.ACTIVE,
                live_filter(Tenant),
            )
        )
        return result.scalar() or 0
