"""Profile Bootstrapper.

ensure_profile() is called after every verified sign-in (POST /auth/callback).
It upserts the profile row keyed by the principal id and, the first time a
principal is seen, provisions a default workspace with an OWNER membership.

Atomicity: the profile insert, the default tenant and its owner membership
commit together or not at all (run_in_transaction). "First time" is decided
by the insert itself (INSERT .. ON CONFLICT DO NOTHING RETURNING id), so two
concurrent first sign-ins cannot both provision a workspace.

Re-verification only refreshes email_confirmed_at; name and avatar belong to
the user after creation and are changed through update_profile().
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

import structlog
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.oidc import Principal
from src.config import Settings, get_settings
from src.core.audit import AuditService
from src.core.errors import AuthenticationRequiredError, NotFoundError
from src.core.policy import live_filter
from src.core.results import action_boundary
from src.database import run_in_transaction
from src.models.membership import Membership, MembershipStatus, Role
from src.models.profile import Profile
from src.models.tenant import Plan, Tenant

log = structlog.get_logger(__name__)


class ProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    email: str
    name: str | None
    avatar_url: str | None
    current_tenant_id: uuid.UUID | None
    email_confirmed_at: datetime | None
    created_at: datetime


class ProfileUpdate(BaseModel):
    """User-editable profile fields (PATCH semantics)."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=255)
    avatar_url: str | None = Field(default=None, max_length=500)


def default_workspace_name(principal: Principal) -> str:
    """"Ada Lovelace's workspace", falling back to the email local part."""
    base = (principal.display_name or "").strip() or principal.email.split("@", 1)[0]
    return f"{base}'s workspace"[:255]


class ProfileBootstrapper:
    """Creates and maintains the application profile for a principal."""

    def __init__(self, db: AsyncSession, settings: Settings | None = None) -> None:
        self.db = db
        self.settings = settings or get_settings()
        self._audit = AuditService(db)

    async def ensure_profile(self, principal: Principal) -> Profile:
        """Idempotently create the profile (and default workspace) for a principal.

        Raises:
            AuthenticationRequiredError: If the principal's email is not verified.
        """
        if not principal.email_verified:
            raise AuthenticationRequiredError("Please verify your email address to continue")

        profile = await run_in_transaction(self.db, lambda tx: self._upsert(tx, principal))
        return profile

    async def _upsert(self, tx: AsyncSession, principal: Principal) -> Profile:
        now = datetime.now(UTC)
        insert_fn = (
            postgresql.insert
            if tx.get_bind().dialect.name == "postgresql"
            else sqlite.insert
        )
        stmt = (
            insert_fn(Profile)
            .values(
                id=principal.id,
                email=principal.email,
                name=principal.display_name,
                avatar_url=principal.avatar_url,
                email_confirmed_at=now,
                created_at=now,
            )
            .on_conflict_do_nothing(index_elements=[Profile.id])
            .returning(Profile.id)
        )
        inserted = (await tx.execute(stmt)).scalar_one_or_none()

        if inserted is None:
            await tx.execute(
                update(Profile)
                .where(Profile.id == principal.id)
                .values(email_confirmed_at=now)
            )
        else:
            log.info("profile_bootstrap.profile_created", profile_id=str(principal.id))
            await self._provision_default_tenant(tx, principal)

        profile = await tx.get(Profile, principal.id, populate_existing=True)
        if profile is None:
            raise NotFoundError("Profile not found")
        return profile

    async def _provision_default_tenant(self, tx: AsyncSession, principal: Principal) -> None:
        owned = await tx.execute(
            select(Tenant.id)
            .where(Tenant.owner_id == principal.id, live_filter(Tenant))
            .limit(1)
        )
        if owned.scalar_one_or_none() is not None:
            return

        name = default_workspace_name(principal)
        tenant = Tenant(
            name=name,
            owner_id=principal.id,
            plan=Plan(self.settings.default_tenant_plan),
            business_name=name,
            email=principal.email,
        )
        tx.add(tenant)
        await tx.flush()

        tx.add(
            Membership(
                profile_id=principal.id,
                tenant_id=tenant.id,
                role=Role.OWNER,
                status=MembershipStatus.ACTIVE,
            )
        )
        await tx.execute(
            update(Profile)
            .where(Profile.id == principal.id)
            .values(current_tenant_id=tenant.id)
        )
        await self._audit.log(
            tenant_id=tenant.id,
            actor_id=principal.id,
            action="tenant.create",
            target=str(tenant.id),
            meta={"source": "bootstrap", "name": name},
        )
        log.info(
            "profile_bootstrap.default_tenant_created",
            profile_id=str(principal.id),
            tenant_id=str(tenant.id),
        )

    @action_boundary("profile.bootstrap")
    async def bootstrap(self, principal: Principal | None) -> ProfileOut:
        """ensure_profile() for the auth callback, as an ActionResult."""
        if principal is None:
            raise AuthenticationRequiredError("You must be signed in")
        return ProfileOut.model_validate(await self.ensure_profile(principal))

    @action_boundary("profile.update")
    async def update_profile(
        self,
        principal: Principal | None,
        *,
        name: str | None = None,
        avatar_url: str | None = None,
    ) -> ProfileOut:
        """Update the caller's display name and/or avatar URL."""
        if principal is None:
            raise AuthenticationRequiredError("You must be signed in to update your profile")

        fields: dict[str, str] = {}
        if name is not None:
            fields["name"] = name
        if avatar_url is not None:
            fields["avatar_url"] = avatar_url
        patch = ProfileUpdate.model_validate(fields)

        profile = await self.db.get(Profile, principal.id)
        if profile is None:
            raise NotFoundError("Profile not found")

        for key, value in patch.model_dump(exclude_unset=True).items():
            setattr(profile, key, value)
        await self.db.flush()

        log.info("profile.updated", profile_id=str(profile.id))
        return ProfileOut.model_validate(profile)
