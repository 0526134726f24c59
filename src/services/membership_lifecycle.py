"""Membership Lifecycle Service.

State machine for invitations and membership mutation:
- invite_member: create, or reissue in place (one row per tenant+email)
- accept_invitation: single-use token -> ACTIVE membership
- update_member_role / remove_member: guarded by the ownership rules below
- list_team: members and pending invitations of the current tenant

Ownership rules (checked before any write, in this order):
- Only owners may modify or remove another owner
- Only owners may promote to owner
- No change may leave a live tenant without an ACTIVE OWNER membership

Every public operation goes through action_boundary and returns an
ActionResult; successful mutations are written to the audit log.
"""

from __future__ import annotations

import secrets
import uuid
from datetime import UTC, datetime, timedelta
from functools import partial

import structlog
from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.oidc import Principal
from src.config import Settings, get_settings
from src.core.audit import AuditService
from src.core.errors import (
    InvariantViolationError,
    InvitationError,
    NotFoundError,
    PermissionDeniedError,
)
from src.core.policy import INVITABLE_ROLES, capabilities_for, live_filter
from src.core.results import action_boundary
from src.database import call_after_commit, run_in_transaction
from src.db.gateway import ScopedGateway
from src.models.invitation import Invitation
from src.models.membership import Membership, MembershipStatus, Role
from src.models.profile import Profile
from src.models.tenant import Tenant
from src.services.invitation_mailer import InvitationMailer, build_accept_url
from src.services.membership_directory import MembershipDirectory, MembershipView
from src.services.profile_bootstrap import ProfileBootstrapper

log = structlog.get_logger(__name__)


# ------------------------------------------------------------------ #
# Input models
# ------------------------------------------------------------------ #


class InviteInput(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=320)
    role: Role

    @field_validator("email")
    @classmethod
    def _valid_address(cls, value: str) -> str:
        # Validate only; the address is stored exactly as typed
        try:
            validate_email(value, check_deliverability=False)
        except EmailNotValidError as exc:
            raise ValueError(str(exc)) from exc
        return value

    @field_validator("role")
    @classmethod
    def _invitable(cls, value: Role) -> Role:
        if value not in INVITABLE_ROLES:
            raise ValueError("Role must be one of ADMIN, MEMBER, BILLING_ADMIN")
        return value


class AcceptInput(BaseModel):
    token: str = Field(min_length=1, max_length=255)


class RoleChangeInput(BaseModel):
    membership_id: uuid.UUID
    role: Role


class MembershipRef(BaseModel):
    membership_id: uuid.UUID


# ------------------------------------------------------------------ #
# Response models
# ------------------------------------------------------------------ #


class InvitationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    tenant_id: uuid.UUID
    email: str
    role: Role
    expires_at: datetime
    created_at: datetime
    accepted_at: datetime | None = None
    accept_url: str | None = None


class TeamMember(BaseModel):
    membership_id: uuid.UUID
    profile_id: uuid.UUID
    email: str
    name: str | None
    avatar_url: str | None
    role: Role
    status: MembershipStatus
    joined_at: datetime


class TeamOut(BaseModel):
    members: list[TeamMember]
    pending_invitations: list[InvitationOut]


# ------------------------------------------------------------------ #
# Service
# ------------------------------------------------------------------ #


class MembershipLifecycleService:
    """Invitations and membership mutation for one request."""

    def __init__(
        self,
        db: AsyncSession,
        settings: Settings | None = None,
        mailer: InvitationMailer | None = None,
    ) -> None:
        self.db = db
        self.settings = settings or get_settings()
        self._mailer = mailer or InvitationMailer.from_settings(self.settings)
        self._audit = AuditService(db)
        self._directory = MembershipDirectory(db)

    # ---------------------------------------------------------------- #
    # Invitations
    # ---------------------------------------------------------------- #

    @action_boundary("invitation.create")
    async def invite_member(self, gateway: ScopedGateway, email: str, role: str) -> InvitationOut:
        """Invite an email address to the current tenant, or reissue its invitation.

        Reissuing rotates the token, refreshes the expiry, overwrites the role
        and clears accepted_at, so an address never accumulates duplicates.
        """
        data = InviteInput.model_validate({"email": email, "role": role})
        gateway.require_admin("You don't have permission to invite members")

        token = secrets.token_hex(self.settings.invitation_token_bytes)
        now = datetime.now(UTC)
        expires_at = now + timedelta(days=self.settings.invitation_ttl_days)

        result = await self.db.execute(
            gateway.select(Invitation, Invitation.email == data.email)
        )
        invitation = result.scalar_one_or_none()
        reissued = invitation is not None

        if invitation is not None:
            invitation.role = data.role
            invitation.token = token
            invitation.expires_at = expires_at
            invitation.created_at = now
            invitation.accepted_at = None
        else:
            invitation = gateway.new(
                Invitation,
                email=data.email,
                role=data.role,
                token=token,
                expires_at=expires_at,
                created_at=now,
            )
        await self.db.flush()

        action = "invitation.reissue" if reissued else "invitation.create"
        await self._audit.log(
            tenant_id=gateway.tenant_id,
            actor_id=gateway.user_id,
            action=action,
            target=data.email,
            meta={"role": data.role.value, "invitation_id": str(invitation.id)},
        )
        log.info(
            "membership_lifecycle.invited",
            tenant_id=str(gateway.tenant_id),
            invitation_id=str(invitation.id),
            role=data.role.value,
            reissued=reissued,
        )

        # The link is only valid once the request transaction commits
        tenant = await gateway.tenant()
        call_after_commit(
            self.db,
            partial(
                self._mailer.send_invitation,
                to=data.email,
                token=token,
                tenant_name=tenant.name if tenant is not None else "your team",
                role=data.role.value,
            ),
        )

        out = InvitationOut.model_validate(invitation)
        out.accept_url = build_accept_url(self.settings.public_base_url, token)
        return out

    @action_boundary("invitation.accept")
    async def accept_invitation(self, principal: Principal | None, token: str) -> MembershipView:
        """Accept an invitation token on behalf of the signed-in caller.

        Checks run in this order and perform no writes until all pass:
        token is live (invitation_not_found), caller is signed in with a
        verified email (authentication_required), caller's email equals the
        invited address exactly (email_mismatch).
        """
        data = AcceptInput.model_validate({"token": token})
        now = datetime.now(UTC)

        result = await self.db.execute(
            select(Invitation)
            .join(Tenant, Tenant.id == Invitation.tenant_id)
            .where(
                Invitation.token == data.token,
                Invitation.accepted_at.is_(None),
                Invitation.expires_at > now,
                live_filter(Tenant),
            )
        )
        invitation = result.scalar_one_or_none()
        if invitation is None:
            raise InvitationError("This invitation is invalid or has expired", code="invitation_not_found")

        if principal is None or not principal.email_verified:
            raise InvitationError(
                "You must be signed in to accept this invitation",
                code="authentication_required",
            )

        if principal.email != invitation.email:
            raise InvitationError(
                "This invitation was sent to a different email address",
                code="email_mismatch",
            )

        membership = await run_in_transaction(
            self.db, lambda tx: self._accept(tx, invitation, principal, now)
        )
        return MembershipView.model_validate(membership)

    async def _accept(
        self,
        tx: AsyncSession,
        invitation: Invitation,
        principal: Principal,
        now: datetime,
    ) -> Membership:
        # Claim first: a concurrent accept of the same token updates zero rows
        claimed = await tx.execute(
            update(Invitation)
            .where(
                Invitation.id == invitation.id,
                Invitation.accepted_at.is_(None),
                Invitation.expires_at > now,
            )
            .values(accepted_at=now)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            raise InvitationError("This invitation is invalid or has expired", code="invitation_not_found")

        if await tx.get(Profile, principal.id) is None:
            await ProfileBootstrapper(tx, self.settings).ensure_profile(principal)

        result = await tx.execute(
            select(Membership).where(
                Membership.profile_id == principal.id,
                Membership.tenant_id == invitation.tenant_id,
            )
        )
        membership = result.scalar_one_or_none()
        if membership is None:
            membership = Membership(
                profile_id=principal.id,
                tenant_id=invitation.tenant_id,
                role=invitation.role,
                status=MembershipStatus.ACTIVE,
            )
            tx.add(membership)
        elif membership.status == MembershipStatus.ACTIVE and membership.role == Role.OWNER:
            # Accepting never demotes an active owner
            log.info(
                "membership_lifecycle.accept_kept_owner",
                membership_id=str(membership.id),
                invited_role=invitation.role.value,
            )
        else:
            membership.role = invitation.role
            membership.status = MembershipStatus.ACTIVE
        await tx.flush()

        await self._audit.log(
            tenant_id=invitation.tenant_id,
            actor_id=principal.id,
            action="invitation.accept",
            target=invitation.email,
            meta={"role": invitation.role.value, "membership_id": str(membership.id)},
        )
        log.info(
            "membership_lifecycle.invitation_accepted",
            tenant_id=str(invitation.tenant_id),
            profile_id=str(principal.id),
        )
        return membership

    # ---------------------------------------------------------------- #
    # Membership mutation
    # ---------------------------------------------------------------- #

    async def _load_target(self, gateway: ScopedGateway, membership_id: uuid.UUID) -> Membership:
        result = await self.db.execute(
            gateway.select(
                Membership,
                Membership.id == membership_id,
                Membership.status != MembershipStatus.REMOVED,
            )
        )
        target = result.scalar_one_or_none()
        if target is None:
            raise NotFoundError("Member not found")
        return target

    async def _would_orphan(self, tenant_id: uuid.UUID, target: Membership) -> bool:
        """True if demoting/removing target leaves the tenant without an active owner."""
        if target.role != Role.OWNER or target.status != MembershipStatus.ACTIVE:
            return False
        return await self._directory.count_active_owners(tenant_id) <= 1

    @action_boundary("membership.update_role")
    async def update_member_role(
        self,
        gateway: ScopedGateway,
        membership_id: uuid.UUID | str,
        new_role: str,
    ) -> MembershipView:
        data = RoleChangeInput.model_validate({"membership_id": membership_id, "role": new_role})
        gateway.require_admin("You don't have permission to change member roles")
        caller = capabilities_for(gateway.role)

        target = await self._load_target(gateway, data.membership_id)

        if target.role == Role.OWNER and not caller.is_owner:
            raise PermissionDeniedError("Only owners may modify another owner")
        if data.role == Role.OWNER and not caller.is_owner:
            raise PermissionDeniedError("Only owners may promote to owner")
        if data.role != Role.OWNER and await self._would_orphan(gateway.tenant_id, target):
            raise InvariantViolationError("This change would leave the workspace without an owner")

        previous = target.role
        target.role = data.role
        await self.db.flush()

        await self._audit.log(
            tenant_id=gateway.tenant_id,
            actor_id=gateway.user_id,
            action="membership.update_role",
            target=str(target.id),
            meta={"from": previous.value, "to": data.role.value},
        )
        log.info(
            "membership_lifecycle.role_changed",
            tenant_id=str(gateway.tenant_id),
            membership_id=str(target.id),
            old_role=previous.value,
            new_role=data.role.value,
        )
        return MembershipView.model_validate(target)

    @action_boundary("membership.remove")
    async def remove_member(self, gateway: ScopedGateway, membership_id: uuid.UUID | str) -> MembershipView:
        """Soft-remove a membership (status REMOVED); rows are never deleted."""
        data = MembershipRef.model_validate({"membership_id": membership_id})
        gateway.require_admin("You don't have permission to remove members")
        caller = capabilities_for(gateway.role)

        target = await self._load_target(gateway, data.membership_id)

        if target.role == Role.OWNER and not caller.is_owner:
            raise PermissionDeniedError("Only owners may remove an owner")
        if await self._would_orphan(gateway.tenant_id, target):
            if target.profile_id == gateway.user_id:
                raise InvariantViolationError("You cannot remove yourself as the sole owner")
            raise InvariantViolationError("This change would leave the workspace without an owner")

        target.status = MembershipStatus.REMOVED
        await self.db.flush()

        await self._audit.log(
            tenant_id=gateway.tenant_id,
            actor_id=gateway.user_id,
            action="membership.remove",
            target=str(target.id),
            meta={"profile_id": str(target.profile_id), "role": target.role.value},
        )
        log.info(
            "membership_lifecycle.member_removed",
            tenant_id=str(gateway.tenant_id),
            membership_id=str(target.id),
            self_removal=target.profile_id == gateway.user_id,
        )
        return MembershipView.model_validate(target)

    # ---------------------------------------------------------------- #
    # Team listing
    # ---------------------------------------------------------------- #

    @action_boundary("team.list")
    async def list_team(self, gateway: ScopedGateway) -> TeamOut:
        """Members (newest first) and pending invitations of the current tenant."""
        rows = await self.db.execute(
            select(Membership, Profile)
            .join(Profile, Profile.id == Membership.profile_id)
            .where(gateway.where(Membership, Membership.status != MembershipStatus.REMOVED))
            .order_by(Membership.created_at.desc(), Membership.id.desc())
        )
        members = [
            TeamMember(
                membership_id=m.id,
                profile_id=p.id,
                email=p.email,
                name=p.name,
                avatar_url=p.avatar_url,
                role=m.role,
                status=m.status,
                joined_at=m.created_at,
            )
            for m, p in rows.all()
        ]

        pending = await gateway.all(
            Invitation,
            Invitation.accepted_at.is_(None),
            Invitation.expires_at > datetime.now(UTC),
            order_by=(Invitation.created_at.desc(),),
        )
        return TeamOut(
            members=members,
            pending_invitations=[InvitationOut.model_validate(i) for i in pending],
        )
