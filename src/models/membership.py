"""Membership model - the join of a profile to a tenant.

Exactly one row per (profile, tenant) pair. Rows are never deleted: removal
is a status transition to REMOVED so that membership history survives for
audit and billing.

Sole-owner invariant: every live tenant keeps at least one ACTIVE membership
with role OWNER. It is enforced by the lifecycle service before every write
that could break it, not by a database constraint.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum

from sqlalchemy import DateTime, Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.database import Base


class Role(StrEnum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"
    BILLING_ADMIN = "BILLING_ADMIN"


class MembershipStatus(StrEnum):
    ACTIVE = "ACTIVE"
    INVITED = "INVITED"
    REMOVED = "REMOVED"


class Membership(Base):
    __tablename__ = "memberships"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    profile_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("profiles.id"),
        nullable=False,
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("tenants.id"),
        nullable=False,
    )
    role: Mapped[Role] = mapped_column(
        Enum(Role, name="role"),
        nullable=False,
    )
    status: Mapped[MembershipStatus] = mapped_column(
        Enum(MembershipStatus, name="membership_status"),
        nullable=False,
        default=MembershipStatus.ACTIVE,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    profile: Mapped[Profile] = relationship("Profile", back_populates="memberships")  # type: ignore[name-defined]
    tenant: Mapped[Tenant] = relationship("Tenant", back_populates="memberships")  # type: ignore[name-defined]

    __table_args__ = (
        UniqueConstraint("profile_id", "tenant_id", name="uq_memberships_profile_tenant"),
        Index("ix_memberships_tenant_role", "tenant_id", "role"),
        Index("ix_memberships_profile_status", "profile_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Membership id={self.id} profile={self.profile_id} "
            f"tenant={self.tenant_id} role={self.role} status={self.status}>"
        )
