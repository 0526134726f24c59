"""Invitation model - a single-use, expiring offer to join a tenant.

At most one row per (tenant, email): inviting the same address again
reissues the existing row in place. Accepted invitations keep their row
(accepted_at set); expired ones are filtered out by query, never purged.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.database import Base
from src.models.membership import Role


class Invitation(Base):
    __tablename__ = "invitations"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("tenants.id"),
        nullable=False,
    )
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    role: Mapped[Role] = mapped_column(Enum(Role, name="role"), nullable=False)
    token: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        comment="Hex-encoded random token, rotated on every reissue",
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )
    accepted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    tenant: Mapped[Tenant] = relationship("Tenant", back_populates="invitations")  # type: ignore[name-defined]

    __table_args__ = (
        UniqueConstraint("tenant_id", "email", name="uq_invitations_tenant_email"),
        Index("ix_invitations_expires_at", "expires_at"),
    )

    def __repr__(self) -> str:
        return f"<Invitation id={self.id} tenant={self.tenant_id} email={self.email!r}>"
