"""Tenant model - top of the multi-tenant hierarchy.

Every membership, invitation and audit entry is scoped to a tenant. Tenants
are never hard-deleted: deletion stamps deleted_at, and every query path
excludes such rows through src.core.policy.live_filter().
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum

from sqlalchemy import DateTime, Enum, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.database import Base


class Plan(StrEnum):
    FREE = "FREE"
    PRO = "PRO"
    ENTERPRISE = "ENTERPRISE"


class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("profiles.id"),
        nullable=False,
        comment="Profile that created the workspace",
    )
    plan: Mapped[Plan] = mapped_column(
        Enum(Plan, name="plan"),
        nullable=False,
        default=Plan.FREE,
    )

    # Business / contact metadata
    business_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    website: Mapped[str | None] = mapped_column(String(255), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    state: Mapped[str | None] = mapped_column(String(100), nullable=True)
    postal_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    country: Mapped[str | None] = mapped_column(String(100), nullable=True)
    tax_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    vat_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    registration_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    language: Mapped[str] = mapped_column(String(10), nullable=False, default="en")
    timezone: Mapped[str | None] = mapped_column(String(50), nullable=True, default="UTC")
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True, default="USD")
    industry: Mapped[str | None] = mapped_column(String(100), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    logo_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Soft-delete timestamp; NULL means not deleted
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    memberships: Mapped[list[Membership]] = relationship(  # type: ignore[name-defined]
        "Membership", back_populates="tenant"
    )
    invitations: Mapped[list[Invitation]] = relationship(  # type: ignore[name-defined]
        "Invitation", back_populates="tenant"
    )

    __table_args__ = (
        Index("ix_tenants_owner_id", "owner_id"),
        Index("ix_tenants_email", "email"),
    )

    def __repr__(self) -> str:
        return f"<Tenant id={self.id} name={self.name!r}>"
