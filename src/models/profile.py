"""Profile model - the application-side record of an identity.

One row per principal, keyed by the identity provider's user id. Created by
the profile bootstrapper on first verified sign-in and never deleted here.
The current_tenant_id pointer is advisory: every context resolution
re-validates it against live memberships.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.database import Base


class Profile(Base):
    __tablename__ = "profiles"

    # Same value as the principal id issued by the identity provider
    id: Mapped[uuid.UUID] = mapped_column(primary_key=True)

    email: Mapped[str] = mapped_column(String(320), nullable=False, index=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    current_tenant_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey(
            "tenants.id",
            ondelete="SET NULL",
            use_alter=True,
            name="fk_profiles_current_tenant_id",
        ),
        nullable=True,
    )
    email_confirmed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    memberships: Mapped[list[Membership]] = relationship(  # type: ignore[name-defined]
        "Membership", back_populates="profile"
    )

    def __repr__(self) -> str:
        return f"<Profile id={self.id} email={self.email!r}>"
