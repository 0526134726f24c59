"""Create the tenancy core tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19

Adds:
- profiles - application record per identity (id = principal id)
- tenants - workspaces, soft-deleted via deleted_at
- memberships - (profile, tenant) unique join with role and status
- invitations - (tenant, email) unique, single-use token with expiry
- audit_logs - append-only record of tenant/membership mutations

profiles.current_tenant_id and tenants.owner_id reference each other, so the
pointer FK is added after both tables exist.
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

role_enum = postgresql.ENUM(
    "OWNER", "ADMIN", "MEMBER", "BILLING_ADMIN", name="role", create_type=False
)
status_enum = postgresql.ENUM(
    "ACTIVE", "INVITED", "REMOVED", name="membership_status", create_type=False
)
plan_enum = postgresql.ENUM("FREE", "PRO", "ENTERPRISE", name="plan", create_type=False)


def upgrade() -> None:
    bind = op.get_bind()
    role_enum.create(bind, checkfirst=True)
    status_enum.create(bind, checkfirst=True)
    plan_enum.create(bind, checkfirst=True)

    op.create_table(
        "profiles",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("avatar_url", sa.String(500), nullable=True),
        sa.Column("current_tenant_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("email_confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_profiles_email", "profiles", ["email"])

    op.create_table(
        "tenants",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column(
            "owner_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("profiles.id"),
            nullable=False,
            comment="Profile that created the workspace",
        ),
        sa.Column("plan", plan_enum, nullable=False, server_default="FREE"),
        # Business / contact metadata
        sa.Column("business_name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("website", sa.String(255), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("city", sa.String(100), nullable=True),
        sa.Column("state", sa.String(100), nullable=True),
        sa.Column("postal_code", sa.String(20), nullable=True),
        sa.Column("country", sa.String(100), nullable=True),
        sa.Column("tax_id", sa.String(50), nullable=True),
        sa.Column("vat_number", sa.String(50), nullable=True),
        sa.Column("registration_number", sa.String(50), nullable=True),
        sa.Column("language", sa.String(10), nullable=False, server_default="en"),
        sa.Column("timezone", sa.String(50), nullable=True, server_default="UTC"),
        sa.Column("currency", sa.String(3), nullable=True, server_default="USD"),
        sa.Column("industry", sa.String(100), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("logo_url", sa.String(500), nullable=True),
        # Soft delete
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_tenants_owner_id", "tenants", ["owner_id"])
    op.create_index("ix_tenants_email", "tenants", ["email"])

    op.create_foreign_key(
        "fk_profiles_current_tenant_id",
        "profiles",
        "tenants",
        ["current_tenant_id"],
        ["id"],
        ondelete="SET NULL",
    )

    op.create_table(
        "memberships",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("profile_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("role", role_enum, nullable=False),
        sa.Column("status", status_enum, nullable=False, server_default="ACTIVE"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("profile_id", "tenant_id", name="uq_memberships_profile_tenant"),
    )
    op.create_index("ix_memberships_tenant_role", "memberships", ["tenant_id", "role"])
    op.create_index("ix_memberships_profile_status", "memberships", ["profile_id", "status"])

    op.create_table(
        "invitations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("role", role_enum, nullable=False),
        sa.Column(
            "token",
            sa.String(255),
            nullable=False,
            unique=True,
            comment="Hex-encoded random token, rotated on every reissue",
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("tenant_id", "email", name="uq_invitations_tenant_email"),
    )
    op.create_index("ix_invitations_expires_at", "invitations", ["expires_at"])

    op.create_table(
        "audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column(
            "actor_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("profiles.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("target", sa.String(255), nullable=False, comment="Id or email of the resource acted upon"),
        sa.Column("meta", sa.JSON(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_audit_logs_tenant_created", "audit_logs", ["tenant_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_tenant_created", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_invitations_expires_at", table_name="invitations")
    op.drop_table("invitations")
    op.drop_index("ix_memberships_profile_status", table_name="memberships")
    op.drop_index("ix_memberships_tenant_role", table_name="memberships")
    op.drop_table("memberships")
    op.drop_constraint("fk_profiles_current_tenant_id", "profiles", type_="foreignkey")
    op.drop_index("ix_tenants_email", table_name="tenants")
    op.drop_index("ix_tenants_owner_id", table_name="tenants")
    op.drop_table("tenants")
    op.drop_index("ix_profiles_email", table_name="profiles")
    op.drop_table("profiles")

    bind = op.get_bind()
    plan_enum.drop(bind, checkfirst=True)
    status_enum.drop(bind, checkfirst=True)
    role_enum.drop(bind, checkfirst=True)
