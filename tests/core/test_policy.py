"""Tests for role capabilities, tenant filters and soft-delete predicates."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from types import SimpleNamespace

import pytest
from sqlalchemy import select

from src.core.policy import (
    INVITABLE_ROLES,
    apply_tenant_filter,
    capabilities_for,
    is_live,
    live_filter,
    tenant_predicate,
)
from src.models.invitation import Invitation
from src.models.membership import Membership, Role
from src.models.profile import Profile
from src.models.tenant import Tenant


class TestCapabilities:
    def test_owner_has_every_capability(self) -> None:
        caps = capabilities_for(Role.OWNER)
        assert caps.is_owner
        assert caps.is_admin
        assert caps.can_manage_members
        assert caps.can_manage_settings

    def test_admin_manages_members_but_not_settings(self) -> None:
        caps = capabilities_for(Role.ADMIN)
        assert not caps.is_owner
        assert caps.is_admin
        assert caps.can_manage_members
        assert not caps.can_manage_settings

    @pytest.mark.parametrize("role", [Role.MEMBER, Role.BILLING_ADMIN, None])
    def test_member_equivalents_have_no_elevated_flags(self, role: Role | None) -> None:
        caps = capabilities_for(role)
        assert caps == capabilities_for(Role.MEMBER)
        assert not (caps.is_owner or caps.is_admin or caps.can_manage_members or caps.can_manage_settings)

    def test_owner_is_never_invitable(self) -> None:
        assert Role.OWNER not in INVITABLE_ROLES
        assert INVITABLE_ROLES == {Role.ADMIN, Role.MEMBER, Role.BILLING_ADMIN}


class TestTenantFilter:
    def test_predicate_requires_tenant_id_column(self) -> None:
        with pytest.raises(AttributeError, match="does not have a tenant_id column"):
            tenant_predicate(Profile, uuid.uuid4())

    def test_apply_tenant_filter_adds_where_clause(self) -> None:
        tenant_id = uuid.uuid4()
        stmt = apply_tenant_filter(select(Invitation), Invitation, tenant_id)
        compiled = str(stmt.compile(compile_kwargs={"literal_binds": False}))
        assert "invitations.tenant_id = :tenant_id_1" in compiled

    def test_predicate_conjoins_extra_criteria(self) -> None:
        clause = tenant_predicate(Membership, uuid.uuid4(), Membership.role == Role.OWNER)
        compiled = str(clause.compile())
        assert "memberships.tenant_id" in compiled
        assert "memberships.role" in compiled
        assert " AND " in compiled


class TestSoftDelete:
    def test_live_filter_on_soft_deletable_model(self) -> None:
        assert "tenants.deleted_at IS NULL" in str(live_filter(Tenant).compile())

    def test_live_filter_is_true_without_deleted_at(self) -> None:
        assert str(live_filter(Membership).compile()) == "true"

    def test_is_live(self) -> None:
        assert is_live(SimpleNamespace(deleted_at=None))
        assert not is_live(SimpleNamespace(deleted_at=datetime.now(UTC)))
        assert is_live(SimpleNamespace())
