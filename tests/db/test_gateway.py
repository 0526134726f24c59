"""Tests for the tenant-scoped data gateway.

Coverage:
- Construction requires a resolved context
- Every built statement carries the tenant predicate
- new() forces tenant_id to the current tenant
- get()/all()/count() never see another tenant's rows
- require_admin / require_owner guards
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.errors import MissingTenantContextError, PermissionDeniedError
from src.db.gateway import ScopedGateway
from src.models.invitation import Invitation
from src.models.membership import Membership, Role
from src.services.tenant_context import ContextState, TenantContext


def _invitation_values(email: str) -> dict:
    return {
        "email": email,
        "role": Role.MEMBER,
        "token": email.replace("@", "-at-"),
        "expires_at": datetime.now(UTC) + timedelta(days=7),
    }


class TestConstruction:
    def test_unresolved_context_rejected(self, mock_db_session: AsyncSession) -> None:
        with pytest.raises(MissingTenantContextError) as exc_info:
            ScopedGateway(TenantContext.empty(), mock_db_session)
        assert exc_info.value.code == "missing_tenant_context"

    def test_no_tenant_context_rejected(self, mock_db_session: AsyncSession) -> None:
        with pytest.raises(MissingTenantContextError):
            ScopedGateway(TenantContext.empty(ContextState.NO_TENANT), mock_db_session)

    @pytest.mark.asyncio
    async def test_carries_caller_identity(self, bootstrap, gateway_for) -> None:
        principal = await bootstrap("owner@example.com")
        gateway = await gateway_for(principal)
        assert gateway.user_id == principal.id
        assert gateway.role == Role.OWNER
        assert gateway.capabilities.is_owner
        assert "tenant=" in repr(gateway)


class TestIsolation:
    @pytest.mark.asyncio
    async def test_statements_carry_tenant_predicate(self, bootstrap, gateway_for) -> None:
        gateway = await gateway_for(await bootstrap("sql@example.com"))
        compiled = str(gateway.select(Invitation).compile())
        assert "invitations.tenant_id =" in compiled
        compiled = str(gateway.update(Membership).values(role=Role.MEMBER).compile())
        assert "memberships.tenant_id =" in compiled

    @pytest.mark.asyncio
    async def test_rows_of_other_tenants_invisible(
        self, db_session: AsyncSession, bootstrap, gateway_for
    ) -> None:
        alice = await bootstrap("alice@example.com")
        bob = await bootstrap("bob@example.com")
        alice_gw = await gateway_for(alice)
        bob_gw = await gateway_for(bob)

        invite = alice_gw.new(Invitation, **_invitation_values("x@example.com"))
        await db_session.flush()

        assert await alice_gw.get(Invitation, invite.id) is not None
        assert await bob_gw.get(Invitation, invite.id) is None
        assert await bob_gw.all(Invitation) == []
        assert await bob_gw.count(Invitation) == 0
        assert await alice_gw.count(Invitation) == 1

    @pytest.mark.asyncio
    async def test_new_overrides_tenant_id(
        self, db_session: AsyncSession, bootstrap, gateway_for
    ) -> None:
        alice = await bootstrap("alice@example.com")
        bob = await bootstrap("bob@example.com")
        alice_gw = await gateway_for(alice)
        bob_gw = await gateway_for(bob)

        invite = alice_gw.new(
            Invitation,
            tenant_id=bob_gw.tenant_id,
            **_invitation_values("y@example.com"),
        )
        await db_session.flush()
        assert invite.tenant_id == alice_gw.tenant_id

    @pytest.mark.asyncio
    async def test_all_orders_and_filters(
        self, db_session: AsyncSession, bootstrap, gateway_for
    ) -> None:
        owner = await bootstrap("owner@example.com")
        gateway = await gateway_for(owner)
        for email in ("b@example.com", "a@example.com"):
            gateway.new(Invitation, **_invitation_values(email))
        await db_session.flush()

        rows = await gateway.all(Invitation, order_by=(Invitation.email.asc(),))
        assert [r.email for r in rows] == ["a@example.com", "b@example.com"]

        rows = await gateway.all(Invitation, Invitation.email == "b@example.com")
        assert [r.email for r in rows] == ["b@example.com"]

    @pytest.mark.asyncio
    async def test_tenant_returns_current_workspace(self, bootstrap, gateway_for) -> None:
        principal = await bootstrap("ws@example.com", name="Ada")
        gateway = await gateway_for(principal)
        tenant = await gateway.tenant()
        assert tenant is not None
        assert tenant.id == gateway.tenant_id
        assert tenant.name == "Ada's workspace"


class TestGuards:
    @pytest.mark.asyncio
    async def test_member_fails_admin_and_owner_guards(
        self, db_session: AsyncSession, bootstrap, gateway_for, add_member
    ) -> None:
        owner = await bootstrap("owner@example.com")
        owner_gw = await gateway_for(owner)
        member = await bootstrap("member@example.com")
        await add_member(member, owner_gw.tenant_id, Role.MEMBER)

        from src.services.tenant_service import TenantService

        await TenantService(db_session).switch_tenant(member, owner_gw.tenant_id)
        member_gw = await gateway_for(member)
        assert member_gw.tenant_id == owner_gw.tenant_id

        with pytest.raises(PermissionDeniedError):
            member_gw.require_admin()
        with pytest.raises(PermissionDeniedError, match="Only workspace owners"):
            member_gw.require_owner()

    @pytest.mark.asyncio
    async def test_admin_passes_admin_guard_only(
        self, db_session: AsyncSession, bootstrap, gateway_for, add_member
    ) -> None:
        owner = await bootstrap("owner@example.com")
        owner_gw = await gateway_for(owner)
        admin = await bootstrap("admin@example.com")
        await add_member(admin, owner_gw.tenant_id, Role.ADMIN)

        from src.services.tenant_service import TenantService

        await TenantService(db_session).switch_tenant(admin, owner_gw.tenant_id)
        admin_gw = await gateway_for(admin)

        admin_gw.require_admin()
        with pytest.raises(PermissionDeniedError):
            admin_gw.require_owner("nope")

    @pytest.mark.asyncio
    async def test_owner_passes_both(self, bootstrap, gateway_for) -> None:
        gateway = await gateway_for(await bootstrap("o@example.com"))
        gateway.require_admin()
        gateway.require_owner()
