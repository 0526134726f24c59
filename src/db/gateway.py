"""Tenant-scoped data gateway.

A ScopedGateway can only be built from a resolved TenantContext, and every
statement it builds carries ``tenant_id = :current_tenant`` plus the
soft-delete filter. Code holding a gateway has no way to query tenant-owned
tables without the tenant predicate.

Usage:
    gateway = ScopedGateway(ctx, db)
    gateway.require_admin()
    invitations = await gateway.all(Invitation, Invitation.accepted_at.is_(None))

require_admin() / require_owner() raise PermissionDeniedError. They are the
last line of defence and run even when the UI already hid the action.
"""

from __future__ import annotations

import uuid
from typing import Any, TypeVar

from sqlalchemy import ColumnElement, Select, Update, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.errors import MissingTenantContextError, PermissionDeniedError
from src.core.policy import RoleCapabilities, capabilities_for, live_filter, tenant_predicate
from src.models.membership import Role
from src.models.tenant import Tenant
from src.services.tenant_context import TenantContext

M = TypeVar("M")


class ScopedGateway:
    def __init__(self, ctx: TenantContext, db: AsyncSession) -> None:
        if ctx.user is None or ctx.current_tenant is None:
            raise MissingTenantContextError()
        self._db = db
        self._tenant_id = ctx.current_tenant.tenant.id
        self._user_id = ctx.user.id
        self._role = ctx.current_tenant.membership.role

    @property
    def db(self) -> AsyncSession:
        return self._db

    @property
    def tenant_id(self) -> uuid.UUID:
        return self._tenant_id

    @property
    def user_id(self) -> uuid.UUID:
        return self._user_id

    @property
    def role(self) -> Role:
        return self._role

    @property
    def capabilities(self) -> RoleCapabilities:
        return capabilities_for(self._role)

    # ------------------------------------------------------------------ #
    # Guards
    # ------------------------------------------------------------------ #

    def require_admin(self, message: str = "You don't have permission to perform this action") -> None:
        if not self.capabilities.is_admin:
            raise PermissionDeniedError(message)

    def require_owner(self, message: str = "Only workspace owners can perform this action") -> None:
        if not self.capabilities.is_owner:
            raise PermissionDeniedError(message)

    # ------------------------------------------------------------------ #
    # Statement builders
    # ------------------------------------------------------------------ #

    def where(self, model: type, *criteria: ColumnElement[bool]) -> ColumnElement[bool]:
        """Tenant predicate AND soft-delete filter AND caller criteria."""
        return tenant_predicate(model, self._tenant_id, live_filter(model), *criteria)

    def select(self, model: type[M], *criteria: ColumnElement[bool]) -> Select[tuple[M]]:
        return select(model).where(self.where(model, *criteria))

    def update(self, model: type, *criteria: ColumnElement[bool]) -> Update:
        return update(model).where(self.where(model, *criteria))

    def new(self, model: type[M], **values: Any) -> M:
        """Instantiate a tenant-owned row bound to the current tenant and add it."""
        values["tenant_id"] = self._tenant_id
        instance = model(**values)
        self._db.add(instance)
        return instance

    # ------------------------------------------------------------------ #
    # Execution helpers
    # ------------------------------------------------------------------ #

    async def get(self, model: type[M], entity_id: uuid.UUID) -> M | None:
        """Fetch one row by id, or None if it belongs to another tenant."""
        result = await self._db.execute(self.select(model, model.id == entity_id))  # type: ignore[attr-defined]
        return result.scalar_one_or_none()

    async def all(self, model: type[M], *criteria: ColumnElement[bool], order_by: tuple[Any, ...] = ()) -> list[M]:
        stmt = self.select(model, *criteria)
        if order_by:
            stmt = stmt.order_by(*order_by)
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def count(self, model: type, *criteria: ColumnElement[bool]) -> int:
        result = await self._db.execute(
            select(func.count()).select_from(model).where(self.where(model, *criteria))
        )
        return result.scalar() or 0

    async def tenant(self) -> Tenant | None:
        """The current tenant row itself (Tenant has no tenant_id column)."""
        result = await self._db.execute(
            select(Tenant).where(Tenant.id == self._tenant_id, live_filter(Tenant))
        )
        return result.scalar_one_or_none()

    def __repr__(self) -> str:
        return f"<ScopedGateway tenant={self._tenant_id} user={self._user_id} role={self._role}>"
