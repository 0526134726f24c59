"""Policy helpers - role capabilities, tenant isolation and soft-delete filters.

This module is the enforcement point for three properties:

1. Role capabilities:
   Roles are a closed enum (src.models.membership.Role). The capability
   flags derived from a role are computed here, once, and attached to the
   membership views; no handler compares role strings inline.

2. Tenant isolation (mandatory):
   Every query that touches a tenant-scoped table MUST be filtered by
   tenant_id. tenant_predicate() / apply_tenant_filter() are the canonical
   way to add this filter; the ScopedGateway applies them for you.

3. Soft-delete exclusion:
   live_filter() is the single predicate that hides soft-deleted rows.

Capability matrix:
  Flag               | OWNER | ADMIN | MEMBER | BILLING_ADMIN
  -------------------|-------|-------|--------|--------------
  is_owner           |  yes  |  no   |   no   |     no
  is_admin           |  yes  |  yes  |   no   |     no
  can_manage_members |  yes  |  yes  |   no   |     no
  can_manage_settings|  yes  |  no   |   no   |     no
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, TypeVar

from sqlalchemy import ColumnElement, Select, and_, true

from src.models.membership import Role

T = TypeVar("T")

# Roles an invitation may grant; OWNER is only reachable by promotion
INVITABLE_ROLES: frozenset[Role] = frozenset({Role.ADMIN, Role.MEMBER, Role.BILLING_ADMIN})


@dataclass(frozen=True)
class RoleCapabilities:
    is_owner: bool
    is_admin: bool
    can_manage_members: bool
    can_manage_settings: bool


def capabilities_for(role: Role | None) -> RoleCapabilities:
    """Derive the capability flags for a role (None means no membership)."""
    is_owner = role == Role.OWNER
    is_admin = is_owner or role == Role.ADMIN
    return RoleCapabilities(
        is_owner=is_owner,
        is_admin=is_admin,
        can_manage_members=is_owner or is_admin,
        can_manage_settings=is_owner,
    )


def tenant_predicate(
    model_class: type,
    tenant_id: uuid.UUID,
    *criteria: ColumnElement[bool],
) -> ColumnElement[bool]:
    """Return ``model.tenant_id = :tenant_id`` AND any extra criteria.

    Raises AttributeError if the model does not have a tenant_id column,
    which forces developers to notice missing tenant scoping early.
    """
    if not hasattr(model_class, "tenant_id"):
        raise AttributeError(
            f"Model {model_class.__name__} does not have a tenant_id column. "
            "Every tenant-scoped model must have tenant_id."
        )
    condition = model_class.tenant_id == tenant_id  # type: ignore[attr-defined]
    if criteria:
        return and_(condition, *criteria)
    return condition


def apply_tenant_filter(stmt: Select[T], model_class: type, tenant_id: uuid.UUID) -> Select[T]:
    """Add WHERE tenant_id = :tenant_id to a SQLAlchemy select statement.

    Usage:
        stmt = apply_tenant_filter(select(Invitation), Invitation, tenant_id)
        result = await db.execute(stmt)
    """
    return stmt.where(tenant_predicate(model_class, tenant_id))


def live_filter(model_class: type) -> ColumnElement[bool]:
    """Predicate excluding soft-deleted rows (always true for models without deleted_at)."""
    if hasattr(model_class, "deleted_at"):
        return model_class.deleted_at.is_(None)  # type: ignore[attr-defined,no-any-return]
    return true()


def is_live(entity: Any) -> bool:
    """In-memory counterpart of live_filter() for an already loaded row."""
    return getattr(entity, "deleted_at", None) is None
