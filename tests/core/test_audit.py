"""Tests for the audit log service."""

from __future__ import annotations

import uuid
from unittest.mock import MagicMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit import AuditService
from src.models.audit import AuditLog
from src.models.tenant import Tenant


@pytest.mark.asyncio
async def test_log_writes_entry(db_session: AsyncSession, bootstrap) -> None:
    principal = await bootstrap("audit@example.com")
    tenant_id = (await db_session.execute(select(Tenant.id))).scalar_one()

    entry = await AuditService(db_session).log(
        tenant_id=tenant_id,
        actor_id=principal.id,
        action="membership.remove",
        target="x" * 400,
        meta={"role": "MEMBER"},
    )

    assert entry is not None
    rows = (
        await db_session.execute(select(AuditLog).where(AuditLog.action == "membership.remove"))
    ).scalars().all()
    assert len(rows) == 1
    assert rows[0].meta == {"role": "MEMBER"}
    assert len(rows[0].target) == 255


@pytest.mark.asyncio
async def test_bootstrap_is_audited(db_session: AsyncSession, bootstrap) -> None:
    principal = await bootstrap("first@example.com")
    rows = (await db_session.execute(select(AuditLog))).scalars().all()
    assert [r.action for r in rows] == ["tenant.create"]
    assert rows[0].actor_id == principal.id
    assert rows[0].meta["source"] == "bootstrap"


@pytest.mark.asyncio
async def test_write_failure_is_swallowed(mock_db_session: AsyncSession) -> None:
    mock_db_session.begin_nested = MagicMock(  # type: ignore[method-assign]
        side_effect=OperationalError("INSERT", {}, Exception("disk full"))
    )
    entry = await AuditService(mock_db_session).log(
        tenant_id=uuid.uuid4(),
        action="tenant.delete",
        target="t",
    )
    assert entry is None
