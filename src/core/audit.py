"""Audit logging service.

Provides a simple, non-blocking interface for writing audit log entries.
Every tenant and membership mutation is recorded (create/delete tenant,
invite, accept, role change, removal, settings update).

Design:
- The entry is written inside a SAVEPOINT so that a failed audit write does
  not roll back the business operation. We log the failure, but do not
  surface it to the user.
- The service is a plain class (not a singleton) to keep it testable.
"""

from __future__ import annotations

import uuid
from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.audit import AuditLog

log = structlog.get_logger(__name__)

_TARGET_MAX_CHARS = 255


class AuditService:
    """Write-only audit log service.

    Usage:
        audit = AuditService(db)
        await audit.log(
            tenant_id=tenant_id,
            actor_id=profile_id,
            action="membership.remove",
            target=str(membership_id),
        )
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def log(
        self,
        *,
        tenant_id: uuid.UUID,
        action: str,
        target: str,
        actor_id: uuid.UUID | None = None,
        meta: dict[str, Any] | None = None,
    ) -> AuditLog | None:
        """Write an audit log entry and flush it to the DB.

        This does not commit - the calling code owns the transaction boundary.
        Returns None when the write failed.
        """
        entry = AuditLog(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action=action,
            target=target[:_TARGET_MAX_CHARS],
            meta=meta or {},
        )
        try:
            async with self._db.begin_nested():
                self._db.add(entry)
        except SQLAlchemyError as exc:
            log.error("audit.write_failed", error=str(exc), action=action)
            # Do not re-raise - audit failure must not crash the request
            return None
        return entry
