"""Uniform result shape for lifecycle and tenant operations.

Every operation exposed to the API layer returns an ActionResult instead of
raising:

    {"success": true,  "data": {...}}
    {"success": false, "error": "...", "code": "...", "field_errors": {...}}

The action_boundary decorator is the single place where exceptions are
converted. Input validation errors carry per-field messages, domain errors
carry their stable code and user-safe message, and storage failures are
logged with full detail but surfaced only as a generic retryable message.
"""

from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable
from typing import Any, Generic, ParamSpec, TypeVar

import structlog
from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.errors import TenancyError

log = structlog.get_logger(__name__)

T = TypeVar("T")
P = ParamSpec("P")

STORAGE_ERROR_MESSAGE = "Something went wrong while saving your changes. Please try again."


class ActionResult(BaseModel, Generic[T]):
    success: bool
    data: T | None = None
    error: str | None = None
    code: str | None = None
    field_errors: dict[str, list[str]] | None = None


def ok(data: T) -> ActionResult[T]:
    return ActionResult(success=True, data=data)


def fail(
    error: str,
    *,
    code: str,
    field_errors: dict[str, list[str]] | None = None,
) -> ActionResult[Any]:
    return ActionResult(success=False, error=error, code=code, field_errors=field_errors)


def field_errors_from(exc: ValidationError) -> dict[str, list[str]]:
    """Flatten a pydantic ValidationError into {field: [messages]}."""
    errors: dict[str, list[str]] = {}
    for err in exc.errors():
        field = ".".join(str(part) for part in err["loc"]) or "__root__"
        errors.setdefault(field, []).append(err["msg"])
    return errors


def _session_of(args: tuple[Any, ...]) -> AsyncSession | None:
    # Bound service methods keep their session on self.db
    if args:
        db = getattr(args[0], "db", None)
        if isinstance(db, AsyncSession):
            return db
    return None


def action_boundary(
    action: str,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[ActionResult[T]]]]:
    """Decorate an async service method so it returns an ActionResult.

    Usage:
        class TenantService:
            @action_boundary("tenant.create")
            async def create_tenant(self, principal, name) -> TenantOut:
                ...

    On a storage failure the owning service session is rolled back so no
    partial writes from the failed operation survive the request.
    """

    def decorator(fn: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[ActionResult[T]]]:
        @functools.wraps(fn)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> ActionResult[T]:
            try:
                data = await fn(*args, **kwargs)
            except ValidationError as exc:
                log.info("action.invalid_input", action=action, error_count=exc.error_count())
                return fail(
                    "Please correct the highlighted fields.",
                    code="validation_error",
                    field_errors=field_errors_from(exc),
                )
            except TenancyError as exc:
                log.info("action.rejected", action=action, code=exc.code, reason=exc.message)
                return fail(exc.message, code=exc.code)
            except SQLAlchemyError as exc:
                log.error(
                    "action.storage_failed",
                    action=action,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                db = _session_of(args)
                if db is not None:
                    await db.rollback()
                return fail(STORAGE_ERROR_MESSAGE, code="storage_error")
            return ok(data)

        return wrapper

    return decorator
