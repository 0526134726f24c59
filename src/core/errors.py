"""Domain exceptions for tenant context and membership operations.

Every exception carries a stable machine-readable ``code`` and a user-safe
message. Services raise these; the action boundary (src.core.results) and
the API layer translate them. Messages never reveal whether a resource
exists in a tenant the caller cannot see.
"""

from __future__ import annotations


class TenancyError(Exception):
    """Base class for errors that may be shown to the caller verbatim."""

    code = "tenancy_error"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class AuthenticationRequiredError(TenancyError):
    code = "authentication_required"


class PermissionDeniedError(TenancyError):
    """Role or ownership guard failed."""

    code = "permission_denied"


class InvariantViolationError(TenancyError):
    """The write would break the sole-owner or sole-workspace invariant."""

    code = "invariant_violation"


class NotFoundError(TenancyError):
    code = "not_found"


class TenantAccessDeniedError(TenancyError):
    code = "tenant_access_denied"

    def __init__(self, message: str = "Access denied to this tenant") -> None:
        super().__init__(message)


class MissingTenantContextError(TenancyError):
    """A scoped gateway was requested without a resolved user and tenant."""

    code = "missing_tenant_context"

    def __init__(self, message: str = "User must be authenticated and have a tenant") -> None:
        super().__init__(message)


class InvitationError(TenancyError):
    """Invitation acceptance failed; ``code`` says why.

    Codes: invitation_not_found, authentication_required, email_mismatch.
    """

    code = "invitation_not_found"
