"""ActionResult -> HTTP response mapping.

Route handlers return the service's ActionResult unchanged as the body; only
the status code is derived here from the failure code.
"""

from __future__ import annotations

from typing import Any

from fastapi import status
from fastapi.responses import JSONResponse

from src.core.results import ActionResult

_STATUS_BY_CODE: dict[str, int] = {
    "validation_error": status.HTTP_400_BAD_REQUEST,
    "authentication_required": status.HTTP_401_UNAUTHORIZED,
    "missing_tenant_context": status.HTTP_401_UNAUTHORIZED,
    "permission_denied": status.HTTP_403_FORBIDDEN,
    "tenant_access_denied": status.HTTP_403_FORBIDDEN,
    "email_mismatch": status.HTTP_403_FORBIDDEN,
    "not_found": status.HTTP_404_NOT_FOUND,
    "invitation_not_found": status.HTTP_404_NOT_FOUND,
    "invariant_violation": status.HTTP_409_CONFLICT,
    "storage_error": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_for(result: ActionResult[Any], success_status: int = status.HTTP_200_OK) -> int:
    if result.success:
        return success_status
    return _STATUS_BY_CODE.get(result.code or "", status.HTTP_400_BAD_REQUEST)


def to_response(result: ActionResult[Any], success_status: int = status.HTTP_200_OK) -> JSONResponse:
    return JSONResponse(
        status_code=status_for(result, success_status),
        content=result.model_dump(mode="json"),
    )
