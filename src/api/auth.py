"""Auth callback and sign-out.

The identity provider owns credentials and verification flows; after a
successful sign-in the frontend calls the callback so the application
profile (and, the first time, a default workspace) exists.

Routes:
    POST /api/v1/auth/callback  - ensure the caller's profile exists
    POST /api/v1/auth/sign-out  - revoke the bearer token
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.responses import to_response
from src.auth.dependencies import get_principal, get_session_handle
from src.auth.oidc import Principal, sign_out
from src.config import Settings, get_settings
from src.core.results import ActionResult, fail, ok
from src.database import get_db_session
from src.services.profile_bootstrap import ProfileBootstrapper, ProfileOut

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/callback", response_model=ActionResult[ProfileOut])
async def auth_callback(
    principal: Principal | None = Depends(get_principal),
    db: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    result = await ProfileBootstrapper(db, settings).bootstrap(principal)
    return to_response(result)


@router.post("/sign-out", response_model=ActionResult[dict[str, bool]])
async def auth_sign_out(
    session_handle: str | None = Depends(get_session_handle),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    if session_handle is None:
        return to_response(fail("You must be signed in", code="authentication_required"))
    revoked = await sign_out(session_handle, settings)
    if not revoked:
        return to_response(fail("Session is not active", code="authentication_required"))
    return to_response(ok({"signed_out": True}), success_status=status.HTTP_200_OK)
