"""Tenant context endpoints.

Routes:
    GET  /api/v1/context           - Lenient context (empty when signed out)
    GET  /api/v1/context/required  - Strict context (307 to setup/login otherwise)
    POST /api/v1/context/refresh   - Recompute tenant list and current tenant
    POST /api/v1/context/switch    - Change the current tenant
    PATCH /api/v1/profile          - Update display name / avatar
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.responses import to_response
from src.auth.dependencies import get_principal, get_tenant_context, require_tenant_context
from src.auth.oidc import Principal
from src.config import Settings, get_settings
from src.core.results import ActionResult
from src.database import get_db_session
from src.services.membership_directory import TenantWithPermissions
from src.services.profile_bootstrap import ProfileBootstrapper, ProfileOut
from src.services.tenant_context import TenantContext, TenantContextResolver, TenantRefresh
from src.services.tenant_service import TenantService

router = APIRouter(prefix="/context", tags=["context"])
profile_router = APIRouter(prefix="/profile", tags=["profile"])


class SwitchTenantRequest(BaseModel):
    tenant_id: str = ""


class UpdateProfileRequest(BaseModel):
    name: str | None = None
    avatar_url: str | None = None


@router.get("", response_model=TenantContext)
async def get_context(ctx: TenantContext = Depends(get_tenant_context)) -> TenantContext:
    return ctx


@router.get("/required", response_model=TenantContext)
async def get_required_context(ctx: TenantContext = Depends(require_tenant_context)) -> TenantContext:
    return ctx


@router.post("/refresh", response_model=ActionResult[TenantRefresh])
async def refresh_context(
    principal: Principal | None = Depends(get_principal),
    db: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    result = await TenantContextResolver(db, settings).refresh_tenants(principal)
    return to_response(result)


@router.post("/switch", response_model=ActionResult[TenantWithPermissions])
async def switch_context(
    body: SwitchTenantRequest,
    principal: Principal | None = Depends(get_principal),
    db: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    result = await TenantService(db, settings).switch_tenant(principal, body.tenant_id)
    return to_response(result)


@profile_router.patch("", response_model=ActionResult[ProfileOut])
async def update_profile(
    body: UpdateProfileRequest,
    principal: Principal | None = Depends(get_principal),
    db: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    result = await ProfileBootstrapper(db, settings).update_profile(
        principal, name=body.name, avatar_url=body.avatar_url
    )
    return to_response(result)
