"""Workspace (tenant) management.

Routes:
    POST   /api/v1/tenants                   - Create a workspace
    DELETE /api/v1/tenants/{tenant_id}       - Soft-delete an owned workspace
    PATCH  /api/v1/tenants/current/settings  - Update current workspace metadata (owner)
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.responses import to_response
from src.auth.dependencies import get_gateway, get_principal
from src.auth.oidc import Principal
from src.config import Settings, get_settings
from src.core.results import ActionResult
from src.database import get_db_session
from src.db.gateway import ScopedGateway
from src.services.membership_directory import TenantView, TenantWithPermissions
from src.services.tenant_service import DeletedTenant, TenantService

router = APIRouter(prefix="/tenants", tags=["tenants"])


class CreateTenantRequest(BaseModel):
    name: str = ""


@router.post("", response_model=ActionResult[TenantWithPermissions], status_code=status.HTTP_201_CREATED)
async def create_tenant(
    body: CreateTenantRequest,
    principal: Principal | None = Depends(get_principal),
    db: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    result = await TenantService(db, settings).create_tenant(principal, body.name)
    return to_response(result, success_status=status.HTTP_201_CREATED)


@router.patch("/current/settings", response_model=ActionResult[TenantView])
async def update_current_tenant_settings(
    patch: dict[str, Any] = Body(...),
    gateway: ScopedGateway = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    result = await TenantService(gateway.db, settings).update_tenant_settings(gateway, patch)
    return to_response(result)


@router.delete("/{tenant_id}", response_model=ActionResult[DeletedTenant])
async def delete_tenant(
    tenant_id: str,
    principal: Principal | None = Depends(get_principal),
    db: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    result = await TenantService(db, settings).delete_tenant(principal, tenant_id)
    return to_response(result)
