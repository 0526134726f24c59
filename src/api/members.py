"""Team membership and invitations.

All /members routes operate on the caller's current tenant through a
ScopedGateway; role checks happen in the lifecycle service.

Routes:
    GET    /api/v1/members                      - Members and pending invitations
    POST   /api/v1/members/invitations          - Invite (or reissue) by email
    PATCH  /api/v1/members/{membership_id}/role - Change a member's role
    DELETE /api/v1/members/{membership_id}      - Remove a member
    POST   /api/v1/invitations/accept           - Accept an invitation token
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
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
from src.services.invitation_mailer import InvitationMailer, get_invitation_mailer
from src.services.membership_directory import MembershipView
from src.services.membership_lifecycle import (
    InvitationOut,
    MembershipLifecycleService,
    TeamOut,
)

router = APIRouter(prefix="/members", tags=["members"])
invitations_router = APIRouter(prefix="/invitations", tags=["members"])


class InviteMemberRequest(BaseModel):
    email: str = ""
    role: str = "MEMBER"


class UpdateRoleRequest(BaseModel):
    role: str = ""


class AcceptInvitationRequest(BaseModel):
    token: str = ""


def _service(
    db: AsyncSession,
    settings: Settings,
    mailer: InvitationMailer,
) -> MembershipLifecycleService:
    return MembershipLifecycleService(db, settings, mailer=mailer)


@router.get("", response_model=ActionResult[TeamOut])
async def list_members(
    gateway: ScopedGateway = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
    mailer: InvitationMailer = Depends(get_invitation_mailer),
) -> JSONResponse:
    result = await _service(gateway.db, settings, mailer).list_team(gateway)
    return to_response(result)


@router.post("/invitations", response_model=ActionResult[InvitationOut], status_code=status.HTTP_201_CREATED)
async def invite_member(
    body: InviteMemberRequest,
    gateway: ScopedGateway = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
    mailer: InvitationMailer = Depends(get_invitation_mailer),
) -> JSONResponse:
    result = await _service(gateway.db, settings, mailer).invite_member(gateway, body.email, body.role)
    return to_response(result, success_status=status.HTTP_201_CREATED)


@router.patch("/{membership_id}/role", response_model=ActionResult[MembershipView])
async def update_member_role(
    membership_id: str,
    body: UpdateRoleRequest,
    gateway: ScopedGateway = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
    mailer: InvitationMailer = Depends(get_invitation_mailer),
) -> JSONResponse:
    result = await _service(gateway.db, settings, mailer).update_member_role(
        gateway, membership_id, body.role
    )
    return to_response(result)


@router.delete("/{membership_id}", response_model=ActionResult[MembershipView])
async def remove_member(
    membership_id: str,
    gateway: ScopedGateway = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
    mailer: InvitationMailer = Depends(get_invitation_mailer),
) -> JSONResponse:
    result = await _service(gateway.db, settings, mailer).remove_member(gateway, membership_id)
    return to_response(result)


@invitations_router.post("/accept", response_model=ActionResult[MembershipView])
async def accept_invitation(
    body: AcceptInvitationRequest,
    principal: Principal | None = Depends(get_principal),
    db: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
    mailer: InvitationMailer = Depends(get_invitation_mailer),
) -> JSONResponse:
    result = await _service(db, settings, mailer).accept_invitation(principal, body.token)
    return to_response(result)
