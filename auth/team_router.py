"""
Team endpoints: members, roles, invitations
"""

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from auth.dependencies import AuthContext, get_auth_context, get_tenant_context, require_permission
from auth.permissions import Permission
from auth.schemas import (
    AcceptInvitationRequest, InvitationCreate, InvitationResponse, TeamMemberResponse,
    TransferOwnershipRequest, UpdateRoleRequest
)
from auth.team_service import TeamService
from database.connection import get_db

router = APIRouter(prefix="/api/v1/team", tags=["Team"])


@router.get("/members", response_model=List[TeamMemberResponse])
async def list_members(
    ctx: AuthContext = Depends(require_permission(Permission.USERS_READ)),
    db: Session = Depends(get_db)
):
    return [TeamMemberResponse(**vars(m)) for m in TeamService(db).list_members(ctx.tenant_id)]


@router.put("/members/{user_id}/role", status_code=status.HTTP_204_NO_CONTENT)
async def update_member_role(
    user_id: int,
    body: UpdateRoleRequest,
    ctx: AuthContext = Depends(require_permission(Permission.USERS_MANAGE)),
    db: Session = Depends(get_db)
):
    TeamService(db).update_member_role(ctx.tenant_id, user_id, body.role)


@router.delete("/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    user_id: int,
    ctx: AuthContext = Depends(require_permission(Permission.USERS_MANAGE)),
    db: Session = Depends(get_db)
):
    TeamService(db).remove_member(ctx.tenant_id, ctx.user.id, user_id)


@router.post("/transfer-ownership", status_code=status.HTTP_204_NO_CONTENT)
async def transfer_ownership(
    body: TransferOwnershipRequest,
    ctx: AuthContext = Depends(get_tenant_context),
    db: Session = Depends(get_db)
):
    """Owner only; the previous owner becomes Admin."""
    TeamService(db).transfer_ownership(ctx.tenant_id, ctx.user.id, body.new_owner_id)


@router.get("/invitations", response_model=List[InvitationResponse])
async def list_invitations(
    ctx: AuthContext = Depends(require_permission(Permission.USERS_MANAGE)),
    db: Session = Depends(get_db)
):
    return TeamService(db).list_pending_invitations(ctx.tenant_id)


@router.post("/invitations", response_model=InvitationResponse, status_code=status.HTTP_201_CREATED)
async def create_invitation(
    body: InvitationCreate,
    ctx: AuthContext = Depends(require_permission(Permission.USERS_MANAGE)),
    db: Session = Depends(get_db)
):
    return await TeamService(db).create_invitation(ctx.tenant_id, ctx.user, body.email, body.role)


@router.delete("/invitations/{invitation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_invitation(
    invitation_id: int,
    ctx: AuthContext = Depends(require_permission(Permission.USERS_MANAGE)),
    db: Session = Depends(get_db)
):
    TeamService(db).cancel_invitation(ctx.tenant_id, invitation_id)


@router.post("/invitations/accept")
async def accept_invitation(
    body: AcceptInvitationRequest,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db)
):
    """Any authenticated user; the token must match their email."""
    membership = TeamService(db).accept_invitation(body.token, ctx.user)
    return {"tenant_id": membership.tenant_id, "role": membership.role}
