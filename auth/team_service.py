# auth/team_service.py
"""
Team management inside a tenant: members, roles, invitations and
ownership transfer.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional, Union

from sqlalchemy.orm import Session

from auth.models import RefreshToken, Tenant, TenantInvitation, TenantMembership, User
from auth.permissions import UserRole
from auth.security import generate_opaque_token, hash_token
from config import INVITATION_EXPIRE_DAYS
from services.email_service import EmailService, get_email_service
from utils.exceptions import BadRequest, NotAuthorized, NotFound
from utils.logging_config import get_logger
from utils.timezone import ensure_utc, now_utc

logger = get_logger(__name__)


@dataclass
class TeamMember:
    user_id: int
    email: str
    first_name: str
    last_name: str
    role: str
    joined_at: object = None


class TeamService:

    def __init__(self, db: Session, email_service: Optional[EmailService] = None):
        self.db = db
        self.email_service = email_service or get_email_service()

    # ==================================================
    # MEMBERS
    # ==================================================

    def list_members(self, tenant_id: int) -> List[TeamMember]:
        rows = (
            self.db.query(TenantMembership, User)
            .join(User, User.id == TenantMembership.user_id)
            .filter(TenantMembership.tenant_id == tenant_id, TenantMembership.is_active.is_(True))
            .order_by(TenantMembership.created_at)
            .all()
        )
        return [
            TeamMember(
                user_id=user.id,
                email=user.email,
                first_name=user.first_name,
                last_name=user.last_name,
                role=membership.role,
                joined_at=membership.created_at,
            )
            for membership, user in rows
        ]

    def update_member_role(self, tenant_id: int, user_id: int, role: Union[UserRole, str]) -> TenantMembership:
        role = UserRole(role)
        if role == UserRole.OWNER:
            raise BadRequest("Use ownership transfer to assign the Owner role")

        membership = self._active_membership(tenant_id, user_id)
        if membership is None:
            raise NotFound("Team member not found")
        if membership.role == UserRole.OWNER.value:
            raise BadRequest("The owner's role cannot be changed")

        membership.role = role.value
        revoked = self._revoke_tenant_sessions(tenant_id, user_id)
        self.db.commit()
        logger.info("member_role_updated", tenant_id=tenant_id, user_id=user_id, role=role.value,
                    sessions_revoked=revoked)
        return membership

    def remove_member(self, tenant_id: int, acting_user_id: int, user_id: int) -> None:
        if acting_user_id == user_id:
            raise BadRequest("You cannot remove yourself from the workspace")

        membership = self._active_membership(tenant_id, user_id)
        if membership is None:
            raise NotFound("Team member not found")
        if membership.role == UserRole.OWNER.value:
            raise BadRequest("The owner cannot be removed")

        membership.is_active = False
        revoked = self._revoke_tenant_sessions(tenant_id, user_id)
        self.db.commit()
        logger.info("member_removed", tenant_id=tenant_id, user_id=user_id, by=acting_user_id,
                    sessions_revoked=revoked)

    def transfer_ownership(self, tenant_id: int, current_owner_id: int, new_owner_id: int) -> None:
        self.verify_owner_role(tenant_id, current_owner_id)

        if current_owner_id == new_owner_id:
            raise BadRequest("You already own this workspace")

        new_owner = self._active_membership(tenant_id, new_owner_id)
        if new_owner is None:
            raise BadRequest("The new owner must be an active member of the workspace")

        current = self._active_membership(tenant_id, current_owner_id)
        new_owner.role = UserRole.OWNER.value
        current.role = UserRole.ADMIN.value
        self.db.commit()
        logger.info("ownership_transferred", tenant_id=tenant_id, old=current_owner_id, new=new_owner_id)

    def verify_owner_role(self, tenant_id: int, user_id: int) -> None:
        membership = self._active_membership(tenant_id, user_id)
        if membership is None or membership.role != UserRole.OWNER.value:
            raise NotAuthorized("Only the workspace owner can do this")

    # ==================================================
    # INVITATIONS
    # ==================================================

    async def create_invitation(self, tenant_id: int, invited_by: User, email: str,
                                role: Union[UserRole, str]) -> TenantInvitation:
        """
        Invites an email address.

        Existing users are added (or re-activated) directly and get an
        `accepted` invitation back; everyone else gets a pending invitation
        by email.
        """
        role = UserRole(role)
        email = email.strip().lower()

        if role == UserRole.OWNER:
            raise BadRequest("Cannot invite someone as Owner")

        existing_user = self.db.query(User).filter(User.email == email).first()
        if existing_user is not None:
            membership = self.db.query(TenantMembership).filter(
                TenantMembership.tenant_id == tenant_id,
                TenantMembership.user_id == existing_user.id,
            ).first()

            if membership is not None and membership.is_active:
                raise BadRequest("This user is already a member of the workspace")

            if membership is not None:
                membership.is_active = True
                membership.role = role.value
            else:
                self.db.add(TenantMembership(tenant_id=tenant_id, user_id=existing_user.id, role=role.value))

            now = now_utc()
            invitation = TenantInvitation(
                tenant_id=tenant_id,
                email=email,
                role=role.value,
                invited_by=invited_by.id,
                status="accepted",
                expires_at=now,
                accepted_at=now,
            )
            self.db.add(invitation)
            self.db.commit()
            self.db.refresh(invitation)
            logger.info("member_added_directly", tenant_id=tenant_id, user_id=existing_user.id)
            return invitation

        pending = self.db.query(TenantInvitation).filter(
            TenantInvitation.tenant_id == tenant_id,
            TenantInvitation.email == email,
            TenantInvitation.status == "pending",
        ).first()
        if pending is not None:
            pending.status = "cancelled"

        raw = generate_opaque_token()
        invitation = TenantInvitation(
            tenant_id=tenant_id,
            email=email,
            role=role.value,
            invited_by=invited_by.id,
            token_hash=hash_token(raw),
            status="pending",
            expires_at=now_utc() + timedelta(days=INVITATION_EXPIRE_DAYS),
        )
        self.db.add(invitation)
        self.db.commit()
        self.db.refresh(invitation)

        tenant = self.db.get(Tenant, tenant_id)
        await self.email_service.send_invitation(email, tenant.name, invited_by.full_name, role.value, raw)
        logger.info("invitation_created", tenant_id=tenant_id, invitation_id=invitation.id)
        return invitation

    def list_pending_invitations(self, tenant_id: int) -> List[TenantInvitation]:
        now = now_utc()
        invitations = self.db.query(TenantInvitation).filter(
            TenantInvitation.tenant_id == tenant_id,
            TenantInvitation.status == "pending",
        ).order_by(TenantInvitation.created_at.desc()).all()
        return [i for i in invitations if ensure_utc(i.expires_at) > now]

    def cancel_invitation(self, tenant_id: int, invitation_id: int) -> None:
        invitation = self.db.query(TenantInvitation).filter(
            TenantInvitation.id == invitation_id,
            TenantInvitation.tenant_id == tenant_id,
        ).first()
        if invitation is None or invitation.status != "pending":
            raise NotFound("Invitation not found")
        invitation.status = "cancelled"
        self.db.commit()

    def accept_invitation(self, raw_token: str, user: User) -> TenantMembership:
        invitation = self.db.query(TenantInvitation).filter(
            TenantInvitation.token_hash == hash_token(raw_token)
        ).first()

        if invitation is None or invitation.status != "pending":
            raise NotFound("Invitation not found")
        if ensure_utc(invitation.expires_at) <= now_utc():
            invitation.status = "expired"
            self.db.commit()
            raise BadRequest("Invitation has expired")
        if invitation.email != user.email:
            raise NotAuthorized("This invitation was sent to another email address")

        membership = self.db.query(TenantMembership).filter(
            TenantMembership.tenant_id == invitation.tenant_id,
            TenantMembership.user_id == user.id,
        ).first()
        if membership is None:
            membership = TenantMembership(tenant_id=invitation.tenant_id, user_id=user.id, role=invitation.role)
            self.db.add(membership)
        else:
            membership.is_active = True
            membership.role = invitation.role

        invitation.status = "accepted"
        invitation.accepted_at = now_utc()
        self.db.commit()
        logger.info("invitation_accepted", tenant_id=invitation.tenant_id, user_id=user.id)
        return membership

    # ==================================================
    # INTERNALS
    # ==================================================

    def _active_membership(self, tenant_id: int, user_id: int) -> Optional[TenantMembership]:
        return self.db.query(TenantMembership).filter(
            TenantMembership.tenant_id == tenant_id,
            TenantMembership.user_id == user_id,
            TenantMembership.is_active.is_(True),
        ).first()

    def _revoke_tenant_sessions(self, tenant_id: int, user_id: int) -> int:
        """Revokes the member's refresh tokens scoped to this tenant."""
        return self.db.query(RefreshToken).filter(
            RefreshToken.user_id == user_id,
            RefreshToken.tenant_id == tenant_id,
            RefreshToken.is_revoked.is_(False),
        ).update({RefreshToken.is_revoked: True}, synchronize_session=False)
