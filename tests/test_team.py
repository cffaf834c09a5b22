# tests/test_team.py
"""
Tests for team management: roles, removal, ownership and invitations.
"""

from datetime import timedelta

import pytest
from unittest.mock import AsyncMock, MagicMock

from auth.models import RefreshToken, TenantInvitation, TenantMembership
from auth.permissions import UserRole
from auth.security import generate_opaque_token, hash_token
from auth.team_service import TeamService
from utils.exceptions import BadRequest, NotAuthorized, NotFound
from utils.timezone import now_utc

from tests.conftest import add_member, make_tenant, make_user, token_for


def team_service(db, emails=None) -> TeamService:
    if emails is None:
        emails = MagicMock()
        emails.send_invitation = AsyncMock(return_value=True)
    return TeamService(db, email_service=emails)


@pytest.fixture
def editor(db, tenant):
    user = make_user(db, "editor@acme.be", "Emma", "Editor")
    add_member(db, tenant, user, UserRole.EDITOR)
    db.commit()
    return user


class TestMembers:

    def test_list_members(self, db, tenant, owner, editor):
        members = team_service(db).list_members(tenant.id)
        assert sorted((m.email, m.role) for m in members) == [
            ("editor@acme.be", "Editor"),
            ("owner@acme.be", "Owner"),
        ]

    def test_update_role(self, db, tenant, owner, editor):
        membership = team_service(db).update_member_role(tenant.id, editor.id, "Accountant")
        assert membership.role == "Accountant"

    def test_owner_role_cannot_be_assigned_or_changed(self, db, tenant, owner, editor):
        service = team_service(db)
        with pytest.raises(BadRequest):
            service.update_member_role(tenant.id, editor.id, UserRole.OWNER)
        with pytest.raises(BadRequest):
            service.update_member_role(tenant.id, owner.id, UserRole.VIEWER)

    def test_remove_member(self, db, tenant, owner, editor):
        team_service(db).remove_member(tenant.id, owner.id, editor.id)

        membership = db.query(TenantMembership).filter(TenantMembership.user_id == editor.id).one()
        assert membership.is_active is False
        assert [m.email for m in team_service(db).list_members(tenant.id)] == ["owner@acme.be"]

    def test_cannot_remove_self_or_owner(self, db, tenant, owner, editor):
        service = team_service(db)
        with pytest.raises(BadRequest):
            service.remove_member(tenant.id, owner.id, owner.id)
        with pytest.raises(BadRequest):
            service.remove_member(tenant.id, editor.id, owner.id)

    def test_unknown_member(self, db, tenant, owner):
        with pytest.raises(NotFound):
            team_service(db).update_member_role(tenant.id, 999, UserRole.VIEWER)


class TestOwnershipTransfer:

    def test_transfer(self, db, tenant, owner, editor):
        team_service(db).transfer_ownership(tenant.id, owner.id, editor.id)

        roles = {m.user_id: m.role for m in db.query(TenantMembership).all()}
        assert roles == {owner.id: "Admin", editor.id: "Owner"}

    def test_only_owner_can_transfer(self, db, tenant, owner, editor):
        with pytest.raises(NotAuthorized):
            team_service(db).transfer_ownership(tenant.id, editor.id, owner.id)

    def test_new_owner_must_be_member(self, db, tenant, owner):
        outsider = make_user(db, "outsider@acme.be")
        db.commit()
        with pytest.raises(BadRequest):
            team_service(db).transfer_ownership(tenant.id, owner.id, outsider.id)


class TestInvitations:

    @pytest.mark.asyncio
    async def test_invite_new_email_sends_token(self, db, tenant, owner):
        emails = MagicMock()
        emails.send_invitation = AsyncMock(return_value=True)
        invitation = await team_service(db, emails).create_invitation(tenant.id, owner, "New@Acme.be", "Editor")

        assert invitation.status == "pending"
        assert invitation.email == "new@acme.be"
        args = emails.send_invitation.await_args.args
        assert args[:4] == ("new@acme.be", "Acme BV", "Olivia Owner", "Editor")

    @pytest.mark.asyncio
    async def test_existing_user_is_added_directly(self, db, tenant, owner):
        """Inviting a registered user adds the membership without a token."""
        known = make_user(db, "known@acme.be")
        db.commit()

        invitation = await team_service(db).create_invitation(tenant.id, owner, "known@acme.be", UserRole.VIEWER)

        assert invitation.status == "accepted"
        membership = db.query(TenantMembership).filter(TenantMembership.user_id == known.id).one()
        assert membership.role == "Viewer"

    @pytest.mark.asyncio
    async def test_cannot_invite_existing_member_or_owner(self, db, tenant, owner, editor):
        service = team_service(db)
        with pytest.raises(BadRequest):
            await service.create_invitation(tenant.id, owner, "editor@acme.be", UserRole.VIEWER)
        with pytest.raises(BadRequest):
            await service.create_invitation(tenant.id, owner, "someone@acme.be", UserRole.OWNER)

    @pytest.mark.asyncio
    async def test_reinvite_cancels_previous(self, db, tenant, owner):
        """A new invitation for the same email cancels the pending one."""
        service = team_service(db)
        first = await service.create_invitation(tenant.id, owner, "new@acme.be", UserRole.EDITOR)
        await service.create_invitation(tenant.id, owner, "new@acme.be", UserRole.VIEWER)

        db.refresh(first)
        assert first.status == "cancelled"
        assert len(service.list_pending_invitations(tenant.id)) == 1

    @pytest.mark.asyncio
    async def test_accept(self, db, tenant, owner):
        emails = MagicMock()
        emails.send_invitation = AsyncMock(return_value=True)
        service = team_service(db, emails)
        await service.create_invitation(tenant.id, owner, "new@acme.be", UserRole.ACCOUNTANT)
        raw_token = emails.send_invitation.await_args.args[4]

        invitee = make_user(db, "new@acme.be")
        db.commit()
        membership = service.accept_invitation(raw_token, invitee)

        assert membership.tenant_id == tenant.id
        assert membership.role == "Accountant"
        with pytest.raises(NotFound):
            service.accept_invitation(raw_token, invitee)

    @pytest.mark.asyncio
    async def test_accept_with_other_email(self, db, tenant, owner):
        emails = MagicMock()
        emails.send_invitation = AsyncMock(return_value=True)
        service = team_service(db, emails)
        await service.create_invitation(tenant.id, owner, "new@acme.be", UserRole.EDITOR)
        raw_token = emails.send_invitation.await_args.args[4]

        with pytest.raises(NotAuthorized):
            service.accept_invitation(raw_token, owner)

    @pytest.mark.asyncio
    async def test_expired_invitation(self, db, tenant, owner):
        emails = MagicMock()
        emails.send_invitation = AsyncMock(return_value=True)
        service = team_service(db, emails)
        invitation = await service.create_invitation(tenant.id, owner, "late@acme.be", UserRole.EDITOR)
        raw_token = emails.send_invitation.await_args.args[4]
        invitation.expires_at = now_utc() - timedelta(days=1)
        db.commit()

        invitee = make_user(db, "late@acme.be")
        db.commit()
        with pytest.raises(BadRequest):
            service.accept_invitation(raw_token, invitee)
        assert db.get(TenantInvitation, invitation.id).status == "expired"

    def test_cancel_unknown_invitation(self, db, tenant):
        with pytest.raises(NotFound):
            team_service(db).cancel_invitation(tenant.id, 42)


class TestTeamRoutes:

    def test_list_members(self, client, auth_headers, editor):
        response = client.get("/api/v1/team/members", headers=auth_headers)

        assert response.status_code == 200
        assert {m["email"] for m in response.json()} == {"owner@acme.be", "editor@acme.be"}

    def test_editor_cannot_manage_users(self, client, tenant, owner, editor):
        headers = {"Authorization": f"Bearer {token_for(editor, tenant, UserRole.EDITOR)}"}
        response = client.put(f"/api/v1/team/members/{owner.id}/role", json={"role": "Viewer"}, headers=headers)

        assert response.status_code == 403
        assert response.json()["error"] == "NOT_AUTHORIZED"

    def test_tenant_scope_required(self, client, owner):
        headers = {"Authorization": f"Bearer {token_for(owner)}"}
        response = client.get("/api/v1/team/members", headers=headers)

        assert response.status_code == 403
        assert response.json()["error"] == "TENANT_NOT_SELECTED"


def refresh_session(db, user, tenant) -> RefreshToken:
    token = RefreshToken(
        user_id=user.id,
        token_hash=hash_token(generate_opaque_token()),
        tenant_id=tenant.id,
        expires_at=now_utc() + timedelta(days=30),
    )
    db.add(token)
    db.commit()
    return token


class TestMembershipChangesTakeEffect:

    @pytest.fixture
    def admin(self, db, tenant):
        user = make_user(db, "admin@acme.be", "Adam", "Admin")
        add_member(db, tenant, user, UserRole.ADMIN)
        db.commit()
        return user

    def test_removed_member_token_is_refused(self, db, client, tenant, owner, admin):
        """A token minted before removal no longer grants access to the workspace."""
        headers = {"Authorization": f"Bearer {token_for(admin, tenant, UserRole.ADMIN)}"}
        assert client.post("/api/v1/contacts", json={"name": "Before"}, headers=headers).status_code == 201

        team_service(db).remove_member(tenant.id, owner.id, admin.id)

        response = client.post("/api/v1/contacts", json={"name": "After"}, headers=headers)
        assert response.status_code == 403
        assert response.json()["error"] == "NOT_AUTHORIZED"

    def test_demoted_member_loses_permissions(self, db, client, tenant, admin):
        """Permissions follow the current role, not the one in the token."""
        headers = {"Authorization": f"Bearer {token_for(admin, tenant, UserRole.ADMIN)}"}

        team_service(db).update_member_role(tenant.id, admin.id, UserRole.VIEWER)

        assert client.get("/api/v1/contacts", headers=headers).status_code == 200
        assert client.post("/api/v1/contacts", json={"name": "X"}, headers=headers).status_code == 403

    def test_removal_revokes_workspace_sessions(self, db, tenant, owner, admin):
        other = make_tenant(db, "Other BV", "BE0202239951")
        add_member(db, other, admin, UserRole.EDITOR)
        db.commit()
        here = refresh_session(db, admin, tenant)
        elsewhere = refresh_session(db, admin, other)

        team_service(db).remove_member(tenant.id, owner.id, admin.id)

        db.refresh(here)
        db.refresh(elsewhere)
        assert here.is_revoked is True
        assert elsewhere.is_revoked is False

    def test_role_change_revokes_workspace_sessions(self, db, tenant, admin):
        session = refresh_session(db, admin, tenant)

        team_service(db).update_member_role(tenant.id, admin.id, UserRole.EDITOR)

        db.refresh(session)
        assert session.is_revoked is True
