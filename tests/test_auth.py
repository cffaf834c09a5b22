# tests/test_auth.py
"""
Tests for identity: registration, login, tokens, passwords and sessions.

Covers:
- AuthService workflows against the in-memory database
- Per-email login throttling
- The /api/v1/identity routes end to end
"""

from datetime import timedelta

import pytest
from unittest.mock import AsyncMock, MagicMock

from auth.login_attempts import LoginAttemptTracker, login_attempt_tracker
from auth.models import RefreshToken, TenantMembership, User
from auth.permissions import Permission, UserRole, permission_names, role_permissions
from auth.security import decode_access_token
from auth.service import AuthService, SessionInfo
from utils.exceptions import (
    AccountInactive, InvalidCredentials, NotAuthorized, PasswordResetTokenUsed, RefreshTokenRevoked,
    TokenInvalid, TooManyLoginAttempts, UserAlreadyExists, ValidationError
)
from utils.timezone import now_utc
from utils.token_blacklist import get_token_blacklist

from tests.conftest import TEST_PASSWORD, add_member, make_tenant, make_user

NEW_PASSWORD = "An0ther!Secret"


def email_service() -> MagicMock:
    service = MagicMock()
    service.send_welcome = AsyncMock(return_value=True)
    service.send_password_reset = AsyncMock(return_value=True)
    service.send_invitation = AsyncMock(return_value=True)
    return service


def auth_service(db, **kwargs) -> AuthService:
    kwargs.setdefault("email_service", email_service())
    kwargs.setdefault("attempt_tracker", LoginAttemptTracker(max_attempts=3, window_minutes=15))
    return AuthService(db, **kwargs)


# ============================================
# Registration
# ============================================

class TestRegister:

    @pytest.mark.asyncio
    async def test_register_with_workspace(self, db):
        emails = email_service()
        result = await auth_service(db, email_service=emails).register(
            "Jan@Example.be", TEST_PASSWORD, "Jan", "Janssens", tenant_name="Janssens Consulting",
            vat_number="BE0123456749",
        )

        user = db.query(User).filter(User.email == "jan@example.be").one()
        membership = db.query(TenantMembership).filter(TenantMembership.user_id == user.id).one()

        assert membership.role == UserRole.OWNER.value
        assert result.tenant_id == membership.tenant_id
        assert result.role == "Owner"
        emails.send_welcome.assert_awaited_once_with("jan@example.be", "Jan")

        claims = decode_access_token(result.access_token)
        assert claims["tenant_id"] == membership.tenant_id
        assert claims["permissions"] == permission_names(UserRole.OWNER)

    @pytest.mark.asyncio
    async def test_register_without_workspace(self, db):
        result = await auth_service(db).register("solo@example.be", TEST_PASSWORD, "Solo", "User")

        assert result.tenant_id is None
        assert "tenant_id" not in decode_access_token(result.access_token)

    @pytest.mark.asyncio
    async def test_duplicate_email(self, db):
        make_user(db, "taken@example.be")
        db.commit()

        with pytest.raises(UserAlreadyExists):
            await auth_service(db).register("TAKEN@example.be", TEST_PASSWORD, "A", "B")

    @pytest.mark.asyncio
    async def test_weak_password(self, db):
        with pytest.raises(ValidationError) as exc_info:
            await auth_service(db).register("weak@example.be", "password", "A", "B")

        assert exc_info.value.details["errors"]


# ============================================
# Login
# ============================================

class TestLogin:

    def test_login_scopes_to_only_workspace(self, db, owner, tenant):
        """A user with one workspace gets a tenant scoped token at login."""
        result = auth_service(db).login("OWNER@acme.be", TEST_PASSWORD, SessionInfo(device_name="Laptop"))

        assert result.tenant_id == tenant.id
        assert result.role == "Owner"
        stored = db.query(RefreshToken).filter(RefreshToken.user_id == owner.id).one()
        assert stored.device_name == "Laptop"
        assert owner.last_login_at is not None

    def test_several_workspaces_need_selection(self, db, owner, tenant):
        """With several workspaces the token stays unscoped until one is selected."""
        second = make_tenant(db, name="Side Project BV", vat_number=None)
        add_member(db, second, owner, UserRole.ADMIN)
        db.commit()

        unscoped = auth_service(db).login("owner@acme.be", TEST_PASSWORD)
        scoped = auth_service(db).login("owner@acme.be", TEST_PASSWORD, tenant_id=second.id)

        assert unscoped.tenant_id is None
        assert scoped.tenant_id == second.id
        assert scoped.role == "Admin"

    def test_wrong_password(self, db, owner):
        with pytest.raises(InvalidCredentials):
            auth_service(db).login("owner@acme.be", "Wr0ng!Password")

    def test_unknown_email(self, db):
        with pytest.raises(InvalidCredentials):
            auth_service(db).login("nobody@acme.be", TEST_PASSWORD)

    def test_lockout_after_failures(self, db, owner):
        """Too many failed logins lock the email for the lockout window."""
        service = auth_service(db)
        for _ in range(3):
            with pytest.raises(InvalidCredentials):
                service.login("owner@acme.be", "Wr0ng!Password")

        with pytest.raises(TooManyLoginAttempts):
            service.login("owner@acme.be", TEST_PASSWORD)

    def test_inactive_account(self, db, owner):
        owner.is_active = False
        db.commit()

        with pytest.raises(AccountInactive):
            auth_service(db).login("owner@acme.be", TEST_PASSWORD)

    def test_foreign_workspace_is_refused(self, db, owner):
        other = make_tenant(db, name="Other BV", vat_number=None)
        db.commit()

        with pytest.raises(NotAuthorized):
            auth_service(db).login("owner@acme.be", TEST_PASSWORD, tenant_id=other.id)

    def test_session_cap_revokes_oldest(self, db, owner):
        """Opening one session too many revokes the oldest."""
        service = auth_service(db, max_sessions=2)
        for device in ("one", "two", "three"):
            service.login("owner@acme.be", TEST_PASSWORD, SessionInfo(device_name=device))

        active = service.list_sessions(owner.id)
        assert sorted(s.device_name for s in active) == ["three", "two"]


class TestLoginAttemptTracker:

    def test_locks_after_max_failures(self):
        tracker = LoginAttemptTracker(max_attempts=2, window_minutes=10)
        now = now_utc()
        tracker.record_failure("a@b.be", now)
        assert tracker.retry_after_seconds("a@b.be", now) is None

        tracker.record_failure("A@B.be ", now)
        assert tracker.retry_after_seconds("a@b.be", now) == 600

    def test_unlocks_after_window(self):
        tracker = LoginAttemptTracker(max_attempts=1, window_minutes=10)
        now = now_utc()
        tracker.record_failure("a@b.be", now)

        assert tracker.retry_after_seconds("a@b.be", now + timedelta(minutes=11)) is None

    def test_clear(self):
        tracker = LoginAttemptTracker(max_attempts=1)
        tracker.record_failure("a@b.be")
        tracker.clear("a@b.be")
        assert tracker.retry_after_seconds("a@b.be") is None


# ============================================
# Tokens and sessions
# ============================================

class TestTokens:

    def test_refresh_rotates(self, db, owner, tenant):
        """A refresh token is single use and replaced on every refresh."""
        service = auth_service(db)
        first = service.login("owner@acme.be", TEST_PASSWORD)
        second = service.refresh_token(first.refresh_token)

        assert second.refresh_token != first.refresh_token
        assert second.tenant_id == tenant.id
        with pytest.raises(RefreshTokenRevoked):
            service.refresh_token(first.refresh_token)

    def test_unknown_refresh_token(self, db):
        with pytest.raises(TokenInvalid):
            auth_service(db).refresh_token("not-a-token")

    def test_select_tenant(self, db, owner, tenant):
        second = make_tenant(db, name="Side Project BV", vat_number=None)
        add_member(db, second, owner, UserRole.VIEWER)
        db.commit()
        service = auth_service(db)
        login = service.login("owner@acme.be", TEST_PASSWORD, tenant_id=tenant.id)
        jti = decode_access_token(login.access_token)["jti"]

        result = service.select_tenant(owner, second.id, current_jti=jti)

        claims = decode_access_token(result.access_token)
        assert claims["tenant_id"] == second.id
        assert claims["permissions"] == permission_names(UserRole.VIEWER)
        assert len(service.list_sessions(owner.id)) == 1

    def test_revoke_other_sessions(self, db, owner):
        service = auth_service(db)
        service.login("owner@acme.be", TEST_PASSWORD)
        current = service.login("owner@acme.be", TEST_PASSWORD)
        jti = decode_access_token(current.access_token)["jti"]

        assert service.revoke_other_sessions(owner.id, jti) == 1
        assert [s.jti for s in service.list_sessions(owner.id)] == [jti]


class TestPasswords:

    @pytest.mark.asyncio
    async def test_reset_flow(self, db, owner):
        emails = email_service()
        service = auth_service(db, email_service=emails)
        service.login("owner@acme.be", TEST_PASSWORD)

        await service.request_password_reset("owner@acme.be")
        raw_token = emails.send_password_reset.await_args.args[1]
        service.reset_password(raw_token, NEW_PASSWORD)

        assert service.list_sessions(owner.id) == []
        assert service.login("owner@acme.be", NEW_PASSWORD).access_token
        with pytest.raises(PasswordResetTokenUsed):
            service.reset_password(raw_token, "Th1rd!Password")

    @pytest.mark.asyncio
    async def test_reset_for_unknown_email_is_silent(self, db):
        """Unknown emails get the same answer so accounts cannot be probed."""
        emails = email_service()
        await auth_service(db, email_service=emails).request_password_reset("ghost@acme.be")
        emails.send_password_reset.assert_not_awaited()

    def test_change_password(self, db, owner):
        service = auth_service(db)
        service.login("owner@acme.be", TEST_PASSWORD)
        current = service.login("owner@acme.be", TEST_PASSWORD)
        jti = decode_access_token(current.access_token)["jti"]

        revoked = service.change_password(owner, TEST_PASSWORD, NEW_PASSWORD, current_jti=jti)

        assert revoked == 1
        with pytest.raises(InvalidCredentials):
            service.login("owner@acme.be", TEST_PASSWORD)

    def test_change_password_checks_current(self, db, owner):
        with pytest.raises(InvalidCredentials):
            auth_service(db).change_password(owner, "Wr0ng!Password", NEW_PASSWORD)

    def test_new_password_must_differ(self, db, owner):
        with pytest.raises(ValidationError):
            auth_service(db).change_password(owner, TEST_PASSWORD, TEST_PASSWORD)


class TestPermissions:

    def test_owner_has_everything(self):
        assert role_permissions(UserRole.OWNER) == frozenset(Permission)

    def test_admin_cannot_manage_users(self):
        assert Permission.USERS_MANAGE not in role_permissions("Admin")

    def test_viewer_is_read_only(self):
        assert Permission.DOCUMENTS_PROCESS not in role_permissions(UserRole.VIEWER)
        assert Permission.INVOICES_READ in role_permissions(UserRole.VIEWER)

    def test_unknown_role(self):
        assert role_permissions("Intern") == frozenset()


# ============================================
# Account
# ============================================

class TestAccount:

    def test_deactivate_account(self, db, owner):
        """Deactivation revokes every session and blocks later logins."""
        service = auth_service(db)
        first = service.login("owner@acme.be", TEST_PASSWORD, SessionInfo(device_name="Laptop"))
        service.login("owner@acme.be", TEST_PASSWORD, SessionInfo(device_name="Phone"))
        claims = decode_access_token(first.access_token)

        service.deactivate_account(owner, TEST_PASSWORD, claims["jti"], None)

        db.refresh(owner)
        assert owner.is_active is False
        assert service.list_sessions(owner.id) == []
        assert get_token_blacklist().is_revoked(claims["jti"], db=db)
        with pytest.raises(AccountInactive):
            service.login("owner@acme.be", TEST_PASSWORD)

    def test_deactivate_checks_password(self, db, owner):
        with pytest.raises(InvalidCredentials):
            auth_service(db).deactivate_account(owner, "Wr0ng!Password", None, None)

        db.refresh(owner)
        assert owner.is_active is True

    def test_update_profile(self, db, owner):
        user = auth_service(db).update_profile(owner, first_name="  Liv ")

        assert user.first_name == "Liv"
        assert user.last_name == "Owner"


# ============================================
# Routes
# ============================================

class TestIdentityRoutes:

    def test_login_and_me(self, client, owner, tenant):
        response = client.post("/api/v1/identity/login", json={"email": "owner@acme.be", "password": TEST_PASSWORD})
        assert response.status_code == 200
        token = response.json()["access_token"]

        me = client.get("/api/v1/identity/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        body = me.json()
        assert body["email"] == "owner@acme.be"
        assert body["tenant_id"] == tenant.id
        assert body["memberships"][0]["tenant_name"] == "Acme BV"
        assert "documents_process" in body["permissions"]

    def test_bad_credentials_error_body(self, client, owner):
        response = client.post("/api/v1/identity/login", json={"email": "owner@acme.be", "password": "nope"})

        assert response.status_code == 401
        assert response.json()["error"] == "INVALID_CREDENTIALS"

    def test_me_requires_a_token(self, client, db):
        response = client.get("/api/v1/identity/me")
        assert response.status_code == 401

    def test_logout_revokes_the_access_token(self, client, auth_headers):
        """The access token is blacklisted on logout."""
        assert client.post("/api/v1/identity/logout", headers=auth_headers).status_code == 204

        response = client.get("/api/v1/identity/me", headers=auth_headers)
        assert response.status_code == 401
        assert response.json()["error"] == "TOKEN_INVALID"

    def test_register_route(self, client, db):
        response = client.post("/api/v1/identity/register", json={
            "email": "new@acme.be",
            "password": TEST_PASSWORD,
            "first_name": "Nina",
            "last_name": "New",
            "tenant_name": "Nina BV",
        })

        assert response.status_code == 201
        assert response.json()["role"] == "Owner"

    def test_update_profile_route(self, client, auth_headers):
        response = client.patch("/api/v1/identity/me", json={"last_name": "Peeters"}, headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["first_name"] == "Olivia"
        assert response.json()["last_name"] == "Peeters"
        assert client.get("/api/v1/identity/me", headers=auth_headers).json()["last_name"] == "Peeters"

    def test_deactivate_route(self, client, owner):
        login = client.post("/api/v1/identity/login", json={"email": "owner@acme.be", "password": TEST_PASSWORD})
        headers = {"Authorization": f"Bearer {login.json()['access_token']}"}

        response = client.post("/api/v1/identity/deactivate", json={"password": TEST_PASSWORD}, headers=headers)
        assert response.status_code == 204

        assert client.get("/api/v1/identity/me", headers=headers).status_code == 401
        again = client.post("/api/v1/identity/login", json={"email": "owner@acme.be", "password": TEST_PASSWORD})
        assert again.status_code == 403
        assert again.json()["error"] == "ACCOUNT_INACTIVE"

    def test_lockout_sets_retry_after(self, client, db):
        """A locked email gets 429 with a Retry-After header."""
        make_user(db, "locked@acme.be")
        db.commit()
        try:
            for _ in range(5):
                client.post("/api/v1/identity/login", json={"email": "locked@acme.be", "password": "Wr0ng!Password"})

            response = client.post("/api/v1/identity/login", json={"email": "locked@acme.be", "password": TEST_PASSWORD})

            assert response.status_code == 429
            assert response.json()["error"] == "TOO_MANY_LOGIN_ATTEMPTS"
            retry_after = int(response.headers["Retry-After"])
            assert 0 < retry_after <= 15 * 60
            assert response.json()["details"]["retry_after_seconds"] == retry_after
        finally:
            login_attempt_tracker.clear("locked@acme.be")
