# auth/service.py
"""
Authentication service.

Owns every identity workflow: login with session cap, registration,
refresh-token rotation, tenant selection, logout, password reset/change,
session management and account deactivation.

Routes stay thin and delegate here; errors are DokusException subclasses.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from auth.login_attempts import LoginAttemptTracker, login_attempt_tracker
from auth.models import PasswordResetToken, RefreshToken, Tenant, TenantMembership, User
from auth.permissions import UserRole, permission_names
from auth.security import (
    create_access_token, generate_opaque_token, get_password_hash, hash_token, verify_password
)
from config import (
    ACCESS_TOKEN_EXPIRE_MINUTES, MAX_CONCURRENT_SESSIONS, PASSWORD_RESET_EXPIRE_HOURS,
    REFRESH_TOKEN_EXPIRE_DAYS
)
from services.email_service import EmailService, get_email_service
from tenants.models import TenantSettings
from utils.exceptions import (
    AccountInactive, InvalidCredentials, NotAuthorized, NotFound, PasswordResetTokenExpired,
    PasswordResetTokenInvalid, PasswordResetTokenUsed, RefreshTokenExpired, RefreshTokenRevoked,
    TokenInvalid, TooManyLoginAttempts, UserAlreadyExists, ValidationError
)
from utils.logging_config import get_logger
from utils.password_policy import check_password_strength
from utils.timezone import ensure_utc, now_utc
from utils.token_blacklist import get_token_blacklist

logger = get_logger(__name__)


@dataclass
class SessionInfo:
    """Client metadata stored with a refresh token"""
    device_name: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class LoginResult:
    access_token: str
    refresh_token: str
    expires_in: int
    user: User
    tenant_id: Optional[int] = None
    role: Optional[str] = None
    token_type: str = "bearer"


class AuthService:

    def __init__(
        self,
        db: Session,
        email_service: Optional[EmailService] = None,
        attempt_tracker: Optional[LoginAttemptTracker] = None,
        max_sessions: int = MAX_CONCURRENT_SESSIONS,
    ):
        self.db = db
        self.email_service = email_service or get_email_service()
        self.attempts = attempt_tracker or login_attempt_tracker
        self.max_sessions = max_sessions

    # ==================================================
    # LOGIN / REGISTER
    # ==================================================

    def login(
        self,
        email: str,
        password: str,
        session: Optional[SessionInfo] = None,
        tenant_id: Optional[int] = None,
    ) -> LoginResult:
        email = email.strip().lower()

        retry_after = self.attempts.retry_after_seconds(email)
        if retry_after is not None:
            logger.warning("login_locked", email=email, retry_after=retry_after)
            raise TooManyLoginAttempts(retry_after)

        user = self.db.query(User).filter(User.email == email).first()
        if user is None or not verify_password(password, user.hashed_password):
            self.attempts.record_failure(email)
            logger.info("login_failed", email=email, reason="invalid_credentials")
            raise InvalidCredentials()

        if not user.is_active:
            logger.info("login_failed", email=email, reason="inactive")
            raise AccountInactive()

        self.attempts.clear(email)

        membership = self._resolve_tenant_scope(user, tenant_id)
        result = self._issue_session(user, membership, session or SessionInfo())

        user.last_login_at = now_utc()
        self.db.commit()

        logger.info("login_success", user_id=user.id, tenant_id=result.tenant_id)
        return result

    async def register(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        tenant_name: Optional[str] = None,
        vat_number: Optional[str] = None,
        session: Optional[SessionInfo] = None,
    ) -> LoginResult:
        email = email.strip().lower()

        if self.db.query(User).filter(User.email == email).first() is not None:
            raise UserAlreadyExists()

        is_valid, errors = check_password_strength(password)
        if not is_valid:
            raise ValidationError("Password does not meet the policy", {"errors": errors})

        user = User(
            email=email,
            hashed_password=get_password_hash(password),
            first_name=first_name.strip(),
            last_name=last_name.strip(),
        )
        self.db.add(user)
        self.db.flush()

        if tenant_name:
            tenant = Tenant(name=tenant_name.strip(), email=email, vat_number=vat_number)
            self.db.add(tenant)
            self.db.flush()
            self.db.add(TenantMembership(tenant_id=tenant.id, user_id=user.id, role=UserRole.OWNER.value))
            self.db.add(TenantSettings(
                tenant_id=tenant.id,
                company_name=tenant.name,
                company_vat_number=vat_number,
            ))

        self.db.commit()
        self.db.refresh(user)
        logger.info("user_registered", user_id=user.id, with_tenant=bool(tenant_name))

        await self.email_service.send_welcome(user.email, user.first_name)

        return self.login(email, password, session=session)

    # ==================================================
    # TOKENS
    # ==================================================

    def refresh_token(self, raw_token: str, tenant_id: Optional[int] = None) -> LoginResult:
        """Validates and rotates a refresh token."""
        stored = self.db.query(RefreshToken).filter(
            RefreshToken.token_hash == hash_token(raw_token)
        ).first()

        if stored is None:
            raise TokenInvalid("Refresh token is invalid")
        if stored.is_revoked:
            logger.warning("refresh_token_reuse", user_id=stored.user_id, session_id=stored.id)
            raise RefreshTokenRevoked()
        if ensure_utc(stored.expires_at) <= now_utc():
            raise RefreshTokenExpired()

        user = stored.user
        if not user.is_active:
            raise AccountInactive()

        requested_tenant = tenant_id if tenant_id is not None else stored.tenant_id
        membership = self._resolve_tenant_scope(user, requested_tenant, strict=tenant_id is not None)

        stored.is_revoked = True
        stored.last_used_at = now_utc()
        result = self._issue_session(
            user,
            membership,
            SessionInfo(stored.device_name, stored.ip_address, stored.user_agent),
            enforce_cap=False,
        )
        self.db.commit()
        return result

    def select_tenant(self, user: User, tenant_id: int, current_jti: Optional[str] = None) -> LoginResult:
        """Re-scopes the session to another tenant the user belongs to."""
        membership = self._resolve_tenant_scope(user, tenant_id, strict=True)

        current = None
        if current_jti:
            current = self.db.query(RefreshToken).filter(
                RefreshToken.user_id == user.id,
                RefreshToken.jti == current_jti,
                RefreshToken.is_revoked.is_(False),
            ).first()

        info = SessionInfo()
        if current is not None:
            current.is_revoked = True
            info = SessionInfo(current.device_name, current.ip_address, current.user_agent)

        result = self._issue_session(user, membership, info, enforce_cap=current is None)
        self.db.commit()
        logger.info("tenant_selected", user_id=user.id, tenant_id=tenant_id)
        return result

    def logout(self, access_jti: Optional[str], access_expires_at: Optional[datetime],
               refresh_token: Optional[str] = None) -> None:
        """Blacklists the access token and revokes the refresh token. Never fails."""
        try:
            get_token_blacklist().revoke(access_jti, access_expires_at, db=self.db)

            if refresh_token:
                stored = self.db.query(RefreshToken).filter(
                    RefreshToken.token_hash == hash_token(refresh_token)
                ).first()
                if stored is not None and not stored.is_revoked:
                    stored.is_revoked = True
                    self.db.commit()
            elif access_jti:
                self.db.query(RefreshToken).filter(
                    RefreshToken.jti == access_jti
                ).update({RefreshToken.is_revoked: True}, synchronize_session=False)
                self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("logout_persist_failed", jti=access_jti, error=str(e))

        logger.info("logout", jti=access_jti)

    # ==================================================
    # PASSWORDS
    # ==================================================

    async def request_password_reset(self, email: str) -> None:
        """Always succeeds so callers cannot probe which emails exist."""
        user = self.db.query(User).filter(User.email == email.strip().lower()).first()
        if user is None or not user.is_active:
            logger.info("password_reset_ignored", email=email)
            return

        raw = generate_opaque_token()
        self.db.add(PasswordResetToken(
            user_id=user.id,
            token_hash=hash_token(raw),
            expires_at=now_utc() + timedelta(hours=PASSWORD_RESET_EXPIRE_HOURS),
        ))
        self.db.commit()

        await self.email_service.send_password_reset(user.email, raw)
        logger.info("password_reset_requested", user_id=user.id)

    def reset_password(self, raw_token: str, new_password: str) -> None:
        token = self.db.query(PasswordResetToken).filter(
            PasswordResetToken.token_hash == hash_token(raw_token)
        ).first()

        if token is None:
            raise PasswordResetTokenInvalid()
        if token.used_at is not None:
            raise PasswordResetTokenUsed()
        if ensure_utc(token.expires_at) <= now_utc():
            raise PasswordResetTokenExpired()

        self._check_policy(new_password)

        user = self.db.get(User, token.user_id)
        user.hashed_password = get_password_hash(new_password)
        token.used_at = now_utc()
        self._revoke_all_sessions(user.id)
        self.db.commit()
        logger.info("password_reset", user_id=user.id)

    def change_password(self, user: User, current_password: str, new_password: str,
                        current_jti: Optional[str] = None) -> int:
        """Returns how many other sessions were revoked."""
        if not verify_password(current_password, user.hashed_password):
            raise InvalidCredentials("Current password is incorrect")

        self._check_policy(new_password)
        if current_password == new_password:
            raise ValidationError("New password must differ from the current one")

        user.hashed_password = get_password_hash(new_password)
        revoked = self.revoke_other_sessions(user.id, current_jti, commit=False)
        self.db.commit()
        logger.info("password_changed", user_id=user.id, sessions_revoked=revoked)
        return revoked

    # ==================================================
    # SESSIONS
    # ==================================================

    def list_sessions(self, user_id: int) -> List[RefreshToken]:
        now = now_utc()
        tokens = self.db.query(RefreshToken).filter(
            RefreshToken.user_id == user_id,
            RefreshToken.is_revoked.is_(False),
        ).order_by(RefreshToken.created_at.desc()).all()
        return [t for t in tokens if ensure_utc(t.expires_at) > now]

    def revoke_session(self, user_id: int, session_id: int) -> None:
        token = self.db.query(RefreshToken).filter(
            RefreshToken.id == session_id,
            RefreshToken.user_id == user_id,
        ).first()
        if token is None:
            raise NotFound("Session not found")
        token.is_revoked = True
        self.db.commit()

    def revoke_other_sessions(self, user_id: int, current_jti: Optional[str], commit: bool = True) -> int:
        query = self.db.query(RefreshToken).filter(
            RefreshToken.user_id == user_id,
            RefreshToken.is_revoked.is_(False),
        )
        if current_jti:
            query = query.filter((RefreshToken.jti != current_jti) | (RefreshToken.jti.is_(None)))
        count = query.update({RefreshToken.is_revoked: True}, synchronize_session=False)
        if commit:
            self.db.commit()
        return count

    # ==================================================
    # ACCOUNT
    # ==================================================

    def deactivate_account(self, user: User, password: str, access_jti: Optional[str],
                           access_expires_at: Optional[datetime]) -> None:
        if not verify_password(password, user.hashed_password):
            raise InvalidCredentials("Password is incorrect")

        user.is_active = False
        self._revoke_all_sessions(user.id)
        self.db.commit()
        get_token_blacklist().revoke(access_jti, access_expires_at, db=self.db)
        logger.info("account_deactivated", user_id=user.id)

    def update_profile(self, user: User, first_name: Optional[str] = None,
                       last_name: Optional[str] = None) -> User:
        if first_name is not None:
            user.first_name = first_name.strip()
        if last_name is not None:
            user.last_name = last_name.strip()
        self.db.commit()
        self.db.refresh(user)
        return user

    # ==================================================
    # INTERNALS
    # ==================================================

    def _check_policy(self, password: str) -> None:
        is_valid, errors = check_password_strength(password)
        if not is_valid:
            raise ValidationError("Password does not meet the policy", {"errors": errors})

    def _resolve_tenant_scope(self, user: User, tenant_id: Optional[int],
                              strict: bool = True) -> Optional[TenantMembership]:
        """
        Tenant the session is scoped to.

        The requested tenant when the user is an active member of it, else
        the only active membership, else none. An explicit request for a
        tenant the user does not belong to is refused when `strict`.
        """
        active = [
            m for m in user.memberships
            if m.is_active and m.tenant is not None and m.tenant.status == "active"
        ]

        if tenant_id is not None:
            for membership in active:
                if membership.tenant_id == tenant_id:
                    return membership
            if strict:
                raise NotAuthorized("You are not a member of this workspace")

        if len(active) == 1:
            return active[0]
        return None

    def _build_claims(self, user: User, membership: Optional[TenantMembership]) -> dict:
        claims = {
            "sub": str(user.id),
            "email": user.email,
            "name": user.full_name,
        }
        if membership is not None:
            claims["tenant_id"] = membership.tenant_id
            claims["role"] = membership.role
            claims["permissions"] = permission_names(membership.role)
        return claims

    def _issue_session(self, user: User, membership: Optional[TenantMembership],
                       info: SessionInfo, enforce_cap: bool = True) -> LoginResult:
        access_token, jti, _ = create_access_token(self._build_claims(user, membership))

        if enforce_cap:
            self._enforce_session_cap(user.id)

        raw_refresh = generate_opaque_token()
        self.db.add(RefreshToken(
            user_id=user.id,
            token_hash=hash_token(raw_refresh),
            jti=jti,
            tenant_id=membership.tenant_id if membership else None,
            expires_at=now_utc() + timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS),
            device_name=info.device_name,
            ip_address=info.ip_address,
            user_agent=(info.user_agent or "")[:512] or None,
        ))

        return LoginResult(
            access_token=access_token,
            refresh_token=raw_refresh,
            expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            user=user,
            tenant_id=membership.tenant_id if membership else None,
            role=membership.role if membership else None,
        )

    def _enforce_session_cap(self, user_id: int) -> None:
        """Revokes the oldest sessions so the new one keeps the total at the cap."""
        active = self.list_sessions(user_id)
        excess = len(active) - (self.max_sessions - 1)
        if excess <= 0:
            return
        oldest_first = sorted(active, key=lambda t: (ensure_utc(t.created_at), t.id))
        for token in oldest_first[:excess]:
            token.is_revoked = True
        logger.info("sessions_capped", user_id=user_id, revoked=excess)

    def _revoke_all_sessions(self, user_id: int) -> None:
        self.db.query(RefreshToken).filter(
            RefreshToken.user_id == user_id,
            RefreshToken.is_revoked.is_(False),
        ).update({RefreshToken.is_revoked: True}, synchronize_session=False)
