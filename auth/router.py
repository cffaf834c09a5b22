"""
Identity endpoints: login, registration, tokens, passwords, sessions

All workflows live in AuthService; these handlers only translate HTTP.
"""

from typing import List

from fastapi import APIRouter, Depends, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from auth.dependencies import AuthContext, get_auth_context
from auth.schemas import (
    ChangePasswordRequest, DeactivateRequest, LoginRequest, LogoutRequest, MembershipInfo,
    PasswordResetConfirm, PasswordResetRequest, RefreshRequest, RegisterRequest,
    SelectTenantRequest, SessionResponse, TokenResponse, UpdateProfileRequest, UserMe
)
from auth.service import AuthService, LoginResult, SessionInfo
from database.connection import get_db
from utils.password_policy import get_password_requirements
from utils.rate_limit import LIMITS, get_real_ip, limiter

router = APIRouter(prefix="/api/v1/identity", tags=["Identity"])


def _session_info(request: Request, device_name: str = None) -> SessionInfo:
    return SessionInfo(
        device_name=device_name,
        ip_address=get_real_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )


def _token_response(result: LoginResult) -> TokenResponse:
    return TokenResponse(
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        expires_in=result.expires_in,
        tenant_id=result.tenant_id,
        role=result.role,
    )


@router.post("/login", response_model=TokenResponse)
@limiter.limit(LIMITS["login"])
async def login(request: Request, body: LoginRequest, db: Session = Depends(get_db)):
    """
    Authenticates with email and password.

    Returns an access token (JWT) and a refresh token. The session is scoped
    to `tenant_id` when given, or to the user's only workspace.
    """
    result = AuthService(db).login(
        body.email, body.password,
        session=_session_info(request, body.device_name),
        tenant_id=body.tenant_id,
    )
    return _token_response(result)


@router.post("/login/form", response_model=TokenResponse, include_in_schema=False)
@limiter.limit(LIMITS["login"])
async def login_form(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db)
):
    """OAuth2 password form variant (Swagger UI "Authorize")."""
    result = AuthService(db).login(form_data.username, form_data.password, session=_session_info(request))
    return _token_response(result)


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(LIMITS["login"])
async def register(request: Request, body: RegisterRequest, db: Session = Depends(get_db)):
    """Creates an account (and optionally its first workspace) and logs in."""
    result = await AuthService(db).register(
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        tenant_name=body.tenant_name,
        vat_number=body.vat_number,
        session=_session_info(request, body.device_name),
    )
    return _token_response(result)


@router.post("/refresh", response_model=TokenResponse)
async def refresh(body: RefreshRequest, db: Session = Depends(get_db)):
    """Rotates the refresh token; the old one stops working."""
    return _token_response(AuthService(db).refresh_token(body.refresh_token, body.tenant_id))


@router.post("/select-tenant", response_model=TokenResponse)
async def select_tenant(
    body: SelectTenantRequest,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db)
):
    result = AuthService(db).select_tenant(ctx.user, body.tenant_id, current_jti=ctx.jti)
    return _token_response(result)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    body: LogoutRequest = None,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db)
):
    AuthService(db).logout(ctx.jti, ctx.expires_at, body.refresh_token if body else None)


# ==========================================
# Passwords
# ==========================================

@router.post("/password-reset/request", status_code=status.HTTP_202_ACCEPTED)
@limiter.limit(LIMITS["login"])
async def request_password_reset(request: Request, body: PasswordResetRequest, db: Session = Depends(get_db)):
    """Always 202, whether or not the email exists."""
    await AuthService(db).request_password_reset(body.email)
    return {"message": "If the account exists, a reset link has been sent."}


@router.post("/password-reset/confirm", status_code=status.HTTP_204_NO_CONTENT)
async def confirm_password_reset(body: PasswordResetConfirm, db: Session = Depends(get_db)):
    AuthService(db).reset_password(body.token, body.new_password)


@router.get("/password-requirements")
async def password_requirements():
    return get_password_requirements()


@router.post("/change-password")
async def change_password(
    body: ChangePasswordRequest,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db)
):
    revoked = AuthService(db).change_password(ctx.user, body.current_password, body.new_password, ctx.jti)
    return {"message": "Password changed", "sessions_revoked": revoked}


# ==========================================
# Profile
# ==========================================

def _user_me(ctx: AuthContext) -> UserMe:
    user = ctx.user
    return UserMe(
        id=user.id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        email_verified=user.email_verified,
        last_login_at=user.last_login_at,
        tenant_id=ctx.tenant_id,
        role=ctx.role,
        permissions=sorted(ctx.permissions),
        memberships=[
            MembershipInfo(tenant_id=m.tenant_id, tenant_name=m.tenant.name, role=m.role)
            for m in user.memberships if m.is_active
        ],
    )


@router.get("/me", response_model=UserMe)
async def get_me(ctx: AuthContext = Depends(get_auth_context)):
    return _user_me(ctx)


@router.patch("/me", response_model=UserMe)
async def update_me(
    body: UpdateProfileRequest,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db)
):
    AuthService(db).update_profile(ctx.user, body.first_name, body.last_name)
    return _user_me(ctx)


@router.post("/deactivate", status_code=status.HTTP_204_NO_CONTENT)
async def deactivate(
    body: DeactivateRequest,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db)
):
    AuthService(db).deactivate_account(ctx.user, body.password, ctx.jti, ctx.expires_at)


# ==========================================
# Sessions
# ==========================================

@router.get("/sessions", response_model=List[SessionResponse])
async def list_sessions(ctx: AuthContext = Depends(get_auth_context), db: Session = Depends(get_db)):
    sessions = AuthService(db).list_sessions(ctx.user.id)
    return [
        SessionResponse(
            id=s.id,
            device_name=s.device_name,
            ip_address=s.ip_address,
            user_agent=s.user_agent,
            created_at=s.created_at,
            last_used_at=s.last_used_at,
            expires_at=s.expires_at,
            is_current=s.jti == ctx.jti,
        )
        for s in sessions
    ]


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_session(session_id: int, ctx: AuthContext = Depends(get_auth_context), db: Session = Depends(get_db)):
    AuthService(db).revoke_session(ctx.user.id, session_id)


@router.post("/sessions/revoke-others")
async def revoke_other_sessions(ctx: AuthContext = Depends(get_auth_context), db: Session = Depends(get_db)):
    revoked = AuthService(db).revoke_other_sessions(ctx.user.id, ctx.jti)
    return {"sessions_revoked": revoked}
