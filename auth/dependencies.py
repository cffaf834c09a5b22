"""
Authentication dependencies injected into the routes
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, FrozenSet, Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from auth.models import TenantMembership, User
from auth.permissions import Permission, permission_names
from auth.security import decode_access_token
from database.connection import get_db
from utils.exceptions import (
    AccountInactive, NotAuthenticated, NotAuthorized, TenantNotSelected, TokenInvalid
)
from utils.token_blacklist import get_token_blacklist

# OAuth2 scheme - points Swagger at the login endpoint
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/identity/login/form", auto_error=False)


@dataclass
class AuthContext:
    """Authenticated caller: user, token claims and tenant scope"""
    user: User
    claims: dict
    tenant_id: Optional[int] = None
    role: Optional[str] = None
    permissions: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def jti(self) -> Optional[str]:
        return self.claims.get("jti")

    @property
    def expires_at(self) -> Optional[datetime]:
        exp = self.claims.get("exp")
        return datetime.fromtimestamp(exp, tz=timezone.utc) if exp else None

    def has_permission(self, permission: Permission) -> bool:
        return permission.value in self.permissions


async def get_current_claims(
    token: Optional[str] = Depends(oauth2_scheme),
    db: Session = Depends(get_db)
) -> dict:
    """
    Decodes and validates the bearer token.
    Raises TokenExpired / TokenInvalid / NotAuthenticated.
    """
    if not token:
        raise NotAuthenticated()

    payload = decode_access_token(token)

    if get_token_blacklist().is_revoked(payload.get("jti"), db=db):
        raise TokenInvalid("Token has been revoked")

    return payload


async def get_auth_context(
    claims: dict = Depends(get_current_claims),
    db: Session = Depends(get_db)
) -> AuthContext:
    """
    Loads the user behind the token.

    Usage:
        @router.get("/protected")
        def route(ctx: AuthContext = Depends(get_auth_context)):
            ...
    """
    try:
        user_id = int(claims["sub"])
    except (KeyError, TypeError, ValueError):
        raise TokenInvalid()

    user = db.get(User, user_id)
    if user is None:
        raise TokenInvalid("User no longer exists")
    if not user.is_active:
        raise AccountInactive()

    tenant_id = claims.get("tenant_id")
    if tenant_id is None:
        return AuthContext(user=user, claims=claims)

    # Role and permissions come from the membership row, not the token
    membership = db.query(TenantMembership).filter(
        TenantMembership.tenant_id == tenant_id,
        TenantMembership.user_id == user.id,
        TenantMembership.is_active.is_(True),
    ).first()
    if membership is None:
        raise NotAuthorized("You are not a member of this workspace")

    return AuthContext(
        user=user,
        claims=claims,
        tenant_id=tenant_id,
        role=membership.role,
        permissions=frozenset(permission_names(membership.role)),
    )


async def get_current_user(ctx: AuthContext = Depends(get_auth_context)) -> User:
    return ctx.user


async def get_tenant_context(ctx: AuthContext = Depends(get_auth_context)) -> AuthContext:
    """Like get_auth_context but requires a tenant-scoped token."""
    if ctx.tenant_id is None:
        raise TenantNotSelected()
    return ctx


def require_permission(permission: Permission) -> Callable:
    """
    Dependency factory guarding a route with a tenant permission.

    Usage:
        @router.post("/", dependencies=[Depends(require_permission(Permission.CLIENTS_MANAGE))])
    """
    async def checker(ctx: AuthContext = Depends(get_tenant_context)) -> AuthContext:
        if not ctx.has_permission(permission):
            raise NotAuthorized(f"Missing permission: {permission.value}")
        return ctx

    return checker
