"""
Pydantic schemas for identity and team endpoints
"""

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from typing import Optional, List
from datetime import datetime

from auth.permissions import UserRole


# ==========================================
# Tokens
# ==========================================

class TokenResponse(BaseModel):
    """Token pair returned by login, register, refresh and tenant selection"""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    tenant_id: Optional[int] = None
    role: Optional[str] = None


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)
    tenant_id: Optional[int] = None


class LogoutRequest(BaseModel):
    refresh_token: Optional[str] = None


class SelectTenantRequest(BaseModel):
    tenant_id: int


# ==========================================
# Login / register
# ==========================================

class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)
    device_name: Optional[str] = Field(None, max_length=255)
    tenant_id: Optional[int] = None


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    tenant_name: Optional[str] = Field(None, min_length=2, max_length=255)
    vat_number: Optional[str] = Field(None, max_length=20)
    device_name: Optional[str] = Field(None, max_length=255)


# ==========================================
# Passwords
# ==========================================

class PasswordResetRequest(BaseModel):
    email: EmailStr


class PasswordResetConfirm(BaseModel):
    token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1, max_length=128)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1, max_length=128)


class DeactivateRequest(BaseModel):
    password: str = Field(..., min_length=1)


# ==========================================
# User / sessions
# ==========================================

class MembershipInfo(BaseModel):
    tenant_id: int
    tenant_name: str
    role: str


class UserMe(BaseModel):
    """Payload of GET /me"""
    id: int
    email: str
    first_name: str
    last_name: str
    email_verified: bool
    last_login_at: Optional[datetime] = None
    tenant_id: Optional[int] = None
    role: Optional[str] = None
    permissions: List[str] = []
    memberships: List[MembershipInfo] = []


class UpdateProfileRequest(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)


class SessionResponse(BaseModel):
    id: int
    device_name: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime
    last_used_at: Optional[datetime] = None
    expires_at: datetime
    is_current: bool = False

    model_config = ConfigDict(from_attributes=True)


# ==========================================
# Team
# ==========================================

class TeamMemberResponse(BaseModel):
    user_id: int
    email: str
    first_name: str
    last_name: str
    role: str
    joined_at: Optional[datetime] = None


class InvitationCreate(BaseModel):
    email: EmailStr
    role: UserRole


class InvitationResponse(BaseModel):
    id: Optional[int] = None
    tenant_id: int
    email: str
    role: str
    status: str
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class AcceptInvitationRequest(BaseModel):
    token: str = Field(..., min_length=1)


class UpdateRoleRequest(BaseModel):
    role: UserRole


class TransferOwnershipRequest(BaseModel):
    new_owner_id: int
