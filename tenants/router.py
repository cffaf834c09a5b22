"""
Tenant endpoints: current workspace and its settings
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from auth.dependencies import AuthContext, get_tenant_context, require_permission
from auth.permissions import Permission
from database.connection import get_db
from tenants.schemas import TenantResponse, TenantSettingsResponse, TenantSettingsUpdate
from tenants.service import TenantService

router = APIRouter(prefix="/api/v1/tenants", tags=["Tenants"])


@router.get("/current", response_model=TenantResponse)
async def get_current_tenant(ctx: AuthContext = Depends(get_tenant_context), db: Session = Depends(get_db)):
    return TenantService(db).get_tenant(ctx.tenant_id)


@router.get("/settings", response_model=TenantSettingsResponse)
async def get_settings(
    ctx: AuthContext = Depends(require_permission(Permission.SETTINGS_READ)),
    db: Session = Depends(get_db)
):
    return TenantService(db).get_settings(ctx.tenant_id)


@router.put("/settings", response_model=TenantSettingsResponse)
async def update_settings(
    body: TenantSettingsUpdate,
    ctx: AuthContext = Depends(require_permission(Permission.SETTINGS_MANAGE)),
    db: Session = Depends(get_db)
):
    """Replaces the settings; IBAN and timezone are validated."""
    return TenantService(db).update_settings(ctx.tenant_id, body)
