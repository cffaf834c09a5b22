"""
Peppol endpoints

**Access:** every route needs `peppol_manage`.

Settings are per workspace; sending and polling go through the Recommand
access point configured there.
"""

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from auth.dependencies import AuthContext, require_permission
from auth.permissions import Permission
from database.connection import get_db
from domain.enums import PeppolDirection, PeppolStatus
from peppol.schemas import (
    ConnectionTestResponse, PeppolSettingsRequest, PeppolSettingsResponse, PollResponse,
    TransmissionPage, TransmissionResponse, ValidationResultResponse, VerifyRecipientRequest,
    VerifyRecipientResponse
)
from peppol.service import PeppolService
from utils.exceptions import NotFound

router = APIRouter(prefix="/api/v1/peppol", tags=["Peppol"])

can_manage = require_permission(Permission.PEPPOL_MANAGE)


# ==================================================
# SETTINGS
# ==================================================

@router.get("/settings", response_model=PeppolSettingsResponse)
async def get_settings(ctx: AuthContext = Depends(can_manage), db: Session = Depends(get_db)):
    settings = PeppolService(db).get_settings(ctx.tenant_id)
    if settings is None:
        raise NotFound("Peppol is not configured")
    return settings


@router.put("/settings", response_model=PeppolSettingsResponse)
async def save_settings(
    body: PeppolSettingsRequest,
    ctx: AuthContext = Depends(can_manage),
    db: Session = Depends(get_db)
):
    return PeppolService(db).save_settings(ctx.tenant_id, **body.model_dump())


@router.delete("/settings", status_code=status.HTTP_204_NO_CONTENT)
async def delete_settings(ctx: AuthContext = Depends(can_manage), db: Session = Depends(get_db)):
    PeppolService(db).delete_settings(ctx.tenant_id)


@router.post("/settings/test", response_model=ConnectionTestResponse)
async def test_connection(ctx: AuthContext = Depends(can_manage), db: Session = Depends(get_db)):
    """Checks the stored credentials against Recommand."""
    return ConnectionTestResponse(connected=await PeppolService(db).test_connection(ctx.tenant_id))


# ==================================================
# OUTBOUND
# ==================================================

@router.post("/verify", response_model=VerifyRecipientResponse)
async def verify_recipient(
    body: VerifyRecipientRequest,
    ctx: AuthContext = Depends(can_manage),
    db: Session = Depends(get_db)
):
    result = await PeppolService(db).verify_recipient(ctx.tenant_id, body.peppol_id)
    return VerifyRecipientResponse(**asdict(result))


@router.get("/invoices/{invoice_id}/validate", response_model=ValidationResultResponse)
async def validate_invoice(invoice_id: int, ctx: AuthContext = Depends(can_manage), db: Session = Depends(get_db)):
    return PeppolService(db).validate_invoice(ctx.tenant_id, invoice_id).to_dict()


@router.post("/invoices/{invoice_id}/send", response_model=TransmissionResponse)
async def send_invoice(invoice_id: int, ctx: AuthContext = Depends(can_manage), db: Session = Depends(get_db)):
    """
    Validates and sends an invoice.

    Returns the transmission; a provider failure is reported in its
    `status` and `error_message`, validation errors as 400.
    """
    return await PeppolService(db).send_invoice(ctx.tenant_id, invoice_id)


@router.get("/invoices/{invoice_id}/transmission", response_model=TransmissionResponse)
async def invoice_transmission(invoice_id: int, ctx: AuthContext = Depends(can_manage),
                               db: Session = Depends(get_db)):
    transmission = PeppolService(db).get_transmission_by_invoice_id(ctx.tenant_id, invoice_id)
    if transmission is None:
        raise NotFound("No Peppol transmission for this invoice")
    return transmission


# ==================================================
# INBOUND / LOG
# ==================================================

@router.post("/inbox/poll", response_model=PollResponse)
async def poll_inbox(ctx: AuthContext = Depends(can_manage), db: Session = Depends(get_db)):
    result = await PeppolService(db).poll_inbox(ctx.tenant_id)
    return PollResponse(**asdict(result))


@router.get("/transmissions", response_model=TransmissionPage)
async def list_transmissions(
    direction: Optional[PeppolDirection] = None,
    transmission_status: Optional[PeppolStatus] = Query(None, alias="status"),
    limit: int = 50,
    offset: int = 0,
    ctx: AuthContext = Depends(can_manage),
    db: Session = Depends(get_db)
):
    items, total = PeppolService(db).list_transmissions(ctx.tenant_id, direction, transmission_status, limit, offset)
    return TransmissionPage(
        items=[TransmissionResponse.model_validate(t) for t in items],
        total=total,
        limit=limit,
        offset=offset,
    )
