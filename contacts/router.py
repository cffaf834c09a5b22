"""
Contact endpoints

**Access:** read routes need `clients_read`, write routes `clients_manage`.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from auth.dependencies import AuthContext, require_permission
from auth.permissions import Permission
from contacts.schemas import (
    ContactActivity, ContactCreate, ContactPage, ContactResponse, ContactSummary, ContactUpdate,
    MergeResult, NoteCreate, NoteResponse, PeppolUpdate
)
from contacts.service import DEFAULT_PAGE_SIZE, ContactFilters, ContactService
from database.connection import get_db
from domain.enums import ContactType

router = APIRouter(prefix="/api/v1/contacts", tags=["Contacts"])

can_read = require_permission(Permission.CLIENTS_READ)
can_manage = require_permission(Permission.CLIENTS_MANAGE)


@router.get("", response_model=ContactPage)
async def list_contacts(
    active: Optional[bool] = None,
    peppol_enabled: Optional[bool] = Query(None, alias="peppolEnabled"),
    contact_type: Optional[ContactType] = Query(None, alias="contactType"),
    search: Optional[str] = None,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
    ctx: AuthContext = Depends(can_read),
    db: Session = Depends(get_db)
):
    """
    Lists contacts with optional filters.

    - **search** matches name, email and VAT number (case-insensitive)
    - **limit** 1..200, **offset** >= 0 (400 otherwise)
    """
    filters = ContactFilters(
        active=active,
        peppol_enabled=peppol_enabled,
        contact_type=contact_type,
        search=search,
        limit=limit,
        offset=offset,
    )
    items, total = ContactService(db).list_contacts(ctx.tenant_id, filters)
    return ContactPage(
        items=[ContactResponse.model_validate(c) for c in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("", response_model=ContactResponse, status_code=status.HTTP_201_CREATED)
async def create_contact(body: ContactCreate, ctx: AuthContext = Depends(can_manage), db: Session = Depends(get_db)):
    return ContactService(db).create_contact(ctx.tenant_id, body, author=ctx.user)


@router.get("/customers", response_model=List[ContactResponse])
async def list_customers(ctx: AuthContext = Depends(can_read), db: Session = Depends(get_db)):
    return ContactService(db).list_customers(ctx.tenant_id)


@router.get("/vendors", response_model=List[ContactResponse])
async def list_vendors(ctx: AuthContext = Depends(can_read), db: Session = Depends(get_db)):
    return ContactService(db).list_vendors(ctx.tenant_id)


@router.get("/summary", response_model=ContactSummary)
async def contact_summary(ctx: AuthContext = Depends(can_read), db: Session = Depends(get_db)):
    return ContactService(db).summary(ctx.tenant_id)


@router.get("/{contact_id}", response_model=ContactResponse)
async def get_contact(contact_id: int, ctx: AuthContext = Depends(can_read), db: Session = Depends(get_db)):
    return ContactService(db).get_contact(ctx.tenant_id, contact_id)


@router.put("/{contact_id}", response_model=ContactResponse)
async def update_contact(
    contact_id: int,
    body: ContactUpdate,
    ctx: AuthContext = Depends(can_manage),
    db: Session = Depends(get_db)
):
    return ContactService(db).update_contact(ctx.tenant_id, contact_id, body)


@router.delete("/{contact_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_contact(contact_id: int, ctx: AuthContext = Depends(can_manage), db: Session = Depends(get_db)):
    ContactService(db).delete_contact(ctx.tenant_id, contact_id)


@router.patch("/{contact_id}/peppol", response_model=ContactResponse)
async def update_contact_peppol(
    contact_id: int,
    body: PeppolUpdate,
    ctx: AuthContext = Depends(can_manage),
    db: Session = Depends(get_db)
):
    """Enabling Peppol requires a valid participant id."""
    return ContactService(db).update_peppol(ctx.tenant_id, contact_id, body.peppol_id, body.peppol_enabled)


@router.get("/{contact_id}/activity", response_model=ContactActivity)
async def contact_activity(contact_id: int, ctx: AuthContext = Depends(can_read), db: Session = Depends(get_db)):
    return ContactService(db).activity(ctx.tenant_id, contact_id)


@router.post("/{contact_id}/merge-into/{target_id}", response_model=MergeResult)
async def merge_contact(
    contact_id: int,
    target_id: int,
    ctx: AuthContext = Depends(can_manage),
    db: Session = Depends(get_db)
):
    return ContactService(db).merge(ctx.tenant_id, contact_id, target_id, acting_user=ctx.user)


# ==========================================
# Notes
# ==========================================

@router.get("/{contact_id}/notes", response_model=List[NoteResponse])
async def list_notes(contact_id: int, ctx: AuthContext = Depends(can_read), db: Session = Depends(get_db)):
    return ContactService(db).list_notes(ctx.tenant_id, contact_id)


@router.post("/{contact_id}/notes", response_model=NoteResponse, status_code=status.HTTP_201_CREATED)
async def add_note(
    contact_id: int,
    body: NoteCreate,
    ctx: AuthContext = Depends(can_manage),
    db: Session = Depends(get_db)
):
    return ContactService(db).add_note(ctx.tenant_id, contact_id, body.content, author=ctx.user)


@router.put("/{contact_id}/notes/{note_id}", response_model=NoteResponse)
async def update_note(
    contact_id: int,
    note_id: int,
    body: NoteCreate,
    ctx: AuthContext = Depends(can_manage),
    db: Session = Depends(get_db)
):
    return ContactService(db).update_note(ctx.tenant_id, contact_id, note_id, body.content)


@router.delete("/{contact_id}/notes/{note_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_note(
    contact_id: int,
    note_id: int,
    ctx: AuthContext = Depends(can_manage),
    db: Session = Depends(get_db)
):
    ContactService(db).delete_note(ctx.tenant_id, contact_id, note_id)
