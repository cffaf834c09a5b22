"""
Cashflow endpoints: invoices, bills, expenses, credit notes and the overview
"""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from auth.dependencies import AuthContext, require_permission
from auth.permissions import Permission
from cashflow.invoice_numbers import InvoiceNumberGenerator
from cashflow.schemas import (
    BillCreate, BillPage, BillPaid, BillResponse, BillUpdate, CashflowOverview, CreditNoteCreate, CreditNotePage,
    CreditNoteResponse, CreditNoteUpdate, ExpenseCreate, ExpensePage, ExpenseResponse, ExpenseUpdate, InvoiceCreate,
    InvoicePage, InvoiceResponse, InvoiceStatusUpdate, InvoiceUpdate, NextNumberResponse, PaymentCreate,
    RefundClaimResponse, RefundCreate, RefundResponse, SettlementIntentUpdate
)
from cashflow.service import BillService, CreditNoteService, ExpenseService, InvoiceService, cashflow_overview
from database.connection import get_db
from domain.enums import BillStatus, CreditNoteStatus, CreditNoteType, ExpenseCategory, InvoiceStatus
from utils.exceptions import NotAuthorized

invoices_router = APIRouter(prefix="/api/v1/invoices", tags=["Invoices"])
bills_router = APIRouter(prefix="/api/v1/bills", tags=["Bills"])
expenses_router = APIRouter(prefix="/api/v1/expenses", tags=["Expenses"])
credit_notes_router = APIRouter(prefix="/api/v1/credit-notes", tags=["Credit notes"])
cashflow_router = APIRouter(prefix="/api/v1/cashflow", tags=["Cashflow"])

can_read = require_permission(Permission.INVOICES_READ)
can_create = require_permission(Permission.INVOICES_CREATE)
can_edit = require_permission(Permission.INVOICES_EDIT)
can_delete = require_permission(Permission.INVOICES_DELETE)


# ==========================================
# Invoices
# ==========================================

@invoices_router.get("", response_model=InvoicePage)
async def list_invoices(
    status_filter: Optional[InvoiceStatus] = Query(None, alias="status"),
    contact_id: Optional[int] = Query(None, alias="contactId"),
    from_date: Optional[date] = Query(None, alias="fromDate"),
    to_date: Optional[date] = Query(None, alias="toDate"),
    limit: int = 50,
    offset: int = 0,
    ctx: AuthContext = Depends(can_read),
    db: Session = Depends(get_db)
):
    items, total = InvoiceService(db).list_invoices(
        ctx.tenant_id, status_filter, contact_id, from_date, to_date, limit, offset
    )
    return InvoicePage(
        items=[InvoiceResponse.model_validate(i) for i in items],
        total=total, limit=limit, offset=offset
    )


@invoices_router.get("/next-number", response_model=NextNumberResponse)
async def next_invoice_number(ctx: AuthContext = Depends(can_read), db: Session = Depends(get_db)):
    """Preview only; the number is consumed when an invoice is created."""
    return NextNumberResponse(invoice_number=InvoiceNumberGenerator(db).preview(ctx.tenant_id))


@invoices_router.post("", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
async def create_invoice(body: InvoiceCreate, ctx: AuthContext = Depends(can_create), db: Session = Depends(get_db)):
    return InvoiceService(db).create_invoice(ctx.tenant_id, body)


@invoices_router.get("/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(invoice_id: int, ctx: AuthContext = Depends(can_read), db: Session = Depends(get_db)):
    return InvoiceService(db).get_invoice(ctx.tenant_id, invoice_id)


@invoices_router.put("/{invoice_id}", response_model=InvoiceResponse)
async def update_invoice(
    invoice_id: int,
    body: InvoiceUpdate,
    ctx: AuthContext = Depends(can_edit),
    db: Session = Depends(get_db)
):
    """Draft invoices only."""
    return InvoiceService(db).update_invoice(ctx.tenant_id, invoice_id, body)


@invoices_router.delete("/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_invoice(invoice_id: int, ctx: AuthContext = Depends(can_delete), db: Session = Depends(get_db)):
    InvoiceService(db).delete_invoice(ctx.tenant_id, invoice_id)


@invoices_router.post("/{invoice_id}/payments", response_model=InvoiceResponse)
async def record_payment(
    invoice_id: int,
    body: PaymentCreate,
    ctx: AuthContext = Depends(can_edit),
    db: Session = Depends(get_db)
):
    return InvoiceService(db).record_payment(ctx.tenant_id, invoice_id, body.amount, body.paid_at)


@invoices_router.patch("/{invoice_id}/status", response_model=InvoiceResponse)
async def update_invoice_status(
    invoice_id: int,
    body: InvoiceStatusUpdate,
    ctx: AuthContext = Depends(can_edit),
    db: Session = Depends(get_db)
):
    if body.status == InvoiceStatus.SENT and not ctx.has_permission(Permission.INVOICES_SEND):
        raise NotAuthorized(f"Missing permission: {Permission.INVOICES_SEND.value}")
    return InvoiceService(db).update_status(ctx.tenant_id, invoice_id, body.status)


@invoices_router.post("/{invoice_id}/cancel", response_model=InvoiceResponse)
async def cancel_invoice(invoice_id: int, ctx: AuthContext = Depends(can_edit), db: Session = Depends(get_db)):
    return InvoiceService(db).cancel(ctx.tenant_id, invoice_id)


# ==========================================
# Bills
# ==========================================

@bills_router.get("", response_model=BillPage)
async def list_bills(
    status_filter: Optional[BillStatus] = Query(None, alias="status"),
    category: Optional[ExpenseCategory] = None,
    from_date: Optional[date] = Query(None, alias="fromDate"),
    to_date: Optional[date] = Query(None, alias="toDate"),
    limit: int = 50,
    offset: int = 0,
    ctx: AuthContext = Depends(can_read),
    db: Session = Depends(get_db)
):
    items, total = BillService(db).list_bills(ctx.tenant_id, status_filter, category, from_date, to_date, limit, offset)
    return BillPage(items=[BillResponse.model_validate(b) for b in items], total=total, limit=limit, offset=offset)


@bills_router.post("", response_model=BillResponse, status_code=status.HTTP_201_CREATED)
async def create_bill(body: BillCreate, ctx: AuthContext = Depends(can_create), db: Session = Depends(get_db)):
    return BillService(db).create_bill(ctx.tenant_id, body)


@bills_router.get("/{bill_id}", response_model=BillResponse)
async def get_bill(bill_id: int, ctx: AuthContext = Depends(can_read), db: Session = Depends(get_db)):
    return BillService(db).get_bill(ctx.tenant_id, bill_id)


@bills_router.put("/{bill_id}", response_model=BillResponse)
async def update_bill(bill_id: int, body: BillUpdate, ctx: AuthContext = Depends(can_edit), db: Session = Depends(get_db)):
    return BillService(db).update_bill(ctx.tenant_id, bill_id, body)


@bills_router.post("/{bill_id}/paid", response_model=BillResponse)
async def mark_bill_paid(
    bill_id: int,
    body: Optional[BillPaid] = None,
    ctx: AuthContext = Depends(can_edit),
    db: Session = Depends(get_db)
):
    return BillService(db).mark_bill_paid(ctx.tenant_id, bill_id, body.paid_at if body else None)


@bills_router.delete("/{bill_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_bill(bill_id: int, ctx: AuthContext = Depends(can_delete), db: Session = Depends(get_db)):
    BillService(db).delete_bill(ctx.tenant_id, bill_id)


# ==========================================
# Expenses
# ==========================================

@expenses_router.get("", response_model=ExpensePage)
async def list_expenses(
    category: Optional[ExpenseCategory] = None,
    from_date: Optional[date] = Query(None, alias="fromDate"),
    to_date: Optional[date] = Query(None, alias="toDate"),
    limit: int = 50,
    offset: int = 0,
    ctx: AuthContext = Depends(can_read),
    db: Session = Depends(get_db)
):
    items, total = ExpenseService(db).list_expenses(ctx.tenant_id, category, from_date, to_date, limit, offset)
    return ExpensePage(items=[ExpenseResponse.model_validate(e) for e in items], total=total, limit=limit, offset=offset)


@expenses_router.post("", response_model=ExpenseResponse, status_code=status.HTTP_201_CREATED)
async def create_expense(body: ExpenseCreate, ctx: AuthContext = Depends(can_create), db: Session = Depends(get_db)):
    return ExpenseService(db).create_expense(ctx.tenant_id, body)


@expenses_router.get("/{expense_id}", response_model=ExpenseResponse)
async def get_expense(expense_id: int, ctx: AuthContext = Depends(can_read), db: Session = Depends(get_db)):
    return ExpenseService(db).get_expense(ctx.tenant_id, expense_id)


@expenses_router.put("/{expense_id}", response_model=ExpenseResponse)
async def update_expense(
    expense_id: int,
    body: ExpenseUpdate,
    ctx: AuthContext = Depends(can_edit),
    db: Session = Depends(get_db)
):
    return ExpenseService(db).update_expense(ctx.tenant_id, expense_id, body)


@expenses_router.delete("/{expense_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_expense(expense_id: int, ctx: AuthContext = Depends(can_delete), db: Session = Depends(get_db)):
    ExpenseService(db).delete_expense(ctx.tenant_id, expense_id)


# ==========================================
# Credit notes
# ==========================================

@credit_notes_router.get("", response_model=CreditNotePage)
async def list_credit_notes(
    status_filter: Optional[CreditNoteStatus] = Query(None, alias="status"),
    credit_note_type: Optional[CreditNoteType] = Query(None, alias="type"),
    contact_id: Optional[int] = Query(None, alias="contactId"),
    from_date: Optional[date] = Query(None, alias="fromDate"),
    to_date: Optional[date] = Query(None, alias="toDate"),
    limit: int = 50,
    offset: int = 0,
    ctx: AuthContext = Depends(can_read),
    db: Session = Depends(get_db)
):
    items, total = CreditNoteService(db).list_credit_notes(
        ctx.tenant_id, status_filter, credit_note_type, contact_id, from_date, to_date, limit, offset
    )
    return CreditNotePage(
        items=[CreditNoteResponse.model_validate(c) for c in items], total=total, limit=limit, offset=offset
    )


@credit_notes_router.post("", response_model=CreditNoteResponse, status_code=status.HTTP_201_CREATED)
async def create_credit_note(body: CreditNoteCreate, ctx: AuthContext = Depends(can_create),
                             db: Session = Depends(get_db)):
    return CreditNoteService(db).create_credit_note(ctx.tenant_id, body)


@credit_notes_router.get("/refund-claims", response_model=List[RefundClaimResponse])
async def open_refund_claims(ctx: AuthContext = Depends(can_read), db: Session = Depends(get_db)):
    return CreditNoteService(db).list_open_refund_claims(ctx.tenant_id)


@credit_notes_router.get("/{credit_note_id}", response_model=CreditNoteResponse)
async def get_credit_note(credit_note_id: int, ctx: AuthContext = Depends(can_read), db: Session = Depends(get_db)):
    return CreditNoteService(db).get_credit_note(ctx.tenant_id, credit_note_id)


@credit_notes_router.put("/{credit_note_id}", response_model=CreditNoteResponse)
async def update_credit_note(
    credit_note_id: int,
    body: CreditNoteUpdate,
    ctx: AuthContext = Depends(can_edit),
    db: Session = Depends(get_db)
):
    return CreditNoteService(db).update_credit_note(ctx.tenant_id, credit_note_id, body)


@credit_notes_router.post("/{credit_note_id}/confirm", response_model=CreditNoteResponse)
async def confirm_credit_note(credit_note_id: int, ctx: AuthContext = Depends(can_edit),
                              db: Session = Depends(get_db)):
    return CreditNoteService(db).confirm(ctx.tenant_id, credit_note_id)


@credit_notes_router.put("/{credit_note_id}/settlement", response_model=CreditNoteResponse)
async def update_settlement_intent(
    credit_note_id: int,
    body: SettlementIntentUpdate,
    ctx: AuthContext = Depends(can_edit),
    db: Session = Depends(get_db)
):
    return CreditNoteService(db).update_settlement_intent(ctx.tenant_id, credit_note_id, body.settlement_intent)


@credit_notes_router.post("/{credit_note_id}/refunds", response_model=RefundResponse,
                          status_code=status.HTTP_201_CREATED)
async def record_refund(
    credit_note_id: int,
    body: Optional[RefundCreate] = None,
    ctx: AuthContext = Depends(can_edit),
    db: Session = Depends(get_db)
):
    body = body or RefundCreate()
    return CreditNoteService(db).record_refund(ctx.tenant_id, credit_note_id, body.refund_date, body.amount)


@credit_notes_router.post("/{credit_note_id}/cancel", response_model=CreditNoteResponse)
async def cancel_credit_note(credit_note_id: int, ctx: AuthContext = Depends(can_edit),
                             db: Session = Depends(get_db)):
    return CreditNoteService(db).cancel(ctx.tenant_id, credit_note_id)


# ==========================================
# Overview
# ==========================================

@cashflow_router.get("/overview", response_model=CashflowOverview)
async def overview(
    from_date: date = Query(..., alias="fromDate"),
    to_date: date = Query(..., alias="toDate"),
    ctx: AuthContext = Depends(require_permission(Permission.REPORTS_VIEW)),
    db: Session = Depends(get_db)
):
    return cashflow_overview(db, ctx.tenant_id, from_date, to_date)
