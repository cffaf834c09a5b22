"""
Pydantic schemas for invoices, bills, expenses, credit notes and the cashflow overview

Amounts are integer cents, VAT rates basis points.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List
import datetime as dt
from datetime import date, datetime
from decimal import Decimal

from domain.enums import (
    BillStatus, CreditNoteType, ExpenseCategory, InvoiceStatus, PaymentMethod, SettlementIntent
)


# ==========================================
# Invoices
# ==========================================

class InvoiceItemData(BaseModel):
    description: str = Field(..., min_length=1, max_length=500)
    quantity: Decimal = Field(Decimal("1"), gt=0)
    unit_price: int
    vat_rate: int = Field(2100, ge=0, le=10000)


class InvoiceItemResponse(InvoiceItemData):
    id: int
    line_total: int
    vat_amount: int
    sort_order: int

    model_config = ConfigDict(from_attributes=True)


class InvoiceCreate(BaseModel):
    contact_id: int
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    payment_terms: Optional[int] = Field(None, ge=0, le=365)
    currency: str = Field("EUR", min_length=3, max_length=3)
    notes: Optional[str] = None
    items: List[InvoiceItemData] = []


class InvoiceUpdate(BaseModel):
    contact_id: Optional[int] = None
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    payment_terms: Optional[int] = Field(None, ge=0, le=365)
    notes: Optional[str] = None
    items: Optional[List[InvoiceItemData]] = None


class InvoiceResponse(BaseModel):
    id: int
    tenant_id: int
    contact_id: int
    invoice_number: str
    issue_date: date
    due_date: date
    subtotal_amount: int
    vat_amount: int
    total_amount: int
    paid_amount: int
    status: str
    currency: str
    notes: Optional[str] = None
    payment_terms: Optional[int] = None
    peppol_id: Optional[str] = None
    peppol_sent_at: Optional[datetime] = None
    peppol_status: Optional[str] = None
    paid_at: Optional[datetime] = None
    document_id: Optional[int] = None
    items: List[InvoiceItemResponse] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class PaymentCreate(BaseModel):
    amount: int = Field(..., gt=0)
    paid_at: Optional[datetime] = None


class InvoiceStatusUpdate(BaseModel):
    status: InvoiceStatus


class NextNumberResponse(BaseModel):
    invoice_number: str


# ==========================================
# Bills
# ==========================================

class BillCreate(BaseModel):
    contact_id: Optional[int] = None
    supplier_name: str = Field(..., min_length=1, max_length=255)
    supplier_vat_number: Optional[str] = Field(None, max_length=20)
    invoice_number: Optional[str] = Field(None, max_length=100)
    issue_date: date
    due_date: Optional[date] = None
    amount: int
    vat_amount: Optional[int] = None
    vat_rate: Optional[int] = Field(None, ge=0, le=10000)
    status: BillStatus = BillStatus.PENDING
    category: ExpenseCategory = ExpenseCategory.OTHER
    description: Optional[str] = None
    notes: Optional[str] = None
    document_id: Optional[int] = None


class BillUpdate(BaseModel):
    contact_id: Optional[int] = None
    supplier_name: Optional[str] = Field(None, min_length=1, max_length=255)
    supplier_vat_number: Optional[str] = Field(None, max_length=20)
    invoice_number: Optional[str] = Field(None, max_length=100)
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    amount: Optional[int] = None
    vat_amount: Optional[int] = None
    vat_rate: Optional[int] = Field(None, ge=0, le=10000)
    status: Optional[BillStatus] = None
    category: Optional[ExpenseCategory] = None
    description: Optional[str] = None
    notes: Optional[str] = None


class BillResponse(BaseModel):
    id: int
    tenant_id: int
    contact_id: Optional[int] = None
    supplier_name: str
    supplier_vat_number: Optional[str] = None
    invoice_number: Optional[str] = None
    issue_date: date
    due_date: date
    amount: int
    vat_amount: Optional[int] = None
    vat_rate: Optional[int] = None
    status: str
    category: str
    description: Optional[str] = None
    notes: Optional[str] = None
    document_id: Optional[int] = None
    paid_at: Optional[datetime] = None
    peppol_transmission_id: Optional[int] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class BillPaid(BaseModel):
    paid_at: Optional[datetime] = None


# ==========================================
# Expenses
# ==========================================

class ExpenseCreate(BaseModel):
    contact_id: Optional[int] = None
    date: dt.date
    merchant: str = Field(..., min_length=1, max_length=255)
    amount: int
    vat_amount: Optional[int] = None
    vat_rate: Optional[int] = Field(None, ge=0, le=10000)
    category: ExpenseCategory = ExpenseCategory.OTHER
    description: Optional[str] = None
    is_deductible: bool = True
    deductible_percentage: int = Field(100, ge=0, le=100)
    payment_method: Optional[PaymentMethod] = None
    document_id: Optional[int] = None


class ExpenseUpdate(BaseModel):
    contact_id: Optional[int] = None
    date: Optional[dt.date] = None
    merchant: Optional[str] = Field(None, min_length=1, max_length=255)
    amount: Optional[int] = None
    vat_amount: Optional[int] = None
    vat_rate: Optional[int] = Field(None, ge=0, le=10000)
    category: Optional[ExpenseCategory] = None
    description: Optional[str] = None
    is_deductible: Optional[bool] = None
    deductible_percentage: Optional[int] = Field(None, ge=0, le=100)
    payment_method: Optional[PaymentMethod] = None


class ExpenseResponse(BaseModel):
    id: int
    tenant_id: int
    contact_id: Optional[int] = None
    date: dt.date
    merchant: str
    amount: int
    vat_amount: Optional[int] = None
    vat_rate: Optional[int] = None
    category: str
    description: Optional[str] = None
    is_deductible: bool
    deductible_percentage: int
    payment_method: Optional[str] = None
    document_id: Optional[int] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# ==========================================
# Credit notes
# ==========================================

class CreditNoteCreate(BaseModel):
    credit_note_type: CreditNoteType
    contact_id: Optional[int] = None
    counterparty_name: Optional[str] = Field(None, max_length=255)
    credit_note_number: Optional[str] = Field(None, max_length=100)
    issue_date: date
    subtotal_amount: Optional[int] = Field(None, ge=0)
    vat_amount: int = Field(0, ge=0)
    total_amount: int = Field(..., gt=0)
    currency: str = Field("EUR", min_length=3, max_length=3)
    settlement_intent: SettlementIntent = SettlementIntent.REFUND_EXPECTED
    reason: Optional[str] = None
    original_invoice_number: Optional[str] = Field(None, max_length=100)
    document_id: Optional[int] = None


class CreditNoteUpdate(BaseModel):
    contact_id: Optional[int] = None
    counterparty_name: Optional[str] = Field(None, max_length=255)
    credit_note_number: Optional[str] = Field(None, max_length=100)
    issue_date: Optional[date] = None
    subtotal_amount: Optional[int] = Field(None, ge=0)
    vat_amount: Optional[int] = Field(None, ge=0)
    total_amount: Optional[int] = Field(None, gt=0)
    reason: Optional[str] = None
    original_invoice_number: Optional[str] = Field(None, max_length=100)


class CreditNoteResponse(BaseModel):
    id: int
    tenant_id: int
    contact_id: Optional[int] = None
    credit_note_type: str
    credit_note_number: Optional[str] = None
    counterparty_name: Optional[str] = None
    issue_date: date
    subtotal_amount: int
    vat_amount: int
    total_amount: int
    currency: str
    status: str
    settlement_intent: str
    reason: Optional[str] = None
    original_invoice_id: Optional[int] = None
    original_invoice_number: Optional[str] = None
    document_id: Optional[int] = None
    confirmed_at: Optional[datetime] = None
    settled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SettlementIntentUpdate(BaseModel):
    settlement_intent: SettlementIntent


class RefundCreate(BaseModel):
    refund_date: Optional[date] = None
    amount: Optional[int] = Field(None, gt=0)


class RefundResponse(BaseModel):
    id: int
    credit_note_id: int
    contact_id: Optional[int] = None
    refund_date: date
    amount: int
    currency: str
    direction: str
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class RefundClaimResponse(BaseModel):
    id: int
    credit_note_id: int
    contact_id: Optional[int] = None
    amount: int
    currency: str
    expected_date: Optional[date] = None
    status: str
    refund_id: Optional[int] = None
    settled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# ==========================================
# Overview
# ==========================================

class CashflowOverview(BaseModel):
    from_date: date
    to_date: date
    total_income: int
    total_expenses: int
    net_cashflow: int
    outstanding_receivables: int
    overdue_receivables: int
    outstanding_payables: int
    invoice_count: int
    bill_count: int
    expense_count: int


# ==========================================
# Pages
# ==========================================

class InvoicePage(BaseModel):
    items: List[InvoiceResponse]
    total: int
    limit: int
    offset: int


class BillPage(BaseModel):
    items: List[BillResponse]
    total: int
    limit: int
    offset: int


class ExpensePage(BaseModel):
    items: List[ExpenseResponse]
    total: int
    limit: int
    offset: int


class CreditNotePage(BaseModel):
    items: List[CreditNoteResponse]
    total: int
    limit: int
    offset: int
