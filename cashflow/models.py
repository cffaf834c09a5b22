# cashflow/models.py
"""
Outgoing invoices, incoming bills and expenses.

All amounts are integer cents; VAT rates are basis points (2100 = 21%).
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, Date, DateTime, ForeignKey, Numeric, Text, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship

from database.connection import Base
from utils.timezone import get_utc_now


class Invoice(Base):
    """Invoice issued by the tenant to a customer"""

    __tablename__ = "invoices"
    __table_args__ = (
        UniqueConstraint("tenant_id", "invoice_number", name="uq_invoice_tenant_number"),
        Index("ix_invoices_tenant_status", "tenant_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    contact_id = Column(Integer, ForeignKey("contacts.id", ondelete="RESTRICT"), nullable=False, index=True)

    invoice_number = Column(String(50), nullable=False)
    issue_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)

    subtotal_amount = Column(Integer, nullable=False, default=0)
    vat_amount = Column(Integer, nullable=False, default=0)
    total_amount = Column(Integer, nullable=False, default=0)
    paid_amount = Column(Integer, nullable=False, default=0)

    status = Column(String(20), nullable=False, default="draft")
    currency = Column(String(3), nullable=False, default="EUR")
    notes = Column(Text, nullable=True)
    payment_terms = Column(Integer, nullable=True)

    peppol_id = Column(String(100), nullable=True)
    peppol_sent_at = Column(DateTime(timezone=True), nullable=True)
    peppol_status = Column(String(20), nullable=True)

    paid_at = Column(DateTime(timezone=True), nullable=True)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime(timezone=True), default=get_utc_now)
    updated_at = Column(DateTime(timezone=True), default=get_utc_now, onupdate=get_utc_now)

    items = relationship(
        "InvoiceItem", back_populates="invoice", cascade="all, delete-orphan",
        order_by="InvoiceItem.sort_order"
    )
    contact = relationship("Contact")

    def __repr__(self):
        return f"<Invoice(id={self.id}, number='{self.invoice_number}', status='{self.status}')>"


class InvoiceItem(Base):
    __tablename__ = "invoice_items"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    description = Column(String(500), nullable=False)
    quantity = Column(Numeric(12, 3), nullable=False, default=1)
    unit_price = Column(Integer, nullable=False)
    vat_rate = Column(Integer, nullable=False, default=2100)
    line_total = Column(Integer, nullable=False, default=0)
    vat_amount = Column(Integer, nullable=False, default=0)
    sort_order = Column(Integer, nullable=False, default=0)

    invoice = relationship("Invoice", back_populates="items")


class Bill(Base):
    """Supplier invoice received by the tenant"""

    __tablename__ = "bills"
    __table_args__ = (
        Index("ix_bills_tenant_status", "tenant_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    contact_id = Column(Integer, ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True, index=True)

    supplier_name = Column(String(255), nullable=False)
    supplier_vat_number = Column(String(20), nullable=True)
    invoice_number = Column(String(100), nullable=True)
    issue_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)

    amount = Column(Integer, nullable=False)
    vat_amount = Column(Integer, nullable=True)
    vat_rate = Column(Integer, nullable=True)

    status = Column(String(20), nullable=False, default="pending")
    category = Column(String(40), nullable=False, default="other")
    description = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    document_id = Column(Integer, ForeignKey("documents.id", ondelete="SET NULL"), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    peppol_transmission_id = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), default=get_utc_now)
    updated_at = Column(DateTime(timezone=True), default=get_utc_now, onupdate=get_utc_now)

    def __repr__(self):
        return f"<Bill(id={self.id}, supplier='{self.supplier_name}', amount={self.amount})>"


class Expense(Base):
    """Receipt-level expense (fuel, meals, small purchases)"""

    __tablename__ = "expenses"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    contact_id = Column(Integer, ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True, index=True)

    date = Column(Date, nullable=False)
    merchant = Column(String(255), nullable=False)
    amount = Column(Integer, nullable=False)
    vat_amount = Column(Integer, nullable=True)
    vat_rate = Column(Integer, nullable=True)
    category = Column(String(40), nullable=False, default="other")
    description = Column(Text, nullable=True)

    is_deductible = Column(Boolean, nullable=False, default=True)
    deductible_percentage = Column(Integer, nullable=False, default=100)
    payment_method = Column(String(20), nullable=True)

    document_id = Column(Integer, ForeignKey("documents.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime(timezone=True), default=get_utc_now)
    updated_at = Column(DateTime(timezone=True), default=get_utc_now, onupdate=get_utc_now)

    def __repr__(self):
        return f"<Expense(id={self.id}, merchant='{self.merchant}', amount={self.amount})>"


class CreditNote(Base):
    """
    Credit note issued to a customer (sales) or received from a supplier
    (purchase).

    Confirming a credit note does not move money; a refund is recorded
    separately as a CreditNoteRefund.
    """

    __tablename__ = "credit_notes"
    __table_args__ = (
        Index("ix_credit_notes_tenant_status", "tenant_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    contact_id = Column(Integer, ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True, index=True)

    credit_note_type = Column(String(20), nullable=False)
    credit_note_number = Column(String(100), nullable=True)
    counterparty_name = Column(String(255), nullable=True)
    issue_date = Column(Date, nullable=False)

    subtotal_amount = Column(Integer, nullable=False, default=0)
    vat_amount = Column(Integer, nullable=False, default=0)
    total_amount = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="EUR")

    status = Column(String(20), nullable=False, default="draft")
    settlement_intent = Column(String(20), nullable=False, default="refund_expected")
    reason = Column(Text, nullable=True)

    original_invoice_id = Column(Integer, ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True)
    original_invoice_number = Column(String(100), nullable=True)

    document_id = Column(Integer, ForeignKey("documents.id", ondelete="SET NULL"), nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    settled_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=get_utc_now)
    updated_at = Column(DateTime(timezone=True), default=get_utc_now, onupdate=get_utc_now)

    def __repr__(self):
        return f"<CreditNote(id={self.id}, type='{self.credit_note_type}', status='{self.status}')>"


class CreditNoteRefund(Base):
    """Money actually refunded for a credit note"""

    __tablename__ = "credit_note_refunds"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    credit_note_id = Column(Integer, ForeignKey("credit_notes.id", ondelete="CASCADE"), nullable=False, index=True)
    contact_id = Column(Integer, ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True)

    refund_date = Column(Date, nullable=False)
    amount = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="EUR")
    direction = Column(String(3), nullable=False)

    created_at = Column(DateTime(timezone=True), default=get_utc_now)


class RefundClaim(Base):
    """Refund the tenant is waiting for (or owes) on a confirmed credit note"""

    __tablename__ = "refund_claims"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    credit_note_id = Column(Integer, ForeignKey("credit_notes.id", ondelete="CASCADE"), nullable=False, index=True)
    contact_id = Column(Integer, ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True)

    amount = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="EUR")
    expected_date = Column(Date, nullable=True)
    status = Column(String(20), nullable=False, default="open")

    refund_id = Column(Integer, ForeignKey("credit_note_refunds.id", ondelete="SET NULL"), nullable=True)
    settled_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=get_utc_now)
    updated_at = Column(DateTime(timezone=True), default=get_utc_now, onupdate=get_utc_now)
