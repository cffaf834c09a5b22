# cashflow/service.py
"""
Invoice, bill, expense and credit note workflows plus the cashflow overview.

Amounts are integer cents. Line totals are `quantity × unit_price` and line
VAT is `line_total × rate / 10000`, both rounded half-up to the cent; the
invoice subtotal, VAT and total are plain sums of the lines.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from cashflow.invoice_numbers import InvoiceNumberGenerator
from cashflow.models import Bill, CreditNote, CreditNoteRefund, Expense, Invoice, InvoiceItem, RefundClaim
from cashflow.schemas import (
    BillCreate, BillUpdate, CreditNoteCreate, CreditNoteUpdate, ExpenseCreate, ExpenseUpdate, InvoiceCreate,
    InvoiceItemData, InvoiceUpdate
)
from contacts.models import Contact
from domain.enums import (
    BillStatus, CashDirection, CreditNoteStatus, CreditNoteType, ExpenseCategory, InvoiceStatus,
    INVOICE_STATUS_TRANSITIONS, RefundClaimStatus, SettlementIntent
)
from domain.money import Money, VatRate
from domain.validators import normalize_vat_number
from tenants.service import TenantService
from utils.exceptions import BadRequest, NotFound
from utils.logging_config import get_logger
from utils.timezone import now_utc, today_local

logger = get_logger(__name__)

MAX_PAGE_SIZE = 200

OPEN_INVOICE_STATUSES = (
    InvoiceStatus.SENT.value,
    InvoiceStatus.VIEWED.value,
    InvoiceStatus.PARTIALLY_PAID.value,
    InvoiceStatus.OVERDUE.value,
)
OPEN_BILL_STATUSES = (
    BillStatus.DRAFT.value,
    BillStatus.PENDING.value,
    BillStatus.SCHEDULED.value,
    BillStatus.OVERDUE.value,
)


@dataclass
class LineTotals:
    line_total: Money
    vat_amount: Money


def compute_line(item: InvoiceItemData) -> LineTotals:
    line_total = Money(item.unit_price).times(item.quantity)
    return LineTotals(line_total=line_total, vat_amount=line_total.multiply_rate(VatRate(item.vat_rate)))


def _check_page(limit: int, offset: int) -> None:
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise BadRequest(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    if offset < 0:
        raise BadRequest("offset must be >= 0")


def _require_contact(db: Session, tenant_id: int, contact_id: Optional[int]) -> Optional[Contact]:
    if contact_id is None:
        return None
    contact = db.query(Contact).filter(Contact.id == contact_id, Contact.tenant_id == tenant_id).first()
    if contact is None:
        raise NotFound("Contact not found")
    return contact


# ============================================================
# INVOICES
# ============================================================

class InvoiceService:

    def __init__(self, db: Session):
        self.db = db

    def create_invoice(self, tenant_id: int, data: InvoiceCreate, document_id: Optional[int] = None) -> Invoice:
        contact = _require_contact(self.db, tenant_id, data.contact_id)
        if not data.items:
            raise BadRequest("An invoice needs at least one line item")

        settings = TenantService(self.db).get_settings(tenant_id)
        issue_date = data.issue_date or today_local(settings.invoice_timezone)
        payment_terms = data.payment_terms
        if payment_terms is None:
            payment_terms = contact.default_payment_terms
        if payment_terms is None:
            payment_terms = settings.payment_terms_days
        due_date = data.due_date or issue_date + timedelta(days=payment_terms)
        if due_date < issue_date:
            raise BadRequest("Due date cannot be before the issue date")

        invoice = Invoice(
            tenant_id=tenant_id,
            contact_id=contact.id,
            invoice_number=InvoiceNumberGenerator(self.db).generate(tenant_id),
            issue_date=issue_date,
            due_date=due_date,
            payment_terms=payment_terms,
            currency=data.currency.upper(),
            notes=data.notes,
            status=InvoiceStatus.DRAFT.value,
            document_id=document_id,
            paid_amount=0,
        )
        self._set_items(invoice, data.items)

        self.db.add(invoice)
        self.db.commit()
        self.db.refresh(invoice)
        logger.info("invoice_created", tenant_id=tenant_id, invoice_id=invoice.id, number=invoice.invoice_number)
        return invoice

    def get_invoice(self, tenant_id: int, invoice_id: int) -> Invoice:
        invoice = self.db.query(Invoice).filter(Invoice.id == invoice_id, Invoice.tenant_id == tenant_id).first()
        if invoice is None:
            raise NotFound("Invoice not found")
        return invoice

    def list_invoices(
        self,
        tenant_id: int,
        status: Optional[InvoiceStatus] = None,
        contact_id: Optional[int] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Invoice], int]:
        _check_page(limit, offset)
        query = self.db.query(Invoice).filter(Invoice.tenant_id == tenant_id)
        if status is not None:
            query = query.filter(Invoice.status == InvoiceStatus(status).value)
        if contact_id is not None:
            query = query.filter(Invoice.contact_id == contact_id)
        if from_date is not None:
            query = query.filter(Invoice.issue_date >= from_date)
        if to_date is not None:
            query = query.filter(Invoice.issue_date <= to_date)

        total = query.count()
        items = query.order_by(Invoice.issue_date.desc(), Invoice.id.desc()).offset(offset).limit(limit).all()
        return items, total

    def update_invoice(self, tenant_id: int, invoice_id: int, data: InvoiceUpdate) -> Invoice:
        invoice = self.get_invoice(tenant_id, invoice_id)
        if invoice.status != InvoiceStatus.DRAFT.value:
            raise BadRequest("Only draft invoices can be edited")

        changes = data.model_dump(exclude_unset=True)
        if changes.get("contact_id") is not None:
            invoice.contact_id = _require_contact(self.db, tenant_id, changes["contact_id"]).id
        for key in ("issue_date", "due_date", "payment_terms", "notes"):
            if key in changes:
                setattr(invoice, key, changes[key])

        if data.items is not None:
            if not data.items:
                raise BadRequest("An invoice needs at least one line item")
            self._set_items(invoice, data.items)

        if invoice.due_date < invoice.issue_date:
            raise BadRequest("Due date cannot be before the issue date")

        self.db.commit()
        self.db.refresh(invoice)
        return invoice

    def delete_invoice(self, tenant_id: int, invoice_id: int) -> None:
        """Drafts only; issued numbers stay consumed."""
        invoice = self.get_invoice(tenant_id, invoice_id)
        if invoice.status != InvoiceStatus.DRAFT.value:
            raise BadRequest("Only draft invoices can be deleted; cancel it instead")
        self.db.delete(invoice)
        self.db.commit()

    def record_payment(self, tenant_id: int, invoice_id: int, amount: int,
                       paid_at: Optional[datetime] = None) -> Invoice:
        invoice = self.get_invoice(tenant_id, invoice_id)
        if invoice.status in (InvoiceStatus.CANCELLED.value, InvoiceStatus.PAID.value):
            raise BadRequest(f"Cannot record a payment on a {invoice.status} invoice")
        if amount <= 0:
            raise BadRequest("Payment amount must be positive")

        new_paid = invoice.paid_amount + amount
        if new_paid > invoice.total_amount:
            raise BadRequest(
                "Payment exceeds the outstanding amount",
                details={"outstanding": invoice.total_amount - invoice.paid_amount}
            )

        invoice.paid_amount = new_paid
        if new_paid == invoice.total_amount:
            invoice.status = InvoiceStatus.PAID.value
            invoice.paid_at = paid_at or now_utc()
        else:
            invoice.status = InvoiceStatus.PARTIALLY_PAID.value

        self.db.commit()
        self.db.refresh(invoice)
        logger.info("invoice_payment_recorded", invoice_id=invoice.id, amount=amount, status=invoice.status)
        return invoice

    def update_status(self, tenant_id: int, invoice_id: int, status: InvoiceStatus) -> Invoice:
        invoice = self.get_invoice(tenant_id, invoice_id)
        self._transition(invoice, InvoiceStatus(status))
        self.db.commit()
        self.db.refresh(invoice)
        return invoice

    def cancel(self, tenant_id: int, invoice_id: int) -> Invoice:
        return self.update_status(tenant_id, invoice_id, InvoiceStatus.CANCELLED)

    def mark_overdue(self, tenant_id: int, today: Optional[date] = None) -> int:
        """Moves sent/viewed invoices past their due date to overdue."""
        today = today or today_local()
        invoices = self.db.query(Invoice).filter(
            Invoice.tenant_id == tenant_id,
            Invoice.status.in_([InvoiceStatus.SENT.value, InvoiceStatus.VIEWED.value]),
            Invoice.due_date < today
        ).all()
        for invoice in invoices:
            invoice.status = InvoiceStatus.OVERDUE.value
        self.db.commit()
        if invoices:
            logger.info("invoices_marked_overdue", tenant_id=tenant_id, count=len(invoices))
        return len(invoices)

    @staticmethod
    def _transition(invoice: Invoice, target: InvoiceStatus) -> None:
        current = InvoiceStatus(invoice.status)
        if target == current:
            return
        if target not in INVOICE_STATUS_TRANSITIONS[current]:
            raise BadRequest(
                f"Cannot change invoice status from {current.value} to {target.value}",
                details={"from": current.value, "to": target.value}
            )
        invoice.status = target.value

    @staticmethod
    def _set_items(invoice: Invoice, items: List[InvoiceItemData]) -> None:
        subtotal = Money.ZERO
        vat = Money.ZERO
        rows = []
        for position, item in enumerate(items):
            totals = compute_line(item)
            subtotal = subtotal + totals.line_total
            vat = vat + totals.vat_amount
            rows.append(InvoiceItem(
                description=item.description.strip(),
                quantity=item.quantity,
                unit_price=item.unit_price,
                vat_rate=item.vat_rate,
                line_total=totals.line_total.minor,
                vat_amount=totals.vat_amount.minor,
                sort_order=position,
            ))
        invoice.items = rows
        invoice.subtotal_amount = subtotal.minor
        invoice.vat_amount = vat.minor
        invoice.total_amount = (subtotal + vat).minor


# ============================================================
# BILLS
# ============================================================

class BillService:

    def __init__(self, db: Session):
        self.db = db

    def create_bill(self, tenant_id: int, data: BillCreate, commit: bool = True) -> Bill:
        _require_contact(self.db, tenant_id, data.contact_id)
        due_date = data.due_date or data.issue_date
        if due_date < data.issue_date:
            raise BadRequest("Due date cannot be before the issue date")

        bill = Bill(
            tenant_id=tenant_id,
            contact_id=data.contact_id,
            supplier_name=data.supplier_name.strip(),
            supplier_vat_number=normalize_vat_number(data.supplier_vat_number),
            invoice_number=data.invoice_number,
            issue_date=data.issue_date,
            due_date=due_date,
            amount=data.amount,
            vat_amount=data.vat_amount,
            vat_rate=data.vat_rate,
            status=BillStatus(data.status).value,
            category=ExpenseCategory.parse(data.category).value,
            description=data.description,
            notes=data.notes,
            document_id=data.document_id,
        )
        self.db.add(bill)
        if commit:
            self.db.commit()
            self.db.refresh(bill)
        else:
            self.db.flush()
        logger.info("bill_created", tenant_id=tenant_id, bill_id=bill.id, amount=bill.amount)
        return bill

    def get_bill(self, tenant_id: int, bill_id: int) -> Bill:
        bill = self.db.query(Bill).filter(Bill.id == bill_id, Bill.tenant_id == tenant_id).first()
        if bill is None:
            raise NotFound("Bill not found")
        return bill

    def list_bills(
        self,
        tenant_id: int,
        status: Optional[BillStatus] = None,
        category: Optional[ExpenseCategory] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Bill], int]:
        _check_page(limit, offset)
        query = self.db.query(Bill).filter(Bill.tenant_id == tenant_id)
        if status is not None:
            query = query.filter(Bill.status == BillStatus(status).value)
        if category is not None:
            query = query.filter(Bill.category == ExpenseCategory(category).value)
        if from_date is not None:
            query = query.filter(Bill.issue_date >= from_date)
        if to_date is not None:
            query = query.filter(Bill.issue_date <= to_date)

        total = query.count()
        items = query.order_by(Bill.issue_date.desc(), Bill.id.desc()).offset(offset).limit(limit).all()
        return items, total

    def update_bill(self, tenant_id: int, bill_id: int, data: BillUpdate) -> Bill:
        bill = self.get_bill(tenant_id, bill_id)
        changes = data.model_dump(exclude_unset=True)
        if changes.get("contact_id") is not None:
            _require_contact(self.db, tenant_id, changes["contact_id"])
        if "supplier_vat_number" in changes:
            changes["supplier_vat_number"] = normalize_vat_number(changes["supplier_vat_number"])
        for enum_field in ("status", "category"):
            if changes.get(enum_field) is not None:
                changes[enum_field] = changes[enum_field].value
        for key, value in changes.items():
            if value is None and key in ("supplier_name", "issue_date", "due_date", "amount", "status", "category"):
                continue
            setattr(bill, key, value)

        if bill.due_date < bill.issue_date:
            raise BadRequest("Due date cannot be before the issue date")

        self.db.commit()
        self.db.refresh(bill)
        return bill

    def mark_bill_paid(self, tenant_id: int, bill_id: int, paid_at: Optional[datetime] = None) -> Bill:
        bill = self.get_bill(tenant_id, bill_id)
        if bill.status == BillStatus.CANCELLED.value:
            raise BadRequest("Cannot pay a cancelled bill")
        bill.status = BillStatus.PAID.value
        bill.paid_at = paid_at or now_utc()
        self.db.commit()
        self.db.refresh(bill)
        return bill

    def delete_bill(self, tenant_id: int, bill_id: int) -> None:
        bill = self.get_bill(tenant_id, bill_id)
        self.db.delete(bill)
        self.db.commit()


# ============================================================
# EXPENSES
# ============================================================

class ExpenseService:

    def __init__(self, db: Session):
        self.db = db

    def create_expense(self, tenant_id: int, data: ExpenseCreate, commit: bool = True) -> Expense:
        _require_contact(self.db, tenant_id, data.contact_id)
        if data.vat_amount is not None and data.vat_amount > data.amount:
            raise BadRequest("VAT amount cannot exceed the expense amount")

        expense = Expense(
            tenant_id=tenant_id,
            contact_id=data.contact_id,
            date=data.date,
            merchant=data.merchant.strip(),
            amount=data.amount,
            vat_amount=data.vat_amount,
            vat_rate=data.vat_rate,
            category=ExpenseCategory.parse(data.category).value,
            description=data.description,
            is_deductible=data.is_deductible,
            deductible_percentage=data.deductible_percentage,
            payment_method=data.payment_method.value if data.payment_method else None,
            document_id=data.document_id,
        )
        self.db.add(expense)
        if commit:
            self.db.commit()
            self.db.refresh(expense)
        else:
            self.db.flush()
        logger.info("expense_created", tenant_id=tenant_id, expense_id=expense.id)
        return expense

    def get_expense(self, tenant_id: int, expense_id: int) -> Expense:
        expense = self.db.query(Expense).filter(Expense.id == expense_id, Expense.tenant_id == tenant_id).first()
        if expense is None:
            raise NotFound("Expense not found")
        return expense

    def list_expenses(
        self,
        tenant_id: int,
        category: Optional[ExpenseCategory] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Expense], int]:
        _check_page(limit, offset)
        query = self.db.query(Expense).filter(Expense.tenant_id == tenant_id)
        if category is not None:
            query = query.filter(Expense.category == ExpenseCategory(category).value)
        if from_date is not None:
            query = query.filter(Expense.date >= from_date)
        if to_date is not None:
            query = query.filter(Expense.date <= to_date)

        total = query.count()
        items = query.order_by(Expense.date.desc(), Expense.id.desc()).offset(offset).limit(limit).all()
        return items, total

    def update_expense(self, tenant_id: int, expense_id: int, data: ExpenseUpdate) -> Expense:
        expense = self.get_expense(tenant_id, expense_id)
        changes = data.model_dump(exclude_unset=True)
        if changes.get("contact_id") is not None:
            _require_contact(self.db, tenant_id, changes["contact_id"])
        for enum_field in ("category", "payment_method"):
            if changes.get(enum_field) is not None:
                changes[enum_field] = changes[enum_field].value
        for key, value in changes.items():
            if value is None and key in ("date", "merchant", "amount", "category", "is_deductible",
                                         "deductible_percentage"):
                continue
            setattr(expense, key, value)

        if expense.vat_amount is not None and expense.vat_amount > expense.amount:
            raise BadRequest("VAT amount cannot exceed the expense amount")

        self.db.commit()
        self.db.refresh(expense)
        return expense

    def delete_expense(self, tenant_id: int, expense_id: int) -> None:
        expense = self.get_expense(tenant_id, expense_id)
        self.db.delete(expense)
        self.db.commit()


# ============================================================
# CREDIT NOTES
# ============================================================

class CreditNoteService:
    """
    Credit note lifecycle: draft → confirmed → settled, or cancelled.

    Confirming books nothing in the cashflow. When a refund is expected a
    RefundClaim is opened; recording the refund creates the cash movement
    (out for sales credit notes, in for purchase ones) and settles the claim.
    """

    def __init__(self, db: Session):
        self.db = db

    def create_credit_note(self, tenant_id: int, data: CreditNoteCreate, commit: bool = True) -> CreditNote:
        credit_note_type = CreditNoteType(data.credit_note_type)
        contact = _require_contact(self.db, tenant_id, data.contact_id)
        if credit_note_type == CreditNoteType.SALES and contact is None:
            raise BadRequest("A sales credit note needs a customer contact")
        counterparty_name = (data.counterparty_name or "").strip() or (contact.name if contact else None)
        if counterparty_name is None:
            raise BadRequest("A credit note needs a contact or a counterparty name")

        credit_note = CreditNote(
            tenant_id=tenant_id,
            contact_id=contact.id if contact else None,
            credit_note_type=credit_note_type.value,
            credit_note_number=data.credit_note_number,
            counterparty_name=counterparty_name,
            issue_date=data.issue_date,
            currency=data.currency.upper(),
            status=CreditNoteStatus.DRAFT.value,
            settlement_intent=SettlementIntent(data.settlement_intent).value,
            reason=data.reason,
            document_id=data.document_id,
        )
        self._set_amounts(credit_note, data.total_amount, data.vat_amount, data.subtotal_amount)
        self._link_original_invoice(tenant_id, credit_note, data.original_invoice_number)

        self.db.add(credit_note)
        if commit:
            self.db.commit()
            self.db.refresh(credit_note)
        else:
            self.db.flush()
        logger.info("credit_note_created", tenant_id=tenant_id, credit_note_id=credit_note.id,
                    type=credit_note.credit_note_type, total=credit_note.total_amount)
        return credit_note

    def get_credit_note(self, tenant_id: int, credit_note_id: int) -> CreditNote:
        credit_note = self.db.query(CreditNote).filter(
            CreditNote.id == credit_note_id, CreditNote.tenant_id == tenant_id
        ).first()
        if credit_note is None:
            raise NotFound("Credit note not found")
        return credit_note

    def list_credit_notes(
        self,
        tenant_id: int,
        status: Optional[CreditNoteStatus] = None,
        credit_note_type: Optional[CreditNoteType] = None,
        contact_id: Optional[int] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[CreditNote], int]:
        _check_page(limit, offset)
        query = self.db.query(CreditNote).filter(CreditNote.tenant_id == tenant_id)
        if status is not None:
            query = query.filter(CreditNote.status == CreditNoteStatus(status).value)
        if credit_note_type is not None:
            query = query.filter(CreditNote.credit_note_type == CreditNoteType(credit_note_type).value)
        if contact_id is not None:
            query = query.filter(CreditNote.contact_id == contact_id)
        if from_date is not None:
            query = query.filter(CreditNote.issue_date >= from_date)
        if to_date is not None:
            query = query.filter(CreditNote.issue_date <= to_date)

        total = query.count()
        items = query.order_by(CreditNote.issue_date.desc(), CreditNote.id.desc()).offset(offset).limit(limit).all()
        return items, total

    def update_credit_note(self, tenant_id: int, credit_note_id: int, data: CreditNoteUpdate) -> CreditNote:
        credit_note = self.get_credit_note(tenant_id, credit_note_id)
        if credit_note.status != CreditNoteStatus.DRAFT.value:
            raise BadRequest("Only draft credit notes can be edited")

        changes = data.model_dump(exclude_unset=True)
        if changes.get("contact_id") is not None:
            credit_note.contact_id = _require_contact(self.db, tenant_id, changes["contact_id"]).id
        for key in ("credit_note_number", "counterparty_name", "reason"):
            if key in changes:
                setattr(credit_note, key, changes[key])
        if changes.get("issue_date") is not None:
            credit_note.issue_date = changes["issue_date"]
        if "original_invoice_number" in changes:
            self._link_original_invoice(tenant_id, credit_note, changes["original_invoice_number"])

        if any(changes.get(key) is not None for key in ("subtotal_amount", "vat_amount", "total_amount")):
            total = changes.get("total_amount") or credit_note.total_amount
            vat = changes["vat_amount"] if changes.get("vat_amount") is not None else credit_note.vat_amount
            self._set_amounts(credit_note, total, vat, changes.get("subtotal_amount"))

        self.db.commit()
        self.db.refresh(credit_note)
        return credit_note

    def confirm(self, tenant_id: int, credit_note_id: int, commit: bool = True) -> CreditNote:
        credit_note = self.get_credit_note(tenant_id, credit_note_id)
        if credit_note.status != CreditNoteStatus.DRAFT.value:
            raise BadRequest(f"Only draft credit notes can be confirmed (status is {credit_note.status})")

        credit_note.status = CreditNoteStatus.CONFIRMED.value
        credit_note.confirmed_at = now_utc()
        if credit_note.settlement_intent == SettlementIntent.REFUND_EXPECTED.value:
            self._open_claim(credit_note)

        if commit:
            self.db.commit()
            self.db.refresh(credit_note)
        else:
            self.db.flush()
        logger.info("credit_note_confirmed", tenant_id=tenant_id, credit_note_id=credit_note.id,
                    intent=credit_note.settlement_intent)
        return credit_note

    def update_settlement_intent(self, tenant_id: int, credit_note_id: int,
                                 intent: SettlementIntent) -> CreditNote:
        """Changes the intent of a draft or confirmed credit note, opening or cancelling its claim."""
        credit_note = self.get_credit_note(tenant_id, credit_note_id)
        if credit_note.status not in (CreditNoteStatus.DRAFT.value, CreditNoteStatus.CONFIRMED.value):
            raise BadRequest(f"Cannot change the settlement of a {credit_note.status} credit note")

        intent = SettlementIntent(intent)
        credit_note.settlement_intent = intent.value
        if credit_note.status == CreditNoteStatus.CONFIRMED.value:
            claim = self._open_claim_for(credit_note)
            if intent == SettlementIntent.REFUND_EXPECTED and claim is None:
                self._open_claim(credit_note)
            elif intent != SettlementIntent.REFUND_EXPECTED and claim is not None:
                claim.status = RefundClaimStatus.CANCELLED.value

        self.db.commit()
        self.db.refresh(credit_note)
        return credit_note

    def record_refund(self, tenant_id: int, credit_note_id: int, refund_date: Optional[date] = None,
                      amount: Optional[int] = None) -> CreditNoteRefund:
        credit_note = self.get_credit_note(tenant_id, credit_note_id)
        if credit_note.status != CreditNoteStatus.CONFIRMED.value:
            raise BadRequest(f"Refunds can only be recorded on confirmed credit notes (status is {credit_note.status})")

        claim = self._open_claim_for(credit_note)
        if amount is None:
            amount = claim.amount if claim is not None else credit_note.total_amount
        if amount <= 0 or amount > credit_note.total_amount:
            raise BadRequest("Refund amount must be positive and at most the credit note total")

        is_sales = credit_note.credit_note_type == CreditNoteType.SALES.value
        direction = CashDirection.OUT if is_sales else CashDirection.IN
        refund = CreditNoteRefund(
            tenant_id=tenant_id,
            credit_note_id=credit_note.id,
            contact_id=credit_note.contact_id,
            refund_date=refund_date or today_local(),
            amount=amount,
            currency=credit_note.currency,
            direction=direction.value,
        )
        self.db.add(refund)
        self.db.flush()

        settled_at = now_utc()
        if claim is not None:
            claim.status = RefundClaimStatus.SETTLED.value
            claim.refund_id = refund.id
            claim.settled_at = settled_at
        credit_note.status = CreditNoteStatus.SETTLED.value
        credit_note.settled_at = settled_at

        self.db.commit()
        self.db.refresh(refund)
        logger.info("credit_note_refunded", tenant_id=tenant_id, credit_note_id=credit_note.id,
                    amount=amount, direction=direction.value)
        return refund

    def cancel(self, tenant_id: int, credit_note_id: int) -> CreditNote:
        credit_note = self.get_credit_note(tenant_id, credit_note_id)
        if credit_note.status == CreditNoteStatus.SETTLED.value:
            raise BadRequest("A settled credit note cannot be cancelled")
        if credit_note.status == CreditNoteStatus.CANCELLED.value:
            return credit_note

        claim = self._open_claim_for(credit_note)
        if claim is not None:
            claim.status = RefundClaimStatus.CANCELLED.value
        credit_note.status = CreditNoteStatus.CANCELLED.value

        self.db.commit()
        self.db.refresh(credit_note)
        logger.info("credit_note_cancelled", tenant_id=tenant_id, credit_note_id=credit_note.id)
        return credit_note

    def list_open_refund_claims(self, tenant_id: int) -> List[RefundClaim]:
        return self.db.query(RefundClaim).filter(
            RefundClaim.tenant_id == tenant_id,
            RefundClaim.status == RefundClaimStatus.OPEN.value,
        ).order_by(RefundClaim.created_at, RefundClaim.id).all()

    # ==================================================
    # INTERNALS
    # ==================================================

    @staticmethod
    def _set_amounts(credit_note: CreditNote, total: int, vat: int, subtotal: Optional[int]) -> None:
        if vat > total:
            raise BadRequest("VAT amount cannot exceed the credit note total")
        if subtotal is None:
            subtotal = total - vat
        if subtotal + vat != total:
            raise BadRequest("Subtotal and VAT must add up to the total")
        credit_note.subtotal_amount = subtotal
        credit_note.vat_amount = vat
        credit_note.total_amount = total

    def _link_original_invoice(self, tenant_id: int, credit_note: CreditNote, number: Optional[str]) -> None:
        """Links a sales credit note to the invoice it credits; unknown numbers are kept as a reference."""
        number = (number or "").strip() or None
        credit_note.original_invoice_number = number
        credit_note.original_invoice_id = None
        if number is None or credit_note.credit_note_type != CreditNoteType.SALES.value:
            return
        invoice = self.db.query(Invoice).filter(
            Invoice.tenant_id == tenant_id, Invoice.invoice_number == number
        ).first()
        if invoice is not None:
            credit_note.original_invoice_id = invoice.id

    def _open_claim(self, credit_note: CreditNote) -> RefundClaim:
        claim = RefundClaim(
            tenant_id=credit_note.tenant_id,
            credit_note_id=credit_note.id,
            contact_id=credit_note.contact_id,
            amount=credit_note.total_amount,
            currency=credit_note.currency,
            status=RefundClaimStatus.OPEN.value,
        )
        self.db.add(claim)
        return claim

    def _open_claim_for(self, credit_note: CreditNote) -> Optional[RefundClaim]:
        return self.db.query(RefundClaim).filter(
            RefundClaim.credit_note_id == credit_note.id,
            RefundClaim.status == RefundClaimStatus.OPEN.value,
        ).first()


# ============================================================
# OVERVIEW
# ============================================================

def cashflow_overview(db: Session, tenant_id: int, from_date: date, to_date: date) -> dict:
    """
    Money in and out for documents dated inside [from_date, to_date].

    Income is what customers paid on invoices issued in the period plus
    refunds received; expenses are paid bills, recorded expenses and refunds
    paid out. Receivables and payables are what is still open on documents
    of the period. Confirmed credit notes without a refund move nothing.
    """
    if to_date < from_date:
        raise BadRequest("from_date must be before to_date")

    invoices = db.query(Invoice.status, Invoice.total_amount, Invoice.paid_amount).filter(
        Invoice.tenant_id == tenant_id,
        Invoice.issue_date >= from_date,
        Invoice.issue_date <= to_date,
        Invoice.status != InvoiceStatus.CANCELLED.value
    ).all()

    bills = db.query(Bill.status, Bill.amount).filter(
        Bill.tenant_id == tenant_id,
        Bill.issue_date >= from_date,
        Bill.issue_date <= to_date,
        Bill.status != BillStatus.CANCELLED.value
    ).all()

    expense_count, expense_total = db.query(
        func.count(Expense.id), func.coalesce(func.sum(Expense.amount), 0)
    ).filter(
        Expense.tenant_id == tenant_id,
        Expense.date >= from_date,
        Expense.date <= to_date
    ).one()

    refunds = db.query(CreditNoteRefund.direction, func.coalesce(func.sum(CreditNoteRefund.amount), 0)).filter(
        CreditNoteRefund.tenant_id == tenant_id,
        CreditNoteRefund.refund_date >= from_date,
        CreditNoteRefund.refund_date <= to_date
    ).group_by(CreditNoteRefund.direction).all()
    refunded = {direction: int(amount) for direction, amount in refunds}

    income = sum(i.paid_amount for i in invoices) + refunded.get(CashDirection.IN.value, 0)
    paid_bills = sum(b.amount for b in bills if b.status == BillStatus.PAID.value)
    total_expenses = paid_bills + int(expense_total) + refunded.get(CashDirection.OUT.value, 0)

    receivables = sum(i.total_amount - i.paid_amount for i in invoices if i.status in OPEN_INVOICE_STATUSES)
    overdue = sum(
        i.total_amount - i.paid_amount for i in invoices if i.status == InvoiceStatus.OVERDUE.value
    )
    payables = sum(b.amount for b in bills if b.status in OPEN_BILL_STATUSES)

    return {
        "from_date": from_date,
        "to_date": to_date,
        "total_income": income,
        "total_expenses": total_expenses,
        "net_cashflow": income - total_expenses,
        "outstanding_receivables": receivables,
        "overdue_receivables": overdue,
        "outstanding_payables": payables,
        "invoice_count": len(invoices),
        "bill_count": len(bills),
        "expense_count": expense_count,
    }
