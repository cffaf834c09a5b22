# documents/confirmation.py
"""
Turns extracted document data into a financial entity.

    BILL                      → Bill
    INVOICE with contact_id   → outgoing Invoice draft for that customer
    INVOICE without contact   → Bill (an invoice received from a supplier)
    EXPENSE, RECEIPT          → Expense
    CREDIT_NOTE with contact  → confirmed sales credit note for that customer
    CREDIT_NOTE without       → confirmed purchase credit note from the supplier

Confirmation is idempotent: a confirmed document returns the entity created
the first time.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ai.models import (
    EXTRACTED_TYPES, ExtractedBillData, ExtractedExpenseData, ExtractedInvoiceData, ExtractedReceiptData
)
from cashflow.schemas import BillCreate, CreditNoteCreate, ExpenseCreate, InvoiceCreate, InvoiceItemData
from cashflow.service import BillService, CreditNoteService, ExpenseService, InvoiceService
from contacts.models import Contact
from contacts.service import ContactService
from documents.models import Document, DocumentProcessingRun
from domain.enums import BillStatus, CreditNoteType, DocumentStatus, DocumentType, ExpenseCategory, PaymentMethod
from domain.money import Money, VatRate
from utils.exceptions import BadRequest, Conflict, NotFound
from utils.logging_config import get_logger
from utils.timezone import parse_iso_date, today_local

logger = get_logger(__name__)

UNKNOWN_SUPPLIER = "Unknown supplier"

CONFIRMABLE_STATUSES = (
    DocumentStatus.PROCESSING.value,
    DocumentStatus.PROCESSED.value,
    DocumentStatus.NEEDS_REVIEW.value,
)


@dataclass
class ConfirmationResult:
    document_id: int
    entity_type: str  # bill | expense | invoice | credit_note
    entity_id: int
    created: bool = True


def _money(value: Optional[str]) -> Optional[Money]:
    return Money.parse(value) if value else None


def _minor(value: Optional[Money]) -> Optional[int]:
    return value.minor if value is not None else None


def _unsigned(value: Optional[Money]) -> Optional[Money]:
    if value is not None and value.is_negative:
        return -value
    return value


def _rate(value: Optional[str]) -> Optional[int]:
    rate = VatRate.parse(value) if value else None
    return rate.basis_points if rate is not None else None


def _payment_method(value: Optional[str]) -> Optional[PaymentMethod]:
    if not value:
        return None
    normalized = value.strip().lower().replace(" ", "_").replace("-", "_")
    try:
        return PaymentMethod(normalized)
    except ValueError:
        return PaymentMethod.OTHER


class DocumentConfirmationService:

    def __init__(self, db: Session):
        self.db = db

    def confirm(
        self,
        tenant_id: int,
        document_id: int,
        data: Optional[Dict[str, Any]] = None,
        document_type: Optional[DocumentType] = None,
        contact_id: Optional[int] = None,
    ) -> ConfirmationResult:
        """
        Creates the entity for a document.

        `data` (camelCase or snake_case extraction fields) and `document_type`
        default to what the latest processing run extracted.
        """
        document = self.db.query(Document).filter(
            Document.id == document_id,
            Document.tenant_id == tenant_id
        ).first()
        if document is None:
            raise NotFound("Document not found")

        if document.status == DocumentStatus.CONFIRMED.value and document.confirmed_entity_id is not None:
            return ConfirmationResult(
                document_id=document.id,
                entity_type=document.confirmed_entity_type,
                entity_id=document.confirmed_entity_id,
                created=False,
            )
        if document.status not in CONFIRMABLE_STATUSES:
            raise Conflict(f"Document cannot be confirmed while {document.status}")

        if data is None:
            data = self._latest_extraction(document)
        resolved_type = DocumentType.parse(document_type or document.document_type)
        record_type = EXTRACTED_TYPES.get(resolved_type)
        if record_type is None:
            raise BadRequest(f"Documents of type {resolved_type.value} cannot be confirmed")
        extracted = record_type.from_dict(data)

        if resolved_type == DocumentType.BILL:
            entity_type, entity_id = "bill", self._create_bill(tenant_id, document, extracted)
        elif resolved_type == DocumentType.INVOICE and contact_id is not None:
            entity_type, entity_id = "invoice", self._create_invoice(tenant_id, document, extracted, contact_id)
        elif resolved_type == DocumentType.INVOICE:
            entity_type, entity_id = "bill", self._create_bill(tenant_id, document, self._received_invoice(extracted))
        elif resolved_type == DocumentType.CREDIT_NOTE:
            entity_id = self._create_credit_note(tenant_id, document, extracted, contact_id)
            entity_type = "credit_note"
        elif resolved_type == DocumentType.RECEIPT:
            entity_type, entity_id = "expense", self._create_expense(tenant_id, document, self._receipt(extracted))
        else:
            entity_type, entity_id = "expense", self._create_expense(tenant_id, document, extracted)

        document.document_type = resolved_type.value
        document.status = DocumentStatus.CONFIRMED.value
        document.confirmed_entity_type = entity_type
        document.confirmed_entity_id = entity_id
        self.db.commit()

        logger.info(
            "document_confirmed", tenant_id=tenant_id, document_id=document.id,
            entity_type=entity_type, entity_id=entity_id
        )
        return ConfirmationResult(document_id=document.id, entity_type=entity_type, entity_id=entity_id)

    # ============================================
    # Entities
    # ============================================

    def _create_bill(self, tenant_id: int, document: Document, bill: ExtractedBillData) -> int:
        supplier_name = bill.supplier_name or UNKNOWN_SUPPLIER
        contact = self._resolve_vendor(tenant_id, bill.supplier_vat_number, bill.supplier_name)

        amount = _money(bill.total_amount) or _money(bill.amount)
        if amount is None:
            raise BadRequest("The document has no total amount")
        issue_date = parse_iso_date(bill.issue_date) or today_local()
        due_date = parse_iso_date(bill.due_date)
        if due_date is not None and due_date < issue_date:
            due_date = issue_date

        created = BillService(self.db).create_bill(tenant_id, BillCreate(
            contact_id=contact.id if contact else None,
            supplier_name=supplier_name,
            supplier_vat_number=bill.supplier_vat_number,
            invoice_number=bill.invoice_number,
            issue_date=issue_date,
            due_date=due_date,
            amount=amount.minor,
            vat_amount=_minor(_money(bill.vat_amount)),
            vat_rate=_rate(bill.vat_rate),
            status=BillStatus.PENDING,
            category=ExpenseCategory.parse(bill.category),
            description=bill.description,
            notes=f"Payment reference: {bill.payment_reference}" if bill.payment_reference else None,
            document_id=document.id,
        ), commit=False)
        return created.id

    def _create_expense(self, tenant_id: int, document: Document, expense: ExtractedExpenseData) -> int:
        amount = _money(expense.amount)
        if amount is None:
            raise BadRequest("The document has no amount")
        merchant = expense.merchant or UNKNOWN_SUPPLIER
        contact = self._resolve_vendor(tenant_id, expense.merchant_vat_number, expense.merchant)

        created = ExpenseService(self.db).create_expense(tenant_id, ExpenseCreate(
            contact_id=contact.id if contact else None,
            date=parse_iso_date(expense.date) or today_local(),
            merchant=merchant,
            amount=amount.minor,
            vat_amount=_minor(_money(expense.vat_amount)),
            vat_rate=_rate(expense.vat_rate),
            category=ExpenseCategory.parse(expense.category),
            description=expense.description,
            payment_method=_payment_method(expense.payment_method),
            document_id=document.id,
        ), commit=False)
        return created.id

    def _create_invoice(self, tenant_id: int, document: Document, invoice: ExtractedInvoiceData,
                        contact_id: int) -> int:
        items = []
        for line in invoice.line_items:
            quantity = Decimal(str(line.quantity)) if line.quantity and line.quantity > 0 else Decimal("1")
            unit_price = _money(line.unit_price)
            if unit_price is None:
                total = _money(line.total)
                if total is None:
                    continue
                unit_price = Money.from_decimal(Decimal(total.minor) / 100 / quantity)
            items.append(InvoiceItemData(
                description=line.description or "Item",
                quantity=quantity,
                unit_price=unit_price.minor,
                vat_rate=_rate(line.vat_rate) or 0,
            ))

        if not items:
            base = _money(invoice.subtotal) or _money(invoice.total_amount)
            if base is None:
                raise BadRequest("The document has no amounts to invoice")
            vat_rate = _rate(invoice.vat_breakdown[0].rate) if invoice.vat_breakdown else None
            items.append(InvoiceItemData(
                description=f"Invoice {invoice.invoice_number}" if invoice.invoice_number else "Item",
                quantity=Decimal("1"),
                unit_price=base.minor,
                vat_rate=vat_rate or 0,
            ))

        issue_date = parse_iso_date(invoice.issue_date)
        due_date = parse_iso_date(invoice.due_date)
        if issue_date is not None and due_date is not None and due_date < issue_date:
            due_date = issue_date

        created = InvoiceService(self.db).create_invoice(tenant_id, InvoiceCreate(
            contact_id=contact_id,
            issue_date=issue_date,
            due_date=due_date,
            currency=(invoice.currency or "EUR")[:3],
            items=items,
        ), document_id=document.id)
        return created.id

    def _create_credit_note(self, tenant_id: int, document: Document, credit: ExtractedInvoiceData,
                            contact_id: Optional[int]) -> int:
        """Credit notes are booked confirmed; they never touch invoice or bill totals."""
        vat = _unsigned(_money(credit.total_vat_amount)) or Money.ZERO
        subtotal = _unsigned(_money(credit.subtotal))
        total = _unsigned(_money(credit.total_amount)) or (subtotal + vat if subtotal is not None else None)
        if total is None or not total.is_positive:
            raise BadRequest("The document has no total amount")
        if subtotal is not None and (subtotal + vat).differs_from(total, tolerance=0):
            subtotal = None

        if contact_id is not None:
            credit_note_type = CreditNoteType.SALES
            counterparty_name = None
        else:
            credit_note_type = CreditNoteType.PURCHASE
            contact = self._resolve_vendor(tenant_id, credit.vendor_vat_number, credit.vendor_name)
            contact_id = contact.id if contact else None
            counterparty_name = credit.vendor_name or UNKNOWN_SUPPLIER

        service = CreditNoteService(self.db)
        created = service.create_credit_note(tenant_id, CreditNoteCreate(
            credit_note_type=credit_note_type,
            contact_id=contact_id,
            counterparty_name=counterparty_name,
            credit_note_number=credit.invoice_number,
            issue_date=parse_iso_date(credit.issue_date) or today_local(),
            subtotal_amount=_minor(subtotal),
            vat_amount=vat.minor,
            total_amount=total.minor,
            currency=(credit.currency or "EUR")[:3],
            original_invoice_number=credit.original_invoice_number,
            document_id=document.id,
        ), commit=False)
        service.confirm(tenant_id, created.id, commit=False)
        return created.id

    # ============================================
    # Helpers
    # ============================================

    def _resolve_vendor(self, tenant_id: int, vat_number: Optional[str], name: Optional[str]) -> Optional[Contact]:
        contacts = ContactService(self.db)
        contact = contacts.find_by_vat_or_name(tenant_id, vat_number, name)
        if contact is None and name:
            contact = contacts.create_vendor(tenant_id, name, vat_number)
        return contact

    @staticmethod
    def _received_invoice(invoice: ExtractedInvoiceData) -> ExtractedBillData:
        return ExtractedBillData(
            supplier_name=invoice.vendor_name,
            supplier_vat_number=invoice.vendor_vat_number,
            supplier_address=invoice.vendor_address,
            invoice_number=invoice.invoice_number,
            issue_date=invoice.issue_date,
            due_date=invoice.due_date,
            amount=invoice.subtotal,
            vat_amount=invoice.total_vat_amount,
            vat_rate=invoice.vat_breakdown[0].rate if invoice.vat_breakdown else None,
            total_amount=invoice.total_amount,
            line_items=invoice.line_items,
            currency=invoice.currency,
            iban=invoice.iban,
            payment_reference=invoice.payment_reference,
            confidence=invoice.confidence,
        )

    @staticmethod
    def _receipt(receipt: ExtractedReceiptData) -> ExtractedExpenseData:
        vat_amounts = [_money(entry.amount) for entry in receipt.vat_breakdown]
        vat_amounts = [amount for amount in vat_amounts if amount is not None]
        total_vat = sum(vat_amounts, Money.ZERO) if vat_amounts else None
        return ExtractedExpenseData(
            merchant=receipt.merchant_name,
            merchant_vat_number=receipt.merchant_vat_number,
            date=receipt.transaction_date,
            amount=receipt.total_amount,
            vat_amount=str(total_vat) if total_vat is not None else None,
            vat_rate=receipt.vat_breakdown[0].rate if len(receipt.vat_breakdown) == 1 else None,
            description=f"Receipt {receipt.receipt_number}" if receipt.receipt_number else None,
            payment_method=receipt.payment_method,
            currency=receipt.currency,
            confidence=receipt.confidence,
        )

    def _latest_extraction(self, document: Document) -> Dict[str, Any]:
        run = self.db.query(DocumentProcessingRun).filter(
            DocumentProcessingRun.document_id == document.id,
            DocumentProcessingRun.extracted_data.isnot(None)
        ).order_by(DocumentProcessingRun.id.desc()).first()
        if run is None:
            raise BadRequest("No extracted data to confirm; send the data explicitly")
        return run.extracted_data
