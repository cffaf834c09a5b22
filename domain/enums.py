# domain/enums.py
"""
Enumerations persisted as strings in the database and exposed in the API.
"""

from enum import Enum


class DocumentType(str, Enum):
    """Kind of financial document recognised by the AI pipeline"""
    INVOICE = "INVOICE"
    BILL = "BILL"
    EXPENSE = "EXPENSE"
    RECEIPT = "RECEIPT"
    CREDIT_NOTE = "CREDIT_NOTE"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value) -> "DocumentType":
        if isinstance(value, cls):
            return value
        if not value:
            return cls.UNKNOWN
        normalized = str(value).strip().upper().replace(" ", "_").replace("-", "_")
        try:
            return cls(normalized)
        except ValueError:
            return cls.UNKNOWN


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


# Allowed manual status changes
INVOICE_STATUS_TRANSITIONS = {
    InvoiceStatus.DRAFT: {InvoiceStatus.SENT, InvoiceStatus.CANCELLED},
    InvoiceStatus.SENT: {InvoiceStatus.VIEWED, InvoiceStatus.OVERDUE, InvoiceStatus.CANCELLED},
    InvoiceStatus.VIEWED: {InvoiceStatus.OVERDUE, InvoiceStatus.CANCELLED},
    InvoiceStatus.PARTIALLY_PAID: {InvoiceStatus.OVERDUE},
    InvoiceStatus.OVERDUE: {InvoiceStatus.CANCELLED},
    InvoiceStatus.PAID: set(),
    InvoiceStatus.CANCELLED: set(),
}


class BillStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    SCHEDULED = "scheduled"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class ExpenseCategory(str, Enum):
    OFFICE_SUPPLIES = "office_supplies"
    HARDWARE = "hardware"
    SOFTWARE = "software"
    TRAVEL = "travel"
    TELECOM = "telecom"
    MEALS = "meals"
    PROFESSIONAL_SERVICES = "professional_services"
    INSURANCE = "insurance"
    UTILITIES = "utilities"
    RENT = "rent"
    MARKETING = "marketing"
    VEHICLE = "vehicle"
    OTHER = "other"

    @classmethod
    def parse(cls, value) -> "ExpenseCategory":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except (ValueError, AttributeError):
            return cls.OTHER


class PaymentMethod(str, Enum):
    BANK_TRANSFER = "bank_transfer"
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    CASH = "cash"
    PAYPAL = "paypal"
    OTHER = "other"


class ContactType(str, Enum):
    CUSTOMER = "Customer"
    VENDOR = "Vendor"
    BOTH = "Both"


class DocumentStatus(str, Enum):
    UPLOADED = "uploaded"
    QUEUED = "queued"
    PROCESSING = "processing"
    PROCESSED = "processed"
    NEEDS_REVIEW = "needs_review"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    FAILED = "failed"


class PeppolDirection(str, Enum):
    OUTBOUND = "outbound"
    INBOUND = "inbound"


class PeppolStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    REJECTED = "rejected"


class CreditNoteType(str, Enum):
    SALES = "sales"
    PURCHASE = "purchase"


class CreditNoteStatus(str, Enum):
    DRAFT = "draft"
    CONFIRMED = "confirmed"
    SETTLED = "settled"
    CANCELLED = "cancelled"


class SettlementIntent(str, Enum):
    """What the tenant expects to happen with a confirmed credit note"""
    REFUND_EXPECTED = "refund_expected"
    OFFSET = "offset"


class RefundClaimStatus(str, Enum):
    OPEN = "open"
    SETTLED = "settled"
    CANCELLED = "cancelled"


class CashDirection(str, Enum):
    IN = "in"
    OUT = "out"
