# ai/models.py
"""
Data extracted from documents by the AI agents.

Values stay as the model returned them (amounts are strings such as
"1210.00") until the document is confirmed; the consensus and audit layers
parse them with `Money.parse`. Dictionaries use camelCase keys, matching the
JSON the prompts ask for.
"""

from dataclasses import dataclass, field, fields
from typing import Any, ClassVar, Dict, List, Optional

from domain.enums import DocumentType


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _number(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(str(value).replace(",", "."))
    except ValueError:
        return None


def _confidence(value: Any) -> float:
    number = _number(value)
    if number is None:
        return 0.0
    return max(0.0, min(1.0, number))


class _CamelRecord:
    """from_dict/to_dict over dataclass fields; nested lists listed in LIST_FIELDS"""

    LIST_FIELDS: ClassVar[Dict[str, type]] = {}
    NUMBER_FIELDS: ClassVar[frozenset] = frozenset()

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]):
        data = data or {}
        values = {}
        for f in fields(cls):
            raw = data.get(_camel(f.name), data.get(f.name))
            if f.name in cls.LIST_FIELDS:
                item_type = cls.LIST_FIELDS[f.name]
                values[f.name] = [item_type.from_dict(item) for item in (raw or []) if isinstance(item, dict)]
            elif f.name == "confidence":
                values[f.name] = _confidence(raw)
            elif f.name in cls.NUMBER_FIELDS:
                values[f.name] = _number(raw)
            else:
                values[f.name] = _text(raw)
        return cls(**values)

    @property
    def is_empty(self) -> bool:
        """True when the model returned nothing usable."""
        return all(not getattr(self, f.name) for f in fields(self) if f.name != "confidence")

    def to_dict(self) -> Dict[str, Any]:
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name in self.LIST_FIELDS:
                value = [item.to_dict() for item in value]
            result[_camel(f.name)] = value
        return result


# ============================================
# Building blocks
# ============================================

@dataclass
class LineItem(_CamelRecord):
    NUMBER_FIELDS: ClassVar[frozenset] = frozenset({"quantity"})

    description: Optional[str] = None
    quantity: Optional[float] = None
    unit_price: Optional[str] = None
    vat_rate: Optional[str] = None
    total: Optional[str] = None


@dataclass
class VatBreakdownEntry(_CamelRecord):
    rate: Optional[str] = None
    base: Optional[str] = None
    amount: Optional[str] = None


# ============================================
# Per document type
# ============================================

@dataclass
class ExtractedInvoiceData(_CamelRecord):
    LIST_FIELDS: ClassVar[Dict[str, type]] = {"line_items": LineItem, "vat_breakdown": VatBreakdownEntry}

    vendor_name: Optional[str] = None
    vendor_vat_number: Optional[str] = None
    vendor_address: Optional[str] = None
    invoice_number: Optional[str] = None
    issue_date: Optional[str] = None
    due_date: Optional[str] = None
    payment_terms: Optional[str] = None
    line_items: List[LineItem] = field(default_factory=list)
    currency: Optional[str] = None
    subtotal: Optional[str] = None
    vat_breakdown: List[VatBreakdownEntry] = field(default_factory=list)
    total_vat_amount: Optional[str] = None
    total_amount: Optional[str] = None
    iban: Optional[str] = None
    bic: Optional[str] = None
    payment_reference: Optional[str] = None
    original_invoice_number: Optional[str] = None
    confidence: float = 0.0


@dataclass
class ExtractedBillData(_CamelRecord):
    LIST_FIELDS: ClassVar[Dict[str, type]] = {"line_items": LineItem}

    supplier_name: Optional[str] = None
    supplier_vat_number: Optional[str] = None
    supplier_address: Optional[str] = None
    invoice_number: Optional[str] = None
    issue_date: Optional[str] = None
    due_date: Optional[str] = None
    amount: Optional[str] = None
    vat_amount: Optional[str] = None
    vat_rate: Optional[str] = None
    total_amount: Optional[str] = None
    line_items: List[LineItem] = field(default_factory=list)
    currency: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    iban: Optional[str] = None
    payment_reference: Optional[str] = None
    confidence: float = 0.0


@dataclass
class ExtractedExpenseData(_CamelRecord):
    merchant: Optional[str] = None
    merchant_vat_number: Optional[str] = None
    date: Optional[str] = None
    amount: Optional[str] = None
    vat_amount: Optional[str] = None
    vat_rate: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    payment_method: Optional[str] = None
    currency: Optional[str] = None
    confidence: float = 0.0


@dataclass
class ExtractedReceiptData(_CamelRecord):
    LIST_FIELDS: ClassVar[Dict[str, type]] = {"items": LineItem, "vat_breakdown": VatBreakdownEntry}

    merchant_name: Optional[str] = None
    merchant_vat_number: Optional[str] = None
    merchant_address: Optional[str] = None
    transaction_date: Optional[str] = None
    receipt_number: Optional[str] = None
    items: List[LineItem] = field(default_factory=list)
    subtotal: Optional[str] = None
    vat_breakdown: List[VatBreakdownEntry] = field(default_factory=list)
    total_amount: Optional[str] = None
    payment_method: Optional[str] = None
    currency: Optional[str] = None
    confidence: float = 0.0


EXTRACTED_TYPES = {
    DocumentType.INVOICE: ExtractedInvoiceData,
    DocumentType.CREDIT_NOTE: ExtractedInvoiceData,
    DocumentType.BILL: ExtractedBillData,
    DocumentType.EXPENSE: ExtractedExpenseData,
    DocumentType.RECEIPT: ExtractedReceiptData,
}

# Fields without which a document cannot be booked
ESSENTIAL_FIELDS = {
    DocumentType.INVOICE: ("vendor_name", "total_amount", "issue_date"),
    DocumentType.CREDIT_NOTE: ("vendor_name", "total_amount", "issue_date"),
    DocumentType.BILL: ("supplier_name", "amount", "issue_date"),
    DocumentType.EXPENSE: ("merchant", "amount", "date"),
    DocumentType.RECEIPT: ("merchant_name", "total_amount", "transaction_date"),
}


def missing_essential_fields(document_type: DocumentType, data) -> List[str]:
    return [name for name in ESSENTIAL_FIELDS.get(document_type, ()) if not getattr(data, name, None)]


@dataclass
class ClassificationResult:
    document_type: DocumentType
    confidence: float
    reasoning: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "documentType": self.document_type.value,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
        }
