# peppol/mapper.py
"""
Conversions between Dokus records and Peppol documents.

Outbound: Invoice + Contact + TenantSettings -> PeppolSendRequest -> Recommand JSON.
Inbound:  Recommand document JSON -> PeppolReceivedDocument -> BillCreate.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

from auth.models import Tenant
from cashflow.models import Invoice, InvoiceItem
from cashflow.schemas import BillCreate
from contacts.models import Contact
from domain.enums import BillStatus, ExpenseCategory
from domain.money import Money, VatRate
from tenants.models import TenantSettings
from utils.timezone import parse_iso_date, today_local

logger = logging.getLogger(__name__)

UNIT_CODE = "C62"            # "one" (unit); HUR for hours, DAY for days
PAYMENT_MEANS_CREDIT_TRANSFER = "30"
UNKNOWN_SUPPLIER = "Unknown Supplier"

# First match wins; checked against seller name, note and line names
CATEGORY_KEYWORDS = [
    (("software", "license", "hosting", "cloud"), ExpenseCategory.SOFTWARE),
    (("travel", "flight", "hotel"), ExpenseCategory.TRAVEL),
    (("telecom", "phone", "internet"), ExpenseCategory.TELECOM),
    (("office", "supplies"), ExpenseCategory.OFFICE_SUPPLIES),
    (("hardware", "computer", "laptop"), ExpenseCategory.HARDWARE),
    (("insurance",), ExpenseCategory.INSURANCE),
    (("rent", "lease"), ExpenseCategory.RENT),
    (("marketing", "advertising"), ExpenseCategory.MARKETING),
    (("consulting", "professional", "legal", "accounting"), ExpenseCategory.PROFESSIONAL_SERVICES),
]


# ============================================
# Peppol data
# ============================================

@dataclass
class PeppolParty:
    name: Optional[str] = None
    vat_number: Optional[str] = None
    street_name: Optional[str] = None
    city_name: Optional[str] = None
    postal_zone: Optional[str] = None
    country_code: Optional[str] = None
    contact_email: Optional[str] = None
    contact_name: Optional[str] = None
    company_number: Optional[str] = None


@dataclass
class PeppolLineItem:
    id: str
    name: str
    description: str
    quantity: float
    unit_code: str
    unit_price: float
    line_total: float
    tax_category: str
    tax_percent: float


@dataclass
class PeppolPaymentInfo:
    iban: str
    bic: Optional[str] = None
    payment_means_code: str = PAYMENT_MEANS_CREDIT_TRANSFER
    payment_id: Optional[str] = None


@dataclass
class PeppolInvoiceData:
    invoice_number: str
    issue_date: date
    due_date: date
    seller: PeppolParty
    buyer: PeppolParty
    line_items: List[PeppolLineItem]
    currency_code: str = "EUR"
    note: Optional[str] = None
    payment_info: Optional[PeppolPaymentInfo] = None


@dataclass
class PeppolSendRequest:
    recipient_peppol_id: str
    invoice: PeppolInvoiceData
    document_type: str = "invoice"


@dataclass
class PeppolReceivedDocument:
    """Inbound document as returned by GET /api/v1/documents/{id}"""
    id: str
    sender_peppol_id: Optional[str] = None
    document_type: Optional[str] = None
    invoice_number: Optional[str] = None
    issue_date: Optional[str] = None
    due_date: Optional[str] = None
    seller: Optional[PeppolParty] = None
    line_item_names: List[str] = field(default_factory=list)
    payable_amount: Optional[float] = None
    tax_inclusive_amount: Optional[float] = None
    tax_amount: Optional[float] = None
    first_tax_percent: Optional[float] = None
    note: Optional[str] = None
    currency_code: Optional[str] = None

    @classmethod
    def from_recommand(cls, item: Dict[str, Any]) -> "PeppolReceivedDocument":
        document = item.get("document") or {}
        seller = document.get("seller")
        totals = document.get("legalMonetaryTotal") or {}
        tax_total = document.get("taxTotal") or {}
        subtotals = tax_total.get("taxSubtotals") or []

        return cls(
            id=str(item.get("id")),
            sender_peppol_id=item.get("sender"),
            document_type=item.get("documentType"),
            invoice_number=document.get("invoiceNumber"),
            issue_date=document.get("issueDate"),
            due_date=document.get("dueDate"),
            seller=PeppolParty(
                name=seller.get("name"),
                vat_number=seller.get("vatNumber"),
                street_name=seller.get("streetName"),
                city_name=seller.get("cityName"),
                postal_zone=seller.get("postalZone"),
                country_code=seller.get("countryCode"),
                contact_email=seller.get("contactEmail"),
                contact_name=seller.get("contactName"),
            ) if seller else None,
            line_item_names=[li.get("name") or "" for li in (document.get("lineItems") or [])],
            payable_amount=totals.get("payableAmount"),
            tax_inclusive_amount=totals.get("taxInclusiveAmount"),
            tax_amount=tax_total.get("taxAmount"),
            first_tax_percent=subtotals[0].get("taxPercent") if subtotals else None,
            note=document.get("note"),
            currency_code=document.get("documentCurrencyCode"),
        )


# ============================================
# Outbound
# ============================================

def _euros(cents: int) -> float:
    return float(Money.of(cents).to_decimal())


def tax_category(vat_rate_bp: int) -> str:
    return "Z" if vat_rate_bp == 0 else "S"


def to_send_request(invoice: Invoice, contact: Contact, tenant: Tenant,
                    settings: Optional[TenantSettings]) -> PeppolSendRequest:
    if not contact.peppol_id:
        raise ValueError("Contact must have a Peppol id to send via Peppol")

    return PeppolSendRequest(
        recipient_peppol_id=contact.peppol_id,
        invoice=PeppolInvoiceData(
            invoice_number=invoice.invoice_number,
            issue_date=invoice.issue_date,
            due_date=invoice.due_date,
            seller=_seller_party(tenant, settings),
            buyer=_buyer_party(contact),
            line_items=[_line_item(item, position) for position, item in enumerate(invoice.items, start=1)],
            currency_code=invoice.currency or "EUR",
            note=invoice.notes,
            payment_info=_payment_info(settings),
        ),
    )


def _seller_party(tenant: Tenant, settings: Optional[TenantSettings]) -> PeppolParty:
    if settings is None:
        return PeppolParty(name=tenant.legal_name or tenant.name, vat_number=tenant.vat_number)
    return PeppolParty(
        name=settings.company_name or tenant.legal_name or tenant.name,
        vat_number=settings.company_vat_number or tenant.vat_number,
        street_name=settings.company_street,
        city_name=settings.company_city,
        postal_zone=settings.company_postal_code,
        country_code=settings.company_country,
    )


def _buyer_party(contact: Contact) -> PeppolParty:
    address = contact.default_address
    return PeppolParty(
        name=contact.name,
        vat_number=contact.vat_number,
        street_name=address.street_line1 if address else None,
        city_name=address.city if address else None,
        postal_zone=address.postal_code if address else None,
        country_code=address.country if address else None,
        contact_email=contact.email,
        contact_name=contact.contact_person,
        company_number=contact.company_number,
    )


def _line_item(item: InvoiceItem, line_number: int) -> PeppolLineItem:
    return PeppolLineItem(
        id=str(line_number),
        name=item.description,
        description=item.description,
        quantity=float(item.quantity),
        unit_code=UNIT_CODE,
        unit_price=_euros(item.unit_price),
        line_total=_euros(item.line_total),
        tax_category=tax_category(item.vat_rate),
        tax_percent=VatRate(item.vat_rate).to_percent_float(),
    )


def _payment_info(settings: Optional[TenantSettings]) -> Optional[PeppolPaymentInfo]:
    if settings is None or not settings.company_iban:
        return None
    return PeppolPaymentInfo(iban=settings.company_iban, bic=settings.company_bic)


def _party_payload(party: PeppolParty) -> Dict[str, Any]:
    return {
        "vatNumber": party.vat_number,
        "name": party.name,
        "streetName": party.street_name,
        "cityName": party.city_name,
        "postalZone": party.postal_zone,
        "countryCode": party.country_code,
        "contactEmail": party.contact_email,
        "contactName": party.contact_name,
    }


def to_recommand_payload(request: PeppolSendRequest) -> Dict[str, Any]:
    """JSON body for POST /api/v1/{companyId}/send."""
    invoice = request.invoice
    payment = invoice.payment_info
    return {
        "recipient": request.recipient_peppol_id,
        "documentType": request.document_type,
        "document": {
            "invoiceNumber": invoice.invoice_number,
            "issueDate": invoice.issue_date.isoformat(),
            "dueDate": invoice.due_date.isoformat(),
            "buyer": _party_payload(invoice.buyer),
            "seller": _party_payload(invoice.seller),
            "lineItems": [
                {
                    "id": li.id,
                    "name": li.name,
                    "description": li.description,
                    "quantity": li.quantity,
                    "unitCode": li.unit_code,
                    "unitPrice": li.unit_price,
                    "lineTotal": li.line_total,
                    "taxCategory": li.tax_category,
                    "taxPercent": li.tax_percent,
                }
                for li in invoice.line_items
            ],
            "note": invoice.note,
            "buyerReference": invoice.buyer.company_number or invoice.buyer.vat_number,
            "paymentMeans": {
                "iban": payment.iban,
                "bic": payment.bic,
                "paymentMeansCode": payment.payment_means_code,
                "paymentId": payment.payment_id,
            } if payment else None,
            "documentCurrencyCode": invoice.currency_code,
        },
    }


# ============================================
# Inbound
# ============================================

def infer_category(document: PeppolReceivedDocument) -> ExpenseCategory:
    text = " ".join([
        (document.seller.name if document.seller else None) or "",
        document.note or "",
        " ".join(document.line_item_names),
    ]).lower()

    for keywords, category in CATEGORY_KEYWORDS:
        if any(k in text for k in keywords):
            return category
    return ExpenseCategory.OTHER


def _parse_date(value: Optional[str]) -> Optional[date]:
    parsed = parse_iso_date(value)
    if value and parsed is None:
        logger.warning(f"Unparseable Peppol date: {value!r}")
    return parsed


def to_create_bill(document: PeppolReceivedDocument, sender_peppol_id: str) -> BillCreate:
    seller = document.seller
    issue_date = _parse_date(document.issue_date) or today_local()
    due_date = _parse_date(document.due_date) or issue_date
    if due_date < issue_date:
        due_date = issue_date

    raw_amount = document.payable_amount if document.payable_amount is not None else document.tax_inclusive_amount
    amount = Money.from_decimal(raw_amount) if raw_amount is not None else Money.ZERO
    vat_amount = Money.from_decimal(document.tax_amount) if document.tax_amount is not None else None
    vat_rate = VatRate.parse(document.first_tax_percent) if document.first_tax_percent is not None else None

    return BillCreate(
        supplier_name=(seller.name if seller and seller.name else UNKNOWN_SUPPLIER),
        supplier_vat_number=seller.vat_number if seller else None,
        invoice_number=document.invoice_number,
        issue_date=issue_date,
        due_date=due_date,
        amount=amount.minor,
        vat_amount=vat_amount.minor if vat_amount is not None else None,
        vat_rate=vat_rate.basis_points if vat_rate is not None else None,
        status=BillStatus.PENDING,
        category=infer_category(document),
        description=document.note,
        notes=f"Received via Peppol from {sender_peppol_id}",
    )
