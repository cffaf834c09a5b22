# peppol/validator.py
"""
Pre-flight checks before an invoice goes out over Peppol, and sanity checks
on documents pulled from the inbox.

Errors block sending; warnings are only reported.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from auth.models import Tenant
from cashflow.models import Invoice
from contacts.models import Contact
from domain.money import Money
from domain.validators import is_valid_peppol_id
from peppol.models import PeppolSettings
from tenants.models import TenantSettings

# Amount mismatches up to one cent are rounding, not errors
AMOUNT_TOLERANCE = 1


@dataclass
class ValidationIssue:
    code: str
    message: str
    field: Optional[str] = None


@dataclass
class ValidationResult:
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def error(self, code: str, message: str, field_name: Optional[str] = None) -> None:
        self.errors.append(ValidationIssue(code, message, field_name))

    def warn(self, code: str, message: str, field_name: Optional[str] = None) -> None:
        self.warnings.append(ValidationIssue(code, message, field_name))

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "errors": [vars(e) for e in self.errors],
            "warnings": [vars(w) for w in self.warnings],
        }


def _blank(value) -> bool:
    return value is None or not str(value).strip()


class PeppolValidator:

    def validate_for_sending(
        self,
        invoice: Invoice,
        contact: Contact,
        tenant: Tenant,
        settings: Optional[TenantSettings],
        peppol_settings: Optional[PeppolSettings],
    ) -> ValidationResult:
        result = ValidationResult()
        self._check_peppol_settings(result, peppol_settings)
        self._check_recipient(result, contact)
        self._check_seller(result, tenant, settings)
        self._check_buyer(result, contact)
        self._check_invoice(result, invoice)

        if settings is None or _blank(settings.company_iban):
            result.warn("MISSING_IBAN", "No IBAN configured; the buyer will not get payment details", "company_iban")

        return result

    def validate_incoming(self, document_id: Optional[str], sender_peppol_id: Optional[str]) -> ValidationResult:
        result = ValidationResult()
        if _blank(document_id):
            result.error("MISSING_DOCUMENT_ID", "Inbox item has no document id", "document_id")
        if _blank(sender_peppol_id):
            result.error("MISSING_SENDER_ID", "Inbox item has no sender", "sender")
        elif not is_valid_peppol_id(sender_peppol_id):
            result.warn("INVALID_SENDER_PEPPOL_ID", f"Unexpected sender id format: {sender_peppol_id}", "sender")
        return result

    # ==================================================
    # CHECKS
    # ==================================================

    @staticmethod
    def _check_peppol_settings(result: ValidationResult, peppol_settings: Optional[PeppolSettings]) -> None:
        if peppol_settings is None or not peppol_settings.is_enabled:
            result.error("PEPPOL_DISABLED", "Peppol is not enabled for this workspace")
            return
        if _blank(peppol_settings.peppol_id):
            result.error("MISSING_SENDER_PEPPOL_ID", "Sender Peppol id is not configured", "peppol_id")
        elif not is_valid_peppol_id(peppol_settings.peppol_id):
            result.error("INVALID_SENDER_PEPPOL_ID", "Sender Peppol id is malformed", "peppol_id")

    @staticmethod
    def _check_recipient(result: ValidationResult, contact: Contact) -> None:
        if _blank(contact.peppol_id):
            result.error("MISSING_RECIPIENT_PEPPOL_ID", "Customer has no Peppol id", "contact.peppol_id")
        elif not is_valid_peppol_id(contact.peppol_id):
            result.error("INVALID_RECIPIENT_PEPPOL_ID", "Customer Peppol id is malformed", "contact.peppol_id")

    @staticmethod
    def _check_seller(result: ValidationResult, tenant: Tenant, settings: Optional[TenantSettings]) -> None:
        name = (settings.company_name if settings else None) or tenant.legal_name or tenant.name
        if _blank(name):
            result.error("MISSING_SELLER_NAME", "Company name is required", "company_name")

        vat = (settings.company_vat_number if settings else None) or tenant.vat_number
        if _blank(vat):
            result.error("MISSING_SELLER_VAT", "Company VAT number is required", "company_vat_number")

        street = settings.company_street if settings else None
        city = settings.company_city if settings else None
        postal_code = settings.company_postal_code if settings else None
        country = settings.company_country if settings else None

        if all(_blank(v) for v in (street, city, postal_code, country)):
            result.error("MISSING_SELLER_ADDRESS", "Company address is required", "company_address")
            return
        if _blank(street):
            result.error("MISSING_SELLER_STREET", "Company street is required", "company_street")
        if _blank(city):
            result.error("MISSING_SELLER_CITY", "Company city is required", "company_city")
        if _blank(postal_code):
            result.error("MISSING_SELLER_POSTAL_CODE", "Company postal code is required", "company_postal_code")
        if _blank(country):
            result.error("MISSING_SELLER_COUNTRY", "Company country is required", "company_country")

    @staticmethod
    def _check_buyer(result: ValidationResult, contact: Contact) -> None:
        if _blank(contact.name):
            result.error("MISSING_BUYER_NAME", "Customer name is required", "contact.name")

        address = contact.default_address
        street = address.street_line1 if address else None
        city = address.city if address else None
        postal_code = address.postal_code if address else None
        country = address.country if address else None

        if _blank(street):
            result.error("MISSING_BUYER_STREET", "Customer street is required", "contact.address.street_line1")
        if _blank(city):
            result.error("MISSING_BUYER_CITY", "Customer city is required", "contact.address.city")
        if _blank(postal_code):
            result.error("MISSING_BUYER_POSTAL_CODE", "Customer postal code is required", "contact.address.postal_code")
        if _blank(country):
            result.error("MISSING_BUYER_COUNTRY", "Customer country is required", "contact.address.country")

    @staticmethod
    def _check_invoice(result: ValidationResult, invoice: Invoice) -> None:
        if _blank(invoice.invoice_number):
            result.error("MISSING_INVOICE_NUMBER", "Invoice number is required", "invoice_number")

        total = Money.of(invoice.total_amount)
        subtotal = Money.of(invoice.subtotal_amount)
        vat = Money.of(invoice.vat_amount)

        if not total.is_positive:
            result.error("INVALID_TOTAL_AMOUNT", "Invoice total must be positive", "total_amount")
        if subtotal.is_negative:
            result.error("INVALID_SUBTOTAL_AMOUNT", "Invoice subtotal cannot be negative", "subtotal_amount")

        items = list(invoice.items or [])
        if not items:
            result.error("NO_LINE_ITEMS", "Invoice has no line items", "items")
            return

        line_sum = Money.ZERO
        vat_sum = Money.ZERO
        for position, item in enumerate(items, start=1):
            line_sum = line_sum + Money.of(item.line_total)
            vat_sum = vat_sum + Money.of(item.vat_amount)
            if _blank(item.description):
                result.error("MISSING_LINE_DESCRIPTION", f"Line {position} has no description", f"items[{position}]")
            if item.quantity is None or item.quantity <= 0:
                result.error("INVALID_LINE_QUANTITY", f"Line {position} quantity must be positive", f"items[{position}]")

        if line_sum.differs_from(subtotal, AMOUNT_TOLERANCE):
            result.error(
                "SUBTOTAL_MISMATCH",
                f"Line totals ({line_sum}) do not match the subtotal ({subtotal})",
                "subtotal_amount",
            )
        if vat_sum.differs_from(vat, AMOUNT_TOLERANCE):
            result.error("VAT_MISMATCH", f"Line VAT ({vat_sum}) does not match the VAT amount ({vat})", "vat_amount")
        if (subtotal + vat).differs_from(total, AMOUNT_TOLERANCE):
            result.error("TOTAL_MISMATCH", f"Subtotal + VAT does not match the total ({total})", "total_amount")
