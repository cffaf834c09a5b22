# ai/audit.py
"""
Audits extracted data against arithmetic and Belgian rules.

Checks:
- Math: subtotal + VAT = total, line items against subtotal, quantity x unit price
- OGM structured communication checksum (mod 97)
- IBAN checksum (mod 97)
- VAT rates against the Belgian rates 0/6/12/21%
- Optionally, the counterpart's VAT number against a company registry

Failures carry a hint that is fed back to the model on retry (see ai/feedback.py).
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Callable, List, Optional

from ai.models import (
    ExtractedBillData, ExtractedExpenseData, ExtractedInvoiceData, ExtractedReceiptData, LineItem
)
from domain.money import BELGIAN_VAT_RATES, Money, VatRate
from domain.validators import is_valid_iban, is_valid_ogm, looks_like_ogm, normalize_vat_number, ogm_digits

logger = logging.getLogger(__name__)

# One cent of rounding is accepted on every comparison
TOLERANCE = 1
# Implied VAT rates within half a percent of a Belgian rate are accepted
VAT_RATE_TOLERANCE_BP = 50

INCLUDED_FEE_PREFIXES = ("incl ", "incl.", "included ", "inclusief ")
INCLUDED_FEE_MARKERS = ("recupel", "auvibel")

# vat_number -> registered company name, None when unknown
CompanyLookup = Callable[[str], Optional[str]]


class CheckType(str, Enum):
    MATH = "MATH"
    CHECKSUM_OGM = "CHECKSUM_OGM"
    CHECKSUM_IBAN = "CHECKSUM_IBAN"
    VAT_RATE = "VAT_RATE"
    COMPANY_EXISTS = "COMPANY_EXISTS"
    COMPANY_NAME = "COMPANY_NAME"


class CheckStatus(str, Enum):
    PASSED = "PASSED"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


@dataclass
class AuditCheck:
    type: CheckType
    field: str
    status: CheckStatus
    message: str
    expected: Optional[str] = None
    actual: Optional[str] = None
    hint: Optional[str] = None

    @classmethod
    def passed(cls, check_type: CheckType, field_name: str, message: str) -> "AuditCheck":
        return cls(check_type, field_name, CheckStatus.PASSED, message)

    @classmethod
    def warning(cls, check_type: CheckType, field_name: str, message: str, hint: Optional[str] = None,
                expected: Optional[str] = None, actual: Optional[str] = None) -> "AuditCheck":
        return cls(check_type, field_name, CheckStatus.WARNING, message, expected, actual, hint)

    @classmethod
    def critical_failure(cls, check_type: CheckType, field_name: str, message: str, hint: Optional[str] = None,
                         expected: Optional[str] = None, actual: Optional[str] = None) -> "AuditCheck":
        return cls(check_type, field_name, CheckStatus.CRITICAL, message, expected, actual, hint)

    @property
    def is_failure(self) -> bool:
        return self.status != CheckStatus.PASSED

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "field": self.field,
            "status": self.status.value,
            "message": self.message,
            "expected": self.expected,
            "actual": self.actual,
            "hint": self.hint,
        }


@dataclass
class AuditReport:
    checks: List[AuditCheck] = field(default_factory=list)

    @classmethod
    def from_checks(cls, checks: List[AuditCheck]) -> "AuditReport":
        return cls(list(checks))

    @property
    def passed_count(self) -> int:
        return sum(1 for c in self.checks if c.status == CheckStatus.PASSED)

    @property
    def failed_count(self) -> int:
        return sum(1 for c in self.checks if c.is_failure)

    @property
    def critical_failures(self) -> List[AuditCheck]:
        return [c for c in self.checks if c.status == CheckStatus.CRITICAL]

    @property
    def warnings(self) -> List[AuditCheck]:
        return [c for c in self.checks if c.status == CheckStatus.WARNING]

    @property
    def overall_status(self) -> CheckStatus:
        if self.critical_failures:
            return CheckStatus.CRITICAL
        if self.warnings:
            return CheckStatus.WARNING
        return CheckStatus.PASSED

    @property
    def is_valid(self) -> bool:
        return not self.critical_failures

    def to_dict(self) -> dict:
        return {
            "overallStatus": self.overall_status.value,
            "passed": self.passed_count,
            "failed": self.failed_count,
            "checks": [c.to_dict() for c in self.checks],
        }


AuditReport.EMPTY = AuditReport()


# ============================================
# Reusable checks
# ============================================

def verify_totals(subtotal: Optional[Money], vat: Optional[Money], total: Optional[Money],
                  field_name: str = "totalAmount") -> AuditCheck:
    if subtotal is None or vat is None or total is None:
        return AuditCheck.passed(CheckType.MATH, field_name, "Not enough amounts to verify totals")

    expected = subtotal + vat
    if expected.differs_from(total, TOLERANCE):
        return AuditCheck.critical_failure(
            CheckType.MATH,
            field_name,
            f"Subtotal ({subtotal}) + VAT ({vat}) = {expected}, but total is {total}",
            hint="Check the totals block; one of subtotal, VAT or total was misread",
            expected=str(expected),
            actual=str(total),
        )
    return AuditCheck.passed(CheckType.MATH, field_name, "Subtotal + VAT matches total")


def verify_line_sum(line_totals: List[Money], expected: Optional[Money], field_name: str = "subtotal") -> AuditCheck:
    if not line_totals or expected is None:
        return AuditCheck.passed(CheckType.MATH, field_name, "No line items to verify")

    line_sum = sum(line_totals, Money.ZERO)
    if line_sum.differs_from(expected, TOLERANCE):
        return AuditCheck.warning(
            CheckType.MATH,
            field_name,
            f"Line items sum to {line_sum}, but {field_name} is {expected}",
            hint="A line item may be missing or misread",
            expected=str(expected),
            actual=str(line_sum),
        )
    return AuditCheck.passed(CheckType.MATH, field_name, "Line items match")


def verify_line_item(item: LineItem, position: int) -> AuditCheck:
    field_name = f"lineItems[{position}]"
    unit_price = Money.parse(item.unit_price)
    total = Money.parse(item.total)
    if item.quantity is None or unit_price is None or total is None:
        return AuditCheck.passed(CheckType.MATH, field_name, "Line item not verifiable")

    expected = unit_price.times(Decimal(str(item.quantity)))
    if expected.differs_from(total, TOLERANCE):
        return AuditCheck.warning(
            CheckType.MATH,
            field_name,
            f"Line {position}: {item.quantity} x {unit_price} = {expected}, but line total is {total}",
            hint="Check quantity, unit price and line total of this line",
            expected=str(expected),
            actual=str(total),
        )
    return AuditCheck.passed(CheckType.MATH, field_name, f"Line {position} verified")


def _nearest_belgian_rate(basis_points: int) -> int:
    return min(BELGIAN_VAT_RATES, key=lambda rate: abs(rate - basis_points))


def verify_implied_vat_rate(net: Optional[Money], vat: Optional[Money], field_name: str = "vatRate") -> AuditCheck:
    if net is None or vat is None or not net.is_positive:
        return AuditCheck.passed(CheckType.VAT_RATE, field_name, "VAT rate not verifiable")

    implied = int((Decimal(vat.minor) * 10000 / Decimal(net.minor)).to_integral_value())
    nearest = _nearest_belgian_rate(implied)
    if abs(implied - nearest) > VAT_RATE_TOLERANCE_BP:
        return AuditCheck.warning(
            CheckType.VAT_RATE,
            field_name,
            f"Implied VAT rate {VatRate(implied)} is not a Belgian rate",
            hint="Belgian rates are 0%, 6%, 12% and 21%; re-check the net and VAT amounts",
            expected=str(VatRate(nearest)),
            actual=str(VatRate(implied)),
        )
    return AuditCheck.passed(CheckType.VAT_RATE, field_name, f"VAT rate {VatRate(nearest)} is plausible")


def verify_declared_vat_rate(rate_text: Optional[str], field_name: str) -> Optional[AuditCheck]:
    rate = VatRate.parse(rate_text)
    if rate is None:
        return None
    if not rate.is_belgian_standard:
        return AuditCheck.warning(
            CheckType.VAT_RATE,
            field_name,
            f"VAT rate {rate} is not a Belgian rate",
            hint="Belgian rates are 0%, 6%, 12% and 21%",
            expected="0%, 6%, 12% or 21%",
            actual=str(rate),
        )
    return AuditCheck.passed(CheckType.VAT_RATE, field_name, f"VAT rate {rate} is a Belgian rate")


def verify_ogm(reference: Optional[str], field_name: str = "paymentReference") -> Optional[AuditCheck]:
    """Only structured communications are checked; free text references are skipped."""
    if not reference or not looks_like_ogm(reference):
        return None
    if is_valid_ogm(reference):
        return AuditCheck.passed(CheckType.CHECKSUM_OGM, field_name, "Structured communication checksum valid")

    digits = ogm_digits(reference)
    expected_check = int(digits[:10]) % 97 or 97
    return AuditCheck.critical_failure(
        CheckType.CHECKSUM_OGM,
        field_name,
        f"Structured communication {reference} fails the mod 97 check",
        hint="Re-read each digit of the +++XXX/XXXX/XXXXX+++ reference",
        expected=f"{expected_check:02d}",
        actual=digits[10:],
    )


def verify_iban(iban: Optional[str], field_name: str = "iban") -> Optional[AuditCheck]:
    if not iban:
        return None
    if is_valid_iban(iban):
        return AuditCheck.passed(CheckType.CHECKSUM_IBAN, field_name, "IBAN checksum valid")
    return AuditCheck.critical_failure(
        CheckType.CHECKSUM_IBAN,
        field_name,
        f"IBAN {iban} fails the checksum",
        hint="A Belgian IBAN has 16 characters: BE + 2 check digits + 12 digits",
        actual=iban,
    )


def is_included_fee_line(item: LineItem) -> bool:
    """Legal fees shown as 'included' lines are already part of other line totals."""
    text = (item.description or "").lower().replace("\n", " ").replace("\t", " ").strip()
    return text.startswith(INCLUDED_FEE_PREFIXES) or any(marker in text for marker in INCLUDED_FEE_MARKERS)


def _money(value: Optional[str]) -> Optional[Money]:
    return Money.parse(value)


# ============================================
# Service
# ============================================

class ExtractionAuditService:

    def __init__(self, company_lookup: Optional[CompanyLookup] = None):
        self.company_lookup = company_lookup

    def audit(self, data) -> AuditReport:
        """Dispatches on the type of the extracted data."""
        if isinstance(data, ExtractedInvoiceData):
            return self.audit_invoice(data)
        if isinstance(data, ExtractedBillData):
            return self.audit_bill(data)
        if isinstance(data, ExtractedExpenseData):
            return self.audit_expense(data)
        if isinstance(data, ExtractedReceiptData):
            return self.audit_receipt(data)
        return AuditReport.EMPTY

    def audit_invoice(self, invoice: ExtractedInvoiceData) -> AuditReport:
        subtotal = _money(invoice.subtotal)
        vat = _money(invoice.total_vat_amount)
        checks = [verify_totals(subtotal, vat, _money(invoice.total_amount))]

        line_totals = [m for m in (_money(li.total) for li in invoice.line_items) if m is not None]
        if line_totals:
            checks.append(verify_line_sum(line_totals, subtotal))
        checks.extend(verify_line_item(item, i) for i, item in enumerate(invoice.line_items, start=1))

        if invoice.vat_breakdown:
            for i, entry in enumerate(invoice.vat_breakdown, start=1):
                check = verify_declared_vat_rate(entry.rate, f"vatBreakdown[{i}]")
                if check is not None:
                    checks.append(check)
        else:
            checks.append(verify_implied_vat_rate(subtotal, vat))

        checks.extend(c for c in (verify_ogm(invoice.payment_reference), verify_iban(invoice.iban)) if c)
        checks.extend(self._company_checks(invoice.vendor_vat_number, invoice.vendor_name, "vendorVatNumber"))
        return AuditReport.from_checks(checks)

    def audit_bill(self, bill: ExtractedBillData) -> AuditReport:
        net, vat, gross = self._bill_amounts(bill)
        checks = [verify_totals(net, vat, gross)]

        counted = [li for li in bill.line_items if not is_included_fee_line(li)]
        line_totals = [m for m in (_money(li.total) for li in counted) if m is not None]
        if line_totals:
            checks.append(verify_line_sum(line_totals, net, "amount"))
        checks.extend(verify_line_item(item, i) for i, item in enumerate(bill.line_items, start=1))

        declared = verify_declared_vat_rate(bill.vat_rate, "vatRate")
        checks.append(declared if declared is not None else verify_implied_vat_rate(net, vat))

        checks.extend(c for c in (verify_ogm(bill.payment_reference), verify_iban(bill.iban)) if c)
        checks.extend(self._company_checks(bill.supplier_vat_number, bill.supplier_name, "supplierVatNumber"))
        return AuditReport.from_checks(checks)

    def audit_expense(self, expense: ExtractedExpenseData) -> AuditReport:
        amount = _money(expense.amount)
        vat = _money(expense.vat_amount)
        checks = []

        if amount is not None and vat is not None:
            if vat > amount:
                checks.append(AuditCheck.critical_failure(
                    CheckType.MATH,
                    "vatAmount",
                    f"VAT ({vat}) is larger than the amount paid ({amount})",
                    hint="The amount is VAT included; the VAT is only a part of it",
                    expected=f"<= {amount}",
                    actual=str(vat),
                ))
            else:
                checks.append(AuditCheck.passed(CheckType.MATH, "vatAmount", "VAT within amount"))
                checks.append(verify_implied_vat_rate(amount - vat, vat))

        declared = verify_declared_vat_rate(expense.vat_rate, "vatRate")
        if declared is not None:
            checks.append(declared)
        checks.extend(self._company_checks(expense.merchant_vat_number, expense.merchant, "merchantVatNumber"))
        return AuditReport.from_checks(checks)

    def audit_receipt(self, receipt: ExtractedReceiptData) -> AuditReport:
        total = _money(receipt.total_amount)
        vat_parts = [m for m in (_money(e.amount) for e in receipt.vat_breakdown) if m is not None]
        vat = sum(vat_parts, Money.ZERO) if vat_parts else None
        checks = [verify_totals(_money(receipt.subtotal), vat, total)]

        item_totals = [m for m in (_money(li.total) for li in receipt.items) if m is not None]
        if item_totals:
            checks.append(verify_line_sum(item_totals, total, "totalAmount"))

        for i, entry in enumerate(receipt.vat_breakdown, start=1):
            check = verify_declared_vat_rate(entry.rate, f"vatBreakdown[{i}]")
            if check is not None:
                checks.append(check)
        checks.extend(self._company_checks(receipt.merchant_vat_number, receipt.merchant_name, "merchantVatNumber"))
        return AuditReport.from_checks(checks)

    # ==================================================
    # INTERNALS
    # ==================================================

    @staticmethod
    def _bill_amounts(bill: ExtractedBillData):
        """(net, vat, gross); `amount` is net when a distinct total is given."""
        amount = _money(bill.amount)
        explicit_total = _money(bill.total_amount)
        vat = _money(bill.vat_amount)
        gross = explicit_total if explicit_total is not None else amount

        if explicit_total is not None and amount is not None and explicit_total != amount:
            net = amount
        elif gross is not None and vat is not None:
            net = gross - vat
        else:
            net = None
        return net, vat, gross

    def _company_checks(self, vat_number: Optional[str], name: Optional[str], field_name: str) -> List[AuditCheck]:
        if self.company_lookup is None or not vat_number:
            return []

        normalized = normalize_vat_number(vat_number) or vat_number
        try:
            official = self.company_lookup(normalized)
        except Exception as e:
            logger.warning(f"[Audit] Company lookup failed for {normalized}: {e}")
            return []

        if official is None:
            return [AuditCheck.warning(
                CheckType.COMPANY_EXISTS,
                field_name,
                f"No company registered under {normalized}",
                hint="Check the BE prefix and the 10 digits of the VAT number",
                actual=normalized,
            )]

        checks = [AuditCheck.passed(CheckType.COMPANY_EXISTS, field_name, f"{normalized} is registered")]
        if name and official.lower() not in name.lower() and name.lower() not in official.lower():
            checks.append(AuditCheck.warning(
                CheckType.COMPANY_NAME,
                field_name.replace("VatNumber", "Name"),
                f"Extracted name '{name}' differs from the registered name '{official}'",
                expected=official,
                actual=name,
            ))
        return checks
