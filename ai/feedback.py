# ai/feedback.py
"""
Correction prompts built from audit failures.

A retry only helps when the model is told which field failed, where to look
on the document and which misreadings are typical, so every check type has
its own guidance block.
"""

from collections import OrderedDict
from typing import List

from ai.audit import AuditCheck, AuditReport, CheckType

HEAVY_RULE = "═" * 70
LIGHT_RULE = "─" * 70

DISPLAY_NAMES = {
    CheckType.MATH: "Mathematical Verification",
    CheckType.CHECKSUM_OGM: "OGM Payment Reference",
    CheckType.CHECKSUM_IBAN: "IBAN Bank Account",
    CheckType.VAT_RATE: "VAT Rate",
    CheckType.COMPANY_EXISTS: "Company Registry",
    CheckType.COMPANY_NAME: "Company Name",
}


def build_feedback_prompt(report: AuditReport, attempt: int, max_retries: int) -> str:
    lines = [
        HEAVY_RULE,
        f"CORRECTION REQUIRED (Attempt {attempt} of {max_retries})",
        HEAVY_RULE,
        "",
    ]

    failures = report.critical_failures + report.warnings
    if not failures:
        lines.append("No specific failures to address.")
        return "\n".join(lines) + "\n"

    lines.append("Your previous extraction failed validation. Address the following")
    lines.append(f"{len(failures)} issue(s):")
    lines.append("")

    for i, check in enumerate(failures, start=1):
        lines.append(LIGHT_RULE)
        lines.append(f"Issue {i}: {DISPLAY_NAMES[check.type]}")
        lines.append(LIGHT_RULE)
        lines.append("")
        lines.append(build_check_feedback(check))
        lines.append("")

    lines.append(HEAVY_RULE)
    lines.append("")
    lines.append("Only change the fields mentioned above. Re-read those parts of the")
    lines.append("document and correct them; keep every other field as it was.")
    if attempt >= max_retries:
        lines.append("")
        lines.append("This is your FINAL attempt. Verify each field carefully.")
    return "\n".join(lines) + "\n"


def build_check_feedback(check: AuditCheck) -> str:
    builder = _BUILDERS[check.type]
    lines = builder(check)
    if check.hint:
        lines += ["", f"Hint: {check.hint}"]
    return "\n".join(lines)


def build_correction_summary(report: AuditReport) -> str:
    """One line per check type listing the fields to correct."""
    grouped: "OrderedDict[CheckType, List[str]]" = OrderedDict()
    for check in report.critical_failures + report.warnings:
        names = grouped.setdefault(check.type, [])
        if check.field not in names:
            names.append(check.field)

    lines = ["Fields requiring correction:"]
    lines.extend(f"  - {DISPLAY_NAMES[t]}: {', '.join(names)}" for t, names in grouped.items())
    return "\n".join(lines)


# ============================================
# Per check type
# ============================================

def _expected_actual(check: AuditCheck, expected_label: str, actual_label: str) -> List[str]:
    if check.expected is None or check.actual is None:
        return []
    return [f"{expected_label}: {check.expected}", f"{actual_label}: {check.actual}", ""]


def _math(check: AuditCheck) -> List[str]:
    return [
        f"MATH ERROR in '{check.field}'",
        "",
        f"Problem: {check.message}",
        "",
        "Re-read the TOTALS section of the document.",
        "",
        *_expected_actual(check, "Expected value", "Your extraction"),
        "Typical causes:",
        "  - misread digits (1/7, 0/6, 5/S)",
        "  - decimal separator in the wrong place",
        "  - net and gross amounts swapped",
        "",
        "Re-extract subtotal, VAT amount and total digit by digit.",
    ]


def _ogm(check: AuditCheck) -> List[str]:
    return [
        f"OGM CHECKSUM FAILED in '{check.field}'",
        "",
        f"Problem: {check.message}",
        "",
        "Re-read the PAYMENT section; look for the +++XXX/XXXX/XXXXX+++ reference.",
        "",
        *_expected_actual(check, "Expected check digits", "Found check digits"),
        "Typical OCR confusions: 0/O, 1/I/l, 8/B, 5/S, 6/G.",
    ]


def _iban(check: AuditCheck) -> List[str]:
    lines = [
        f"IBAN CHECKSUM FAILED in '{check.field}'",
        "",
        f"Problem: {check.message}",
        "",
        "Re-read the BANK DETAILS section of the document.",
        "Belgian IBAN: BE + 2 check digits + 12 digits (16 characters), e.g. BE68 5390 0754 7034",
        "",
    ]
    if check.actual:
        lines.append(f"Your extraction: {check.actual}")
        length = len(check.actual.replace(" ", ""))
        if check.actual.upper().startswith("BE") and length != 16:
            lines.append(f"Length: {length} characters (a Belgian IBAN has 16)")
        lines.append("")
    lines.append("Count the characters and check 0/O and 1/I confusions.")
    return lines


def _vat_rate(check: AuditCheck) -> List[str]:
    return [
        f"UNUSUAL VAT RATE in '{check.field}'",
        "",
        f"Problem: {check.message}",
        "",
        "Belgian VAT rates are 0%, 6%, 12% and 21%.",
        "",
        *_expected_actual(check, "Closest rate", "Implied rate"),
        "Possible reasons: misread amounts, a foreign invoice, or several rates on one document.",
        "Re-check the amount excluding VAT, the VAT amount and the total.",
    ]


def _company_exists(check: AuditCheck) -> List[str]:
    lines = [
        f"COMPANY NOT FOUND for '{check.field}'",
        "",
        f"Problem: {check.message}",
        "",
    ]
    if check.actual:
        lines += [f"Your extraction: {check.actual}", ""]
    lines += [
        "Belgian VAT numbers are BE followed by 10 digits (BE0123456789).",
        "Re-read the VAT number in the document header or footer.",
    ]
    return lines


def _company_name(check: AuditCheck) -> List[str]:
    return [
        f"COMPANY NAME MISMATCH in '{check.field}'",
        "",
        f"Problem: {check.message}",
        "",
        *_expected_actual(check, "Registered name", "Your extraction"),
        "A trade name and a legal name can both be correct; use the registered name when unsure.",
    ]


_BUILDERS = {
    CheckType.MATH: _math,
    CheckType.CHECKSUM_OGM: _ogm,
    CheckType.CHECKSUM_IBAN: _iban,
    CheckType.VAT_RATE: _vat_rate,
    CheckType.COMPANY_EXISTS: _company_exists,
    CheckType.COMPANY_NAME: _company_name,
}
