# tests/test_ai_feedback.py
"""
Tests for the correction prompts sent back to the extraction model.
"""

from ai.audit import AuditCheck, AuditReport, CheckType, verify_iban, verify_ogm, verify_totals
from ai.feedback import build_check_feedback, build_correction_summary, build_feedback_prompt
from domain.money import Money


def failing_report() -> AuditReport:
    return AuditReport.from_checks([
        verify_totals(Money(10000), Money(2100), Money(12000)),
        verify_ogm("+++090/9337/55494+++"),
        AuditCheck.warning(CheckType.VAT_RATE, "vatRate", "VAT rate 19% is not a Belgian rate",
                           expected="21%", actual="19%"),
        AuditCheck.passed(CheckType.CHECKSUM_IBAN, "iban", "IBAN checksum valid"),
    ])


class TestFeedbackPrompt:
    """build_feedback_prompt"""

    def test_header_shows_attempt(self):
        prompt = build_feedback_prompt(failing_report(), 1, 2)
        assert "CORRECTION REQUIRED (Attempt 1 of 2)" in prompt

    def test_lists_failures_critical_first(self):
        prompt = build_feedback_prompt(failing_report(), 1, 2)

        assert "3 issue(s):" in prompt
        assert "Issue 1: Mathematical Verification" in prompt
        assert "Issue 2: OGM Payment Reference" in prompt
        assert "Issue 3: VAT Rate" in prompt
        assert "IBAN Bank Account" not in prompt

    def test_includes_expected_and_actual(self):
        prompt = build_feedback_prompt(failing_report(), 1, 2)

        assert "Expected value: 121.00" in prompt
        assert "Your extraction: 120.00" in prompt
        assert "Expected check digits: 93" in prompt

    def test_final_attempt_warning(self):
        assert "FINAL attempt" in build_feedback_prompt(failing_report(), 2, 2)
        assert "FINAL attempt" not in build_feedback_prompt(failing_report(), 1, 2)

    def test_nothing_to_address(self):
        prompt = build_feedback_prompt(AuditReport(), 1, 2)
        assert "No specific failures to address." in prompt
        assert "Issue 1" not in prompt


class TestCheckFeedback:
    """Per check type guidance"""

    def test_hint_is_appended(self):
        text = build_check_feedback(verify_ogm("+++090/9337/55494+++"))

        assert text.startswith("OGM CHECKSUM FAILED in 'paymentReference'")
        assert "Hint: Re-read each digit" in text

    def test_short_belgian_iban_reports_length(self):
        text = build_check_feedback(verify_iban("BE685390075470"))
        assert "Length: 14 characters (a Belgian IBAN has 16)" in text

    def test_company_exists(self):
        check = AuditCheck.warning(CheckType.COMPANY_EXISTS, "vendorVatNumber", "No company registered",
                                   actual="BE0123456789")
        text = build_check_feedback(check)

        assert "COMPANY NOT FOUND for 'vendorVatNumber'" in text
        assert "Your extraction: BE0123456789" in text


class TestCorrectionSummary:

    def test_groups_fields_by_type(self):
        summary = build_correction_summary(failing_report())

        assert summary.splitlines()[0] == "Fields requiring correction:"
        assert "  - Mathematical Verification: totalAmount" in summary
        assert "  - OGM Payment Reference: paymentReference" in summary
        assert "  - VAT Rate: vatRate" in summary
