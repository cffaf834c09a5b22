# tests/test_ai_judgment.py
"""
Tests for self-correction and the final judgment.

Covers:
- SelfCorrectionLoop outcomes (no retry, corrected, still failing)
- JudgmentCriteria rule order and thresholds
- JudgmentAgent LLM consultation for borderline cases
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from ai.audit import AuditCheck, AuditReport, CheckType, ExtractionAuditService
from ai.consensus import ConflictReport, ConflictSeverity, FieldConflict
from ai.judgment import (
    JudgmentAgent, JudgmentConfig, JudgmentContext, JudgmentCriteria, JudgmentOutcome, build_judgment_prompt
)
from ai.llm_client import LLMResult
from ai.models import ExtractedInvoiceData
from ai.retry import (
    CorrectedOnRetry, NoRetryNeeded, SelfCorrectionLoop, StillFailing, changed_fields, retry_attempts
)
from domain.enums import DocumentType


def invoice(total="121.00", confidence=0.9) -> ExtractedInvoiceData:
    return ExtractedInvoiceData(
        vendor_name="Proximus NV",
        issue_date="2024-03-01",
        subtotal="100.00",
        total_vat_amount="21.00",
        total_amount=total,
        confidence=confidence,
    )


def context(confidence=0.9, **kwargs) -> JudgmentContext:
    return JudgmentContext(document_type=DocumentType.INVOICE, extraction_confidence=confidence, **kwargs)


def warning(message="warning") -> AuditCheck:
    return AuditCheck.warning(CheckType.VAT_RATE, "vatRate", message)


def critical(message="Subtotal + VAT does not match total") -> AuditCheck:
    return AuditCheck.critical_failure(CheckType.MATH, "totalAmount", message)


# ============================================
# Self-correction
# ============================================

class TestSelfCorrectionLoop:
    """Re-extraction with audit feedback"""

    @pytest.mark.asyncio
    async def test_valid_report_needs_no_retry(self):
        agent = MagicMock()
        agent.extract = AsyncMock()
        auditor = ExtractionAuditService()
        data = invoice()

        result, report = await SelfCorrectionLoop(agent, auditor, max_retries=2).run(
            DocumentType.INVOICE, "text", data, auditor.audit(data)
        )

        assert isinstance(result, NoRetryNeeded)
        assert result.attempts == 0
        agent.extract.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_corrected_on_second_attempt(self):
        agent = MagicMock()
        agent.extract = AsyncMock(side_effect=[invoice(total="120.00"), invoice(total="121.00")])
        auditor = ExtractionAuditService()
        bad = invoice(total="112.00")

        result, report = await SelfCorrectionLoop(agent, auditor, max_retries=2).run(
            DocumentType.INVOICE, "text", bad, auditor.audit(bad)
        )

        assert isinstance(result, CorrectedOnRetry)
        assert result.attempt == 2
        assert result.attempts == 2
        assert result.corrected_fields == ["total_amount"]
        assert result.original_failures[0].type == CheckType.MATH
        assert report.is_valid

        feedback = agent.extract.await_args_list[0].kwargs["feedback"]
        assert "CORRECTION REQUIRED (Attempt 1 of 2)" in feedback

    @pytest.mark.asyncio
    async def test_empty_candidates_are_skipped(self):
        agent = MagicMock()
        agent.extract = AsyncMock(side_effect=[ExtractedInvoiceData(), ExtractedInvoiceData()])
        auditor = ExtractionAuditService()
        bad = invoice(total="112.00")

        result, report = await SelfCorrectionLoop(agent, auditor, max_retries=2).run(
            DocumentType.INVOICE, "text", bad, auditor.audit(bad)
        )

        assert isinstance(result, StillFailing)
        assert result.data is bad
        assert result.attempts == 2
        assert len(result.remaining_failures) == 1
        assert not report.is_valid

    def test_changed_fields_ignores_confidence(self):
        before = invoice(confidence=0.5)
        after = invoice(total="120.00", confidence=0.9)
        assert changed_fields(before, after) == ["total_amount"]

    def test_retry_attempts(self):
        assert retry_attempts(None) == 0
        assert retry_attempts(StillFailing(invoice(), 3)) == 3


# ============================================
# Rules
# ============================================

class TestJudgmentCriteria:
    """Deterministic decisions"""

    def test_clean_document_is_auto_approved(self):
        decision = JudgmentCriteria().evaluate(context(0.9))

        assert decision.outcome == JudgmentOutcome.AUTO_APPROVE
        assert decision.confidence == pytest.approx(0.9)
        assert decision.issues_for_user == []
        assert decision.all_critical_checks_passed

    def test_auto_approve_confidence_is_floored(self):
        """An auto-approved outcome reports at least 0.85 confidence."""
        decision = JudgmentCriteria().evaluate(context(0.82))

        assert decision.outcome == JudgmentOutcome.AUTO_APPROVE
        assert decision.confidence == pytest.approx(0.85)

    def test_missing_essential_fields_reject(self):
        decision = JudgmentCriteria().evaluate(context(
            0.95, essential_fields_present=False, missing_essential_fields=["vendor_name", "issue_date"]
        ))

        assert decision.outcome == JudgmentOutcome.REJECT
        assert decision.reasoning == "Essential fields missing: vendor_name, issue_date"
        assert decision.issues_for_user == ["Missing field: vendor_name", "Missing field: issue_date"]

    def test_unknown_type_rejects(self):
        decision = JudgmentCriteria().evaluate(
            JudgmentContext(document_type=DocumentType.UNKNOWN, extraction_confidence=0.95)
        )
        assert decision.outcome == JudgmentOutcome.REJECT

    def test_still_failing_rejects(self):
        failure = critical("IBAN fails the checksum")
        decision = JudgmentCriteria().evaluate(context(
            0.9, retry_result=StillFailing(invoice(), 2, [failure])
        ))

        assert decision.outcome == JudgmentOutcome.REJECT
        assert decision.retry_attempts == 2
        assert decision.issues_for_user == ["IBAN fails the checksum"]

    def test_low_confidence_rejects(self):
        decision = JudgmentCriteria().evaluate(context(0.4))

        assert decision.outcome == JudgmentOutcome.REJECT
        assert decision.issues_for_user == ["Extraction confidence too low"]

    def test_medium_confidence_needs_review(self):
        decision = JudgmentCriteria().evaluate(context(0.7))

        assert decision.outcome == JudgmentOutcome.NEEDS_REVIEW
        assert decision.issues_for_user[0].startswith("Extraction confidence")

    def test_critical_conflict_needs_review(self):
        conflict = FieldConflict("totalAmount", "112.00", "121.00", "121.00", "expert", ConflictSeverity.CRITICAL)
        decision = JudgmentCriteria().evaluate(context(0.9, conflict_report=ConflictReport([conflict])))

        assert decision.outcome == JudgmentOutcome.NEEDS_REVIEW
        assert not decision.has_model_consensus
        assert decision.issues_for_user == ["Models disagree on totalAmount: '112.00' vs '121.00'"]

    def test_lenient_config_ignores_conflicts(self):
        """The lenient preset auto-approves despite critical conflicts."""
        conflict = FieldConflict("totalAmount", "112.00", "121.00", "121.00", "expert", ConflictSeverity.CRITICAL)
        criteria = JudgmentCriteria(JudgmentConfig.LENIENT)
        decision = criteria.evaluate(context(0.9, conflict_report=ConflictReport([conflict])))

        assert decision.outcome == JudgmentOutcome.AUTO_APPROVE

    def test_critical_audit_failure_needs_review(self):
        decision = JudgmentCriteria().evaluate(context(0.9, audit_report=AuditReport([critical()])))

        assert decision.outcome == JudgmentOutcome.NEEDS_REVIEW
        assert not decision.all_critical_checks_passed

    def test_too_many_warnings(self):
        report = AuditReport([warning(), warning(), warning()])
        decision = JudgmentCriteria().evaluate(context(0.9, audit_report=report))

        assert decision.outcome == JudgmentOutcome.NEEDS_REVIEW
        assert decision.issues_for_user == ["3 validation warnings (max 2)"]

    def test_few_warnings_are_tolerated(self):
        report = AuditReport([warning(), warning()])
        assert JudgmentCriteria().evaluate(context(0.9, audit_report=report)).outcome == JudgmentOutcome.AUTO_APPROVE

    def test_strict_config_reviews_any_warning(self):
        """The strict preset sends any audit warning to review."""
        report = AuditReport([warning("odd rate")])
        decision = JudgmentCriteria(JudgmentConfig.STRICT).evaluate(context(0.95, audit_report=report))

        assert decision.outcome == JudgmentOutcome.NEEDS_REVIEW
        assert decision.issues_for_user == ["odd rate"]

    def test_corrected_fields_are_reported(self):
        retry = CorrectedOnRetry(invoice(), 1, ["total_amount"])
        decision = JudgmentCriteria().evaluate(context(0.9, retry_result=retry))

        assert decision.outcome == JudgmentOutcome.AUTO_APPROVE
        assert decision.reasoning == "All checks passed after correcting total_amount"
        assert decision.retry_attempts == 1
        assert decision.corrected_fields == ["total_amount"]

    def test_can_potentially_auto_approve(self):
        criteria = JudgmentCriteria()
        assert criteria.can_potentially_auto_approve(context(0.9))
        assert not criteria.can_potentially_auto_approve(context(0.7))
        assert not criteria.can_potentially_auto_approve(context(0.9, audit_report=AuditReport([critical()])))


# ============================================
# Agent
# ============================================

def llm_client(content: str = "", success: bool = True) -> MagicMock:
    client = MagicMock()
    result = LLMResult(success=success, content=content, error=None if success else "HTTP 500")
    client.complete = AsyncMock(return_value=result)
    return client


class TestJudgmentAgent:
    """LLM only for borderline cases"""

    @pytest.mark.asyncio
    async def test_clear_cut_approval_skips_llm(self):
        client = llm_client('{"decision": "REJECT"}')
        decision = await JudgmentAgent(client=client).judge(context(0.95))

        assert decision.outcome == JudgmentOutcome.AUTO_APPROVE
        client.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejection_skips_llm(self):
        client = llm_client('{"decision": "AUTO_APPROVE"}')
        decision = await JudgmentAgent(client=client).judge(context(0.3))

        assert decision.outcome == JudgmentOutcome.REJECT
        client.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_borderline_approval_asks_llm(self):
        """Only borderline approvals are sent to the judgment model."""
        client = llm_client(
            '{"decision": "NEEDS_REVIEW", "confidence": 0.7, "reasoning": "Vendor unclear", '
            '"issuesForUser": ["Check the vendor"]}'
        )
        decision = await JudgmentAgent(client=client).judge(context(0.82))

        client.complete.assert_awaited_once()
        assert decision.outcome == JudgmentOutcome.NEEDS_REVIEW
        assert decision.confidence == pytest.approx(0.7)
        assert decision.reasoning == "Vendor unclear"
        assert decision.issues_for_user == ["Check the vendor"]

    @pytest.mark.asyncio
    async def test_keyword_answer(self):
        client = llm_client("I would AUTO_APPROVE this document.")
        decision = await JudgmentAgent(client=client).judge(context(0.82))

        assert decision.outcome == JudgmentOutcome.AUTO_APPROVE
        assert decision.confidence == pytest.approx(0.8)
        assert decision.issues_for_user == []

    @pytest.mark.asyncio
    async def test_use_llm_false(self):
        client = llm_client('{"decision": "REJECT"}')
        decision = await JudgmentAgent(client=client).judge(context(0.82), use_llm=False)

        assert decision.outcome == JudgmentOutcome.AUTO_APPROVE
        client.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_llm_call_falls_back_to_rules(self):
        """A failed judgment call keeps the rule based outcome."""
        client = llm_client(success=False)
        decision = await JudgmentAgent(client=client).judge(context(0.82))

        assert decision.outcome == JudgmentOutcome.AUTO_APPROVE
        assert decision.confidence == pytest.approx(0.85)

    @pytest.mark.asyncio
    async def test_llm_exception_falls_back_to_rules(self):
        client = MagicMock()
        client.complete = AsyncMock(side_effect=RuntimeError("connection reset"))
        decision = await JudgmentAgent(client=client).judge(context(0.82))

        assert decision.outcome == JudgmentOutcome.AUTO_APPROVE


class TestJudgmentPrompt:

    def test_prompt_summarises_the_analysis(self):
        conflict = FieldConflict("iban", "BE1", "BE2", "BE2", "expert", ConflictSeverity.CRITICAL)
        prompt = build_judgment_prompt(context(
            0.9,
            conflict_report=ConflictReport([conflict]),
            audit_report=AuditReport([critical("Totals do not add up")]),
            retry_result=CorrectedOnRetry(invoice(), 1, ["total_amount"]),
        ))

        assert "- Document type: INVOICE" in prompt
        assert "- [CRITICAL] iban: 'BE1' vs 'BE2'" in prompt
        assert "- CRITICAL MATH: Totals do not add up" in prompt
        assert "Corrected on attempt 1: total_amount" in prompt
        assert prompt.endswith("Decide: AUTO_APPROVE, NEEDS_REVIEW or REJECT.")
