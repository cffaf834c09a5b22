# tests/test_ai_coordinator.py
"""
Tests for the autonomous processing pipeline with mocked agents.

The classifier and extractor are AsyncMocks; consensus, audit and the
rule-based judgment run for real.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from ai.coordinator import (
    AutonomousProcessingCoordinator,
    AutonomousProcessingStats,
    Rejected,
    RejectionStage,
    Success,
)
from ai.judgment import JudgmentAgent, JudgmentOutcome
from ai.models import ClassificationResult, ExtractedInvoiceData
from domain.enums import DocumentType


def invoice(total="121.00", confidence=0.9, **overrides) -> ExtractedInvoiceData:
    values = dict(
        vendor_name="Proximus NV",
        invoice_number="2024-001",
        issue_date="2024-03-01",
        subtotal="100.00",
        total_vat_amount="21.00",
        total_amount=total,
        confidence=confidence,
    )
    values.update(overrides)
    return ExtractedInvoiceData(**values)


def coordinator(classification, extractions, max_retries=2):
    classifier = MagicMock()
    classifier.classify = AsyncMock(return_value=classification)
    extractor = MagicMock()
    extractor.extract = AsyncMock(side_effect=extractions)
    return AutonomousProcessingCoordinator(
        classifier=classifier,
        extractor=extractor,
        judgment_agent=JudgmentAgent(),
        max_retries=max_retries,
        min_classification_confidence=0.3,
    )


INVOICE_95 = ClassificationResult(DocumentType.INVOICE, 0.95, "Invoice header")


class TestClassificationStage:
    """Rejections before any extraction"""

    @pytest.mark.asyncio
    async def test_low_classification_confidence(self):
        pipeline = coordinator(ClassificationResult(DocumentType.INVOICE, 0.2), [])
        result = await pipeline.process("text")

        assert isinstance(result, Rejected)
        assert result.stage == RejectionStage.CLASSIFICATION
        assert result.reason == "Classification confidence 20% is below threshold 30%"
        assert result.details == {"confidence": "0.2", "threshold": "0.3"}
        pipeline.extractor.extract.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_document_type(self):
        pipeline = coordinator(ClassificationResult(DocumentType.UNKNOWN, 0.9), [])
        result = await pipeline.process("text")

        assert isinstance(result, Rejected)
        assert result.reason == "Could not determine document type"
        assert result.classification.document_type == DocumentType.UNKNOWN


class TestExtractionStage:
    """Both models run; failures and empty answers"""

    @pytest.mark.asyncio
    async def test_both_models_fail(self):
        pipeline = coordinator(INVOICE_95, [RuntimeError("fast down"), RuntimeError("expert down")])
        result = await pipeline.process("text")

        assert isinstance(result, Rejected)
        assert result.stage == RejectionStage.EXTRACTION
        assert result.reason == "Both models failed to extract data"
        assert set(result.details.values()) == {"fast down", "expert down"}

    @pytest.mark.asyncio
    async def test_both_models_return_nothing(self):
        pipeline = coordinator(INVOICE_95, [ExtractedInvoiceData(), ExtractedInvoiceData()])
        result = await pipeline.process("text")

        assert isinstance(result, Rejected)
        assert result.reason == "No data could be extracted from the document"

    @pytest.mark.asyncio
    async def test_one_failing_model_is_tolerated(self):
        """The other model's extraction is used when one model fails."""
        pipeline = coordinator(INVOICE_95, [RuntimeError("timeout"), invoice()])
        result = await pipeline.process("text")

        assert isinstance(result, Success)
        assert result.conflict_report is None
        assert result.is_auto_approved

    @pytest.mark.asyncio
    async def test_extracts_with_both_models(self):
        pipeline = coordinator(INVOICE_95, [invoice(), invoice()])
        await pipeline.process("text")

        models = [call.args[2] for call in pipeline.extractor.extract.await_args_list]
        assert models == [pipeline.fast_model, pipeline.expert_model]


class TestPipelineOutcomes:
    """Consensus, audit, retry and judgment together"""

    @pytest.mark.asyncio
    async def test_clean_document_is_auto_approved(self):
        pipeline = coordinator(INVOICE_95, [invoice(), invoice()])
        result = await pipeline.process("text")

        assert isinstance(result, Success)
        assert result.is_auto_approved
        assert result.confidence == pytest.approx(0.9)
        assert result.retry_attempts == 0
        assert not result.had_conflicts
        assert result.audit_report.is_valid

    @pytest.mark.asyncio
    async def test_conflicting_totals_need_review(self):
        pipeline = coordinator(INVOICE_95, [invoice(total="112.00", subtotal="91.00"), invoice()])
        result = await pipeline.process("text")

        assert isinstance(result, Success)
        assert result.had_conflicts
        assert result.needs_review
        assert result.extraction.total_amount == "121.00"

    @pytest.mark.asyncio
    async def test_failed_audit_is_corrected_on_retry(self):
        """Critical audit failures trigger a corrective extraction."""
        bad = invoice(total="112.00")
        pipeline = coordinator(INVOICE_95, [bad, bad, invoice()])
        result = await pipeline.process("text")

        assert isinstance(result, Success)
        assert result.was_corrected
        assert result.retry_attempts == 1
        assert result.judgment.corrected_fields == ["total_amount"]
        assert result.is_auto_approved

    @pytest.mark.asyncio
    async def test_still_failing_after_retries_is_rejected(self):
        bad = invoice(total="112.00")
        pipeline = coordinator(INVOICE_95, [bad, bad, bad, bad], max_retries=2)
        result = await pipeline.process("text")

        assert isinstance(result, Success)
        assert result.is_rejected
        assert result.retry_attempts == 2

    @pytest.mark.asyncio
    async def test_without_retries_critical_failures_need_review(self):
        """With retries disabled critical failures go to review."""
        bad = invoice(total="112.00")
        pipeline = coordinator(INVOICE_95, [bad, bad], max_retries=0)
        result = await pipeline.process("text")

        assert result.needs_review
        assert result.retry_result is None

    @pytest.mark.asyncio
    async def test_missing_essential_fields_reject(self):
        partial = invoice(vendor_name=None)
        pipeline = coordinator(INVOICE_95, [partial, partial])
        result = await pipeline.process("text")

        assert result.is_rejected
        assert result.judgment.reasoning == "Essential fields missing: vendor_name"


class TestProcessingStats:

    def test_from_results(self):
        approved = Success(
            classification=INVOICE_95, extraction=invoice(), audit_report=None, conflict_report=None,
            retry_result=None, judgment=MagicMock(outcome=JudgmentOutcome.AUTO_APPROVE, confidence=0.9),
        )
        review = Success(
            classification=INVOICE_95, extraction=invoice(), audit_report=None, conflict_report=None,
            retry_result=None, judgment=MagicMock(outcome=JudgmentOutcome.NEEDS_REVIEW, confidence=0.7),
        )
        rejected = Rejected.unknown_document_type(ClassificationResult(DocumentType.UNKNOWN, 0.9))

        stats = AutonomousProcessingStats.from_results([approved, approved, review, rejected])

        assert stats.total == 4
        assert stats.auto_approved == 2
        assert stats.needs_review == 1
        assert stats.rejected == 1
        assert stats.auto_approval_rate == pytest.approx(0.5)
        assert not stats.meets_silence_goal

    def test_empty_stats(self):
        stats = AutonomousProcessingStats.from_results([])
        assert stats.silence_rate == 0.0
