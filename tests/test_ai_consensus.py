# tests/test_ai_consensus.py
"""
Tests for the fast/expert consensus engine.

Covers:
- NoData, SingleSource, Unanimous and WithConflicts outcomes
- Amount comparison through Money
- Conflict severity and field weights
- Merged confidence penalty
"""

import pytest

from ai.consensus import (
    ConflictSeverity,
    ConsensusEngine,
    ModelWeight,
    NoData,
    SingleSource,
    Unanimous,
    WithConflicts,
    merged_confidence,
)
from ai.models import ExtractedBillData, ExtractedInvoiceData, LineItem


def invoice(**overrides) -> ExtractedInvoiceData:
    values = dict(
        vendor_name="Proximus NV",
        vendor_vat_number="BE0202239951",
        invoice_number="2024-001",
        issue_date="2024-03-01",
        subtotal="100.00",
        total_vat_amount="21.00",
        total_amount="121.00",
        confidence=0.9,
    )
    values.update(overrides)
    return ExtractedInvoiceData(**values)


# ============================================
# Outcomes
# ============================================

class TestMergeOutcomes:
    """Which result type the engine returns"""

    def test_no_candidates(self):
        assert isinstance(ConsensusEngine().merge(None, None), NoData)

    def test_only_fast(self):
        fast = invoice()
        result = ConsensusEngine().merge(fast, None)

        assert isinstance(result, SingleSource)
        assert result.source == "fast"
        assert result.data is fast
        assert result.report is None

    def test_only_expert(self):
        expert = invoice()
        result = ConsensusEngine().merge_invoices(None, expert)

        assert isinstance(result, SingleSource)
        assert result.source == "expert"

    def test_identical_extractions_are_unanimous(self):
        result = ConsensusEngine().merge(invoice(), invoice())

        assert isinstance(result, Unanimous)
        assert result.data.total_amount == "121.00"
        assert result.report is None

    def test_amounts_equal_as_money_do_not_conflict(self):
        """'121' and '121.00' are the same amount."""
        result = ConsensusEngine().merge(invoice(total_amount="121"), invoice(total_amount="121,00"))

        assert isinstance(result, Unanimous)
        assert result.data.total_amount == "121,00"

    def test_whitespace_only_difference_is_not_a_conflict(self):
        result = ConsensusEngine().merge(invoice(vendor_name="Proximus NV "), invoice())
        assert isinstance(result, Unanimous)

    def test_value_found_by_one_model_is_kept(self):
        result = ConsensusEngine().merge(invoice(iban="BE68539007547034"), invoice(iban=None))

        assert isinstance(result, Unanimous)
        assert result.data.iban == "BE68539007547034"


# ============================================
# Conflicts
# ============================================

class TestConflicts:
    """Disagreements between the two models"""

    def test_total_amount_conflict_is_critical_and_expert_wins(self):
        result = ConsensusEngine().merge(invoice(total_amount="112.00"), invoice(total_amount="121.00"))

        assert isinstance(result, WithConflicts)
        assert result.data.total_amount == "121.00"
        conflict = result.report.conflicts[0]
        assert conflict.field_name == "totalAmount"
        assert conflict.severity == ConflictSeverity.CRITICAL
        assert conflict.chosen_source == "expert"
        assert result.report.has_critical_conflicts

    def test_invoice_number_conflict_is_a_warning(self):
        result = ConsensusEngine().merge(invoice(invoice_number="2024-01"), invoice(invoice_number="2024-001"))

        assert isinstance(result, WithConflicts)
        assert result.report.warning_conflicts[0].field_name == "invoiceNumber"
        assert not result.report.has_critical_conflicts

    def test_prefer_fast_weight(self):
        engine = ConsensusEngine(weights={"invoiceNumber": ModelWeight.PREFER_FAST})
        result = engine.merge(invoice(invoice_number="A-1"), invoice(invoice_number="A-7"))

        assert result.data.invoice_number == "A-1"
        assert result.report.conflicts[0].chosen_source == "fast"

    def test_require_match_weight_drops_the_value(self):
        engine = ConsensusEngine(weights={"iban": ModelWeight.REQUIRE_MATCH})
        result = engine.merge(invoice(iban="BE68539007547034"), invoice(iban="BE68539007547043"))

        assert result.data.iban is None
        assert result.report.conflicts[0].chosen_source == "none"

    def test_conflict_to_dict(self):
        result = ConsensusEngine().merge(invoice(iban="BE1"), invoice(iban="BE2"))
        assert result.report.conflicts[0].to_dict() == {
            "field": "iban",
            "fastValue": "BE1",
            "expertValue": "BE2",
            "chosenValue": "BE2",
            "chosenSource": "expert",
            "severity": "CRITICAL",
        }

    def test_list_fields_take_expert_unless_empty(self):
        lines = [LineItem(description="Consulting", quantity=1, unit_price="100.00", total="100.00")]
        result = ConsensusEngine().merge(invoice(line_items=lines), invoice(line_items=[]))

        assert result.data.line_items == lines

    def test_bill_vat_number_conflict_is_critical(self):
        fast = ExtractedBillData(supplier_name="Engie", supplier_vat_number="BE0403170701", confidence=0.8)
        expert = ExtractedBillData(supplier_name="Engie", supplier_vat_number="BE0403170710", confidence=0.8)
        result = ConsensusEngine().merge_bills(fast, expert)

        assert result.report.critical_conflicts[0].field_name == "supplierVatNumber"


# ============================================
# Confidence
# ============================================

class TestMergedConfidence:
    """Weighted average with a penalty per conflict"""

    def test_expert_counts_double(self):
        assert merged_confidence(0.6, 0.9, 0) == pytest.approx(0.8)

    def test_penalty_per_conflict(self):
        assert merged_confidence(0.9, 0.9, 2) == pytest.approx(0.8)

    def test_penalty_is_capped(self):
        assert merged_confidence(0.9, 0.9, 10) == pytest.approx(0.65)

    def test_never_negative(self):
        assert merged_confidence(0.1, 0.1, 10) == 0.0

    def test_merge_sets_confidence(self):
        result = ConsensusEngine().merge(
            invoice(confidence=0.6, invoice_number="X"), invoice(confidence=0.9)
        )
        assert result.data.confidence == pytest.approx(0.75)
