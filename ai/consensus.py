# ai/consensus.py
"""
Merges the fast-model and expert-model extractions of one document.

Agreement is kept, a value found by only one model is taken as is, and a
disagreement is resolved by the field's weight and recorded as a conflict.
Conflicts on money, VAT ids and payment details are CRITICAL.
"""

import logging
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, List, Optional

from ai.models import ExtractedBillData, ExtractedExpenseData, ExtractedInvoiceData, ExtractedReceiptData
from domain.money import Money

logger = logging.getLogger(__name__)


class ModelWeight(str, Enum):
    PREFER_EXPERT = "PREFER_EXPERT"
    PREFER_FAST = "PREFER_FAST"
    REQUIRE_MATCH = "REQUIRE_MATCH"


class ConflictSeverity(str, Enum):
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


CRITICAL_FIELDS = frozenset({
    "totalAmount",
    "subtotal",
    "totalVatAmount",
    "vatAmount",
    "amount",
    "iban",
    "paymentReference",
    "vendorVatNumber",
    "supplierVatNumber",
    "merchantVatNumber",
})

AMOUNT_FIELDS = frozenset({"totalAmount", "subtotal", "totalVatAmount", "vatAmount", "amount"})

# Unlisted fields prefer the expert model
DEFAULT_FIELD_WEIGHTS: Dict[str, ModelWeight] = {}


@dataclass
class FieldConflict:
    field_name: str
    fast_value: Optional[str]
    expert_value: Optional[str]
    chosen_value: Optional[str]
    chosen_source: str  # fast | expert | none
    severity: ConflictSeverity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field_name,
            "fastValue": self.fast_value,
            "expertValue": self.expert_value,
            "chosenValue": self.chosen_value,
            "chosenSource": self.chosen_source,
            "severity": self.severity.value,
        }


@dataclass
class ConflictReport:
    conflicts: List[FieldConflict] = field(default_factory=list)

    @property
    def critical_conflicts(self) -> List[FieldConflict]:
        return [c for c in self.conflicts if c.severity == ConflictSeverity.CRITICAL]

    @property
    def warning_conflicts(self) -> List[FieldConflict]:
        return [c for c in self.conflicts if c.severity == ConflictSeverity.WARNING]

    @property
    def has_critical_conflicts(self) -> bool:
        return bool(self.critical_conflicts)

    @property
    def total_conflicts(self) -> int:
        return len(self.conflicts)


# ============================================
# Results
# ============================================

class ConsensusResult:
    """Base of the four consensus outcomes; each exposes `data` and `report`"""


class NoData(ConsensusResult):
    data = None
    report = None

    def __repr__(self):
        return "NoData()"


@dataclass
class SingleSource(ConsensusResult):
    data: Any
    source: str  # fast | expert
    report = None


@dataclass
class Unanimous(ConsensusResult):
    data: Any
    report = None


@dataclass
class WithConflicts(ConsensusResult):
    data: Any
    report: ConflictReport


# ============================================
# Engine
# ============================================

def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def merged_confidence(fast: float, expert: float, conflict_count: int) -> float:
    base = (fast + expert * 2) / 3
    penalty = min(conflict_count * 0.05, 0.25)
    return max(0.0, base - penalty)


class ConsensusEngine:

    def __init__(self, weights: Optional[Dict[str, ModelWeight]] = None):
        self.weights = weights if weights is not None else DEFAULT_FIELD_WEIGHTS

    def merge_invoices(self, fast: Optional[ExtractedInvoiceData],
                       expert: Optional[ExtractedInvoiceData]) -> ConsensusResult:
        return self._merge("invoice", fast, expert)

    def merge_bills(self, fast: Optional[ExtractedBillData], expert: Optional[ExtractedBillData]) -> ConsensusResult:
        return self._merge("bill", fast, expert)

    def merge_expenses(self, fast: Optional[ExtractedExpenseData],
                       expert: Optional[ExtractedExpenseData]) -> ConsensusResult:
        return self._merge("expense", fast, expert)

    def merge_receipts(self, fast: Optional[ExtractedReceiptData],
                       expert: Optional[ExtractedReceiptData]) -> ConsensusResult:
        return self._merge("receipt", fast, expert)

    def merge(self, fast, expert) -> ConsensusResult:
        """Type-agnostic entry point; both candidates must share a type."""
        label = type(fast if fast is not None else expert).__name__
        return self._merge(label, fast, expert)

    # ==================================================
    # INTERNALS
    # ==================================================

    def _merge(self, label: str, fast, expert) -> ConsensusResult:
        if fast is None and expert is None:
            return NoData()
        if fast is None:
            return SingleSource(expert, source="expert")
        if expert is None:
            return SingleSource(fast, source="fast")

        conflicts: List[FieldConflict] = []
        values = {}
        for f in fields(expert):
            if f.name == "confidence":
                continue
            fast_value = getattr(fast, f.name)
            expert_value = getattr(expert, f.name)
            if isinstance(expert_value, list):
                values[f.name] = expert_value or fast_value
                continue
            key = _camel(f.name)
            if key in AMOUNT_FIELDS:
                values[f.name] = self._resolve_amount(key, fast_value, expert_value, conflicts)
            else:
                values[f.name] = self._resolve_string(key, fast_value, expert_value, conflicts)

        values["confidence"] = merged_confidence(fast.confidence, expert.confidence, len(conflicts))
        merged = replace(expert, **values)

        logger.info(f"[Consensus] {label}: {len(conflicts)} conflicts")
        if not conflicts:
            return Unanimous(merged)
        return WithConflicts(merged, ConflictReport(conflicts))

    def _resolve_string(self, key: str, fast_value: Optional[str], expert_value: Optional[str],
                        conflicts: List[FieldConflict]) -> Optional[str]:
        if fast_value == expert_value:
            return expert_value
        if fast_value is not None and expert_value is not None and fast_value.strip() == expert_value.strip():
            return expert_value
        if fast_value is None:
            return expert_value
        if expert_value is None:
            return fast_value

        weight = self.weights.get(key, ModelWeight.PREFER_EXPERT)
        if weight == ModelWeight.PREFER_FAST:
            chosen, source = fast_value, "fast"
        elif weight == ModelWeight.REQUIRE_MATCH:
            chosen, source = None, "none"
        else:
            chosen, source = expert_value, "expert"

        conflicts.append(FieldConflict(
            field_name=key,
            fast_value=fast_value,
            expert_value=expert_value,
            chosen_value=chosen,
            chosen_source=source,
            severity=ConflictSeverity.CRITICAL if key in CRITICAL_FIELDS else ConflictSeverity.WARNING,
        ))
        return chosen

    def _resolve_amount(self, key: str, fast_value: Optional[str], expert_value: Optional[str],
                        conflicts: List[FieldConflict]) -> Optional[str]:
        if fast_value == expert_value:
            return expert_value
        fast_money = Money.parse(fast_value)
        expert_money = Money.parse(expert_value)
        if fast_money is not None and fast_money == expert_money:
            return expert_value
        return self._resolve_string(key, fast_value, expert_value, conflicts)
