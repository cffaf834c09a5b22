# ai/judgment.py
"""
Final decision on an extracted document: AUTO_APPROVE, NEEDS_REVIEW or REJECT.

Rules come first (JudgmentCriteria). The LLM is only consulted for the
borderline cases the rules cannot settle, and its answer never overrides a
clear-cut rule decision.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from ai.audit import AuditReport
from ai.consensus import ConflictReport
from ai.llm_client import LLMClient, parse_json_response
from ai.retry import CorrectedOnRetry, NoRetryNeeded, RetryResult, StillFailing, retry_attempts
from config import AI_FAST_MODEL
from domain.enums import DocumentType

logger = logging.getLogger(__name__)

AUTO_APPROVE_CONFIDENCE_FLOOR = 0.85
CLEAR_CUT_APPROVE_CONFIDENCE = 0.85
CLEAR_CUT_REVIEW_CONFIDENCE = 0.6


class JudgmentOutcome(str, Enum):
    AUTO_APPROVE = "AUTO_APPROVE"
    NEEDS_REVIEW = "NEEDS_REVIEW"
    REJECT = "REJECT"


@dataclass(frozen=True)
class JudgmentConfig:
    auto_approve_threshold: float = 0.8
    auto_approve_with_warnings: bool = True
    max_warnings_for_auto_approve: int = 2
    require_consensus_for_auto_approve: bool = True
    reject_below_threshold: float = 0.5


JudgmentConfig.DEFAULT = JudgmentConfig()
JudgmentConfig.STRICT = JudgmentConfig(
    auto_approve_threshold=0.9,
    auto_approve_with_warnings=False,
    max_warnings_for_auto_approve=0,
)
JudgmentConfig.LENIENT = JudgmentConfig(
    auto_approve_threshold=0.7,
    max_warnings_for_auto_approve=5,
    require_consensus_for_auto_approve=False,
)


@dataclass
class JudgmentContext:
    document_type: DocumentType
    extraction_confidence: float
    audit_report: AuditReport = field(default_factory=AuditReport)
    conflict_report: Optional[ConflictReport] = None
    retry_result: Optional[RetryResult] = None
    essential_fields_present: bool = True
    missing_essential_fields: List[str] = field(default_factory=list)


@dataclass
class JudgmentDecision:
    outcome: JudgmentOutcome
    confidence: float
    reasoning: str
    issues_for_user: List[str] = field(default_factory=list)
    all_critical_checks_passed: bool = True
    has_model_consensus: bool = True
    retry_attempts: int = 0
    corrected_fields: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "issuesForUser": self.issues_for_user,
            "allCriticalChecksPassed": self.all_critical_checks_passed,
            "hasModelConsensus": self.has_model_consensus,
            "retryAttempts": self.retry_attempts,
            "correctedFields": self.corrected_fields,
        }


def _pct(value: float) -> str:
    return f"{int(value * 100)}%"


# ============================================
# Rules
# ============================================

class JudgmentCriteria:

    def __init__(self, config: JudgmentConfig = JudgmentConfig.DEFAULT):
        self.config = config

    def evaluate(self, context: JudgmentContext) -> JudgmentDecision:
        config = self.config
        confidence = context.extraction_confidence
        attempts = retry_attempts(context.retry_result)
        corrected = context.retry_result.corrected_fields if isinstance(context.retry_result, CorrectedOnRetry) else []
        critical_failures = context.audit_report.critical_failures
        has_consensus = not (context.conflict_report and context.conflict_report.has_critical_conflicts)

        def decision(outcome: JudgmentOutcome, conf: float, reasoning: str, issues: List[str]) -> JudgmentDecision:
            return JudgmentDecision(
                outcome=outcome,
                confidence=conf,
                reasoning=reasoning,
                issues_for_user=issues,
                all_critical_checks_passed=not critical_failures,
                has_model_consensus=has_consensus,
                retry_attempts=attempts,
                corrected_fields=list(corrected),
            )

        # Hard rejections
        if not context.essential_fields_present or context.missing_essential_fields:
            missing = ", ".join(context.missing_essential_fields) or "unknown"
            return decision(
                JudgmentOutcome.REJECT, confidence,
                f"Essential fields missing: {missing}",
                [f"Missing field: {name}" for name in context.missing_essential_fields],
            )

        if context.document_type == DocumentType.UNKNOWN:
            return decision(
                JudgmentOutcome.REJECT, confidence,
                "Unknown document type",
                ["The document type could not be determined"],
            )

        if isinstance(context.retry_result, StillFailing) and context.retry_result.remaining_failures:
            failures = context.retry_result.remaining_failures
            return decision(
                JudgmentOutcome.REJECT, confidence,
                f"{len(failures)} critical check(s) still failing after {context.retry_result.attempts} retry attempts",
                [check.message for check in failures],
            )

        if confidence < config.reject_below_threshold:
            return decision(
                JudgmentOutcome.REJECT, confidence,
                f"Extraction confidence {_pct(confidence)} is below the rejection threshold "
                f"{_pct(config.reject_below_threshold)}",
                ["Extraction confidence too low"],
            )

        # Review triggers
        issues = []
        if confidence < config.auto_approve_threshold:
            issues.append(
                f"Extraction confidence {_pct(confidence)} is below {_pct(config.auto_approve_threshold)}"
            )
        if config.require_consensus_for_auto_approve and not has_consensus:
            for conflict in context.conflict_report.critical_conflicts:
                issues.append(
                    f"Models disagree on {conflict.field_name}: '{conflict.fast_value}' vs '{conflict.expert_value}'"
                )
        issues.extend(check.message for check in critical_failures)

        warnings = context.audit_report.warnings
        if warnings:
            if not config.auto_approve_with_warnings:
                issues.extend(check.message for check in warnings)
            elif len(warnings) > config.max_warnings_for_auto_approve:
                issues.append(f"{len(warnings)} validation warnings (max {config.max_warnings_for_auto_approve})")

        if issues:
            return decision(
                JudgmentOutcome.NEEDS_REVIEW, confidence,
                f"{len(issues)} issue(s) need a human check",
                issues,
            )

        return decision(
            JudgmentOutcome.AUTO_APPROVE,
            min(1.0, max(confidence, AUTO_APPROVE_CONFIDENCE_FLOOR)),
            "All checks passed" + (f" after correcting {', '.join(corrected)}" if corrected else ""),
            [],
        )

    def can_potentially_auto_approve(self, context: JudgmentContext) -> bool:
        """Cheap pre-check: no blocker that would prevent auto approval."""
        return (
            context.essential_fields_present
            and not context.missing_essential_fields
            and context.document_type != DocumentType.UNKNOWN
            and context.audit_report.is_valid
            and context.extraction_confidence >= self.config.auto_approve_threshold
        )


# ============================================
# Agent
# ============================================

JUDGMENT_SYSTEM_PROMPT = """You make the final decision on an automatically processed bookkeeping document.
You do not see the document, only the reports of the earlier processing steps.

AUTO_APPROVE when no critical check failed, the models agree on critical fields,
confidence is at least 80% and all essential fields are present. The user will
never look at the document.

NEEDS_REVIEW when there are warnings, resolved disagreements, missing optional
fields or confidence between 50% and 80%. List the concrete issues for the user.

REJECT when critical checks still fail after retries, essential fields are
missing, the type is unknown or confidence is below 50%.

Answer with JSON only:
{"decision": "AUTO_APPROVE|NEEDS_REVIEW|REJECT", "confidence": 0.0-1.0,
 "reasoning": "one or two sentences", "issuesForUser": ["..."]}"""


class JudgmentAgent:

    def __init__(self, criteria: Optional[JudgmentCriteria] = None, client: Optional[LLMClient] = None,
                 model: str = AI_FAST_MODEL):
        self.criteria = criteria or JudgmentCriteria()
        self.client = client
        self.model = model

    async def judge(self, context: JudgmentContext, use_llm: bool = True) -> JudgmentDecision:
        deterministic = self.criteria.evaluate(context)
        if self._is_clear_cut(deterministic, context) or not use_llm or self.client is None:
            logger.info(f"[Judgment] {deterministic.outcome.value} ({_pct(deterministic.confidence)})")
            return deterministic

        logger.info("[Judgment] Borderline case, asking the LLM")
        try:
            result = await self.client.complete(self.model, JUDGMENT_SYSTEM_PROMPT, build_judgment_prompt(context))
            if not result.success:
                logger.warning(f"[Judgment] LLM call failed: {result.error}")
                return deterministic
            return self._parse(result.content, context, deterministic)
        except Exception as e:
            logger.warning(f"[Judgment] Falling back to rules: {e}")
            return deterministic

    @staticmethod
    def _is_clear_cut(decision: JudgmentDecision, context: JudgmentContext) -> bool:
        if decision.outcome == JudgmentOutcome.REJECT:
            return True
        if decision.outcome == JudgmentOutcome.AUTO_APPROVE:
            # the decision confidence is floored, so look at what the extraction reported
            return context.extraction_confidence >= CLEAR_CUT_APPROVE_CONFIDENCE
        return bool(decision.issues_for_user) or decision.confidence < CLEAR_CUT_REVIEW_CONFIDENCE

    @staticmethod
    def _parse(content: str, context: JudgmentContext, fallback: JudgmentDecision) -> JudgmentDecision:
        data = parse_json_response(content)
        if data is not None and data.get("decision"):
            outcome_text = str(data["decision"]).upper().replace(" ", "_")
            try:
                confidence = float(data.get("confidence", 0.8))
            except (TypeError, ValueError):
                confidence = 0.8
            reasoning = str(data.get("reasoning") or "")
            issues = [str(i) for i in (data.get("issuesForUser") or [])]
        else:
            outcome_text = (content or "").upper()
            confidence, reasoning, issues = None, "", []

        if "AUTO_APPROVE" in outcome_text or "AUTOAPPROVE" in outcome_text:
            outcome = JudgmentOutcome.AUTO_APPROVE
            confidence = 0.8 if confidence is None else confidence
            reasoning = reasoning or "LLM approved the document"
            issues = []
        elif "REJECT" in outcome_text:
            outcome = JudgmentOutcome.REJECT
            confidence = 0.8 if confidence is None else confidence
            reasoning = reasoning or "LLM rejected the document"
        else:
            outcome = JudgmentOutcome.NEEDS_REVIEW
            confidence = 0.6 if confidence is None else confidence
            reasoning = reasoning or "LLM requested a review"
            issues = issues or ["Review requested by the judgment model"]

        return JudgmentDecision(
            outcome=outcome,
            confidence=max(0.0, min(1.0, confidence)),
            reasoning=reasoning,
            issues_for_user=issues,
            all_critical_checks_passed=fallback.all_critical_checks_passed,
            has_model_consensus=fallback.has_model_consensus,
            retry_attempts=fallback.retry_attempts,
            corrected_fields=fallback.corrected_fields,
        )


def build_judgment_prompt(context: JudgmentContext) -> str:
    report = context.audit_report
    lines = [
        "# Document analysis report",
        "",
        f"- Document type: {context.document_type.value}",
        f"- Extraction confidence: {_pct(context.extraction_confidence)}",
        f"- Essential fields present: {'yes' if context.essential_fields_present else 'no'}",
    ]
    if context.missing_essential_fields:
        lines.append(f"- Missing fields: {', '.join(context.missing_essential_fields)}")

    lines += ["", "## Model consensus"]
    conflicts = context.conflict_report.conflicts if context.conflict_report else []
    if not conflicts:
        lines.append("No conflicts between the models")
    for conflict in conflicts:
        lines.append(
            f"- [{conflict.severity.value}] {conflict.field_name}: "
            f"'{conflict.fast_value}' vs '{conflict.expert_value}'"
        )

    lines += [
        "",
        "## Validation audit",
        f"- Checks: {len(report.checks)}, passed: {report.passed_count}, failed: {report.failed_count}",
        f"- Status: {report.overall_status.value}",
    ]
    lines.extend(f"- CRITICAL {c.type.value}: {c.message}" for c in report.critical_failures)
    lines.extend(f"- WARNING {c.type.value}: {c.message}" for c in report.warnings[:3])
    if len(report.warnings) > 3:
        lines.append(f"- ... and {len(report.warnings) - 3} more warnings")

    lines += ["", "## Self-correction"]
    retry = context.retry_result
    if retry is None or isinstance(retry, NoRetryNeeded):
        lines.append("No retry needed")
    elif isinstance(retry, CorrectedOnRetry):
        lines.append(f"Corrected on attempt {retry.attempt}: {', '.join(retry.corrected_fields)}")
    elif isinstance(retry, StillFailing):
        lines.append(f"Still failing after {retry.attempts} attempts ({len(retry.remaining_failures)} failures)")

    lines += ["", "Decide: AUTO_APPROVE, NEEDS_REVIEW or REJECT."]
    return "\n".join(lines)
