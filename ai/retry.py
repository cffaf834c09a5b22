# ai/retry.py
"""
Self-correction: re-extracts a document with audit feedback until no
critical failure remains or the retry budget is spent.
"""

import logging
from dataclasses import dataclass, field, fields
from typing import Any, List, Optional, Tuple

from ai.agents import ExtractionAgent
from ai.audit import AuditCheck, AuditReport, ExtractionAuditService
from ai.feedback import build_feedback_prompt
from config import AI_EXPERT_MODEL, AI_MAX_RETRIES
from domain.enums import DocumentType

logger = logging.getLogger(__name__)


class RetryResult:
    """Base of the three self-correction outcomes"""


@dataclass
class NoRetryNeeded(RetryResult):
    data: Any
    attempts = 0


@dataclass
class CorrectedOnRetry(RetryResult):
    data: Any
    attempt: int
    corrected_fields: List[str] = field(default_factory=list)
    original_failures: List[AuditCheck] = field(default_factory=list)

    @property
    def attempts(self) -> int:
        return self.attempt


@dataclass
class StillFailing(RetryResult):
    data: Any
    attempts: int
    remaining_failures: List[AuditCheck] = field(default_factory=list)


def changed_fields(before, after) -> List[str]:
    """Names of the fields whose value differs between two extractions."""
    return [
        f.name for f in fields(before)
        if f.name != "confidence" and getattr(before, f.name) != getattr(after, f.name)
    ]


class SelfCorrectionLoop:

    def __init__(self, agent: ExtractionAgent, auditor: ExtractionAuditService,
                 max_retries: int = AI_MAX_RETRIES, model: str = AI_EXPERT_MODEL):
        self.agent = agent
        self.auditor = auditor
        self.max_retries = max_retries
        self.model = model

    async def run(self, document_type: DocumentType, text: str, data,
                  report: AuditReport) -> Tuple[RetryResult, AuditReport]:
        """
        Returns the retry outcome and the audit report of the data it carries.
        """
        if report.is_valid:
            return NoRetryNeeded(data), report

        original_failures = report.critical_failures
        current, current_report = data, report

        for attempt in range(1, self.max_retries + 1):
            feedback = build_feedback_prompt(current_report, attempt, self.max_retries)
            candidate = await self.agent.extract(document_type, text, self.model, feedback=feedback)
            if candidate.is_empty:
                logger.warning(f"[SelfCorrection] Attempt {attempt} returned nothing")
                continue

            candidate_report = self.auditor.audit(candidate)
            current, current_report = candidate, candidate_report
            if candidate_report.is_valid:
                corrected = changed_fields(data, candidate)
                logger.info(f"[SelfCorrection] Corrected on attempt {attempt}: {corrected}")
                return CorrectedOnRetry(candidate, attempt, corrected, original_failures), candidate_report

        logger.info(
            f"[SelfCorrection] Still failing after {self.max_retries} attempts "
            f"({len(current_report.critical_failures)} critical)"
        )
        return StillFailing(current, self.max_retries, current_report.critical_failures), current_report


def retry_attempts(result: Optional[RetryResult]) -> int:
    if result is None:
        return 0
    return result.attempts
