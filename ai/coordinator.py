# ai/coordinator.py
"""
Document processing pipeline.

    classify ──► UNKNOWN or low confidence: Rejected (CLASSIFICATION)
       │
    extract with the fast and the expert model concurrently
       │
    consensus ──► nothing extracted: Rejected (EXTRACTION)
       │
    audit ──► critical failures: self-correction with feedback
       │
    judgment ──► Success(AUTO_APPROVE | NEEDS_REVIEW | REJECT)

Usage:
    coordinator = AutonomousProcessingCoordinator.from_client(LLMClient())
    result = await coordinator.process(text)
    if isinstance(result, Success) and result.is_auto_approved:
        ...
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Union

from ai.agents import DocumentClassificationAgent, ExtractionAgent
from ai.audit import AuditReport, ExtractionAuditService
from ai.consensus import ConflictReport, ConsensusEngine, NoData
from ai.judgment import JudgmentAgent, JudgmentContext, JudgmentDecision, JudgmentOutcome
from ai.llm_client import LLMClient
from ai.models import EXTRACTED_TYPES, ClassificationResult, missing_essential_fields
from ai.retry import CorrectedOnRetry, RetryResult, SelfCorrectionLoop, retry_attempts
from config import AI_EXPERT_MODEL, AI_FAST_MODEL, AI_MAX_RETRIES, AI_MIN_CLASSIFICATION_CONFIDENCE

logger = logging.getLogger(__name__)

SILENCE_GOAL = 0.95


def _pct(value: float) -> str:
    return f"{int(value * 100)}%"


# ============================================
# Results
# ============================================

class RejectionStage(str, Enum):
    CLASSIFICATION = "CLASSIFICATION"
    EXTRACTION = "EXTRACTION"
    VALIDATION = "VALIDATION"


@dataclass
class Success:
    classification: ClassificationResult
    extraction: object
    audit_report: AuditReport
    conflict_report: Optional[ConflictReport]
    retry_result: Optional[RetryResult]
    judgment: JudgmentDecision

    @property
    def is_auto_approved(self) -> bool:
        return self.judgment.outcome == JudgmentOutcome.AUTO_APPROVE

    @property
    def needs_review(self) -> bool:
        return self.judgment.outcome == JudgmentOutcome.NEEDS_REVIEW

    @property
    def is_rejected(self) -> bool:
        return self.judgment.outcome == JudgmentOutcome.REJECT

    @property
    def was_corrected(self) -> bool:
        return isinstance(self.retry_result, CorrectedOnRetry)

    @property
    def retry_attempts(self) -> int:
        return retry_attempts(self.retry_result)

    @property
    def had_conflicts(self) -> bool:
        return bool(self.conflict_report and self.conflict_report.conflicts)

    @property
    def confidence(self) -> float:
        return self.judgment.confidence


@dataclass
class Rejected:
    reason: str
    classification: Optional[ClassificationResult]
    stage: RejectionStage
    details: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def unknown_document_type(cls, classification: ClassificationResult) -> "Rejected":
        return cls("Could not determine document type", classification, RejectionStage.CLASSIFICATION)

    @classmethod
    def low_confidence(cls, classification: ClassificationResult, threshold: float) -> "Rejected":
        return cls(
            f"Classification confidence {_pct(classification.confidence)} is below threshold {_pct(threshold)}",
            classification,
            RejectionStage.CLASSIFICATION,
            {"confidence": str(classification.confidence), "threshold": str(threshold)},
        )

    @classmethod
    def extraction_failed(cls, classification: ClassificationResult, fast_error: Optional[BaseException],
                          expert_error: Optional[BaseException]) -> "Rejected":
        details = {}
        if fast_error is not None:
            details["fastError"] = str(fast_error) or fast_error.__class__.__name__
        if expert_error is not None:
            details["expertError"] = str(expert_error) or expert_error.__class__.__name__
        return cls("Both models failed to extract data", classification, RejectionStage.EXTRACTION, details)

    @classmethod
    def no_data_extracted(cls, classification: ClassificationResult) -> "Rejected":
        return cls("No data could be extracted from the document", classification, RejectionStage.EXTRACTION)


AutonomousResult = Union[Success, Rejected]


@dataclass
class AutonomousProcessingStats:
    total: int = 0
    auto_approved: int = 0
    needs_review: int = 0
    rejected: int = 0
    corrected: int = 0

    @classmethod
    def from_results(cls, results: List[AutonomousResult]) -> "AutonomousProcessingStats":
        stats = cls(total=len(results))
        for result in results:
            if isinstance(result, Rejected) or result.is_rejected:
                stats.rejected += 1
            elif result.is_auto_approved:
                stats.auto_approved += 1
            else:
                stats.needs_review += 1
            if isinstance(result, Success) and result.was_corrected:
                stats.corrected += 1
        return stats

    @property
    def auto_approval_rate(self) -> float:
        return self.auto_approved / self.total if self.total else 0.0

    @property
    def silence_rate(self) -> float:
        """Share of documents nobody had to look at."""
        return self.auto_approval_rate

    @property
    def meets_silence_goal(self) -> bool:
        return self.silence_rate >= SILENCE_GOAL


# ============================================
# Coordinator
# ============================================

class AutonomousProcessingCoordinator:

    def __init__(
        self,
        classifier: DocumentClassificationAgent,
        extractor: ExtractionAgent,
        judgment_agent: Optional[JudgmentAgent] = None,
        auditor: Optional[ExtractionAuditService] = None,
        consensus: Optional[ConsensusEngine] = None,
        fast_model: str = AI_FAST_MODEL,
        expert_model: str = AI_EXPERT_MODEL,
        max_retries: int = AI_MAX_RETRIES,
        min_classification_confidence: float = AI_MIN_CLASSIFICATION_CONFIDENCE,
        use_llm_for_judgment: bool = True,
    ):
        self.classifier = classifier
        self.extractor = extractor
        self.judgment_agent = judgment_agent or JudgmentAgent()
        self.auditor = auditor or ExtractionAuditService()
        self.consensus = consensus or ConsensusEngine()
        self.fast_model = fast_model
        self.expert_model = expert_model
        self.max_retries = max_retries
        self.min_classification_confidence = min_classification_confidence
        self.use_llm_for_judgment = use_llm_for_judgment

    @classmethod
    def from_client(cls, client: LLMClient, **kwargs) -> "AutonomousProcessingCoordinator":
        return cls(
            classifier=DocumentClassificationAgent(client),
            extractor=ExtractionAgent(client),
            judgment_agent=JudgmentAgent(client=client),
            **kwargs,
        )

    async def process(self, text: str) -> AutonomousResult:
        started = time.time()

        classification = await self.classifier.classify(text)
        logger.info(
            f"[Pipeline] Classified as {classification.document_type.value} ({_pct(classification.confidence)})"
        )
        if classification.confidence < self.min_classification_confidence:
            return Rejected.low_confidence(classification, self.min_classification_confidence)
        if classification.document_type not in EXTRACTED_TYPES:
            return Rejected.unknown_document_type(classification)

        document_type = classification.document_type
        fast, expert = await asyncio.gather(
            self.extractor.extract(document_type, text, self.fast_model),
            self.extractor.extract(document_type, text, self.expert_model),
            return_exceptions=True,
        )
        fast_error = fast if isinstance(fast, Exception) else None
        expert_error = expert if isinstance(expert, Exception) else None
        if fast_error is not None and expert_error is not None:
            logger.error(f"[Pipeline] Both extractions failed: {fast_error} / {expert_error}")
            return Rejected.extraction_failed(classification, fast_error, expert_error)

        fast_candidate = None if fast_error is not None or fast.is_empty else fast
        expert_candidate = None if expert_error is not None or expert.is_empty else expert

        consensus = self.consensus.merge(fast_candidate, expert_candidate)
        if isinstance(consensus, NoData):
            return Rejected.no_data_extracted(classification)

        data, conflict_report = consensus.data, consensus.report
        audit_report = self.auditor.audit(data)

        retry_result = None
        if not audit_report.is_valid and self.max_retries > 0:
            loop = SelfCorrectionLoop(self.extractor, self.auditor, self.max_retries, self.expert_model)
            retry_result, audit_report = await loop.run(document_type, text, data, audit_report)
            data = retry_result.data

        missing = missing_essential_fields(document_type, data)
        context = JudgmentContext(
            document_type=document_type,
            extraction_confidence=data.confidence,
            audit_report=audit_report,
            conflict_report=conflict_report,
            retry_result=retry_result,
            essential_fields_present=not missing,
            missing_essential_fields=missing,
        )
        judgment = await self.judgment_agent.judge(context, use_llm=self.use_llm_for_judgment)

        logger.info(
            f"[Pipeline] {judgment.outcome.value} confidence={_pct(judgment.confidence)} "
            f"retries={retry_attempts(retry_result)} total={int((time.time() - started) * 1000)}ms"
        )
        return Success(
            classification=classification,
            extraction=data,
            audit_report=audit_report,
            conflict_report=conflict_report,
            retry_result=retry_result,
            judgment=judgment,
        )
