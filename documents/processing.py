# documents/processing.py
"""
Runs the AI pipeline over a document and records the run.

Outcome → document status:
    AUTO_APPROVE  → confirmed (entity created), needs_review if that fails
    NEEDS_REVIEW  → needs_review
    REJECT        → rejected
    exception     → failed
"""

from typing import Callable, Optional

from sqlalchemy.orm import Session

from ai.coordinator import AutonomousProcessingCoordinator, AutonomousResult, Rejected
from ai.llm_client import LLMClient
from documents.confirmation import DocumentConfirmationService
from documents.models import Document, DocumentProcessingRun
from domain.enums import DocumentStatus
from utils.exceptions import DokusException, NotFound
from utils.logging_config import get_logger
from utils.timezone import now_utc

logger = get_logger(__name__)

RUN_PROCESSING = "processing"
RUN_COMPLETED = "completed"
RUN_FAILED = "failed"

CoordinatorFactory = Callable[[], AutonomousProcessingCoordinator]


def default_coordinator() -> AutonomousProcessingCoordinator:
    return AutonomousProcessingCoordinator.from_client(LLMClient())


class DocumentProcessingService:

    def __init__(self, db: Session, coordinator_factory: CoordinatorFactory = default_coordinator):
        self.db = db
        self.coordinator_factory = coordinator_factory

    async def process(self, document_id: int, tenant_id: Optional[int] = None) -> DocumentProcessingRun:
        query = self.db.query(Document).filter(Document.id == document_id)
        if tenant_id is not None:
            query = query.filter(Document.tenant_id == tenant_id)
        document = query.first()
        if document is None:
            raise NotFound("Document not found")

        run = DocumentProcessingRun(
            document_id=document.id,
            tenant_id=document.tenant_id,
            status=RUN_PROCESSING,
            started_at=now_utc(),
        )
        document.status = DocumentStatus.PROCESSING.value
        self.db.add(run)
        self.db.commit()
        self.db.refresh(run)
        logger.info("document_processing_started", document_id=document.id, run_id=run.id)

        try:
            if not document.extracted_text:
                raise ValueError("Document has no text to process")
            result = await self.coordinator_factory().process(document.extracted_text)
        except Exception as e:
            logger.error("document_processing_failed", document_id=document.id, error=str(e))
            self.db.rollback()
            run.status = RUN_FAILED
            run.error_message = str(e) or e.__class__.__name__
            run.finished_at = now_utc()
            document.status = DocumentStatus.FAILED.value
            self.db.commit()
            return run

        self._record(run, document, result)
        self.db.commit()

        if run.outcome == "AUTO_APPROVE":
            self._auto_confirm(document)

        logger.info(
            "document_processing_finished", document_id=document.id, run_id=run.id,
            outcome=run.outcome, status=document.status
        )
        self.db.refresh(run)
        return run

    def _record(self, run: DocumentProcessingRun, document: Document, result: AutonomousResult) -> None:
        run.status = RUN_COMPLETED
        run.finished_at = now_utc()
        if result.classification is not None:
            run.document_type = result.classification.document_type.value
            run.classification_confidence = result.classification.confidence
            document.document_type = run.document_type

        if isinstance(result, Rejected):
            run.outcome = "REJECT"
            run.confidence = 0.0
            run.reasoning = result.reason
            run.rejection_stage = result.stage.value
            run.issues = [result.reason]
            document.status = DocumentStatus.REJECTED.value
            return

        judgment = result.judgment
        run.outcome = judgment.outcome.value
        run.confidence = result.confidence
        run.reasoning = judgment.reasoning
        run.issues = list(judgment.issues_for_user)
        run.extracted_data = result.extraction.to_dict()
        run.retry_attempts = result.retry_attempts

        if result.is_auto_approved:
            document.status = DocumentStatus.PROCESSED.value
        elif result.is_rejected:
            run.rejection_stage = "VALIDATION"
            document.status = DocumentStatus.REJECTED.value
        else:
            document.status = DocumentStatus.NEEDS_REVIEW.value

    def _auto_confirm(self, document: Document) -> None:
        try:
            DocumentConfirmationService(self.db).confirm(document.tenant_id, document.id)
        except DokusException as e:
            self.db.rollback()
            logger.warning("document_auto_confirm_failed", document_id=document.id, error=e.message)
            document.status = DocumentStatus.NEEDS_REVIEW.value
            self.db.commit()
