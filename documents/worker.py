# documents/worker.py
"""
Background processing of queued documents.

Usage (FastAPI lifespan):
    worker = DocumentProcessingWorker()
    worker.start()
    ...
    await worker.stop()
"""

import asyncio
import logging
from typing import Callable, Dict, Optional

from sqlalchemy.orm import Session

from config import DOCUMENT_PROCESSING_INTERVAL_SECONDS
from database.connection import SessionLocal
from documents.models import Document
from documents.processing import DocumentProcessingService
from domain.enums import DocumentStatus

logger = logging.getLogger(__name__)


class DocumentProcessingWorker:

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal,
                 interval_seconds: int = DOCUMENT_PROCESSING_INTERVAL_SECONDS,
                 service_factory: Callable[[Session], DocumentProcessingService] = DocumentProcessingService):
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds
        self.service_factory = service_factory
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self, batch_size: int = 10) -> Dict[int, Optional[str]]:
        """Processes up to batch_size queued documents, oldest first. Returns {document_id: outcome}."""
        db = self.session_factory()
        try:
            document_ids = [
                row.id for row in
                db.query(Document.id)
                .filter(Document.status == DocumentStatus.QUEUED.value)
                .order_by(Document.created_at.asc(), Document.id.asc())
                .limit(batch_size)
                .all()
            ]
            outcomes = {}
            for document_id in document_ids:
                try:
                    run = await self.service_factory(db).process(document_id)
                    outcomes[document_id] = run.outcome
                except Exception as e:
                    db.rollback()
                    outcomes[document_id] = None
                    logger.error(f"[Documents] Processing failed for document {document_id}: {e}")
            if outcomes:
                logger.info(f"[Documents] Processed {len(outcomes)} queued document(s)")
            return outcomes
        finally:
            db.close()

    async def _loop(self) -> None:
        logger.info(f"[Documents] Processing worker started (every {self.interval_seconds}s)")
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"[Documents] Processing round failed: {e}")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("[Documents] Processing worker stopped")

    def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stopping.set()
        try:
            await asyncio.wait_for(self._task, timeout=30)
        except asyncio.TimeoutError:
            self._task.cancel()
        self._task = None
