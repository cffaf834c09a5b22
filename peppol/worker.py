# peppol/worker.py
"""
Background Peppol inbox polling.

Every PEPPOL_POLL_INTERVAL_SECONDS the worker polls the inbox of each tenant
with Peppol enabled. One tenant failing never stops the others.

Usage (FastAPI lifespan):
    worker = PeppolPollingWorker()
    worker.start()
    ...
    await worker.stop()
"""

import asyncio
import logging
from typing import Callable, Dict, Optional

from sqlalchemy.orm import Session

from config import PEPPOL_POLL_INTERVAL_SECONDS
from database.connection import SessionLocal
from peppol.models import PeppolSettings
from peppol.service import PeppolService

logger = logging.getLogger(__name__)


class PeppolPollingWorker:

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal,
                 interval_seconds: int = PEPPOL_POLL_INTERVAL_SECONDS,
                 service_factory: Callable[[Session], PeppolService] = PeppolService):
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds
        self.service_factory = service_factory
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> Dict[int, int]:
        """Polls every enabled tenant once. Returns {tenant_id: documents imported}."""
        db = self.session_factory()
        try:
            tenant_ids = [
                row.tenant_id for row in
                db.query(PeppolSettings.tenant_id).filter(PeppolSettings.is_enabled.is_(True)).all()
            ]
            imported = {}
            for tenant_id in tenant_ids:
                try:
                    result = await self.service_factory(db).poll_inbox(tenant_id)
                    imported[tenant_id] = result.processed
                    if result.processed or result.failed:
                        logger.info(
                            f"[Peppol] tenant={tenant_id} imported={result.processed} failed={result.failed}"
                        )
                except Exception as e:
                    db.rollback()
                    logger.error(f"[Peppol] Polling failed for tenant {tenant_id}: {e}")
            return imported
        finally:
            db.close()

    async def _loop(self) -> None:
        logger.info(f"[Peppol] Polling worker started (every {self.interval_seconds}s)")
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"[Peppol] Polling round failed: {e}")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("[Peppol] Polling worker stopped")

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
            await asyncio.wait_for(self._task, timeout=10)
        except asyncio.TimeoutError:
            self._task.cancel()
        self._task = None
