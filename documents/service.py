# documents/service.py
"""
Document upload and lifecycle.

    uploaded ──enqueue──► queued ──worker──► processing ──► processed (auto-confirmed)
                                                      ├──► needs_review ──confirm──► confirmed
                                                      ├──► rejected
                                                      └──► failed ──enqueue──► queued

Text for the AI pipeline comes from text uploads (txt, xml) or from the
text sent along with a binary upload.
"""

import hashlib
from pathlib import Path
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from config import ALLOWED_EXTENSIONS, MAX_UPLOAD_SIZE
from documents.models import Document, DocumentProcessingRun
from documents.storage import DocumentStorage
from domain.enums import DocumentStatus, DocumentType
from utils.exceptions import BadRequest, Conflict, NotFound
from utils.logging_config import get_logger

logger = get_logger(__name__)

MAX_PAGE_SIZE = 200
TEXT_EXTENSIONS = {"txt", "xml"}

ENQUEUEABLE_STATUSES = (
    DocumentStatus.UPLOADED.value,
    DocumentStatus.FAILED.value,
    DocumentStatus.NEEDS_REVIEW.value,
    DocumentStatus.REJECTED.value,
)


def file_extension(filename: str) -> str:
    return Path(filename or "").suffix.lower().lstrip(".")


def decode_text(content: bytes) -> str:
    """Decodes a text upload, falling back to latin-1 for legacy encodings."""
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        return content.decode("latin-1")


class DocumentService:

    def __init__(self, db: Session, storage: Optional[DocumentStorage] = None):
        self.db = db
        self.storage = storage or DocumentStorage()

    def upload(
        self,
        tenant_id: int,
        filename: str,
        content: bytes,
        content_type: Optional[str] = None,
        text: Optional[str] = None,
        uploaded_by: Optional[int] = None,
    ) -> Tuple[Document, bool]:
        """
        Stores an upload. Returns the document and whether it was a duplicate
        (same content already uploaded to this tenant).
        """
        extension = file_extension(filename)
        if extension not in ALLOWED_EXTENSIONS:
            raise BadRequest(
                f"File type not allowed. Accepted: {', '.join(sorted(ALLOWED_EXTENSIONS))}",
                details={"filename": filename},
            )
        if not content:
            raise BadRequest("Uploaded file is empty")
        if len(content) > MAX_UPLOAD_SIZE:
            raise BadRequest(f"File exceeds the maximum size of {MAX_UPLOAD_SIZE // (1024 * 1024)}MB")

        sha256 = hashlib.sha256(content).hexdigest()
        existing = self.db.query(Document).filter(
            Document.tenant_id == tenant_id,
            Document.sha256 == sha256
        ).first()
        if existing is not None:
            logger.info("document_duplicate", tenant_id=tenant_id, document_id=existing.id, sha256=sha256[:8])
            return existing, True

        if extension in TEXT_EXTENSIONS:
            extracted_text = decode_text(content)
        else:
            extracted_text = text.strip() if text and text.strip() else None

        storage_path = self.storage.save(tenant_id, filename, content)
        document = Document(
            tenant_id=tenant_id,
            filename=Path(filename).name,
            content_type=content_type,
            size_bytes=len(content),
            storage_path=storage_path,
            sha256=sha256,
            status=DocumentStatus.UPLOADED.value,
            extracted_text=extracted_text,
            uploaded_by=uploaded_by,
        )
        self.db.add(document)
        self.db.commit()
        self.db.refresh(document)
        logger.info("document_uploaded", tenant_id=tenant_id, document_id=document.id, size=len(content))
        return document, False

    def list_documents(
        self,
        tenant_id: int,
        status: Optional[DocumentStatus] = None,
        document_type: Optional[DocumentType] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Document], int]:
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise BadRequest(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if offset < 0:
            raise BadRequest("offset must be >= 0")

        query = self.db.query(Document).filter(Document.tenant_id == tenant_id)
        if status is not None:
            query = query.filter(Document.status == DocumentStatus(status).value)
        if document_type is not None:
            query = query.filter(Document.document_type == DocumentType(document_type).value)

        total = query.count()
        items = query.order_by(Document.created_at.desc(), Document.id.desc()).offset(offset).limit(limit).all()
        return items, total

    def get(self, tenant_id: int, document_id: int) -> Document:
        document = self.db.query(Document).filter(
            Document.id == document_id,
            Document.tenant_id == tenant_id
        ).first()
        if document is None:
            raise NotFound("Document not found")
        return document

    def delete(self, tenant_id: int, document_id: int) -> None:
        document = self.get(tenant_id, document_id)
        if document.status == DocumentStatus.PROCESSING.value:
            raise Conflict("Document is being processed")
        storage_path = document.storage_path
        self.db.delete(document)
        self.db.commit()
        self.storage.delete(storage_path)
        logger.info("document_deleted", tenant_id=tenant_id, document_id=document_id)

    def enqueue(self, tenant_id: int, document_id: int) -> Document:
        document = self.get(tenant_id, document_id)
        if document.status == DocumentStatus.QUEUED.value:
            return document
        if document.status not in ENQUEUEABLE_STATUSES:
            raise Conflict(f"Document cannot be processed while {document.status}")
        if not document.extracted_text:
            raise BadRequest("Document has no text to process; upload a text file or send its text")

        document.status = DocumentStatus.QUEUED.value
        self.db.commit()
        self.db.refresh(document)
        logger.info("document_enqueued", tenant_id=tenant_id, document_id=document_id)
        return document

    def reject(self, tenant_id: int, document_id: int) -> Document:
        document = self.get(tenant_id, document_id)
        if document.status == DocumentStatus.CONFIRMED.value:
            raise Conflict("A confirmed document cannot be rejected")
        document.status = DocumentStatus.REJECTED.value
        self.db.commit()
        self.db.refresh(document)
        logger.info("document_rejected", tenant_id=tenant_id, document_id=document_id)
        return document

    def latest_run(self, tenant_id: int, document_id: int) -> Optional[DocumentProcessingRun]:
        self.get(tenant_id, document_id)
        return self.db.query(DocumentProcessingRun).filter(
            DocumentProcessingRun.document_id == document_id
        ).order_by(DocumentProcessingRun.id.desc()).first()
