"""
Document endpoints

**Access:** every route needs `documents_process`.

Uploads are deduplicated per workspace by content hash. Processing runs the
AI pipeline; an auto-approved document is confirmed straight away, the
others wait in `needs_review` for POST /{id}/confirm or /{id}/reject.
"""

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile, status
from sqlalchemy.orm import Session

from auth.dependencies import AuthContext, require_permission
from auth.permissions import Permission
from database.connection import get_db
from documents.confirmation import DocumentConfirmationService
from documents.schemas import (
    ConfirmRequest, ConfirmResponse, DocumentPage, DocumentResponse, ProcessingRunResponse, UploadResponse
)
from documents.service import DocumentService
from domain.enums import DocumentStatus, DocumentType
from utils.exceptions import NotFound
from utils.rate_limit import LIMITS, get_user_identifier, limiter

router = APIRouter(prefix="/api/v1/documents", tags=["Documents"])

can_process = require_permission(Permission.DOCUMENTS_PROCESS)


@router.post("/upload", response_model=UploadResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(LIMITS["upload"], key_func=get_user_identifier)
async def upload_document(
    request: Request,
    file: UploadFile = File(...),
    text: Optional[str] = Form(None),
    ctx: AuthContext = Depends(can_process),
    db: Session = Depends(get_db)
):
    """
    Uploads a document.

    `text` carries the content of PDFs and images; txt and xml files are read
    as text directly.
    """
    content = await file.read()
    document, is_duplicate = DocumentService(db).upload(
        ctx.tenant_id,
        file.filename,
        content,
        content_type=file.content_type,
        text=text,
        uploaded_by=ctx.user.id,
    )
    return UploadResponse(document=DocumentResponse.from_document(document), is_duplicate=is_duplicate)


@router.get("", response_model=DocumentPage)
async def list_documents(
    document_status: Optional[DocumentStatus] = Query(None, alias="status"),
    document_type: Optional[DocumentType] = Query(None, alias="type"),
    limit: int = 50,
    offset: int = 0,
    ctx: AuthContext = Depends(can_process),
    db: Session = Depends(get_db)
):
    items, total = DocumentService(db).list_documents(ctx.tenant_id, document_status, document_type, limit, offset)
    return DocumentPage(
        items=[DocumentResponse.from_document(d) for d in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{document_id}", response_model=DocumentResponse)
async def get_document(document_id: int, ctx: AuthContext = Depends(can_process), db: Session = Depends(get_db)):
    return DocumentResponse.from_document(DocumentService(db).get(ctx.tenant_id, document_id))


@router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_document(document_id: int, ctx: AuthContext = Depends(can_process), db: Session = Depends(get_db)):
    DocumentService(db).delete(ctx.tenant_id, document_id)


@router.post("/{document_id}/process", response_model=DocumentResponse, status_code=status.HTTP_202_ACCEPTED)
@limiter.limit(LIMITS["ai"], key_func=get_user_identifier)
async def process_document(request: Request, document_id: int, ctx: AuthContext = Depends(can_process),
                           db: Session = Depends(get_db)):
    """Queues the document for the processing worker."""
    return DocumentResponse.from_document(DocumentService(db).enqueue(ctx.tenant_id, document_id))


@router.get("/{document_id}/processing", response_model=ProcessingRunResponse)
async def processing_status(document_id: int, ctx: AuthContext = Depends(can_process),
                            db: Session = Depends(get_db)):
    run = DocumentService(db).latest_run(ctx.tenant_id, document_id)
    if run is None:
        raise NotFound("Document has not been processed yet")
    return run


@router.post("/{document_id}/confirm", response_model=ConfirmResponse)
async def confirm_document(
    document_id: int,
    body: ConfirmRequest,
    ctx: AuthContext = Depends(can_process),
    db: Session = Depends(get_db)
):
    result = DocumentConfirmationService(db).confirm(
        ctx.tenant_id, document_id, data=body.data, document_type=body.document_type, contact_id=body.contact_id
    )
    return ConfirmResponse(**asdict(result))


@router.post("/{document_id}/reject", response_model=DocumentResponse)
async def reject_document(document_id: int, ctx: AuthContext = Depends(can_process), db: Session = Depends(get_db)):
    return DocumentResponse.from_document(DocumentService(db).reject(ctx.tenant_id, document_id))
