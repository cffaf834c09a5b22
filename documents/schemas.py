"""
Pydantic schemas for the document endpoints
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Any
from datetime import datetime

from domain.enums import DocumentType


class DocumentResponse(BaseModel):
    id: int
    tenant_id: int
    filename: str
    content_type: Optional[str] = None
    size_bytes: int
    sha256: str
    status: str
    document_type: Optional[str] = None
    has_text: bool = False
    confirmed_entity_type: Optional[str] = None
    confirmed_entity_id: Optional[int] = None
    uploaded_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_document(cls, document) -> "DocumentResponse":
        response = cls.model_validate(document)
        response.has_text = bool(document.extracted_text)
        return response


class UploadResponse(BaseModel):
    document: DocumentResponse
    is_duplicate: bool = False


class DocumentPage(BaseModel):
    items: List[DocumentResponse]
    total: int
    limit: int
    offset: int


class ProcessingRunResponse(BaseModel):
    id: int
    document_id: int
    status: str
    document_type: Optional[str] = None
    classification_confidence: Optional[float] = None
    confidence: Optional[float] = None
    outcome: Optional[str] = None
    reasoning: Optional[str] = None
    issues: Optional[List[str]] = None
    extracted_data: Optional[Dict[str, Any]] = None
    retry_attempts: int = 0
    rejection_stage: Optional[str] = None
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ConfirmRequest(BaseModel):
    """Omitted fields fall back to the latest extraction"""
    document_type: Optional[DocumentType] = None
    data: Optional[Dict[str, Any]] = None
    contact_id: Optional[int] = Field(None, description="Customer of an outgoing invoice")


class ConfirmResponse(BaseModel):
    document_id: int
    entity_type: str
    entity_id: int
    created: bool
