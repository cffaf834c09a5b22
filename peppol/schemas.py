"""
Pydantic schemas for the Peppol endpoints
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List
from datetime import datetime

from domain.enums import PeppolDirection, PeppolStatus


class PeppolSettingsRequest(BaseModel):
    company_id: str = Field(..., min_length=1, max_length=100)
    api_key: str = Field(..., min_length=1, max_length=255)
    api_secret: str = Field(..., min_length=1, max_length=255)
    peppol_id: str = Field(..., min_length=3, max_length=100)
    is_enabled: bool = False
    test_mode: bool = True


class PeppolSettingsResponse(BaseModel):
    """Credentials without the secret"""
    id: int
    tenant_id: int
    company_id: str
    peppol_id: str
    is_enabled: bool
    test_mode: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ConnectionTestResponse(BaseModel):
    connected: bool


class ValidationIssueResponse(BaseModel):
    code: str
    message: str
    field: Optional[str] = None


class ValidationResultResponse(BaseModel):
    is_valid: bool
    errors: List[ValidationIssueResponse] = []
    warnings: List[ValidationIssueResponse] = []


class VerifyRecipientRequest(BaseModel):
    peppol_id: str = Field(..., min_length=1, max_length=100)


class VerifyRecipientResponse(BaseModel):
    registered: bool
    participant_id: str
    name: Optional[str] = None
    document_types: List[str] = []


class TransmissionResponse(BaseModel):
    id: int
    tenant_id: int
    direction: PeppolDirection
    document_type: str
    status: PeppolStatus
    invoice_id: Optional[int] = None
    bill_id: Optional[int] = None
    external_document_id: Optional[str] = None
    recipient_peppol_id: Optional[str] = None
    sender_peppol_id: Optional[str] = None
    error_message: Optional[str] = None
    transmitted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class TransmissionPage(BaseModel):
    items: List[TransmissionResponse]
    total: int
    limit: int
    offset: int


class PollResponse(BaseModel):
    processed: int
    failed: int
    skipped: int
    bill_ids: List[int] = []
