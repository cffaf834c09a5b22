"""
Pydantic schemas for contacts, addresses and notes
"""

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from typing import Optional, List
from datetime import date, datetime

from domain.enums import ContactType


class AddressData(BaseModel):
    street_line1: Optional[str] = Field(None, max_length=255)
    street_line2: Optional[str] = Field(None, max_length=255)
    city: Optional[str] = Field(None, max_length=100)
    postal_code: Optional[str] = Field(None, max_length=20)
    country: Optional[str] = Field(None, max_length=2)
    is_default: bool = False


class AddressResponse(AddressData):
    id: int

    model_config = ConfigDict(from_attributes=True)


class ContactBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=50)
    vat_number: Optional[str] = Field(None, max_length=20)
    company_number: Optional[str] = Field(None, max_length=20)
    contact_person: Optional[str] = Field(None, max_length=255)
    contact_type: ContactType = ContactType.CUSTOMER
    default_payment_terms: Optional[int] = Field(None, ge=0, le=365)
    default_vat_rate: Optional[int] = Field(None, ge=0, le=10000)
    peppol_id: Optional[str] = Field(None, max_length=100)
    peppol_enabled: bool = False
    tags: List[str] = []
    addresses: List[AddressData] = []


class ContactCreate(ContactBase):
    initial_note: Optional[str] = Field(None, alias="initialNote")

    model_config = ConfigDict(populate_by_name=True)


class ContactUpdate(BaseModel):
    """Partial update; omitted fields stay unchanged."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=50)
    vat_number: Optional[str] = Field(None, max_length=20)
    company_number: Optional[str] = Field(None, max_length=20)
    contact_person: Optional[str] = Field(None, max_length=255)
    contact_type: Optional[ContactType] = None
    default_payment_terms: Optional[int] = Field(None, ge=0, le=365)
    default_vat_rate: Optional[int] = Field(None, ge=0, le=10000)
    is_active: Optional[bool] = None
    tags: Optional[List[str]] = None
    addresses: Optional[List[AddressData]] = None


class ContactResponse(BaseModel):
    id: int
    tenant_id: int
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    vat_number: Optional[str] = None
    company_number: Optional[str] = None
    contact_person: Optional[str] = None
    contact_type: str
    default_payment_terms: Optional[int] = None
    default_vat_rate: Optional[int] = None
    peppol_id: Optional[str] = None
    peppol_enabled: bool
    is_active: bool
    is_system_contact: bool
    tags: Optional[List[str]] = None
    addresses: List[AddressResponse] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ContactPage(BaseModel):
    items: List[ContactResponse]
    total: int
    limit: int
    offset: int


class PeppolUpdate(BaseModel):
    peppol_id: Optional[str] = Field(None, max_length=100)
    peppol_enabled: bool


class ContactSummary(BaseModel):
    total: int
    active: int
    inactive: int
    customers: int
    vendors: int
    peppol_enabled: int


class ContactActivity(BaseModel):
    contact_id: int
    invoice_count: int
    invoice_total: int
    bill_count: int
    bill_total: int
    expense_count: int
    expense_total: int
    last_activity_date: Optional[date] = None


class MergeResult(BaseModel):
    source_contact_id: int
    target_contact_id: int
    invoices_reassigned: int
    bills_reassigned: int
    expenses_reassigned: int
    notes_reassigned: int
    source_archived: bool


class NoteCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=10000)


class NoteResponse(BaseModel):
    id: int
    contact_id: int
    content: str
    author_id: Optional[int] = None
    author_name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
