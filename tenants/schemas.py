"""
Pydantic schemas for the tenant endpoints
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime


class TenantResponse(BaseModel):
    id: int
    name: str
    legal_name: Optional[str] = None
    email: Optional[str] = None
    plan: str
    status: str
    country: str
    language: str
    vat_number: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class TenantSettingsBase(BaseModel):
    invoice_prefix: str = Field("INV", min_length=1, max_length=20)
    invoice_yearly_reset: bool = True
    invoice_padding: int = Field(4, ge=1, le=10)
    invoice_include_year: bool = True
    invoice_timezone: str = Field("Europe/Brussels", max_length=64)
    payment_terms_days: int = Field(30, ge=0, le=365)
    default_vat_rate: int = Field(2100, ge=0, le=10000)

    company_name: Optional[str] = Field(None, max_length=255)
    company_vat_number: Optional[str] = Field(None, max_length=20)
    company_iban: Optional[str] = Field(None, max_length=42)
    company_bic: Optional[str] = Field(None, max_length=11)
    company_street: Optional[str] = Field(None, max_length=255)
    company_city: Optional[str] = Field(None, max_length=100)
    company_postal_code: Optional[str] = Field(None, max_length=20)
    company_country: Optional[str] = Field("BE", max_length=2)

    enable_peppol: bool = False


class TenantSettingsUpdate(TenantSettingsBase):
    pass


class TenantSettingsResponse(TenantSettingsBase):
    tenant_id: int
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
