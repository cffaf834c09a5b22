# tenants/models.py
"""
Per-tenant company profile, invoicing preferences and numbering sequences.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint

from database.connection import Base
from utils.timezone import get_utc_now


class TenantSettings(Base):
    """Company identity and invoice defaults (one row per tenant)"""

    __tablename__ = "tenant_settings"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), unique=True, nullable=False)

    # Invoice numbering
    invoice_prefix = Column(String(20), nullable=False, default="INV")
    invoice_yearly_reset = Column(Boolean, nullable=False, default=True)
    invoice_padding = Column(Integer, nullable=False, default=4)
    invoice_include_year = Column(Boolean, nullable=False, default=True)
    invoice_timezone = Column(String(64), nullable=False, default="Europe/Brussels")

    # Defaults
    payment_terms_days = Column(Integer, nullable=False, default=30)
    default_vat_rate = Column(Integer, nullable=False, default=2100)  # basis points

    # Company identity
    company_name = Column(String(255), nullable=True)
    company_vat_number = Column(String(20), nullable=True)
    company_iban = Column(String(34), nullable=True)
    company_bic = Column(String(11), nullable=True)
    company_street = Column(String(255), nullable=True)
    company_city = Column(String(100), nullable=True)
    company_postal_code = Column(String(20), nullable=True)
    company_country = Column(String(2), nullable=True, default="BE")

    enable_peppol = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), default=get_utc_now)
    updated_at = Column(DateTime(timezone=True), default=get_utc_now, onupdate=get_utc_now)

    def __repr__(self):
        return f"<TenantSettings(tenant_id={self.tenant_id}, prefix='{self.invoice_prefix}')>"


class InvoiceNumberSequence(Base):
    """Last issued invoice number per tenant and year (year 0 = no yearly reset)"""

    __tablename__ = "invoice_number_sequences"
    __table_args__ = (
        UniqueConstraint("tenant_id", "year", name="uq_invoice_sequence_tenant_year"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    year = Column(Integer, nullable=False)
    last_number = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), default=get_utc_now, onupdate=get_utc_now)
