# peppol/models.py
"""
Peppol access point credentials and the transmission log.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text, Index

from database.connection import Base
from utils.timezone import get_utc_now


class PeppolSettings(Base):
    """Recommand credentials of a tenant (one row per tenant)"""

    __tablename__ = "peppol_settings"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), unique=True, nullable=False)
    company_id = Column(String(100), nullable=False)
    api_key = Column(String(255), nullable=False)
    api_secret = Column(String(255), nullable=False)
    peppol_id = Column(String(100), nullable=False)
    is_enabled = Column(Boolean, nullable=False, default=False)
    test_mode = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=get_utc_now)
    updated_at = Column(DateTime(timezone=True), default=get_utc_now, onupdate=get_utc_now)

    def __repr__(self):
        return f"<PeppolSettings(tenant_id={self.tenant_id}, peppol_id='{self.peppol_id}')>"


class PeppolTransmission(Base):
    """One document sent or received over Peppol"""

    __tablename__ = "peppol_transmissions"
    __table_args__ = (
        Index("ix_peppol_transmissions_tenant_direction", "tenant_id", "direction"),
        Index("ix_peppol_transmissions_external", "tenant_id", "external_document_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    direction = Column(String(10), nullable=False)  # outbound | inbound
    document_type = Column(String(20), nullable=False, default="invoice")
    status = Column(String(20), nullable=False, default="pending")

    invoice_id = Column(Integer, ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True, index=True)
    bill_id = Column(Integer, ForeignKey("bills.id", ondelete="SET NULL"), nullable=True)

    external_document_id = Column(String(255), nullable=True)
    recipient_peppol_id = Column(String(100), nullable=True)
    sender_peppol_id = Column(String(100), nullable=True)
    error_message = Column(Text, nullable=True)
    raw_request = Column(Text, nullable=True)
    raw_response = Column(Text, nullable=True)

    transmitted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=get_utc_now)
    updated_at = Column(DateTime(timezone=True), default=get_utc_now, onupdate=get_utc_now)

    def __repr__(self):
        return f"<PeppolTransmission(id={self.id}, {self.direction}, status='{self.status}')>"
