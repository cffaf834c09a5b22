# contacts/models.py
"""
Customers and vendors of a tenant, with addresses and free-form notes.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text, JSON, Index
from sqlalchemy.orm import relationship

from database.connection import Base
from utils.timezone import get_utc_now


class Contact(Base):
    """Customer, vendor, or both"""

    __tablename__ = "contacts"
    __table_args__ = (
        Index("ix_contacts_tenant_name", "tenant_id", "name"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)

    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    vat_number = Column(String(20), nullable=True, index=True)
    company_number = Column(String(20), nullable=True)
    contact_person = Column(String(255), nullable=True)
    contact_type = Column(String(20), nullable=False, default="Customer")  # Customer | Vendor | Both

    default_payment_terms = Column(Integer, nullable=True)
    default_vat_rate = Column(Integer, nullable=True)  # basis points

    peppol_id = Column(String(100), nullable=True)
    peppol_enabled = Column(Boolean, nullable=False, default=False)

    is_active = Column(Boolean, nullable=False, default=True)
    is_system_contact = Column(Boolean, nullable=False, default=False)
    tags = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=get_utc_now)
    updated_at = Column(DateTime(timezone=True), default=get_utc_now, onupdate=get_utc_now)

    addresses = relationship(
        "ContactAddress", back_populates="contact", cascade="all, delete-orphan",
        order_by="ContactAddress.id"
    )
    notes = relationship("ContactNote", back_populates="contact", cascade="all, delete-orphan")

    @property
    def default_address(self):
        """Default address, else the first one, else None."""
        for address in self.addresses:
            if address.is_default:
                return address
        return self.addresses[0] if self.addresses else None

    def __repr__(self):
        return f"<Contact(id={self.id}, name='{self.name}', type='{self.contact_type}')>"


class ContactAddress(Base):
    __tablename__ = "contact_addresses"

    id = Column(Integer, primary_key=True, index=True)
    contact_id = Column(Integer, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False, index=True)
    street_line1 = Column(String(255), nullable=True)
    street_line2 = Column(String(255), nullable=True)
    city = Column(String(100), nullable=True)
    postal_code = Column(String(20), nullable=True)
    country = Column(String(2), nullable=True)
    is_default = Column(Boolean, nullable=False, default=False)

    contact = relationship("Contact", back_populates="addresses")


class ContactNote(Base):
    __tablename__ = "contact_notes"

    id = Column(Integer, primary_key=True, index=True)
    contact_id = Column(Integer, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    author_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    author_name = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=get_utc_now)
    updated_at = Column(DateTime(timezone=True), default=get_utc_now, onupdate=get_utc_now)

    contact = relationship("Contact", back_populates="notes")
