# documents/models.py
"""
Uploaded source documents and the log of their AI processing runs.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, JSON, Float, Index
from sqlalchemy.orm import relationship

from database.connection import Base
from utils.timezone import get_utc_now


class Document(Base):
    """File uploaded by a tenant (invoice, bill, receipt...)"""

    __tablename__ = "documents"
    __table_args__ = (
        Index("ix_documents_tenant_status", "tenant_id", "status"),
        Index("ix_documents_tenant_sha256", "tenant_id", "sha256"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    filename = Column(String(255), nullable=False)
    content_type = Column(String(100), nullable=True)
    size_bytes = Column(Integer, nullable=False, default=0)
    storage_path = Column(String(500), nullable=False)
    sha256 = Column(String(64), nullable=False)

    status = Column(String(20), nullable=False, default="uploaded")
    document_type = Column(String(20), nullable=True)
    extracted_text = Column(Text, nullable=True)

    # Entity created on confirmation
    confirmed_entity_type = Column(String(20), nullable=True)  # bill | expense | invoice | credit_note
    confirmed_entity_id = Column(Integer, nullable=True)

    uploaded_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=get_utc_now)
    updated_at = Column(DateTime(timezone=True), default=get_utc_now, onupdate=get_utc_now)

    runs = relationship(
        "DocumentProcessingRun", back_populates="document", cascade="all, delete-orphan",
        order_by="DocumentProcessingRun.id"
    )

    def __repr__(self):
        return f"<Document(id={self.id}, filename='{self.filename}', status='{self.status}')>"


class DocumentProcessingRun(Base):
    """One pass of the AI pipeline over a document"""

    __tablename__ = "document_processing_runs"

    id = Column(Integer, primary_key=True, index=True)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="processing")

    document_type = Column(String(20), nullable=True)
    classification_confidence = Column(Float, nullable=True)
    confidence = Column(Float, nullable=True)
    outcome = Column(String(20), nullable=True)  # AUTO_APPROVE | NEEDS_REVIEW | REJECT
    reasoning = Column(Text, nullable=True)
    issues = Column(JSON, nullable=True)
    extracted_data = Column(JSON, nullable=True)
    retry_attempts = Column(Integer, nullable=False, default=0)
    rejection_stage = Column(String(20), nullable=True)
    error_message = Column(Text, nullable=True)

    started_at = Column(DateTime(timezone=True), default=get_utc_now)
    finished_at = Column(DateTime(timezone=True), nullable=True)

    document = relationship("Document", back_populates="runs")

    def __repr__(self):
        return f"<DocumentProcessingRun(id={self.id}, document_id={self.document_id}, outcome='{self.outcome}')>"
