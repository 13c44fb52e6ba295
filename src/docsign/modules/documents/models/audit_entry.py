from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import JSON, Column, DateTime, Enum, Integer, String

from docsign.database import Base


class AuditAction(str, PyEnum):
    DOCUMENT_UPLOADED = "DOCUMENT_UPLOADED"
    DOCUMENT_PREVIEWED = "DOCUMENT_PREVIEWED"
    DOCUMENT_ACCEPTED = "DOCUMENT_ACCEPTED"
    DOCUMENT_REJECTED = "DOCUMENT_REJECTED"
    DOCUMENT_SIGNED = "DOCUMENT_SIGNED"
    DOCUMENT_COMPLETED = "DOCUMENT_COMPLETED"
    DOCUMENT_VERIFIED = "DOCUMENT_VERIFIED"
    MULTI_SIGNATURE_INITIATED = "MULTI_SIGNATURE_INITIATED"
    SIGNER_ADDED = "SIGNER_ADDED"
    SIGNER_SIGNED = "SIGNER_SIGNED"
    SIGNATURE_REJECTED = "SIGNATURE_REJECTED"
    STATUS_RECONCILED = "STATUS_RECONCILED"
    FINAL_ARTIFACT_RECORDED = "FINAL_ARTIFACT_RECORDED"
    DOCUMENT_DELETED = "DOCUMENT_DELETED"


class AuditEntry(Base):
    """Append-only. document_id is not a foreign key: entries outlive document cleanup."""

    __tablename__ = "audit_entries"

    id             = Column(Integer, primary_key=True)
    document_id    = Column(String(36), nullable=True, index=True)
    actor_identity = Column(String, nullable=False)
    action         = Column(Enum(AuditAction), nullable=False, index=True)
    timestamp      = Column(DateTime, default=datetime.utcnow, nullable=False)
    details        = Column(JSON, nullable=False, default=dict)
