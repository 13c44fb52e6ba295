import uuid
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import JSON, Column, DateTime, Enum, Integer, String
from sqlalchemy.orm import relationship

from docsign.database import Base


class DocumentStatus(PyEnum):
    UPLOADED = "UPLOADED"
    PREVIEWED = "PREVIEWED"
    ACCEPTED = "ACCEPTED"
    SIGNED = "SIGNED"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"
    PENDING = "PENDING"


# Statuses in which signed_digest must be present
DIGEST_STAMPED_STATUSES = frozenset({DocumentStatus.SIGNED, DocumentStatus.COMPLETED})

IN_PROGRESS_STATUSES = frozenset({
    DocumentStatus.UPLOADED,
    DocumentStatus.PREVIEWED,
    DocumentStatus.ACCEPTED,
    DocumentStatus.SIGNED,
    DocumentStatus.PENDING,
})


class DocumentKind(PyEnum):
    SINGLE = "SINGLE"
    MULTI = "MULTI"


class SigningPolicy(PyEnum):
    PARALLEL = "PARALLEL"
    SEQUENTIAL = "SEQUENTIAL"


def new_document_id() -> str:
    return str(uuid.uuid4())


class Document(Base):
    __tablename__ = 'documents'

    id = Column(String(36), primary_key=True, default=new_document_id)
    name = Column(String, nullable=True)
    file_path = Column(String, nullable=True)
    signed_file_path = Column(String, nullable=True)
    file_size = Column(Integer, nullable=False, default=0)

    original_digest = Column(String(64), nullable=False, index=True)
    signed_digest = Column(String(64), nullable=True, index=True)

    owner_identity = Column(String, nullable=False, index=True)
    kind = Column(Enum(DocumentKind), nullable=False, default=DocumentKind.SINGLE)
    signing_policy = Column(Enum(SigningPolicy), nullable=True)
    status = Column(Enum(DocumentStatus), nullable=False, default=DocumentStatus.UPLOADED)
    required_signer_count = Column(Integer, nullable=False, default=1)

    # "metadata" is reserved on declarative classes
    document_metadata = Column("metadata", JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow)
    signed_date = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    rejection_date = Column(DateTime, nullable=True)

    signers = relationship("Signer", back_populates="document", order_by="Signer.order", cascade="all, delete-orphan")
    signatures = relationship("Signature", back_populates="document", order_by="Signature.order", cascade="all, delete-orphan")

    @property
    def is_multi(self) -> bool:
        return self.kind == DocumentKind.MULTI
