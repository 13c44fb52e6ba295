from enum import Enum as PyEnum

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from docsign.database import Base


class SignerStatus(PyEnum):
    PENDING = "PENDING"
    SIGNED = "SIGNED"
    REJECTED = "REJECTED"


class Signer(Base):
    __tablename__ = "signers"
    __table_args__ = (
        UniqueConstraint("document_id", "identity", name="uq_signer_document_identity"),
    )

    id          = Column(Integer, primary_key=True)
    document_id = Column(String(36), ForeignKey("documents.id"), nullable=False, index=True)
    identity    = Column(String, nullable=False, index=True)
    order       = Column(Integer, nullable=True)
    status      = Column(Enum(SignerStatus), nullable=False, default=SignerStatus.PENDING)
    acted_at    = Column(DateTime, nullable=True)

    document = relationship("Document", back_populates="signers")
