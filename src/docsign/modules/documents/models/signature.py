from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from docsign.database import Base


class Signature(Base):
    """Immutable once written; one row per (document, signer)."""

    __tablename__ = "signatures"
    __table_args__ = (
        UniqueConstraint("document_id", "signer_identity", name="uq_signature_document_signer"),
    )

    id              = Column(Integer, primary_key=True)
    document_id     = Column(String(36), ForeignKey("documents.id"), nullable=False, index=True)
    signer_identity = Column(String, nullable=False)
    digest_signed   = Column(String(64), nullable=False)
    signature_value = Column(Text, nullable=False)
    # Key registered for the signer when it signed; later rotations do not affect it
    public_key_pem  = Column(Text, nullable=False)
    order           = Column(Integer, nullable=False)
    signed_at       = Column(DateTime, default=datetime.utcnow, nullable=False)

    document = relationship("Document", back_populates="signatures")
