from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from docsign.database import Base


class User(Base):
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    identity = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, nullable=False)
    password_hash = Column(String, nullable=False)

    # Registered ECDSA public key (PEM); signatures by this identity verify against it
    public_key_pem = Column(Text, nullable=True)

    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
