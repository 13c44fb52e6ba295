from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from docsign.database import Base


class Notification(Base):
    __tablename__ = 'notifications'

    id = Column(Integer, primary_key=True)
    title = Column(String(255), nullable=False)
    message = Column(String(1024), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    recipient_identity = Column(String, nullable=False, index=True)
    document_id = Column(String(36), nullable=True)
    read = Column(Boolean, default=False)
