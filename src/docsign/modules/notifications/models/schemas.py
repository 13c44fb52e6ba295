from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class NotificationResponse(BaseModel):
    id: int
    title: str
    message: str
    created_at: datetime
    updated_at: datetime
    recipient_identity: str
    document_id: Optional[str] = None
    read: bool = False

    model_config = {"from_attributes": True}
