from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from docsign.database import get_db
from docsign.modules.auth.controllers.auth_controller import get_current_user
from docsign.modules.documents.models.user import User
from docsign.modules.notifications.models.schemas import NotificationResponse
from docsign.modules.notifications.repositories.notification_repository import NotificationRepository
from docsign.modules.notifications.services.notification_service import NotificationService

router = APIRouter()


def get_notification_service(db: Session = Depends(get_db)) -> NotificationService:
    repo = NotificationRepository(db)
    return NotificationService(repo)


@router.get(
    "/me",
    response_model=List[NotificationResponse],
    summary="List the current user's notifications"
)
def list_notifications(
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service)
):
    return service.get_notifications(current_user.identity)


@router.patch(
    "/{notification_id}/read",
    response_model=NotificationResponse,
    summary="Mark a notification as read"
)
def mark_notification_as_read(
    notification_id: int,
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service)
):
    notif = service.mark_as_read(notification_id, current_user.identity)
    if not notif:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification not found"
        )
    return notif
