from typing import List, Optional

from docsign.modules.notifications.models.notification import Notification
from docsign.modules.notifications.repositories.notification_repository import NotificationRepository


class NotificationTemplate:
    def __init__(self, recipient_identity: str, title: str, message: str):
        self.recipient_identity = recipient_identity
        self.title = title
        self.message = message


class ChangeDocumentStateNotification(NotificationTemplate):
    READABLE_STATUSES = {
        'UPLOADED': 'Uploaded',
        'PREVIEWED': 'Previewed',
        'ACCEPTED': 'Accepted for signing',
        'SIGNED': 'Signed',
        'COMPLETED': 'Completed',
        'REJECTED': 'Rejected',
        'PENDING': 'Awaiting signatures',
    }

    def __init__(self, recipient_identity: str, document_name: str, new_state: str):
        title = "Document status changed"
        status_human = self.READABLE_STATUSES.get(new_state, new_state)
        message = f"Document '{document_name}' is now: '{status_human}'."
        super().__init__(recipient_identity, title, message)


class SignatureRequestedNotification(NotificationTemplate):
    def __init__(self, recipient_identity: str, document_name: str, owner_identity: str):
        title = "Signature requested"
        message = f"{owner_identity} asked you to sign '{document_name}'."
        super().__init__(recipient_identity, title, message)


class NotificationService:
    """
    Notifications are staged in the caller's transaction, so a status change
    and its notification commit (or roll back) together.
    """

    def __init__(self, repository: NotificationRepository):
        self.notification_repository = repository

    def _stage(self, template: NotificationTemplate, document_id: Optional[str]) -> Notification:
        notif = Notification(
            recipient_identity=template.recipient_identity,
            document_id=document_id,
            title=template.title,
            message=template.message,
        )
        return self.notification_repository.add(notif)

    def create_change_document_state_notification(
        self,
        recipient_identity: str,
        document_name: str,
        new_state: str,
        document_id: Optional[str] = None,
    ) -> Notification:
        template = ChangeDocumentStateNotification(recipient_identity, document_name, new_state)
        return self._stage(template, document_id)

    def create_signature_request_notification(
        self,
        recipient_identity: str,
        document_name: str,
        owner_identity: str,
        document_id: Optional[str] = None,
    ) -> Notification:
        template = SignatureRequestedNotification(recipient_identity, document_name, owner_identity)
        return self._stage(template, document_id)

    def get_notifications(self, recipient_identity: str) -> List[Notification]:
        return self.notification_repository.find_by_recipient(recipient_identity)

    def mark_as_read(self, notification_id: int, recipient_identity: str) -> Optional[Notification]:
        notif = self.notification_repository.db.get(Notification, notification_id)
        if notif is None or notif.recipient_identity != recipient_identity:
            return None
        return self.notification_repository.update(notification_id, {'read': True})
