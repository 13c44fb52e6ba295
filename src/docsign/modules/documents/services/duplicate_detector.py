"""
Duplicate document detection.

Classifies an incoming digest against the owner's existing documents:

    no match / only rejected matches  -> ALLOW
    any completed match               -> BLOCK   (never re-sign finalized content)
    any in-progress match             -> CONFIRM (prior attempt may be abandoned)

The detector only classifies; upload/initiate act on the result.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sqlalchemy.orm import Session

from docsign.modules.documents.models.document import DocumentStatus, IN_PROGRESS_STATUSES
from docsign.modules.documents.repositories.document_repository import DocumentRepository


class DuplicateAction(str, Enum):
    ALLOW = "allow"
    BLOCK = "block"
    CONFIRM = "confirm"


@dataclass(frozen=True)
class DuplicateCheckResult:
    action: DuplicateAction
    message: str
    existing_document_id: Optional[str] = None
    existing_status: Optional[DocumentStatus] = None

    @property
    def can_proceed(self) -> bool:
        return self.action != DuplicateAction.BLOCK


class DuplicateDetector:
    def __init__(self, db_session: Session):
        self.repository = DocumentRepository(db_session)

    def check(self, digest: str, owner_identity: str) -> DuplicateCheckResult:
        matches = self.repository.find_by_digest(digest, owner_identity=owner_identity)

        completed = [d for d in matches if d.status == DocumentStatus.COMPLETED]
        if completed:
            existing = completed[0]
            return DuplicateCheckResult(
                action=DuplicateAction.BLOCK,
                message="This document has already been signed and completed. Please upload a new document instead.",
                existing_document_id=existing.id,
                existing_status=existing.status,
            )

        in_progress = [d for d in matches if d.status in IN_PROGRESS_STATUSES]
        if in_progress:
            existing = in_progress[0]
            return DuplicateCheckResult(
                action=DuplicateAction.CONFIRM,
                message=(
                    f"An identical document is already in progress ({existing.status.value}). "
                    "Do you want to start a new signing workflow anyway?"
                ),
                existing_document_id=existing.id,
                existing_status=existing.status,
            )

        return DuplicateCheckResult(
            action=DuplicateAction.ALLOW,
            message="Document is unique. Ready to upload.",
        )
