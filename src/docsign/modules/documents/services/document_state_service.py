import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Iterator, List, Optional

from sqlalchemy.orm import Session

from docsign.config import Settings, get_settings
from docsign.modules.documents.errors import (
    AlreadyActed,
    DocumentNotFound,
    DuplicateConfirmationRequired,
    DuplicateDocument,
    InvalidFile,
    InvalidTransition,
    Unauthorized,
    ValidationError,
)
from docsign.modules.documents.models.audit_entry import AuditAction
from docsign.modules.documents.models.document import (
    Document,
    DocumentKind,
    DocumentStatus,
    new_document_id,
)
from docsign.modules.documents.models.signature import Signature
from docsign.modules.documents.models.signer import Signer, SignerStatus
from docsign.modules.documents.repositories.document_repository import DocumentRepository
from docsign.modules.documents.repositories.key_directory import UserKeyDirectory
from docsign.modules.documents.services.audit_service import AuditLogger
from docsign.modules.documents.services.crypto import (
    SigningPrimitive,
    compute_digest,
    default_signing_primitive,
    normalize_public_key,
)
from docsign.modules.documents.services.duplicate_detector import (
    DuplicateAction,
    DuplicateCheckResult,
    DuplicateDetector,
)
from docsign.modules.documents.services.locking import DocumentLockRegistry, document_locks
from docsign.modules.notifications.repositories.notification_repository import NotificationRepository
from docsign.modules.notifications.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

# Called with (document, signature_value); returns the signature-embedded artifact bytes
SignatureEmbedder = Callable[[Document, str], Optional[bytes]]


class DecisionAction(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"


# Single-signer lifecycle. ACCEPTED -> REJECTED is not allowed: once
# accepted, the only way forward is to sign.
SINGLE_SIGNER_TRANSITIONS = {
    DocumentStatus.UPLOADED: {DocumentStatus.PREVIEWED, DocumentStatus.REJECTED},
    DocumentStatus.PREVIEWED: {DocumentStatus.ACCEPTED, DocumentStatus.REJECTED},
    DocumentStatus.ACCEPTED: {DocumentStatus.SIGNED},
    DocumentStatus.SIGNED: {DocumentStatus.COMPLETED},
    DocumentStatus.COMPLETED: set(),
    DocumentStatus.REJECTED: set(),
}


@dataclass(frozen=True)
class SigningResult:
    document_id: str
    status: DocumentStatus
    signed_digest: str
    signature_value: str


class DocumentStateService:
    """
    The single authoritative lifecycle for single-signer documents.

    Every mutating operation runs as one atomic read-modify-write: it takes the
    document's lock, re-reads the row FOR UPDATE, validates the transition,
    calls the signing primitive if needed, and only then writes and commits.
    A failure at any step rolls back everything.
    """

    def __init__(
        self,
        session: Session,
        primitive: Optional[SigningPrimitive] = None,
        key_directory=None,
        locks: Optional[DocumentLockRegistry] = None,
        settings: Optional[Settings] = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.repository = DocumentRepository(session)
        self.primitive = primitive or default_signing_primitive()
        self.keys = key_directory or UserKeyDirectory(session)
        self.locks = locks or document_locks
        self.audit = AuditLogger(session)
        self.detector = DuplicateDetector(session)
        self.notifications = NotificationService(NotificationRepository(session))

    # ------------------------------------------------------------------ helpers

    @staticmethod
    def can_transition(document: Document, new_status: DocumentStatus) -> bool:
        if document.kind != DocumentKind.SINGLE:
            return False
        return new_status in SINGLE_SIGNER_TRANSITIONS.get(document.status, set())

    @staticmethod
    def get_allowed_transitions(document: Document) -> List[DocumentStatus]:
        return [s for s in DocumentStatus if DocumentStateService.can_transition(document, s)]

    @contextmanager
    def _locked(self, document_id: str) -> Iterator[Document]:
        """Hold the document lock, yield the row read FOR UPDATE, commit on success."""
        with self.locks.hold(document_id):
            try:
                document = self.repository.get_for_update(document_id)
                if document is None:
                    raise DocumentNotFound(document_id)
                # Refresh signer rows too; the set is fixed at creation, only statuses move
                self.repository.signers_for_update(document_id)
                yield document
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise

    def _check_duplicates(self, digest: str, owner_identity: str, force: bool) -> DuplicateCheckResult:
        result = self.detector.check(digest, owner_identity)
        existing_status = result.existing_status.value if result.existing_status else None

        if not result.can_proceed:
            logger.warning(
                "Duplicate upload blocked",
                extra={"owner": owner_identity, "existing_document_id": result.existing_document_id},
            )
            raise DuplicateDocument(
                result.message,
                action=result.action.value,
                existing_document_id=result.existing_document_id,
                existing_status=existing_status,
            )
        if result.action == DuplicateAction.CONFIRM and not force:
            raise DuplicateConfirmationRequired(
                result.message,
                existing_document_id=result.existing_document_id,
                existing_status=existing_status,
            )
        return result

    @staticmethod
    def _validate_metadata(metadata: Optional[dict]) -> dict:
        if metadata is None:
            return {}
        if not isinstance(metadata, dict):
            raise ValidationError("Metadata must be an object of string fields")
        return {str(k): v if isinstance(v, str) else str(v) for k, v in metadata.items()}

    @staticmethod
    def _signer_for(document: Document, identity: Optional[str]) -> Optional[Signer]:
        for signer in document.signers:
            if signer.identity == identity:
                return signer
        return None

    def _require_signer(self, document: Document, identity: Optional[str]) -> Signer:
        signer = self._signer_for(document, identity)
        if signer is None:
            raise Unauthorized(
                f"'{identity}' is not a signer of document '{document.id}'",
                current_status=document.status,
            )
        return signer

    def _require_participant(self, document: Document, identity: Optional[str]) -> None:
        if identity != document.owner_identity and self._signer_for(document, identity) is None:
            raise Unauthorized(
                f"'{identity}' has no access to document '{document.id}'",
                current_status=document.status,
            )

    @staticmethod
    def _require_kind(document: Document, kind: DocumentKind) -> None:
        if document.kind != kind:
            raise InvalidTransition(
                f"Operation not available for {document.kind.value.lower()}-signer documents",
                current_status=document.status,
            )

    def _authorize_credential(self, document: Document, identity: str, credential: str) -> str:
        """
        The presented credential must match the public key registered for the
        signer. Returns that key, normalized.
        """
        registered = self.keys.public_key_for(identity)
        if not registered:
            raise Unauthorized(
                f"No public key registered for signer '{identity}'",
                current_status=document.status,
            )
        presented = self.primitive.public_key_for(credential)
        registered = normalize_public_key(registered)
        if registered is None or normalize_public_key(presented) != registered:
            raise Unauthorized(
                f"Credential does not belong to signer '{identity}'",
                current_status=document.status,
            )
        return registered

    def _notify_owner(self, document: Document) -> None:
        self.notifications.create_change_document_state_notification(
            recipient_identity=document.owner_identity,
            document_name=document.name or document.id,
            new_state=document.status.value,
            document_id=document.id,
        )

    # --------------------------------------------------------------- operations

    def get_document(self, document_id: str) -> Document:
        document = self.repository.get(document_id)
        if document is None:
            raise DocumentNotFound(document_id)
        return document

    def upload(
        self,
        file_bytes: bytes,
        owner_identity: str,
        metadata: Optional[dict] = None,
        *,
        signer_identity: Optional[str] = None,
        force: bool = False,
        name: Optional[str] = None,
        file_path: Optional[str] = None,
        document_id: Optional[str] = None,
    ) -> Document:
        """Create a single-signer document in UPLOADED status."""
        if not file_bytes:
            raise InvalidFile("The file is empty")
        if not owner_identity:
            raise ValidationError("Owner identity is required")

        digest = compute_digest(file_bytes)
        duplicate = self._check_duplicates(digest, owner_identity, force)

        document = Document(
            id=document_id or new_document_id(),
            name=name,
            file_path=file_path,
            file_size=len(file_bytes),
            original_digest=digest,
            owner_identity=owner_identity,
            kind=DocumentKind.SINGLE,
            status=DocumentStatus.UPLOADED,
            required_signer_count=1,
            document_metadata=self._validate_metadata(metadata),
            created_at=datetime.utcnow(),
        )
        document.signers.append(
            Signer(identity=signer_identity or owner_identity, order=1, status=SignerStatus.PENDING)
        )
        try:
            self.repository.add(document)
            self.session.flush()
            self.audit.record(
                AuditAction.DOCUMENT_UPLOADED,
                document.id,
                owner_identity,
                {
                    "name": name,
                    "file_size": len(file_bytes),
                    "original_digest": digest,
                    "signer_identity": signer_identity or owner_identity,
                    "duplicate_check": duplicate.action.value,
                    "force_upload": force,
                },
            )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info("Document %s uploaded by %s", document.id, owner_identity)
        return document

    def preview(self, document_id: str, actor_identity: str) -> DocumentStatus:
        """UPLOADED -> PREVIEWED; previewing again is a no-op."""
        with self._locked(document_id) as document:
            self._require_kind(document, DocumentKind.SINGLE)
            self._require_participant(document, actor_identity)
            if document.status == DocumentStatus.PREVIEWED:
                return document.status
            if document.status != DocumentStatus.UPLOADED:
                raise InvalidTransition(
                    f"Cannot preview a document in status {document.status.value}",
                    current_status=document.status,
                )
            document.status = DocumentStatus.PREVIEWED
            self.audit.record(AuditAction.DOCUMENT_PREVIEWED, document.id, actor_identity)
            new_status = document.status
        logger.info("Document %s previewed by %s", document_id, actor_identity)
        return new_status

    def decide(self, document_id: str, actor_identity: str, action) -> DocumentStatus:
        """
        accept: PREVIEWED -> ACCEPTED
        reject: UPLOADED|PREVIEWED -> REJECTED
        """
        try:
            decision = DecisionAction(str(getattr(action, "value", action)).lower())
        except ValueError:
            raise ValidationError(f"Unknown decision '{action}'; expected 'accept' or 'reject'") from None

        with self._locked(document_id) as document:
            self._require_kind(document, DocumentKind.SINGLE)
            signer = self._require_signer(document, actor_identity)
            previous = document.status

            if decision == DecisionAction.ACCEPT:
                if document.status != DocumentStatus.PREVIEWED:
                    raise InvalidTransition(
                        f"Cannot accept a document in status {document.status.value}; it must be previewed first",
                        current_status=document.status,
                    )
                document.status = DocumentStatus.ACCEPTED
                self.audit.record(AuditAction.DOCUMENT_ACCEPTED, document.id, actor_identity)
            else:
                if not self.can_transition(document, DocumentStatus.REJECTED):
                    raise InvalidTransition(
                        f"Cannot reject a document in status {document.status.value}",
                        current_status=document.status,
                    )
                now = datetime.utcnow()
                document.status = DocumentStatus.REJECTED
                document.rejection_date = now
                signer.status = SignerStatus.REJECTED
                signer.acted_at = now
                self.audit.record(AuditAction.DOCUMENT_REJECTED, document.id, actor_identity)
                self._notify_owner(document)
            new_status = document.status

        logger.info(
            "Document %s changed from %s to %s", document_id, previous.value, new_status.value
        )
        return new_status

    def reject(self, document_id: str, actor_identity: str) -> DocumentStatus:
        return self.decide(document_id, actor_identity, DecisionAction.REJECT)

    def sign(
        self,
        document_id: str,
        signer_identity: str,
        credential: str,
        embedder: Optional[SignatureEmbedder] = None,
    ) -> SigningResult:
        """
        ACCEPTED -> SIGNED.

        The primitive signs original_digest. When an embedder is given, the
        digest of the bytes it returns becomes signed_digest; otherwise the
        artifact is the original and signed_digest equals original_digest.
        """
        with self._locked(document_id) as document:
            self._require_kind(document, DocumentKind.SINGLE)
            signer = self._require_signer(document, signer_identity)
            if document.status != DocumentStatus.ACCEPTED:
                raise InvalidTransition(
                    f"Cannot sign a document in status {document.status.value}",
                    current_status=document.status,
                )
            if signer.status != SignerStatus.PENDING:
                raise AlreadyActed(signer_identity, current_status=document.status)

            # 1) Cryptographic work first; nothing is written until it succeeds
            public_key = self._authorize_credential(document, signer_identity, credential)
            signature_value = self.primitive.sign(document.original_digest, credential)

            signed_digest = document.original_digest
            if embedder is not None:
                embedded = embedder(document, signature_value)
                if embedded:
                    signed_digest = compute_digest(embedded)

            # 2) Apply
            now = datetime.utcnow()
            self.session.add(Signature(
                document_id=document.id,
                signer_identity=signer_identity,
                digest_signed=document.original_digest,
                signature_value=signature_value,
                public_key_pem=public_key,
                order=1,
                signed_at=now,
            ))
            signer.status = SignerStatus.SIGNED
            signer.acted_at = now
            document.signed_digest = signed_digest
            document.signed_date = now
            document.status = DocumentStatus.SIGNED
            self.audit.record(
                AuditAction.DOCUMENT_SIGNED,
                document.id,
                signer_identity,
                {"digest_signed": document.original_digest, "signed_digest": signed_digest},
            )
            result = SigningResult(
                document_id=document.id,
                status=document.status,
                signed_digest=signed_digest,
                signature_value=signature_value,
            )

        logger.info("Document %s signed by %s", document_id, signer_identity)
        return result

    def finalize(self, document_id: str, actor_identity: Optional[str] = None) -> DocumentStatus:
        """SIGNED -> COMPLETED. Finalizing a COMPLETED document is a no-op."""
        with self._locked(document_id) as document:
            if document.status == DocumentStatus.COMPLETED:
                return document.status
            if document.kind != DocumentKind.SINGLE or document.status != DocumentStatus.SIGNED:
                raise InvalidTransition(
                    f"Cannot complete a document in status {document.status.value}",
                    current_status=document.status,
                )
            document.status = DocumentStatus.COMPLETED
            document.completed_at = datetime.utcnow()
            self.audit.record(AuditAction.DOCUMENT_COMPLETED, document.id, actor_identity or "system")
            self._notify_owner(document)
            new_status = document.status

        logger.info("Document %s completed", document_id)
        return new_status
