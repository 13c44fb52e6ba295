import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional

from docsign.modules.documents.errors import (
    AlreadyActed,
    InvalidFile,
    InvalidTransition,
    NoSigners,
    OutOfOrder,
    Unauthorized,
    ValidationError,
)
from docsign.modules.documents.models.audit_entry import AuditAction
from docsign.modules.documents.models.document import (
    Document,
    DocumentKind,
    DocumentStatus,
    SigningPolicy,
    new_document_id,
)
from docsign.modules.documents.models.signature import Signature
from docsign.modules.documents.models.signer import Signer, SignerStatus
from docsign.modules.documents.services.crypto import compute_digest
from docsign.modules.documents.services.document_state_service import DocumentStateService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MemberSigningResult:
    document_id: str
    status: DocumentStatus
    signed_count: int
    required_count: int
    signature_value: str

    @property
    def completed(self) -> bool:
        return self.status == DocumentStatus.COMPLETED


@dataclass(frozen=True)
class SignerView:
    identity: str
    order: Optional[int]
    status: SignerStatus
    acted_at: Optional[datetime]


@dataclass(frozen=True)
class MultiSignatureStatus:
    document_id: str
    status: DocumentStatus
    signing_policy: Optional[SigningPolicy]
    signed_count: int
    required_count: int
    next_signer: Optional[str]
    signers: List[SignerView] = field(default_factory=list)

    @property
    def progress(self) -> float:
        if not self.required_count:
            return 0.0
        return round(self.signed_count / self.required_count * 100, 1)


def normalize_signer_identities(signer_identities: Iterable[str]) -> List[str]:
    """Strip blanks and drop repeats, keeping first-seen order."""
    seen = set()
    result = []
    for identity in signer_identities or []:
        identity = (identity or "").strip()
        if identity and identity not in seen:
            seen.add(identity)
            result.append(identity)
    return result


class MultiSignatureService(DocumentStateService):
    """
    Coordinates documents that need N signers.

    A request is COMPLETED only when every signer has signed; one rejection
    voids the whole request. Under the SEQUENTIAL policy signers must act in
    their recorded order; under PARALLEL they may sign in any order.

    sign_as_member performs sign + recount + completion in one locked
    transaction, so concurrent last signers cannot both complete the request.
    """

    def _resolve_policy(self, sequential: Optional[bool]) -> SigningPolicy:
        if sequential is None:
            try:
                return SigningPolicy(self.settings.signing_policy.upper())
            except ValueError:
                raise ValidationError(
                    f"Unknown signing policy '{self.settings.signing_policy}'"
                ) from None
        return SigningPolicy.SEQUENTIAL if sequential else SigningPolicy.PARALLEL

    @staticmethod
    def _next_pending(signers: List[Signer]) -> Optional[Signer]:
        pending = [s for s in signers if s.status == SignerStatus.PENDING]
        if not pending:
            return None
        return min(pending, key=lambda s: (s.order is None, s.order or 0, s.id or 0))

    def _complete(self, document: Document, actor_identity: str, final_digest: Optional[str]) -> None:
        now = datetime.utcnow()
        document.status = DocumentStatus.COMPLETED
        document.completed_at = now
        document.signed_date = now
        document.signed_digest = final_digest or document.original_digest
        self.audit.record(
            AuditAction.DOCUMENT_COMPLETED,
            document.id,
            actor_identity,
            {"signed_digest": document.signed_digest},
        )
        self._notify_owner(document)

    # --------------------------------------------------------------- operations

    def initiate(
        self,
        file_bytes: bytes,
        owner_identity: str,
        signer_identities: Iterable[str],
        metadata: Optional[dict] = None,
        *,
        sequential: Optional[bool] = None,
        force: bool = False,
        name: Optional[str] = None,
        file_path: Optional[str] = None,
        document_id: Optional[str] = None,
    ) -> Document:
        """Create a PENDING multi-signer request with one Signer row per identity."""
        signers = normalize_signer_identities(signer_identities)
        if not signers:
            raise NoSigners()
        if not file_bytes:
            raise InvalidFile("The file is empty")
        if not owner_identity:
            raise ValidationError("Owner identity is required")

        policy = self._resolve_policy(sequential)
        digest = compute_digest(file_bytes)
        duplicate = self._check_duplicates(digest, owner_identity, force)

        document = Document(
            id=document_id or new_document_id(),
            name=name,
            file_path=file_path,
            file_size=len(file_bytes),
            original_digest=digest,
            owner_identity=owner_identity,
            kind=DocumentKind.MULTI,
            signing_policy=policy,
            status=DocumentStatus.PENDING,
            required_signer_count=len(signers),
            document_metadata=self._validate_metadata(metadata),
            created_at=datetime.utcnow(),
        )
        for position, identity in enumerate(signers, start=1):
            document.signers.append(Signer(identity=identity, order=position, status=SignerStatus.PENDING))

        try:
            self.repository.add(document)
            self.session.flush()
            self.audit.record(
                AuditAction.MULTI_SIGNATURE_INITIATED,
                document.id,
                owner_identity,
                {
                    "name": name,
                    "original_digest": digest,
                    "required_signers": len(signers),
                    "signing_policy": policy.value,
                    "duplicate_check": duplicate.action.value,
                    "force_upload": force,
                },
            )
            for signer in document.signers:
                self.audit.record(
                    AuditAction.SIGNER_ADDED,
                    document.id,
                    owner_identity,
                    {"signer_identity": signer.identity, "order": signer.order},
                )
                self.notifications.create_signature_request_notification(
                    recipient_identity=signer.identity,
                    document_name=name or document.id,
                    owner_identity=owner_identity,
                    document_id=document.id,
                )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            "Multi-signature request %s initiated by %s for %d signers (%s)",
            document.id, owner_identity, len(signers), policy.value,
        )
        return document

    def sign_as_member(
        self,
        document_id: str,
        signer_identity: str,
        credential: str,
        final_digest: Optional[str] = None,
    ) -> MemberSigningResult:
        with self._locked(document_id) as document:
            signers = list(document.signers)

            # 1) Membership
            signer = self._require_signer(document, signer_identity)
            # 2) Replays: signing twice, or signing after rejecting
            if signer.status != SignerStatus.PENDING:
                raise AlreadyActed(signer_identity, current_status=document.status)
            # 3) Request must still be open
            self._require_kind(document, DocumentKind.MULTI)
            if document.status != DocumentStatus.PENDING:
                raise InvalidTransition(
                    f"Multi-signature request is no longer pending ({document.status.value})",
                    current_status=document.status,
                )
            # 4) Ordering
            if document.signing_policy == SigningPolicy.SEQUENTIAL and signer.order is not None:
                for other in signers:
                    if (
                        other.status == SignerStatus.PENDING
                        and other.order is not None
                        and other.order < signer.order
                    ):
                        raise OutOfOrder(signer_identity, other.identity, current_status=document.status)
            if final_digest is not None and signer_identity != document.owner_identity:
                raise Unauthorized(
                    "Only the owner can stamp the final document digest",
                    current_status=document.status,
                )

            # 5) Sign before touching any row
            public_key = self._authorize_credential(document, signer_identity, credential)
            signature_value = self.primitive.sign(document.original_digest, credential)

            # 6) Apply
            now = datetime.utcnow()
            already_signed = sum(1 for s in signers if s.status == SignerStatus.SIGNED)
            self.session.add(Signature(
                document_id=document.id,
                signer_identity=signer_identity,
                digest_signed=document.original_digest,
                signature_value=signature_value,
                public_key_pem=public_key,
                order=already_signed + 1,
                signed_at=now,
            ))
            signer.status = SignerStatus.SIGNED
            signer.acted_at = now
            self.audit.record(
                AuditAction.SIGNER_SIGNED,
                document.id,
                signer_identity,
                {"digest_signed": document.original_digest, "order": signer.order},
            )
            self.session.flush()

            # 7) Recount from the store and complete on threshold
            signed_count = self.repository.count_signed(document.id)
            if signed_count == document.required_signer_count:
                self._complete(document, signer_identity, final_digest)

            result = MemberSigningResult(
                document_id=document.id,
                status=document.status,
                signed_count=signed_count,
                required_count=document.required_signer_count,
                signature_value=signature_value,
            )

        logger.info(
            "Signer %s signed %s (%d/%d)",
            signer_identity, document_id, result.signed_count, result.required_count,
        )
        if result.completed:
            logger.info("Multi-signature request %s completed", document_id)
        return result

    def reject_as_member(self, document_id: str, signer_identity: str, reason: Optional[str] = None) -> DocumentStatus:
        """One rejection voids the whole request."""
        with self._locked(document_id) as document:
            signer = self._require_signer(document, signer_identity)
            if signer.status != SignerStatus.PENDING:
                raise AlreadyActed(signer_identity, current_status=document.status)
            self._require_kind(document, DocumentKind.MULTI)
            if document.status != DocumentStatus.PENDING:
                raise InvalidTransition(
                    f"Multi-signature request is no longer pending ({document.status.value})",
                    current_status=document.status,
                )

            now = datetime.utcnow()
            signer.status = SignerStatus.REJECTED
            signer.acted_at = now
            document.status = DocumentStatus.REJECTED
            document.rejection_date = now
            self.audit.record(
                AuditAction.SIGNATURE_REJECTED,
                document.id,
                signer_identity,
                {"reason": reason} if reason else {},
            )
            self._notify_owner(document)
            new_status = document.status

        logger.info("Signer %s rejected multi-signature request %s", signer_identity, document_id)
        return new_status

    def reconcile(self, document_id: str, actor_identity: Optional[str] = None) -> DocumentStatus:
        """
        Recount signatures and complete a request stuck below its status.

        Returns the (possibly unchanged) status. Safe to call at any time.
        """
        with self._locked(document_id) as document:
            self._require_kind(document, DocumentKind.MULTI)
            if actor_identity is not None:
                self._require_participant(document, actor_identity)
            if document.status != DocumentStatus.PENDING:
                return document.status

            signed_count = self.repository.count_signed(document.id)
            if signed_count != document.required_signer_count:
                return document.status

            self.audit.record(
                AuditAction.STATUS_RECONCILED,
                document.id,
                actor_identity or "system",
                {"signed_count": signed_count},
            )
            self._complete(document, actor_identity or "system", None)
            new_status = document.status

        logger.warning("Multi-signature request %s was stuck and has been completed", document_id)
        return new_status

    def record_final_artifact(
        self,
        document_id: str,
        actor_identity: str,
        final_bytes: bytes,
        file_path: Optional[str] = None,
    ) -> str:
        """
        Stamp the digest of the externally rendered final document.

        Only the owner may do this, only on a COMPLETED request, and only once
        (while signed_digest still equals original_digest).
        """
        if not final_bytes:
            raise InvalidFile("The final document is empty")
        final_digest = compute_digest(final_bytes)

        with self._locked(document_id) as document:
            self._require_kind(document, DocumentKind.MULTI)
            if actor_identity != document.owner_identity:
                raise Unauthorized(
                    "Only the owner can record the final document",
                    current_status=document.status,
                )
            if document.status != DocumentStatus.COMPLETED:
                raise InvalidTransition(
                    "The final document can only be recorded once all signers have signed",
                    current_status=document.status,
                )
            if document.signed_digest == final_digest:
                return final_digest
            if document.signed_digest != document.original_digest:
                raise InvalidTransition(
                    "A final document has already been recorded",
                    current_status=document.status,
                )
            document.signed_digest = final_digest
            if file_path:
                document.signed_file_path = file_path
            self.audit.record(
                AuditAction.FINAL_ARTIFACT_RECORDED,
                document.id,
                actor_identity,
                {"signed_digest": final_digest},
            )

        logger.info("Final artifact recorded for %s", document_id)
        return final_digest

    # ------------------------------------------------------------------ queries

    def get_status(self, document_id: str) -> MultiSignatureStatus:
        document = self.get_document(document_id)
        self._require_kind(document, DocumentKind.MULTI)
        signers = self.repository.get_signers(document_id)
        signed_count = sum(1 for s in signers if s.status == SignerStatus.SIGNED)

        next_signer = None
        if document.status == DocumentStatus.PENDING:
            candidate = self._next_pending(signers)
            next_signer = candidate.identity if candidate else None

        return MultiSignatureStatus(
            document_id=document.id,
            status=document.status,
            signing_policy=document.signing_policy,
            signed_count=signed_count,
            required_count=document.required_signer_count,
            next_signer=next_signer,
            signers=[
                SignerView(identity=s.identity, order=s.order, status=s.status, acted_at=s.acted_at)
                for s in signers
            ],
        )

    def list_pending_for_signer(self, signer_identity: str) -> List[Document]:
        """
        Open requests waiting on this signer. Under SEQUENTIAL policy only the
        requests where it is this signer's turn are returned.
        """
        result = []
        for document in self.repository.pending_requests_for_signer(signer_identity):
            if document.signing_policy == SigningPolicy.SEQUENTIAL:
                next_signer = self._next_pending(self.repository.get_signers(document.id))
                if next_signer is None or next_signer.identity != signer_identity:
                    continue
            result.append(document)
        return result
