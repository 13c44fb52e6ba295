"""
Verification of presented documents.

Verification is read-only with respect to documents: it hashes the presented
bytes, finds the document recorded under that digest and checks every stored
signature against the public key its signer had registered when signing.
Every negative outcome is reported as a result with a reason, never raised.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from docsign.modules.documents.models.audit_entry import AuditAction
from docsign.modules.documents.models.document import (
    DIGEST_STAMPED_STATUSES,
    Document,
    DocumentKind,
    DocumentStatus,
)
from docsign.modules.documents.repositories.document_repository import DocumentRepository
from docsign.modules.documents.services.audit_service import AuditLogger
from docsign.modules.documents.services.crypto import (
    SigningPrimitive,
    compute_digest,
    default_signing_primitive,
)
from docsign.modules.documents.services.embedding import read_embedded_tag
from docsign.modules.documents.services.verification_tag import parse_verification_tag

logger = logging.getLogger(__name__)


class VerificationReason(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    INCOMPLETE = "INCOMPLETE"
    SIGNER_MISMATCH = "SIGNER_MISMATCH"


@dataclass(frozen=True)
class SignatureCheck:
    signer_identity: str
    valid: bool
    signed_at: Optional[datetime]
    order: Optional[int]


@dataclass
class VerificationReport:
    valid: bool
    reason: Optional[VerificationReason] = None
    digest: Optional[str] = None
    document_id: Optional[str] = None
    document_name: Optional[str] = None
    status: Optional[DocumentStatus] = None
    kind: Optional[DocumentKind] = None
    owner_identity: Optional[str] = None
    signed_count: int = 0
    required_count: int = 0
    metadata: dict = field(default_factory=dict)
    signatures: List[SignatureCheck] = field(default_factory=list)
    # Tag carried inside the presented PDF when its digest matched nothing
    embedded_tag: Optional[str] = None


class VerificationService:
    def __init__(self, session: Session, primitive: Optional[SigningPrimitive] = None):
        self.session = session
        self.repository = DocumentRepository(session)
        self.primitive = primitive or default_signing_primitive()
        self.audit = AuditLogger(session)

    def verify(
        self,
        file_bytes: bytes,
        claimed_signer_identity: Optional[str] = None,
        verifier_identity: Optional[str] = None,
    ) -> VerificationReport:
        digest = compute_digest(file_bytes or b"")
        document = self._find_document(digest)
        if document is None:
            report = VerificationReport(
                valid=False,
                reason=VerificationReason.NOT_FOUND,
                digest=digest,
                embedded_tag=read_embedded_tag(file_bytes or b""),
            )
        else:
            report = self._evaluate(document, claimed_signer_identity)
            report.digest = digest
        self._record_attempt(report, verifier_identity, claimed_signer_identity, method="file")
        return report

    def verify_document(
        self,
        document_id: str,
        claimed_signer_identity: Optional[str] = None,
        verifier_identity: Optional[str] = None,
    ) -> VerificationReport:
        """Same checks as `verify`, for a document looked up by id."""
        return self._verify_by_id(document_id, None, claimed_signer_identity, verifier_identity)

    def verify_tag(self, tag: str, verifier_identity: Optional[str] = None) -> VerificationReport:
        """Resolve an MS:/DS: tag. Raises InvalidVerificationTag for malformed tags."""
        parsed = parse_verification_tag(tag)
        return self._verify_by_id(parsed.document_id, parsed.kind, None, verifier_identity)

    # ------------------------------------------------------------------ internals

    def _verify_by_id(
        self,
        document_id: str,
        expected_kind: Optional[DocumentKind],
        claimed_signer_identity: Optional[str],
        verifier_identity: Optional[str],
    ) -> VerificationReport:
        document = self.repository.get(document_id)
        # A tag whose prefix names the wrong kind resolves to nothing
        if document is None or (expected_kind is not None and document.kind != expected_kind):
            report = VerificationReport(valid=False, reason=VerificationReason.NOT_FOUND, document_id=document_id)
        else:
            report = self._evaluate(document, claimed_signer_identity)
        self._record_attempt(report, verifier_identity, claimed_signer_identity, method="id")
        return report

    def _find_document(self, digest: str) -> Optional[Document]:
        candidates = self.repository.find_by_digest(digest)
        if not candidates:
            return None
        for document in candidates:
            if document.status in DIGEST_STAMPED_STATUSES:
                return document
        return candidates[0]

    def _evaluate(self, document: Document, claimed_signer_identity: Optional[str]) -> VerificationReport:
        signatures = self.repository.get_signatures(document.id)
        checks = []
        all_valid = True
        for signature in signatures:
            public_key = signature.public_key_pem
            valid = (
                bool(public_key)
                and signature.digest_signed == document.original_digest
                and self.primitive.verify(signature.digest_signed, signature.signature_value, public_key)
            )
            all_valid = all_valid and valid
            checks.append(SignatureCheck(
                signer_identity=signature.signer_identity,
                valid=valid,
                signed_at=signature.signed_at,
                order=signature.order,
            ))

        report = VerificationReport(
            valid=False,
            document_id=document.id,
            document_name=document.name,
            status=document.status,
            kind=document.kind,
            owner_identity=document.owner_identity,
            signed_count=len(signatures),
            required_count=document.required_signer_count,
            metadata=dict(document.document_metadata or {}),
            signatures=checks,
        )

        if document.kind == DocumentKind.MULTI:
            complete = (
                document.status == DocumentStatus.COMPLETED
                and len(signatures) == document.required_signer_count
            )
        else:
            complete = document.status in DIGEST_STAMPED_STATUSES

        if not signatures or not complete:
            report.reason = VerificationReason.INCOMPLETE
        elif not all_valid:
            report.reason = VerificationReason.INVALID_SIGNATURE
        elif claimed_signer_identity and not any(
            c.valid and c.signer_identity == claimed_signer_identity for c in checks
        ):
            report.reason = VerificationReason.SIGNER_MISMATCH
        else:
            report.valid = True
        return report

    def _record_attempt(
        self,
        report: VerificationReport,
        verifier_identity: Optional[str],
        claimed_signer_identity: Optional[str],
        method: str,
    ) -> None:
        details = {
            "method": method,
            "digest": report.digest,
            "valid": report.valid,
            "reason": report.reason,
            "claimed_signer": claimed_signer_identity,
        }
        if report.embedded_tag:
            details["embedded_tag"] = report.embedded_tag
        try:
            self.audit.record(AuditAction.DOCUMENT_VERIFIED, report.document_id, verifier_identity, details)
            self.session.commit()
        except SQLAlchemyError as e:
            # The verdict stands even if the audit row cannot be written
            self.session.rollback()
            logger.warning("Could not record verification attempt", extra={"error": str(e)})

        logger.info(
            "Verification %s for document %s",
            "passed" if report.valid else f"failed ({report.reason.value})",
            report.document_id or "-",
        )
