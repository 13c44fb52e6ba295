import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from docsign.modules.documents.errors import DocSignError
from docsign.modules.documents.models.audit_entry import AuditAction
from docsign.modules.documents.models.document import Document, DocumentKind, DocumentStatus
from docsign.modules.documents.services.audit_service import AuditLogger
from docsign.modules.documents.services.document_service import remove_stored_file
from docsign.modules.documents.services.document_state_service import DocumentStateService
from docsign.modules.documents.services.multi_signature_service import MultiSignatureService

logger = logging.getLogger(__name__)


def delete_rejected_documents(session: Session, retention_days: int = 30) -> int:
    """Remove REJECTED documents older than the retention window. Audit entries are kept."""
    cutoff_date = datetime.utcnow() - timedelta(days=retention_days)

    documents = session.query(Document).filter(
        Document.status == DocumentStatus.REJECTED,
        Document.rejection_date <= cutoff_date
    ).all()

    audit = AuditLogger(session)
    deleted = 0
    for doc in documents:
        for path in {doc.file_path, doc.signed_file_path}:
            remove_stored_file(path)
        audit.record(
            AuditAction.DOCUMENT_DELETED,
            doc.id,
            "system",
            {"name": doc.name, "rejection_date": doc.rejection_date},
        )
        session.delete(doc)
        deleted += 1

    session.commit()
    if deleted:
        logger.info("Deleted %d rejected documents older than %d days", deleted, retention_days)
    return deleted


def finalize_signed_documents(session: Session) -> int:
    """
    Completion collaborator: moves SIGNED single-signer documents to COMPLETED
    and completes multi-signer requests whose signatures are all in but whose
    status was left PENDING. Returns the number of documents completed.
    """
    state = DocumentStateService(session)
    multi = MultiSignatureService(session)
    completed = 0

    for doc_id in [d.id for d in state.repository.with_status(DocumentStatus.SIGNED)]:
        try:
            state.finalize(doc_id)
            completed += 1
        except DocSignError as e:
            logger.warning("Could not finalize document", extra={"document_id": doc_id, "error": e.message})

    pending = [
        d.id for d in multi.repository.with_status(DocumentStatus.PENDING)
        if d.kind == DocumentKind.MULTI
    ]
    for doc_id in pending:
        try:
            if multi.reconcile(doc_id) == DocumentStatus.COMPLETED:
                completed += 1
        except DocSignError as e:
            logger.warning("Could not reconcile request", extra={"document_id": doc_id, "error": e.message})

    return completed
