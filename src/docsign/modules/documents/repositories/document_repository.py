import logging
import time
from typing import Callable, List, Optional, TypeVar

from sqlalchemy import func, or_
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from docsign.config import get_settings
from docsign.modules.documents.errors import StoreUnavailable
from docsign.modules.documents.models.document import Document, DocumentKind, DocumentStatus
from docsign.modules.documents.models.signature import Signature
from docsign.modules.documents.models.signer import Signer, SignerStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DocumentRepository:
    """
    Store access for documents and their signer/signature rows.

    Plain reads retry a bounded number of times on connection-level errors.
    The *_for_update reads are used inside mutating operations and are never
    retried: the caller re-issues the whole operation instead.
    """

    def __init__(self, db_session: Session):
        self.db = db_session
        settings = get_settings()
        self.max_retries = max(1, settings.read_retries)
        self.retry_delay = settings.read_retry_delay

    def _read(self, query: Callable[[], T]) -> T:
        for attempt in range(self.max_retries):
            try:
                return query()
            except OperationalError as e:
                self.db.rollback()
                if attempt < self.max_retries - 1:
                    logger.warning(
                        f"Store read failed, retrying (attempt {attempt + 1}/{self.max_retries})",
                        extra={"error": str(e)},
                    )
                    time.sleep(self.retry_delay * (attempt + 1))
                else:
                    logger.error("Store read failed after retries", extra={"error": str(e)})
                    raise StoreUnavailable() from e

    # --- writes ---------------------------------------------------------------

    def add(self, document: Document) -> Document:
        self.db.add(document)
        return document

    # --- locked reads -----------------------------------------------------------

    def get_for_update(self, document_id: str) -> Optional[Document]:
        return self.db.get(Document, document_id, with_for_update=True, populate_existing=True)

    def signers_for_update(self, document_id: str) -> List[Signer]:
        return (
            self.db.query(Signer)
            .filter(Signer.document_id == document_id)
            .order_by(Signer.order.asc(), Signer.id.asc())
            .with_for_update()
            .populate_existing()
            .all()
        )

    def count_signed(self, document_id: str) -> int:
        return (
            self.db.query(func.count(Signer.id))
            .filter(Signer.document_id == document_id, Signer.status == SignerStatus.SIGNED)
            .scalar()
        )

    # --- plain reads ------------------------------------------------------------

    def get(self, document_id: str) -> Optional[Document]:
        return self._read(lambda: self.db.get(Document, document_id))

    def get_signers(self, document_id: str) -> List[Signer]:
        return self._read(
            lambda: self.db.query(Signer)
            .filter(Signer.document_id == document_id)
            .order_by(Signer.order.asc(), Signer.id.asc())
            .all()
        )

    def get_signatures(self, document_id: str) -> List[Signature]:
        return self._read(
            lambda: self.db.query(Signature)
            .filter(Signature.document_id == document_id)
            .order_by(Signature.order.asc())
            .all()
        )

    def find_by_digest(self, digest: str, owner_identity: Optional[str] = None) -> List[Document]:
        """Documents whose original or signed digest equals `digest`, newest first."""

        def query():
            q = self.db.query(Document).filter(
                or_(Document.original_digest == digest, Document.signed_digest == digest)
            )
            if owner_identity is not None:
                q = q.filter(Document.owner_identity == owner_identity)
            return q.order_by(Document.created_at.desc()).all()

        return self._read(query)

    def list_for_identity(self, identity: str) -> List[Document]:
        """Documents the identity owns or is asked to sign."""
        signer_docs = self.db.query(Signer.document_id).filter(Signer.identity == identity)
        return self._read(
            lambda: self.db.query(Document)
            .filter(or_(Document.owner_identity == identity, Document.id.in_(signer_docs)))
            .order_by(Document.created_at.desc())
            .all()
        )

    def pending_requests_for_signer(self, identity: str) -> List[Document]:
        return self._read(
            lambda: self.db.query(Document)
            .join(Signer, Signer.document_id == Document.id)
            .filter(
                Document.kind == DocumentKind.MULTI,
                Document.status == DocumentStatus.PENDING,
                Signer.identity == identity,
                Signer.status == SignerStatus.PENDING,
            )
            .order_by(Document.created_at.desc())
            .all()
        )

    def with_status(self, status: DocumentStatus) -> List[Document]:
        return self._read(lambda: self.db.query(Document).filter(Document.status == status).all())
