import io
import logging
import os
import re
from collections import Counter
from typing import Iterable, List, Optional, Tuple

from PyPDF2 import PdfReader
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from docsign.config import Settings, get_settings
from docsign.modules.documents.errors import (
    ArtifactConflict,
    ArtifactTampered,
    DocumentNotFound,
    InvalidFile,
    InvalidTransition,
    Unauthorized,
)
from docsign.modules.documents.models.audit_entry import AuditAction, AuditEntry
from docsign.modules.documents.models.document import DIGEST_STAMPED_STATUSES, Document, new_document_id
from docsign.modules.documents.models.signature import Signature
from docsign.modules.documents.services.crypto import SigningPrimitive, compute_digest
from docsign.modules.documents.services.document_state_service import (
    DocumentStateService,
    SigningResult,
)
from docsign.modules.documents.services.embedding import PdfSignatureEmbedder
from docsign.modules.documents.services.multi_signature_service import MultiSignatureService

logger = logging.getLogger(__name__)

_UNSAFE_PATH_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class DocumentService:
    """
    File-handling front for the lifecycle services.

    Validates uploads, stores originals and signed artifacts under
    `upload_dir`, and serves them back after re-checking their digest. All
    status changes go through DocumentStateService / MultiSignatureService.
    """

    def __init__(
        self,
        session: Session,
        primitive: Optional[SigningPrimitive] = None,
        settings: Optional[Settings] = None,
        embedder: Optional[PdfSignatureEmbedder] = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.state = DocumentStateService(session, primitive=primitive, settings=self.settings)
        self.multi = MultiSignatureService(session, primitive=primitive, settings=self.settings)
        self.embedder = embedder or PdfSignatureEmbedder()

    # ------------------------------------------------------------------ uploads

    def upload_document(
        self,
        owner_identity: str,
        file_contents: bytes,
        filename: str,
        content_type: Optional[str],
        *,
        signer_identity: Optional[str] = None,
        metadata: Optional[dict] = None,
        force: bool = False,
    ) -> Document:
        """
        Validate, store under a unique name, then create the UPLOADED record.
        The stored file is removed again if the record cannot be created.
        """
        self._validate_file(file_contents, filename, content_type)
        document_id = new_document_id()
        unique_name = self._get_unique_filename(owner_identity, filename)
        file_path = self._store_original(owner_identity, document_id, unique_name, file_contents)
        try:
            return self.state.upload(
                file_contents,
                owner_identity,
                metadata,
                signer_identity=signer_identity,
                force=force,
                name=unique_name,
                file_path=file_path,
                document_id=document_id,
            )
        except Exception:
            remove_stored_file(file_path)
            raise

    def initiate_multi_signature(
        self,
        owner_identity: str,
        file_contents: bytes,
        filename: str,
        content_type: Optional[str],
        signer_identities: Iterable[str],
        *,
        metadata: Optional[dict] = None,
        sequential: Optional[bool] = None,
        force: bool = False,
    ) -> Document:
        self._validate_file(file_contents, filename, content_type)
        document_id = new_document_id()
        unique_name = self._get_unique_filename(owner_identity, filename)
        file_path = self._store_original(owner_identity, document_id, unique_name, file_contents)
        try:
            return self.multi.initiate(
                file_contents,
                owner_identity,
                signer_identities,
                metadata,
                sequential=sequential,
                force=force,
                name=unique_name,
                file_path=file_path,
                document_id=document_id,
            )
        except Exception:
            remove_stored_file(file_path)
            raise

    def _validate_file(self, file_contents: bytes, filename: str, content_type: Optional[str]) -> None:
        if not file_contents:
            raise InvalidFile("The file is empty")

        max_file_size = self.settings.max_file_size
        if len(file_contents) > max_file_size:
            raise InvalidFile(f"The maximum file size is {max_file_size // (1024 * 1024)} MB")

        if not self.settings.require_pdf:
            return

        if content_type != "application/pdf":
            raise InvalidFile("The file must be a PDF")
        if not (filename or "").lower().endswith(".pdf"):
            raise InvalidFile("The file extension must be .pdf")

        try:
            reader = PdfReader(io.BytesIO(file_contents))
            _ = reader.pages[0]
        except Exception as e:
            raise InvalidFile("Invalid or damaged PDF") from e

    def _get_unique_filename(self, owner_identity: str, original_name: str) -> str:
        """Pick `name`, or `name_<n>` with the lowest free n, among the owner's documents."""
        original_name = os.path.basename(original_name or "document")
        base, ext = os.path.splitext(original_name)

        existing_names = (
            self.session.query(Document.name)
            .filter(
                Document.owner_identity == owner_identity,
                or_(
                    Document.name == original_name,
                    Document.name.like(f"{base}\\_%{ext}", escape="\\"),
                ),
            )
            .all()
        )
        existing = [row[0] for row in existing_names]
        if not existing:
            return original_name

        used_numbers = set()
        for existing_name in existing:
            if existing_name == original_name:
                used_numbers.add(0)
                continue
            end = len(existing_name) - len(ext)
            suffix = existing_name[len(base) + 1:end]
            if suffix.isdigit():
                used_numbers.add(int(suffix))

        next_num = 1
        while next_num in used_numbers:
            next_num += 1
        return f"{base}_{next_num}{ext}"

    def _document_dir(self, owner_identity: str, document_id: str) -> str:
        """upload_dir/<owner>/<document id>; every artifact of a document lives here."""
        return os.path.join(
            self.settings.upload_dir,
            _UNSAFE_PATH_CHARS.sub("_", owner_identity),
            _UNSAFE_PATH_CHARS.sub("_", document_id),
        )

    @staticmethod
    def _store(file_path: str, contents: bytes) -> str:
        """Write a new file; an existing file is never replaced."""
        os.makedirs(os.path.dirname(file_path), exist_ok=True)
        try:
            with open(file_path, "xb") as f:
                f.write(contents)
        except FileExistsError:
            raise ArtifactConflict(os.path.basename(file_path)) from None
        return file_path

    def _store_original(self, owner_identity: str, document_id: str, filename: str, contents: bytes) -> str:
        ext = os.path.splitext(filename)[1].lower()
        directory = self._document_dir(owner_identity, document_id)
        return self._store(os.path.join(directory, f"original{ext}"), contents)

    # ------------------------------------------------------------------ signing

    def sign_document(self, document_id: str, signer_identity: str, credential: str) -> SigningResult:
        """Sign, embedding the signature into stored PDFs; the signed copy is stored beside the original."""
        written = []

        def embed(document: Document, signature_value: str) -> Optional[bytes]:
            if not document.file_path or not document.file_path.lower().endswith(".pdf"):
                return None
            original = self._read_verified(document, document.file_path, document.original_digest)
            signed = self.embedder.embed(original, document, signer_identity, signature_value)
            directory = self._document_dir(document.owner_identity, document.id)
            signed_path = self._store(os.path.join(directory, "signed.pdf"), signed)
            written.append(signed_path)
            document.signed_file_path = signed_path
            return signed

        try:
            return self.state.sign(document_id, signer_identity, credential, embedder=embed)
        except Exception:
            for path in written:
                remove_stored_file(path)
            raise

    def record_final_artifact(
        self,
        document_id: str,
        actor_identity: str,
        file_contents: bytes,
        filename: str,
        content_type: Optional[str],
    ) -> str:
        """
        Store the final rendered document as final_<digest prefix><ext> beside
        the original. Repeating the call with the same bytes reuses that file.
        """
        self._validate_file(file_contents, filename, content_type)
        document = self.get_document(document_id, actor_identity)
        ext = os.path.splitext(filename or "")[1].lower() or ".pdf"
        final_digest = compute_digest(file_contents)
        file_path = os.path.join(
            self._document_dir(document.owner_identity, document.id),
            f"final_{final_digest[:16]}{ext}",
        )

        written = False
        if not self._holds_digest(file_path, final_digest):
            self._store(file_path, file_contents)
            written = True
        try:
            return self.multi.record_final_artifact(
                document_id, actor_identity, file_contents, file_path=file_path
            )
        except Exception:
            if written:
                remove_stored_file(file_path)
            raise

    @staticmethod
    def _holds_digest(file_path: str, digest: str) -> bool:
        if not os.path.exists(file_path):
            return False
        with open(file_path, "rb") as f:
            return compute_digest(f.read()) == digest

    # ------------------------------------------------------------------ reads

    def _ensure_access(self, document: Document, identity: str) -> None:
        if identity == document.owner_identity:
            return
        if any(s.identity == identity for s in document.signers):
            return
        raise Unauthorized(
            f"'{identity}' has no access to document '{document.id}'",
            current_status=document.status,
        )

    def get_document(self, document_id: str, identity: str) -> Document:
        document = self.state.get_document(document_id)
        self._ensure_access(document, identity)
        return document

    def list_documents(self, identity: str) -> List[Document]:
        return self.state.repository.list_for_identity(identity)

    def get_history(self, document_id: str, identity: str) -> List[AuditEntry]:
        self.get_document(document_id, identity)
        return self.state.audit.history(document_id)

    def get_stats(self, identity: str) -> dict:
        documents = self.list_documents(identity)
        ids = [d.id for d in documents]
        counts = Counter(d.status.value for d in documents)

        total_signatures = 0
        total_verifications = 0
        if ids:
            total_signatures = (
                self.session.query(func.count(Signature.id))
                .filter(Signature.document_id.in_(ids))
                .scalar()
            )
            total_verifications = (
                self.session.query(func.count(AuditEntry.id))
                .filter(
                    AuditEntry.document_id.in_(ids),
                    AuditEntry.action == AuditAction.DOCUMENT_VERIFIED,
                )
                .scalar()
            )

        return {
            "total_documents": len(documents),
            "by_status": dict(counts),
            "multi_signature_documents": sum(1 for d in documents if d.is_multi),
            "total_signatures": total_signatures,
            "total_verifications": total_verifications,
        }

    def _read_verified(self, document: Document, path: Optional[str], expected_digest: str) -> bytes:
        if not path or not os.path.exists(path):
            raise DocumentNotFound(document.id)
        with open(path, "rb") as f:
            data = f.read()
        if compute_digest(data) != expected_digest:
            logger.error(
                "Stored artifact does not match its recorded digest",
                extra={"document_id": document.id, "path": path},
            )
            raise ArtifactTampered(document.id)
        return data

    def read_original(self, document_id: str, identity: str) -> Tuple[str, bytes]:
        document = self.get_document(document_id, identity)
        data = self._read_verified(document, document.file_path, document.original_digest)
        return document.name or f"{document.id}.pdf", data

    def download_signed(self, document_id: str, identity: str) -> Tuple[str, bytes]:
        document = self.get_document(document_id, identity)
        if document.status not in DIGEST_STAMPED_STATUSES or not document.signed_digest:
            raise InvalidTransition(
                f"Document is not signed yet ({document.status.value})",
                current_status=document.status,
            )
        path = document.signed_file_path or document.file_path
        data = self._read_verified(document, path, document.signed_digest)
        base = os.path.splitext(document.name or document.id)[0]
        ext = os.path.splitext(path)[1] or ".pdf"
        return f"{base}_signed{ext}", data


def remove_stored_file(file_path: Optional[str]) -> None:
    """Delete a stored artifact, and its document directory once that is empty."""
    if not file_path:
        return
    try:
        if os.path.exists(file_path):
            os.remove(file_path)
        directory = os.path.dirname(file_path)
        if os.path.isdir(directory) and not os.listdir(directory):
            os.rmdir(directory)
    except OSError as e:
        logger.error("Could not remove stored file", extra={"path": file_path, "error": str(e)})
