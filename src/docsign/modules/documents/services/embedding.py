import io
import logging
from typing import Optional

from PyPDF2 import PdfReader, PdfWriter
from PyPDF2.errors import PdfReadError

from docsign.modules.documents.errors import InvalidFile
from docsign.modules.documents.models.document import Document
from docsign.modules.documents.services.verification_tag import build_verification_tag

logger = logging.getLogger(__name__)

TAG_KEY = "/DocSignTag"
SIGNER_KEY = "/DocSignSigner"
SIGNATURE_KEY = "/DocSignSignature"
ORIGINAL_DIGEST_KEY = "/DocSignOriginalDigest"


class PdfSignatureEmbedder:
    """
    Writes the signature into the PDF document information dictionary.

    Page content is copied unchanged; only the info dictionary gains the
    verification tag, signer, signature value and original digest.
    """

    def embed(self, pdf_bytes: bytes, document: Document, signer_identity: str, signature_value: str) -> bytes:
        try:
            reader = PdfReader(io.BytesIO(pdf_bytes))
            writer = PdfWriter()
            for page in reader.pages:
                writer.add_page(page)
        except (PdfReadError, ValueError) as e:
            raise InvalidFile("Stored document is not a readable PDF") from e

        metadata = {}
        if reader.metadata:
            metadata.update({k: str(v) for k, v in reader.metadata.items()})
        metadata.update({
            TAG_KEY: build_verification_tag(document),
            SIGNER_KEY: signer_identity,
            SIGNATURE_KEY: signature_value,
            ORIGINAL_DIGEST_KEY: document.original_digest,
        })
        writer.add_metadata(metadata)

        buffer = io.BytesIO()
        writer.write(buffer)
        logger.debug("Embedded signature of %s into document %s", signer_identity, document.id)
        return buffer.getvalue()


def read_embedded_tag(pdf_bytes: bytes) -> Optional[str]:
    """Verification tag stored by PdfSignatureEmbedder, or None."""
    if not pdf_bytes.startswith(b"%PDF"):
        return None
    try:
        reader = PdfReader(io.BytesIO(pdf_bytes))
        metadata = reader.metadata
    except (PdfReadError, ValueError):
        return None
    if not metadata:
        return None
    tag = metadata.get(TAG_KEY)
    return str(tag) if tag is not None else None
