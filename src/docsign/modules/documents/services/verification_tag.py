"""
Verification tags: the payload printed in QR codes and verification links.

    MS:<documentId>   multi-signer request
    DS:<documentId>   single-signer document

Rendering the QR image is someone else's job; this module only builds and
parses the string.
"""

import re
from dataclasses import dataclass

from docsign.modules.documents.errors import InvalidVerificationTag
from docsign.modules.documents.models.document import Document, DocumentKind

MULTI_SIGNATURE_PREFIX = "MS"
SINGLE_SIGNATURE_PREFIX = "DS"

_PREFIX_TO_KIND = {
    MULTI_SIGNATURE_PREFIX: DocumentKind.MULTI,
    SINGLE_SIGNATURE_PREFIX: DocumentKind.SINGLE,
}
_DOCUMENT_ID = re.compile(r"^[A-Za-z0-9-]{1,64}$")


@dataclass(frozen=True)
class VerificationTag:
    kind: DocumentKind
    document_id: str

    def __str__(self) -> str:
        prefix = MULTI_SIGNATURE_PREFIX if self.kind == DocumentKind.MULTI else SINGLE_SIGNATURE_PREFIX
        return f"{prefix}:{self.document_id}"


def build_verification_tag(document: Document) -> str:
    return str(VerificationTag(kind=document.kind, document_id=document.id))


def parse_verification_tag(tag: str) -> VerificationTag:
    prefix, sep, document_id = (tag or "").strip().partition(":")
    kind = _PREFIX_TO_KIND.get(prefix.upper())
    if not sep or kind is None or not _DOCUMENT_ID.match(document_id):
        raise InvalidVerificationTag(tag)
    return VerificationTag(kind=kind, document_id=document_id)
