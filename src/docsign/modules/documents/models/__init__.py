from .audit_entry import AuditAction, AuditEntry
from .document import Document, DocumentKind, DocumentStatus, SigningPolicy
from .signature import Signature
from .signer import Signer, SignerStatus
from .user import User

__all__ = [
    'AuditAction', 'AuditEntry', 'Document', 'DocumentKind', 'DocumentStatus',
    'SigningPolicy', 'Signature', 'Signer', 'SignerStatus', 'User',
]
