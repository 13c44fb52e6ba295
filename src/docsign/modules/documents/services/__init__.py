from .cleanup import delete_rejected_documents, finalize_signed_documents
from .document_service import DocumentService
from .document_state_service import DocumentStateService
from .multi_signature_service import MultiSignatureService
from .verification_service import VerificationService

__all__ = [
    'delete_rejected_documents', 'finalize_signed_documents', 'DocumentService',
    'DocumentStateService', 'MultiSignatureService', 'VerificationService',
]
