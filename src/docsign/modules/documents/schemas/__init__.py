from .document_schemas import (
    AuditEntryResponse, DecisionRequest, DocumentResponse, FinalArtifactResponse,
    MemberRejectRequest, MemberSignRequest, MemberSigningResponse,
    MultiSignatureCreatedResponse, MultiSignatureStatusResponse, SignRequest,
    SigningResponse, StatsResponse, StatusChangeResponse, UploadResponse,
    VerificationResponse,
)

__all__ = [
    'AuditEntryResponse', 'DecisionRequest', 'DocumentResponse', 'FinalArtifactResponse',
    'MemberRejectRequest', 'MemberSignRequest', 'MemberSigningResponse',
    'MultiSignatureCreatedResponse', 'MultiSignatureStatusResponse', 'SignRequest',
    'SigningResponse', 'StatsResponse', 'StatusChangeResponse', 'UploadResponse',
    'VerificationResponse',
]
