from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from docsign.modules.documents.models.audit_entry import AuditAction
from docsign.modules.documents.models.document import (
    Document,
    DocumentKind,
    DocumentStatus,
    SigningPolicy,
)
from docsign.modules.documents.models.signer import SignerStatus
from docsign.modules.documents.services.document_state_service import DecisionAction, DocumentStateService
from docsign.modules.documents.services.verification_service import VerificationReason
from docsign.modules.documents.services.verification_tag import build_verification_tag


class SignerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    identity: str
    order: Optional[int] = None
    status: SignerStatus
    acted_at: Optional[datetime] = None


class DocumentResponse(BaseModel):
    id: str
    name: Optional[str] = None
    kind: DocumentKind
    status: DocumentStatus
    signing_policy: Optional[SigningPolicy] = None
    owner_identity: str
    file_size: int
    original_digest: str
    signed_digest: Optional[str] = None
    required_signer_count: int
    metadata: Dict[str, Any] = Field(default_factory=dict)
    verification_tag: str
    created_at: Optional[datetime] = None
    signed_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    rejection_date: Optional[datetime] = None
    signers: List[SignerResponse] = Field(default_factory=list)
    allowed_transitions: List[DocumentStatus] = Field(default_factory=list)

    @classmethod
    def from_document(cls, document: Document) -> "DocumentResponse":
        return cls(
            id=document.id,
            name=document.name,
            kind=document.kind,
            status=document.status,
            signing_policy=document.signing_policy,
            owner_identity=document.owner_identity,
            file_size=document.file_size,
            original_digest=document.original_digest,
            signed_digest=document.signed_digest,
            required_signer_count=document.required_signer_count,
            metadata=document.document_metadata or {},
            verification_tag=build_verification_tag(document),
            created_at=document.created_at,
            signed_date=document.signed_date,
            completed_at=document.completed_at,
            rejection_date=document.rejection_date,
            signers=[SignerResponse.model_validate(s) for s in document.signers],
            allowed_transitions=DocumentStateService.get_allowed_transitions(document),
        )


class UploadResponse(BaseModel):
    document_id: str
    name: Optional[str] = None
    status: DocumentStatus
    original_digest: str
    preview_handle: str
    verification_tag: str


class StatusChangeResponse(BaseModel):
    document_id: str
    status: DocumentStatus


class DecisionRequest(BaseModel):
    action: DecisionAction


class SignRequest(BaseModel):
    credential: str = Field(..., min_length=1, description="PEM encoded private key; never stored")


class SigningResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    document_id: str
    status: DocumentStatus
    signed_digest: str
    signature_value: str


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    action: AuditAction
    actor_identity: str
    timestamp: datetime
    details: Dict[str, Any] = Field(default_factory=dict)


class StatsResponse(BaseModel):
    total_documents: int
    by_status: Dict[str, int]
    multi_signature_documents: int
    total_signatures: int
    total_verifications: int


# --- multi-signature ---------------------------------------------------------

class MultiSignatureCreatedResponse(BaseModel):
    document_id: str
    name: Optional[str] = None
    status: DocumentStatus
    signing_policy: SigningPolicy
    required_count: int
    original_digest: str
    verification_tag: str


class MemberSignRequest(BaseModel):
    credential: str = Field(..., min_length=1)
    final_digest: Optional[str] = Field(None, pattern=r"^[0-9a-f]{64}$")


class MemberSigningResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    document_id: str
    status: DocumentStatus
    signed_count: int
    required_count: int
    signature_value: str
    completed: bool


class MemberRejectRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class MultiSignatureStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    document_id: str
    status: DocumentStatus
    signing_policy: Optional[SigningPolicy] = None
    signed_count: int
    required_count: int
    next_signer: Optional[str] = None
    progress: float
    signers: List[SignerResponse] = Field(default_factory=list)


class FinalArtifactResponse(BaseModel):
    document_id: str
    signed_digest: str


# --- verification ------------------------------------------------------------

class SignatureCheckResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    signer_identity: str
    valid: bool
    signed_at: Optional[datetime] = None
    order: Optional[int] = None


class VerificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

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
    metadata: Dict[str, Any] = Field(default_factory=dict)
    signatures: List[SignatureCheckResponse] = Field(default_factory=list)
    embedded_tag: Optional[str] = None
