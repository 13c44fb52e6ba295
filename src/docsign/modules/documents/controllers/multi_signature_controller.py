from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile, status

from docsign.modules.auth.dependencies import get_current_identity
from docsign.modules.documents.controllers.document_controller import get_document_service, parse_metadata
from docsign.modules.documents.schemas.document_schemas import (
    DocumentResponse,
    FinalArtifactResponse,
    MemberRejectRequest,
    MemberSigningResponse,
    MemberSignRequest,
    MultiSignatureCreatedResponse,
    MultiSignatureStatusResponse,
    StatusChangeResponse,
)
from docsign.modules.documents.services.document_service import DocumentService
from docsign.modules.documents.services.verification_tag import build_verification_tag

router = APIRouter(
    prefix="/multi-signature",
    tags=["multi-signature"]
)


@router.post("/create", response_model=MultiSignatureCreatedResponse, status_code=status.HTTP_201_CREATED)
def create_request(
    file: UploadFile = File(...),
    signers: List[str] = Form(..., description="Signer identities, in signing order"),
    sequential: Optional[bool] = Form(None),
    metadata: Optional[str] = Form(None),
    force: bool = Form(False),
    identity: str = Depends(get_current_identity),
    service: DocumentService = Depends(get_document_service),
):
    # Accept both repeated fields and a single comma separated field
    signer_identities = [s for value in signers for s in value.split(",")]
    contents = file.file.read()
    doc = service.initiate_multi_signature(
        identity,
        contents,
        file.filename,
        file.content_type,
        signer_identities,
        metadata=parse_metadata(metadata),
        sequential=sequential,
        force=force,
    )
    return MultiSignatureCreatedResponse(
        document_id=doc.id,
        name=doc.name,
        status=doc.status,
        signing_policy=doc.signing_policy,
        required_count=doc.required_signer_count,
        original_digest=doc.original_digest,
        verification_tag=build_verification_tag(doc),
    )


@router.get("/my-requests", response_model=List[DocumentResponse])
def my_pending_requests(
    identity: str = Depends(get_current_identity),
    service: DocumentService = Depends(get_document_service),
):
    """Requests currently waiting on the caller's signature."""
    return [DocumentResponse.from_document(d) for d in service.multi.list_pending_for_signer(identity)]


@router.post("/{document_id}/sign", response_model=MemberSigningResponse)
def sign_request(
    document_id: str,
    body: MemberSignRequest,
    identity: str = Depends(get_current_identity),
    service: DocumentService = Depends(get_document_service),
):
    result = service.multi.sign_as_member(document_id, identity, body.credential, final_digest=body.final_digest)
    return MemberSigningResponse.model_validate(result)


@router.post("/{document_id}/reject", response_model=StatusChangeResponse)
def reject_request(
    document_id: str,
    body: Optional[MemberRejectRequest] = None,
    identity: str = Depends(get_current_identity),
    service: DocumentService = Depends(get_document_service),
):
    reason = body.reason if body else None
    new_status = service.multi.reject_as_member(document_id, identity, reason)
    return StatusChangeResponse(document_id=document_id, status=new_status)


@router.get("/{document_id}/status", response_model=MultiSignatureStatusResponse)
def request_status(
    document_id: str,
    identity: str = Depends(get_current_identity),
    service: DocumentService = Depends(get_document_service),
):
    service.get_document(document_id, identity)
    return MultiSignatureStatusResponse.model_validate(service.multi.get_status(document_id))


@router.post("/{document_id}/fix-status", response_model=StatusChangeResponse)
def fix_status(
    document_id: str,
    identity: str = Depends(get_current_identity),
    service: DocumentService = Depends(get_document_service),
):
    """Complete a request whose signatures are all in but whose status is still PENDING."""
    new_status = service.multi.reconcile(document_id, identity)
    return StatusChangeResponse(document_id=document_id, status=new_status)


@router.post("/{document_id}/final-artifact", response_model=FinalArtifactResponse)
def record_final_artifact(
    document_id: str,
    file: UploadFile = File(...),
    identity: str = Depends(get_current_identity),
    service: DocumentService = Depends(get_document_service),
):
    contents = file.file.read()
    signed_digest = service.record_final_artifact(
        document_id, identity, contents, file.filename, file.content_type
    )
    return FinalArtifactResponse(document_id=document_id, signed_digest=signed_digest)
