import json
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Response, UploadFile, status
from sqlalchemy.orm import Session

from docsign.database import get_db
from docsign.modules.auth.dependencies import get_current_identity
from docsign.modules.documents.errors import ValidationError
from docsign.modules.documents.schemas.document_schemas import (
    AuditEntryResponse,
    DecisionRequest,
    DocumentResponse,
    SigningResponse,
    SignRequest,
    StatsResponse,
    StatusChangeResponse,
    UploadResponse,
)
from docsign.modules.documents.services.document_service import DocumentService
from docsign.modules.documents.services.verification_tag import build_verification_tag

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/documents",
    tags=["documents"]
)


def get_document_service(db: Session = Depends(get_db)) -> DocumentService:
    return DocumentService(db)


def parse_metadata(metadata: Optional[str]) -> Optional[dict]:
    """Metadata arrives as a JSON object in a multipart form field."""
    if not metadata:
        return None
    try:
        value = json.loads(metadata)
    except ValueError:
        raise ValidationError("metadata must be a JSON object") from None
    if not isinstance(value, dict):
        raise ValidationError("metadata must be a JSON object")
    return value


def _pdf_response(filename: str, data: bytes) -> Response:
    return Response(
        content=data,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/upload", response_model=UploadResponse, status_code=status.HTTP_201_CREATED)
def upload_document(
    file: UploadFile = File(...),
    signer_identity: Optional[str] = Form(None),
    metadata: Optional[str] = Form(None),
    force: bool = Form(False),
    identity: str = Depends(get_current_identity),
    service: DocumentService = Depends(get_document_service),
):
    contents = file.file.read()
    doc = service.upload_document(
        identity,
        contents,
        file.filename,
        file.content_type,
        signer_identity=signer_identity,
        metadata=parse_metadata(metadata),
        force=force,
    )
    return UploadResponse(
        document_id=doc.id,
        name=doc.name,
        status=doc.status,
        original_digest=doc.original_digest,
        preview_handle=f"/documents/{doc.id}/file",
        verification_tag=build_verification_tag(doc),
    )


@router.get("", response_model=List[DocumentResponse])
def list_documents(
    identity: str = Depends(get_current_identity),
    service: DocumentService = Depends(get_document_service),
):
    return [DocumentResponse.from_document(d) for d in service.list_documents(identity)]


@router.get("/stats", response_model=StatsResponse)
def get_stats(
    identity: str = Depends(get_current_identity),
    service: DocumentService = Depends(get_document_service),
):
    return service.get_stats(identity)


@router.get("/{document_id}", response_model=DocumentResponse)
def get_document(
    document_id: str,
    identity: str = Depends(get_current_identity),
    service: DocumentService = Depends(get_document_service),
):
    return DocumentResponse.from_document(service.get_document(document_id, identity))


@router.get("/{document_id}/history", response_model=List[AuditEntryResponse])
def get_history(
    document_id: str,
    identity: str = Depends(get_current_identity),
    service: DocumentService = Depends(get_document_service),
):
    return service.get_history(document_id, identity)


@router.get("/{document_id}/file")
def get_original_file(
    document_id: str,
    identity: str = Depends(get_current_identity),
    service: DocumentService = Depends(get_document_service),
):
    """Original bytes; this is the preview handle returned by upload."""
    filename, data = service.read_original(document_id, identity)
    return _pdf_response(filename, data)


@router.post("/{document_id}/preview", response_model=StatusChangeResponse)
def preview_document(
    document_id: str,
    identity: str = Depends(get_current_identity),
    service: DocumentService = Depends(get_document_service),
):
    new_status = service.state.preview(document_id, identity)
    return StatusChangeResponse(document_id=document_id, status=new_status)


@router.post("/{document_id}/decide", response_model=StatusChangeResponse)
def decide_document(
    document_id: str,
    body: DecisionRequest,
    identity: str = Depends(get_current_identity),
    service: DocumentService = Depends(get_document_service),
):
    new_status = service.state.decide(document_id, identity, body.action)
    return StatusChangeResponse(document_id=document_id, status=new_status)


@router.post("/{document_id}/sign", response_model=SigningResponse)
def sign_document(
    document_id: str,
    body: SignRequest,
    identity: str = Depends(get_current_identity),
    service: DocumentService = Depends(get_document_service),
):
    return service.sign_document(document_id, identity, body.credential)


@router.post("/{document_id}/complete", response_model=StatusChangeResponse)
def complete_document(
    document_id: str,
    identity: str = Depends(get_current_identity),
    service: DocumentService = Depends(get_document_service),
):
    service.get_document(document_id, identity)
    new_status = service.state.finalize(document_id, identity)
    return StatusChangeResponse(document_id=document_id, status=new_status)


@router.get("/{document_id}/download")
def download_signed_document(
    document_id: str,
    identity: str = Depends(get_current_identity),
    service: DocumentService = Depends(get_document_service),
):
    """Signed artifact, served only if it still matches its recorded digest."""
    filename, data = service.download_signed(document_id, identity)
    return _pdf_response(filename, data)
