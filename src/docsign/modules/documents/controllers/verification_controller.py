from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.orm import Session

from docsign.database import get_db
from docsign.modules.auth.dependencies import get_caller_identity
from docsign.modules.documents.schemas.document_schemas import VerificationResponse
from docsign.modules.documents.services.verification_service import VerificationService

router = APIRouter(
    prefix="/verify",
    tags=["verification"]
)


def get_verification_service(db: Session = Depends(get_db)) -> VerificationService:
    return VerificationService(db)


@router.post("", response_model=VerificationResponse)
def verify_document(
    file: UploadFile = File(...),
    claimed_signer: Optional[str] = Form(None),
    identity: str = Depends(get_caller_identity),
    service: VerificationService = Depends(get_verification_service),
):
    """Always 200; a failed check is reported through `valid` and `reason`."""
    contents = file.file.read()
    report = service.verify(contents, claimed_signer_identity=claimed_signer, verifier_identity=identity)
    return VerificationResponse.model_validate(report)


@router.get("/tag/{tag}", response_model=VerificationResponse)
def verify_tag(
    tag: str,
    identity: str = Depends(get_caller_identity),
    service: VerificationService = Depends(get_verification_service),
):
    return VerificationResponse.model_validate(service.verify_tag(tag, verifier_identity=identity))
