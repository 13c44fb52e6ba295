"""
Errors raised by the signing engine.

Every error carries an error code and an HTTP status so the API layer can
render it without knowing the individual classes. State errors include the
document's authoritative status so callers can reconcile their view.
"""

from typing import Any, Optional


class DocSignError(Exception):
    """Base exception for signing engine errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "docsign_error",
        status_code: int = 500,
        details: Optional[dict] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


# --- Validation -------------------------------------------------------------

class ValidationError(DocSignError):
    def __init__(self, message: str, error_code: str = "validation_error", details: Optional[dict] = None):
        super().__init__(message, error_code=error_code, status_code=422, details=details)


class InvalidFile(ValidationError):
    def __init__(self, message: str = "Invalid file"):
        super().__init__(message, error_code="invalid_file")


class NoSigners(ValidationError):
    def __init__(self):
        super().__init__("At least one signer identity is required", error_code="no_signers")


class InvalidVerificationTag(ValidationError):
    def __init__(self, tag: str):
        super().__init__(f"Unrecognised verification tag '{tag}'", error_code="invalid_verification_tag")


# --- Lookup / conflicts ------------------------------------------------------

class DocumentNotFound(DocSignError):
    def __init__(self, document_id: Any):
        super().__init__(
            f"Document '{document_id}' not found",
            error_code="not_found",
            status_code=404,
        )


class DuplicateDocument(DocSignError):
    """An identical document already exists for this owner."""

    def __init__(self, message: str, action: str, existing_document_id: Optional[str] = None,
                 existing_status: Optional[str] = None, error_code: str = "duplicate_document"):
        self.action = action
        self.existing_document_id = existing_document_id
        super().__init__(
            message,
            error_code=error_code,
            status_code=409,
            details={
                "action": action,
                "existing_document_id": existing_document_id,
                "existing_status": existing_status,
            },
        )


class DuplicateConfirmationRequired(DuplicateDocument):
    """The caller may proceed, but only after confirming (force=True)."""

    def __init__(self, message: str, existing_document_id: Optional[str] = None,
                 existing_status: Optional[str] = None):
        super().__init__(
            message,
            action="confirm",
            existing_document_id=existing_document_id,
            existing_status=existing_status,
            error_code="duplicate_confirmation_required",
        )


class ArtifactTampered(DocSignError):
    def __init__(self, document_id: str):
        super().__init__(
            f"Stored artifact for document '{document_id}' does not match its recorded digest",
            error_code="integrity_compromised",
            status_code=409,
        )


class ArtifactConflict(DocSignError):
    """A different file is already stored where an artifact was about to be written."""

    def __init__(self, name: str):
        super().__init__(
            f"A different artifact is already stored as '{name}'",
            error_code="artifact_conflict",
            status_code=409,
            details={"file": name},
        )


# --- State -------------------------------------------------------------------

class StateError(DocSignError):
    def __init__(self, message: str, error_code: str, current_status: Any = None, status_code: int = 409):
        self.current_status = getattr(current_status, "value", current_status)
        super().__init__(
            message,
            error_code=error_code,
            status_code=status_code,
            details={"current_status": self.current_status},
        )


class InvalidTransition(StateError):
    def __init__(self, message: str, current_status: Any = None):
        super().__init__(message, "invalid_transition", current_status)


class AlreadyActed(StateError):
    def __init__(self, signer_identity: str, current_status: Any = None):
        super().__init__(
            f"Signer '{signer_identity}' has already acted on this document",
            "already_acted",
            current_status,
        )


class OutOfOrder(StateError):
    def __init__(self, signer_identity: str, waiting_on: str, current_status: Any = None):
        super().__init__(
            f"Signer '{signer_identity}' must wait for '{waiting_on}' to sign first",
            "out_of_order",
            current_status,
        )
        self.details["waiting_on"] = waiting_on


class Unauthorized(StateError):
    def __init__(self, message: str, current_status: Any = None):
        super().__init__(message, "unauthorized", current_status, status_code=403)


# --- Dependencies ------------------------------------------------------------

class SigningFailed(DocSignError):
    def __init__(self, message: str = "Signing primitive failed", status_code: int = 502):
        super().__init__(message, error_code="signing_failed", status_code=status_code)


class SigningTimeout(SigningFailed):
    def __init__(self, timeout: float):
        super().__init__(f"Signing primitive did not answer within {timeout:.1f}s", status_code=504)
        self.error_code = "signing_timeout"


class StoreUnavailable(DocSignError):
    def __init__(self, message: str = "Document store is temporarily unavailable"):
        super().__init__(message, error_code="store_unavailable", status_code=503)
