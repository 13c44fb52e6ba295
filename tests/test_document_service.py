import os

import pytest

from docsign.modules.documents.errors import (
    ArtifactConflict,
    ArtifactTampered,
    DuplicateConfirmationRequired,
    InvalidFile,
    InvalidTransition,
    Unauthorized,
)
from docsign.modules.documents.models.audit_entry import AuditAction
from docsign.modules.documents.models.document import DocumentStatus
from docsign.modules.documents.services.crypto import compute_digest
from docsign.modules.documents.services.embedding import PdfSignatureEmbedder, read_embedded_tag
from docsign.modules.documents.services.verification_tag import build_verification_tag
from tests.conftest import create_dummy_pdf_bytes

DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


def _upload(document_service, owner="alice", filename="contract.pdf", pdf=None, **kwargs):
    return document_service.upload_document(
        owner, pdf or create_dummy_pdf_bytes(filename), filename, "application/pdf", **kwargs
    )


def _sign(document_service, doc, identity, keypairs):
    document_service.state.preview(doc.id, identity)
    document_service.state.decide(doc.id, identity, "accept")
    return document_service.sign_document(doc.id, identity, keypairs[identity][0])


def test_reject_non_pdf(document_service, users):
    with pytest.raises(InvalidFile):
        document_service.upload_document("alice", b"Fake DOCX content", "no_pdf.docx", DOCX)


def test_reject_pdf_extension_with_wrong_content(document_service, users):
    with pytest.raises(InvalidFile):
        document_service.upload_document("alice", b"not really a pdf", "fake.pdf", "application/pdf")


def test_reject_oversized_file(document_service, users, settings):
    settings.max_file_size = 100
    with pytest.raises(InvalidFile, match="maximum file size"):
        _upload(document_service)


def test_upload_valid_pdf(document_service, users):
    doc = _upload(document_service, filename="test.pdf")
    assert doc.status == DocumentStatus.UPLOADED
    assert doc.name == "test.pdf"
    assert os.path.exists(doc.file_path)
    with open(doc.file_path, "rb") as f:
        assert compute_digest(f.read()) == doc.original_digest


def test_unique_file_names_per_owner(document_service, users):
    first = _upload(document_service, filename="report.pdf", pdf=create_dummy_pdf_bytes("one"))
    second = _upload(document_service, filename="report.pdf", pdf=create_dummy_pdf_bytes("two"))
    third = _upload(document_service, filename="report.pdf", pdf=create_dummy_pdf_bytes("three"))
    other_owner = _upload(document_service, owner="bob", filename="report.pdf", pdf=create_dummy_pdf_bytes("four"))

    assert [first.name, second.name, third.name] == ["report.pdf", "report_1.pdf", "report_2.pdf"]
    assert other_owner.name == "report.pdf"
    assert other_owner.file_path != first.file_path


def test_failed_upload_leaves_no_file(document_service, users, settings):
    pdf = create_dummy_pdf_bytes("same")
    first = _upload(document_service, filename="a.pdf", pdf=pdf)
    with pytest.raises(DuplicateConfirmationRequired):
        _upload(document_service, filename="b.pdf", pdf=pdf)

    stored = os.listdir(os.path.join(settings.upload_dir, "alice"))
    assert stored == [first.id]
    assert os.listdir(os.path.join(settings.upload_dir, "alice", first.id)) == ["original.pdf"]


def test_upload_named_like_a_signed_copy_keeps_both_files(document_service, users, keypairs):
    first = _upload(document_service, filename="contract.pdf", pdf=create_dummy_pdf_bytes("first"))
    _sign(document_service, first, "alice", keypairs)
    _, signed_before = document_service.download_signed(first.id, "alice")

    second_pdf = create_dummy_pdf_bytes("second")
    second = _upload(document_service, filename="contract_signed.pdf", pdf=second_pdf)
    _sign(document_service, second, "alice", keypairs)

    name, signed_after = document_service.download_signed(first.id, "alice")
    assert name == "contract_signed.pdf"
    assert signed_after == signed_before
    assert document_service.read_original(second.id, "alice")[1] == second_pdf


def test_final_artifacts_with_the_same_name_do_not_collide(document_service, users, keypairs):
    finals = {}
    for label in ["one", "two"]:
        doc = document_service.initiate_multi_signature(
            "owner", create_dummy_pdf_bytes(label), "request.pdf", "application/pdf", ["alice"]
        )
        document_service.multi.sign_as_member(doc.id, "alice", keypairs["alice"][0])
        final = create_dummy_pdf_bytes(f"{label} with signature page")
        document_service.record_final_artifact(doc.id, "owner", final, "final.pdf", "application/pdf")
        finals[doc.id] = final

    for document_id, final in finals.items():
        assert document_service.download_signed(document_id, "owner")[1] == final


def test_store_never_replaces_an_existing_file(document_service, users, tmp_path):
    target = tmp_path / "artifact.pdf"
    target.write_bytes(b"kept")
    with pytest.raises(ArtifactConflict):
        document_service._store(str(target), b"replacement")
    assert target.read_bytes() == b"kept"


def test_sign_embeds_signature_and_stores_signed_copy(document_service, users, keypairs):
    doc = _upload(document_service)
    result = _sign(document_service, doc, "alice", keypairs)

    signed = document_service.get_document(doc.id, "alice")
    assert signed.signed_file_path and os.path.exists(signed.signed_file_path)
    assert signed.signed_digest == result.signed_digest
    assert signed.signed_digest != signed.original_digest

    with open(signed.signed_file_path, "rb") as f:
        signed_bytes = f.read()
    assert compute_digest(signed_bytes) == signed.signed_digest
    assert read_embedded_tag(signed_bytes) == build_verification_tag(signed)


def test_signed_artifact_verifies(document_service, verification_service, users, keypairs):
    doc = _upload(document_service)
    _sign(document_service, doc, "alice", keypairs)
    _, signed_bytes = document_service.download_signed(doc.id, "alice")

    report = verification_service.verify(signed_bytes)
    assert report.valid
    assert report.document_id == doc.id


def test_download_detects_tampering(document_service, users, keypairs):
    doc = _upload(document_service)
    _sign(document_service, doc, "alice", keypairs)
    signed = document_service.get_document(doc.id, "alice")
    with open(signed.signed_file_path, "ab") as f:
        f.write(b"%tampered")

    with pytest.raises(ArtifactTampered) as exc_info:
        document_service.download_signed(doc.id, "alice")
    assert exc_info.value.error_code == "integrity_compromised"


def test_download_requires_signed_document(document_service, users):
    doc = _upload(document_service)
    with pytest.raises(InvalidTransition):
        document_service.download_signed(doc.id, "alice")


def test_read_original(document_service, users):
    pdf = create_dummy_pdf_bytes("original")
    doc = _upload(document_service, pdf=pdf)
    name, data = document_service.read_original(doc.id, "alice")
    assert name == "contract.pdf"
    assert data == pdf


def test_outsiders_cannot_read(document_service, users):
    doc = _upload(document_service)
    with pytest.raises(Unauthorized):
        document_service.read_original(doc.id, "mallory")
    with pytest.raises(Unauthorized):
        document_service.get_history(doc.id, "mallory")


def test_list_history_and_stats(document_service, users, keypairs):
    signed = _upload(document_service, filename="signed.pdf", pdf=create_dummy_pdf_bytes("signed"))
    _sign(document_service, signed, "alice", keypairs)
    _upload(document_service, filename="draft.pdf", pdf=create_dummy_pdf_bytes("draft"))
    document_service.initiate_multi_signature(
        "owner", create_dummy_pdf_bytes("multi"), "multi.pdf", "application/pdf", ["alice", "bob"]
    )

    assert len(document_service.list_documents("alice")) == 3
    assert len(document_service.list_documents("bob")) == 1

    history = document_service.get_history(signed.id, "alice")
    assert [e.action for e in history] == [
        AuditAction.DOCUMENT_UPLOADED,
        AuditAction.DOCUMENT_PREVIEWED,
        AuditAction.DOCUMENT_ACCEPTED,
        AuditAction.DOCUMENT_SIGNED,
    ]

    stats = document_service.get_stats("alice")
    assert stats["total_documents"] == 3
    assert stats["by_status"] == {"SIGNED": 1, "UPLOADED": 1, "PENDING": 1}
    assert stats["multi_signature_documents"] == 1
    assert stats["total_signatures"] == 1


def test_record_final_artifact_stores_file(document_service, users, keypairs):
    doc = document_service.initiate_multi_signature(
        "owner", create_dummy_pdf_bytes("multi"), "multi.pdf", "application/pdf", ["alice"]
    )
    document_service.multi.sign_as_member(doc.id, "alice", keypairs["alice"][0])

    final = create_dummy_pdf_bytes("multi with signature page")
    digest = document_service.record_final_artifact(doc.id, "owner", final, "multi.pdf", "application/pdf")

    assert digest == compute_digest(final)
    name, data = document_service.download_signed(doc.id, "owner")
    assert data == final
    assert name == "multi_signed.pdf"

    # Same bytes again: the stored file is reused
    assert document_service.record_final_artifact(doc.id, "owner", final, "multi.pdf", "application/pdf") == digest
    with pytest.raises(InvalidTransition):
        document_service.record_final_artifact(
            doc.id, "owner", create_dummy_pdf_bytes("another render"), "multi.pdf", "application/pdf"
        )
    assert document_service.download_signed(doc.id, "owner")[1] == final


def test_embedder_keeps_pages_and_existing_metadata(document_service, users):
    pdf = create_dummy_pdf_bytes("embed me")
    doc = _upload(document_service, pdf=pdf)
    embedded = PdfSignatureEmbedder().embed(pdf, doc, "alice", "abcd")
    assert read_embedded_tag(embedded) == f"DS:{doc.id}"
    assert read_embedded_tag(pdf) is None
    assert read_embedded_tag(b"not a pdf") is None
