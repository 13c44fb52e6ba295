import inspect

import pytest
from fastapi import Depends
from fastapi.routing import APIRoute
from fastapi.testclient import TestClient

from docsign.database import get_db
from docsign.main import app
from docsign.modules.documents.controllers.document_controller import get_document_service
from docsign.modules.documents.models.document import Document
from docsign.modules.documents.services.document_service import DocumentService
from docsign.modules.documents.services.verification_tag import build_verification_tag
from tests.conftest import TestingSessionLocal, create_dummy_pdf_bytes

PASSWORD = "correct-horse"


@pytest.fixture
def client(settings):
    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    def override_document_service(db=Depends(get_db)):
        return DocumentService(db, settings=settings)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_document_service] = override_document_service
    yield TestClient(app)
    app.dependency_overrides.clear()


def register(client, identity, public_key=None):
    body = {
        "identity": identity,
        "name": identity.title(),
        "email": f"{identity}@example.com",
        "password": PASSWORD,
    }
    if public_key:
        body["public_key_pem"] = public_key
    resp = client.post("/auth/register", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


def get_token(client, identity):
    resp = client.post("/auth/login", json={"email": f"{identity}@example.com", "password": PASSWORD})
    assert resp.status_code == 200, resp.text
    return resp.json()["access_token"]


def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers(client, keypairs):
    result = {}
    for identity in ["owner", "alice", "bob", "mallory"]:
        register(client, identity, keypairs[identity][1])
        result[identity] = auth_headers(get_token(client, identity))
    return result


def upload(client, headers, pdf, filename="contract.pdf", **form):
    files = {"file": (filename, pdf, "application/pdf")}
    return client.post("/documents/upload", files=files, data=form, headers=headers)


def test_register_login_and_me(client, keypairs):
    user = register(client, "alice", keypairs["alice"][1])
    assert user["identity"] == "alice"
    assert user["public_key_pem"] == keypairs["alice"][1]

    resp = client.get("/auth/me", headers=auth_headers(get_token(client, "alice")))
    assert resp.status_code == 200
    assert resp.json()["email"] == "alice@example.com"


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_register_rejects_bad_key_and_duplicates(client, keypairs):
    resp = client.post("/auth/register", json={
        "identity": "eve", "name": "Eve", "email": "eve@example.com",
        "password": PASSWORD, "public_key_pem": "not a key",
    })
    assert resp.status_code == 422

    register(client, "alice")
    resp = client.post("/auth/register", json={
        "identity": "alice", "name": "Other", "email": "other@example.com", "password": PASSWORD,
    })
    assert resp.status_code == 400


def test_login_with_wrong_password(client):
    register(client, "alice")
    resp = client.post("/auth/login", json={"email": "alice@example.com", "password": "wrong-password"})
    assert resp.status_code == 401


def test_requests_without_token_are_refused(client):
    resp = client.get("/documents")
    assert resp.status_code in {401, 403}


def test_update_public_key(client, keypairs):
    register(client, "alice")
    token = get_token(client, "alice")
    resp = client.put("/auth/me/public-key", json={"public_key_pem": keypairs["alice"][1]}, headers=auth_headers(token))
    assert resp.status_code == 200
    assert resp.json()["public_key_pem"] == keypairs["alice"][1]


def test_upload_non_pdf_rejected(client, headers):
    files = {"file": ("document.docx", b"This is not a PDF docx", "application/msword")}
    resp = client.post("/documents/upload", files=files, headers=headers["alice"])
    assert resp.status_code == 422
    assert resp.json()["error"] == "invalid_file"
    assert "pdf" in resp.json()["message"].lower()


def test_single_signer_flow(client, headers, keypairs):
    pdf = create_dummy_pdf_bytes("single signer flow")
    resp = upload(client, headers["alice"], pdf, metadata='{"department": "legal"}')
    assert resp.status_code == 201, resp.text
    body = resp.json()
    doc_id = body["document_id"]
    assert body["status"] == "UPLOADED"
    assert body["verification_tag"] == f"DS:{doc_id}"

    preview = client.get(body["preview_handle"], headers=headers["alice"])
    assert preview.status_code == 200
    assert preview.content == pdf

    assert client.post(f"/documents/{doc_id}/preview", headers=headers["alice"]).json()["status"] == "PREVIEWED"
    resp = client.post(f"/documents/{doc_id}/decide", json={"action": "accept"}, headers=headers["alice"])
    assert resp.json()["status"] == "ACCEPTED"

    resp = client.post(f"/documents/{doc_id}/sign", json={"credential": keypairs["alice"][0]}, headers=headers["alice"])
    assert resp.status_code == 200, resp.text
    assert resp.json()["status"] == "SIGNED"
    signed_digest = resp.json()["signed_digest"]

    resp = client.post(f"/documents/{doc_id}/complete", headers=headers["alice"])
    assert resp.json()["status"] == "COMPLETED"

    download = client.get(f"/documents/{doc_id}/download", headers=headers["alice"])
    assert download.status_code == 200
    assert download.headers["content-type"] == "application/pdf"

    files = {"file": ("signed.pdf", download.content, "application/pdf")}
    verification = client.post("/verify", files=files, headers=headers["bob"])
    assert verification.status_code == 200
    assert verification.json()["valid"] is True
    assert verification.json()["metadata"] == {"department": "legal"}

    details = client.get(f"/documents/{doc_id}", headers=headers["alice"]).json()
    assert details["signed_digest"] == signed_digest
    assert details["status"] == "COMPLETED"

    history = client.get(f"/documents/{doc_id}/history", headers=headers["alice"]).json()
    assert [e["action"] for e in history] == [
        "DOCUMENT_UPLOADED", "DOCUMENT_PREVIEWED", "DOCUMENT_ACCEPTED",
        "DOCUMENT_SIGNED", "DOCUMENT_COMPLETED", "DOCUMENT_VERIFIED",
    ]


def test_sign_after_reject_returns_current_status(client, headers, keypairs):
    doc_id = upload(client, headers["alice"], create_dummy_pdf_bytes("reject me")).json()["document_id"]
    resp = client.post(f"/documents/{doc_id}/decide", json={"action": "reject"}, headers=headers["alice"])
    assert resp.json()["status"] == "REJECTED"

    resp = client.post(f"/documents/{doc_id}/sign", json={"credential": keypairs["alice"][0]}, headers=headers["alice"])
    assert resp.status_code == 409
    assert resp.json()["error"] == "invalid_transition"
    assert resp.json()["details"]["current_status"] == "REJECTED"


def test_outsider_gets_403(client, headers):
    doc_id = upload(client, headers["alice"], create_dummy_pdf_bytes("private")).json()["document_id"]
    assert client.get(f"/documents/{doc_id}", headers=headers["mallory"]).status_code == 403
    resp = client.post(f"/documents/{doc_id}/decide", json={"action": "reject"}, headers=headers["mallory"])
    assert resp.status_code == 403


def test_unknown_document_is_404(client, headers):
    resp = client.get("/documents/nope", headers=headers["alice"])
    assert resp.status_code == 404
    assert resp.json()["error"] == "not_found"


def test_duplicate_upload_needs_confirmation(client, headers):
    pdf = create_dummy_pdf_bytes("duplicate")
    first = upload(client, headers["alice"], pdf)
    assert first.status_code == 201

    again = upload(client, headers["alice"], pdf)
    assert again.status_code == 409
    assert again.json()["details"]["action"] == "confirm"
    assert again.json()["details"]["existing_document_id"] == first.json()["document_id"]

    forced = upload(client, headers["alice"], pdf, force="true")
    assert forced.status_code == 201
    assert forced.json()["document_id"] != first.json()["document_id"]


def test_multi_signature_flow(client, headers, keypairs):
    files = {"file": ("acuerdo.pdf", create_dummy_pdf_bytes("multi flow"), "application/pdf")}
    resp = client.post(
        "/multi-signature/create",
        files=files,
        data={"signers": "alice,bob"},
        headers=headers["owner"],
    )
    assert resp.status_code == 201, resp.text
    created = resp.json()
    doc_id = created["document_id"]
    assert created["status"] == "PENDING"
    assert created["required_count"] == 2
    assert created["verification_tag"] == f"MS:{doc_id}"

    mine = client.get("/multi-signature/my-requests", headers=headers["alice"]).json()
    assert [d["id"] for d in mine] == [doc_id]
    assert client.get("/multi-signature/my-requests", headers=headers["bob"]).json() == []

    resp = client.post(f"/multi-signature/{doc_id}/sign", json={"credential": keypairs["bob"][0]}, headers=headers["bob"])
    assert resp.status_code == 409
    assert resp.json()["error"] == "out_of_order"

    resp = client.post(f"/multi-signature/{doc_id}/sign", json={"credential": keypairs["alice"][0]}, headers=headers["alice"])
    assert resp.json()["status"] == "PENDING"
    assert resp.json()["signed_count"] == 1

    resp = client.post(f"/multi-signature/{doc_id}/sign", json={"credential": keypairs["alice"][0]}, headers=headers["alice"])
    assert resp.status_code == 409
    assert resp.json()["error"] == "already_acted"

    resp = client.post(f"/multi-signature/{doc_id}/sign", json={"credential": keypairs["bob"][0]}, headers=headers["bob"])
    assert resp.json()["status"] == "COMPLETED"
    assert resp.json()["completed"] is True

    status = client.get(f"/multi-signature/{doc_id}/status", headers=headers["owner"]).json()
    assert status["progress"] == 100.0
    assert status["next_signer"] is None

    tag = client.get(f"/verify/tag/MS:{doc_id}", headers=headers["mallory"])
    assert tag.status_code == 200
    assert tag.json()["valid"] is True

    notifications = client.get("/notifications/me", headers=headers["owner"]).json()
    assert len(notifications) == 1
    resp = client.patch(f"/notifications/{notifications[0]['id']}/read", headers=headers["owner"])
    assert resp.json()["read"] is True


def test_multi_signature_rejection(client, headers):
    files = {"file": ("acuerdo.pdf", create_dummy_pdf_bytes("multi reject"), "application/pdf")}
    doc_id = client.post(
        "/multi-signature/create", files=files, data={"signers": ["alice", "bob"]}, headers=headers["owner"],
    ).json()["document_id"]

    assert client.post(f"/multi-signature/{doc_id}/reject", headers=headers["mallory"]).status_code == 403
    resp = client.post(f"/multi-signature/{doc_id}/reject", json={"reason": "typo"}, headers=headers["bob"])
    assert resp.json()["status"] == "REJECTED"


def test_create_without_signers_is_422(client, headers):
    files = {"file": ("acuerdo.pdf", create_dummy_pdf_bytes("no signers"), "application/pdf")}
    resp = client.post("/multi-signature/create", files=files, data={"signers": " , "}, headers=headers["owner"])
    assert resp.status_code == 422
    assert resp.json()["error"] == "no_signers"


def test_verify_tampered_bytes(client, headers, keypairs):
    pdf = create_dummy_pdf_bytes("tamper target")
    doc_id = upload(client, headers["alice"], pdf).json()["document_id"]
    client.post(f"/documents/{doc_id}/preview", headers=headers["alice"])
    client.post(f"/documents/{doc_id}/decide", json={"action": "accept"}, headers=headers["alice"])
    client.post(f"/documents/{doc_id}/sign", json={"credential": keypairs["alice"][0]}, headers=headers["alice"])

    tampered = bytearray(pdf)
    tampered[-20] ^= 0x01
    files = {"file": ("tampered.pdf", bytes(tampered), "application/pdf")}
    resp = client.post("/verify", files=files, headers=headers["bob"])
    assert resp.status_code == 200
    assert resp.json()["valid"] is False
    assert resp.json()["reason"] == "NOT_FOUND"


def _signed_document(client, headers, keypairs, text):
    doc_id = upload(client, headers["alice"], create_dummy_pdf_bytes(text)).json()["document_id"]
    client.post(f"/documents/{doc_id}/preview", headers=headers["alice"])
    client.post(f"/documents/{doc_id}/decide", json={"action": "accept"}, headers=headers["alice"])
    client.post(f"/documents/{doc_id}/sign", json={"credential": keypairs["alice"][0]}, headers=headers["alice"])
    signed = client.get(f"/documents/{doc_id}/download", headers=headers["alice"]).content
    return doc_id, signed


def test_verification_needs_no_account(client, headers, keypairs):
    doc_id, signed = _signed_document(client, headers, keypairs, "public verification")

    resp = client.post("/verify", files={"file": ("signed.pdf", signed, "application/pdf")})
    assert resp.status_code == 200
    assert resp.json()["valid"] is True

    resp = client.get(f"/verify/tag/DS:{doc_id}")
    assert resp.status_code == 200
    assert resp.json()["valid"] is True

    history = client.get(f"/documents/{doc_id}/history", headers=headers["alice"]).json()
    verifiers = [e["actor_identity"] for e in history if e["action"] == "DOCUMENT_VERIFIED"]
    assert verifiers == ["anonymous", "anonymous"]


def test_verification_with_bad_token_is_401(client, headers):
    resp = client.get("/verify/tag/DS:123", headers=auth_headers("not-a-token"))
    assert resp.status_code == 401


def test_modified_signed_pdf_reports_its_tag(client, headers, keypairs):
    doc_id, signed = _signed_document(client, headers, keypairs, "edited after signing")

    files = {"file": ("edited.pdf", signed + b"\n% edited\n", "application/pdf")}
    resp = client.post("/verify", files=files)
    assert resp.json()["valid"] is False
    assert resp.json()["reason"] == "NOT_FOUND"
    assert resp.json()["embedded_tag"] == f"DS:{doc_id}"


def test_key_rotation_keeps_earlier_signatures_valid(client, headers, keypairs):
    _, signed = _signed_document(client, headers, keypairs, "signed before rotation")

    resp = client.put("/auth/me/public-key", json={"public_key_pem": keypairs["dave"][1]}, headers=headers["alice"])
    assert resp.status_code == 200

    resp = client.post("/verify", files={"file": ("signed.pdf", signed, "application/pdf")})
    assert resp.json()["valid"] is True


def test_bad_tag_is_422(client, headers):
    resp = client.get("/verify/tag/XX:123", headers=headers["bob"])
    assert resp.status_code == 422
    assert resp.json()["error"] == "invalid_verification_tag"


def test_stats(client, headers):
    upload(client, headers["alice"], create_dummy_pdf_bytes("stats"))
    stats = client.get("/documents/stats", headers=headers["alice"]).json()
    assert stats["total_documents"] == 1
    assert stats["by_status"] == {"UPLOADED": 1}


def test_document_details_include_tag(client, headers, session):
    doc_id = upload(client, headers["alice"], create_dummy_pdf_bytes("details")).json()["document_id"]
    details = client.get(f"/documents/{doc_id}", headers=headers["alice"]).json()
    assert details["verification_tag"] == build_verification_tag(session.get(Document, doc_id))
    assert [s["identity"] for s in details["signers"]] == ["alice"]
    assert set(details["allowed_transitions"]) == {"PREVIEWED", "REJECTED"}


def test_blocking_routes_are_served_from_the_threadpool():
    endpoints = [r.endpoint for r in app.routes if isinstance(r, APIRoute)]
    assert endpoints
    assert not [e.__name__ for e in endpoints if inspect.iscoroutinefunction(e)]
