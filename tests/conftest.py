import io

import pytest
from reportlab.pdfgen import canvas
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from docsign.config import Settings
from docsign.create_tables import create_tables
from docsign.database import Base
from docsign.modules.documents.models import User
from docsign.modules.documents.models.document import DIGEST_STAMPED_STATUSES
from docsign.modules.documents.services.crypto import EcdsaSigningPrimitive, generate_keypair
from docsign.modules.documents.services.document_service import DocumentService
from docsign.modules.documents.services.document_state_service import DocumentStateService
from docsign.modules.documents.services.locking import DocumentLockRegistry
from docsign.modules.documents.services.multi_signature_service import MultiSignatureService
from docsign.modules.documents.services.verification_service import VerificationService

IDENTITIES = ["owner", "alice", "bob", "carol", "dave", "mallory"]

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def create_dummy_pdf_bytes(text="PDF for tests"):
    buf = io.BytesIO()
    c = canvas.Canvas(buf)
    c.drawString(50, 750, text)
    c.save()
    buf.seek(0)
    return buf.read()


def create_user(session, identity, public_key_pem=None):
    user = User(
        identity=identity,
        name=identity.title(),
        email=f"{identity}@example.com",
        password_hash="not-used",
        public_key_pem=public_key_pem,
        is_active=True,
    )
    session.add(user)
    session.commit()
    return user


def assert_digest_invariant(document):
    """signed_digest is set exactly in SIGNED / COMPLETED."""
    if document.status in DIGEST_STAMPED_STATUSES:
        assert document.signed_digest is not None
    else:
        assert document.signed_digest is None


@pytest.fixture(autouse=True)
def clean_db():
    Base.metadata.drop_all(bind=engine)
    create_tables(engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="session")
def keypairs():
    """identity -> (private_pem, public_pem); generated once per run."""
    return {identity: generate_keypair() for identity in IDENTITIES}


@pytest.fixture
def session():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def users(session, keypairs):
    return {
        identity: create_user(session, identity, keypairs[identity][1])
        for identity in IDENTITIES
    }


@pytest.fixture
def settings(tmp_path):
    return Settings(
        upload_dir=str(tmp_path / "uploads"),
        enable_background_jobs=False,
        read_retry_delay=0,
        signing_policy="SEQUENTIAL",
    )


@pytest.fixture
def primitive():
    return EcdsaSigningPrimitive()


@pytest.fixture
def locks():
    return DocumentLockRegistry()


@pytest.fixture
def state_service(session, primitive, locks, settings):
    return DocumentStateService(session, primitive=primitive, locks=locks, settings=settings)


@pytest.fixture
def multi_service(session, primitive, locks, settings):
    return MultiSignatureService(session, primitive=primitive, locks=locks, settings=settings)


@pytest.fixture
def verification_service(session, primitive):
    return VerificationService(session, primitive=primitive)


@pytest.fixture
def document_service(session, primitive, settings):
    return DocumentService(session, primitive=primitive, settings=settings)


@pytest.fixture
def pdf_bytes():
    return create_dummy_pdf_bytes()
