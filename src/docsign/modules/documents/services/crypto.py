"""
Hashing and signing primitive.

The engine only needs three capabilities: digest bytes, sign a digest with a
credential, and check a signature against a public key. They sit behind
`SigningPrimitive` so the ECDSA implementation can be swapped (HSM, remote
signer) without touching the lifecycle code.

Security notes:
- Digests are SHA-256, hex encoded.
- Signatures are ECDSA over secp256k1 on the prehashed digest, DER encoded
  and hex rendered.
- Credentials (private keys) are used for the duration of one call and are
  never stored.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Optional, Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed

from docsign.config import get_settings
from docsign.modules.documents.errors import SigningFailed, SigningTimeout

logger = logging.getLogger(__name__)

CURVE = ec.SECP256K1()


def compute_digest(data: bytes) -> str:
    """SHA-256 of the raw bytes, hex encoded."""
    return hashlib.sha256(data).hexdigest()


class SigningPrimitive(ABC):
    """Black-box signing capability used by the lifecycle and coordinator."""

    @abstractmethod
    def sign(self, digest: str, credential: str) -> str:
        """Return the signature value over `digest`. Raises SigningFailed."""

    @abstractmethod
    def verify(self, digest: str, signature_value: str, public_key: str) -> bool:
        """True if `signature_value` is a valid signature of `digest` under `public_key`."""

    @abstractmethod
    def public_key_for(self, credential: str) -> str:
        """Public key (canonical PEM) matching a credential. Raises SigningFailed."""


def _canonical_public_pem(public_key: ec.EllipticCurvePublicKey) -> str:
    return public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


def normalize_public_key(public_key_pem: str) -> Optional[str]:
    """Re-serialize a PEM public key so two encodings of the same key compare equal."""
    try:
        key = serialization.load_pem_public_key(public_key_pem.encode("ascii"))
    except (ValueError, TypeError, UnicodeEncodeError):
        return None
    if not isinstance(key, ec.EllipticCurvePublicKey):
        return None
    return _canonical_public_pem(key)


def generate_keypair() -> Tuple[str, str]:
    """Return (private_key_pem, public_key_pem) for a fresh secp256k1 key."""
    private_key = ec.generate_private_key(CURVE)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")
    return private_pem, _canonical_public_pem(private_key.public_key())


class EcdsaSigningPrimitive(SigningPrimitive):

    def _load_private_key(self, credential: str) -> ec.EllipticCurvePrivateKey:
        try:
            key = serialization.load_pem_private_key(credential.encode("ascii"), password=None)
        except (ValueError, TypeError, UnicodeEncodeError) as exc:
            raise SigningFailed("Credential is not a readable private key", status_code=400) from exc
        if not isinstance(key, ec.EllipticCurvePrivateKey):
            raise SigningFailed("Credential is not an ECDSA private key", status_code=400)
        return key

    def sign(self, digest: str, credential: str) -> str:
        key = self._load_private_key(credential)
        try:
            signature = key.sign(bytes.fromhex(digest), ec.ECDSA(Prehashed(hashes.SHA256())))
        except ValueError as exc:
            raise SigningFailed(f"Could not sign digest: {exc}") from exc
        return signature.hex()

    def verify(self, digest: str, signature_value: str, public_key: str) -> bool:
        try:
            key = serialization.load_pem_public_key(public_key.encode("ascii"))
            if not isinstance(key, ec.EllipticCurvePublicKey):
                return False
            key.verify(
                bytes.fromhex(signature_value),
                bytes.fromhex(digest),
                ec.ECDSA(Prehashed(hashes.SHA256())),
            )
        except (InvalidSignature, ValueError, TypeError, UnicodeEncodeError):
            return False
        return True

    def public_key_for(self, credential: str) -> str:
        return _canonical_public_pem(self._load_private_key(credential).public_key())


class TimeoutSigningPrimitive(SigningPrimitive):
    """
    Runs another primitive on a worker pool and bounds each call.

    A call that exceeds the timeout raises SigningTimeout. Callers invoke the
    primitive before applying any state change, so a timeout leaves nothing
    half-written.
    """

    def __init__(self, inner: SigningPrimitive, timeout: float, executor: Optional[ThreadPoolExecutor] = None):
        self.inner = inner
        self.timeout = timeout
        self.executor = executor or _shared_executor()

    def _call(self, fn, *args):
        future = self.executor.submit(fn, *args)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeout:
            future.cancel()
            logger.error(
                "Signing primitive timed out",
                extra={"operation": fn.__name__, "timeout_seconds": self.timeout},
            )
            raise SigningTimeout(self.timeout)

    def sign(self, digest: str, credential: str) -> str:
        return self._call(self.inner.sign, digest, credential)

    def verify(self, digest: str, signature_value: str, public_key: str) -> bool:
        return self._call(self.inner.verify, digest, signature_value, public_key)

    def public_key_for(self, credential: str) -> str:
        return self._call(self.inner.public_key_for, credential)


_executor: Optional[ThreadPoolExecutor] = None
_executor_lock = threading.Lock()


def _shared_executor() -> ThreadPoolExecutor:
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(
                max_workers=get_settings().primitive_workers,
                thread_name_prefix="signing-primitive",
            )
        return _executor


def default_signing_primitive() -> SigningPrimitive:
    return TimeoutSigningPrimitive(EcdsaSigningPrimitive(), get_settings().primitive_timeout_seconds)
