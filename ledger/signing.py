"""Signing service interface and a local development signer.

The production signer is a remote, stateless key-management service: given
raw bytes and a key id it returns a signature and the resolved key id, and it
exposes the public key for third parties. Each signer reports the one
algorithm it signs with, and that identifier is what manifests record.

``LocalSigner`` keeps the same contract for development and tests. It has no
asymmetric key pair: signatures are HMAC-SHA256 under a per-key secret, it
reports ``HMAC_SHA_256``, and ``get_public_key`` returns the key fingerprint
only.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
from dataclasses import dataclass
from typing import Protocol

from ledger.errors import SigningError
from ledger.models import PublicKey

HMAC_ALGORITHM = "HMAC_SHA_256"


@dataclass(frozen=True)
class SignatureResult:
    signature: str  # base64
    key_id: str
    algorithm: str


class Signer(Protocol):
    algorithm: str

    def sign(self, message: bytes, key_id: str, algorithm: str | None = None) -> SignatureResult: ...

    def get_public_key(self, key_id: str) -> PublicKey: ...

    def verify(self, message: bytes, signature: str, key_id: str, algorithm: str | None = None) -> bool: ...


class LocalSigner:
    """HMAC-backed stand-in for the remote signing service."""

    algorithm = HMAC_ALGORITHM

    def __init__(self, secret: bytes | str) -> None:
        if isinstance(secret, str):
            secret = secret.encode("utf-8")
        if not secret:
            raise ValueError("LocalSigner requires a non-empty secret")
        self._secret = secret
        self.calls = 0

    def _key_material(self, key_id: str) -> bytes:
        if not key_id:
            raise SigningError("Signing key id is not configured")
        return hmac.new(self._secret, key_id.encode("utf-8"), hashlib.sha256).digest()

    def _digest(self, message: bytes, key_id: str) -> bytes:
        return hmac.new(self._key_material(key_id), message, hashlib.sha256).digest()

    def sign(self, message: bytes, key_id: str, algorithm: str | None = None) -> SignatureResult:
        if algorithm is not None and algorithm != self.algorithm:
            raise SigningError(f"LocalSigner cannot sign with {algorithm}")
        self.calls += 1
        return SignatureResult(
            signature=base64.b64encode(self._digest(message, key_id)).decode("ascii"),
            key_id=key_id,
            algorithm=self.algorithm,
        )

    def verify(self, message: bytes, signature: str, key_id: str, algorithm: str | None = None) -> bool:
        if algorithm is not None and algorithm != self.algorithm:
            return False
        try:
            provided = base64.b64decode(signature, validate=True)
        except (binascii.Error, ValueError):
            return False
        return hmac.compare_digest(provided, self._digest(message, key_id))

    def get_public_key(self, key_id: str) -> PublicKey:
        fingerprint = hashlib.sha256(self._key_material(key_id)).digest()
        return PublicKey(
            public_key=base64.b64encode(fingerprint).decode("ascii"),
            key_id=key_id,
            algorithm=self.algorithm,
        )
