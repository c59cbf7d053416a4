"""Crypto bridge: Ed25519 signing and verification via PyNaCl.

Bridge boundary
---------------
Two consumers:

1. **Build API authentication**: ``RequestSigner`` signs a short-lived
   ``compute:<expiry>`` message and emits the ``Authorization`` /
   ``X-Expiry`` / ``X-Account`` headers.

2. **Provenance re-verification**: ``verify_dsse`` checks a DSSE envelope
   signature over the pre-authentication encoding of
   ``(payloadType, payload)`` against a trusted public key.

Verification is fail-closed: malformed keys or signatures verify as
``False``, never raise.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import time
from collections.abc import Callable

import nacl.signing
from nacl.exceptions import BadSignatureError, CryptoError

logger = logging.getLogger(__name__)

AUTH_PRODUCT = "compute"
AUTH_EXPIRY_SECONDS = 60


# ---------------------------------------------------------------------------
# Keys and raw signatures
# ---------------------------------------------------------------------------


def generate_keypair() -> tuple[str, str]:
    """Generate an Ed25519 key-pair.

    Returns
    -------
    tuple[str, str]
        ``(private_key_hex, public_key_hex)``
    """
    sk = nacl.signing.SigningKey.generate()
    return sk.encode().hex(), sk.verify_key.encode().hex()


def public_key_for(private_key: str) -> str:
    """Hex public key for a hex private seed."""
    return nacl.signing.SigningKey(bytes.fromhex(private_key)).verify_key.encode().hex()


def sign_data(data: bytes, private_key: str) -> str:
    """Sign *data* with *private_key* and return the hex-encoded signature.

    Parameters
    ----------
    data:
        Raw bytes to sign.
    private_key:
        Hex-encoded 32-byte seed returned by ``generate_keypair()``.

    Returns
    -------
    str
        128 hex chars (64-byte Ed25519 signature).
    """
    sk = nacl.signing.SigningKey(bytes.fromhex(private_key))
    return sk.sign(data).signature.hex()


def verify_data(data: bytes, signature: str, public_key: str) -> bool:
    """Verify a hex *signature* over *data* under a hex *public_key*.

    Returns ``False`` for an empty, malformed or mismatched signature.
    """
    if not signature or not public_key:
        return False
    try:
        sig_bytes = bytes.fromhex(signature)
        pub_bytes = bytes.fromhex(public_key)
    except ValueError:
        return False
    return _verify_raw(data, sig_bytes, pub_bytes)


def _verify_raw(data: bytes, signature: bytes, public_key: bytes) -> bool:
    try:
        nacl.signing.VerifyKey(public_key).verify(data, signature)
    except (BadSignatureError, CryptoError, ValueError, TypeError):
        # BadSignatureError: cryptographic mismatch
        # CryptoError / ValueError / TypeError: wrong key or signature length
        return False
    return True


def key_fingerprint(public_key: str) -> str:
    """First 16 hex chars of SHA-256 over the key text.

    Recorded in the provenance ledger instead of the full key or signature.
    """
    if not public_key:
        return ""
    return hashlib.sha256(public_key.encode("utf-8")).hexdigest()[:16]


# ---------------------------------------------------------------------------
# DSSE
# ---------------------------------------------------------------------------


def dsse_pae(payload_type: str, payload: bytes) -> bytes:
    """DSSE v1 pre-authentication encoding.

    ``"DSSEv1" SP LEN(type) SP type SP LEN(body) SP body``
    """
    type_bytes = payload_type.encode("utf-8")
    return b" ".join(
        [
            b"DSSEv1",
            str(len(type_bytes)).encode("ascii"),
            type_bytes,
            str(len(payload)).encode("ascii"),
            payload,
        ]
    )


def _decode_signature(signature: str) -> bytes | None:
    """Accept a hex or base64 encoded 64-byte signature."""
    text = signature.strip()
    if len(text) == 128:
        try:
            return bytes.fromhex(text)
        except ValueError:
            pass
    try:
        raw = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError):
        return None
    return raw if len(raw) == 64 else None


def verify_dsse(
    payload_type: str,
    payload_b64: str,
    signature: str,
    public_key: str,
) -> bool:
    """Check a DSSE signature.  Fail-closed on any malformed input."""
    if not (payload_type and payload_b64 and signature and public_key):
        return False
    try:
        payload = base64.b64decode(payload_b64, validate=True)
        pub_bytes = bytes.fromhex(public_key)
    except (binascii.Error, ValueError):
        return False
    sig_bytes = _decode_signature(signature)
    if sig_bytes is None:
        return False
    return _verify_raw(dsse_pae(payload_type, payload), sig_bytes, pub_bytes)


# ---------------------------------------------------------------------------
# Request authentication
# ---------------------------------------------------------------------------


class RequestSigner:
    """Produces signed authentication headers for the build API.

    Parameters
    ----------
    private_key:
        Hex-encoded Ed25519 seed.
    clock:
        Seconds since the epoch; injectable for tests.
    """

    def __init__(
        self,
        private_key: str,
        *,
        expiry_seconds: int = AUTH_EXPIRY_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._private_key = private_key
        self.account = public_key_for(private_key)
        self._expiry_seconds = expiry_seconds
        self._clock = clock

    @staticmethod
    def message(expiry: int) -> bytes:
        return f"{AUTH_PRODUCT}:{expiry}".encode("utf-8")

    def headers(self) -> dict[str, str]:
        expiry = int(self._clock()) + self._expiry_seconds
        signature = sign_data(self.message(expiry), self._private_key)
        return {
            "Authorization": f"Bearer {signature}",
            "X-Expiry": str(expiry),
            "X-Account": self.account,
        }
