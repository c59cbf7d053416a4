"""Hybrid encryption of the private environment: JWE compact, RSA-OAEP-256 + A256GCM.

A fresh 256-bit content key and 96-bit IV are drawn for every call and
never kept.  The protected header carries the application id and is the
AES-GCM additional authenticated data, so a blob decrypts only under the
header it was produced with.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jwcrypto import jwe, jwk
from jwcrypto.common import json_encode

from enclaveforge.core.env_file import parse_env_file
from enclaveforge.models.environment import KmsKeyMaterial
from enclaveforge.models.release import EncryptedEnvironment

logger = logging.getLogger(__name__)

JWE_ALG = "RSA-OAEP-256"
JWE_ENC = "A256GCM"
APP_ID_HEADER = "x-app-id"
MACHINE_TYPE_VAR = "MACHINE_TYPE_PUBLIC"


class EncryptionKeyError(ValueError):
    """Raised when the KMS encryption key is not a usable RSA public key."""


def app_protected_headers(app_id: str) -> dict[str, str]:
    """Protected header entries that bind a blob to *app_id*."""
    return {APP_ID_HEADER: app_id}


def _load_rsa_public_key(pem: bytes | str) -> rsa.RSAPublicKey:
    data = pem.encode("utf-8") if isinstance(pem, str) else pem
    try:
        key = serialization.load_pem_public_key(data)
    except ValueError as exc:
        raise EncryptionKeyError(f"Invalid KMS encryption key: {exc}") from exc
    if not isinstance(key, rsa.RSAPublicKey):
        raise EncryptionKeyError(
            f"KMS encryption key must be RSA, got {type(key).__name__}"
        )
    return key


def encrypt_rsa_oaep_aes256gcm(
    encryption_key_pem: bytes | str,
    plaintext: bytes,
    protected_headers: dict[str, Any] | None = None,
) -> str:
    """Encrypt *plaintext* to a JWE compact serialization.

    Returns
    -------
    str
        ``header.encrypted_key.iv.ciphertext.tag``, each part base64url
        without padding.
    """
    recipient = jwk.JWK.from_pyca(_load_rsa_public_key(encryption_key_pem))
    header = {"alg": JWE_ALG, "enc": JWE_ENC, **(protected_headers or {})}
    # jwcrypto draws a fresh CEK and IV for every token.
    token = jwe.JWE(plaintext, protected=json_encode(header))
    token.add_recipient(recipient)
    return token.serialize(compact=True)


def _json_bytes(obj: dict[str, str]) -> bytes:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def split_and_encrypt(
    env_file_path: Path | None,
    app_id: str,
    keys: KmsKeyMaterial,
    instance_type: str,
) -> EncryptedEnvironment:
    """Split an env file and encrypt its private half for *app_id*.

    The public half gains ``MACHINE_TYPE_PUBLIC=<instance_type>``.  With no
    env file, the private map is empty but is still encrypted.
    """
    parsed = parse_env_file(env_file_path)
    public = dict(parsed.public)
    public[MACHINE_TYPE_VAR] = instance_type

    encrypted = encrypt_rsa_oaep_aes256gcm(
        keys.encryption_key,
        _json_bytes(parsed.private),
        app_protected_headers(app_id),
    )
    logger.info(
        "Encrypted %d private variable(s) for app %s (%d public)",
        len(parsed.private),
        app_id,
        len(public),
    )
    return EncryptedEnvironment(
        public_env=_json_bytes(public),
        encrypted_env=encrypted.encode("ascii"),
        public_keys=sorted(public),
        private_keys=sorted(parsed.private),
        mnemonic_filtered=parsed.mnemonic_filtered,
    )
