"""Content digest value type.

A Digest is exactly 32 bytes.  Its canonical text form is
``sha256:<64 lowercase hex>``.  Anything else is rejected; nothing is ever
truncated or padded to fit.
"""

from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict, field_validator

SHA256_PREFIX = "sha256:"
DIGEST_SIZE = 32

_DIGEST_RE = re.compile(r"^sha256:[0-9a-f]{64}$")


class DigestFormatError(ValueError):
    """Raised when a digest string is not ``sha256:<64 lowercase hex>``."""


class DigestLengthError(ValueError):
    """Raised when raw digest bytes are not exactly 32 bytes long."""


def is_digest_string(value: str) -> bool:
    """Return ``True`` if *value* is a canonical ``sha256:`` digest string."""
    return bool(_DIGEST_RE.match(value))


class Digest(BaseModel):
    """An immutable 32-byte image content hash."""

    model_config = ConfigDict(frozen=True)

    value: bytes

    @field_validator("value")
    @classmethod
    def _exactly_32_bytes(cls, v: bytes) -> bytes:
        if len(v) != DIGEST_SIZE:
            raise DigestLengthError(
                f"Digest must be exactly {DIGEST_SIZE} bytes, got {len(v)}"
            )
        return v

    @classmethod
    def parse(cls, text: str) -> Digest:
        """Parse the canonical ``sha256:<hex>`` form."""
        if not isinstance(text, str) or not _DIGEST_RE.match(text):
            raise DigestFormatError(
                f"Digest must be in format sha256:<64 lowercase hex>, got: {text!r}"
            )
        return cls(value=bytes.fromhex(text[len(SHA256_PREFIX):]))

    @classmethod
    def from_bytes(cls, raw: bytes) -> Digest:
        """Wrap raw bytes, raising ``DigestLengthError`` unless 32 bytes long."""
        if len(raw) != DIGEST_SIZE:
            raise DigestLengthError(
                f"Digest must be exactly {DIGEST_SIZE} bytes, got {len(raw)}"
            )
        return cls(value=bytes(raw))

    @classmethod
    def coerce(cls, candidate: Digest | bytes | str) -> Digest:
        """Accept a Digest, raw bytes, or canonical text."""
        if isinstance(candidate, Digest):
            return candidate
        if isinstance(candidate, (bytes, bytearray)):
            return cls.from_bytes(bytes(candidate))
        return cls.parse(candidate)

    @property
    def hex(self) -> str:
        return self.value.hex()

    def __str__(self) -> str:
        return f"{SHA256_PREFIX}{self.value.hex()}"
