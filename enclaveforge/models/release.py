"""Release artifact models: the immutable output handed to the scheduler."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from enclaveforge.models.digest import DIGEST_SIZE, DigestLengthError


class ReleaseArtifact(BaseModel):
    """One image in a Release: raw 32-byte digest plus repository path."""

    model_config = ConfigDict(frozen=True)

    digest: bytes
    registry: str

    @field_validator("digest")
    @classmethod
    def _exactly_32_bytes(cls, v: bytes) -> bytes:
        if len(v) != DIGEST_SIZE:
            raise DigestLengthError(
                f"Digest must be exactly {DIGEST_SIZE} bytes, got {len(v)}"
            )
        return v


class Release(BaseModel):
    """A single deploy/upgrade release.

    Created once per operation and consumed exactly once by the on-chain
    submitter, which only ever sees ``to_wire()``.
    """

    model_config = ConfigDict(frozen=True)

    artifacts: list[ReleaseArtifact]
    upgrade_by_time: int  # unix seconds
    public_env: bytes  # UTF-8 JSON object
    encrypted_env: bytes  # JWE compact serialization

    def to_wire(self) -> dict[str, Any]:
        """The shape the chain client encodes."""
        return {
            "artifacts": [
                {"digest": a.digest, "registry": a.registry} for a in self.artifacts
            ],
            "upgradeByTime": self.upgrade_by_time,
            "publicEnv": self.public_env,
            "encryptedEnv": self.encrypted_env,
        }

    def to_json_dict(self) -> dict[str, Any]:
        """JSON-safe rendering (digests as ``0x`` hex, env blobs as text)."""
        return {
            "artifacts": [
                {"digest": "0x" + a.digest.hex(), "registry": a.registry}
                for a in self.artifacts
            ],
            "upgradeByTime": self.upgrade_by_time,
            "publicEnv": self.public_env.decode("utf-8"),
            "encryptedEnv": self.encrypted_env.decode("utf-8"),
        }


class EncryptedEnvironment(BaseModel):
    """Result of splitting and encrypting an environment file."""

    model_config = ConfigDict(frozen=True)

    public_env: bytes
    encrypted_env: bytes
    public_keys: list[str] = []
    private_keys: list[str] = []
    mnemonic_filtered: bool = False


class PreparedRelease(BaseModel):
    """A composed Release plus the image reference it was built from."""

    model_config = ConfigDict(frozen=True)

    release: Release
    final_image_ref: str
