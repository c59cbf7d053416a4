"""Environment x build-type resolution and bundled asset lookup.

Everything here is resolved once by the entry point and then injected.
The asset base path is explicit; no directory walking.

Asset layout under ``assets_path``::

    tools/kms-client-linux-amd64
    tools/tls-keygen-linux-amd64
    keys/<environment>/<build>/kms-encryption-public-key.pem
    keys/<environment>/<build>/kms-signing-public-key.pem
"""

from __future__ import annotations

import logging
from pathlib import Path

from enclaveforge.models.environment import (
    BuildType,
    EnvironmentConfig,
    EnvironmentName,
    KmsKeyMaterial,
)

logger = logging.getLogger(__name__)

KMS_CLIENT_ASSET = "kms-client-linux-amd64"
TLS_KEYGEN_ASSET = "tls-keygen-linux-amd64"
KMS_ENCRYPTION_KEY_NAME = "kms-encryption-public-key.pem"
KMS_SIGNING_KEY_NAME = "kms-signing-public-key.pem"


class UnknownEnvironmentError(ValueError):
    """Raised for an environment name with no endpoint table entry."""


class LayeringAssetError(RuntimeError):
    """Raised when a bundled binary required for layering is missing."""


class KeyMaterialError(RuntimeError):
    """Raised when KMS public keys for an environment cannot be loaded."""


# ---------------------------------------------------------------------------
# Endpoint table
# ---------------------------------------------------------------------------

_ENDPOINTS: dict[EnvironmentName, dict[str, str]] = {
    EnvironmentName.SEPOLIA: {
        "kms_server_url": "http://kms.sepolia.enclaveforge.internal:8080",
        "user_api_server_url": "https://userapi-sepolia.enclaveforge.dev",
    },
    EnvironmentName.MAINNET_ALPHA: {
        "kms_server_url": "http://kms.mainnet.enclaveforge.internal:8080",
        "user_api_server_url": "https://userapi.enclaveforge.dev",
    },
}


def resolve_environment(
    name: EnvironmentName | str,
    build: BuildType | str = BuildType.PROD,
    *,
    user_api_url: str | None = None,
) -> EnvironmentConfig:
    """Look up the endpoints for *name*, optionally overriding the user API URL."""
    try:
        env_name = EnvironmentName(name)
    except ValueError as exc:
        known = ", ".join(e.value for e in EnvironmentName)
        raise UnknownEnvironmentError(
            f"Unknown environment: {name!r} (known: {known})"
        ) from exc
    endpoints = _ENDPOINTS[env_name]
    return EnvironmentConfig(
        name=env_name,
        build=BuildType(build),
        kms_server_url=endpoints["kms_server_url"],
        user_api_server_url=user_api_url or endpoints["user_api_server_url"],
    )


# ---------------------------------------------------------------------------
# Assets
# ---------------------------------------------------------------------------


class AssetPaths:
    """Locations of the bundled binaries and key files.

    Parameters
    ----------
    base:
        Root of the asset bundle.  Nothing outside it is consulted.
    """

    def __init__(self, base: Path) -> None:
        self.base = Path(base)

    @property
    def kms_client(self) -> Path:
        return self.base / "tools" / KMS_CLIENT_ASSET

    @property
    def tls_keygen(self) -> Path:
        return self.base / "tools" / TLS_KEYGEN_ASSET

    def key_dir(self, environment: EnvironmentName, build: BuildType) -> Path:
        return self.base / "keys" / environment.value / build.value

    def require_binary(self, path: Path) -> Path:
        """Return *path* if it exists, else raise ``LayeringAssetError``."""
        if not path.is_file():
            raise LayeringAssetError(
                f"{path.name} binary not found. Expected at: {path}. "
                f"Set ENCLAVEFORGE_ASSETS_PATH to the directory holding tools/ and keys/."
            )
        return path


def load_kms_keys(assets: AssetPaths, config: EnvironmentConfig) -> KmsKeyMaterial:
    """Read the encryption and signing public keys for *config*."""
    key_dir = assets.key_dir(config.name, config.build)
    encryption_path = key_dir / KMS_ENCRYPTION_KEY_NAME
    signing_path = key_dir / KMS_SIGNING_KEY_NAME
    for path in (encryption_path, signing_path):
        if not path.is_file():
            raise KeyMaterialError(
                f"KMS key not found at {path}. "
                f"Keys for {config.name.value}/{config.build.value} must be bundled."
            )
    logger.debug("Loaded KMS keys from %s", key_dir)
    return KmsKeyMaterial(
        environment=config.name,
        build=config.build,
        encryption_key=encryption_path.read_bytes(),
        signing_key=signing_path.read_bytes(),
    )
