"""Runtime configuration: env-driven via pydantic-settings.

Reads from a .env file and ENCLAVEFORGE_* environment variables.  The
settings object is created once by the entry point (CLI or caller) and the
values are passed into components; nothing reads it as ambient state.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from enclaveforge.models.environment import BuildType, EnvironmentName
from enclaveforge.models.image import DEFAULT_PLATFORM, LogRedirect


class ForgeSettings(BaseSettings):
    """Tool configuration with environment variable overrides.

    Examples
    --------
    Override via environment::

        export ENCLAVEFORGE_ENVIRONMENT=mainnet-alpha
        export ENCLAVEFORGE_LOG_LEVEL=DEBUG
        export ENCLAVEFORGE_ASSETS_PATH=/opt/enclaveforge/assets

    Or via .env file::

        ENCLAVEFORGE_BUILD_TYPE=dev
        ENCLAVEFORGE_CLIENT_ID=my-ci
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="ENCLAVEFORGE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Target environment
    environment: EnvironmentName = EnvironmentName.SEPOLIA
    build_type: BuildType = BuildType.PROD
    user_api_url: str | None = None  # overrides the environment's default
    client_id: str = ""

    # Logging
    log_level: str = "INFO"
    debug: bool = False

    # Layering inputs
    assets_path: Path = Path(".enclaveforge/assets")  # keys/ and tools/ live here
    caddyfile_path: Path = Path("Caddyfile")
    container_engine: str = "docker"
    platform: str = DEFAULT_PLATFORM
    log_redirect: LogRedirect = LogRedirect.ALWAYS
    instance_type: str = "g1-standard-4t"

    # Hex-encoded Ed25519 material
    api_signing_key: str = ""  # private seed used to sign build API requests
    provenance_public_key: str = ""  # trusted key for local provenance checks

    # HTTP
    http_timeout_seconds: float = 60.0

    # Build polling
    build_poll_interval_seconds: float = 2.0
    build_timeout_seconds: float = 1800.0

    # Digest resolution: fixed delay between attempts
    digest_retry_attempts: int = 3
    digest_retry_delay_seconds: float = 2.0

    # Push verification: escalating delay between attempts
    push_verify_attempts: int = 5
    push_verify_initial_wait_seconds: float = 3.0
    push_verify_backoff_step_seconds: float = 2.0

    registry_propagation_wait_seconds: float = 3.0
    release_grace_seconds: int = 3600

    # Provenance record
    ledger_path: Path = Path(".enclaveforge/provenance.db")
