"""Deployment environment models: resolved once at startup and injected."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class EnvironmentName(str, Enum):
    """Target networks the platform runs on."""

    SEPOLIA = "sepolia"
    MAINNET_ALPHA = "mainnet-alpha"


class BuildType(str, Enum):
    """Which KMS key set an environment uses."""

    DEV = "dev"
    PROD = "prod"


class EnvironmentConfig(BaseModel):
    """Endpoints for one (environment, build type) pair."""

    model_config = ConfigDict(frozen=True)

    name: EnvironmentName
    build: BuildType = BuildType.PROD
    kms_server_url: str
    user_api_server_url: str


class KmsKeyMaterial(BaseModel):
    """PEM-encoded KMS public keys for one (environment, build type) pair.

    ``encryption_key`` wraps the per-release content key.
    ``signing_key`` is copied into layered images so the secret-fetch
    client can authenticate KMS responses.
    """

    model_config = ConfigDict(frozen=True)

    environment: EnvironmentName
    build: BuildType
    encryption_key: bytes
    signing_key: bytes
