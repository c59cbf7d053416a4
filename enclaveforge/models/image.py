"""Container image models: references, introspected metadata, resolution results."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict

from enclaveforge.models.digest import Digest

# Label written by the layering Dockerfile.  Its presence marks an image
# as already layered; the value is the tool version that did the layering.
LAYERING_MARKER_LABEL = "ENCLAVEFORGE_cli_version"

DEFAULT_PLATFORM = "linux/amd64"
DOCKER_HUB_REGISTRY = "docker.io"


class LogRedirect(str, Enum):
    """Whether the workload's stdout/stderr is forwarded off the enclave."""

    OFF = "off"
    ALWAYS = "always"


class ImageMetadata(BaseModel):
    """Configuration extracted from an existing image by ``image inspect``."""

    model_config = ConfigDict(frozen=True)

    reference: str
    cmd: list[str] = []
    entrypoint: list[str] = []
    user: str = ""
    labels: dict[str, str] = {}
    os: str = ""
    architecture: str = ""
    repo_digests: list[str] = []

    @property
    def is_layered(self) -> bool:
        """True if the layering marker label is present."""
        return LAYERING_MARKER_LABEL in self.labels

    @property
    def layered_by_version(self) -> str | None:
        return self.labels.get(LAYERING_MARKER_LABEL)

    @property
    def original_command(self) -> list[str]:
        """The full command the image would run: ENTRYPOINT followed by CMD.

        When both are set, CMD supplies arguments to ENTRYPOINT, so neither
        one alone is the command.
        """
        return [*self.entrypoint, *self.cmd]

    @property
    def platform(self) -> str:
        if not self.os or not self.architecture:
            return ""
        return f"{self.os}/{self.architecture}"


class ResolvedImage(BaseModel):
    """An image reference pinned to its immutable content digest."""

    model_config = ConfigDict(frozen=True)

    image_ref: str
    digest: Digest
    registry: str
    platform: str = DEFAULT_PLATFORM


def strip_tag_and_digest(image_ref: str) -> str:
    """Remove a trailing ``:tag`` and/or ``@sha256:...`` from *image_ref*."""
    name = image_ref.strip()
    at = name.find("@")
    if at != -1:
        name = name[:at]
    colon = name.rfind(":")
    if colon != -1 and "/" not in name[colon + 1:]:
        name = name[:colon]
    return name


def registry_name(image_ref: str) -> str:
    """Return the repository path that a Release artifact records.

    ``ghcr.io/acme/app:v1`` -> ``ghcr.io/acme/app``;
    ``acme/app:v1`` -> ``docker.io/acme/app``;
    ``nginx`` -> ``docker.io/library/nginx``.
    """
    name = strip_tag_and_digest(image_ref)
    parts = name.split("/")
    if len(parts) == 1:
        return f"{DOCKER_HUB_REGISTRY}/library/{name}"
    first = parts[0]
    if "." in first or ":" in first or first == "localhost":
        return name
    return f"{DOCKER_HUB_REGISTRY}/{name}"
