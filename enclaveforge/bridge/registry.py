"""Registry digest lookup for pre-built images (Docker Registry HTTP API v2).

Resolves ``docker.io/<owner>/<repo>:<tag>`` to its immutable content
digest without a container engine: scoped bearer-token exchange, then a
manifest HEAD (GET on failure), reading ``Docker-Content-Digest``.
"""

from __future__ import annotations

import logging
import re
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ConfigDict

from enclaveforge.models.digest import Digest, is_digest_string

logger = logging.getLogger(__name__)

DOCKER_HUB_AUTH_URL = "https://auth.docker.io/token"
DOCKER_HUB_SERVICE = "registry.docker.io"
DOCKER_HUB_REGISTRY_URL = "https://registry-1.docker.io"

MANIFEST_ACCEPT = ", ".join(
    [
        "application/vnd.docker.distribution.manifest.list.v2+json",
        "application/vnd.docker.distribution.manifest.v2+json",
        "application/vnd.oci.image.index.v1+json",
        "application/vnd.oci.image.manifest.v1+json",
    ]
)

_DOCKER_HUB_REF_RE = re.compile(r"^docker\.io/([^/]+)/([^:@/]+):([^@\s]+)$", re.IGNORECASE)


class RegistryError(RuntimeError):
    """The registry refused or answered unexpectedly."""


class ImageRefFormatError(ValueError):
    """The image reference is not ``docker.io/<owner>/<repo>:<tag>``."""


class DockerHubRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    owner: str
    repo: str
    tag: str

    @property
    def repository(self) -> str:
        return f"{self.owner}/{self.repo}"


def parse_docker_hub_ref(image_ref: str) -> DockerHubRef:
    """Split ``docker.io/<owner>/<repo>:<tag>``; owner and repo are lowercased."""
    match = _DOCKER_HUB_REF_RE.match(image_ref.strip())
    if not match:
        raise ImageRefFormatError(
            f"Image ref must match docker.io/<owner>/<repo>:<tag>, got: {image_ref!r}"
        )
    owner, repo, tag = match.groups()
    return DockerHubRef(owner=owner.lower(), repo=repo.lower(), tag=tag)


class RegistryDigestLookup:
    """Tag -> digest resolution against a token-authenticated registry.

    Parameters
    ----------
    client:
        Shared ``httpx.AsyncClient``.
    allowed_repositories:
        If non-empty, only these ``owner/repo`` values are accepted.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        auth_url: str = DOCKER_HUB_AUTH_URL,
        service: str = DOCKER_HUB_SERVICE,
        registry_url: str = DOCKER_HUB_REGISTRY_URL,
        allowed_repositories: frozenset[str] = frozenset(),
    ) -> None:
        self._client = client
        self._auth_url = auth_url
        self._service = service
        self._registry_url = registry_url.rstrip("/")
        self._allowed = allowed_repositories

    async def fetch_token(self, ref: DockerHubRef) -> str:
        params = {"service": self._service, "scope": f"repository:{ref.repository}:pull"}
        try:
            response = await self._client.get(self._auth_url, params=params)
        except httpx.HTTPError as exc:
            raise RegistryError(f"Registry token request failed: {exc}") from exc
        if not response.is_success:
            raise RegistryError(
                f"Failed to fetch registry token ({response.status_code}): "
                f"{response.text.strip() or response.reason_phrase}"
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise RegistryError(
                f"Registry token response is not JSON: {response.text[:200].strip()}"
            ) from exc
        token = body.get("token") if isinstance(body, dict) else None
        if not token or not isinstance(token, str):
            raise RegistryError("Registry token response missing 'token'")
        return token

    async def resolve_registry_digest(self, image_ref: str) -> Digest:
        """Return the content digest *image_ref*'s tag currently points at."""
        ref = parse_docker_hub_ref(image_ref)
        if self._allowed and ref.repository not in self._allowed:
            allowed = ", ".join(sorted(self._allowed))
            raise ImageRefFormatError(
                f"Image ref must be from one of: {allowed} (got {ref.repository})"
            )

        token = await self.fetch_token(ref)
        url = f"{self._registry_url}/v2/{ref.repository}/manifests/{quote(ref.tag, safe='')}"
        headers = {"Authorization": f"Bearer {token}", "Accept": MANIFEST_ACCEPT}
        try:
            response = await self._client.head(url, headers=headers)
            if not response.is_success:
                logger.debug("HEAD %s -> %d; retrying with GET", url, response.status_code)
                response = await self._client.get(url, headers=headers)
        except httpx.HTTPError as exc:
            raise RegistryError(f"Manifest request for {image_ref} failed: {exc}") from exc

        if not response.is_success:
            raise RegistryError(
                f"Failed to resolve digest for {image_ref} ({response.status_code}) at {url}: "
                f"{response.text.strip() or response.reason_phrase}"
            )
        digest = response.headers.get("Docker-Content-Digest")
        if not digest:
            raise RegistryError(
                f"Registry response missing Docker-Content-Digest header for {image_ref}"
            )
        if not is_digest_string(digest):
            raise RegistryError(f"Unexpected digest format from registry: {digest}")
        logger.info("Resolved %s to %s", image_ref, digest)
        return Digest.parse(digest)
