"""Resolve a pushed image reference to its content digest and registry path.

A just-pushed tag may not be served yet, so resolution is retried with a
fixed delay.  A platform mismatch is a validation problem and is never
retried.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from enclaveforge.core.container_engine import (
    ContainerEngine,
    ContainerEngineError,
    ContainerEngineNotFoundError,
)
from enclaveforge.core.retry import RetryExhaustedError, RetryPolicy, retry_with_backoff
from enclaveforge.models.digest import SHA256_PREFIX, Digest
from enclaveforge.models.image import DEFAULT_PLATFORM, ResolvedImage, registry_name

logger = logging.getLogger(__name__)

_REPO_DIGEST_MARKER = "@" + SHA256_PREFIX


class PlatformMismatchError(ValueError):
    """The image was not built for the platform enclaves run on."""

    def __init__(self, image_ref: str, found: list[str], required: str) -> None:
        found_text = ", ".join(found) if found else "unknown"
        super().__init__(
            f"Image {image_ref} is not available for {required} (found: {found_text}). "
            f"Rebuild it with: docker build --platform {required} ..."
        )
        self.image_ref = image_ref
        self.found = found
        self.required = required


class DigestExtractionError(RuntimeError):
    """The manifest or inspect data held no usable digest."""


class DigestResolutionError(RuntimeError):
    """Digest resolution kept failing until every retry attempt was used."""


def digest_from_repo_digest(repo_digest: str) -> Digest:
    """``repo@sha256:<hex>`` -> Digest."""
    idx = repo_digest.rfind(_REPO_DIGEST_MARKER)
    if idx == -1:
        raise DigestExtractionError(f"Invalid repo digest format: {repo_digest}")
    return Digest.parse(repo_digest[idx + 1:])


class DigestResolver:
    """Looks up image digests through the container engine.

    Parameters
    ----------
    engine:
        Used for ``manifest inspect`` and ``image inspect``.
    platform:
        The one platform a Release may reference.
    policy:
        Retry schedule; defaults to three attempts two seconds apart.
    """

    def __init__(
        self,
        engine: ContainerEngine,
        *,
        platform: str = DEFAULT_PLATFORM,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._engine = engine
        self._platform = platform
        self._policy = policy or RetryPolicy.fixed(3, 2.0)
        self._sleep = sleep

    async def resolve_once(self, image_ref: str) -> ResolvedImage:
        """Single resolution attempt, no retries."""
        manifest = await self._engine.manifest_inspect(image_ref)
        entries = manifest.get("manifests") or []
        if entries:
            digest = self._select_platform_entry(image_ref, entries)
        else:
            digest = await self._single_platform_digest(image_ref, manifest)
        return ResolvedImage(
            image_ref=image_ref,
            digest=digest,
            registry=registry_name(image_ref),
            platform=self._platform,
        )

    def _select_platform_entry(
        self, image_ref: str, entries: list[dict[str, Any]]
    ) -> Digest:
        seen: list[str] = []
        for entry in entries:
            platform = entry.get("platform") or {}
            if not platform:
                continue
            name = f"{platform.get('os', '')}/{platform.get('architecture', '')}"
            seen.append(name)
            if name == self._platform:
                return Digest.parse(entry["digest"])
        raise PlatformMismatchError(image_ref, seen, self._platform)

    async def _single_platform_digest(
        self, image_ref: str, manifest: dict[str, Any]
    ) -> Digest:
        config_digest = (manifest.get("config") or {}).get("digest")
        data = await self._engine.image_inspect(image_ref)
        architecture = data.get("Architecture")
        if not architecture:
            if config_digest:
                logger.debug("No platform info for %s; assuming %s", image_ref, self._platform)
                return Digest.parse(config_digest)
            raise DigestExtractionError(f"Could not determine platform for {image_ref}")

        platform = f"{data.get('Os') or 'linux'}/{architecture}"
        if platform != self._platform:
            raise PlatformMismatchError(image_ref, [platform], self._platform)

        repo_digests = data.get("RepoDigests") or []
        if repo_digests:
            return digest_from_repo_digest(repo_digests[0])
        if config_digest:
            return Digest.parse(config_digest)
        raise DigestExtractionError(f"Could not extract digest for {image_ref}")

    async def resolve_digest_and_registry(self, image_ref: str) -> ResolvedImage:
        """Resolve with retries.

        Raises
        ------
        PlatformMismatchError, DigestFormatError
            Immediately, without retrying.
        DigestResolutionError
            Once every attempt has failed.
        """

        def _on_retry(attempt: int, exc: BaseException, delay: float) -> None:
            logger.info(
                "Digest extraction failed (%s); retrying in %.0fs (%d left)",
                exc,
                delay,
                self._policy.max_attempts - attempt,
            )

        try:
            resolved = await retry_with_backoff(
                lambda: self.resolve_once(image_ref),
                self._policy,
                _resolution_retryable,
                on_retry=_on_retry,
                sleep=self._sleep,
            )
        except RetryExhaustedError as exc:
            raise DigestResolutionError(
                f"Failed to get the image digest after {exc.attempts} attempts. "
                f"This usually means the image was not pushed successfully.\n"
                f"Original error: {exc.last_error}\n"
                f"Verify the image exists: docker manifest inspect {image_ref}"
            ) from exc.last_error
        logger.info("Image digest: %s", resolved.digest)
        logger.info("Registry: %s", resolved.registry)
        return resolved


def _resolution_retryable(exc: BaseException) -> bool:
    if isinstance(exc, ContainerEngineNotFoundError):
        return False
    return isinstance(exc, (ContainerEngineError, DigestExtractionError))
