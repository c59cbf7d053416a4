"""Release composition and preparation.

``compose_release`` is the single place a Release is constructed.  The
preparer drives the local path (layer, push, resolve digest, encrypt) and
the digest-known paths (pre-built image, verifiable build) into it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from pathlib import Path

from enclaveforge.core.digest_resolver import DigestResolver
from enclaveforge.core.encryption import split_and_encrypt
from enclaveforge.core.layering import ImageLayeringEngine
from enclaveforge.models.digest import Digest
from enclaveforge.models.environment import KmsKeyMaterial
from enclaveforge.models.image import registry_name
from enclaveforge.models.release import PreparedRelease, Release, ReleaseArtifact

logger = logging.getLogger(__name__)

DEFAULT_GRACE_SECONDS = 3600


def compose_release(
    digest: Digest | bytes | str,
    registry: str,
    public_env: bytes,
    encrypted_env: bytes,
    *,
    now: float | None = None,
    grace_seconds: int = DEFAULT_GRACE_SECONDS,
) -> Release:
    """Assemble a Release with ``upgrade_by_time = now + grace_seconds``.

    Raises
    ------
    DigestLengthError
        If raw digest bytes are not exactly 32 bytes.
    DigestFormatError
        If a digest string is not ``sha256:<64 lowercase hex>``.
    """
    checked = Digest.coerce(digest)
    if not registry:
        raise ValueError("Release registry must not be empty")
    issued_at = int(now if now is not None else time.time())
    return Release(
        artifacts=[ReleaseArtifact(digest=checked.value, registry=registry)],
        upgrade_by_time=issued_at + grace_seconds,
        public_env=public_env,
        encrypted_env=encrypted_env,
    )


class ReleasePreparer:
    """Turns an image source plus env file into a Release.

    Parameters
    ----------
    layering:
        Layers and pushes images on the local path.
    resolver:
        Resolves the pushed reference to a digest.
    keys:
        KMS key material used to encrypt the private environment.
    instance_type:
        Recorded as ``MACHINE_TYPE_PUBLIC`` in the public environment.
    propagation_wait:
        Seconds to wait after a push before resolving its digest.
    """

    def __init__(
        self,
        layering: ImageLayeringEngine,
        resolver: DigestResolver,
        *,
        keys: KmsKeyMaterial,
        instance_type: str,
        propagation_wait: float = 3.0,
        grace_seconds: int = DEFAULT_GRACE_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._layering = layering
        self._resolver = resolver
        self._keys = keys
        self._instance_type = instance_type
        self._propagation_wait = propagation_wait
        self._grace_seconds = grace_seconds
        self._sleep = sleep
        self._clock = clock

    async def prepare(
        self,
        app_id: str,
        *,
        dockerfile_path: Path | None = None,
        image_ref: str | None = None,
        target_ref: str | None = None,
        env_file_path: Path | None = None,
    ) -> PreparedRelease:
        """Local path: layer (if needed), resolve the digest, encrypt, compose.

        Exactly one of *dockerfile_path* and *image_ref* must be given.
        *target_ref* is required with *dockerfile_path*.
        """
        if (dockerfile_path is None) == (image_ref is None):
            raise ValueError("Provide exactly one of dockerfile_path or image_ref")

        if dockerfile_path is not None:
            if not target_ref:
                raise ValueError("target_ref is required when building from a Dockerfile")
            final_ref = await self._layering.layer_from_dockerfile(
                Path(dockerfile_path), target_ref, env_file_path
            )
            pushed = True
        else:
            assert image_ref is not None
            final_ref = await self._layering.layer_remote_if_needed(
                image_ref, env_file_path, target_ref
            )
            pushed = final_ref != image_ref

        if pushed and self._propagation_wait > 0:
            logger.info(
                "Waiting %.0f seconds for registry propagation...", self._propagation_wait
            )
            await self._sleep(self._propagation_wait)

        resolved = await self._resolver.resolve_digest_and_registry(final_ref)
        return self._compose(app_id, resolved.digest, resolved.registry, final_ref, env_file_path)

    def from_image_digest(
        self,
        app_id: str,
        image_ref: str,
        image_digest: str,
        env_file_path: Path | None = None,
    ) -> PreparedRelease:
        """Digest-known path: pre-built images and verifiable builds.

        Nothing is layered or resolved; *image_digest* must already be
        ``sha256:<64 lowercase hex>``.
        """
        digest = Digest.parse(image_digest)
        return self._compose(
            app_id, digest, registry_name(image_ref), image_ref, env_file_path
        )

    def _compose(
        self,
        app_id: str,
        digest: Digest,
        registry: str,
        final_ref: str,
        env_file_path: Path | None,
    ) -> PreparedRelease:
        env = split_and_encrypt(env_file_path, app_id, self._keys, self._instance_type)
        release = compose_release(
            digest,
            registry,
            env.public_env,
            env.encrypted_env,
            now=self._clock(),
            grace_seconds=self._grace_seconds,
        )
        logger.info("Composed release for %s (%s)", registry, digest)
        return PreparedRelease(release=release, final_image_ref=final_ref)
