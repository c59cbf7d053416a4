"""Image layering: inject the secret-fetch client, wrapper and TLS front-end.

Layering a source image produces a derived image that:

- carries ``kms-client``, the KMS signing public key and
  ``compute-source-env.sh`` (the new ENTRYPOINT);
- optionally carries ``tls-keygen``, a ``Caddyfile`` and ``caddy`` when the
  env file sets a non-localhost ``DOMAIN``;
- is labelled with the layering marker and the tool version.

An image that already carries the marker is never layered again.

Every attempt builds from its own temporary directory, which is removed on
every exit path including cancellation.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import tempfile
from collections.abc import Awaitable, Callable
from pathlib import Path

from enclaveforge.core.container_engine import (
    ContainerEngine,
    ContainerEngineError,
    ContainerEngineNotFoundError,
    ImageNotFoundError,
)
from enclaveforge.core.env_file import requires_tls
from enclaveforge.core.environment import AssetPaths
from enclaveforge.core.introspect import ImageIntrospector
from enclaveforge.core.retry import RetryExhaustedError, RetryPolicy, retry_with_backoff
from enclaveforge.core.templates import render_dockerfile, render_wrapper_script
from enclaveforge.models.environment import EnvironmentConfig, KmsKeyMaterial
from enclaveforge.models.image import ImageMetadata, LogRedirect, strip_tag_and_digest

logger = logging.getLogger(__name__)

LAYERED_DOCKERFILE_NAME = "Dockerfile.layered"
WRAPPER_SCRIPT_NAME = "compute-source-env.sh"
KMS_CLIENT_NAME = "kms-client"
KMS_SIGNING_KEY_NAME = "kms-signing-public-key.pem"
TLS_KEYGEN_NAME = "tls-keygen"
CADDYFILE_NAME = "Caddyfile"
BUILD_DIR_PREFIX = "enclaveforge-layered-build-"
TEMP_IMAGE_PREFIX = "enclaveforge-temp-"

_DATA_MODE = 0o644
_EXEC_MODE = 0o755


class TLSConfigurationError(RuntimeError):
    """TLS is required by the env file but no Caddyfile has been generated."""


class PushVerificationError(RuntimeError):
    """The pushed image never appeared in the registry."""


def default_layered_ref(source_ref: str) -> str:
    """Target for layering a remote image without overwriting it."""
    if "@" in source_ref:
        return f"{strip_tag_and_digest(source_ref)}:layered"
    return f"{source_ref}-layered"


class ImageLayeringEngine:
    """Builds, pushes and verifies layered images.

    Parameters
    ----------
    engine:
        Container engine used for build, tag, push and manifest inspect.
    introspector:
        Reads source image configuration.
    environment:
        Supplies the KMS and user API URLs baked into the wrapper script.
    keys:
        KMS key material; the signing key is copied into the image.
    assets:
        Where the bundled ``kms-client`` and ``tls-keygen`` binaries live.
    caddyfile_path:
        Reverse-proxy config produced by the separate TLS setup step.
    tool_version:
        Written into the layering marker label.
    push_verify_policy:
        Attempts and escalating delays for post-push manifest checks.
    push_verify_initial_wait:
        Seconds to wait after ``push`` before the first check.
    """

    def __init__(
        self,
        engine: ContainerEngine,
        introspector: ImageIntrospector,
        *,
        environment: EnvironmentConfig,
        keys: KmsKeyMaterial,
        assets: AssetPaths,
        caddyfile_path: Path,
        tool_version: str,
        log_redirect: LogRedirect = LogRedirect.ALWAYS,
        push_verify_policy: RetryPolicy | None = None,
        push_verify_initial_wait: float = 3.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._engine = engine
        self._introspector = introspector
        self._environment = environment
        self._keys = keys
        self._assets = assets
        self._caddyfile_path = Path(caddyfile_path)
        self._tool_version = tool_version
        self._log_redirect = LogRedirect(log_redirect)
        self._push_verify_policy = push_verify_policy or RetryPolicy.escalating(5, 2.0)
        self._push_verify_initial_wait = push_verify_initial_wait
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def layer_from_dockerfile(
        self,
        dockerfile_path: Path,
        target_ref: str,
        env_file_path: Path | None = None,
    ) -> str:
        """Build *dockerfile_path*, layer the result and push it as *target_ref*."""
        dockerfile_path = Path(dockerfile_path)
        base_tag = f"{TEMP_IMAGE_PREFIX}{dockerfile_path.name.lower()}"
        logger.info("Building base image from %s", dockerfile_path)
        await self._engine.build(dockerfile_path.parent, dockerfile_path, base_tag)

        metadata = await self._introspector.inspect(base_tag)
        if metadata.is_layered:
            logger.info(
                "Base image already layered (version %s); publishing as-is",
                metadata.layered_by_version,
            )
            await self._engine.tag(base_tag, target_ref)
            await self._push_and_verify(target_ref)
            return target_ref
        return await self._layer_local_image(metadata, target_ref, env_file_path)

    async def layer_remote_if_needed(
        self,
        source_ref: str,
        env_file_path: Path | None = None,
        target_ref: str | None = None,
    ) -> str:
        """Layer *source_ref* unless it already carries the marker label.

        Returns the reference to deploy: *source_ref* unchanged when no
        layering was needed, else the pushed layered reference.
        """
        metadata = await self._introspector.ensure_local(source_ref)
        if metadata.is_layered:
            logger.info("Image %s is already layered; nothing to do", source_ref)
            return source_ref
        target = target_ref or default_layered_ref(source_ref)
        logger.info("Layering %s as %s", source_ref, target)
        return await self._layer_local_image(metadata, target, env_file_path)

    # ------------------------------------------------------------------
    # Layering
    # ------------------------------------------------------------------

    async def _layer_local_image(
        self,
        metadata: ImageMetadata,
        target_ref: str,
        env_file_path: Path | None,
    ) -> str:
        include_tls = requires_tls(env_file_path)
        if include_tls:
            logger.debug("DOMAIN set in %s; including TLS components", env_file_path)

        dockerfile = render_dockerfile(
            base_image=metadata.reference,
            original_cmd=metadata.original_command,
            original_user=metadata.user,
            log_redirect=self._log_redirect,
            include_tls=include_tls,
            tool_version=self._tool_version,
        )
        script = render_wrapper_script(
            kms_server_url=self._environment.kms_server_url,
            user_api_url=self._environment.user_api_server_url,
        )

        build_dir = self._prepare_build_directory(dockerfile, script, include_tls)
        try:
            await self._engine.build(
                build_dir, build_dir / LAYERED_DOCKERFILE_NAME, target_ref
            )
            await self._push_and_verify(target_ref)
        finally:
            shutil.rmtree(build_dir, ignore_errors=True)
            logger.debug("Removed build directory %s", build_dir)

        logger.info("Published layered image %s", target_ref)
        return target_ref

    def _prepare_build_directory(
        self, dockerfile: str, script: str, include_tls: bool
    ) -> Path:
        """Create the scratch build context.  Removed again if any step fails."""
        kms_client = self._assets.require_binary(self._assets.kms_client)
        tls_keygen = (
            self._assets.require_binary(self._assets.tls_keygen) if include_tls else None
        )
        if include_tls and not self._caddyfile_path.is_file():
            raise TLSConfigurationError(
                "TLS is enabled (DOMAIN is set) but no Caddyfile was found at "
                f"{self._caddyfile_path}. Run the TLS configuration step first."
            )

        build_dir = Path(tempfile.mkdtemp(prefix=BUILD_DIR_PREFIX))
        try:
            _write(build_dir / LAYERED_DOCKERFILE_NAME, dockerfile.encode("utf-8"), _DATA_MODE)
            _write(build_dir / WRAPPER_SCRIPT_NAME, script.encode("utf-8"), _EXEC_MODE)
            _write(build_dir / KMS_SIGNING_KEY_NAME, self._keys.signing_key, _DATA_MODE)
            _copy(kms_client, build_dir / KMS_CLIENT_NAME, _EXEC_MODE)
            if tls_keygen is not None:
                _copy(tls_keygen, build_dir / TLS_KEYGEN_NAME, _EXEC_MODE)
                _copy(self._caddyfile_path, build_dir / CADDYFILE_NAME, _DATA_MODE)
        except BaseException:
            shutil.rmtree(build_dir, ignore_errors=True)
            raise
        return build_dir

    # ------------------------------------------------------------------
    # Push + verification
    # ------------------------------------------------------------------

    async def _push_and_verify(self, image_ref: str) -> None:
        await self._engine.push(image_ref)
        logger.debug("Waiting %.1fs for the registry to index %s", self._push_verify_initial_wait, image_ref)
        await self._sleep(self._push_verify_initial_wait)
        try:
            await retry_with_backoff(
                lambda: self._engine.manifest_inspect(image_ref),
                self._push_verify_policy,
                _manifest_check_retryable,
                sleep=self._sleep,
            )
        except RetryExhaustedError as exc:
            if isinstance(exc.last_error, ImageNotFoundError):
                raise PushVerificationError(
                    f"Image {image_ref} was not found in the registry after "
                    f"{exc.attempts} attempts. Check your registry login and push "
                    f"access, then try: docker manifest inspect {image_ref}"
                ) from exc.last_error
            logger.warning("Could not verify push of %s: %s", image_ref, exc.last_error)
            return
        logger.debug("Verified %s in registry", image_ref)


def _manifest_check_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ContainerEngineError) and not isinstance(
        exc, ContainerEngineNotFoundError
    )


def _write(path: Path, data: bytes, mode: int) -> None:
    path.write_bytes(data)
    os.chmod(path, mode)


def _copy(source: Path, dest: Path, mode: int) -> None:
    shutil.copyfile(source, dest, follow_symlinks=True)
    os.chmod(dest, mode)
