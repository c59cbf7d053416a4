"""Deploy orchestrator: wires settings into components and runs the three paths.

Paths:

1. local: Dockerfile or remote image -> layering -> digest resolution ->
   release composition
2. verifiable build: build id -> canonical build -> provenance verification
   -> release composition from the build's reported digest
3. pre-built: registry digest lookup -> release composition

Every verified build and composed release is appended to the provenance
ledger when one is configured.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from functools import cached_property
from pathlib import Path

import httpx

from enclaveforge import __version__
from enclaveforge.bridge.build_api import BuildApiClient
from enclaveforge.bridge.crypto_bridge import RequestSigner, key_fingerprint
from enclaveforge.bridge.registry import RegistryDigestLookup
from enclaveforge.config import ForgeSettings
from enclaveforge.core.build_client import BuildClient
from enclaveforge.core.container_engine import ContainerEngine
from enclaveforge.core.digest_resolver import DigestResolver
from enclaveforge.core.environment import AssetPaths, load_kms_keys, resolve_environment
from enclaveforge.core.hasher import canonical_json_bytes, release_hash, sha256_hex
from enclaveforge.core.introspect import ImageIntrospector
from enclaveforge.core.layering import ImageLayeringEngine
from enclaveforge.core.provenance import (
    ProvenanceVerificationError,
    ProvenanceVerifier,
    VerifiableBuildResult,
    run_verifiable_build_and_verify,
)
from enclaveforge.core.provenance_ledger import ProvenanceLedger
from enclaveforge.core.release import ReleasePreparer
from enclaveforge.core.retry import RetryPolicy
from enclaveforge.models.build import Build, BuildProgress, BuildStatus, SubmitBuildRequest
from enclaveforge.models.environment import EnvironmentConfig, KmsKeyMaterial
from enclaveforge.models.ledger import ProvenanceRecord, RecordKind
from enclaveforge.models.provenance import ProvenanceFailed, ProvenanceVerified
from enclaveforge.models.release import PreparedRelease

logger = logging.getLogger(__name__)


class BuildNotReadyError(RuntimeError):
    """The build has not succeeded, or reported no image to release."""


class DeployOrchestrator:
    """Single entry point for release preparation and verifiable builds.

    Parameters
    ----------
    settings:
        Resolved configuration.
    engine:
        Container engine; built from settings if omitted.
    http_client:
        Shared HTTP client; created (and closed by ``aclose``) if omitted.
    ledger:
        Provenance ledger; built from ``settings.ledger_path`` if omitted.
    record:
        When False and no *ledger* is given, nothing is recorded.
    """

    def __init__(
        self,
        settings: ForgeSettings,
        *,
        engine: ContainerEngine | None = None,
        http_client: httpx.AsyncClient | None = None,
        ledger: ProvenanceLedger | None = None,
        record: bool = True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.environment: EnvironmentConfig = resolve_environment(
            settings.environment,
            settings.build_type,
            user_api_url=settings.user_api_url,
        )
        self.assets = AssetPaths(settings.assets_path)
        self.engine = engine or ContainerEngine(settings.container_engine, settings.platform)
        self._owns_client = http_client is None
        self.http = http_client or httpx.AsyncClient(timeout=settings.http_timeout_seconds)
        if ledger is None and record:
            ledger = ProvenanceLedger(settings.ledger_path)
        self.ledger = ledger
        self._sleep = sleep

    async def __aenter__(self) -> DeployOrchestrator:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http.aclose()

    # ------------------------------------------------------------------
    # Components (built on first use)
    # ------------------------------------------------------------------

    @cached_property
    def keys(self) -> KmsKeyMaterial:
        return load_kms_keys(self.assets, self.environment)

    @cached_property
    def build_api(self) -> BuildApiClient:
        signer = (
            RequestSigner(self.settings.api_signing_key)
            if self.settings.api_signing_key
            else None
        )
        return BuildApiClient(
            self.http,
            self.environment.user_api_server_url,
            client_id=self.settings.client_id,
            signer=signer,
        )

    @cached_property
    def builds(self) -> BuildClient:
        return BuildClient(
            self.build_api,
            poll_interval=self.settings.build_poll_interval_seconds,
            sleep=self._sleep,
        )

    @cached_property
    def verifier(self) -> ProvenanceVerifier:
        return ProvenanceVerifier(
            self.build_api, trusted_public_key=self.settings.provenance_public_key
        )

    @cached_property
    def registry(self) -> RegistryDigestLookup:
        return RegistryDigestLookup(self.http)

    @cached_property
    def layering(self) -> ImageLayeringEngine:
        s = self.settings
        return ImageLayeringEngine(
            self.engine,
            ImageIntrospector(self.engine),
            environment=self.environment,
            keys=self.keys,
            assets=self.assets,
            caddyfile_path=s.caddyfile_path,
            tool_version=__version__,
            log_redirect=s.log_redirect,
            push_verify_policy=RetryPolicy.escalating(
                s.push_verify_attempts, s.push_verify_backoff_step_seconds
            ),
            push_verify_initial_wait=s.push_verify_initial_wait_seconds,
            sleep=self._sleep,
        )

    @cached_property
    def resolver(self) -> DigestResolver:
        s = self.settings
        return DigestResolver(
            self.engine,
            platform=s.platform,
            policy=RetryPolicy.fixed(s.digest_retry_attempts, s.digest_retry_delay_seconds),
            sleep=self._sleep,
        )

    @cached_property
    def preparer(self) -> ReleasePreparer:
        s = self.settings
        return ReleasePreparer(
            self.layering,
            self.resolver,
            keys=self.keys,
            instance_type=s.instance_type,
            propagation_wait=s.registry_propagation_wait_seconds,
            grace_seconds=s.release_grace_seconds,
            sleep=self._sleep,
        )

    # ------------------------------------------------------------------
    # Release paths
    # ------------------------------------------------------------------

    async def prepare_release(
        self,
        app_id: str,
        *,
        dockerfile_path: Path | None = None,
        image_ref: str | None = None,
        target_ref: str | None = None,
        env_file_path: Path | None = None,
    ) -> PreparedRelease:
        """Local path: layer, push, resolve and compose."""
        prepared = await self.preparer.prepare(
            app_id,
            dockerfile_path=dockerfile_path,
            image_ref=image_ref,
            target_ref=target_ref,
            env_file_path=env_file_path,
        )
        self._record_release(prepared)
        return prepared

    async def prepare_release_from_prebuilt(
        self, app_id: str, image_ref: str, env_file_path: Path | None = None
    ) -> PreparedRelease:
        """Pre-built path: resolve the tag's digest from the registry, then compose."""
        digest = await self.registry.resolve_registry_digest(image_ref)
        prepared = self.preparer.from_image_digest(
            app_id, image_ref, str(digest), env_file_path
        )
        self._record_release(prepared)
        return prepared

    async def prepare_release_from_build(
        self, app_id: str, build_id: str, env_file_path: Path | None = None
    ) -> PreparedRelease:
        """Verifiable-build path: verify the build, then compose from its digest."""
        build = await self.builds.get(build_id)
        if build.status is not BuildStatus.SUCCESS:
            raise BuildNotReadyError(
                f"Build {build_id} is {build.status.value}; only successful builds can be released"
            )
        if not build.image_digest or not build.image_url:
            raise BuildNotReadyError(f"Build {build_id} reported no image")

        result = await self.verifier.verify(build_id)
        if isinstance(result, ProvenanceFailed):
            self._record_build(build, result)
            raise ProvenanceVerificationError(result)
        self._record_build(build, result)

        prepared = self.preparer.from_image_digest(
            app_id, build.image_url, build.image_digest, env_file_path
        )
        self._record_release(prepared, build=build)
        return prepared

    async def build_and_verify(
        self,
        request: SubmitBuildRequest,
        *,
        on_log: Callable[[str], None] | None = None,
        on_progress: Callable[[BuildProgress], None] | None = None,
    ) -> VerifiableBuildResult:
        result = await run_verifiable_build_and_verify(
            self.builds,
            self.verifier,
            request,
            timeout=self.settings.build_timeout_seconds,
            on_log=on_log,
            on_progress=on_progress,
        )
        self._record_build(result.build, result.provenance)
        return result

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    def _record_build(
        self, build: Build, result: ProvenanceVerified | ProvenanceFailed
    ) -> None:
        if self.ledger is None or not build.image_digest:
            return
        if isinstance(result, ProvenanceVerified):
            kind = RecordKind.BUILD_VERIFIED
            fingerprint = key_fingerprint(result.provenance_signature)
            payload_hash = sha256_hex(canonical_json_bytes(result.provenance_json))
        else:
            kind = RecordKind.BUILD_FAILED_VERIFICATION
            fingerprint = ""
            payload_hash = ""
        self.ledger.append(
            ProvenanceRecord(
                subject=build.image_digest,
                kind=kind,
                build_id=build.build_id,
                repo_url=build.repo_url,
                git_ref=build.git_ref,
                registry=build.image_url or "",
                signature_fingerprint=fingerprint,
                payload_hash=payload_hash,
                tool_version=__version__,
            )
        )

    def _record_release(self, prepared: PreparedRelease, build: Build | None = None) -> None:
        if self.ledger is None:
            return
        artifact = prepared.release.artifacts[0]
        self.ledger.append(
            ProvenanceRecord(
                subject="sha256:" + artifact.digest.hex(),
                kind=RecordKind.RELEASE_COMPOSED,
                build_id=build.build_id if build else "",
                repo_url=build.repo_url if build else "",
                git_ref=build.git_ref if build else "",
                registry=artifact.registry,
                payload_hash=release_hash(prepared.release),
                tool_version=__version__,
            )
        )
