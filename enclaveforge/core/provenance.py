"""Provenance verification for verifiable builds.

``ProvenanceVerifier.verify`` separates "the answer is no" (a
``ProvenanceFailed`` value) from "we could not ask" (an exception from the
transport layer).  When a trusted Ed25519 key is configured, a result the
service reports as verified is re-checked locally over the DSSE envelope.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum

from pydantic import BaseModel, ConfigDict

from enclaveforge.bridge.build_api import BuildApiClient
from enclaveforge.bridge.crypto_bridge import verify_dsse
from enclaveforge.core.build_client import BuildClient
from enclaveforge.models.build import Build, BuildProgress, SubmitBuildRequest, is_commit_sha
from enclaveforge.models.digest import SHA256_PREFIX, Digest
from enclaveforge.models.provenance import (
    ProvenanceFailed,
    ProvenanceVerified,
    parse_provenance_result,
)

logger = logging.getLogger(__name__)


class IdentifierKind(str, Enum):
    BUILD_ID = "build_id"
    IMAGE_DIGEST = "image_digest"
    COMMIT_SHA = "commit_sha"


def classify_identifier(identifier: str) -> IdentifierKind:
    """What kind of identifier was passed to ``verify``.

    Anything starting with ``sha256:`` must be a well-formed digest.
    """
    if identifier.startswith(SHA256_PREFIX):
        Digest.parse(identifier)
        return IdentifierKind.IMAGE_DIGEST
    if is_commit_sha(identifier):
        return IdentifierKind.COMMIT_SHA
    return IdentifierKind.BUILD_ID


class ProvenanceVerificationError(RuntimeError):
    """A freshly built artifact failed provenance verification."""

    def __init__(self, result: ProvenanceFailed) -> None:
        super().__init__(f"Provenance verification failed: {result.error}")
        self.result = result


class ProvenanceVerifier:
    """Asks the build service to verify provenance, optionally double-checking.

    Parameters
    ----------
    api:
        Build service client.
    trusted_public_key:
        Hex Ed25519 key the provenance signer must match.  Empty disables
        the local check.
    """

    def __init__(self, api: BuildApiClient, *, trusted_public_key: str = "") -> None:
        self._api = api
        self._trusted_public_key = trusted_public_key

    async def verify(self, identifier: str) -> ProvenanceVerified | ProvenanceFailed:
        """Verify by build id, image digest or commit SHA."""
        kind = classify_identifier(identifier)
        logger.debug("Verifying provenance for %s %s", kind.value, identifier)
        raw = await self._api.verify(identifier)
        result = parse_provenance_result(raw)
        if isinstance(result, ProvenanceFailed):
            logger.info("Provenance for %s not verified: %s", identifier, result.error)
            return result
        if self._trusted_public_key:
            return self._check_locally(result)
        return result

    def _check_locally(
        self, result: ProvenanceVerified
    ) -> ProvenanceVerified | ProvenanceFailed:
        if not (result.payload_type and result.payload):
            return ProvenanceFailed(
                error="Service reported verified but returned no DSSE payload to check",
                build_id=result.build_id or None,
            )
        if not verify_dsse(
            result.payload_type,
            result.payload,
            result.provenance_signature,
            self._trusted_public_key,
        ):
            logger.warning("Provenance signature for build %s does not verify locally", result.build_id)
            return ProvenanceFailed(
                error="Provenance signature does not verify against the trusted key",
                build_id=result.build_id or None,
            )
        return result


# ---------------------------------------------------------------------------
# Build-and-verify orchestration
# ---------------------------------------------------------------------------


class VerifiableBuildResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    build: Build
    provenance: ProvenanceVerified


async def run_verifiable_build_and_verify(
    client: BuildClient,
    verifier: ProvenanceVerifier,
    request: SubmitBuildRequest,
    *,
    timeout: float,
    on_log: Callable[[str], None] | None = None,
    on_progress: Callable[[BuildProgress], None] | None = None,
) -> VerifiableBuildResult:
    """Submit, wait, fetch the canonical build and verify it.

    Raises
    ------
    BuildFailedError
        If the build fails.
    ProvenanceVerificationError
        If the finished build does not verify.
    """
    build = await client.submit_and_wait(
        request, timeout=timeout, on_log=on_log, on_progress=on_progress
    )
    result = await verifier.verify(build.build_id)
    if isinstance(result, ProvenanceFailed):
        raise ProvenanceVerificationError(result)
    if not build.image_digest:
        raise ProvenanceVerificationError(
            ProvenanceFailed(
                error="Build succeeded but reported no image digest",
                build_id=build.build_id,
            )
        )
    return VerifiableBuildResult(build=build, provenance=result)
