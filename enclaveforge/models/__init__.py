"""enclaveforge data models: all Pydantic v2, all frozen (immutable)."""

from enclaveforge.models.build import (
    VALID_BUILD_TRANSITIONS,
    Build,
    BuildProgress,
    BuildStatus,
    CommitShaError,
    LogChunk,
    SubmitBuildRequest,
    SubmitBuildResponse,
    assert_commit_sha,
)
from enclaveforge.models.digest import Digest, DigestFormatError, DigestLengthError
from enclaveforge.models.environment import (
    BuildType,
    EnvironmentConfig,
    EnvironmentName,
    KmsKeyMaterial,
)
from enclaveforge.models.image import (
    LAYERING_MARKER_LABEL,
    ImageMetadata,
    LogRedirect,
    ResolvedImage,
)
from enclaveforge.models.ledger import ProvenanceRecord, RecordKind
from enclaveforge.models.provenance import (
    ProvenanceFailed,
    ProvenanceResult,
    ProvenanceVerified,
)
from enclaveforge.models.release import (
    EncryptedEnvironment,
    PreparedRelease,
    Release,
    ReleaseArtifact,
)

__all__ = [
    # digest
    "Digest",
    "DigestFormatError",
    "DigestLengthError",
    # image
    "LAYERING_MARKER_LABEL",
    "ImageMetadata",
    "LogRedirect",
    "ResolvedImage",
    # environment
    "BuildType",
    "EnvironmentConfig",
    "EnvironmentName",
    "KmsKeyMaterial",
    # release
    "EncryptedEnvironment",
    "PreparedRelease",
    "Release",
    "ReleaseArtifact",
    # build
    "Build",
    "BuildProgress",
    "BuildStatus",
    "CommitShaError",
    "LogChunk",
    "SubmitBuildRequest",
    "SubmitBuildResponse",
    "VALID_BUILD_TRANSITIONS",
    "assert_commit_sha",
    # provenance
    "ProvenanceFailed",
    "ProvenanceResult",
    "ProvenanceVerified",
    # ledger
    "ProvenanceRecord",
    "RecordKind",
]
