"""Provenance ledger entry model (append-only, hash-chained).

Each entry records one provenance event for a subject: a verified build
or a composed release.  Entries for the same subject are chained by the
SHA-256 of the previous entry.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class RecordKind(str, Enum):
    BUILD_VERIFIED = "build_verified"
    BUILD_FAILED_VERIFICATION = "build_failed_verification"
    RELEASE_COMPOSED = "release_composed"


class ProvenanceRecord(BaseModel):
    """A single sealed entry in the provenance ledger."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    subject: str  # image digest the record is about
    kind: RecordKind
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    build_id: str = ""
    repo_url: str = ""
    git_ref: str = ""
    registry: str = ""
    signature_fingerprint: str = ""  # short hash of the provenance signature
    payload_hash: str = ""  # SHA-256 of canonical provenance JSON / release wire
    tool_version: str = ""
    previous_entry_hash: str = ""
    entry_hash: str = ""
