"""Verifiable build models: status state machine, requests, build records."""

from __future__ import annotations

import re
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

_COMMIT_SHA_RE = re.compile(r"^[0-9a-fA-F]{40}$")


class CommitShaError(ValueError):
    """Raised when a git ref is not a full 40-character hex commit SHA."""


def is_commit_sha(value: str) -> bool:
    return isinstance(value, str) and bool(_COMMIT_SHA_RE.match(value))


def assert_commit_sha(value: str) -> str:
    """Return *value* unchanged if it is a 40-char hex SHA, else raise."""
    if not is_commit_sha(value):
        raise CommitShaError(
            f"Commit must be a 40-character hexadecimal SHA, got: {value!r}"
        )
    return value


class BuildStatus(str, Enum):
    """Lifecycle of a verifiable build on the build service."""

    BUILDING = "building"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not BuildStatus.BUILDING


# Valid status transitions, enforced by BuildStateMachine.
# SUCCESS and FAILED are terminal.
VALID_BUILD_TRANSITIONS: dict[BuildStatus, set[BuildStatus]] = {
    BuildStatus.BUILDING: {BuildStatus.SUCCESS, BuildStatus.FAILED},
    BuildStatus.SUCCESS: set(),
    BuildStatus.FAILED: set(),
}


class SubmitBuildRequest(BaseModel):
    """What to build: a repository at an exact commit."""

    model_config = ConfigDict(frozen=True)

    repo_url: str
    git_ref: str
    dockerfile_path: str = "Dockerfile"
    build_context_path: str = "."
    caddyfile_path: str | None = None
    dependencies: list[str] = []

    @field_validator("git_ref")
    @classmethod
    def _full_commit_sha(cls, v: str) -> str:
        return assert_commit_sha(v)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "repo_url": self.repo_url,
            "git_ref": self.git_ref,
            "dockerfile_path": self.dockerfile_path,
            "build_context_path": self.build_context_path,
            "dependencies": list(self.dependencies),
        }
        if self.caddyfile_path:
            payload["caddyfile_path"] = self.caddyfile_path
        return payload


class SubmitBuildResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    build_id: str


class Build(BaseModel):
    """The canonical build record.

    ``dependencies`` maps a dependency image digest to that dependency's
    own Build, resolved recursively by ``BuildClient.get()``.
    """

    model_config = ConfigDict(frozen=True)

    build_id: str
    status: BuildStatus
    repo_url: str = ""
    git_ref: str = ""
    dockerfile_path: str = ""
    billing_address: str = ""
    build_type: str = ""
    image_name: str = ""
    image_url: str | None = None
    image_digest: str | None = None
    provenance_json: dict[str, Any] | None = None
    provenance_signature: str | None = None
    error_message: str | None = None
    created_at: str = ""
    updated_at: str = ""
    dependencies: dict[str, Build] = Field(default_factory=dict)

    @classmethod
    def from_api(
        cls,
        raw: dict[str, Any],
        dependencies: dict[str, Build] | None = None,
    ) -> Build:
        """Build a record from the service's snake_case JSON.

        Embedded dependency records are converted recursively unless an
        already-resolved *dependencies* map is supplied.
        """
        if dependencies is None:
            dependencies = {}
            raw_deps = raw.get("dependencies") or {}
            if isinstance(raw_deps, dict):
                for digest, dep in raw_deps.items():
                    if isinstance(dep, dict):
                        dependencies[digest] = cls.from_api(dep)
        return cls(
            build_id=raw["build_id"],
            status=BuildStatus(raw["status"]),
            repo_url=raw.get("repo_url") or "",
            git_ref=raw.get("git_ref") or "",
            dockerfile_path=raw.get("dockerfile_path") or "",
            billing_address=raw.get("billing_address") or "",
            build_type=raw.get("build_type") or "",
            image_name=raw.get("image_name") or "",
            image_url=raw.get("image_url"),
            image_digest=raw.get("image_digest"),
            provenance_json=raw.get("provenance_json"),
            provenance_signature=raw.get("provenance_signature"),
            error_message=raw.get("error_message"),
            created_at=raw.get("created_at") or "",
            updated_at=raw.get("updated_at") or "",
            dependencies=dependencies,
        )


Build.model_rebuild()


def declared_dependency_digests(raw: dict[str, Any]) -> list[str]:
    """Digests a raw build record declares as dependencies (map keys or list)."""
    raw_deps = raw.get("dependencies") or []
    if isinstance(raw_deps, dict):
        return sorted(raw_deps)
    return sorted(str(d) for d in raw_deps)


class LogChunk(BaseModel):
    """Newly appended build log text."""

    model_config = ConfigDict(frozen=True)

    content: str
    total_length: int
    is_complete: bool = False
    final_status: BuildStatus | None = None


class BuildProgress(BaseModel):
    """A poll snapshot passed to ``on_progress`` callbacks."""

    model_config = ConfigDict(frozen=True)

    build: Build
    logs: str = ""
