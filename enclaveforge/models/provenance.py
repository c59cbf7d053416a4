"""Provenance verification results: "verified" or "failed", never an exception."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class ProvenanceVerified(BaseModel):
    """The build service vouches for this artifact's source."""

    model_config = ConfigDict(frozen=True)

    status: Literal["verified"] = "verified"
    build_id: str
    image_url: str
    image_digest: str
    repo_url: str
    git_ref: str
    provenance_signature: str
    provenance_json: dict[str, Any] = {}
    payload_type: str = ""
    payload: str = ""  # base64, DSSE payload

    @property
    def verified(self) -> bool:
        return True


class ProvenanceFailed(BaseModel):
    """Verification ran and the answer is no."""

    model_config = ConfigDict(frozen=True)

    status: Literal["failed"] = "failed"
    error: str
    build_id: str | None = None

    @property
    def verified(self) -> bool:
        return False


ProvenanceResult = Annotated[
    Union[ProvenanceVerified, ProvenanceFailed],
    Field(discriminator="status"),
]

_RESULT_ADAPTER: TypeAdapter[ProvenanceVerified | ProvenanceFailed] = TypeAdapter(
    ProvenanceResult
)


def parse_provenance_result(raw: dict[str, Any]) -> ProvenanceVerified | ProvenanceFailed:
    """Convert the service's verify response into a typed result.

    Anything other than ``status == "verified"`` is a failure.
    """
    if raw.get("status") == "verified":
        return _RESULT_ADAPTER.validate_python(
            {
                "status": "verified",
                "build_id": raw.get("build_id") or "",
                "image_url": raw.get("image_url") or "",
                "image_digest": raw.get("image_digest") or "",
                "repo_url": raw.get("repo_url") or "",
                "git_ref": raw.get("git_ref") or "",
                "provenance_signature": raw.get("provenance_signature") or "",
                "provenance_json": raw.get("provenance_json") or {},
                "payload_type": raw.get("payload_type") or "",
                "payload": raw.get("payload") or "",
            }
        )
    return ProvenanceFailed(
        error=raw.get("error") or "Provenance verification failed",
        build_id=raw.get("build_id"),
    )
