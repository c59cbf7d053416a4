"""Canonical hashing for provenance records and release payloads."""

from __future__ import annotations

import hashlib
import json
from typing import Any

from enclaveforge.models.release import Release


def canonical_json_bytes(obj: Any) -> bytes:
    """Deterministic JSON: sorted keys, compact separators, ASCII only."""
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def release_hash(release: Release) -> str:
    """Stable hash of a Release's JSON rendering."""
    return sha256_hex(canonical_json_bytes(release.to_json_dict()))


def compute_entry_hash(entry_dict: dict[str, Any]) -> str:
    """SHA-256 of a ledger entry, excluding the ``entry_hash`` field itself.

    This is the seal that makes each entry tamper-evident.
    """
    d = {k: v for k, v in entry_dict.items() if k != "entry_hash"}
    return sha256_hex(canonical_json_bytes(d))
