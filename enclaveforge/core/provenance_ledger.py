"""Append-only, hash-chained provenance ledger backed by SQLite.

One chain per subject (image digest).  Each entry records a verified build
or a composed release and carries the hash of the subject's previous entry.

Design:
- Append-only: only ``append()`` writes; no update, no delete.
- Hash-chained: each entry includes SHA-256 of the previous entry.
- WAL journal mode for concurrent readers.
- entry_hash UNIQUE constraint for tamper detection.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime
from pathlib import Path

from enclaveforge.core.hasher import compute_entry_hash
from enclaveforge.models.ledger import ProvenanceRecord, RecordKind

# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_LEDGER = """
CREATE TABLE IF NOT EXISTS provenance_ledger (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id              TEXT NOT NULL UNIQUE,
    subject               TEXT NOT NULL,
    kind                  TEXT NOT NULL,
    timestamp_utc         TEXT NOT NULL,
    build_id              TEXT NOT NULL DEFAULT '',
    repo_url              TEXT NOT NULL DEFAULT '',
    git_ref               TEXT NOT NULL DEFAULT '',
    registry              TEXT NOT NULL DEFAULT '',
    signature_fingerprint TEXT NOT NULL DEFAULT '',
    payload_hash          TEXT NOT NULL DEFAULT '',
    tool_version          TEXT NOT NULL DEFAULT '',
    previous_entry_hash   TEXT NOT NULL DEFAULT '',
    entry_hash            TEXT NOT NULL UNIQUE
);
"""

_CREATE_IDX_SUBJECT = """
CREATE INDEX IF NOT EXISTS idx_subject ON provenance_ledger(subject, id);
"""

_COLUMNS = (
    "entry_id",
    "subject",
    "kind",
    "timestamp_utc",
    "build_id",
    "repo_url",
    "git_ref",
    "registry",
    "signature_fingerprint",
    "payload_hash",
    "tool_version",
    "previous_entry_hash",
    "entry_hash",
)


class LedgerIntegrityError(RuntimeError):
    """Raised when the hash chain is broken."""


class ProvenanceLedger:
    """Append-only, hash-chained record of provenance events.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.  Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path))
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_LEDGER)
            conn.execute(_CREATE_IDX_SUBJECT)

    # ------------------------------------------------------------------
    # Core: append-only write
    # ------------------------------------------------------------------

    def append(self, record: ProvenanceRecord) -> ProvenanceRecord:
        """Seal *record* onto its subject's chain and persist it.

        Returns the record with ``previous_entry_hash`` and ``entry_hash``
        set.  This is the only write method.
        """
        previous_hash = self._latest_hash(record.subject)
        entry_dict = record.model_dump(mode="json")
        entry_dict["previous_entry_hash"] = previous_hash
        sealed = record.model_copy(
            update={
                "previous_entry_hash": previous_hash,
                "entry_hash": compute_entry_hash(entry_dict),
            }
        )
        row = sealed.model_dump(mode="json")
        placeholders = ", ".join("?" for _ in _COLUMNS)
        with self._connect() as conn:
            conn.execute(
                f"INSERT INTO provenance_ledger ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
                tuple(row[c] for c in _COLUMNS),
            )
        return sealed

    def _latest_hash(self, subject: str) -> str:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT entry_hash FROM provenance_ledger WHERE subject = ? "
                "ORDER BY id DESC LIMIT 1",
                (subject,),
            ).fetchone()
        return row[0] if row else ""

    # ------------------------------------------------------------------
    # Query methods (read-only)
    # ------------------------------------------------------------------

    def get_subject_records(self, subject: str) -> list[ProvenanceRecord]:
        """All records for *subject*, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {', '.join(_COLUMNS)} FROM provenance_ledger "
                "WHERE subject = ? ORDER BY id ASC",
                (subject,),
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def get_latest(self, subject: str) -> ProvenanceRecord | None:
        records = self.get_subject_records(subject)
        return records[-1] if records else None

    def all_subjects(self) -> list[str]:
        """Distinct subjects, most recently written first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT subject FROM provenance_ledger GROUP BY subject ORDER BY MAX(id) DESC"
            ).fetchall()
        return [row[0] for row in rows]

    # ------------------------------------------------------------------
    # Chain verification
    # ------------------------------------------------------------------

    def verify_chain(self, subject: str) -> bool:
        """Recompute every entry hash for *subject* and check the links.

        Returns True if the chain is valid, raises LedgerIntegrityError otherwise.
        """
        prev_hash = ""
        for record in self.get_subject_records(subject):
            if record.previous_entry_hash != prev_hash:
                raise LedgerIntegrityError(
                    f"Chain broken at entry {record.entry_id}: "
                    f"expected previous_hash={prev_hash!r}, "
                    f"got {record.previous_entry_hash!r}"
                )
            expected = compute_entry_hash(record.model_dump(mode="json"))
            if record.entry_hash != expected:
                raise LedgerIntegrityError(
                    f"Tampered entry {record.entry_id}: "
                    f"expected hash={expected!r}, got {record.entry_hash!r}"
                )
            prev_hash = record.entry_hash
        return True

    def verify_all(self) -> int:
        """Verify every subject's chain; returns the number of chains checked."""
        subjects = self.all_subjects()
        for subject in subjects:
            self.verify_chain(subject)
        return len(subjects)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_record(row: tuple) -> ProvenanceRecord:
        values = dict(zip(_COLUMNS, row))
        values["kind"] = RecordKind(values["kind"])
        values["timestamp_utc"] = datetime.fromisoformat(values["timestamp_utc"])
        return ProvenanceRecord(**values)
