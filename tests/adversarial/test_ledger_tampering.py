"""Adversarial tests: provenance ledger tampering and chain integrity.

These tests verify that the ProvenanceLedger detects:
1. Corrupted entry hashes
2. Edited record content (e.g. a rewritten build id or registry)
3. Deleted and reordered entries
4. Records forged into the wrong subject's chain
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from enclaveforge.core.provenance_ledger import LedgerIntegrityError, ProvenanceLedger
from enclaveforge.models.ledger import ProvenanceRecord, RecordKind

SUBJECT = "sha256:" + "9" * 64
OTHER = "sha256:" + "8" * 64


def _tamper(ledger: ProvenanceLedger, sql: str, params: tuple = ()) -> None:
    conn = sqlite3.connect(str(ledger._db_path))
    conn.execute(sql, params)
    conn.commit()
    conn.close()


def _nth_id(ledger: ProvenanceLedger, subject: str, offset: int) -> int:
    conn = sqlite3.connect(str(ledger._db_path))
    row = conn.execute(
        "SELECT id FROM provenance_ledger WHERE subject = ? ORDER BY id ASC LIMIT 1 OFFSET ?",
        (subject, offset),
    ).fetchone()
    conn.close()
    return row[0]


class TestLedgerTamperDetection:
    """Direct SQLite manipulation to simulate an attacker with DB access."""

    @pytest.fixture
    def seeded(self, tmp_path: Path) -> ProvenanceLedger:
        """Seed a ledger with 5 entries for a single subject."""
        ledger = ProvenanceLedger(tmp_path / "ledger.db")
        for i in range(5):
            ledger.append(
                ProvenanceRecord(
                    subject=SUBJECT,
                    kind=RecordKind.RELEASE_COMPOSED,
                    build_id=f"build-{i}",
                    registry="docker.io/acme/app",
                )
            )
        return ledger

    def test_corrupted_entry_hash_detected(self, seeded):
        _tamper(
            seeded,
            "UPDATE provenance_ledger SET entry_hash = 'TAMPERED' WHERE id = ?",
            (_nth_id(seeded, SUBJECT, 2),),
        )
        with pytest.raises(LedgerIntegrityError, match="(Chain broken|Tampered)"):
            seeded.verify_chain(SUBJECT)

    @pytest.mark.parametrize(
        ("column", "value"),
        [
            ("build_id", "build-evil"),
            ("registry", "docker.io/evil/app"),
            ("kind", "build_verified"),
            ("git_ref", "f" * 40),
        ],
    )
    def test_edited_content_detected(self, seeded, column, value):
        _tamper(
            seeded,
            f"UPDATE provenance_ledger SET {column} = ? WHERE id = ?",
            (value, _nth_id(seeded, SUBJECT, 1)),
        )
        with pytest.raises(LedgerIntegrityError, match="Tampered"):
            seeded.verify_chain(SUBJECT)

    def test_deleted_entry_breaks_chain(self, seeded):
        _tamper(seeded, "DELETE FROM provenance_ledger WHERE id = ?", (_nth_id(seeded, SUBJECT, 1),))
        with pytest.raises(LedgerIntegrityError, match="Chain broken"):
            seeded.verify_chain(SUBJECT)

    def test_broken_chain_link_detected(self, seeded):
        _tamper(
            seeded,
            "UPDATE provenance_ledger SET previous_entry_hash = 'WRONG_LINK' WHERE id = ?",
            (_nth_id(seeded, SUBJECT, 2),),
        )
        with pytest.raises(LedgerIntegrityError, match="Chain broken"):
            seeded.verify_chain(SUBJECT)

    def test_moved_to_another_subject_detected(self, seeded):
        seeded.append(ProvenanceRecord(subject=OTHER, kind=RecordKind.BUILD_VERIFIED))
        _tamper(
            seeded,
            "UPDATE provenance_ledger SET subject = ? WHERE id = ?",
            (OTHER, _nth_id(seeded, SUBJECT, 4)),
        )
        with pytest.raises(LedgerIntegrityError):
            seeded.verify_chain(OTHER)

    def test_truncating_the_head_is_detected(self, seeded):
        _tamper(seeded, "DELETE FROM provenance_ledger WHERE id = ?", (_nth_id(seeded, SUBJECT, 0),))
        with pytest.raises(LedgerIntegrityError, match="Chain broken"):
            seeded.verify_chain(SUBJECT)

    def test_verify_all_surfaces_first_broken_chain(self, seeded):
        _tamper(
            seeded,
            "UPDATE provenance_ledger SET registry = 'x' WHERE id = ?",
            (_nth_id(seeded, SUBJECT, 3),),
        )
        with pytest.raises(LedgerIntegrityError):
            seeded.verify_all()

    def test_untouched_chain_is_valid(self, seeded):
        assert seeded.verify_chain(SUBJECT) is True
        assert seeded.verify_all() == 1
