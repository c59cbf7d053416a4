"""Tests for the ProvenanceLedger: append-only, hash-chained, tamper-evident."""

from __future__ import annotations

from enclaveforge.core.hasher import compute_entry_hash
from enclaveforge.core.provenance_ledger import ProvenanceLedger
from enclaveforge.models.ledger import ProvenanceRecord, RecordKind

DIGEST_1 = "sha256:" + "1" * 64
DIGEST_2 = "sha256:" + "2" * 64


def _record(subject: str = DIGEST_1, kind: RecordKind = RecordKind.BUILD_VERIFIED, **kwargs) -> ProvenanceRecord:
    return ProvenanceRecord(subject=subject, kind=kind, **kwargs)


class TestProvenanceLedger:
    def test_append_sets_entry_hash(self, ledger: ProvenanceLedger):
        sealed = ledger.append(_record(build_id="build-1"))
        assert sealed.entry_hash != ""
        assert sealed.previous_entry_hash == ""  # first entry

    def test_entry_hash_covers_content(self, ledger: ProvenanceLedger):
        sealed = ledger.append(_record(build_id="build-1"))
        assert sealed.entry_hash == compute_entry_hash(sealed.model_dump(mode="json"))

    def test_hash_chain_links(self, ledger: ProvenanceLedger):
        e1 = ledger.append(_record())
        e2 = ledger.append(_record(kind=RecordKind.RELEASE_COMPOSED, registry="docker.io/acme/app"))
        assert e2.previous_entry_hash == e1.entry_hash

    def test_chains_are_per_subject(self, ledger: ProvenanceLedger):
        ledger.append(_record(DIGEST_1))
        other = ledger.append(_record(DIGEST_2))
        assert other.previous_entry_hash == ""

    def test_verify_chain_valid(self, ledger: ProvenanceLedger):
        ledger.append(_record())
        ledger.append(_record(kind=RecordKind.RELEASE_COMPOSED))
        assert ledger.verify_chain(DIGEST_1) is True

    def test_verify_chain_empty(self, ledger: ProvenanceLedger):
        assert ledger.verify_chain("sha256:" + "0" * 64) is True

    def test_get_latest(self, ledger: ProvenanceLedger):
        ledger.append(_record())
        e2 = ledger.append(_record(kind=RecordKind.RELEASE_COMPOSED))
        latest = ledger.get_latest(DIGEST_1)
        assert latest is not None
        assert latest.entry_id == e2.entry_id
        assert ledger.get_latest(DIGEST_2) is None

    def test_records_round_trip(self, ledger: ProvenanceLedger):
        sealed = ledger.append(
            _record(
                build_id="build-1",
                repo_url="https://github.com/acme/app",
                git_ref="0" * 40,
                signature_fingerprint="abcd" * 4,
                tool_version="0.4.0",
            )
        )
        (stored,) = ledger.get_subject_records(DIGEST_1)
        assert stored == sealed
        assert stored.kind is RecordKind.BUILD_VERIFIED

    def test_all_subjects_most_recent_first(self, ledger: ProvenanceLedger):
        ledger.append(_record(DIGEST_1))
        ledger.append(_record(DIGEST_2))
        assert ledger.all_subjects() == [DIGEST_2, DIGEST_1]
        ledger.append(_record(DIGEST_1))
        assert ledger.all_subjects() == [DIGEST_1, DIGEST_2]

    def test_verify_all_counts_chains(self, ledger: ProvenanceLedger):
        ledger.append(_record(DIGEST_1))
        ledger.append(_record(DIGEST_2))
        assert ledger.verify_all() == 2

    def test_reopen_continues_chain(self, ledger: ProvenanceLedger):
        first = ledger.append(_record())
        reopened = ProvenanceLedger(ledger._db_path)
        second = reopened.append(_record())
        assert second.previous_entry_hash == first.entry_hash
        assert reopened.verify_chain(DIGEST_1) is True
