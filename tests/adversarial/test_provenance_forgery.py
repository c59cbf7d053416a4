"""Adversarial tests: forged provenance from a compromised or spoofed build service.

With a trusted key configured, a "verified" answer is only accepted if its
DSSE signature checks out locally.  These tests verify that:
1. A signature from an unknown key is rejected
2. A payload or payload type swapped after signing is rejected
3. A verified answer with no envelope is rejected
4. A rejected build is never released
"""

from __future__ import annotations

import base64
import json
from pathlib import Path

import httpx
import pytest

from enclaveforge.bridge.build_api import BuildApiClient
from enclaveforge.bridge.crypto_bridge import dsse_pae, generate_keypair, sign_data
from enclaveforge.config import ForgeSettings
from enclaveforge.core.orchestrator import DeployOrchestrator
from enclaveforge.core.provenance import ProvenanceVerificationError, ProvenanceVerifier
from enclaveforge.models.ledger import RecordKind
from enclaveforge.models.provenance import ProvenanceFailed, ProvenanceVerified

BASE_URL = "https://userapi.test"
DIGEST = "sha256:" + "a" * 64
PAYLOAD_TYPE = "application/vnd.in-toto+json"


def _signed_answer(private_key: str, statement: dict | None = None) -> dict:
    payload = json.dumps(statement or {"subject": [{"digest": {"sha256": "a" * 64}}]}).encode()
    return {
        "status": "verified",
        "build_id": "build-1",
        "image_url": "docker.io/acme/app:v1",
        "image_digest": DIGEST,
        "repo_url": "https://github.com/acme/app",
        "git_ref": "0" * 40,
        "provenance_signature": sign_data(dsse_pae(PAYLOAD_TYPE, payload), private_key),
        "payload_type": PAYLOAD_TYPE,
        "payload": base64.b64encode(payload).decode("ascii"),
    }


async def _verify(build_service, answer: dict, trusted_key: str) -> ProvenanceVerified | ProvenanceFailed:
    build_service.verify_results["build-1"] = answer
    async with build_service.client() as http:
        verifier = ProvenanceVerifier(BuildApiClient(http, BASE_URL), trusted_public_key=trusted_key)
        return await verifier.verify("build-1")


class TestForgedProvenance:
    @pytest.mark.asyncio
    async def test_genuine_answer_accepted(self, build_service, provenance_keypair):
        private_key, public_key = provenance_keypair
        result = await _verify(build_service, _signed_answer(private_key), public_key)
        assert result.verified

    @pytest.mark.asyncio
    async def test_attacker_key_rejected(self, build_service, provenance_keypair):
        attacker_private, _ = generate_keypair()
        result = await _verify(build_service, _signed_answer(attacker_private), provenance_keypair[1])
        assert isinstance(result, ProvenanceFailed)

    @pytest.mark.asyncio
    async def test_swapped_payload_rejected(self, build_service, provenance_keypair):
        private_key, public_key = provenance_keypair
        answer = _signed_answer(private_key)
        evil = json.dumps({"subject": [{"digest": {"sha256": "e" * 64}}]}).encode()
        answer["payload"] = base64.b64encode(evil).decode("ascii")
        result = await _verify(build_service, answer, public_key)
        assert isinstance(result, ProvenanceFailed)

    @pytest.mark.asyncio
    async def test_swapped_payload_type_rejected(self, build_service, provenance_keypair):
        private_key, public_key = provenance_keypair
        answer = _signed_answer(private_key)
        answer["payload_type"] = "text/plain"
        result = await _verify(build_service, answer, public_key)
        assert isinstance(result, ProvenanceFailed)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("signature", ["", "00" * 64, "not-a-signature"])
    async def test_garbage_signature_rejected(self, build_service, provenance_keypair, signature):
        private_key, public_key = provenance_keypair
        answer = _signed_answer(private_key)
        answer["provenance_signature"] = signature
        result = await _verify(build_service, answer, public_key)
        assert isinstance(result, ProvenanceFailed)

    @pytest.mark.asyncio
    async def test_missing_envelope_rejected(self, build_service, provenance_keypair):
        private_key, public_key = provenance_keypair
        answer = _signed_answer(private_key)
        del answer["payload"], answer["payload_type"]
        result = await _verify(build_service, answer, public_key)
        assert isinstance(result, ProvenanceFailed)


class TestForgedBuildNotReleased:
    @pytest.mark.asyncio
    async def test_release_refused_and_recorded(
        self, tmp_path: Path, assets, fake_engine, build_service, raw_build, ledger, provenance_keypair
    ):
        attacker_private, _ = generate_keypair()
        build_service.builds["build-1"] = [
            raw_build(status="success", image_digest=DIGEST, image_url="docker.io/acme/app:v1")
        ]
        build_service.verify_results["build-1"] = _signed_answer(attacker_private)
        settings = ForgeSettings(
            user_api_url=BASE_URL,
            assets_path=assets.base,
            provenance_public_key=provenance_keypair[1],
        )

        async with httpx.AsyncClient(transport=httpx.MockTransport(build_service.handler)) as http:
            forge = DeployOrchestrator(settings, engine=fake_engine, http_client=http, ledger=ledger)
            with pytest.raises(ProvenanceVerificationError):
                await forge.prepare_release_from_build("app-1", "build-1")

        kinds = [r.kind for r in ledger.get_subject_records(DIGEST)]
        assert kinds == [RecordKind.BUILD_FAILED_VERIFICATION]
