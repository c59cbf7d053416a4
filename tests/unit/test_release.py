"""Tests for release composition and preparation."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from hypothesis import given, strategies as st

from enclaveforge.core.digest_resolver import DigestResolver
from enclaveforge.core.introspect import ImageIntrospector
from enclaveforge.core.layering import ImageLayeringEngine
from enclaveforge.core.release import ReleasePreparer, compose_release
from enclaveforge.core.retry import RetryPolicy
from enclaveforge.models.digest import DigestFormatError, DigestLengthError
from enclaveforge.models.image import LAYERING_MARKER_LABEL

DIGEST = "sha256:" + "ab" * 32
NOW = 1_700_000_000


class TestComposeRelease:
    def test_fields(self):
        release = compose_release(DIGEST, "docker.io/acme/app", b"{}", b"jwe", now=NOW)
        assert release.artifacts[0].digest == bytes.fromhex("ab" * 32)
        assert release.artifacts[0].registry == "docker.io/acme/app"
        assert release.upgrade_by_time == NOW + 3600
        assert release.public_env == b"{}"
        assert release.encrypted_env == b"jwe"

    def test_custom_grace(self):
        release = compose_release(DIGEST, "r", b"{}", b"x", now=NOW, grace_seconds=60)
        assert release.upgrade_by_time == NOW + 60

    @given(st.binary().filter(lambda b: len(b) != 32))
    def test_non_32_byte_digest_rejected(self, raw: bytes):
        with pytest.raises(DigestLengthError):
            compose_release(raw, "r", b"{}", b"x", now=NOW)

    def test_non_canonical_digest_text_rejected(self):
        with pytest.raises(DigestFormatError):
            compose_release("sha256:" + "AB" * 32, "r", b"{}", b"x", now=NOW)

    def test_empty_registry_rejected(self):
        with pytest.raises(ValueError):
            compose_release(DIGEST, "", b"{}", b"x", now=NOW)

    def test_release_is_frozen(self):
        release = compose_release(DIGEST, "r", b"{}", b"x", now=NOW)
        with pytest.raises(ValueError):
            release.upgrade_by_time = 0

    def test_wire_and_json_forms(self):
        release = compose_release(DIGEST, "docker.io/acme/app", b'{"A_PUBLIC":"1"}', b"h.k.i.c.t", now=NOW)
        wire = release.to_wire()
        assert wire["artifacts"][0]["digest"] == bytes.fromhex("ab" * 32)
        assert wire["upgradeByTime"] == NOW + 3600
        as_json = release.to_json_dict()
        assert as_json["artifacts"][0]["digest"] == "0x" + "ab" * 32
        assert as_json["publicEnv"] == '{"A_PUBLIC":"1"}'
        json.dumps(as_json)


@pytest.fixture
def preparer(fake_engine, environment_config, kms_keys, assets, tmp_path, no_sleep) -> ReleasePreparer:
    layering = ImageLayeringEngine(
        fake_engine,
        ImageIntrospector(fake_engine),
        environment=environment_config,
        keys=kms_keys,
        assets=assets,
        caddyfile_path=tmp_path / "Caddyfile",
        tool_version="0.4.0",
        sleep=no_sleep,
    )
    resolver = DigestResolver(fake_engine, policy=RetryPolicy.fixed(3, 2.0), sleep=no_sleep)
    return ReleasePreparer(
        layering,
        resolver,
        keys=kms_keys,
        instance_type="g1-standard-4t",
        propagation_wait=3.0,
        sleep=no_sleep,
        clock=lambda: float(NOW),
    )


def _index(digest: str) -> dict:
    return {"manifests": [{"digest": digest, "platform": {"os": "linux", "architecture": "amd64"}}]}


class TestReleasePreparer:
    @pytest.mark.asyncio
    async def test_exactly_one_source(self, preparer):
        with pytest.raises(ValueError):
            await preparer.prepare("app")
        with pytest.raises(ValueError):
            await preparer.prepare("app", dockerfile_path=Path("Dockerfile"), image_ref="a:b")

    @pytest.mark.asyncio
    async def test_dockerfile_requires_target(self, preparer):
        with pytest.raises(ValueError):
            await preparer.prepare("app", dockerfile_path=Path("Dockerfile"))

    @pytest.mark.asyncio
    async def test_layered_remote_image_skips_propagation_wait(
        self, preparer, fake_engine, inspect_data, no_sleep
    ):
        ref = "docker.io/acme/app:v1"
        fake_engine.images[ref] = inspect_data(labels={LAYERING_MARKER_LABEL: "0.4.0"})
        fake_engine.manifests[ref] = [_index(DIGEST)]

        prepared = await preparer.prepare("app-1", image_ref=ref)

        assert prepared.final_image_ref == ref
        assert prepared.release.artifacts[0].registry == "docker.io/acme/app"
        assert prepared.release.upgrade_by_time == NOW + 3600
        assert no_sleep.delays == []
        assert "push" not in fake_engine.call_names()

    @pytest.mark.asyncio
    async def test_layering_then_wait_then_resolve(
        self, preparer, fake_engine, inspect_data, no_sleep
    ):
        ref = "docker.io/acme/app:v1"
        target = ref + "-layered"
        fake_engine.images[ref] = inspect_data(cmd=["/app"])
        fake_engine.manifests[target] = [_index(DIGEST)]

        prepared = await preparer.prepare("app-1", image_ref=ref)

        assert prepared.final_image_ref == target
        assert prepared.release.artifacts[0].digest.hex() == "ab" * 32
        # push verification wait, then registry propagation wait
        assert no_sleep.delays == [3.0, 3.0]

    def test_from_image_digest(self, preparer, write_env_file):
        env = write_env_file("SECRET=1\nNAME_PUBLIC=x\n")
        prepared = preparer.from_image_digest("app-1", "acme/app:v2", DIGEST, env)
        assert prepared.release.artifacts[0].registry == "docker.io/acme/app"
        assert json.loads(prepared.release.public_env)["NAME_PUBLIC"] == "x"
        assert prepared.release.encrypted_env.count(b".") == 4

    def test_from_image_digest_validates(self, preparer):
        with pytest.raises(DigestFormatError):
            preparer.from_image_digest("app-1", "acme/app:v2", "sha256:abc")
