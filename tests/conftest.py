"""Shared test fixtures for enclaveforge."""

from __future__ import annotations

import base64
import json
from collections.abc import Callable
from pathlib import Path
from typing import Any
from urllib.parse import unquote

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from enclaveforge.bridge.crypto_bridge import dsse_pae, generate_keypair, sign_data
from enclaveforge.core.container_engine import ImageBuildError, ImageNotFoundError
from enclaveforge.core.environment import (
    KMS_CLIENT_ASSET,
    KMS_ENCRYPTION_KEY_NAME,
    KMS_SIGNING_KEY_NAME,
    TLS_KEYGEN_ASSET,
    AssetPaths,
    resolve_environment,
)
from enclaveforge.core.provenance_ledger import ProvenanceLedger
from enclaveforge.models.environment import (
    BuildType,
    EnvironmentConfig,
    EnvironmentName,
    KmsKeyMaterial,
)
from enclaveforge.models.image import DEFAULT_PLATFORM

SIGNING_KEY_PEM = b"-----BEGIN PUBLIC KEY-----\nc2lnbmluZy1rZXk=\n-----END PUBLIC KEY-----\n"
COMMIT_SHA = "0123456789abcdef0123456789abcdef01234567"
DIGEST_A = "sha256:" + "a" * 64
DIGEST_B = "sha256:" + "b" * 64
DIGEST_C = "sha256:" + "c" * 64


# ---------------------------------------------------------------------------
# Keys and assets
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def rsa_private_key() -> rsa.RSAPrivateKey:
    """One RSA key for the whole session; generation is slow."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def rsa_public_pem(rsa_private_key: rsa.RSAPrivateKey) -> bytes:
    return rsa_private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


@pytest.fixture(scope="session")
def provenance_keypair() -> tuple[str, str]:
    """``(private_hex, public_hex)`` Ed25519 key the fake build service signs with."""
    return generate_keypair()


@pytest.fixture
def kms_keys(rsa_public_pem: bytes) -> KmsKeyMaterial:
    return KmsKeyMaterial(
        environment=EnvironmentName.SEPOLIA,
        build=BuildType.PROD,
        encryption_key=rsa_public_pem,
        signing_key=SIGNING_KEY_PEM,
    )


@pytest.fixture
def environment_config() -> EnvironmentConfig:
    return resolve_environment(EnvironmentName.SEPOLIA, BuildType.PROD)


@pytest.fixture
def assets(tmp_path: Path, rsa_public_pem: bytes) -> AssetPaths:
    """An asset bundle with fake binaries and the sepolia/prod keys."""
    base = tmp_path / "assets"
    tools = base / "tools"
    tools.mkdir(parents=True)
    (tools / KMS_CLIENT_ASSET).write_bytes(b"#!/bin/sh\necho kms-client\n")
    (tools / TLS_KEYGEN_ASSET).write_bytes(b"#!/bin/sh\necho tls-keygen\n")
    key_dir = base / "keys" / "sepolia" / "prod"
    key_dir.mkdir(parents=True)
    (key_dir / KMS_ENCRYPTION_KEY_NAME).write_bytes(rsa_public_pem)
    (key_dir / KMS_SIGNING_KEY_NAME).write_bytes(SIGNING_KEY_PEM)
    return AssetPaths(base)


@pytest.fixture
def write_env_file(tmp_path: Path) -> Callable[[str], Path]:
    """Factory fixture: write an env file with the given text."""

    def _write(text: str, name: str = ".env.app") -> Path:
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return path

    return _write


# ---------------------------------------------------------------------------
# Sleep
# ---------------------------------------------------------------------------


class RecordingSleep:
    """Async stand-in for ``asyncio.sleep`` that returns immediately."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def no_sleep() -> RecordingSleep:
    return RecordingSleep()


# ---------------------------------------------------------------------------
# Container engine
# ---------------------------------------------------------------------------


def make_inspect(
    *,
    cmd: list[str] | None = None,
    entrypoint: list[str] | None = None,
    user: str = "",
    labels: dict[str, str] | None = None,
    os: str = "linux",
    architecture: str = "amd64",
    repo_digests: list[str] | None = None,
) -> dict[str, Any]:
    """One ``image inspect`` object."""
    return {
        "Config": {
            "Cmd": cmd,
            "Entrypoint": entrypoint,
            "User": user,
            "Labels": labels,
        },
        "Os": os,
        "Architecture": architecture,
        "RepoDigests": repo_digests or [],
    }


class BuildSnapshot:
    """What a build context held at the moment ``build`` was called."""

    def __init__(self, context: Path, dockerfile: Path, tag: str) -> None:
        self.context = context
        self.dockerfile = dockerfile
        self.tag = tag
        self.files: dict[str, bytes] = {}
        self.modes: dict[str, int] = {}
        self.symlinks: set[str] = set()
        for path in context.iterdir():
            if path.is_symlink():
                self.symlinks.add(path.name)
            if path.is_file():
                self.files[path.name] = path.read_bytes()
                self.modes[path.name] = path.stat().st_mode & 0o777


class FakeContainerEngine:
    """In-memory container engine recording every call.

    ``manifests[ref]`` is a queue of results (dicts or exceptions); the last
    entry repeats.  A ref with no queue is "manifest unknown".
    """

    def __init__(self, platform: str = DEFAULT_PLATFORM) -> None:
        self.platform = platform
        self.calls: list[tuple[str, ...]] = []
        self.images: dict[str, dict[str, Any]] = {}
        self.remote: dict[str, dict[str, Any]] = {}
        self.manifests: dict[str, list[Any]] = {}
        self.builds: list[BuildSnapshot] = []
        self.build_error: Exception | None = None
        self.push_error: Exception | None = None

    async def build(self, context: Path, dockerfile: Path, tag: str) -> None:
        self.calls.append(("build", tag))
        self.builds.append(BuildSnapshot(Path(context), Path(dockerfile), tag))
        if self.build_error is not None:
            raise self.build_error
        self.images.setdefault(tag, make_inspect(cmd=["/app"]))

    async def push(self, image_ref: str) -> None:
        self.calls.append(("push", image_ref))
        if self.push_error is not None:
            raise self.push_error

    async def pull(self, image_ref: str, platform: str | None = None) -> None:
        self.calls.append(("pull", image_ref))
        if image_ref not in self.remote:
            raise ImageNotFoundError(f"manifest unknown: {image_ref}")
        self.images[image_ref] = self.remote[image_ref]

    async def tag(self, source_ref: str, target_ref: str) -> None:
        self.calls.append(("tag", source_ref, target_ref))
        self.images[target_ref] = self.images[source_ref]

    async def manifest_inspect(self, image_ref: str) -> dict[str, Any]:
        self.calls.append(("manifest_inspect", image_ref))
        queue = self.manifests.get(image_ref)
        if not queue:
            raise ImageNotFoundError(f"manifest unknown: {image_ref}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def image_inspect(self, image_ref: str) -> dict[str, Any]:
        self.calls.append(("image_inspect", image_ref))
        if image_ref not in self.images:
            raise ImageNotFoundError(f"No such image: {image_ref}")
        return self.images[image_ref]

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def fake_engine() -> FakeContainerEngine:
    return FakeContainerEngine()


@pytest.fixture
def inspect_data() -> Callable[..., dict[str, Any]]:
    """Factory fixture: an ``image inspect`` object."""
    return make_inspect


@pytest.fixture
def build_failure() -> Callable[[str], ImageBuildError]:
    def _factory(output: str = "step 3/7 failed") -> ImageBuildError:
        return ImageBuildError(f"build failed:\n{output}", output=output)

    return _factory


# ---------------------------------------------------------------------------
# Build service
# ---------------------------------------------------------------------------


def make_raw_build(build_id: str = "build-1", status: str = "building", **overrides: Any) -> dict[str, Any]:
    raw: dict[str, Any] = {
        "build_id": build_id,
        "status": status,
        "repo_url": "https://github.com/acme/app",
        "git_ref": COMMIT_SHA,
        "dockerfile_path": "Dockerfile",
        "billing_address": "0xabc",
        "build_type": "verifiable",
        "image_name": "acme/app",
        "created_at": "2026-01-01T00:00:00Z",
        "updated_at": "2026-01-01T00:01:00Z",
        "dependencies": [],
    }
    raw.update(overrides)
    return raw


def make_verified_response(
    private_key: str,
    *,
    build_id: str = "build-1",
    image_digest: str = DIGEST_A,
    image_url: str = "docker.io/acme/app:v1",
    payload_type: str = "application/vnd.in-toto+json",
    statement: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """A ``verified`` answer whose DSSE signature checks out under *private_key*."""
    payload = json.dumps(
        statement or {"subject": [{"digest": {"sha256": image_digest[7:]}}]}
    ).encode("utf-8")
    signature = sign_data(dsse_pae(payload_type, payload), private_key)
    return {
        "status": "verified",
        "build_id": build_id,
        "image_url": image_url,
        "image_digest": image_digest,
        "repo_url": "https://github.com/acme/app",
        "git_ref": COMMIT_SHA,
        "provenance_signature": signature,
        "provenance_json": {"builder": "enclaveforge-builder"},
        "payload_type": payload_type,
        "payload": base64.b64encode(payload).decode("ascii"),
    }


def _advance(queue: list[Any]) -> Any:
    return queue.pop(0) if len(queue) > 1 else queue[0]


class FakeBuildService:
    """``httpx.MockTransport`` handler emulating the build service.

    ``builds[id]`` and ``logs[id]`` are queues of successive answers; the
    last entry repeats.
    """

    def __init__(self) -> None:
        self.builds: dict[str, list[dict[str, Any]]] = {}
        self.by_digest: dict[str, dict[str, Any]] = {}
        self.logs: dict[str, list[str]] = {}
        self.verify_results: dict[str, dict[str, Any]] = {}
        self.listing: list[dict[str, Any]] = []
        self.submitted: list[dict[str, Any]] = []
        self.requests: list[httpx.Request] = []
        self.next_build_id = "build-1"
        self.fail_status: int | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, text="service says no")
        path = unquote(request.url.path)
        parts = [p for p in path.split("/") if p]

        if parts == ["builds"] and request.method == "POST":
            self.submitted.append(json.loads(request.content))
            self.builds.setdefault(self.next_build_id, [make_raw_build(self.next_build_id)])
            return httpx.Response(200, json={"build_id": self.next_build_id})
        if parts == ["builds"]:
            return httpx.Response(200, json={"builds": self.listing})
        if parts[:2] == ["builds", "verify"]:
            result = self.verify_results.get(parts[2])
            if result is None:
                return httpx.Response(404, text="not found")
            return httpx.Response(200, json=result)
        if parts[:2] == ["builds", "image"]:
            raw = self.by_digest.get(parts[2])
            if raw is None:
                return httpx.Response(404, text="not found")
            return httpx.Response(200, json=raw)
        if len(parts) == 3 and parts[2] == "logs":
            queue = self.logs.get(parts[1])
            if queue is None:
                return httpx.Response(404, text="no logs yet")
            return httpx.Response(200, text=_advance(queue))
        if len(parts) == 2:
            queue = self.builds.get(parts[1])
            if queue is None:
                return httpx.Response(404, text="not found")
            return httpx.Response(200, json=_advance(queue))
        return httpx.Response(404, text="no route")

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def build_service() -> FakeBuildService:
    return FakeBuildService()


@pytest.fixture
def raw_build() -> Callable[..., dict[str, Any]]:
    """Factory fixture: a raw build record as the service returns it."""
    return make_raw_build


@pytest.fixture
def verified_response(provenance_keypair: tuple[str, str]) -> Callable[..., dict[str, Any]]:
    """Factory fixture: a correctly signed ``verified`` answer."""
    private_key, _ = provenance_keypair

    def _factory(**kwargs: Any) -> dict[str, Any]:
        return make_verified_response(private_key, **kwargs)

    return _factory


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


@pytest.fixture
def ledger(tmp_path: Path) -> ProvenanceLedger:
    return ProvenanceLedger(tmp_path / "provenance.db")
