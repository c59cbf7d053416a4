"""Verifiable build submission, polling and dependency resolution.

``wait_for_build`` always takes an explicit timeout; there is no
open-ended follow loop.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable

from enclaveforge.bridge.build_api import BuildApiClient, BuildNotFoundError
from enclaveforge.core.build_state import BuildStateMachine
from enclaveforge.models.build import (
    Build,
    BuildProgress,
    BuildStatus,
    LogChunk,
    SubmitBuildRequest,
    SubmitBuildResponse,
    assert_commit_sha,
    declared_dependency_digests,
)

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 2.0


class BuildFailedError(RuntimeError):
    """The build service reported FAILED."""

    def __init__(self, message: str, build_id: str) -> None:
        super().__init__(message)
        self.build_id = build_id


class BuildTimeoutError(TimeoutError):
    """The build did not finish within the caller's timeout."""

    def __init__(self, build_id: str, timeout: float) -> None:
        super().__init__(f"Build {build_id} did not finish within {timeout:.0f}s")
        self.build_id = build_id
        self.timeout = timeout


class BuildClient:
    """High-level build operations over ``BuildApiClient``.

    Parameters
    ----------
    api:
        Raw HTTP access to the build service.
    poll_interval:
        Seconds between status/log polls.
    state_machine:
        Status tracker; shared if several clients must agree.
    """

    def __init__(
        self,
        api: BuildApiClient,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        state_machine: BuildStateMachine | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._api = api
        self._poll_interval = poll_interval
        self._states = state_machine or BuildStateMachine()
        self._sleep = sleep
        self._clock = clock

    @property
    def states(self) -> BuildStateMachine:
        return self._states

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(self, request: SubmitBuildRequest) -> SubmitBuildResponse:
        """Submit a build; returns as soon as the service accepts it."""
        assert_commit_sha(request.git_ref)
        data = await self._api.submit_build(request.to_payload())
        build_id = data.get("build_id") or ""
        if not build_id:
            raise ValueError("Build service accepted the request but returned no build_id")
        self._states.register(build_id)
        logger.info("Submitted build %s for %s@%s", build_id, request.repo_url, request.git_ref)
        return SubmitBuildResponse(build_id=build_id)

    async def submit_and_wait(
        self,
        request: SubmitBuildRequest,
        *,
        timeout: float,
        on_log: Callable[[str], None] | None = None,
        on_progress: Callable[[BuildProgress], None] | None = None,
    ) -> Build:
        response = await self.submit(request)
        return await self.wait_for_build(
            response.build_id, timeout=timeout, on_log=on_log, on_progress=on_progress
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get(self, build_id: str) -> Build:
        """The canonical build, with its dependency graph resolved."""
        raw = await self._api.get_build(build_id)
        build = await self._with_dependencies(raw, {}, set())
        self._states.observe(build.build_id, build.status)
        return build

    async def get_by_digest(self, digest: str) -> Build:
        """The build that produced image *digest*, dependencies resolved."""
        raw = await self._api.get_build_by_digest(digest)
        return await self._with_dependencies(raw, {}, {digest})

    async def get_logs(self, build_id: str) -> str:
        return await self._api.get_logs(build_id)

    async def list(
        self,
        billing_address: str | None = None,
        *,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Build]:
        """Builds billed to *billing_address* (default: the signing account)."""
        address = billing_address or self._api.account
        if not address:
            raise ValueError("A billing address or API signing key is required to list builds")
        raws = await self._api.list_builds(address, limit=limit, offset=offset)
        return [Build.from_api(raw) for raw in raws]

    async def _with_dependencies(
        self,
        raw: dict,
        resolved: dict[str, Build],
        visiting: set[str],
    ) -> Build:
        """Convert *raw*, fetching each declared dependency by digest.

        *resolved* memoizes digests already fetched; *visiting* holds the
        digests on the current path so a cyclic graph terminates.
        """
        dependencies: dict[str, Build] = {}
        for digest in declared_dependency_digests(raw):
            if digest in visiting:
                logger.warning("Dependency cycle through %s; not following", digest)
                continue
            if digest not in resolved:
                dep_raw = await self._api.get_build_by_digest(digest)
                resolved[digest] = await self._with_dependencies(
                    dep_raw, resolved, visiting | {digest}
                )
            dependencies[digest] = resolved[digest]
        return Build.from_api(raw, dependencies=dependencies)

    # ------------------------------------------------------------------
    # Following a build
    # ------------------------------------------------------------------

    async def _fetch_logs(self, build_id: str) -> str | None:
        try:
            return await self._api.get_logs(build_id)
        except BuildNotFoundError:
            logger.debug("Logs for %s not available yet", build_id)
            return None

    async def wait_for_build(
        self,
        build_id: str,
        *,
        timeout: float,
        on_log: Callable[[str], None] | None = None,
        on_progress: Callable[[BuildProgress], None] | None = None,
    ) -> Build:
        """Poll until the build leaves BUILDING.

        Only log text appended since the previous poll is passed to
        *on_log*.  Returns the canonical build on SUCCESS.

        Raises
        ------
        BuildFailedError
            With the service's error message, on FAILED.
        BuildTimeoutError
            If *timeout* seconds pass first.
        """
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        deadline = self._clock() + timeout
        delivered = 0
        want_logs = on_log is not None or on_progress is not None

        while True:
            build = Build.from_api(await self._api.get_build(build_id))
            self._states.observe(build_id, build.status)

            logs = ""
            if want_logs:
                logs = await self._fetch_logs(build_id) or ""
                if on_log is not None and len(logs) > delivered:
                    on_log(logs[delivered:])
                    delivered = len(logs)
            if on_progress is not None:
                on_progress(BuildProgress(build=build, logs=logs))

            if build.status is BuildStatus.SUCCESS:
                logger.info("Build %s succeeded", build_id)
                return await self.get(build_id)
            if build.status is BuildStatus.FAILED:
                raise BuildFailedError(build.error_message or "Build failed", build_id)

            if self._clock() >= deadline:
                raise BuildTimeoutError(build_id, timeout)
            await self._sleep(self._poll_interval)

    async def stream_logs(
        self, build_id: str, *, timeout: float
    ) -> AsyncIterator[LogChunk]:
        """Yield newly appended log text until the build finishes.

        The final chunk carries ``is_complete`` and ``final_status``; it is
        emitted even if no new text arrived with the terminal status.
        """
        deadline = self._clock() + timeout
        delivered = 0
        while True:
            build = Build.from_api(await self._api.get_build(build_id))
            self._states.observe(build_id, build.status)
            logs = await self._fetch_logs(build_id) or ""
            done = build.status.is_terminal
            if len(logs) > delivered or done:
                yield LogChunk(
                    content=logs[delivered:],
                    total_length=len(logs),
                    is_complete=done,
                    final_status=build.status if done else None,
                )
                delivered = max(delivered, len(logs))
            if done:
                return
            if self._clock() >= deadline:
                raise BuildTimeoutError(build_id, timeout)
            await self._sleep(self._poll_interval)
