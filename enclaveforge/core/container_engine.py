"""Container engine CLI wrapper: build, push, pull, tag, inspect.

All invocations go through ``asyncio.create_subprocess_exec`` with stderr
merged into stdout.  Output is yielded line by line; if the consumer stops
early or is cancelled, the child process is killed.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict

from enclaveforge.models.image import DEFAULT_PLATFORM

logger = logging.getLogger(__name__)

PERMISSION_KEYWORDS = (
    "denied",
    "unauthorized",
    "forbidden",
    "insufficient_scope",
    "authentication required",
    "access forbidden",
    "permission denied",
    "requested access to the resource is denied",
)

READ_CHUNK_SIZE = 64 * 1024

_NOT_FOUND_MARKERS = ("no such image", "no such object", "not found", "manifest unknown")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ContainerEngineError(RuntimeError):
    """A container engine command exited non-zero."""

    def __init__(self, message: str, *, args: list[str] | None = None, output: str = "") -> None:
        super().__init__(message)
        self.command = args or []
        self.output = output


class ContainerEngineNotFoundError(ContainerEngineError):
    """The engine executable is not installed or not on PATH."""


class ImageBuildError(ContainerEngineError):
    """``build`` failed; ``output`` holds the complete build log."""


class ImagePushError(ContainerEngineError):
    """``push`` failed for a reason other than permissions."""


class PushPermissionError(ImagePushError):
    """The registry rejected the push for authentication/authorization reasons."""

    def __init__(self, image_ref: str, output: str) -> None:
        super().__init__(
            f"Permission denied pushing to {image_ref}. "
            f"Log in to the registry (docker login) and check you have push access.\n{output}",
            output=output,
        )
        self.image_ref = image_ref


class ImageNotFoundError(ContainerEngineError):
    """The image or manifest does not exist (locally or in the registry)."""


def is_permission_error(output: str) -> bool:
    """True if *output* contains any permission/auth keyword."""
    lowered = output.lower()
    return any(keyword in lowered for keyword in PERMISSION_KEYWORDS)


def is_not_found_error(output: str) -> bool:
    lowered = output.lower()
    return any(marker in lowered for marker in _NOT_FOUND_MARKERS)


def _decode_line(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace").rstrip("\r")


class CommandResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    exit_code: int
    output: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class ContainerEngine:
    """Thin async wrapper over the ``docker`` (or compatible) CLI.

    Parameters
    ----------
    executable:
        Engine binary name or path.
    platform:
        Target platform for ``build`` and ``pull``.
    """

    def __init__(self, executable: str = "docker", platform: str = DEFAULT_PLATFORM) -> None:
        self.executable = executable
        self.platform = platform

    # ------------------------------------------------------------------
    # Streaming primitive
    # ------------------------------------------------------------------

    async def stream_lines(
        self,
        args: list[str],
        *,
        cwd: Path | None = None,
        exit_codes: list[int] | None = None,
    ) -> AsyncIterator[str]:
        """Yield output lines of ``<executable> *args`` as they arrive.

        If *exit_codes* is given, the process exit status is appended to it
        once the stream is exhausted.
        """
        try:
            proc = await asyncio.create_subprocess_exec(
                self.executable,
                *args,
                cwd=str(cwd) if cwd else None,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except FileNotFoundError as exc:
            raise ContainerEngineNotFoundError(
                f"{self.executable} CLI not found. Ensure it is installed and on your PATH.",
                args=args,
            ) from exc

        assert proc.stdout is not None
        try:
            # Lines may be longer than the stream reader limit; split them here.
            pending = b""
            while True:
                chunk = await proc.stdout.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                pending += chunk
                *complete, pending = pending.split(b"\n")
                for raw in complete:
                    yield _decode_line(raw)
            if pending:
                yield _decode_line(pending)
            code = await proc.wait()
            if exit_codes is not None:
                exit_codes.append(code)
        finally:
            if proc.returncode is None:
                logger.debug("Terminating %s %s", self.executable, args[:1])
                proc.kill()
                await proc.wait()

    async def run(
        self,
        args: list[str],
        *,
        cwd: Path | None = None,
        on_line: Callable[[str], None] | None = None,
    ) -> CommandResult:
        """Run to completion, collecting output and optionally echoing each line."""
        lines: list[str] = []
        codes: list[int] = []
        async with aclosing(self.stream_lines(args, cwd=cwd, exit_codes=codes)) as stream:
            async for line in stream:
                lines.append(line)
                if on_line is not None:
                    on_line(line)
        return CommandResult(exit_code=codes[0] if codes else -1, output="\n".join(lines))

    @staticmethod
    def _log_line(line: str) -> None:
        if line.strip():
            logger.info(line)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def build(self, context: Path, dockerfile: Path, tag: str) -> None:
        """``build --platform <p> -t <tag> -f <dockerfile> <context>``."""
        args = [
            "build",
            "--platform",
            self.platform,
            "-t",
            tag,
            "-f",
            str(dockerfile),
            str(context),
        ]
        logger.info("Building %s from %s", tag, dockerfile)
        result = await self.run(args, on_line=self._log_line)
        if not result.ok:
            raise ImageBuildError(
                f"Image build for {tag} failed (exit {result.exit_code}):\n{result.output}",
                args=args,
                output=result.output,
            )

    async def push(self, image_ref: str) -> None:
        """``push <ref>``; permission failures are told apart from the rest."""
        args = ["push", image_ref]
        logger.info("Pushing image %s", image_ref)
        result = await self.run(args, on_line=self._log_line)
        if result.ok:
            return
        output = result.output or "Unknown error"
        if is_permission_error(output):
            raise PushPermissionError(image_ref, output)
        raise ImagePushError(f"Push of {image_ref} failed: {output}", args=args, output=output)

    async def pull(self, image_ref: str, platform: str | None = None) -> None:
        """``pull <ref> --platform <p>``."""
        args = ["pull", image_ref, "--platform", platform or self.platform]
        logger.info("Pulling image %s", image_ref)
        result = await self.run(args, on_line=self._log_line)
        if not result.ok:
            cls = ImageNotFoundError if is_not_found_error(result.output) else ContainerEngineError
            raise cls(f"Pull of {image_ref} failed: {result.output}", args=args, output=result.output)

    async def tag(self, source_ref: str, target_ref: str) -> None:
        args = ["tag", source_ref, target_ref]
        result = await self.run(args)
        if not result.ok:
            raise ContainerEngineError(
                f"Tagging {source_ref} as {target_ref} failed: {result.output}",
                args=args,
                output=result.output,
            )

    async def manifest_inspect(self, image_ref: str) -> dict[str, Any]:
        """``manifest inspect <ref>`` parsed as JSON."""
        return await self._inspect_json(["manifest", "inspect", image_ref], image_ref)

    async def image_inspect(self, image_ref: str) -> dict[str, Any]:
        """``image inspect <ref>``; returns the single inspected object."""
        data = await self._inspect_json(["image", "inspect", image_ref], image_ref)
        if isinstance(data, list):
            if not data:
                raise ImageNotFoundError(f"No such image: {image_ref}")
            return data[0]
        return data

    async def _inspect_json(self, args: list[str], image_ref: str) -> Any:
        result = await self.run(args)
        if not result.ok:
            cls = ImageNotFoundError if is_not_found_error(result.output) else ContainerEngineError
            raise cls(
                f"{' '.join(args[:2])} failed for {image_ref}: {result.output}",
                args=args,
                output=result.output,
            )
        try:
            return json.loads(result.output)
        except json.JSONDecodeError as exc:
            raise ContainerEngineError(
                f"Unparseable output from {' '.join(args[:2])} for {image_ref}",
                args=args,
                output=result.output,
            ) from exc
