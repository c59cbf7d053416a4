"""Shared plumbing for CLI commands: settings, logging, orchestrator, errors."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any, TypeVar

import httpx
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from enclaveforge.config import ForgeSettings
from enclaveforge.core.orchestrator import DeployOrchestrator

T = TypeVar("T")

# Errors a command reports as a one-line message instead of a traceback.
EXPECTED_ERRORS: tuple[type[BaseException], ...] = (
    ValueError,
    RuntimeError,
    OSError,
    TimeoutError,
    httpx.HTTPError,
)


def configure_logging(settings: ForgeSettings) -> None:
    level = "DEBUG" if settings.debug else settings.log_level.upper()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=settings.debug, show_path=settings.debug)],
        force=True,
    )


def settings_from(ctx: typer.Context) -> ForgeSettings:
    """The settings the root callback stored, or fresh ones from the environment."""
    if ctx.obj is None:
        ctx.obj = ForgeSettings()
    return ctx.obj


def open_orchestrator(settings: ForgeSettings) -> DeployOrchestrator:
    return DeployOrchestrator(settings)


def run(coro: Coroutine[Any, Any, T], console: Console, *, label: str = "Error") -> T:
    """Run *coro* to completion; expected failures become ``typer.Exit(1)``."""
    try:
        return asyncio.run(coro)
    except EXPECTED_ERRORS as exc:
        console.print(f"[bold red]{label}:[/bold red] {escape(str(exc))}")
        raise typer.Exit(code=1) from exc
