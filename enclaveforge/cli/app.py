"""Main Typer application: imports and registers all CLI commands.

Entry point: ``enclaveforge`` (configured via pyproject.toml scripts).

Commands: build (submit, status, info, logs, verify, list), release
(prepare, prebuilt, from-build), digest, ledger (show, verify), version.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from enclaveforge import __version__
from enclaveforge.cli.commands.build import build_app
from enclaveforge.cli.commands.digest import digest_cmd
from enclaveforge.cli.commands.ledger import ledger_app
from enclaveforge.cli.commands.release import release_app
from enclaveforge.cli.runtime import configure_logging
from enclaveforge.config import ForgeSettings
from enclaveforge.models.environment import BuildType, EnvironmentName

app = typer.Typer(
    name="enclaveforge",
    help="enclaveforge: layered images, verifiable builds and encrypted releases for enclaves.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def root(
    ctx: typer.Context,
    environment: Optional[EnvironmentName] = typer.Option(
        None, "--env", help="Target environment (default from ENCLAVEFORGE_ENVIRONMENT)."
    ),
    build_type: Optional[BuildType] = typer.Option(
        None, "--build-type", help="KMS key set to use."
    ),
    assets_path: Optional[Path] = typer.Option(
        None, "--assets", help="Directory holding keys/ and tools/."
    ),
    ledger_path: Optional[Path] = typer.Option(
        None, "--ledger", "-l", help="Path to the provenance ledger database."
    ),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level."),
    debug: bool = typer.Option(False, "--debug", help="Verbose logging with tracebacks."),
) -> None:
    """Resolve settings once and configure logging for every subcommand."""
    overrides = {
        "environment": environment,
        "build_type": build_type,
        "assets_path": assets_path,
        "ledger_path": ledger_path,
        "log_level": log_level,
    }
    settings = ForgeSettings(**{k: v for k, v in overrides.items() if v is not None})
    if debug:
        settings = settings.model_copy(update={"debug": True})
    configure_logging(settings)
    ctx.obj = settings


# Register subcommands
app.add_typer(build_app, name="build")
app.add_typer(release_app, name="release")
app.add_typer(ledger_app, name="ledger")
app.command(name="digest", help="Resolve an image reference to its digest.")(digest_cmd)


@app.command(name="version", help="Show the enclaveforge version.")
def version_cmd() -> None:
    Console().print(f"enclaveforge {__version__}")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
