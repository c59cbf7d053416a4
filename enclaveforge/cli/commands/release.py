"""``enclaveforge release ...``: prepare a Release for the scheduler.

Three sources, one output:

- ``prepare``: a local Dockerfile or a registry image, layered and pushed
- ``prebuilt``: a Docker Hub tag whose digest is looked up in the registry
- ``from-build``: a finished verifiable build, verified before use

The Release is printed as JSON (digests as ``0x`` hex) so it can be piped
into whatever submits it on chain.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from enclaveforge.cli import runtime
from enclaveforge.models.release import PreparedRelease
from enclaveforge.monitor.renderer import BuildRenderer

console = Console()

release_app = typer.Typer(
    name="release",
    help="Prepare encrypted, digest-pinned releases.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

_ENV_FILE_HELP = "Environment file; *_PUBLIC keys stay clear, the rest are encrypted."


def _emit(prepared: PreparedRelease, as_json: bool) -> None:
    if as_json:
        console.print_json(json.dumps(prepared.release.to_json_dict()))
        return
    console.print(BuildRenderer(console=console).render_release(prepared))


@release_app.command(name="prepare", help="Layer an image and prepare a release for it.")
def prepare_cmd(
    ctx: typer.Context,
    app_id: str = typer.Argument(..., help="Application ID the environment is bound to."),
    dockerfile: Optional[Path] = typer.Option(
        None, "--dockerfile", "-f", help="Build the base image from this Dockerfile."
    ),
    image_ref: Optional[str] = typer.Option(
        None, "--image", "-i", help="Layer this registry image instead of building."
    ),
    target_ref: Optional[str] = typer.Option(
        None, "--target", "-t", help="Reference to push the layered image to."
    ),
    env_file: Optional[Path] = typer.Option(None, "--env-file", "-e", help=_ENV_FILE_HELP),
    as_json: bool = typer.Option(True, "--json/--table", help="Output format."),
) -> None:
    """Prepare a release for APP_ID from a Dockerfile or an existing image.

    Exactly one of --dockerfile and --image is required; --target is
    required with --dockerfile.
    """
    settings = runtime.settings_from(ctx)

    async def _prepare() -> PreparedRelease:
        async with runtime.open_orchestrator(settings) as forge:
            return await forge.prepare_release(
                app_id,
                dockerfile_path=dockerfile,
                image_ref=image_ref,
                target_ref=target_ref,
                env_file_path=env_file,
            )

    prepared = runtime.run(_prepare(), console, label="Release preparation failed")
    _emit(prepared, as_json)


@release_app.command(name="prebuilt", help="Prepare a release for a pre-built Docker Hub image.")
def prebuilt_cmd(
    ctx: typer.Context,
    app_id: str = typer.Argument(..., help="Application ID the environment is bound to."),
    image_ref: str = typer.Argument(
        ..., help="Full Docker Hub reference, docker.io/OWNER/REPO:TAG."
    ),
    env_file: Optional[Path] = typer.Option(None, "--env-file", "-e", help=_ENV_FILE_HELP),
    as_json: bool = typer.Option(True, "--json/--table", help="Output format."),
) -> None:
    settings = runtime.settings_from(ctx)

    async def _prepare() -> PreparedRelease:
        async with runtime.open_orchestrator(settings) as forge:
            return await forge.prepare_release_from_prebuilt(app_id, image_ref, env_file)

    prepared = runtime.run(_prepare(), console, label="Release preparation failed")
    _emit(prepared, as_json)


@release_app.command(name="from-build", help="Prepare a release from a verified build.")
def from_build_cmd(
    ctx: typer.Context,
    app_id: str = typer.Argument(..., help="Application ID the environment is bound to."),
    build_id: str = typer.Argument(..., help="ID of a successful verifiable build."),
    env_file: Optional[Path] = typer.Option(None, "--env-file", "-e", help=_ENV_FILE_HELP),
    as_json: bool = typer.Option(True, "--json/--table", help="Output format."),
) -> None:
    """Verify BUILD_ID's provenance, then release the image it produced."""
    settings = runtime.settings_from(ctx)

    async def _prepare() -> PreparedRelease:
        async with runtime.open_orchestrator(settings) as forge:
            return await forge.prepare_release_from_build(app_id, build_id, env_file)

    prepared = runtime.run(_prepare(), console, label="Release preparation failed")
    _emit(prepared, as_json)
