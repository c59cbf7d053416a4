"""``enclaveforge build ...``: verifiable builds on the remote build service.

Submits builds at an exact commit, follows them to completion, and checks
the provenance the service signs for every finished image.
"""

from __future__ import annotations

from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape

from enclaveforge.cli import runtime
from enclaveforge.core.provenance import VerifiableBuildResult
from enclaveforge.models.build import Build, SubmitBuildRequest
from enclaveforge.models.provenance import ProvenanceFailed, ProvenanceVerified
from enclaveforge.monitor.renderer import BuildRenderer, format_build_status

console = Console()

build_app = typer.Typer(
    name="build",
    help="Submit, follow and verify verifiable builds.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _print_log(text: str) -> None:
    console.out(text, end="", highlight=False)


@build_app.command(name="submit", help="Submit a build and wait for verified provenance.")
def submit_cmd(
    ctx: typer.Context,
    repo_url: str = typer.Argument(..., help="Git repository URL to build."),
    git_ref: str = typer.Argument(..., help="Full 40-character commit SHA."),
    dockerfile: str = typer.Option(
        "Dockerfile", "--dockerfile", "-f", help="Dockerfile path inside the repository."
    ),
    context_path: str = typer.Option(
        ".", "--context", "-c", help="Build context path inside the repository."
    ),
    caddyfile: Optional[str] = typer.Option(
        None, "--caddyfile", help="Caddyfile path inside the repository (enables TLS)."
    ),
    dependencies: Optional[list[str]] = typer.Option(
        None, "--dependency", "-d", help="Image digest this build depends on (repeatable)."
    ),
    wait: bool = typer.Option(
        True, "--wait/--no-wait", help="Follow the build and verify its provenance."
    ),
    show_logs: bool = typer.Option(True, "--logs/--no-logs", help="Stream build logs."),
) -> None:
    """Submit a verifiable build for REPO_URL at GIT_REF."""
    settings = runtime.settings_from(ctx)
    try:
        request = SubmitBuildRequest(
            repo_url=repo_url,
            git_ref=git_ref,
            dockerfile_path=dockerfile,
            build_context_path=context_path,
            caddyfile_path=caddyfile,
            dependencies=dependencies or [],
        )
    except ValueError as exc:
        console.print(f"[bold red]Invalid build request:[/bold red] {escape(str(exc))}")
        raise typer.Exit(code=1) from exc

    async def _submit() -> str:
        async with runtime.open_orchestrator(settings) as forge:
            response = await forge.builds.submit(request)
            return response.build_id

    async def _submit_and_verify() -> VerifiableBuildResult:
        async with runtime.open_orchestrator(settings) as forge:
            return await forge.build_and_verify(
                request, on_log=_print_log if show_logs else None
            )

    if not wait:
        build_id = runtime.run(_submit(), console, label="Build submission failed")
        console.print(f"[bold green]Submitted build[/bold green] {escape(build_id)}")
        return

    result = runtime.run(_submit_and_verify(), console, label="Build failed")
    renderer = BuildRenderer(console=console)
    console.print()
    renderer.print_build(result.build)
    console.print(renderer.render_provenance(result.provenance))


@build_app.command(name="status", help="Show a build's current status.")
def status_cmd(
    ctx: typer.Context,
    build_id: str = typer.Argument(..., help="Build ID."),
) -> None:
    settings = runtime.settings_from(ctx)

    async def _status() -> Build:
        async with runtime.open_orchestrator(settings) as forge:
            return await forge.builds.get(build_id)

    build = runtime.run(_status(), console, label="Status lookup failed")
    console.print(f"{escape(build.build_id)}: {format_build_status(build.status)}")
    if build.error_message:
        console.print(f"[red]{escape(build.error_message)}[/red]")


@build_app.command(name="info", help="Show a build and its resolved dependencies.")
def info_cmd(
    ctx: typer.Context,
    build_id: str = typer.Argument(..., help="Build ID, or an image digest with --digest."),
    by_digest: bool = typer.Option(
        False, "--digest", help="Treat the argument as an image digest."
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the full build as JSON."),
    max_provenance_chars: int = typer.Option(
        200, "--max-provenance-chars", help="Truncate provenance JSON in text output."
    ),
) -> None:
    """Show BUILD_ID with its dependency tree."""
    settings = runtime.settings_from(ctx)

    async def _info() -> Build:
        async with runtime.open_orchestrator(settings) as forge:
            if by_digest:
                return await forge.builds.get_by_digest(build_id)
            return await forge.builds.get(build_id)

    build = runtime.run(_info(), console, label="Build lookup failed")
    if as_json:
        console.print_json(build.model_dump_json())
        return
    renderer = BuildRenderer(console=console)
    console.print(renderer.render_build(build, max_provenance_json_chars=max_provenance_chars))


@build_app.command(name="logs", help="Print a build's logs.")
def logs_cmd(
    ctx: typer.Context,
    build_id: str = typer.Argument(..., help="Build ID."),
    follow: bool = typer.Option(
        False, "--follow", "-F", help="Keep printing new log text until the build finishes."
    ),
) -> None:
    settings = runtime.settings_from(ctx)

    async def _logs() -> None:
        async with runtime.open_orchestrator(settings) as forge:
            if not follow:
                _print_log(await forge.builds.get_logs(build_id))
                return
            async for chunk in forge.builds.stream_logs(
                build_id, timeout=settings.build_timeout_seconds
            ):
                _print_log(chunk.content)
                if chunk.is_complete and chunk.final_status is not None:
                    console.print()
                    console.print(
                        f"[bold]Build finished:[/bold] {format_build_status(chunk.final_status)}"
                    )

    runtime.run(_logs(), console, label="Log retrieval failed")


@build_app.command(name="verify", help="Verify provenance by build ID, image digest or commit.")
def verify_cmd(
    ctx: typer.Context,
    identifier: str = typer.Argument(
        ..., help="Build ID, sha256:<hex> image digest, or 40-character commit SHA."
    ),
) -> None:
    """Ask the build service to verify IDENTIFIER's provenance."""
    settings = runtime.settings_from(ctx)

    async def _verify() -> ProvenanceVerified | ProvenanceFailed:
        async with runtime.open_orchestrator(settings) as forge:
            return await forge.verifier.verify(identifier)

    result = runtime.run(_verify(), console, label="Verification error")
    console.print(BuildRenderer(console=console).render_provenance(result))
    if not result.verified:
        raise typer.Exit(code=1)


@build_app.command(name="list", help="List builds for a billing address.")
def list_cmd(
    ctx: typer.Context,
    billing_address: Optional[str] = typer.Option(
        None, "--address", "-a", help="Billing address (defaults to the signing account)."
    ),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum builds to show."),
    offset: int = typer.Option(0, "--offset", help="Builds to skip."),
) -> None:
    settings = runtime.settings_from(ctx)

    async def _list() -> list[Build]:
        async with runtime.open_orchestrator(settings) as forge:
            return await forge.builds.list(billing_address, limit=limit, offset=offset)

    builds = runtime.run(_list(), console, label="Listing builds failed")
    if not builds:
        console.print("[dim]No builds found.[/dim]")
        return
    console.print(BuildRenderer(console=console).render_build_table(builds))
