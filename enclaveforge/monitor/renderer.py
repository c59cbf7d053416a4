"""Rich terminal rendering for builds, provenance results and releases.

``format_build_info`` produces Rich-markup lines (one key per line) so the
same text can be printed, embedded in a Panel, or asserted on in tests.

Color scheme
------------
- yellow    : BUILDING
- green     : SUCCESS, verified provenance
- red       : FAILED, failed provenance, error messages
- cyan      : keys
"""

from __future__ import annotations

import json
import re
from urllib.parse import urlsplit

from rich.console import Console, Group
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from enclaveforge.models.build import Build, BuildStatus
from enclaveforge.models.provenance import ProvenanceFailed, ProvenanceVerified
from enclaveforge.models.release import PreparedRelease

# ---------------------------------------------------------------------------
# Status -> Rich style mapping
# ---------------------------------------------------------------------------

_STATUS_STYLES: dict[BuildStatus, str] = {
    BuildStatus.BUILDING: "yellow",
    BuildStatus.SUCCESS: "green",
    BuildStatus.FAILED: "red",
}

_PANEL_BORDERS: dict[BuildStatus, str] = {
    BuildStatus.BUILDING: "yellow",
    BuildStatus.SUCCESS: "green",
    BuildStatus.FAILED: "red",
}

TRUNCATION_SUFFIX = "… (use --json)"


def format_build_status(status: BuildStatus) -> str:
    style = _STATUS_STYLES.get(status)
    return f"[{style}]{status.value}[/{style}]" if style else status.value


def format_source_link(repo_url: str, git_ref: str) -> str:
    """Browsable link for GitHub repositories, ``repo@ref`` otherwise."""
    normalized = re.sub(r"\.git$", "", repo_url)
    parts = urlsplit(normalized)
    if parts.scheme in ("http", "https") and parts.netloc.lower() == "github.com":
        path = parts.path.rstrip("/")
        if len([p for p in path.split("/") if p]) >= 2:
            return f"https://github.com{path}/tree/{git_ref}"
    return f"{repo_url}@{git_ref}"


def truncate_provenance_json(provenance: object, max_chars: int) -> str:
    text = json.dumps(provenance, separators=(",", ":"))
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + TRUNCATION_SUFFIX


def _kv(label: str, value: object) -> str | None:
    if value is None:
        return None
    text = str(value)
    if not text:
        return None
    return f"[cyan]{label}[/cyan]: {escape(text)}"


def format_build_info(
    build: Build,
    *,
    indent: str = "",
    include_dependencies: bool = True,
    max_provenance_json_chars: int = 200,
) -> list[str]:
    """Render *build* as Rich-markup lines.

    Parameters
    ----------
    build:
        The build to describe.
    indent:
        Prefix for every non-blank line.
    include_dependencies:
        Render ``build.dependencies`` recursively beneath the build, each
        dependency once, ordered by digest.
    max_provenance_json_chars:
        Provenance JSON longer than this is cut and suffixed with a hint.

    Returns
    -------
    list[str]
        One entry per output line; blank strings separate dependency blocks.
    """
    lines = [
        f"{indent}[cyan]build_id[/cyan]: {escape(build.build_id)}",
        f"{indent}[cyan]repo_url[/cyan]: {escape(build.repo_url)}",
        f"{indent}[cyan]git_ref[/cyan]: {escape(build.git_ref)}",
        f"{indent}[cyan]source[/cyan]: "
        f"{escape(format_source_link(build.repo_url, build.git_ref))}",
        f"{indent}[cyan]status[/cyan]: {format_build_status(build.status)}",
        f"{indent}[cyan]build_type[/cyan]: {escape(build.build_type)}",
    ]

    optional = [
        _kv("image_name", build.image_name),
        _kv("image_digest", build.image_digest),
        _kv("image_url", build.image_url),
        (
            f"[cyan]provenance_json[/cyan]: "
            f"{escape(truncate_provenance_json(build.provenance_json, max_provenance_json_chars))}"
            if build.provenance_json is not None
            else None
        ),
        _kv("provenance_signature", build.provenance_signature),
        _kv("created_at", build.created_at),
        _kv("updated_at", build.updated_at),
        (
            f"[cyan]error_message[/cyan]: [red]{escape(build.error_message)}[/red]"
            if build.error_message
            else None
        ),
    ]
    lines.extend(f"{indent}{line}" for line in optional if line)

    if not include_dependencies or not build.dependencies:
        return lines

    lines.append("")
    lines.append(f"{indent}[bold cyan]dependencies[/bold cyan]:")
    for digest in sorted(build.dependencies):
        lines.append(f"{indent}- {escape(digest)}")
        nested = format_build_info(
            build.dependencies[digest],
            include_dependencies=True,
            max_provenance_json_chars=max_provenance_json_chars,
        )
        lines.extend(f"{indent}  {line}" if line else "" for line in nested)
        lines.append("")

    while lines and lines[-1] == "":
        lines.pop()
    return lines


class BuildRenderer:
    """Renders builds, provenance results and releases as Rich output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Builds
    # ------------------------------------------------------------------

    def render_build(self, build: Build, *, max_provenance_json_chars: int = 200) -> Panel:
        lines = format_build_info(build, max_provenance_json_chars=max_provenance_json_chars)
        return Panel(
            Text.from_markup("\n".join(lines)),
            title=f"[bold]Build {escape(build.build_id)}[/bold]",
            border_style=_PANEL_BORDERS.get(build.status, "blue"),
            padding=(1, 2),
        )

    def render_build_table(self, builds: list[Build]) -> Table:
        table = Table(
            show_header=True,
            header_style="bold cyan",
            expand=True,
            show_lines=False,
        )
        table.add_column("Build ID", min_width=12)
        table.add_column("Status", justify="center")
        table.add_column("Source", min_width=25)
        table.add_column("Image Digest")
        table.add_column("Created", style="dim")

        for build in builds:
            table.add_row(
                escape(build.build_id),
                format_build_status(build.status),
                escape(format_source_link(build.repo_url, build.git_ref)),
                escape(build.image_digest) if build.image_digest else "[dim]-[/dim]",
                escape(build.created_at) or "[dim]-[/dim]",
            )
        return table

    # ------------------------------------------------------------------
    # Provenance
    # ------------------------------------------------------------------

    def render_provenance(self, result: ProvenanceVerified | ProvenanceFailed) -> Panel:
        if isinstance(result, ProvenanceFailed):
            body = f"[bold red]Provenance NOT verified[/bold red]\n{escape(result.error)}"
            if result.build_id:
                body += f"\n[cyan]build_id[/cyan]: {escape(result.build_id)}"
            return Panel(
                Text.from_markup(body),
                title="[bold]Provenance[/bold]",
                border_style="red",
                padding=(1, 2),
            )

        lines = [
            "[bold green]Provenance signature verified[/bold green]",
            "",
            f"[cyan]image[/cyan]: {escape(result.image_url)}",
            f"[cyan]digest[/cyan]: {escape(result.image_digest)}",
            f"[cyan]source[/cyan]: "
            f"{escape(format_source_link(result.repo_url, result.git_ref))}",
            f"[cyan]provenance_signature[/cyan]: {escape(result.provenance_signature)}",
        ]
        if result.build_id:
            lines.append(f"[cyan]build_id[/cyan]: {escape(result.build_id)}")
        return Panel(
            Text.from_markup("\n".join(lines)),
            title="[bold]Provenance[/bold]",
            border_style="green",
            padding=(1, 2),
        )

    # ------------------------------------------------------------------
    # Releases
    # ------------------------------------------------------------------

    def render_release(self, prepared: PreparedRelease) -> Panel:
        release = prepared.release
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("Registry", min_width=20)
        table.add_column("Digest")
        for artifact in release.artifacts:
            table.add_row(escape(artifact.registry), "0x" + artifact.digest.hex())

        summary = "  |  ".join(
            [
                f"[bold]Image:[/bold] {escape(prepared.final_image_ref)}",
                f"[bold]Upgrade by:[/bold] {release.upgrade_by_time}",
                f"[bold]Public env:[/bold] {len(release.public_env)} bytes",
                f"[bold]Encrypted env:[/bold] {len(release.encrypted_env)} bytes",
            ]
        )
        return Panel(
            Group(table, Text(""), Text.from_markup(summary)),
            title="[bold]Release[/bold]",
            border_style="blue",
            padding=(1, 2),
        )

    # ------------------------------------------------------------------
    # Standalone print
    # ------------------------------------------------------------------

    def print_build(self, build: Build) -> None:
        self.console.print(self.render_build(build))

    def print_chain_verification(self, subject: str, valid: bool) -> None:
        if valid:
            self.console.print(f"[green]Provenance chain for {subject} is valid.[/green]")
        else:
            self.console.print(f"[bold red]Provenance chain for {subject} is BROKEN![/bold red]")
