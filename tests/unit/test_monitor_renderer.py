"""Unit tests for build, provenance and release rendering."""

from __future__ import annotations

import io

import pytest
from rich.console import Console
from rich.panel import Panel

from enclaveforge.core.release import compose_release
from enclaveforge.models.build import Build, BuildStatus
from enclaveforge.models.provenance import ProvenanceFailed, ProvenanceVerified
from enclaveforge.models.release import PreparedRelease
from enclaveforge.monitor.renderer import (
    TRUNCATION_SUFFIX,
    BuildRenderer,
    _STATUS_STYLES,
    format_build_info,
    format_build_status,
    format_source_link,
    truncate_provenance_json,
)

COMMIT_SHA = "0123456789abcdef0123456789abcdef01234567"
D1 = "sha256:" + "1" * 64
D2 = "sha256:" + "2" * 64
D3 = "sha256:" + "3" * 64


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _build(build_id: str = "top", status: BuildStatus = BuildStatus.SUCCESS, **kwargs) -> Build:
    return Build(
        build_id=build_id,
        status=status,
        repo_url="https://github.com/acme/app.git",
        git_ref=COMMIT_SHA,
        build_type="verifiable",
        **kwargs,
    )


def _capture() -> tuple[Console, io.StringIO]:
    buffer = io.StringIO()
    return Console(file=buffer, width=200, force_terminal=False, color_system=None), buffer


def _plain(panel: Panel) -> str:
    console, buffer = _capture()
    console.print(panel)
    return buffer.getvalue()


# ---------------------------------------------------------------------------
# Test: small formatters
# ---------------------------------------------------------------------------


class TestFormatters:
    @pytest.mark.parametrize("status", list(BuildStatus))
    def test_every_status_has_a_style(self, status):
        assert status in _STATUS_STYLES
        assert format_build_status(status) == (
            f"[{_STATUS_STYLES[status]}]{status.value}[/{_STATUS_STYLES[status]}]"
        )

    def test_status_colours(self):
        assert format_build_status(BuildStatus.BUILDING).startswith("[yellow]")
        assert format_build_status(BuildStatus.SUCCESS).startswith("[green]")
        assert format_build_status(BuildStatus.FAILED).startswith("[red]")

    def test_github_source_link(self):
        assert (
            format_source_link("https://github.com/acme/app.git", "abc")
            == "https://github.com/acme/app/tree/abc"
        )

    @pytest.mark.parametrize(
        "repo_url",
        ["https://gitlab.com/acme/app", "git@github.com:acme/app.git", "https://github.com/acme"],
    )
    def test_other_source_link(self, repo_url):
        assert format_source_link(repo_url, "abc") == f"{repo_url}@abc"

    def test_provenance_truncation(self):
        data = {"key": "x" * 50}
        full = truncate_provenance_json(data, 1000)
        assert full == '{"key":"' + "x" * 50 + '"}'
        cut = truncate_provenance_json(data, 10)
        assert cut == full[:10] + TRUNCATION_SUFFIX


# ---------------------------------------------------------------------------
# Test: format_build_info
# ---------------------------------------------------------------------------


class TestFormatBuildInfo:
    def test_fixed_and_optional_lines(self):
        lines = format_build_info(
            _build(image_digest=D1, error_message="boom", provenance_json={"a": 1})
        )
        assert lines[0] == "[cyan]build_id[/cyan]: top"
        assert "[cyan]source[/cyan]: https://github.com/acme/app/tree/" + COMMIT_SHA in lines
        assert "[cyan]status[/cyan]: [green]success[/green]" in lines
        assert f"[cyan]image_digest[/cyan]: {D1}" in lines
        assert '[cyan]provenance_json[/cyan]: {"a":1}' in lines
        assert "[cyan]error_message[/cyan]: [red]boom[/red]" in lines
        assert not any("image_url" in line for line in lines)

    def test_markup_in_values_is_escaped(self):
        lines = format_build_info(_build(build_id="[bold]x"))
        assert lines[0] == "[cyan]build_id[/cyan]: \\[bold]x"

    def test_dependencies_sorted_and_listed_once(self):
        build = _build(dependencies={D2: _build("b2"), D1: _build("b1")})
        lines = format_build_info(build)

        headers = [line for line in lines if line.startswith("- ")]
        assert headers == [f"- {D1}", f"- {D2}"]
        assert sum("build_id[/cyan]: b1" in line for line in lines) == 1
        assert sum("build_id[/cyan]: b2" in line for line in lines) == 1
        assert lines.count("[bold cyan]dependencies[/bold cyan]:") == 1
        assert lines[-1] != ""

    def test_nested_dependencies_are_indented(self):
        leaf = _build("leaf", image_digest=D3)
        build = _build(dependencies={D1: _build("mid", dependencies={D3: leaf})})
        lines = format_build_info(build)

        assert "  [cyan]build_id[/cyan]: mid" in lines
        assert f"  - {D3}" in lines
        assert "    [cyan]build_id[/cyan]: leaf" in lines

    def test_dependencies_can_be_omitted(self):
        build = _build(dependencies={D1: _build("b1")})
        lines = format_build_info(build, include_dependencies=False)
        assert not any("dependencies" in line for line in lines)

    def test_long_provenance_is_truncated(self):
        lines = format_build_info(
            _build(provenance_json={"k": "v" * 500}), max_provenance_json_chars=20
        )
        line = next(l for l in lines if "provenance_json" in l)
        assert line.endswith(TRUNCATION_SUFFIX)


# ---------------------------------------------------------------------------
# Test: BuildRenderer
# ---------------------------------------------------------------------------


class TestBuildRenderer:
    def test_render_build_panel(self):
        renderer = BuildRenderer()
        panel = renderer.render_build(_build(status=BuildStatus.FAILED))
        assert isinstance(panel, Panel)
        assert panel.border_style == "red"
        assert "Build top" in _plain(panel)

    def test_build_table(self):
        renderer = BuildRenderer()
        table = renderer.render_build_table([_build("a"), _build("b", image_digest=D1)])
        assert table.row_count == 2

    def test_verified_provenance(self):
        result = ProvenanceVerified(
            build_id="top",
            image_url="docker.io/acme/app:v1",
            image_digest=D1,
            repo_url="https://github.com/acme/app",
            git_ref=COMMIT_SHA,
            provenance_signature="ab" * 64,
        )
        panel = BuildRenderer().render_provenance(result)
        text = _plain(panel)
        assert panel.border_style == "green"
        assert "Provenance signature verified" in text
        assert D1 in text

    def test_failed_provenance(self):
        panel = BuildRenderer().render_provenance(
            ProvenanceFailed(error="no match", build_id="top")
        )
        text = _plain(panel)
        assert panel.border_style == "red"
        assert "Provenance NOT verified" in text
        assert "no match" in text

    def test_release_panel(self):
        release = compose_release(D1, "docker.io/acme/app", b"{}", b"a.b.c.d.e", now=100)
        prepared = PreparedRelease(release=release, final_image_ref="acme/app:v1")
        text = _plain(BuildRenderer().render_release(prepared))
        assert "docker.io/acme/app" in text
        assert "0x" + "1" * 64 in text
        assert "3700" in text

    def test_chain_verification_messages(self):
        console, buffer = _capture()
        renderer = BuildRenderer(console=console)
        renderer.print_chain_verification("build-1", True)
        renderer.print_chain_verification("build-2", False)
        output = buffer.getvalue()
        assert "Provenance chain for build-1 is valid." in output
        assert "Provenance chain for build-2 is BROKEN!" in output
