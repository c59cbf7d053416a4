"""``enclaveforge ledger ...``: inspect the local provenance ledger.

The ledger is append-only; these commands only read it.
"""

from __future__ import annotations

from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from enclaveforge.cli import runtime
from enclaveforge.core.provenance_ledger import LedgerIntegrityError, ProvenanceLedger
from enclaveforge.models.ledger import RecordKind
from enclaveforge.monitor.renderer import BuildRenderer

console = Console()

ledger_app = typer.Typer(
    name="ledger",
    help="Inspect and verify the provenance ledger.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _open_ledger(ctx: typer.Context) -> ProvenanceLedger:
    settings = runtime.settings_from(ctx)
    if not settings.ledger_path.exists():
        console.print(f"[bold red]Ledger not found:[/bold red] {settings.ledger_path}")
        raise typer.Exit(code=1)
    return ProvenanceLedger(settings.ledger_path)


@ledger_app.command(name="show", help="Show recorded provenance events.")
def show_cmd(
    ctx: typer.Context,
    subject: Optional[str] = typer.Argument(
        None, help="Image digest to show (default: every subject)."
    ),
) -> None:
    ledger = _open_ledger(ctx)
    subjects = [subject] if subject else ledger.all_subjects()
    if not subjects:
        console.print("[dim]The ledger is empty.[/dim]")
        return

    table = Table(show_header=True, header_style="bold cyan", expand=True)
    table.add_column("Subject", min_width=20)
    table.add_column("Kind")
    table.add_column("Build ID")
    table.add_column("Registry")
    table.add_column("Recorded (UTC)", style="dim")
    table.add_column("Entry Hash", style="dim")

    for name in subjects:
        for record in ledger.get_subject_records(name):
            kind_style = "red" if record.kind is RecordKind.BUILD_FAILED_VERIFICATION else "green"
            table.add_row(
                escape(record.subject),
                f"[{kind_style}]{record.kind.value}[/{kind_style}]",
                escape(record.build_id) or "[dim]-[/dim]",
                escape(record.registry) or "[dim]-[/dim]",
                record.timestamp_utc.strftime("%Y-%m-%d %H:%M:%S"),
                record.entry_hash[:16],
            )
    console.print(table)


@ledger_app.command(name="verify", help="Verify the hash chain of every subject.")
def verify_cmd(
    ctx: typer.Context,
    subject: Optional[str] = typer.Argument(
        None, help="Only verify this image digest's chain."
    ),
) -> None:
    ledger = _open_ledger(ctx)
    renderer = BuildRenderer(console=console)
    subjects = [subject] if subject else ledger.all_subjects()
    broken = False
    for name in subjects:
        try:
            valid = ledger.verify_chain(name)
        except LedgerIntegrityError as exc:
            console.print(f"[red]{escape(str(exc))}[/red]")
            valid = False
        renderer.print_chain_verification(name, valid)
        broken = broken or not valid
    if broken:
        raise typer.Exit(code=1)
    console.print(f"[bold green]{len(subjects)} chain(s) verified.[/bold green]")
