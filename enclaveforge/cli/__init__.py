"""enclaveforge CLI: Typer-based command-line interface.

Provides the ``enclaveforge`` command with subcommand groups for verifiable
builds, release preparation, digest resolution and the provenance ledger.

All output uses Rich for formatted terminal display.
"""
