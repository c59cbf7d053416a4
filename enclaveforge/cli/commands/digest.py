"""``enclaveforge digest IMAGE_REF``: pin an image reference to its digest.

By default the local container engine resolves the digest (pulling
manifests for multi-platform images and checking the target platform).
``--registry`` asks Docker Hub directly instead, without an engine.
"""

from __future__ import annotations

import typer
from rich.console import Console
from rich.markup import escape

from enclaveforge.cli import runtime
from enclaveforge.models.image import ResolvedImage, registry_name

console = Console()


def digest_cmd(
    ctx: typer.Context,
    image_ref: str = typer.Argument(..., help="Image reference to resolve."),
    from_registry: bool = typer.Option(
        False, "--registry", help="Look the tag up on Docker Hub instead of locally."
    ),
) -> None:
    """Resolve IMAGE_REF to its sha256 digest and registry path."""
    settings = runtime.settings_from(ctx)

    async def _resolve() -> ResolvedImage:
        async with runtime.open_orchestrator(settings) as forge:
            if from_registry:
                digest = await forge.registry.resolve_registry_digest(image_ref)
                return ResolvedImage(
                    image_ref=image_ref, digest=digest, registry=registry_name(image_ref)
                )
            return await forge.resolver.resolve_digest_and_registry(image_ref)

    resolved = runtime.run(_resolve(), console, label="Digest resolution failed")
    console.print(f"[bold]Image:[/bold]    {escape(resolved.image_ref)}")
    console.print(f"[bold]Digest:[/bold]   {resolved.digest}")
    console.print(f"[bold]Registry:[/bold] {escape(resolved.registry)}")
