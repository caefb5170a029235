"""``appship package`` — assemble an ``.ipa`` from an archive or build directory."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from appship.core.archive_assembler import (
    AssemblyError,
    BundleNotFoundError,
    assemble_package,
    find_primary_bundle,
)
from appship.models.package import MIN_PACKAGE_BYTES

console = Console()


def package_cmd(
    archive: Path = typer.Argument(..., exists=True, file_okay=False, help="Archive root."),
    output: Path = typer.Argument(..., help="Destination .ipa path."),
    min_size: int = typer.Option(
        MIN_PACKAGE_BYTES, "--min-size", help="Reject payloads of this many bytes or fewer."
    ),
) -> None:
    """Locate the app bundle (repairing the archive layout if needed) and package it."""
    try:
        bundle = find_primary_bundle(archive)
        output.parent.mkdir(parents=True, exist_ok=True)
        manifest = assemble_package(bundle, output, min_size=min_size)
    except (BundleNotFoundError, AssemblyError) as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=1) from exc

    console.print(f"[green]Packaged[/green] {manifest.bundle_name} -> {manifest.path}")
    console.print(
        f"{manifest.entry_count} entries, {manifest.uncompressed_bytes} bytes uncompressed, "
        f"sha256 {manifest.sha256}"
    )
