"""``appship identities`` — repair nested bundle identifiers in a built app."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from appship.core.bundle_identity import (
    discover_nested_bundles,
    ensure_primary_identifier,
    resolve_identities,
)
from appship.monitor.renderer import MonitorRenderer

console = Console()


def identities_cmd(
    app_path: Path = typer.Argument(..., exists=True, file_okay=False, help="The .app bundle."),
    primary: str = typer.Option(..., "--primary", "-p", help="The app's bundle identifier."),
) -> None:
    """Give every embedded framework, extension and resource bundle a unique identifier.

    Exits 1 when a bundle still claims the primary identifier after repair.
    """
    previous = ensure_primary_identifier(app_path, primary)
    if previous is not None:
        console.print(f"[yellow]Primary identifier restored[/yellow] ({previous} -> {primary})")
    report = resolve_identities(primary, discover_nested_bundles(app_path), root=app_path)
    console.print(MonitorRenderer(console=console).render_identities(report))
    console.print(
        f"{len(report.identities)} bundles, {len(report.repaired)} repaired, "
        f"{len(report.failed)} failed"
    )
    if report.primary_conflict:
        console.print("[bold red]A nested bundle still uses the primary identifier.[/bold red]")
        raise typer.Exit(code=1)
