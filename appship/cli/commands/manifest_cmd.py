"""``appship manifest`` — inspect and edit target settings in ``project.pbxproj``."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from appship.core import manifest_store
from appship.core.manifest_store import (
    ConfigurationNotFoundError,
    ManifestParseError,
    SharedConfigurationError,
    TargetNotFoundError,
)

console = Console()

manifest_app = typer.Typer(
    help="Inspect and edit target build settings in a project manifest.",
    no_args_is_help=True,
)

_MANIFEST_ERRORS = (
    ManifestParseError,
    TargetNotFoundError,
    ConfigurationNotFoundError,
    SharedConfigurationError,
)


@manifest_app.command(name="targets")
def targets_cmd(
    manifest: Path = typer.Argument(..., exists=True, dir_okay=False, help="project.pbxproj"),
    key: str = typer.Option(
        "PRODUCT_BUNDLE_IDENTIFIER", "--key", "-k", help="Setting to show per configuration."
    ),
) -> None:
    """List targets, their configurations and one setting per configuration."""
    try:
        doc = manifest_store.load(manifest)
    except ManifestParseError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=1) from exc

    table = Table(title=str(manifest), header_style="bold cyan")
    table.add_column("Target", style="bold")
    table.add_column("Configuration")
    table.add_column(key)
    for target in manifest_store.targets(doc):
        try:
            tiers = manifest_store.configurations(doc, target)
        except ConfigurationNotFoundError:
            table.add_row(target, "[dim]-[/dim]", "[dim]-[/dim]")
            continue
        for tier in tiers:
            value = manifest_store.get_target_setting(doc, target, tier, key)
            table.add_row(target, tier, value if value is not None else "[dim]unset[/dim]")
    console.print(table)


@manifest_app.command(name="set")
def set_cmd(
    manifest: Path = typer.Argument(..., exists=True, dir_okay=False, help="project.pbxproj"),
    assignments: list[str] = typer.Argument(..., help="KEY=VALUE settings to apply."),
    target: str = typer.Option("Runner", "--target", "-t", help="Target to modify."),
    configuration: list[str] = typer.Option(
        None, "--configuration", "-c", help="Configuration tier. Repeatable; default all."
    ),
) -> None:
    """Set build settings on one target, leaving every other byte unchanged."""
    settings: dict[str, str] = {}
    for pair in assignments:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected KEY=VALUE, got {pair!r}")
        settings[key] = value

    try:
        doc = manifest_store.load(manifest)
        updated = manifest_store.set_target_settings(doc, target, settings, configuration or None)
    except _MANIFEST_ERRORS as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=1) from exc

    if updated.render() == doc.render():
        console.print("[dim]No changes.[/dim]")
        return
    manifest_store.save(updated, manifest)
    console.print(
        f"[green]Updated[/green] {', '.join(sorted(settings))} on target [bold]{target}[/bold]"
    )
