"""``appship config`` — show the resolved build configuration."""

from __future__ import annotations

import json
from pathlib import Path

import typer
from rich.console import Console

from appship.cli.commands.run import providers_from_options
from appship.config import RuntimeSettings
from appship.core.config_resolver import ResolutionError, resolve
from appship.models.variables import REQUIRED_KEYS
from appship.monitor.renderer import MonitorRenderer

console = Console()


def config_cmd(
    var: list[str] = typer.Option(
        None, "--var", "-v", help="Override a build variable (KEY=VALUE). Repeatable."
    ),
    env_file: Path = typer.Option(
        None, "--env-file", help="Dotenv-style file of build variables."
    ),
    defaults_file: Path = typer.Option(
        None, "--defaults-file", help="Dotenv-style file of team defaults."
    ),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of a table."),
    no_env: bool = typer.Option(
        False, "--no-env", help="Ignore the process environment."
    ),
) -> None:
    """Resolve build variables and show each value with its provenance.

    Secret values are always masked.  Exits 1 when required variables are
    missing.
    """
    settings = RuntimeSettings()
    providers = providers_from_options(
        settings, var, env_file, defaults_file, use_environment=not no_env
    )
    try:
        snapshot = resolve(providers, REQUIRED_KEYS)
    except ResolutionError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=1) from exc

    if as_json:
        typer.echo(json.dumps(snapshot.describe(), indent=2))
        return
    console.print(MonitorRenderer(console=console).render_snapshot(snapshot))
    for rejection in snapshot.rejections:
        console.print(
            f"[yellow]ignored[/yellow] {rejection.key} from {rejection.source}: {rejection.reason}"
        )
