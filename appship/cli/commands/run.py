"""``appship run`` — execute the full build pipeline once.

Variables come from ``--var`` overrides, the process environment, an
optional variables file and an optional defaults file, in that order of
precedence.  Exits 0 on success, 1 on a fatal stage failure and 130 when
interrupted.
"""

from __future__ import annotations

import os
import signal
from pathlib import Path

import typer
from rich.console import Console

from appship.config import RuntimeSettings
from appship.core.config_resolver import VariableProvider, build_providers
from appship.core.orchestrator import CancellationToken, PipelineOrchestrator
from appship.logging_utils import configure_logging
from appship.monitor.renderer import MonitorRenderer

console = Console()


def parse_vars(pairs: list[str] | None) -> dict[str, str]:
    """Parse ``KEY=VALUE`` pairs; a bare ``KEY`` is rejected."""
    overrides: dict[str, str] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"Expected KEY=VALUE, got {pair!r}", param_hint="--var")
        overrides[key.strip()] = value
    return overrides


def providers_from_options(
    settings: RuntimeSettings,
    var: list[str] | None,
    env_file: Path | None,
    defaults_file: Path | None,
    *,
    use_environment: bool = True,
) -> list[VariableProvider]:
    try:
        return build_providers(
            overrides=parse_vars(var),
            environ=dict(os.environ) if use_environment else None,
            variables_file=env_file or settings.variables_file,
            defaults_file=defaults_file or settings.defaults_file,
        )
    except FileNotFoundError as exc:
        raise typer.BadParameter(str(exc)) from exc


def run_cmd(
    var: list[str] = typer.Option(
        None, "--var", "-v", help="Override a build variable (KEY=VALUE). Repeatable."
    ),
    env_file: Path = typer.Option(
        None, "--env-file", help="Dotenv-style file of build variables."
    ),
    defaults_file: Path = typer.Option(
        None, "--defaults-file", help="Dotenv-style file of team defaults."
    ),
    skip_upload: bool = typer.Option(
        False, "--skip-upload", help="Build and package, but do not upload."
    ),
    run_id: str = typer.Option(None, "--run-id", help="Identifier for this run."),
    log_level: str = typer.Option(None, "--log-level", help="Logging level."),
) -> None:
    """Run the build pipeline: configure, compile, archive, repair, package, upload."""
    settings = RuntimeSettings()
    configure_logging(log_level or settings.log_level)
    providers = providers_from_options(settings, var, env_file, defaults_file)

    token = CancellationToken()
    orchestrator = PipelineOrchestrator(
        providers,
        settings=settings,
        run_id=run_id,
        skip_upload=skip_upload,
        cancel_token=token,
    )

    previous = signal.signal(signal.SIGINT, lambda *_: token.cancel("interrupted"))
    try:
        result = orchestrator.run()
    finally:
        signal.signal(signal.SIGINT, previous)

    MonitorRenderer(console=console).print_result(result)
    raise typer.Exit(code=result.exit_code)
