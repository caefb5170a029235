"""Rich terminal renderer for appship runs.

Turns a ``PipelineResult`` into a color-coded stage table, and a
``ConfigSnapshot`` into a variable table with provenance.  Secrets are
always shown masked.

Color scheme
------------
- green     : PASSED
- red       : FAILED
- yellow    : RUNNING
- dim       : NOT_STARTED
- cyan      : SKIPPED
- bold red  : BLOCKED
"""

from __future__ import annotations

from rich.console import Console, Group
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from appship.models.identity import IdentityReport, IdentityStatus
from appship.models.snapshot import ConfigSnapshot
from appship.models.stages import PipelineResult, StageState

# ---------------------------------------------------------------------------
# State -> Rich style mapping
# ---------------------------------------------------------------------------

_STATE_STYLES: dict[StageState, str] = {
    StageState.PASSED: "bold green",
    StageState.FAILED: "bold red",
    StageState.RUNNING: "bold yellow",
    StageState.NOT_STARTED: "dim",
    StageState.SKIPPED: "cyan",
    StageState.BLOCKED: "bold red",
}

_STATE_ICONS: dict[StageState, str] = {
    StageState.PASSED: "[green]PASSED[/green]",
    StageState.FAILED: "[bold red]FAILED[/bold red]",
    StageState.RUNNING: "[yellow]RUNNING[/yellow]",
    StageState.NOT_STARTED: "[dim]NOT STARTED[/dim]",
    StageState.SKIPPED: "[cyan]SKIPPED[/cyan]",
    StageState.BLOCKED: "[bold red]BLOCKED[/bold red]",
}

_IDENTITY_STYLES: dict[IdentityStatus, str] = {
    IdentityStatus.ACCEPTED: "green",
    IdentityStatus.REPAIRED: "yellow",
    IdentityStatus.FAILED: "bold red",
    IdentityStatus.UNDECLARED: "dim",
}


class MonitorRenderer:
    """Renders pipeline results and configuration as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Pipeline result
    # ------------------------------------------------------------------

    def render_result(self, result: PipelineResult) -> Panel:
        """Render a PipelineResult as a Rich Panel containing a stage table."""
        table = self._build_stage_table(result)

        if result.succeeded:
            status = "[green]succeeded[/green]"
        elif result.cancelled:
            status = "[yellow]cancelled[/yellow]"
        else:
            status = f"[bold red]failed at {result.failed_stage}[/bold red]"
        summary_parts: list[str] = [
            f"[bold]Run:[/bold] {result.run_id}",
            f"[bold]Status:[/bold] {status}",
        ]
        if result.package is not None:
            summary_parts.append(f"[bold]Package:[/bold] {escape(str(result.package.path))}")
            summary_parts.append(f"[bold]SHA-256:[/bold] {result.package.sha256[:16]}")

        parts: list = [table, Text(""), Text.from_markup("  |  ".join(summary_parts))]
        if result.error:
            parts.append(Text(result.error, style="red"))

        return Panel(
            Group(*parts),
            title="[bold]appship build[/bold]",
            border_style="green" if result.succeeded else "red",
            padding=(1, 2),
        )

    def _build_stage_table(self, result: PipelineResult) -> Table:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("#", style="dim", width=4, justify="right")
        table.add_column("Stage", min_width=22)
        table.add_column("State", min_width=12, justify="center")
        table.add_column("Policy", width=9)
        table.add_column("Details", min_width=20)

        for i, outcome in enumerate(result.outcomes):
            name_style = _STATE_STYLES.get(outcome.state, "")
            table.add_row(
                str(i),
                f"[{name_style}]{outcome.display_name}[/{name_style}]",
                _STATE_ICONS.get(outcome.state, outcome.state.value),
                outcome.policy.value,
                escape(outcome.detail) if outcome.detail else "[dim]-[/dim]",
            )
        return table

    # ------------------------------------------------------------------
    # Configuration and identities
    # ------------------------------------------------------------------

    def render_snapshot(self, snapshot: ConfigSnapshot) -> Table:
        """Render resolved variables with provenance; secrets masked."""
        table = Table(show_header=True, header_style="bold cyan", title="Resolved variables")
        table.add_column("Variable", style="bold")
        table.add_column("Value")
        table.add_column("Provenance")
        table.add_column("Source", style="dim")
        for row in snapshot.describe():
            style = "green" if row["provenance"] == "override" else ""
            table.add_row(
                row["key"],
                escape(row["value"]),
                f"[{style}]{row['provenance']}[/{style}]" if style else row["provenance"],
                escape(row["source"]),
            )
        return table

    def render_identities(self, report: IdentityReport) -> Table:
        table = Table(
            show_header=True,
            header_style="bold cyan",
            title=f"Bundle identities (primary {report.primary_identifier})",
        )
        table.add_column("Bundle")
        table.add_column("Scope")
        table.add_column("Identifier")
        table.add_column("Status", justify="center")
        for identity in report.identities:
            style = _IDENTITY_STYLES.get(identity.status, "")
            identifier = identity.identifier or "-"
            if identity.previous_identifier:
                identifier = f"{identity.previous_identifier} -> {identifier}"
            table.add_row(
                escape(identity.path),
                identity.scope.value,
                escape(identifier),
                f"[{style}]{identity.status.value}[/{style}]",
            )
        return table

    def print_result(self, result: PipelineResult) -> None:
        self.console.print(self.render_result(result))
