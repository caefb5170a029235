"""Main Typer application — imports and registers all CLI commands.

Entry point: ``appship`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import typer

from appship.cli.commands.config_cmd import config_cmd
from appship.cli.commands.identities import identities_cmd
from appship.cli.commands.manifest_cmd import manifest_app
from appship.cli.commands.package import package_cmd
from appship.cli.commands.run import run_cmd

app = typer.Typer(
    name="appship",
    help="appship: build, repair, package and upload mobile apps.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="run", help="Run the full build pipeline.")(run_cmd)
app.command(name="config", help="Show resolved build variables with provenance.")(config_cmd)
app.command(name="identities", help="Repair nested bundle identifiers.")(identities_cmd)
app.command(name="package", help="Assemble an .ipa from an archive.")(package_cmd)
app.add_typer(manifest_app, name="manifest")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
