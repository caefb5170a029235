"""appship CLI — Typer-based command-line interface.

Provides the ``appship`` command with subcommands for running the build
pipeline, inspecting the resolved configuration, editing target settings
in a project manifest, repairing bundle identifiers and packaging archives.

All output uses Rich for formatted terminal display.
"""
