"""Stage 2 — Compile (external).

Runs the app compiler (``COMPILE_COMMAND``) in the project directory.  Its
log goes to a freshly emptied ``compile/`` directory.
"""

from __future__ import annotations

from typing import Any

from appship.core.workspace import fresh_dir
from appship.stages.base import BaseStage


class CompileStage(BaseStage):
    """Stage 2: invoke the external compiler."""

    @property
    def stage_id(self) -> str:
        return "s2_compile"

    @property
    def display_name(self) -> str:
        return "Compile"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        layout = self.layout(run_context)
        log_dir = fresh_dir(layout.compile_dir)
        result = self.run_tool(run_context, "compile", "COMPILE_COMMAND", log_dir=log_dir)
        return {
            "command": result.command,
            "exit_code": result.exit_code,
            "duration_seconds": result.duration_seconds,
            "log": str(result.log_path),
        }
