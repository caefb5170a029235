"""Stage 3 — Archive (external).

Runs the archiver (``ARCHIVE_COMMAND``) with ``{archive_path}`` pointing into
a freshly emptied ``archive/`` directory, so a stale archive from an earlier
attempt can never be packaged.
"""

from __future__ import annotations

import logging
from typing import Any

from appship.core.workspace import fresh_dir
from appship.stages.base import BaseStage

logger = logging.getLogger(__name__)


class ArchiveStage(BaseStage):
    """Stage 3: invoke the external archiver."""

    @property
    def stage_id(self) -> str:
        return "s3_archive"

    @property
    def display_name(self) -> str:
        return "Archive"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        layout = self.layout(run_context)
        fresh_dir(layout.archive_dir)
        result = self.run_tool(
            run_context,
            "archive",
            "ARCHIVE_COMMAND",
            log_dir=layout.archive_dir,
            placeholders={"archive_path": str(layout.archive_path)},
        )
        if not layout.archive_path.is_dir():
            logger.warning("Archiver succeeded but %s was not created", layout.archive_path)
        run_context["archive_path"] = layout.archive_path
        return {
            "command": result.command,
            "exit_code": result.exit_code,
            "duration_seconds": result.duration_seconds,
            "log": str(result.log_path),
            "archive_path": str(layout.archive_path),
            "archive_present": layout.archive_path.is_dir(),
        }
