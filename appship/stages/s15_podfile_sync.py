"""Stage 1.5 — Podfile Platform Sync (advisory).

Keeps the Podfile's ``platform :ios`` line in step with the manifest's
deployment target so pod resolution does not fall back to an older
minimum.  Failure here is logged and the run continues.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from appship.stages.base import BaseStage

logger = logging.getLogger(__name__)

_PLATFORM_LINE = re.compile(r"^[ \t]*#?[ \t]*platform[ \t]+:ios\b.*$", re.MULTILINE)


def sync_platform(podfile_text: str, deployment_target: str) -> str:
    """Return *podfile_text* declaring ``platform :ios, '<target>'``."""
    line = f"platform :ios, '{deployment_target}'"
    if _PLATFORM_LINE.search(podfile_text):
        return _PLATFORM_LINE.sub(line, podfile_text, count=1)
    return f"{line}\n{podfile_text}"


class PodfileSyncStage(BaseStage):
    """Stage 1.5: align the Podfile platform with DEPLOYMENT_TARGET."""

    @property
    def stage_id(self) -> str:
        return "s15_podfile_sync"

    @property
    def display_name(self) -> str:
        return "Podfile Platform Sync"

    def skip_reason(self, run_context: dict[str, Any]) -> str | None:
        snapshot = run_context.get("snapshot")
        if snapshot is not None and "DEPLOYMENT_TARGET" not in snapshot:
            return "DEPLOYMENT_TARGET is not set"
        return None

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        snapshot = self.snapshot(run_context)
        podfile = self.project_dir(snapshot) / snapshot.get_str("PODFILE_PATH")
        target = snapshot.get_str("DEPLOYMENT_TARGET")

        if not podfile.is_file():
            logger.info("No Podfile at %s; nothing to sync", podfile)
            return {"podfile": str(podfile), "present": False, "changed": False}

        text = podfile.read_text(encoding="utf-8")
        updated = sync_platform(text, target)
        changed = updated != text
        if changed:
            podfile.write_text(updated, encoding="utf-8")
            logger.info("Podfile platform set to iOS %s", target)
        return {
            "podfile": str(podfile),
            "present": True,
            "changed": changed,
            "deployment_target": target,
        }
