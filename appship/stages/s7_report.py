"""Stage 7 — Build Summary.

Writes ``build_summary.json``: the run's stage states, the masked variable
table with provenance, the identity resolution report and the package
manifest.  Advisory, so a summary that cannot be written never fails an
otherwise good build.
"""

from __future__ import annotations

import json
from typing import Any

from appship.models.identity import IdentityReport
from appship.models.package import PackageManifest
from appship.stages.base import BaseStage


class ReportStage(BaseStage):
    """Stage 7: persist the build summary."""

    @property
    def stage_id(self) -> str:
        return "s7_report"

    @property
    def display_name(self) -> str:
        return "Build Summary"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        snapshot = self.snapshot(run_context)
        layout = self.layout(run_context)
        package: PackageManifest | None = run_context.get("package")
        report: IdentityReport | None = run_context.get("identity_report")

        summary = {
            "run_id": run_context.get("run_id", ""),
            "stages": {
                sid: state.value for sid, state in run_context.get("stage_states", {}).items()
            },
            "variables": snapshot.describe(),
            "identities": report.model_dump(mode="json") if report else None,
            "package": package.model_dump(mode="json") if package else None,
        }
        layout.summary_file.write_text(
            json.dumps(summary, indent=2, sort_keys=True) + "\n", encoding="utf-8"
        )
        return {
            "summary_file": str(layout.summary_file),
            "stage_count": len(summary["stages"]),
        }
