"""Stage 5 — Assemble Package.

Validates the primary bundle and packages it as ``Payload/<App>.app`` in a
freshly emptied ``package/`` directory.  Undersized output is rejected here,
so the uploader never sees a partial build.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from appship.core.archive_assembler import assemble_package, find_primary_bundle
from appship.core.workspace import fresh_dir
from appship.stages.base import BaseStage


class AssemblePackageStage(BaseStage):
    """Stage 5: build the distributable ``.ipa``."""

    @property
    def stage_id(self) -> str:
        return "s5_assemble_package"

    @property
    def display_name(self) -> str:
        return "Assemble Package"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        snapshot = self.snapshot(run_context)
        layout = self.layout(run_context)

        bundle = run_context.get("bundle_path")
        if bundle is None:
            bundle = find_primary_bundle(Path(run_context.get("archive_path") or layout.archive_path))

        fresh_dir(layout.package_dir)
        manifest = assemble_package(
            Path(bundle),
            layout.package_path(snapshot.get_str("APP_NAME", "App")),
            min_size=snapshot.get_int("MIN_PACKAGE_BYTES"),
        )
        run_context["package"] = manifest
        return manifest.model_dump(mode="json")
