"""Stage 4 — Resolve Identities.

Finds the primary app bundle in the archive, restores its own identifier if
it drifted, and repairs identifier collisions among the frameworks,
extensions and resource bundles embedded in it.

Per-bundle failures are advisory and only logged.  The stage fails only
when an unrepairable bundle still claims the primary identifier.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from appship.core.archive_assembler import find_primary_bundle
from appship.core.bundle_identity import (
    IdentityConflictUnresolved,
    discover_nested_bundles,
    ensure_primary_identifier,
    resolve_identities,
)
from appship.stages.base import BaseStage

logger = logging.getLogger(__name__)


class ResolveIdentitiesStage(BaseStage):
    """Stage 4: collision-free bundle identifiers inside the built app."""

    @property
    def stage_id(self) -> str:
        return "s4_resolve_identities"

    @property
    def display_name(self) -> str:
        return "Resolve Identities"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        snapshot = self.snapshot(run_context)
        archive_path = Path(run_context.get("archive_path") or self.layout(run_context).archive_path)
        primary = snapshot.get_str("BUNDLE_ID")

        bundle = find_primary_bundle(archive_path)
        run_context["bundle_path"] = bundle

        previous = ensure_primary_identifier(bundle, primary)
        nested = discover_nested_bundles(bundle)
        report = resolve_identities(primary, nested, root=bundle)
        run_context["identity_report"] = report

        for failure in report.failed:
            logger.warning("Identity of %s unresolved: %s", failure.path, failure.error)
        if report.primary_conflict:
            raise IdentityConflictUnresolved(report)

        return {
            "bundle_path": str(bundle),
            "primary_identifier": primary,
            "primary_restored_from": previous,
            "nested_count": len(report.identities),
            "repaired": [
                {"path": i.path, "from": i.previous_identifier, "to": i.identifier}
                for i in report.repaired
            ],
            "failed": [{"path": i.path, "error": i.error} for i in report.failed],
        }
