"""Stage 1 — Mutate Manifest.

Writes the identity and signing settings into the main target's build
configurations, touching no other target, and writes the export descriptor
the archiver consumes.  A second run with the same snapshot leaves the
manifest byte-identical and does not rewrite it.
"""

from __future__ import annotations

import logging
from typing import Any

from appship.core import manifest_store
from appship.core.plist_io import write_export_options
from appship.models.snapshot import ConfigSnapshot
from appship.stages.base import BaseStage

logger = logging.getLogger(__name__)


def target_settings(snapshot: ConfigSnapshot) -> dict[str, str]:
    """Build settings derived from *snapshot* for the main target."""
    settings = {
        "PRODUCT_BUNDLE_IDENTIFIER": snapshot.get_str("BUNDLE_ID"),
        "DEVELOPMENT_TEAM": snapshot.get_str("APPLE_TEAM_ID"),
    }
    if "CODE_SIGN_STYLE" in snapshot:
        settings["CODE_SIGN_STYLE"] = snapshot.get_str("CODE_SIGN_STYLE")
    if "DEPLOYMENT_TARGET" in snapshot:
        settings["IPHONEOS_DEPLOYMENT_TARGET"] = snapshot.get_str("DEPLOYMENT_TARGET")
    return settings


def configuration_tiers(snapshot: ConfigSnapshot) -> list[str] | None:
    """Tiers named by BUILD_CONFIGURATIONS, or ``None`` for all tiers."""
    raw = snapshot.get_str("BUILD_CONFIGURATIONS")
    tiers = [t.strip() for t in raw.split(",") if t.strip()]
    return tiers or None


class MutateManifestStage(BaseStage):
    """Stage 1: apply target-scoped settings to ``project.pbxproj``."""

    @property
    def stage_id(self) -> str:
        return "s1_mutate_manifest"

    @property
    def display_name(self) -> str:
        return "Mutate Manifest"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        snapshot = self.snapshot(run_context)
        layout = self.layout(run_context)
        manifest_path = self.project_dir(snapshot) / snapshot.get_str("MANIFEST_PATH")
        target = snapshot.get_str("MAIN_TARGET", "Runner")
        settings = target_settings(snapshot)
        tiers = configuration_tiers(snapshot)

        original = manifest_store.load(manifest_path)
        updated = manifest_store.set_target_settings(original, target, settings, tiers)
        changed = updated.render() != original.render()
        if changed:
            manifest_store.save(updated, manifest_path)
            logger.info("Updated %s for target %s", manifest_path.name, target)
        else:
            logger.info("%s already up to date for target %s", manifest_path.name, target)

        write_export_options(layout.export_options, snapshot)

        return {
            "manifest": str(manifest_path),
            "target": target,
            "configurations": tiers or manifest_store.configurations(updated, target),
            "settings": settings,
            "changed": changed,
            "export_options": str(layout.export_options),
        }
