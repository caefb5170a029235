"""Stage 0 — Resolve Config.

Merges the run's variable providers into the immutable ``ConfigSnapshot``
every later stage reads, prepares the working directory, and writes the
masked snapshot to ``config_snapshot.json``.

Upload credentials are only required when the run will upload; they are
checked here so a missing key fails before any external tool runs.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from appship.core.config_resolver import ResolutionError, resolve
from appship.core.workspace import WorkspaceLayout
from appship.models.snapshot import ConfigSnapshot, Provenance, Rejection
from appship.models.variables import REQUIRED_KEYS, UPLOAD_CREDENTIAL_KEYS
from appship.stages.base import BaseStage

logger = logging.getLogger(__name__)


def uploads_enabled(snapshot: ConfigSnapshot, run_context: dict[str, Any]) -> bool:
    return snapshot.get_bool("IS_TESTFLIGHT") and not run_context.get("skip_upload", False)


def check_upload_credentials(snapshot: ConfigSnapshot) -> None:
    """Raise ``ResolutionError`` naming every missing or unusable credential."""
    missing = [key for key in sorted(UPLOAD_CREDENTIAL_KEYS) if key not in snapshot]
    rejections: list[Rejection] = []
    key_path = snapshot.get_str("APP_STORE_CONNECT_PRIVATE_KEY_PATH")
    if key_path and not Path(key_path).is_file():
        entry = snapshot.entry("APP_STORE_CONNECT_PRIVATE_KEY_PATH")
        missing.append("APP_STORE_CONNECT_PRIVATE_KEY_PATH")
        rejections.append(
            Rejection(
                key="APP_STORE_CONNECT_PRIVATE_KEY_PATH",
                source=entry.source if entry else "",
                reason="private key file does not exist",
            )
        )
    if missing:
        raise ResolutionError(missing, rejections)


class ResolveConfigStage(BaseStage):
    """Stage 0: resolve the build configuration snapshot."""

    @property
    def stage_id(self) -> str:
        return "s0_resolve_config"

    @property
    def display_name(self) -> str:
        return "Resolve Config"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        """Resolve variables and prepare the working directory.

        Reads ``providers`` from *run_context*; stores ``snapshot`` and
        ``layout`` for downstream stages.
        """
        providers = run_context.get("providers") or []
        snapshot = resolve(providers, REQUIRED_KEYS)

        if uploads_enabled(snapshot, run_context):
            check_upload_credentials(snapshot)

        layout = WorkspaceLayout(root=Path(snapshot.get_str("OUTPUT_DIR")).resolve())
        layout.root.mkdir(parents=True, exist_ok=True)
        layout.snapshot_file.write_text(
            json.dumps(
                {"run_id": run_context.get("run_id", ""), "variables": snapshot.describe()},
                indent=2,
                sort_keys=True,
            )
            + "\n",
            encoding="utf-8",
        )

        run_context["snapshot"] = snapshot
        run_context["layout"] = layout

        overrides = [e.key for e in snapshot.entries if e.provenance == Provenance.OVERRIDE]
        logger.info(
            "Resolved %d variables (%d overridden, %d rejected candidates); output dir %s",
            len(snapshot.entries),
            len(overrides),
            len(snapshot.rejections),
            layout.root,
        )
        for rejection in snapshot.rejections:
            logger.warning(
                "Ignored %s from %s: %s", rejection.key, rejection.source, rejection.reason
            )

        return {
            "resolved_count": len(snapshot.entries),
            "overridden_keys": sorted(overrides),
            "rejections": [r.model_dump() for r in snapshot.rejections],
            "bundle_id": snapshot.get_str("BUNDLE_ID"),
            "upload_enabled": uploads_enabled(snapshot, run_context),
            "output_dir": str(layout.root),
            "snapshot_file": str(layout.snapshot_file),
        }
