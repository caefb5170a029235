"""Stage 6 — Upload (external).

Hands the assembled package to the uploader (``UPLOAD_COMMAND``).  The API
private key is staged as ``private_keys/AuthKey_<key id>.p8`` under a freshly
emptied ``upload/`` directory, which is exported as ``API_PRIVATE_KEYS_DIR``.
Credentials reach the tool only through placeholders and the environment;
they are redacted from every log line and log file.

Skipped when ``IS_TESTFLIGHT`` is false or uploads are disabled for the run.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Any

from appship.core.workspace import fresh_dir
from appship.models.package import PackageManifest
from appship.stages.base import BaseStage

logger = logging.getLogger(__name__)


class UploadStage(BaseStage):
    """Stage 6: invoke the external uploader."""

    @property
    def stage_id(self) -> str:
        return "s6_upload"

    @property
    def display_name(self) -> str:
        return "Upload"

    def skip_reason(self, run_context: dict[str, Any]) -> str | None:
        if run_context.get("skip_upload"):
            return "upload disabled for this run"
        snapshot = run_context.get("snapshot")
        if snapshot is not None and not snapshot.get_bool("IS_TESTFLIGHT"):
            return "IS_TESTFLIGHT is false"
        return None

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        snapshot = self.snapshot(run_context)
        layout = self.layout(run_context)
        package: PackageManifest | None = run_context.get("package")
        if package is None or not Path(package.path).is_file():
            raise RuntimeError("No assembled package to upload")

        upload_dir = fresh_dir(layout.upload_dir)
        keys_dir = upload_dir / "private_keys"
        keys_dir.mkdir()
        key_id = snapshot.get_str("APP_STORE_CONNECT_KEY_IDENTIFIER")
        staged_key = keys_dir / f"AuthKey_{key_id}.p8"
        shutil.copyfile(snapshot.get_str("APP_STORE_CONNECT_PRIVATE_KEY_PATH"), staged_key)
        os.chmod(staged_key, 0o600)

        result = self.run_tool(
            run_context,
            "upload",
            "UPLOAD_COMMAND",
            log_dir=upload_dir,
            placeholders={"package_path": str(package.path)},
            extra_env={"API_PRIVATE_KEYS_DIR": str(keys_dir)},
        )
        logger.info("Uploaded %s (%s)", Path(package.path).name, package.sha256[:12])
        return {
            "package": str(package.path),
            "sha256": package.sha256,
            "exit_code": result.exit_code,
            "duration_seconds": result.duration_seconds,
            "log": str(result.log_path),
        }
