"""Working directory layout owned by one pipeline run.

Layout: {OUTPUT_DIR}/
    config_snapshot.json      resolved variables, secrets masked
    ExportOptions.plist       signing / export descriptor
    compile/                  compiler log
    archive/Runner.xcarchive  archiver output
    package/<APP_NAME>.ipa    assembled package
    upload/                   uploader log and staged API key
    build_summary.json        final summary
"""

from __future__ import annotations

import re
import shutil
from pathlib import Path

from pydantic import BaseModel, ConfigDict

_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9._ -]")


def fresh_dir(path: Path) -> Path:
    """Remove *path* if present and recreate it empty."""
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True)
    return path


class WorkspaceLayout(BaseModel):
    """Paths inside a run's working directory."""

    model_config = ConfigDict(frozen=True)

    root: Path
    archive_name: str = "Runner.xcarchive"

    @property
    def snapshot_file(self) -> Path:
        return self.root / "config_snapshot.json"

    @property
    def export_options(self) -> Path:
        return self.root / "ExportOptions.plist"

    @property
    def compile_dir(self) -> Path:
        return self.root / "compile"

    @property
    def archive_dir(self) -> Path:
        return self.root / "archive"

    @property
    def archive_path(self) -> Path:
        return self.archive_dir / self.archive_name

    @property
    def package_dir(self) -> Path:
        return self.root / "package"

    @property
    def upload_dir(self) -> Path:
        return self.root / "upload"

    @property
    def summary_file(self) -> Path:
        return self.root / "build_summary.json"

    def package_path(self, app_name: str) -> Path:
        name = _UNSAFE_FILENAME.sub("_", app_name).strip() or "App"
        return self.package_dir / f"{name}.ipa"
