"""Package assembly models."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict

# Below this many uncompressed bytes a package is a truncated or partial build.
MIN_PACKAGE_BYTES = 1_000_000

PAYLOAD_DIR = "Payload"


class BundleInfo(BaseModel):
    """Structural facts about a validated application bundle."""

    model_config = ConfigDict(frozen=True)

    path: Path
    name: str  # directory name, e.g. "Runner.app"
    executable: str
    identifier: str | None = None
    short_version: str | None = None
    build_version: str | None = None


class PackageManifest(BaseModel):
    """Description of an assembled distributable package."""

    model_config = ConfigDict(frozen=True)

    path: Path
    container: str = PAYLOAD_DIR
    bundle_name: str
    executable: str
    entry_count: int
    uncompressed_bytes: int
    compressed_bytes: int
    sha256: str
