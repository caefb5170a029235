"""Property list IO for bundle descriptors and the export descriptor.

Bundle ``Info.plist`` files are rewritten in the format they were read in
(XML or binary).  Writes go through a temporary file and an atomic rename so
an interrupted write never leaves a truncated descriptor behind.
"""

from __future__ import annotations

import os
import plistlib
import tempfile
from pathlib import Path
from typing import Any
from xml.parsers.expat import ExpatError

from appship.models.snapshot import ConfigSnapshot

_BINARY_MAGIC = b"bplist00"

# Locations of a bundle's own descriptor, in lookup order.
DESCRIPTOR_NAMES = ("Info.plist", "Contents/Info.plist")


def descriptor_path(bundle: Path) -> Path:
    """Path of *bundle*'s Info.plist (the first existing candidate)."""
    for name in DESCRIPTOR_NAMES:
        candidate = bundle / name
        if candidate.is_file():
            return candidate
    return bundle / DESCRIPTOR_NAMES[0]


def read_plist(path: Path) -> tuple[dict[str, Any], plistlib.PlistFormat]:
    """Load a plist, returning its contents and on-disk format."""
    data = Path(path).read_bytes()
    fmt = plistlib.FMT_BINARY if data.startswith(_BINARY_MAGIC) else plistlib.FMT_XML
    try:
        content = plistlib.loads(data)
    except ExpatError as exc:
        raise ValueError(f"{path}: malformed XML plist ({exc})") from exc
    if not isinstance(content, dict):
        raise ValueError(f"{path}: top-level object is not a dictionary")
    return content, fmt


def write_plist(
    path: Path,
    content: dict[str, Any],
    fmt: plistlib.PlistFormat = plistlib.FMT_XML,
) -> None:
    """Atomically write *content* to *path* in *fmt*."""
    path = Path(path)
    data = plistlib.dumps(content, fmt=fmt, sort_keys=False)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        if path.exists():
            os.chmod(tmp_name, path.stat().st_mode & 0o7777)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def read_bundle_identifier(bundle: Path) -> str | None:
    """The ``CFBundleIdentifier`` declared by *bundle*, or ``None``."""
    content, _ = read_plist(descriptor_path(bundle))
    value = content.get("CFBundleIdentifier")
    return str(value) if value else None


def write_bundle_identifier(bundle: Path, identifier: str) -> None:
    """Rewrite *bundle*'s ``CFBundleIdentifier``, preserving plist format."""
    path = descriptor_path(bundle)
    content, fmt = read_plist(path)
    content["CFBundleIdentifier"] = identifier
    write_plist(path, content, fmt)


# ---------------------------------------------------------------------------
# Export descriptor
# ---------------------------------------------------------------------------


def export_options_for(snapshot: ConfigSnapshot) -> dict[str, Any]:
    """Build the ExportOptions.plist content for *snapshot*."""
    return {
        "method": snapshot.get_str("PROFILE_TYPE", "app-store"),
        "teamID": snapshot.get_str("APPLE_TEAM_ID"),
        "signingStyle": snapshot.get_str("CODE_SIGN_STYLE", "Automatic").lower(),
        "distributionBundleIdentifier": snapshot.get_str("BUNDLE_ID"),
        "destination": "export",
        "stripSwiftSymbols": True,
        "uploadBitcode": False,
        "compileBitcode": False,
        "uploadSymbols": True,
        "manageAppVersionAndBuildNumber": False,
    }


def write_export_options(path: Path, snapshot: ConfigSnapshot) -> Path:
    """Write the export descriptor for *snapshot* to *path*."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    write_plist(path, export_options_for(snapshot), plistlib.FMT_XML)
    return path
