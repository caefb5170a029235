"""Primary bundle discovery and ``.ipa`` package assembly.

Discovery walks an ``.xcarchive`` tree in priority order, stopping at the
first step that finds a bundle:

1. ``Products/Applications``
2. anywhere under ``Products``
3. anywhere in the archive
4. structural repair: create ``Products/Applications``, relocate every
   bundle-extension entry into it (materialising symlinked bundles), then
   retry step 1 once

Steps 1-3 consider real directories only, and only the outermost match on
each branch (an ``.app`` nested inside another bundle is not a candidate).
More than one candidate at a step is ambiguous and fails loudly.

Assembly copies the bundle verbatim under ``Payload/``, zips it, re-opens
the result and checks its integrity and size.  An undersized package is
deleted and rejected before anything can upload it.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
import zipfile
from pathlib import Path

from appship.core.hasher import file_sha256
from appship.core.plist_io import descriptor_path, read_plist
from appship.models.package import (
    MIN_PACKAGE_BYTES,
    PAYLOAD_DIR,
    BundleInfo,
    PackageManifest,
)

logger = logging.getLogger(__name__)

APPLICATIONS_SUBPATH = Path("Products") / "Applications"


class BundleNotFoundError(RuntimeError):
    """Raised when no primary bundle is reachable, even after repair."""


class AssemblyError(RuntimeError):
    """Raised when a bundle exists but cannot be packaged."""


class MissingExecutableError(AssemblyError):
    """Raised when the bundle lacks its declared executable."""


class AmbiguousBundleError(AssemblyError):
    """Raised when a discovery step finds more than one candidate bundle."""


class PackageTooSmallError(AssemblyError):
    """Raised when the written package is below the minimum size."""


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def _outermost_bundles(base: Path, extension: str) -> list[Path]:
    """Real directories named ``*<extension>`` under *base*, outermost only."""
    if not base.is_dir():
        return []
    found: list[Path] = []
    for dirpath, dirnames, _ in os.walk(base):
        dirnames.sort()
        keep: list[str] = []
        for name in dirnames:
            full = Path(dirpath) / name
            if full.is_symlink():
                continue
            if name.endswith(extension):
                found.append(full)
            else:
                keep.append(name)
        dirnames[:] = keep
    return found


def _pick(candidates: list[Path], step: str) -> Path | None:
    if not candidates:
        return None
    if len(candidates) > 1:
        raise AmbiguousBundleError(
            f"{step}: found {len(candidates)} candidate bundles: "
            + ", ".join(str(c) for c in candidates)
        )
    return candidates[0]


def _relocatable_entries(root: Path, extension: str) -> list[Path]:
    """Bundle-extension entries anywhere in *root*, including symlinks to directories."""
    entries: list[Path] = []
    for dirpath, dirnames, _ in os.walk(root):
        dirnames.sort()
        keep: list[str] = []
        for name in dirnames:
            full = Path(dirpath) / name
            if name.endswith(extension) and full.is_dir():
                entries.append(full)
            elif not full.is_symlink():
                keep.append(name)
        dirnames[:] = keep
    return entries


def _repair(archive_root: Path, extension: str) -> int:
    """Move bundle entries into ``Products/Applications``.  Returns the count."""
    applications = archive_root / APPLICATIONS_SUBPATH
    applications.mkdir(parents=True, exist_ok=True)
    moved = 0
    for entry in _relocatable_entries(archive_root, extension):
        if entry.parent == applications and not entry.is_symlink():
            continue
        destination = applications / entry.name
        if destination.exists() and not destination.is_symlink():
            logger.warning("Repair: %s already present, leaving %s", destination, entry)
            continue
        if entry.is_symlink():
            # Materialise the link target so the package holds real files.
            source = entry.resolve()
            entry.unlink()
            shutil.copytree(source, destination, symlinks=True)
            logger.info("Repair: materialised symlinked bundle %s -> %s", source, destination)
        else:
            shutil.move(str(entry), str(destination))
            logger.info("Repair: moved %s -> %s", entry, destination)
        moved += 1
    return moved


def find_primary_bundle(archive_root: Path, extension: str = ".app") -> Path:
    """Locate the primary application bundle inside *archive_root*.

    Raises
    ------
    BundleNotFoundError
        When all four discovery steps fail.  Not retryable: the archive is
        incomplete.
    AmbiguousBundleError
        When a step finds more than one candidate.
    """
    archive_root = Path(archive_root)
    if not archive_root.is_dir():
        raise BundleNotFoundError(f"Archive not found: {archive_root}")

    steps = [
        ("Products/Applications", archive_root / APPLICATIONS_SUBPATH),
        ("Products", archive_root / "Products"),
        ("archive tree", archive_root),
    ]
    for label, base in steps:
        found = _pick(_outermost_bundles(base, extension), label)
        if found is not None:
            logger.info("Primary bundle found via %s: %s", label, found)
            return found

    logger.warning("No %s bundle in %s; attempting structural repair", extension, archive_root)
    moved = _repair(archive_root, extension)
    found = _pick(
        _outermost_bundles(archive_root / APPLICATIONS_SUBPATH, extension),
        "Products/Applications after repair",
    )
    if found is None:
        raise BundleNotFoundError(
            f"No {extension} bundle anywhere in {archive_root} "
            f"(repair relocated {moved} entries)"
        )
    logger.info("Primary bundle found after repair: %s", found)
    return found


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_bundle(bundle_path: Path) -> BundleInfo:
    """Check that *bundle_path* holds its declared executable.

    The executable name comes from ``CFBundleExecutable``, falling back to
    the bundle's stem when the descriptor is absent or silent.
    """
    bundle_path = Path(bundle_path)
    if not bundle_path.is_dir():
        raise BundleNotFoundError(f"Bundle not found: {bundle_path}")

    content: dict = {}
    plist = descriptor_path(bundle_path)
    if plist.is_file():
        try:
            content, _ = read_plist(plist)
        except (OSError, ValueError) as exc:
            raise AssemblyError(f"{bundle_path.name}: unreadable Info.plist ({exc})") from exc

    executable = str(content.get("CFBundleExecutable") or bundle_path.stem)
    if not (bundle_path / executable).is_file():
        raise MissingExecutableError(
            f"{bundle_path.name}: executable {executable!r} is missing"
        )

    return BundleInfo(
        path=bundle_path,
        name=bundle_path.name,
        executable=executable,
        identifier=content.get("CFBundleIdentifier"),
        short_version=content.get("CFBundleShortVersionString"),
        build_version=content.get("CFBundleVersion"),
    )


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------


def _zip_tree(source: Path, archive: zipfile.ZipFile) -> None:
    """Add *source* (the Payload dir) to *archive*, preserving modes and symlinks."""
    base = source.parent
    for dirpath, dirnames, filenames in os.walk(source):
        dirnames.sort()
        current = Path(dirpath)
        archive.write(current, current.relative_to(base).as_posix() + "/")
        for name in sorted(filenames) + [d for d in dirnames if (current / d).is_symlink()]:
            full = current / name
            arcname = full.relative_to(base).as_posix()
            if full.is_symlink():
                info = zipfile.ZipInfo(arcname)
                info.create_system = 3
                info.external_attr = (stat.S_IFLNK | 0o777) << 16
                archive.writestr(info, os.readlink(full))
            else:
                archive.write(full, arcname)
        dirnames[:] = [d for d in dirnames if not (current / d).is_symlink()]


def assemble_package(
    bundle_path: Path,
    output_path: Path,
    *,
    min_size: int = MIN_PACKAGE_BYTES,
) -> PackageManifest:
    """Package *bundle_path* as ``Payload/<App>.app`` inside *output_path*.

    Raises
    ------
    MissingExecutableError
        When the bundle is structurally broken.
    PackageTooSmallError
        When the uncompressed payload does not exceed *min_size* bytes.
    AssemblyError
        When the written archive fails its integrity check.
    """
    info = validate_bundle(bundle_path)
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    staging = output_path.parent / f".{output_path.stem}.staging"
    if staging.exists():
        shutil.rmtree(staging)
    payload = staging / PAYLOAD_DIR
    payload.mkdir(parents=True)
    partial = output_path.with_name(output_path.name + ".partial")

    try:
        shutil.copytree(info.path, payload / info.name, symlinks=True)
        with zipfile.ZipFile(partial, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            _zip_tree(payload, archive)
        os.replace(partial, output_path)
    finally:
        shutil.rmtree(staging, ignore_errors=True)
        if partial.exists():
            partial.unlink()

    try:
        with zipfile.ZipFile(output_path) as archive:
            bad_member = archive.testzip()
            members = archive.infolist()
    except zipfile.BadZipFile as exc:
        output_path.unlink(missing_ok=True)
        raise AssemblyError(f"{output_path.name}: unreadable after writing ({exc})") from exc
    if bad_member is not None:
        output_path.unlink(missing_ok=True)
        raise AssemblyError(f"{output_path.name}: CRC check failed for {bad_member}")

    uncompressed = sum(m.file_size for m in members)
    if uncompressed <= min_size:
        output_path.unlink(missing_ok=True)
        raise PackageTooSmallError(
            f"{output_path.name}: {uncompressed} bytes uncompressed, "
            f"expected more than {min_size}; refusing partial build"
        )

    manifest = PackageManifest(
        path=output_path,
        bundle_name=info.name,
        executable=info.executable,
        entry_count=len(members),
        uncompressed_bytes=uncompressed,
        compressed_bytes=output_path.stat().st_size,
        sha256=file_sha256(output_path),
    )
    logger.info(
        "Assembled %s: %d entries, %d bytes (%d compressed)",
        output_path.name,
        manifest.entry_count,
        manifest.uncompressed_bytes,
        manifest.compressed_bytes,
    )
    return manifest
