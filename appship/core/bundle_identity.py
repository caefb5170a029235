"""Collision-free bundle identifiers for nested frameworks, extensions and bundles.

Each nested bundle keeps its declared identifier unless it collides with the
primary identifier or with an identifier already assigned in this pass.  A
colliding bundle gets a derived identifier::

    <primary>.<scope tag>.<sanitized display name>

with ``.2``, ``.3`` ... appended when two bundles derive the same value.
Bundles are visited in lexicographic order of their paths relative to the
resolution root, so results are stable across runs, and a second pass over a
repaired tree performs no writes.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterable
from pathlib import Path

from appship.core.plist_io import (
    read_bundle_identifier,
    write_bundle_identifier,
)
from appship.models.identity import (
    SCOPE_SUFFIXES,
    SCOPE_TAGS,
    BundleIdentity,
    BundleScope,
    IdentityReport,
    IdentityStatus,
    NestedBundle,
)

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9]")


class IdentityConflictUnresolved(RuntimeError):
    """Raised when an unrepairable bundle still claims the primary identifier."""

    def __init__(self, report: IdentityReport) -> None:
        self.report = report
        paths = [i.path for i in report.failed if i.identifier == report.primary_identifier]
        super().__init__(
            f"Primary identifier {report.primary_identifier} is still declared by "
            f"unrepairable bundle(s): {', '.join(paths)}"
        )


def sanitize(name: str) -> str:
    """Lower-case *name* and drop everything outside ``[a-z0-9]``."""
    cleaned = _NON_ALNUM.sub("", name.lower())
    return cleaned or "component"


def derive_identifier(primary: str, scope: BundleScope, display_name: str) -> str:
    return f"{primary}.{SCOPE_TAGS[scope]}.{sanitize(display_name)}"


def _relative(path: Path, root: Path | None) -> str:
    if root is not None:
        try:
            return path.relative_to(root).as_posix()
        except ValueError:
            pass
    return path.as_posix()


def discover_nested_bundles(app_path: Path) -> list[NestedBundle]:
    """Every framework, extension and resource bundle inside *app_path*.

    Symlinked directories are not followed.  Results are ordered by path
    relative to *app_path*.
    """
    found: list[NestedBundle] = []
    for dirpath, dirnames, _ in os.walk(app_path):
        dirnames.sort()
        for name in dirnames:
            suffix = os.path.splitext(name)[1]
            full = Path(dirpath) / name
            if suffix in SCOPE_SUFFIXES and not full.is_symlink():
                found.append(NestedBundle(scope=SCOPE_SUFFIXES[suffix], path=full))
    found.sort(key=lambda b: _relative(b.path, app_path))
    return found


def ensure_primary_identifier(app_path: Path, primary: str) -> str | None:
    """Make the app's own descriptor declare *primary*.

    Returns the previous identifier when a rewrite happened, else ``None``.
    """
    current = read_bundle_identifier(app_path)
    if current == primary:
        return None
    write_bundle_identifier(app_path, primary)
    logger.info("Primary bundle identifier restored: %s -> %s", current, primary)
    return current


def resolve_identities(
    primary_identifier: str,
    nested_bundles: Iterable[NestedBundle],
    *,
    root: Path | None = None,
) -> IdentityReport:
    """Assign collision-free identifiers to *nested_bundles*.

    Parameters
    ----------
    primary_identifier:
        The app's identifier.  Authoritative; never reassigned.
    nested_bundles:
        Bundles to check.  Visited in lexicographic order of their path
        relative to *root*.
    root:
        Base for relative paths in the report and for ordering.

    Returns
    -------
    IdentityReport
        One entry per bundle.  Bundles whose descriptor cannot be read or
        written are reported as ``failed``; the rest are still resolved.
    """
    ordered = sorted(nested_bundles, key=lambda b: _relative(b.path, root))
    seen: set[str] = {primary_identifier}
    identities: list[BundleIdentity] = []

    for bundle in ordered:
        rel = _relative(bundle.path, root)
        display = bundle.display_name
        try:
            declared = read_bundle_identifier(bundle.path)
        except (OSError, ValueError) as exc:
            logger.warning("Cannot read identity of %s: %s", rel, exc)
            identities.append(
                BundleIdentity(
                    scope=bundle.scope,
                    display_name=display,
                    path=rel,
                    status=IdentityStatus.FAILED,
                    error=f"unreadable descriptor: {exc}",
                )
            )
            continue

        if declared is None:
            identities.append(
                BundleIdentity(
                    scope=bundle.scope,
                    display_name=display,
                    path=rel,
                    status=IdentityStatus.UNDECLARED,
                )
            )
            continue

        if declared not in seen:
            seen.add(declared)
            identities.append(
                BundleIdentity(
                    scope=bundle.scope,
                    display_name=display,
                    identifier=declared,
                    path=rel,
                )
            )
            continue

        base = derive_identifier(primary_identifier, bundle.scope, display)
        candidate = base
        suffix = 2
        while candidate in seen:
            candidate = f"{base}.{suffix}"
            suffix += 1

        try:
            write_bundle_identifier(bundle.path, candidate)
        except (OSError, ValueError) as exc:
            logger.warning("Cannot repair identity of %s: %s", rel, exc)
            identities.append(
                BundleIdentity(
                    scope=bundle.scope,
                    display_name=display,
                    identifier=declared,
                    path=rel,
                    status=IdentityStatus.FAILED,
                    error=f"write failed: {exc}",
                )
            )
            continue

        seen.add(candidate)
        logger.info("Repaired %s: %s -> %s", rel, declared, candidate)
        identities.append(
            BundleIdentity(
                scope=bundle.scope,
                display_name=display,
                identifier=candidate,
                path=rel,
                status=IdentityStatus.REPAIRED,
                previous_identifier=declared,
            )
        )

    return IdentityReport(
        primary_identifier=primary_identifier,
        identities=tuple(identities),
    )
