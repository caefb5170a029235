"""Bundle identity models — nested bundle inputs and resolution reports."""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict


class BundleScope(str, Enum):
    """Role of a bundle inside a package."""

    PRIMARY_APP = "primary-app"
    FRAMEWORK = "framework"
    EXTENSION = "extension"
    RESOURCE_BUNDLE = "resource-bundle"


class IdentityStatus(str, Enum):
    ACCEPTED = "accepted"
    REPAIRED = "repaired"
    FAILED = "failed"
    UNDECLARED = "undeclared"


# Tag inserted into derived identifiers, per scope.
SCOPE_TAGS: dict[BundleScope, str] = {
    BundleScope.FRAMEWORK: "framework",
    BundleScope.EXTENSION: "extension",
    BundleScope.RESOURCE_BUNDLE: "bundle",
}

# Directory suffix -> scope for nested bundle discovery.
SCOPE_SUFFIXES: dict[str, BundleScope] = {
    ".framework": BundleScope.FRAMEWORK,
    ".appex": BundleScope.EXTENSION,
    ".bundle": BundleScope.RESOURCE_BUNDLE,
}


class NestedBundle(BaseModel):
    """A framework, extension or resource bundle embedded in an app."""

    model_config = ConfigDict(frozen=True)

    scope: BundleScope
    path: Path

    @property
    def display_name(self) -> str:
        return self.path.stem

    @classmethod
    def from_path(cls, path: Path) -> NestedBundle:
        """Infer the scope from the directory suffix."""
        try:
            scope = SCOPE_SUFFIXES[path.suffix]
        except KeyError:
            raise ValueError(f"Not a nested bundle: {path}") from None
        return cls(scope=scope, path=path)


class BundleIdentity(BaseModel):
    """Resolution outcome for one bundle."""

    model_config = ConfigDict(frozen=True)

    scope: BundleScope
    display_name: str
    identifier: str | None = None
    path: str = ""  # relative to the resolution root
    status: IdentityStatus = IdentityStatus.ACCEPTED
    previous_identifier: str | None = None
    error: str | None = None


class IdentityReport(BaseModel):
    """Partial-success result of resolving one set of nested bundles."""

    model_config = ConfigDict(frozen=True)

    primary_identifier: str
    identities: tuple[BundleIdentity, ...] = ()

    @property
    def repaired(self) -> list[BundleIdentity]:
        return [i for i in self.identities if i.status == IdentityStatus.REPAIRED]

    @property
    def failed(self) -> list[BundleIdentity]:
        return [i for i in self.identities if i.status == IdentityStatus.FAILED]

    @property
    def write_count(self) -> int:
        return len(self.repaired)

    @property
    def primary_conflict(self) -> bool:
        """True when a bundle that could not be repaired still claims the primary identifier."""
        return any(i.identifier == self.primary_identifier for i in self.failed)

    def assigned_identifiers(self) -> list[str]:
        return [
            i.identifier
            for i in self.identities
            if i.identifier and i.status in (IdentityStatus.ACCEPTED, IdentityStatus.REPAIRED)
        ]
