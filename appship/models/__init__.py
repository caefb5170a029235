"""appship data models — all Pydantic v2, all frozen (immutable)."""

from appship.models.identity import (
    BundleIdentity,
    BundleScope,
    IdentityReport,
    IdentityStatus,
    NestedBundle,
)
from appship.models.manifest import (
    ConfigurationBlock,
    ManifestDocument,
    SettingEntry,
    TextRegion,
)
from appship.models.notifications import Notification, NotificationKind
from appship.models.package import BundleInfo, PackageManifest
from appship.models.snapshot import ConfigSnapshot, Provenance, Rejection, ResolvedValue
from appship.models.stages import (
    DEFAULT_STAGE_DEFINITIONS,
    VALID_TRANSITIONS,
    PipelineResult,
    StageDefinition,
    StageOutcome,
    StagePolicy,
    StageState,
    StageTransition,
)
from appship.models.variables import DEFAULT_SCHEMA, REQUIRED_KEYS, ValueKind, VariableSpec

__all__ = [
    # variables
    "ValueKind",
    "VariableSpec",
    "DEFAULT_SCHEMA",
    "REQUIRED_KEYS",
    # snapshot
    "ConfigSnapshot",
    "Provenance",
    "Rejection",
    "ResolvedValue",
    # manifest
    "ManifestDocument",
    "ConfigurationBlock",
    "SettingEntry",
    "TextRegion",
    # identity
    "BundleScope",
    "IdentityStatus",
    "NestedBundle",
    "BundleIdentity",
    "IdentityReport",
    # package
    "BundleInfo",
    "PackageManifest",
    # stages
    "StageState",
    "StagePolicy",
    "StageDefinition",
    "StageTransition",
    "StageOutcome",
    "PipelineResult",
    "VALID_TRANSITIONS",
    "DEFAULT_STAGE_DEFINITIONS",
    # notifications
    "Notification",
    "NotificationKind",
]
