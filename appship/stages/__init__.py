"""appship pipeline stages — registry mapping stage_id to stage class.

Usage::

    from appship.stages import STAGE_REGISTRY, get_stage

    stage_cls = STAGE_REGISTRY["s2_compile"]
    stage = stage_cls()
    result = stage.run_stage(run_context)

    # Or use the convenience helper:
    stage = get_stage("s4_resolve_identities")
"""

from __future__ import annotations

from appship.stages.base import BaseStage, StageExecutionError, StagePrerequisiteError
from appship.stages.s0_resolve_config import ResolveConfigStage
from appship.stages.s1_mutate_manifest import MutateManifestStage
from appship.stages.s15_podfile_sync import PodfileSyncStage
from appship.stages.s2_compile import CompileStage
from appship.stages.s3_archive import ArchiveStage
from appship.stages.s4_resolve_identities import ResolveIdentitiesStage
from appship.stages.s5_assemble_package import AssemblePackageStage
from appship.stages.s6_upload import UploadStage
from appship.stages.s7_report import ReportStage

# ---------------------------------------------------------------------------
# Stage registry: stage_id -> stage class
# ---------------------------------------------------------------------------

STAGE_REGISTRY: dict[str, type[BaseStage]] = {
    "s0_resolve_config": ResolveConfigStage,
    "s1_mutate_manifest": MutateManifestStage,
    "s15_podfile_sync": PodfileSyncStage,
    "s2_compile": CompileStage,
    "s3_archive": ArchiveStage,
    "s4_resolve_identities": ResolveIdentitiesStage,
    "s5_assemble_package": AssemblePackageStage,
    "s6_upload": UploadStage,
    "s7_report": ReportStage,
}

# Ordered list matching the default pipeline execution order.
STAGE_ORDER: list[str] = [
    "s0_resolve_config",
    "s1_mutate_manifest",
    "s15_podfile_sync",
    "s2_compile",
    "s3_archive",
    "s4_resolve_identities",
    "s5_assemble_package",
    "s6_upload",
    "s7_report",
]


def get_stage(stage_id: str) -> BaseStage:
    """Instantiate and return a stage by its ``stage_id``.

    Raises ``KeyError`` if the stage_id is not registered.
    """
    try:
        cls = STAGE_REGISTRY[stage_id]
    except KeyError:
        raise KeyError(
            f"Unknown stage_id {stage_id!r}. "
            f"Registered stages: {sorted(STAGE_REGISTRY.keys())}"
        ) from None
    return cls()


__all__ = [
    # Base
    "BaseStage",
    "StageExecutionError",
    "StagePrerequisiteError",
    # Registry
    "STAGE_REGISTRY",
    "STAGE_ORDER",
    "get_stage",
    # Concrete stages
    "ResolveConfigStage",
    "MutateManifestStage",
    "PodfileSyncStage",
    "CompileStage",
    "ArchiveStage",
    "ResolveIdentitiesStage",
    "AssemblePackageStage",
    "UploadStage",
    "ReportStage",
]
