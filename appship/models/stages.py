"""Stage state machine models — states, policies, transitions and run results."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from appship.models.package import PackageManifest


class StageState(str, Enum):
    """State of one stage within a pipeline run."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    BLOCKED = "blocked"


class StagePolicy(str, Enum):
    """What a stage failure means for the rest of the run."""

    FATAL = "fatal"  # halt, notify, non-zero exit
    ADVISORY = "advisory"  # log, record, continue


# Valid state transitions, enforced by StageMachine.
# A run is a single pass, so every state other than NOT_STARTED and RUNNING
# is terminal.
VALID_TRANSITIONS: dict[StageState, set[StageState]] = {
    StageState.NOT_STARTED: {StageState.RUNNING, StageState.SKIPPED, StageState.BLOCKED},
    StageState.RUNNING: {StageState.PASSED, StageState.FAILED},
    StageState.PASSED: set(),
    StageState.FAILED: set(),
    StageState.SKIPPED: set(),
    StageState.BLOCKED: set(),
}

# States that satisfy a downstream prerequisite.
SATISFIED_STATES: frozenset[StageState] = frozenset({StageState.PASSED, StageState.SKIPPED})


class StageDefinition(BaseModel):
    """Declares a pipeline stage, its position, policy and prerequisites."""

    model_config = ConfigDict(frozen=True)

    stage_id: str
    display_name: str
    ordinal: float
    policy: StagePolicy = StagePolicy.FATAL
    prerequisites: list[str] = []


class StageTransition(BaseModel):
    """Records a single state transition."""

    model_config = ConfigDict(frozen=True)

    stage_id: str
    from_state: StageState
    to_state: StageState
    reason: str | None = None
    upstream_ref: str | None = None  # stage_id that caused a block
    timestamp_utc: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


DEFAULT_STAGE_DEFINITIONS: list[StageDefinition] = [
    StageDefinition(
        stage_id="s0_resolve_config",
        display_name="Resolve Config",
        ordinal=0.0,
    ),
    StageDefinition(
        stage_id="s1_mutate_manifest",
        display_name="Mutate Manifest",
        ordinal=1.0,
        prerequisites=["s0_resolve_config"],
    ),
    StageDefinition(
        stage_id="s15_podfile_sync",
        display_name="Podfile Platform Sync",
        ordinal=1.5,
        policy=StagePolicy.ADVISORY,
        prerequisites=["s0_resolve_config"],
    ),
    StageDefinition(
        stage_id="s2_compile",
        display_name="Compile",
        ordinal=2.0,
        prerequisites=["s1_mutate_manifest"],
    ),
    StageDefinition(
        stage_id="s3_archive",
        display_name="Archive",
        ordinal=3.0,
        prerequisites=["s2_compile"],
    ),
    StageDefinition(
        stage_id="s4_resolve_identities",
        display_name="Resolve Identities",
        ordinal=4.0,
        prerequisites=["s3_archive"],
    ),
    StageDefinition(
        stage_id="s5_assemble_package",
        display_name="Assemble Package",
        ordinal=5.0,
        prerequisites=["s4_resolve_identities"],
    ),
    StageDefinition(
        stage_id="s6_upload",
        display_name="Upload",
        ordinal=6.0,
        prerequisites=["s5_assemble_package"],
    ),
    StageDefinition(
        stage_id="s7_report",
        display_name="Build Summary",
        ordinal=7.0,
        policy=StagePolicy.ADVISORY,
        prerequisites=["s5_assemble_package"],
    ),
]


class StageOutcome(BaseModel):
    """Final state of one stage after a run."""

    model_config = ConfigDict(frozen=True)

    stage_id: str
    display_name: str
    state: StageState
    policy: StagePolicy
    detail: str = ""
    output_hash: str = ""


class PipelineResult(BaseModel):
    """Everything a caller needs to report a finished run."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    succeeded: bool
    cancelled: bool = False
    failed_stage: str | None = None
    error: str | None = None
    outcomes: list[StageOutcome] = []
    package: PackageManifest | None = None

    @property
    def exit_code(self) -> int:
        if self.cancelled:
            return 130
        return 0 if self.succeeded else 1

    def outcome(self, stage_id: str) -> StageOutcome | None:
        for outcome in self.outcomes:
            if outcome.stage_id == stage_id:
                return outcome
        return None
