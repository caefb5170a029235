"""Deterministic stage state machine.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- Prerequisites satisfied before RUNNING
- Cascade blocking of every later stage after a fatal failure
- Every transition recorded in order
"""

from __future__ import annotations

import logging

from appship.models.stages import (
    SATISFIED_STATES,
    VALID_TRANSITIONS,
    StageDefinition,
    StageState,
    StageTransition,
)

logger = logging.getLogger(__name__)


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""


class PrerequisiteNotMetError(RuntimeError):
    """Raised when a stage is started before its prerequisites are satisfied."""


class StageMachine:
    """Tracks stage states for one run.

    Parameters
    ----------
    definitions:
        Stage definitions in execution order.
    """

    def __init__(self, definitions: list[StageDefinition]) -> None:
        self._definitions = {d.stage_id: d for d in definitions}
        self._order = [d.stage_id for d in sorted(definitions, key=lambda d: d.ordinal)]
        self._states: dict[str, StageState] = {
            sid: StageState.NOT_STARTED for sid in self._order
        }
        self._transitions: list[StageTransition] = []

    # ------------------------------------------------------------------
    # State queries
    # ------------------------------------------------------------------

    @property
    def stage_ids(self) -> list[str]:
        return list(self._order)

    @property
    def states(self) -> dict[str, StageState]:
        """Live view of stage states, shared with the run context."""
        return self._states

    @property
    def transitions(self) -> list[StageTransition]:
        return list(self._transitions)

    def get_state(self, stage_id: str) -> StageState:
        return self._states[stage_id]

    def blocking_reasons(self, stage_id: str) -> list[str]:
        reasons: list[str] = []
        for prereq in self._definitions[stage_id].prerequisites:
            state = self._states.get(prereq, StageState.NOT_STARTED)
            if state not in SATISFIED_STATES:
                reasons.append(f"{prereq} is {state.value}")
        return reasons

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def transition(
        self,
        stage_id: str,
        target_state: StageState,
        *,
        reason: str | None = None,
        upstream_ref: str | None = None,
    ) -> StageTransition:
        """Move *stage_id* to *target_state*, validating the transition."""
        if stage_id not in self._states:
            raise KeyError(f"Unknown stage_id {stage_id!r}")
        current = self._states[stage_id]
        allowed = VALID_TRANSITIONS.get(current, set())
        if target_state not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition {stage_id} from {current.value} to {target_state.value}. "
                f"Allowed: {sorted(s.value for s in allowed)}"
            )
        if target_state == StageState.RUNNING:
            reasons = self.blocking_reasons(stage_id)
            if reasons:
                raise PrerequisiteNotMetError(
                    f"Cannot start {stage_id}: prerequisites not met. "
                    f"Blocked by: {'; '.join(reasons)}"
                )

        record = StageTransition(
            stage_id=stage_id,
            from_state=current,
            to_state=target_state,
            reason=reason,
            upstream_ref=upstream_ref,
        )
        self._transitions.append(record)
        self._states[stage_id] = target_state
        logger.debug("%s: %s -> %s", stage_id, current.value, target_state.value)
        return record

    def block_remaining(self, after_stage_id: str, reason: str) -> list[str]:
        """Block every not-yet-started stage after *after_stage_id*."""
        start = self._order.index(after_stage_id) + 1
        blocked: list[str] = []
        for sid in self._order[start:]:
            if self._states[sid] == StageState.NOT_STARTED:
                self.transition(
                    sid, StageState.BLOCKED, reason=reason, upstream_ref=after_stage_id
                )
                blocked.append(sid)
        return blocked

    def block_all_pending(self, reason: str) -> list[str]:
        """Block every stage that has not started (cancellation)."""
        blocked: list[str] = []
        for sid in self._order:
            if self._states[sid] == StageState.NOT_STARTED:
                self.transition(sid, StageState.BLOCKED, reason=reason)
                blocked.append(sid)
        return blocked
