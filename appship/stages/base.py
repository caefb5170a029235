"""Abstract base stage with enforced lifecycle.

Every concrete stage inherits from BaseStage and implements only ``execute()``.
The ``run_stage()`` wrapper is **not overridable** — it enforces the canonical
lifecycle ordering:

    validate_prerequisites -> compute_input_hash -> execute
        -> compute_output_hash -> record

Any exception escaping ``execute()`` is wrapped in ``StageExecutionError``
naming the stage, so the orchestrator sees one error type and decides
fatal versus advisory from the stage's policy.
"""

from __future__ import annotations

import abc
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, final

from appship.core.hasher import compute_input_hash, compute_output_hash
from appship.core.tools import ToolResult, ToolRunner, stringify
from appship.core.workspace import WorkspaceLayout
from appship.models.snapshot import ConfigSnapshot
from appship.models.stages import SATISFIED_STATES, StageState

logger = logging.getLogger(__name__)


class StagePrerequisiteError(RuntimeError):
    """Raised when a stage's prerequisites are not satisfied."""


class StageExecutionError(RuntimeError):
    """Raised when a stage's execute() method fails."""

    def __init__(self, stage_id: str, cause: BaseException) -> None:
        self.stage_id = stage_id
        self.cause = cause
        super().__init__(f"Stage {stage_id} failed: {cause}")


class BaseStage(abc.ABC):
    """Abstract base for all appship pipeline stages.

    Subclasses **must** implement:
        * ``stage_id``   — unique identifier (e.g. ``"s2_compile"``).
        * ``display_name`` — human-readable name shown in run summaries.
        * ``execute(run_context)`` — the stage's core logic.

    Subclasses **may** override:
        * ``skip_reason(run_context)`` — return a reason to skip the stage.

    Subclasses **must not** override ``run_stage()``.
    """

    # ------------------------------------------------------------------
    # Abstract interface: subclasses implement these
    # ------------------------------------------------------------------

    @property
    @abc.abstractmethod
    def stage_id(self) -> str:
        """Unique stage identifier (e.g. ``'s0_resolve_config'``)."""
        ...

    @property
    @abc.abstractmethod
    def display_name(self) -> str:
        """Human-readable display name."""
        ...

    @abc.abstractmethod
    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        """Execute the stage's core logic.

        Parameters
        ----------
        run_context:
            Mutable dict carrying run-wide state: ``run_id``, the resolved
            ``snapshot``, the ``layout``, prior ``stage_results``, and the
            collaborators (``tool_runner``, ``dispatcher``).

        Returns
        -------
        dict:
            Structured, JSON-friendly result appropriate to the stage.
        """
        ...

    def skip_reason(self, run_context: dict[str, Any]) -> str | None:
        """Reason to skip this stage in the current run, or ``None`` to run it."""
        return None

    # ------------------------------------------------------------------
    # Lifecycle (not overridable)
    # ------------------------------------------------------------------

    @final
    def run_stage(self, run_context: dict[str, Any]) -> dict[str, Any]:
        """Execute the full stage lifecycle.  **Do not override.**

        Ordering:
            1. ``validate_prerequisites(run_context)``
            2. ``compute_input_hash(run_context)``
            3. ``execute(run_context)``
            4. ``compute_output_hash(result)``
            5. ``record(run_context, result, input_hash, output_hash)``

        Returns the structured result dict produced by ``execute()``,
        augmented with ``_input_hash`` and ``_output_hash`` keys.
        """
        # 1. Validate prerequisites
        self.validate_prerequisites(run_context)

        # 2. Input hash; identical on a re-run with unchanged inputs
        input_hash = self._compute_input_hash(run_context)
        logger.debug("%s [%s] input_hash=%s", self.display_name, self.stage_id, input_hash)

        # 3. Execute the stage's core logic
        try:
            result = self.execute(run_context)
        except Exception as exc:
            logger.error("%s [%s] failed: %s", self.display_name, self.stage_id, exc)
            raise StageExecutionError(self.stage_id, exc) from exc

        # 4. Output hash
        output_hash = self._compute_output_hash(result)

        # 5. Record for downstream stages and the build summary
        self._record(run_context, result, input_hash, output_hash)

        result["_input_hash"] = input_hash
        result["_output_hash"] = output_hash
        return result

    # ------------------------------------------------------------------
    # Lifecycle helpers (not overridable)
    # ------------------------------------------------------------------

    @final
    def validate_prerequisites(self, run_context: dict[str, Any]) -> None:
        """Ensure all prerequisite stages are PASSED or SKIPPED.

        Reads ``stage_states`` (``stage_id -> StageState``) and
        ``stage_definitions`` (``stage_id -> StageDefinition``) from
        *run_context*.
        """
        stage_states: dict[str, StageState] = run_context.get("stage_states", {})
        definition = run_context.get("stage_definitions", {}).get(self.stage_id)
        prerequisites: list[str] = definition.prerequisites if definition else []

        blocking: list[str] = []
        for prereq_id in prerequisites:
            state = stage_states.get(prereq_id, StageState.NOT_STARTED)
            if state not in SATISFIED_STATES:
                blocking.append(f"{prereq_id} is {state.value}")

        if blocking:
            raise StagePrerequisiteError(
                f"Cannot run {self.stage_id}: prerequisites not met: " + "; ".join(blocking)
            )

    @final
    def _compute_input_hash(self, run_context: dict[str, Any]) -> str:
        """SHA-256 of canonical(stage_id + snapshot + prior outputs)."""
        snapshot: ConfigSnapshot | None = run_context.get("snapshot")
        inputs: dict[str, Any] = {
            "snapshot": snapshot.as_dict() if snapshot is not None else {},
            "prior_output_hashes": {
                sid: res.get("_output_hash", "")
                for sid, res in run_context.get("stage_results", {}).items()
            },
        }
        return compute_input_hash(self.stage_id, inputs)

    @final
    def _compute_output_hash(self, result: dict[str, Any]) -> str:
        hashable = {k: v for k, v in result.items() if not k.startswith("_")}
        return compute_output_hash(self.stage_id, hashable)

    @final
    def _record(
        self,
        run_context: dict[str, Any],
        result: dict[str, Any],
        input_hash: str,
        output_hash: str,
    ) -> None:
        run_context.setdefault("stage_results", {})[self.stage_id] = result
        run_context.setdefault("stage_records", []).append({
            "stage_id": self.stage_id,
            "input_hash": input_hash,
            "output_hash": output_hash,
            "timestamp_utc": datetime.now(timezone.utc).isoformat(),
        })
        logger.info(
            "%s [%s] recorded input=%s output=%s",
            self.display_name,
            self.stage_id,
            input_hash[:12],
            output_hash[:12],
        )

    # ------------------------------------------------------------------
    # Shared accessors
    # ------------------------------------------------------------------

    @staticmethod
    def snapshot(run_context: dict[str, Any]) -> ConfigSnapshot:
        snapshot = run_context.get("snapshot")
        if snapshot is None:
            raise RuntimeError("Configuration has not been resolved for this run")
        return snapshot

    @staticmethod
    def layout(run_context: dict[str, Any]) -> WorkspaceLayout:
        layout = run_context.get("layout")
        if layout is None:
            raise RuntimeError("Working directory has not been prepared for this run")
        return layout

    @staticmethod
    def project_dir(snapshot: ConfigSnapshot) -> Path:
        return Path(snapshot.get_str("PROJECT_DIR", ".")).resolve()

    def run_tool(
        self,
        run_context: dict[str, Any],
        tool: str,
        template_key: str,
        *,
        log_dir: Path,
        placeholders: dict[str, Any] | None = None,
        extra_env: dict[str, str] | None = None,
    ) -> ToolResult:
        """Run the external tool whose command template is *template_key*.

        Placeholders available to every template: all snapshot keys,
        ``{work_dir}``, ``{project_dir}`` and ``{export_options}``, plus
        *placeholders*.

        The tool's environment is the runner's base environment overlaid
        with every non-secret snapshot value, then *extra_env*.  Secrets
        reach a tool only through its command template.
        """
        snapshot = self.snapshot(run_context)
        layout = self.layout(run_context)
        runner: ToolRunner = run_context["tool_runner"]
        project_dir = self.project_dir(snapshot)

        values: dict[str, Any] = snapshot.as_dict(mask_secrets=False)
        values.update(
            work_dir=str(layout.root),
            project_dir=str(project_dir),
            export_options=str(layout.export_options),
        )
        values.update(placeholders or {})

        env = {e.key: stringify(e.value) for e in snapshot.entries if not e.secret}
        env.update(extra_env or {})

        return runner.run(
            tool,
            snapshot.get_str(template_key),
            values,
            cwd=project_dir,
            log_dir=log_dir,
            extra_env=env,
            secrets=snapshot.secret_values(),
            timeout=snapshot.get_int("TOOL_TIMEOUT_SECONDS") or None,
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} stage_id={self.stage_id!r}>"
