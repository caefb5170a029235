"""Pipeline orchestrator — the central coordinator for appship runs.

The orchestrator wires the StageMachine, the registered stages, the
ToolRunner and the SinkDispatcher into a single sequential run:

    Resolve Config -> Mutate Manifest -> Podfile Sync -> Compile -> Archive
        -> Resolve Identities -> Assemble Package -> Upload -> Build Summary

It is the only place that decides whether a stage failure is fatal or
advisory.  A fatal failure blocks every later stage and produces exactly
one failure notification; a completed run produces exactly one success
notification.  Cancellation is checked between stages.
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any

from appship.config import RuntimeSettings
from appship.core.config_resolver import VariableProvider
from appship.core.stage_machine import StageMachine
from appship.core.tools import ToolRunner, redact
from appship.models.notifications import Notification, NotificationKind
from appship.models.package import PackageManifest
from appship.models.snapshot import ConfigSnapshot
from appship.models.stages import (
    DEFAULT_STAGE_DEFINITIONS,
    PipelineResult,
    StageDefinition,
    StageOutcome,
    StagePolicy,
    StageState,
)
from appship.routing.dispatcher import SinkDispatcher, SinkDispatchError
from appship.routing.sinks import BaseSink
from appship.routing.sinks.email import EmailSink, SmtpTransport
from appship.routing.sinks.local_file import LocalFileSink
from appship.stages import STAGE_REGISTRY
from appship.stages.base import BaseStage, StageExecutionError, StagePrerequisiteError

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation flag checked at stage boundaries."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason = ""

    def cancel(self, reason: str = "cancelled") -> None:
        self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason


def new_run_id() -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"as-{ts}-{uuid.uuid4().hex[:6]}"


class PipelineOrchestrator:
    """Runs the build pipeline once.

    Parameters
    ----------
    providers:
        Variable providers, highest precedence first.
    settings:
        Tool runtime settings.  Loaded from the environment if not provided.
    tool_runner:
        Runs external tools.  A default ``ToolRunner`` if not provided.
    sinks:
        Notification sinks.  Defaults to a ``LocalFileSink`` under
        ``settings.notification_dir``.
    stages:
        Stage instances keyed by ``stage_id``.  Defaults to the registry.
    definitions:
        Stage definitions (order, policy, prerequisites).
    run_id:
        Identifier of this run.  Generated if not provided.
    skip_upload:
        Skip the upload stage regardless of ``IS_TESTFLIGHT``.
    cancel_token:
        Checked before every stage.
    """

    def __init__(
        self,
        providers: list[VariableProvider],
        *,
        settings: RuntimeSettings | None = None,
        tool_runner: ToolRunner | None = None,
        sinks: list[BaseSink] | None = None,
        stages: dict[str, BaseStage] | None = None,
        definitions: list[StageDefinition] | None = None,
        run_id: str | None = None,
        skip_upload: bool = False,
        cancel_token: CancellationToken | None = None,
        dispatcher: SinkDispatcher | None = None,
    ) -> None:
        self.settings = settings or RuntimeSettings()
        self.providers = list(providers)
        self.tool_runner = tool_runner or ToolRunner()
        self.definitions = list(
            definitions if definitions is not None else DEFAULT_STAGE_DEFINITIONS
        )
        self.stages = (
            stages if stages is not None else {sid: cls() for sid, cls in STAGE_REGISTRY.items()}
        )
        self.run_id = run_id or new_run_id()
        self.skip_upload = skip_upload
        self.cancel_token = cancel_token or CancellationToken()

        self.dispatcher = dispatcher or SinkDispatcher()
        if dispatcher is None:
            for sink in sinks if sinks is not None else [LocalFileSink(self.settings.notification_dir)]:
                self.dispatcher.register_sink(sink)

        missing = [d.stage_id for d in self.definitions if d.stage_id not in self.stages]
        if missing:
            raise KeyError(f"No stage registered for: {', '.join(missing)}")

        self.stage_machine = StageMachine(self.definitions)
        self.run_context: dict[str, Any] = {}
        self._details: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self) -> PipelineResult:
        """Execute every stage in order and dispatch the run's notification."""
        machine = self.stage_machine
        definitions = {d.stage_id: d for d in self.definitions}
        ctx = self.run_context
        ctx.update(
            run_id=self.run_id,
            settings=self.settings,
            providers=self.providers,
            stage_states=machine.states,
            stage_definitions=definitions,
            tool_runner=self.tool_runner,
            skip_upload=self.skip_upload,
            dispatcher=self.dispatcher,
            stage_results={},
        )
        logger.info("Run %s started (%d stages)", self.run_id, len(definitions))

        failed_stage: str | None = None
        error: str | None = None
        cancelled = False

        for stage_id in machine.stage_ids:
            if self.cancel_token.cancelled:
                cancelled = True
                error = f"Run cancelled: {self.cancel_token.reason}"
                machine.block_all_pending(error)
                logger.warning("%s before %s", error, stage_id)
                break

            if machine.get_state(stage_id) != StageState.NOT_STARTED:
                continue  # blocked by an earlier fatal failure

            definition = definitions[stage_id]
            stage = self.stages[stage_id]

            skip = stage.skip_reason(ctx)
            if skip is not None:
                machine.transition(stage_id, StageState.SKIPPED, reason=skip)
                self._details[stage_id] = skip
                logger.info("%s skipped: %s", definition.display_name, skip)
                continue

            reasons = machine.blocking_reasons(stage_id)
            if reasons:
                detail = "blocked: " + "; ".join(reasons)
                machine.transition(stage_id, StageState.BLOCKED, reason=detail)
                self._details[stage_id] = detail
                if definition.policy == StagePolicy.FATAL:
                    failed_stage, error = stage_id, f"Stage {stage_id} {detail}"
                    machine.block_remaining(stage_id, error)
                    break
                continue

            machine.transition(stage_id, StageState.RUNNING)
            try:
                stage.run_stage(ctx)
            except (StageExecutionError, StagePrerequisiteError) as exc:
                message = redact(str(exc), self._secrets())
                machine.transition(stage_id, StageState.FAILED, reason=message)
                self._details[stage_id] = message
                if definition.policy == StagePolicy.ADVISORY:
                    logger.warning("Advisory stage %s failed: %s", stage_id, message)
                    continue
                failed_stage, error = stage_id, message
                machine.block_remaining(stage_id, f"{stage_id} failed")
                if self.cancel_token.cancelled:
                    cancelled = True
                break

            machine.transition(stage_id, StageState.PASSED)
            if stage_id == "s0_resolve_config":
                self._attach_email_sink(ctx["snapshot"])

        succeeded = failed_stage is None and not cancelled
        package: PackageManifest | None = ctx.get("package")
        result = PipelineResult(
            run_id=self.run_id,
            succeeded=succeeded,
            cancelled=cancelled,
            failed_stage=failed_stage,
            error=error,
            outcomes=self._outcomes(),
            package=package,
        )
        self._notify(result)
        logger.info(
            "Run %s %s",
            self.run_id,
            "succeeded" if succeeded else ("cancelled" if cancelled else f"failed at {failed_stage}"),
        )
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _secrets(self) -> list[str]:
        snapshot: ConfigSnapshot | None = self.run_context.get("snapshot")
        return snapshot.secret_values() if snapshot is not None else []

    def _outcomes(self) -> list[StageOutcome]:
        results = self.run_context.get("stage_results", {})
        reasons = {t.stage_id: t.reason or "" for t in self.stage_machine.transitions}
        outcomes: list[StageOutcome] = []
        for definition in sorted(self.definitions, key=lambda d: d.ordinal):
            sid = definition.stage_id
            outcomes.append(
                StageOutcome(
                    stage_id=sid,
                    display_name=definition.display_name,
                    state=self.stage_machine.get_state(sid),
                    policy=definition.policy,
                    detail=self._details.get(sid) or reasons.get(sid, ""),
                    output_hash=results.get(sid, {}).get("_output_hash", ""),
                )
            )
        return outcomes

    def _attach_email_sink(self, snapshot: ConfigSnapshot) -> None:
        recipient = snapshot.get_str("EMAIL_ID")
        if not (snapshot.get_bool("ENABLE_EMAIL_NOTIFICATIONS") and recipient):
            return
        transport: SmtpTransport | None = None
        if self.settings.smtp_configured:
            transport = SmtpTransport(
                self.settings.smtp_host,
                self.settings.smtp_port,
                username=self.settings.smtp_username,
                password=self.settings.smtp_password.get_secret_value(),
                use_tls=self.settings.smtp_use_tls,
                timeout=self.settings.smtp_timeout_seconds,
            )
        else:
            logger.info("SMTP is not configured; email notifications are queued only")
        self.dispatcher.register_sink(
            EmailSink(recipient, sender=self.settings.smtp_sender, transport=transport)
        )

    def _notify(self, result: PipelineResult) -> None:
        snapshot: ConfigSnapshot | None = self.run_context.get("snapshot")
        platform = self.settings.platform_tag
        if result.succeeded:
            snapshot = snapshot or ConfigSnapshot(entries=())
            upload = result.outcome("s6_upload")
            uploaded = upload is not None and upload.state == StageState.PASSED
            message = (
                f"{snapshot.get_str('APP_NAME', 'App')} {snapshot.get_str('VERSION_NAME')} "
                f"({snapshot.get_str('VERSION_CODE')}) built"
                + (" and uploaded" if uploaded else "; upload skipped")
            )
            details = {
                "bundle_id": snapshot.get_str("BUNDLE_ID"),
                "workflow_id": snapshot.get_str("WORKFLOW_ID"),
            }
            if result.package is not None:
                details["package"] = str(result.package.path)
                details["package_sha256"] = result.package.sha256
            notification = Notification(
                kind=NotificationKind.SUCCESS,
                platform=platform,
                run_id=self.run_id,
                message=message,
                details=details,
            )
        else:
            stage_id = result.failed_stage
            if result.cancelled and stage_id is None:
                message = result.error or "Run cancelled"
            else:
                message = f"Build failed at {stage_id}: {result.error}"
            notification = Notification(
                kind=NotificationKind.FAILURE,
                platform=platform,
                run_id=self.run_id,
                message=redact(message, self._secrets()),
                stage_id=stage_id,
                details={"workflow_id": snapshot.get_str("WORKFLOW_ID")} if snapshot else {},
            )
        try:
            self.dispatcher.dispatch(notification)
        except SinkDispatchError as exc:
            logger.warning("Notification for run %s was not delivered: %s", self.run_id, exc)
