"""Unit tests for the PipelineOrchestrator.

All external tools are replaced by the ``FakeToolchain`` from conftest, so
these tests exercise the real stages end to end on the filesystem.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from appship.config import RuntimeSettings
from appship.core import bundle_identity
from appship.core.config_resolver import EnvironmentProvider, MappingProvider, defaults_provider
from appship.core.orchestrator import CancellationToken, PipelineOrchestrator, new_run_id
from appship.models.notifications import Notification, NotificationKind
from appship.models.stages import StageState
from appship.routing.sinks.email import EmailSink
from appship.routing.sinks.local_file import LocalFileSink
from appship.stages import STAGE_REGISTRY
from appship.stages.s15_podfile_sync import PodfileSyncStage


class RecordingSink:
    """Collects every notification it receives."""

    def __init__(self, fail: bool = False) -> None:
        self.received: list[Notification] = []
        self.fail = fail

    @property
    def sink_name(self) -> str:
        return "recording"

    def accept(self, notification: Notification) -> None:
        if self.fail:
            raise OSError("sink offline")
        self.received.append(notification)


class BrokenPodfileStage(PodfileSyncStage):
    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        raise OSError("Podfile is locked")


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def settings(tmp_path: Path) -> RuntimeSettings:
    return RuntimeSettings(notification_dir=tmp_path / "notifications")


@pytest.fixture
def make_orchestrator(make_providers, build_vars, settings, tool_runner, sink, run_id):
    def _factory(values: dict[str, str] | None = None, **kwargs: Any) -> PipelineOrchestrator:
        merged = {**build_vars, **(values or {})}
        kwargs.setdefault("sinks", [sink])
        return PipelineOrchestrator(
            make_providers(merged),
            settings=settings,
            tool_runner=tool_runner,
            run_id=run_id,
            **kwargs,
        )

    return _factory


def _states(result) -> dict[str, StageState]:
    return {o.stage_id: o.state for o in result.outcomes}


# ---------------------------------------------------------------------------
# Test: successful runs
# ---------------------------------------------------------------------------


class TestSuccessfulRun:
    """A complete run packages the app and notifies once."""

    def test_full_run(self, make_orchestrator, sink, toolchain, build_vars):
        result = make_orchestrator().run()

        assert result.succeeded
        assert result.exit_code == 0
        assert _states(result) == {
            "s0_resolve_config": StageState.PASSED,
            "s1_mutate_manifest": StageState.PASSED,
            "s15_podfile_sync": StageState.SKIPPED,
            "s2_compile": StageState.PASSED,
            "s3_archive": StageState.PASSED,
            "s4_resolve_identities": StageState.PASSED,
            "s5_assemble_package": StageState.PASSED,
            "s6_upload": StageState.SKIPPED,
            "s7_report": StageState.PASSED,
        }
        assert toolchain.tools_called() == ["fake-compile", "fake-archive"]
        assert result.package is not None
        assert result.package.path.is_file()
        assert result.outcome("s6_upload").detail == "IS_TESTFLIGHT is false"

        out = Path(build_vars["OUTPUT_DIR"])
        summary = json.loads((out / "build_summary.json").read_text())
        assert summary["stages"]["s5_assemble_package"] == "passed"
        assert summary["identities"]["identities"][0]["status"] == "repaired"

    def test_single_success_notification(self, make_orchestrator, sink):
        result = make_orchestrator().run()
        assert len(sink.received) == 1
        notification = sink.received[0]
        assert notification.kind == NotificationKind.SUCCESS
        assert notification.message == "Acme 2.3.0 (42) built; upload skipped"
        assert notification.details["bundle_id"] == "com.acme.app"
        assert notification.details["package_sha256"] == result.package.sha256

    def test_upload(self, make_orchestrator, sink, toolchain, api_key_file, build_vars):
        result = make_orchestrator({
            "IS_TESTFLIGHT": "true",
            "APP_STORE_CONNECT_KEY_IDENTIFIER": "KEY1234567",
            "APP_STORE_CONNECT_ISSUER_ID": "issuer-uuid",
            "APP_STORE_CONNECT_PRIVATE_KEY_PATH": str(api_key_file),
        }).run()

        assert result.succeeded
        assert result.outcome("s6_upload").state == StageState.PASSED
        assert toolchain.tools_called()[-1] == "fake-upload"
        assert sink.received[0].message.endswith("built and uploaded")

        out = Path(build_vars["OUTPUT_DIR"])
        for path in out.rglob("*"):
            if path.is_file() and path.suffix in {".log", ".json"}:
                text = path.read_text()
                assert "KEY1234567" not in text, path
                assert "issuer-uuid" not in text, path

    def test_skip_upload_flag(self, make_orchestrator, sink, toolchain):
        result = make_orchestrator(
            {"IS_TESTFLIGHT": "true"}, skip_upload=True
        ).run()
        assert result.succeeded
        assert result.outcome("s6_upload").detail == "upload disabled for this run"
        assert "fake-upload" not in toolchain.tools_called()
        assert sink.received[0].kind == NotificationKind.SUCCESS

    def test_second_run_is_stable(self, make_orchestrator, build_vars):
        first = make_orchestrator().run()
        manifest = Path(build_vars["PROJECT_DIR"]) / "ios/Runner.xcodeproj/project.pbxproj"
        before = manifest.read_bytes()
        second = make_orchestrator().run()
        assert second.succeeded
        assert manifest.read_bytes() == before
        assert second.package.uncompressed_bytes == first.package.uncompressed_bytes


# ---------------------------------------------------------------------------
# Test: tool environment
# ---------------------------------------------------------------------------


class TestToolEnvironment:
    """External tools see the resolved configuration, never the raw providers."""

    def _run(self, build_vars, settings, tool_runner, sink, run_id, environ):
        providers = [
            EnvironmentProvider(environ),
            MappingProvider("test", build_vars),
            defaults_provider(),
        ]
        return PipelineOrchestrator(
            providers,
            settings=settings,
            tool_runner=tool_runner,
            sinks=[sink],
            run_id=run_id,
        ).run()

    def test_empty_injected_value_replaced(
        self, build_vars, settings, tool_runner, sink, run_id, toolchain
    ):
        result = self._run(
            build_vars, settings, tool_runner, sink, run_id, {"BUNDLE_ID": ""}
        )
        assert result.succeeded

        for call in toolchain.calls:
            env = call["env"]
            assert env["BUNDLE_ID"] == "com.acme.app"
            assert env["APPLE_TEAM_ID"] == "ABCDE12345"
            assert env["VERSION_CODE"] == "42"
            assert env["IS_TESTFLIGHT"] == "false"
            assert env["PATH"] == "/usr/bin"

    def test_secrets_not_exported(
        self, build_vars, settings, tool_runner, sink, run_id, toolchain
    ):
        build_vars = {**build_vars, "APP_STORE_CONNECT_ISSUER_ID": "issuer-uuid"}
        self._run(build_vars, settings, tool_runner, sink, run_id, {})

        compile_env = toolchain.calls[0]["env"]
        assert "APP_STORE_CONNECT_ISSUER_ID" not in compile_env
        assert "issuer-uuid" not in compile_env.values()

    def test_stage_env_applied_last(
        self, make_orchestrator, toolchain, api_key_file
    ):
        make_orchestrator({
            "IS_TESTFLIGHT": "true",
            "APP_STORE_CONNECT_KEY_IDENTIFIER": "KEY1234567",
            "APP_STORE_CONNECT_ISSUER_ID": "issuer-uuid",
            "APP_STORE_CONNECT_PRIVATE_KEY_PATH": str(api_key_file),
        }).run()

        upload_env = toolchain.calls[-1]["env"]
        assert upload_env["API_PRIVATE_KEYS_DIR"].endswith("private_keys")
        assert upload_env["IS_TESTFLIGHT"] == "true"
        assert "APP_STORE_CONNECT_KEY_IDENTIFIER" not in upload_env


# ---------------------------------------------------------------------------
# Test: failures
# ---------------------------------------------------------------------------


class TestFailures:
    """Fatal failures stop the run; advisory failures do not."""

    def test_fatal_compile_failure(self, make_orchestrator, sink, toolchain):
        toolchain.exit_codes["fake-compile"] = 2
        result = make_orchestrator().run()

        assert not result.succeeded
        assert result.exit_code == 1
        assert result.failed_stage == "s2_compile"
        states = _states(result)
        assert states["s2_compile"] == StageState.FAILED
        for sid in ("s3_archive", "s4_resolve_identities", "s5_assemble_package",
                    "s6_upload", "s7_report"):
            assert states[sid] == StageState.BLOCKED
        assert result.outcome("s3_archive").detail == "s2_compile failed"
        assert toolchain.tools_called() == ["fake-compile"]

        assert len(sink.received) == 1
        notification = sink.received[0]
        assert notification.kind == NotificationKind.FAILURE
        assert notification.stage_id == "s2_compile"
        assert notification.message.startswith("Build failed at s2_compile: ")
        assert "exited with code 2" in notification.message

    def test_failure_message_redacted(self, make_orchestrator, sink, toolchain):
        toolchain.exit_codes["fake-compile"] = 1
        toolchain.output["fake-compile"] = "auth failed for issuer-uuid\n"
        result = make_orchestrator({"APP_STORE_CONNECT_ISSUER_ID": "issuer-uuid"}).run()
        assert "issuer-uuid" not in result.error
        assert "issuer-uuid" not in sink.received[0].message

    def test_missing_configuration(self, make_orchestrator, sink, toolchain):
        result = make_orchestrator({"BUNDLE_ID": ""}).run()

        assert result.failed_stage == "s0_resolve_config"
        assert "BUNDLE_ID" in result.error
        assert toolchain.calls == []
        assert all(o.state == StageState.BLOCKED for o in result.outcomes[1:])
        assert sink.received[0].details == {}

    def test_advisory_failure_continues(self, make_orchestrator, sink):
        stages = {sid: cls() for sid, cls in STAGE_REGISTRY.items()}
        stages["s15_podfile_sync"] = BrokenPodfileStage()
        result = make_orchestrator({"DEPLOYMENT_TARGET": "14.0"}, stages=stages).run()

        assert result.succeeded
        assert result.outcome("s15_podfile_sync").state == StageState.FAILED
        assert "Podfile is locked" in result.outcome("s15_podfile_sync").detail
        assert sink.received[0].kind == NotificationKind.SUCCESS

    def test_identity_conflict_is_fatal(self, make_orchestrator, sink, monkeypatch):
        def refuse(bundle, identifier):
            raise PermissionError("read-only bundle")

        monkeypatch.setattr(bundle_identity, "write_bundle_identifier", refuse)
        result = make_orchestrator().run()

        assert result.failed_stage == "s4_resolve_identities"
        assert "still declared by unrepairable" in result.error
        assert result.outcome("s5_assemble_package").state == StageState.BLOCKED
        assert result.package is None
        assert sink.received[0].stage_id == "s4_resolve_identities"

    def test_unregistered_stage(self, make_orchestrator):
        with pytest.raises(KeyError, match="s0_resolve_config"):
            make_orchestrator(stages={})

    def test_partial_stage_mapping(self, make_orchestrator):
        stages = {sid: cls() for sid, cls in STAGE_REGISTRY.items() if sid != "s6_upload"}
        with pytest.raises(KeyError, match="s6_upload"):
            make_orchestrator(stages=stages)


# ---------------------------------------------------------------------------
# Test: cancellation
# ---------------------------------------------------------------------------


class TestCancellation:
    def test_cancel_between_stages(self, make_orchestrator, sink, toolchain):
        token = CancellationToken()
        toolchain.on_call = lambda tool: token.cancel("interrupted") if tool == "fake-compile" else None
        result = make_orchestrator(cancel_token=token).run()

        assert result.cancelled
        assert result.exit_code == 130
        assert result.failed_stage is None
        states = _states(result)
        assert states["s2_compile"] == StageState.PASSED
        assert states["s3_archive"] == StageState.BLOCKED
        assert toolchain.tools_called() == ["fake-compile"]

        assert len(sink.received) == 1
        assert sink.received[0].kind == NotificationKind.FAILURE
        assert sink.received[0].message == "Run cancelled: interrupted"

    def test_cancelled_before_start(self, make_orchestrator, sink):
        token = CancellationToken()
        token.cancel("stop")
        result = make_orchestrator(cancel_token=token).run()
        assert result.cancelled
        assert set(_states(result).values()) == {StageState.BLOCKED}


# ---------------------------------------------------------------------------
# Test: notification routing
# ---------------------------------------------------------------------------


class TestNotificationRouting:
    def test_default_local_file_sink(self, make_orchestrator, settings, run_id):
        make_orchestrator(sinks=None).run()
        files = LocalFileSink(settings.notification_dir).list_notifications(run_id)
        assert len(files) == 1
        assert files[0].name.startswith("success-")

    def test_email_sink_queues_without_smtp(self, make_orchestrator):
        orchestrator = make_orchestrator({
            "ENABLE_EMAIL_NOTIFICATIONS": "true",
            "EMAIL_ID": "dev@acme.test",
        })
        orchestrator.run()
        email = [s for s in orchestrator.dispatcher.registered_sinks if isinstance(s, EmailSink)]
        assert len(email) == 1
        payloads = email[0].flush()
        assert payloads[0].recipient == "dev@acme.test"
        assert "Build Succeeded" in payloads[0].subject

    def test_email_disabled_by_default(self, make_orchestrator):
        orchestrator = make_orchestrator({"EMAIL_ID": "dev@acme.test"})
        orchestrator.run()
        assert not any(isinstance(s, EmailSink) for s in orchestrator.dispatcher.registered_sinks)

    def test_sink_failure_does_not_fail_run(self, make_orchestrator):
        result = make_orchestrator(sinks=[RecordingSink(fail=True)]).run()
        assert result.succeeded


def test_new_run_id_format():
    run_id = new_run_id()
    assert run_id.startswith("as-")
    assert len(run_id.split("-")) == 4
