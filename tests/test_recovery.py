"""
Tests for the keyring recovery policy on the system-update step.
"""

from archsetup.core.engine.pipeline import PipelineState, ProvisioningPipeline
from archsetup.core.engine.recovery import RecoveryPolicy, keyring_remediation
from archsetup.core.models.plan import Plan
from archsetup.core.models.result import StepResult
from archsetup.core.models.step import InstallRepoPackage, RunCommand, SystemUpdate
from tests.fakes import exited, timed_out

UPDATE = ["pacman", "-Syu", "--noconfirm"]


def _run(plan, registry, settings, runner, probe):
    return ProvisioningPipeline(plan, registry, settings, runner, probe, sleep=lambda _s: None).run()


class TestKeyringRemediation:
    def test_sequence(self):
        steps = keyring_remediation()
        assert [s.argv for s in steps] == [
            ["pacman", "-Sy", "--noconfirm", "archlinux-keyring"],
            ["pacman-key", "--init"],
            ["pacman-key", "--populate", "archlinux"],
            ["pacman-key", "--refresh-keys"],
        ]
        assert all(s.privileged for s in steps)

    def test_refresh_is_time_bounded(self):
        assert keyring_remediation(key_refresh_timeout=7)[-1].timeout == 7

    def test_applies_only_to_update(self):
        policy = RecoveryPolicy()
        assert policy.applies_to(SystemUpdate())
        assert not policy.applies_to(InstallRepoPackage(name="vim"))


class TestRecoveryPolicy:
    def test_success_needs_no_recovery(self):
        calls = []

        def execute(step):
            calls.append(step.id)
            return StepResult.success(step.id)

        result = RecoveryPolicy().run(SystemUpdate(), execute)
        assert result.ok
        assert calls == ["update"]
        assert "recovery" not in result.metadata

    def test_exactly_one_remediation_and_one_retry(self):
        calls = []

        def execute(step):
            calls.append(step.id)
            if step.id == "update":
                return StepResult.failure(step.id, reason="invalid or corrupted package (PGP signature)")
            return StepResult.success(step.id)

        result = RecoveryPolicy().run(SystemUpdate(), execute)
        assert result.failed
        assert calls == [
            "update",
            "keyring:update",
            "keyring:init",
            "keyring:populate",
            "keyring:refresh-keys",
            "update",
        ]
        assert result.metadata["recovery"]["attempts"] == 2
        assert result.metadata["recovery"]["recovered"] is False

    def test_remediation_failure_is_not_fatal(self):
        def execute(step):
            if step.id == "keyring:refresh-keys":
                return StepResult.failure(step.id, reason="timed out", failure_kind="timed_out")
            if step.id == "update" and not execute.retried:
                execute.retried = True
                return StepResult.failure(step.id, reason="signature error")
            return StepResult.success(step.id)

        execute.retried = False
        result = RecoveryPolicy().run(SystemUpdate(), execute)
        assert result.ok
        recovery = result.metadata["recovery"]
        assert recovery["recovered"] is True
        assert recovery["first_reason"] == "signature error"
        assert recovery["remediation"][-1]["status"] == "failed"

    def test_custom_remediation(self):
        calls = []

        def execute(step):
            calls.append(step.id)
            return StepResult.failure(step.id, reason="x") if step.id == "update" else StepResult.success(step.id)

        RecoveryPolicy(remediation=[RunCommand(id="fix", argv=["true"])]).run(SystemUpdate(), execute)
        assert calls == ["update", "fix", "update"]


class TestRecoveryInPipeline:
    def test_update_fails_twice(self, registry, settings, runner, probe):
        runner.on(UPDATE, 1)
        report = _run(Plan(steps=(SystemUpdate(), InstallRepoPackage(name="vim"))), registry, settings, runner, probe)

        assert runner.count(*UPDATE) == 2
        assert runner.count("pacman-key", "--init") == 1
        assert runner.count("pacman-key", "--refresh-keys") == 1
        assert report.result_for("update").failed
        # Non-critical: the rest of the plan still runs
        assert report.result_for("repo:vim").ok
        assert report.state is PipelineState.COMPLETED_WITH_FAILURES

    def test_update_recovers(self, registry, settings, runner, probe):
        runner.on(UPDATE, 1, 0)
        report = _run(Plan(steps=(SystemUpdate(),)), registry, settings, runner, probe)
        assert report.state is PipelineState.COMPLETED
        assert report.result_for("update").metadata["recovery"]["recovered"]

    def test_refresh_timeout_tolerated(self, registry, settings, runner, probe):
        runner.on(UPDATE, 1, 0)
        runner.on(["pacman-key", "--refresh-keys"], timed_out())
        report = _run(Plan(steps=(SystemUpdate(),)), registry, settings, runner, probe)
        assert report.result_for("update").ok
        refresh = [c for c in runner.calls if c.cmd == ["pacman-key", "--refresh-keys"]]
        assert refresh[0].timeout == settings.key_refresh_timeout

    def test_remediation_not_in_results(self, registry, settings, runner, probe):
        runner.on(UPDATE, 1, exited(0))
        report = _run(Plan(steps=(SystemUpdate(),)), registry, settings, runner, probe)
        assert [r.step_id for r in report.results] == ["update"]

    def test_only_final_failure_logged(self, registry, settings, runner, probe):
        runner.on(UPDATE, 1)
        pipeline = ProvisioningPipeline(
            Plan(steps=(SystemUpdate(),)), registry, settings, runner, probe, sleep=lambda _s: None
        )
        pipeline.run()
        assert [r.step_id for r in pipeline.failure_log.records] == ["update"]
