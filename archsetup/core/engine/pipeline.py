"""
Provisioning pipeline — the central orchestration loop.

Takes a plan and runs its steps strictly in declared order, one at a
time, through the adapter registry. Collects one StepResult per step
and writes every failure to the failure log.

State machine:

    idle → running → completed
                   → completed_with_failures   (non-critical failures)
                   → halted                    (critical step failed)
                   → cancelled                 (cancel event set)

A failing step does not stop the run unless it is critical, or its
install state could not be queried (idempotence can't be assumed).
Cancellation is checked between steps only; a running package
transaction is always allowed to finish.
A dry run remembers which commands its skipped steps would have
installed, so later steps that need them are not rejected.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from archsetup.adapters.packages.probe import PackageStateProbe
from archsetup.adapters.registry import AdapterRegistry
from archsetup.adapters.shell.runner import SubprocessRunner
from archsetup.core.engine.recovery import RecoveryPolicy, keyring_remediation
from archsetup.core.models.plan import Plan, commands_provided
from archsetup.core.models.result import StepResult
from archsetup.core.models.settings import ProvisionSettings
from archsetup.core.models.step import Step
from archsetup.core.persistence.audit import AuditWriter, RunEntry
from archsetup.core.persistence.failure_log import FailureLog

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    COMPLETED_WITH_FAILURES = "completed_with_failures"
    HALTED = "halted"
    CANCELLED = "cancelled"


# Process exit codes, so calling automation can tell a perfect run
# from a degraded one from an aborted one
EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_DEGRADED = 2
EXIT_HALTED = 3
EXIT_CANCELLED = 130

_EXIT_CODES = {
    PipelineState.COMPLETED: EXIT_OK,
    PipelineState.COMPLETED_WITH_FAILURES: EXIT_DEGRADED,
    PipelineState.HALTED: EXIT_HALTED,
    PipelineState.CANCELLED: EXIT_CANCELLED,
}


@dataclass
class PipelineReport:
    """Result of running a plan."""

    run_id: str = ""
    plan: str = ""
    state: PipelineState = PipelineState.IDLE
    results: list[StepResult] = field(default_factory=list)
    halted_by: str | None = None
    dry_run: bool = False
    duration_ms: int = 0

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.skipped)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.failed)

    @property
    def failed_steps(self) -> list[str]:
        return [r.step_id for r in self.results if r.failed]

    @property
    def exit_code(self) -> int:
        return _EXIT_CODES.get(self.state, EXIT_CONFIG_ERROR)

    def result_for(self, step_id: str) -> StepResult | None:
        for r in self.results:
            if r.step_id == step_id:
                return r
        return None

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "plan": self.plan,
            "state": self.state.value,
            "exit_code": self.exit_code,
            "dry_run": self.dry_run,
            "halted_by": self.halted_by,
            "total": self.total,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
            "duration_ms": self.duration_ms,
            "results": [r.model_dump(mode="json") for r in self.results],
        }

    def to_run_entry(self) -> RunEntry:
        return RunEntry(
            run_id=self.run_id,
            plan=self.plan,
            state=self.state.value,
            exit_code=self.exit_code,
            dry_run=self.dry_run,
            steps_total=self.total,
            steps_succeeded=self.succeeded,
            steps_skipped=self.skipped,
            steps_failed=self.failed,
            duration_ms=self.duration_ms,
            failed_steps=self.failed_steps,
            halted_by=self.halted_by,
        )


def generate_run_id() -> str:
    """Generate a unique run ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"run-{now}-{short}"


class ProvisioningPipeline:
    """Runs a plan once, in order, continuing past non-critical failures.

    Args:
        plan: The steps to run. Never reordered.
        registry: Adapter registry for dispatch.
        settings: Explicit run configuration.
        runner: Subprocess runner (carries the escalation capability).
        probe: Package state probe.
        failure_log: Where failures are recorded. Memory-only if omitted.
        recovery: Policy for the system-update step. Default: keyring
            remediation with ``settings.key_refresh_timeout``.
        cancel_event: Set it to stop before the next step.
        dry_run: Validate and check idempotence, execute nothing.
        sleep: Delay function between steps (tests pass a no-op).
    """

    def __init__(
        self,
        plan: Plan,
        registry: AdapterRegistry,
        settings: ProvisionSettings,
        runner: SubprocessRunner,
        probe: PackageStateProbe,
        failure_log: FailureLog | None = None,
        recovery: RecoveryPolicy | None = None,
        cancel_event: threading.Event | None = None,
        dry_run: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._plan = plan
        self._registry = registry
        self._settings = settings
        self._runner = runner
        self._probe = probe
        self._failure_log = failure_log if failure_log is not None else FailureLog()
        self._recovery = recovery or RecoveryPolicy(keyring_remediation(settings.key_refresh_timeout))
        self._cancel = cancel_event or threading.Event()
        self._dry_run = dry_run
        self._sleep = sleep
        self._state = PipelineState.IDLE
        self._pending_commands: set[str] = set()

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def plan(self) -> Plan:
        return self._plan

    @property
    def failure_log(self) -> FailureLog:
        return self._failure_log

    def cancel(self) -> None:
        """Request a stop before the next step."""
        self._cancel.set()

    def run(self) -> PipelineReport:
        """Execute every step in order and report.

        Raises:
            RuntimeError: If this pipeline has already run.
        """
        if self._state is not PipelineState.IDLE:
            raise RuntimeError(f"Pipeline already ran (state={self._state.value})")

        self._state = PipelineState.RUNNING
        report = PipelineReport(
            run_id=generate_run_id(),
            plan=self._plan.name,
            dry_run=self._dry_run,
        )
        start = time.monotonic()
        total = len(self._plan)
        logger.info("Starting %s: %d steps", report.run_id, total)

        for index, step in enumerate(self._plan.steps, start=1):
            if self._cancel.is_set():
                logger.warning("Cancelled before %s", step.id)
                self._state = PipelineState.CANCELLED
                break

            if index > 1 and self._settings.step_delay and not self._dry_run:
                self._sleep(self._settings.step_delay)

            logger.info("[%d/%d] %s", index, total, step.label)
            result = self._run_step(step)
            report.results.append(result)

            if self._dry_run and result.metadata.get("dry_run"):
                self._pending_commands.update(commands_provided(step))

            status_marker = "✓" if result.ok else "✗" if result.failed else "⊘"
            logger.info("%s %s → %s", status_marker, step.id, result.status)

            if not result.failed:
                continue

            self._failure_log.append(step.id, result.reason or "failed")

            if step.critical or result.failure_kind == "query_error":
                logger.error("Critical step %s failed, halting: %s", step.id, result.reason)
                report.halted_by = step.id
                self._state = PipelineState.HALTED
                break

        if self._state is PipelineState.RUNNING:
            self._state = (
                PipelineState.COMPLETED_WITH_FAILURES
                if report.failed
                else PipelineState.COMPLETED
            )

        report.state = self._state
        report.duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "%s %s: %d succeeded, %d skipped, %d failed",
            report.run_id,
            report.state.value,
            report.succeeded,
            report.skipped,
            report.failed,
        )
        return report

    def _run_step(self, step: Step) -> StepResult:
        if self._recovery.applies_to(step):
            return self._recovery.run(step, self._execute)
        return self._execute(step)

    def _execute(self, step: Step) -> StepResult:
        return self._registry.execute_step(
            step,
            settings=self._settings,
            runner=self._runner,
            probe=self._probe,
            dry_run=self._dry_run,
            pending_commands=frozenset(self._pending_commands),
        )


def write_run_entry(
    report: PipelineReport,
    audit_writer: AuditWriter,
    context: dict | None = None,
) -> None:
    """Write a run's outcome to the run ledger."""
    entry = report.to_run_entry()
    if context:
        entry = entry.model_copy(update={"context": context})
    audit_writer.write(entry)
