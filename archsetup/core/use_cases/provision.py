"""
Provision use case — run a plan against this machine.

This is the top-level orchestrator: it loads settings, loads the plan,
wires the runner, probe and adapter registry, runs the pipeline and
persists the outcome. The full vertical slice from ``archsetup run``
to an audited run.
"""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import SecretStr

from archsetup.adapters.packages.probe import PackageStateProbe, PacmanProbe
from archsetup.adapters.registry import AdapterRegistry, build_registry
from archsetup.adapters.shell.runner import SubprocessRunner
from archsetup.core.config.loader import ConfigError, find_config_file, load_settings
from archsetup.core.config.plan_loader import PlanError, load_plan
from archsetup.core.engine.pipeline import (
    EXIT_CONFIG_ERROR,
    PipelineReport,
    ProvisioningPipeline,
    write_run_entry,
)
from archsetup.core.models.plan import Plan
from archsetup.core.models.settings import PrivilegeEscalation, ProvisionSettings
from archsetup.core.persistence.audit import AuditWriter
from archsetup.core.persistence.failure_log import FailureLog

logger = logging.getLogger(__name__)


@dataclass
class ProvisionResult:
    """Result of a provisioning run."""

    report: PipelineReport | None = None
    plan: Plan | None = None
    settings: ProvisionSettings | None = None
    config_path: Path | None = None
    failure_log_path: Path | None = None
    error: str | None = None

    @property
    def exit_code(self) -> int:
        if self.error or self.report is None:
            return EXIT_CONFIG_ERROR
        return self.report.exit_code

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.error:
            result["error"] = self.error
            result["exit_code"] = self.exit_code
            return result

        result["plan"] = self.plan.name if self.plan else ""
        result["steps_planned"] = len(self.plan) if self.plan else 0
        result["config_path"] = str(self.config_path) if self.config_path else None
        result["failure_log"] = str(self.failure_log_path) if self.failure_log_path else None

        if self.report:
            result["report"] = self.report.to_dict()

        return result


def load_context(
    config_path: Path | None = None,
    plan_source: str | None = None,
) -> tuple[ProvisionSettings, Plan, Path | None]:
    """Load settings and the plan they name.

    Args:
        config_path: Explicit archsetup.yml. None = search upwards from
            the working directory, built-in defaults if there is none.
        plan_source: Overrides the configured plan (path, URL, "default").

    Returns:
        (settings, plan with critical_steps applied, config path used).

    Raises:
        ConfigError: Settings are invalid.
        PlanError: The plan can't be loaded.
    """
    if config_path is None:
        config_path = find_config_file()

    settings = load_settings(config_path, overrides={"plan": plan_source})
    base_dir = config_path.parent if config_path else Path.cwd()
    plan = load_plan(settings.plan, base_dir=base_dir)
    plan = plan.with_critical(settings.critical_steps)
    return settings, plan, config_path


@contextmanager
def cancel_on_signals(event: threading.Event) -> Iterator[None]:
    """Set ``event`` on SIGINT/SIGTERM instead of raising.

    The running step is allowed to finish; the pipeline stops before
    the next one. Handlers can only be installed from the main thread;
    elsewhere this is a no-op.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum: int, _frame: Any) -> None:
        logger.warning(
            "Received %s, stopping after the current step",
            signal.Signals(signum).name,
        )
        event.set()

    previous = {
        sig: signal.signal(sig, _handler)
        for sig in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def run_provision(
    config_path: Path | None = None,
    plan_source: str | None = None,
    dry_run: bool = False,
    mock_mode: bool = False,
    sudo_password: str | None = None,
    registry: AdapterRegistry | None = None,
    runner: SubprocessRunner | None = None,
    probe: PackageStateProbe | None = None,
    cancel_event: threading.Event | None = None,
    sleep: Callable[[float], None] | None = None,
) -> ProvisionResult:
    """Provision the machine from a plan.

    Args:
        config_path: Optional explicit path to archsetup.yml.
        plan_source: Optional plan override (path, URL or "default").
        dry_run: Check every step, execute none.
        mock_mode: Route every step to the mock adapter.
        sudo_password: Password for ``sudo -S``. Never logged.
        registry: Optional pre-configured adapter registry.
        runner: Optional subprocess runner.
        probe: Optional package state probe.
        cancel_event: Optional event; setting it stops the run before
            the next step. SIGINT/SIGTERM set it too.
        sleep: Optional delay function between steps.

    Returns:
        ProvisionResult with the pipeline report.
    """
    result = ProvisionResult()

    # ── Load settings & plan ─────────────────────────────────────
    try:
        settings, plan, used_config = load_context(config_path, plan_source)
    except (ConfigError, PlanError) as e:
        result.error = str(e)
        return result

    if sudo_password:
        settings = settings.model_copy(
            update={"escalation": PrivilegeEscalation(method="sudo", password=SecretStr(sudo_password))}
        )

    result.settings = settings
    result.plan = plan
    result.config_path = used_config

    # ── Wire collaborators ───────────────────────────────────────
    if runner is None:
        runner = SubprocessRunner(
            escalation=settings.escalation,
            default_timeout=settings.default_timeout,
        )
    if probe is None:
        probe = PacmanProbe(runner)
    if registry is None:
        registry = build_registry(settings, mock_mode=mock_mode)

    # Only real runs touch the on-disk failure log
    if dry_run or mock_mode:
        failure_log = FailureLog()
    else:
        failure_log = FailureLog(settings.resolved_failure_log)
        result.failure_log_path = settings.resolved_failure_log

    event = cancel_event or threading.Event()
    pipeline_kwargs: dict[str, Any] = {}
    if sleep is not None:
        pipeline_kwargs["sleep"] = sleep

    pipeline = ProvisioningPipeline(
        plan=plan,
        registry=registry,
        settings=settings,
        runner=runner,
        probe=probe,
        failure_log=failure_log,
        cancel_event=event,
        dry_run=dry_run,
        **pipeline_kwargs,
    )

    # ── Execute ──────────────────────────────────────────────────
    with cancel_on_signals(event):
        report = pipeline.run()
    result.report = report

    # ── Write run ledger ─────────────────────────────────────────
    write_run_entry(report, AuditWriter(settings.run_history_path), context={"mock": mock_mode})

    return result

