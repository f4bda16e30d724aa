"""
Adapter registry — central dispatch for every step.

The registry is the single point of adapter management. It maps a
step's kind to its adapter and runs the fixed per-step sequence:

    resolve adapter → validate → idempotence check → execute → time

The pipeline never talks to adapters directly, always through here.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from archsetup.adapters.base import Adapter, ExecutionContext
from archsetup.adapters.packages.probe import PackageStateProbe, QueryError
from archsetup.adapters.shell.runner import SubprocessRunner
from archsetup.core.models.result import StepResult
from archsetup.core.models.settings import ProvisionSettings
from archsetup.core.models.step import STEP_TYPES, Step

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Central registry and dispatcher for adapters.

    Features:
        - Register/unregister adapters by name
        - Mock mode: route every step to one mock adapter
        - Execute steps through the adapter their kind names
        - Report step kinds that have no adapter
    """

    def __init__(self, mock_mode: bool = False):
        self._adapters: dict[str, Adapter] = {}
        self._mock_mode = mock_mode
        self._mock_adapter: Adapter | None = None

    @property
    def mock_mode(self) -> bool:
        return self._mock_mode

    def set_mock_mode(self, enabled: bool, mock_adapter: Adapter | None = None) -> None:
        """Enable or disable mock mode.

        Args:
            enabled: Whether to use mock mode.
            mock_adapter: Optional custom mock adapter. If None, every
                step succeeds without being executed.
        """
        self._mock_mode = enabled
        self._mock_adapter = mock_adapter

    def register(self, adapter: Adapter) -> None:
        """Register an adapter under its name."""
        name = adapter.name
        if name in self._adapters:
            logger.warning("Overwriting existing adapter: %s", name)
        self._adapters[name] = adapter
        logger.debug("Registered adapter: %s", name)

    def unregister(self, name: str) -> None:
        """Remove an adapter from the registry."""
        self._adapters.pop(name, None)

    def get(self, name: str) -> Adapter | None:
        """Look up an adapter by name."""
        return self._adapters.get(name)

    def list_adapters(self) -> list[str]:
        """List all registered adapter names."""
        return list(self._adapters.keys())

    def adapter_for(self, step: Step) -> Adapter | None:
        """The adapter that handles a step's kind."""
        return self._adapters.get(type(step).adapter)

    def unhandled_kinds(self) -> list[str]:
        """Step kinds whose adapter is not registered."""
        missing = []
        for step_type in STEP_TYPES:
            if step_type.adapter not in self._adapters:
                missing.append(step_type.model_fields["kind"].default)
        return missing

    def adapter_status(self) -> dict[str, dict[str, Any]]:
        """Get availability status of all registered adapters."""
        status = {}
        for name, adapter in self._adapters.items():
            try:
                available = adapter.is_available()
            except Exception:
                available = False
            status[name] = {
                "name": name,
                "available": available,
                "type": adapter.__class__.__name__,
            }
        return status

    def execute_step(
        self,
        step: Step,
        settings: ProvisionSettings,
        runner: SubprocessRunner,
        probe: PackageStateProbe,
        dry_run: bool = False,
        pending_commands: frozenset[str] = frozenset(),
    ) -> StepResult:
        """Run one step through its adapter.

        This is the main dispatch method. It:
        1. Resolves the adapter (or mock)
        2. Builds the execution context
        3. Validates the step
        4. Skips it when the idempotence predicate holds
        5. Executes (or dry-runs)
        6. Returns a StepResult (never raises)
        """
        start_time = time.monotonic()
        result = self._dispatch(step, settings, runner, probe, dry_run, pending_commands)
        elapsed_ms = int((time.monotonic() - start_time) * 1000)
        return result.model_copy(update={"duration_ms": elapsed_ms})

    def _dispatch(
        self,
        step: Step,
        settings: ProvisionSettings,
        runner: SubprocessRunner,
        probe: PackageStateProbe,
        dry_run: bool,
        pending_commands: frozenset[str],
    ) -> StepResult:
        context = ExecutionContext(
            step=step,
            settings=settings,
            runner=runner,
            probe=probe,
            dry_run=dry_run,
            pending_commands=pending_commands,
        )

        # Resolve adapter
        adapter: Adapter | None
        if self._mock_mode and self._mock_adapter:
            adapter = self._mock_adapter
        elif self._mock_mode:
            # Default mock behavior: return success
            return StepResult.success(
                step_id=step.id,
                kind=step.kind,
                output=f"[mock] {step.kind}:{step.id} executed",
                metadata={"mock": True, "dry_run": dry_run},
            )
        else:
            adapter = self.adapter_for(step)

        if adapter is None:
            return StepResult.failure(
                step_id=step.id,
                kind=step.kind,
                reason=f"No adapter registered for step kind '{step.kind}'",
                failure_kind="invalid",
            )

        # Validate
        try:
            is_valid, error_msg = adapter.validate(context)
        except Exception as e:
            is_valid, error_msg = False, f"Validation error: {e}"
        if not is_valid:
            return StepResult.failure(
                step_id=step.id,
                kind=step.kind,
                reason=f"Validation failed: {error_msg}",
                failure_kind="invalid",
            )

        # Idempotence
        try:
            if adapter.is_satisfied(context):
                return StepResult.skip(step.id, kind=step.kind)
        except QueryError as e:
            return StepResult.failure(
                step_id=step.id,
                kind=step.kind,
                reason=str(e),
                failure_kind="query_error",
            )

        # Dry run: validated and unsatisfied, not executed
        if dry_run:
            return StepResult.skip(
                step.id,
                kind=step.kind,
                reason=f"[dry-run] Would execute {step.kind}:{step.id}",
                metadata={"dry_run": True},
            )

        # Execute
        try:
            return adapter.execute(context)
        except QueryError as e:
            return StepResult.failure(
                step_id=step.id,
                kind=step.kind,
                reason=str(e),
                failure_kind="query_error",
            )
        except Exception as e:
            # Adapters are not supposed to raise
            logger.error("Adapter %s raised during %s: %s", adapter.name, step.id, e)
            return StepResult.failure(
                step_id=step.id,
                kind=step.kind,
                reason=f"Unexpected error: {e}",
                failure_kind="unexpected",
            )


def build_registry(settings: ProvisionSettings, mock_mode: bool = False) -> AdapterRegistry:
    """Registry with every built-in adapter registered."""
    from archsetup.adapters.packages.aur import AurAdapter
    from archsetup.adapters.packages.makepkg import MakepkgAdapter
    from archsetup.adapters.packages.pacman import PacmanAdapter
    from archsetup.adapters.packages.pip import PipAdapter
    from archsetup.adapters.shell.command import ShellCommandAdapter
    from archsetup.adapters.shell.download import DownloadAdapter
    from archsetup.adapters.shell.filesystem import FilesystemAdapter
    from archsetup.adapters.vcs.git import GitAdapter

    registry = AdapterRegistry(mock_mode=mock_mode)
    registry.register(PacmanAdapter())
    registry.register(AurAdapter(helper=settings.aur_helper))
    registry.register(PipAdapter(pip_command=settings.pip_command))
    registry.register(MakepkgAdapter())
    registry.register(ShellCommandAdapter())
    registry.register(FilesystemAdapter())
    registry.register(GitAdapter())
    registry.register(DownloadAdapter())
    return registry
