"""
Adapter base — the protocol contract between the pipeline and tools.

The pipeline only talks to pacman, yay, git and the filesystem through
adapters, never directly.

Every adapter answers two questions for a step:
    is_satisfied — is the machine already in the declared state?
    execute      — make it so, and return a StepResult
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from archsetup.adapters.packages.probe import PackageStateProbe
from archsetup.adapters.shell.runner import CommandResult, SubprocessRunner
from archsetup.core.models.result import FailureKind, StepResult
from archsetup.core.models.settings import ProvisionSettings
from archsetup.core.models.step import Step


class ExecutionContext(BaseModel):
    """Everything an adapter needs to handle one step.

    The adapter's view of the world: the step, the settings, and the
    two capabilities that touch the system (runner and probe).
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    step: Step
    settings: ProvisionSettings
    runner: SubprocessRunner
    probe: PackageStateProbe
    dry_run: bool = False
    # Commands that earlier steps of this dry run would have installed
    pending_commands: frozenset[str] = frozenset()

    def resolve(self, raw: str) -> Path:
        """Resolve a step path against the configured home."""
        return self.settings.expand_path(raw)

    @property
    def timeout(self) -> int:
        if self.step.timeout is not None:
            return self.step.timeout
        return self.settings.default_timeout


class Adapter(ABC):
    """Abstract base class for all adapters.

    Adapters perform external side effects and return results.
    They NEVER raise from execute(): failures are captured in the
    StepResult. is_satisfied() may raise QueryError.

    To support a new step kind:
        1. Add the model to core/models/step.py with an ``adapter`` name
        2. Subclass Adapter (or extend an existing one)
        3. Register it in build_registry()
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The adapter identifier (e.g., 'pacman', 'aur', 'git')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the underlying tool exists. Fast, never raises."""

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        """Check the step can be executed at all.

        Returns:
            (is_valid, error_message). error_message is empty if valid.
        """
        return True, ""

    def is_satisfied(self, context: ExecutionContext) -> bool:
        """Idempotence predicate. Default: never satisfied, always run."""
        return False

    @abstractmethod
    def execute(self, context: ExecutionContext) -> StepResult:
        """Bring the system to the step's declared state."""

    # ── Helpers ─────────────────────────────────────────────────

    def from_command(
        self,
        context: ExecutionContext,
        result: CommandResult,
        failure_kind: FailureKind | None = None,
    ) -> StepResult:
        """Translate a CommandResult into a StepResult."""
        step = context.step
        meta = {"command": result.command, "exit_code": result.exit_code}
        if result.ok:
            return StepResult.success(
                step_id=step.id,
                kind=step.kind,
                output=result.stdout.strip(),
                metadata=meta,
            )
        if result.timed_out:
            kind: FailureKind = "timed_out"
        else:
            kind = failure_kind or "nonzero_exit"
        return StepResult.failure(
            step_id=step.id,
            kind=step.kind,
            reason=result.reason,
            failure_kind=kind,
            output=result.stdout.strip(),
            metadata={**meta, "stderr": result.stderr.strip()},
        )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
