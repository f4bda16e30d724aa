"""
Git adapter — clone a repository or update it in place.

Uses the git CLI through the SubprocessRunner. An existing checkout is
pulled (fast-forward only), never re-cloned. Clone or pull failures
fail the step; the pipeline carries on.
"""

from __future__ import annotations

import logging
import shutil

from archsetup.adapters.base import Adapter, ExecutionContext
from archsetup.adapters.shell.runner import CommandResult
from archsetup.core.models.result import FailureKind, StepResult
from archsetup.core.models.step import CloneRepo

logger = logging.getLogger(__name__)

# stderr fragments git prints when the remote is unreachable
_NETWORK_MARKERS = (
    "could not resolve host",
    "unable to access",
    "connection timed out",
    "connection refused",
    "network is unreachable",
    "could not read from remote repository",
    "failed to connect",
)


def classify_git_failure(result: CommandResult) -> FailureKind:
    """Network problems vs. everything else."""
    if result.timed_out:
        return "timed_out"
    stderr = result.stderr.lower()
    if any(marker in stderr for marker in _NETWORK_MARKERS):
        return "network"
    return "nonzero_exit"


class GitAdapter(Adapter):
    """Clone-or-pull for dotfile and source repositories."""

    @property
    def name(self) -> str:
        return "git"

    def is_available(self) -> bool:
        return shutil.which("git") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        step = context.step
        if not isinstance(step, CloneRepo):
            return False, f"git adapter cannot handle step kind '{step.kind}'"
        dest = context.resolve(step.dest)
        if dest.exists() and not (dest / ".git").exists():
            if not dest.is_dir() or any(dest.iterdir()):
                return False, f"Destination exists and is not a git checkout: {dest}"
        return True, ""

    def execute(self, context: ExecutionContext) -> StepResult:
        step = context.step
        assert isinstance(step, CloneRepo)
        dest = context.resolve(step.dest)

        if (dest / ".git").exists():
            logger.info("%s already cloned, pulling latest changes...", dest)
            result = context.runner.run(
                ["git", "-C", str(dest), "pull", "--ff-only"],
                timeout=context.timeout,
            )
            operation = "pull"
        else:
            logger.info("Cloning %s into %s...", step.url, dest)
            dest.parent.mkdir(parents=True, exist_ok=True)
            cmd = ["git", "clone"]
            if step.branch:
                cmd += ["--branch", step.branch]
            result = context.runner.run([*cmd, step.url, str(dest)], timeout=context.timeout)
            operation = "clone"

        receipt = self.from_command(context, result, failure_kind=classify_git_failure(result))
        return receipt.model_copy(update={"metadata": {**receipt.metadata, "operation": operation}})
