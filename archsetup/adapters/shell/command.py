"""
Shell command adapter — run a caller-supplied command.

A RunCommand step is idempotent only as far as its predicate says:

    unless:  [grep, -q, "workgroup = WORKGROUP", /etc/samba/smb.conf]
             → exit 0 means already done, skip
    only_if: [pacman, -Qtdq]
             → non-zero exit means nothing to do, skip

With neither predicate the command runs every time. Commands are argv
lists; a shell is involved only when the argv names one. Predicates
run in the step's working directory.
"""

from __future__ import annotations

import logging
import shutil

from archsetup.adapters.base import Adapter, ExecutionContext
from archsetup.adapters.packages.probe import QUERY_TIMEOUT, QueryError
from archsetup.core.models.result import StepResult
from archsetup.core.models.step import RunCommand

logger = logging.getLogger(__name__)


class ShellCommandAdapter(Adapter):
    """Execute RunCommand steps.

    Step fields:
        argv (list[str]): The command to execute.
        unless / only_if (list[str]): Optional predicate commands.
        privileged (bool): Run with the injected escalation.
        cwd (str): Working directory, resolved against home.
    """

    @property
    def name(self) -> str:
        return "shell"

    def is_available(self) -> bool:
        return shutil.which("sh") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        step = context.step
        if not isinstance(step, RunCommand):
            return False, f"shell adapter cannot handle step kind '{step.kind}'"
        if step.cwd and not context.resolve(step.cwd).is_dir():
            return False, f"Working directory does not exist: {context.resolve(step.cwd)}"
        return True, ""

    def is_satisfied(self, context: ExecutionContext) -> bool:
        step = context.step
        assert isinstance(step, RunCommand)
        if step.unless and self._predicate(context, step.unless):
            return True
        if step.only_if and not self._predicate(context, step.only_if):
            return True
        return False

    def execute(self, context: ExecutionContext) -> StepResult:
        step = context.step
        assert isinstance(step, RunCommand)
        cwd = str(context.resolve(step.cwd)) if step.cwd else None
        logger.info("Running %s", " ".join(step.argv))
        result = context.runner.run(
            step.argv,
            privileged=step.privileged,
            timeout=context.timeout,
            cwd=cwd,
        )
        return self.from_command(context, result)

    # ── Helpers ─────────────────────────────────────────────────

    def _predicate(self, ctx: ExecutionContext, argv: list[str]) -> bool:
        """Run a predicate command in the step's cwd; exit 0 → True."""
        step = ctx.step
        assert isinstance(step, RunCommand)
        cwd = str(ctx.resolve(step.cwd)) if step.cwd else None
        result = ctx.runner.run(argv, timeout=QUERY_TIMEOUT, cwd=cwd)
        if result.timed_out:
            raise QueryError(f"Predicate timed out: {' '.join(argv)}")
        return result.ok
