"""
Pacman adapter — official repository operations.

Handles three step kinds:
    update  — ``pacman -Syu --noconfirm [--needed pkgs...]``
    repo    — ``pacman -S --noconfirm --needed NAME``
    orphans — ``pacman -Rns --noconfirm $(pacman -Qtdq)``

All writes run privileged. Install state comes from the probe.
"""

from __future__ import annotations

import logging
import shutil

from archsetup.adapters.base import Adapter, ExecutionContext
from archsetup.core.models.result import StepResult
from archsetup.core.models.step import InstallRepoPackage, RemoveOrphans, SystemUpdate

logger = logging.getLogger(__name__)


class PacmanAdapter(Adapter):
    """System updates, repo installs and orphan removal."""

    @property
    def name(self) -> str:
        return "pacman"

    def is_available(self) -> bool:
        return shutil.which("pacman") is not None

    def is_satisfied(self, context: ExecutionContext) -> bool:
        step = context.step
        if isinstance(step, InstallRepoPackage):
            return context.probe.is_installed(step.name)
        if isinstance(step, RemoveOrphans):
            return not context.probe.orphans()
        # A system update always runs; pacman itself no-ops when current
        return False

    def execute(self, context: ExecutionContext) -> StepResult:
        step = context.step
        if isinstance(step, SystemUpdate):
            return self._update(context, step)
        elif isinstance(step, InstallRepoPackage):
            return self._install(context, step)
        elif isinstance(step, RemoveOrphans):
            return self._remove_orphans(context)
        return StepResult.failure(
            step_id=step.id,
            kind=step.kind,
            reason=f"pacman adapter cannot handle step kind '{step.kind}'",
            failure_kind="invalid",
        )

    # ── Operations ──────────────────────────────────────────────

    def _update(self, ctx: ExecutionContext, step: SystemUpdate) -> StepResult:
        cmd = ["pacman", "-Syu", "--noconfirm"]
        if step.packages:
            cmd += ["--needed", *step.packages]
        logger.info("Updating system...")
        result = ctx.runner.run(cmd, privileged=True, timeout=ctx.timeout)
        return self.from_command(ctx, result)

    def _install(self, ctx: ExecutionContext, step: InstallRepoPackage) -> StepResult:
        logger.info("Installing %s...", step.name)
        result = ctx.runner.run(
            ["pacman", "-S", "--noconfirm", "--needed", step.name],
            privileged=True,
            timeout=ctx.timeout,
        )
        return self.from_command(ctx, result)

    def _remove_orphans(self, ctx: ExecutionContext) -> StepResult:
        orphans = ctx.probe.orphans()
        if not orphans:
            return StepResult.skip(ctx.step.id, kind=ctx.step.kind, reason="no orphaned packages")
        logger.info("Removing %d orphaned packages: %s", len(orphans), " ".join(orphans))
        result = ctx.runner.run(
            ["pacman", "-Rns", "--noconfirm", *orphans],
            privileged=True,
            timeout=ctx.timeout,
        )
        return self.from_command(ctx, result)
