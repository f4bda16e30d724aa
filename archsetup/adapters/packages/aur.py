"""
AUR adapter — community packages through an AUR helper.

Same shape as a repo install, dispatched to the helper binary
(``yay -S --noconfirm NAME``). The helper escalates on its own and
refuses to run as root, so the command is NOT run privileged.

If the helper is not on PATH the step fails validation: a plan that
schedules AUR packages before building the helper fails loudly.
A dry run accepts a helper that an earlier step would have built.
"""

from __future__ import annotations

import logging
import shutil

from archsetup.adapters.base import Adapter, ExecutionContext
from archsetup.core.models.result import StepResult
from archsetup.core.models.step import InstallAurPackage

logger = logging.getLogger(__name__)


class AurAdapter(Adapter):
    """Install AUR packages with the configured helper."""

    def __init__(self, helper: str = "yay"):
        self._helper = helper

    @property
    def name(self) -> str:
        return "aur"

    @property
    def helper(self) -> str:
        return self._helper

    def is_available(self) -> bool:
        return shutil.which(self._helper) is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        if not isinstance(context.step, InstallAurPackage):
            return False, f"aur adapter cannot handle step kind '{context.step.kind}'"
        if not context.probe.has_command(self._helper):
            if context.dry_run and self._helper in context.pending_commands:
                return True, ""
            return False, f"AUR helper '{self._helper}' is not installed"
        return True, ""

    def is_satisfied(self, context: ExecutionContext) -> bool:
        step = context.step
        assert isinstance(step, InstallAurPackage)
        return context.probe.is_installed(step.name)

    def execute(self, context: ExecutionContext) -> StepResult:
        step = context.step
        assert isinstance(step, InstallAurPackage)
        logger.info("Installing %s from AUR...", step.name)
        result = context.runner.run(
            [self._helper, "-S", "--noconfirm", step.name],
            timeout=context.timeout,
        )
        return self.from_command(context, result)
