"""
Pip adapter — language packages (the ``P`` rows of a program list).
"""

from __future__ import annotations

import logging
import shutil

from archsetup.adapters.base import Adapter, ExecutionContext
from archsetup.adapters.packages.probe import PipProbe
from archsetup.core.models.result import StepResult
from archsetup.core.models.step import InstallPipPackage

logger = logging.getLogger(__name__)


class PipAdapter(Adapter):
    """Install Python packages with ``pip install``.

    Runs unprivileged: system site-packages belong to pacman.
    """

    def __init__(self, pip_command: list[str] | None = None):
        self._pip = pip_command or ["pip"]

    @property
    def name(self) -> str:
        return "pip"

    def is_available(self) -> bool:
        return shutil.which(self._pip[0]) is not None

    def is_satisfied(self, context: ExecutionContext) -> bool:
        step = context.step
        assert isinstance(step, InstallPipPackage)
        return PipProbe(context.runner, self._pip).is_installed(step.name)

    def execute(self, context: ExecutionContext) -> StepResult:
        step = context.step
        assert isinstance(step, InstallPipPackage)
        logger.info("Installing %s with pip...", step.name)
        result = context.runner.run([*self._pip, "install", step.name], timeout=context.timeout)
        return self.from_command(context, result)
