"""
Makepkg adapter — build a package from a PKGBUILD git repository.

This is how the AUR helper is bootstrapped before any AUR step can run:

    git clone https://aur.archlinux.org/yay-bin.git ~/.local/src/yay-bin
    cd ~/.local/src/yay-bin && makepkg --noconfirm -si

A stale source directory is removed before cloning so a half-finished
earlier build never leaks into this one. makepkg escalates through
sudo itself and refuses to run as root, so it runs unprivileged.
"""

from __future__ import annotations

import logging
import shutil

from archsetup.adapters.base import Adapter, ExecutionContext
from archsetup.adapters.vcs.git import classify_git_failure
from archsetup.core.models.result import StepResult
from archsetup.core.models.step import BuildPackage

logger = logging.getLogger(__name__)


class MakepkgAdapter(Adapter):
    """Clone + ``makepkg -si`` for PKGBUILD repositories."""

    @property
    def name(self) -> str:
        return "makepkg"

    def is_available(self) -> bool:
        return shutil.which("makepkg") is not None and shutil.which("git") is not None

    def is_satisfied(self, context: ExecutionContext) -> bool:
        step = context.step
        assert isinstance(step, BuildPackage)
        if step.provides and context.probe.has_command(step.provides):
            return True
        return context.probe.is_installed(step.package)

    def execute(self, context: ExecutionContext) -> StepResult:
        step = context.step
        assert isinstance(step, BuildPackage)
        src = context.resolve(step.source_dir)

        if src.exists():
            logger.info("Removing stale build directory %s", src)
            shutil.rmtree(src)
        src.parent.mkdir(parents=True, exist_ok=True)

        logger.info("Building %s from %s...", step.package, step.url)
        clone = context.runner.run(["git", "clone", step.url, str(src)], timeout=context.timeout)
        if not clone.ok:
            return self.from_command(context, clone, failure_kind=classify_git_failure(clone))

        build = context.runner.run(
            ["makepkg", "--noconfirm", "-si"],
            cwd=str(src),
            timeout=context.timeout,
        )
        result = self.from_command(context, build)

        if not step.keep_sources:
            shutil.rmtree(src, ignore_errors=True)
        return result
