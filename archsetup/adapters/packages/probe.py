"""
Package state probe — read-only questions about the package database.

The probe is authoritative for idempotence decisions: a step whose
package is installed is skipped. It never mutates anything.

"Not installed" and "could not tell" are different answers. The second
raises QueryError, and the pipeline treats it as a critical failure,
because skipping or re-running a step on a guess is unsafe.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from archsetup.adapters.shell.runner import SubprocessRunner

logger = logging.getLogger(__name__)

# A package query should be near-instant; anything longer is a stuck db lock
QUERY_TIMEOUT = 30


class QueryError(Exception):
    """Raised when install state cannot be determined."""


class PackageStateProbe(ABC):
    """Read-only view of what is installed."""

    @abstractmethod
    def is_installed(self, name: str) -> bool:
        """Whether a package is installed. Raises QueryError if unknown."""

    @abstractmethod
    def has_command(self, name: str) -> bool:
        """Whether an executable is on PATH."""

    def orphans(self) -> list[str]:
        """Packages installed as dependencies that nothing requires."""
        return []


class PacmanProbe(PackageStateProbe):
    """Probe backed by ``pacman -Q``.

    Exit codes: 0 installed, 1 not found. Anything else (or a timeout,
    or pacman missing altogether) means the database could not be read.
    """

    def __init__(self, runner: SubprocessRunner):
        self._runner = runner

    def is_installed(self, name: str) -> bool:
        result = self._runner.run(["pacman", "-Q", name], timeout=QUERY_TIMEOUT)
        if result.ok:
            return True
        if not result.timed_out and result.exit_code == 1:
            return False
        raise QueryError(f"Cannot query package '{name}': {result.reason}")

    def has_command(self, name: str) -> bool:
        return self._runner.which(name) is not None

    def orphans(self) -> list[str]:
        result = self._runner.run(["pacman", "-Qtdq"], timeout=QUERY_TIMEOUT)
        if result.ok:
            return [line.strip() for line in result.stdout.splitlines() if line.strip()]
        # -Qtdq exits 1 with no output when there is nothing to list
        if not result.timed_out and result.exit_code == 1 and not result.stdout.strip():
            return []
        raise QueryError(f"Cannot list orphaned packages: {result.reason}")


class PipProbe:
    """Install state for language packages (``pip show``)."""

    def __init__(self, runner: SubprocessRunner, pip_command: list[str] | None = None):
        self._runner = runner
        self._pip = pip_command or ["pip"]

    def is_installed(self, name: str) -> bool:
        result = self._runner.run([*self._pip, "show", name], timeout=QUERY_TIMEOUT)
        if result.ok:
            return True
        if not result.timed_out and result.exit_code == 1:
            return False
        raise QueryError(f"Cannot query pip package '{name}': {result.reason}")
