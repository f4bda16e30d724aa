"""
Recovery policy — one-shot keyring remediation for the system update.

The common reason ``pacman -Syu`` fails on a machine that has not been
updated in a while is an outdated archlinux-keyring: new packages are
signed by keys the old keyring doesn't trust. The fix is always the
same sequence, so it's automated, but bounded:

    attempt update
      └─ failed → refresh keyring, re-init trust store, populate keys,
                  refresh keys (hard timeout, allowed to fail)
                → retry update exactly once

Never more than one remediation cycle and one retry. The retry's
result is the step's result.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

from archsetup.core.models.result import StepResult
from archsetup.core.models.step import RunCommand, Step, SystemUpdate

logger = logging.getLogger(__name__)

StepExecutor = Callable[[Step], StepResult]


def keyring_remediation(key_refresh_timeout: int = 5) -> tuple[RunCommand, ...]:
    """The fixed remediation sequence."""
    return (
        RunCommand(
            id="keyring:update",
            argv=["pacman", "-Sy", "--noconfirm", "archlinux-keyring"],
            privileged=True,
        ),
        RunCommand(id="keyring:init", argv=["pacman-key", "--init"], privileged=True),
        RunCommand(
            id="keyring:populate",
            argv=["pacman-key", "--populate", "archlinux"],
            privileged=True,
        ),
        RunCommand(
            id="keyring:refresh-keys",
            argv=["pacman-key", "--refresh-keys"],
            privileged=True,
            timeout=key_refresh_timeout,
        ),
    )


class RecoveryPolicy:
    """Retry rule for the distinguished system-update step."""

    def __init__(self, remediation: Sequence[RunCommand] | None = None):
        self._remediation = tuple(remediation) if remediation is not None else keyring_remediation()

    @property
    def remediation(self) -> tuple[RunCommand, ...]:
        return self._remediation

    def applies_to(self, step: Step) -> bool:
        return isinstance(step, SystemUpdate)

    def run(self, step: Step, execute: StepExecutor) -> StepResult:
        """Run the step, remediating and retrying once on failure.

        Args:
            step: The system-update step.
            execute: Runs a single step and returns its result
                (the pipeline passes the registry dispatch).

        Returns:
            The first attempt's result if it didn't fail, otherwise the
            retry's result annotated with what the remediation did.
        """
        first = execute(step)
        if not first.failed:
            return first

        logger.warning(
            "%s failed (%s); refreshing keyring and retrying once",
            step.id,
            first.reason,
        )

        remediation_log: list[dict[str, str | None]] = []
        for fix in self._remediation:
            outcome = execute(fix)
            remediation_log.append(
                {"step": fix.id, "status": outcome.status, "reason": outcome.reason}
            )
            if outcome.failed:
                # Non-fatal: the retry decides whether recovery worked
                logger.warning("Remediation %s failed: %s", fix.id, outcome.reason)

        retry = execute(step)
        if retry.failed:
            logger.error("%s failed again after keyring refresh: %s", step.id, retry.reason)
        else:
            logger.info("%s succeeded after keyring refresh", step.id)

        return retry.model_copy(
            update={
                "metadata": {
                    **retry.metadata,
                    "recovery": {
                        "attempts": 2,
                        "first_reason": first.reason,
                        "remediation": remediation_log,
                        "recovered": not retry.failed,
                    },
                }
            }
        )
