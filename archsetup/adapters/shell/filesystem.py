"""
Filesystem adapter — write static configuration files.

A WriteFile step is idempotent by content:
    replace — skip when the file already holds exactly the content
    append  — skip when the content already appears in the file

Files owned by the user are written directly. Privileged files
(``/etc/samba/smb.conf``) go through ``tee`` / ``tee -a`` with the
injected escalation, the content on stdin.
"""

from __future__ import annotations

import logging
from pathlib import Path

from archsetup.adapters.base import Adapter, ExecutionContext
from archsetup.adapters.packages.probe import QueryError
from archsetup.core.models.result import StepResult
from archsetup.core.models.step import WriteFile

logger = logging.getLogger(__name__)


def _read_existing(path: Path) -> str | None:
    """Current file content, or None when the file doesn't exist."""
    if not path.exists():
        return None
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise QueryError(f"Cannot read {path}: {e}") from e


class FilesystemAdapter(Adapter):
    """Replace or append file content with receipts."""

    @property
    def name(self) -> str:
        return "filesystem"

    def is_available(self) -> bool:
        return True  # filesystem is always available

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        step = context.step
        if not isinstance(step, WriteFile):
            return False, f"filesystem adapter cannot handle step kind '{step.kind}'"
        target = context.resolve(step.path)
        if target.is_dir():
            return False, f"Target is a directory: {target}"
        return True, ""

    def is_satisfied(self, context: ExecutionContext) -> bool:
        step = context.step
        assert isinstance(step, WriteFile)
        existing = _read_existing(context.resolve(step.path))
        if existing is None:
            return False
        if step.mode == "replace":
            return existing == step.content
        return step.content in existing

    def execute(self, context: ExecutionContext) -> StepResult:
        step = context.step
        assert isinstance(step, WriteFile)
        target = context.resolve(step.path)

        if step.privileged:
            return self._write_privileged(context, step, target)

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            if step.mode == "replace":
                target.write_text(step.content, encoding="utf-8")
            else:
                with target.open("a", encoding="utf-8") as f:
                    f.write(step.content)
        except OSError as e:
            return StepResult.failure(
                step_id=step.id,
                kind=step.kind,
                reason=f"Filesystem error: {e}",
                failure_kind="unexpected",
                metadata={"path": str(target)},
            )

        verb = "Written" if step.mode == "replace" else "Appended"
        logger.info("%s %s", verb, target)
        return StepResult.success(
            step_id=step.id,
            kind=step.kind,
            output=f"{verb} {len(step.content)} bytes to {target}",
            metadata={"path": str(target), "size": len(step.content), "mode": step.mode},
        )

    # ── Helpers ─────────────────────────────────────────────────

    def _write_privileged(self, ctx: ExecutionContext, step: WriteFile, target: Path) -> StepResult:
        mkdir = ctx.runner.run(["mkdir", "-p", str(target.parent)], privileged=True, timeout=ctx.timeout)
        if not mkdir.ok:
            return self.from_command(ctx, mkdir)

        tee = ["tee", str(target)] if step.mode == "replace" else ["tee", "-a", str(target)]
        result = ctx.runner.run(tee, privileged=True, input_text=step.content, timeout=ctx.timeout)
        receipt = self.from_command(ctx, result)
        if receipt.ok:
            logger.info("Wrote %s (privileged, %s)", target, step.mode)
            # tee echoes the content back; don't keep it in the result
            return receipt.model_copy(
                update={
                    "output": f"Wrote {len(step.content)} bytes to {target}",
                    "metadata": {**receipt.metadata, "path": str(target), "mode": step.mode},
                }
            )
        return receipt
