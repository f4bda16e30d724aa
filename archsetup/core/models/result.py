"""
StepResult — the execution contract.

Steps are requests; results are outcomes. Adapters return a StepResult
for every step they are handed and never raise: failures are captured
here with a reason and a failure kind.

A result is frozen once created. The registry attaches timing by
producing a copy, never by mutating.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

StepStatus = Literal["skipped", "succeeded", "failed"]

FailureKind = Literal[
    "nonzero_exit",     # subprocess exited non-zero
    "timed_out",        # subprocess killed after its timeout
    "query_error",      # could not determine install state
    "network",          # clone / pull / download could not reach the remote
    "invalid",          # step cannot run as declared
    "unexpected",       # adapter raised
]


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class StepResult(BaseModel):
    """Outcome of one step in one pipeline run."""

    model_config = ConfigDict(frozen=True)

    step_id: str
    kind: str = ""
    status: StepStatus = "succeeded"

    reason: str | None = None
    failure_kind: FailureKind | None = None

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    output: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Whether the step did its work."""
        return self.status == "succeeded"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @property
    def skipped(self) -> bool:
        return self.status == "skipped"

    @classmethod
    def success(cls, step_id: str, kind: str = "", output: str = "", **kwargs: Any) -> StepResult:
        """Create a success result."""
        return cls(step_id=step_id, kind=kind, status="succeeded", output=output, **kwargs)

    @classmethod
    def failure(
        cls,
        step_id: str,
        reason: str,
        failure_kind: FailureKind = "nonzero_exit",
        kind: str = "",
        **kwargs: Any,
    ) -> StepResult:
        """Create a failure result."""
        return cls(
            step_id=step_id,
            kind=kind,
            status="failed",
            reason=reason,
            failure_kind=failure_kind,
            **kwargs,
        )

    @classmethod
    def skip(cls, step_id: str, reason: str = "already satisfied", kind: str = "", **kwargs: Any) -> StepResult:
        """Create a skip result."""
        return cls(step_id=step_id, kind=kind, status="skipped", reason=reason, **kwargs)
