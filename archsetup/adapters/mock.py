"""
Mock adapter — universal test double for adapter operations.

Used in mock mode to walk a plan without touching pacman, yay or the
filesystem. Configurable per step id: succeed, fail, or report the
step as already satisfied.
"""

from __future__ import annotations

from archsetup.adapters.base import Adapter, ExecutionContext
from archsetup.core.models.result import StepResult


class MockAdapter(Adapter):
    """Universal mock adapter for testing.

    By default, every step is unsatisfied and succeeds. Can be
    configured with custom results per step id.
    """

    def __init__(
        self,
        adapter_name: str = "mock",
        available: bool = True,
        default_output: str = "[mock] executed",
    ):
        self._name = adapter_name
        self._available = available
        self._default_output = default_output
        self._responses: dict[str, list[StepResult]] = {}
        self._satisfied: set[str] = set()
        self._call_log: list[ExecutionContext] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[ExecutionContext]:
        """All execution contexts this mock has executed."""
        return self._call_log

    @property
    def call_count(self) -> int:
        """Number of times execute has been called."""
        return len(self._call_log)

    @property
    def executed_ids(self) -> list[str]:
        return [ctx.step.id for ctx in self._call_log]

    def is_available(self) -> bool:
        return self._available

    def set_response(self, step_id: str, *results: StepResult) -> None:
        """Queue custom results for a step id; the last one repeats."""
        self._responses[step_id] = list(results)

    def set_failure(self, step_id: str, reason: str = "Mock failure") -> None:
        """Configure a specific step to fail."""
        self._responses[step_id] = [
            StepResult.failure(step_id=step_id, reason=reason)
        ]

    def set_satisfied(self, step_id: str) -> None:
        """Report a step as already satisfied."""
        self._satisfied.add(step_id)

    def is_satisfied(self, context: ExecutionContext) -> bool:
        return context.step.id in self._satisfied

    def execute(self, context: ExecutionContext) -> StepResult:
        self._call_log.append(context)
        step_id = context.step.id

        queued = self._responses.get(step_id)
        if queued:
            result = queued.pop(0) if len(queued) > 1 else queued[0]
            return result.model_copy(update={"kind": context.step.kind})

        return StepResult.success(
            step_id=step_id,
            kind=context.step.kind,
            output=self._default_output,
            metadata={"mock": True},
        )

    def reset(self) -> None:
        """Clear call log and custom responses."""
        self._call_log.clear()
        self._responses.clear()
        self._satisfied.clear()
