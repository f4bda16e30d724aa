"""
Plan — an ordered, immutable sequence of steps.

Order is meaningful and never changed: the AUR helper must be built
before any AUR package, the keyring before the packages it signs.
"""

from __future__ import annotations

from collections.abc import Iterable

from pydantic import BaseModel, ConfigDict, Field, model_validator

from archsetup.core.models.step import (
    BuildPackage,
    InstallAurPackage,
    InstallRepoPackage,
    Step,
)


class Plan(BaseModel):
    """An ordered list of steps, validated once, read-only afterwards."""

    model_config = ConfigDict(frozen=True)

    name: str = "plan"
    steps: tuple[Step, ...] = Field(default_factory=tuple)

    @model_validator(mode="after")
    def _unique_ids(self) -> Plan:
        seen: set[str] = set()
        dupes: list[str] = []
        for step in self.steps:
            if step.id in seen:
                dupes.append(step.id)
            seen.add(step.id)
        if dupes:
            raise ValueError(f"duplicate step ids: {', '.join(sorted(set(dupes)))}")
        return self

    def __len__(self) -> int:
        return len(self.steps)

    @property
    def step_ids(self) -> list[str]:
        return [s.id for s in self.steps]

    def get(self, step_id: str) -> Step | None:
        """Look up a step by id."""
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def with_critical(self, step_ids: Iterable[str]) -> Plan:
        """Return a copy with the given steps marked critical."""
        wanted = set(step_ids)
        if not wanted:
            return self
        steps = tuple(
            s.model_copy(update={"critical": True}) if s.id in wanted else s
            for s in self.steps
        )
        return Plan(name=self.name, steps=steps)


def provides_aur_helper(step: Step, helper: str) -> bool:
    """Whether running this step puts the AUR helper on PATH."""
    if isinstance(step, BuildPackage):
        if step.provides == helper:
            return True
        return step.package in (helper, f"{helper}-bin", f"{helper}-git")
    if isinstance(step, InstallRepoPackage):
        return step.name == helper
    return False


def first_aur_step_index(plan: Plan) -> int | None:
    for i, step in enumerate(plan.steps):
        if isinstance(step, InstallAurPackage):
            return i
    return None


def commands_provided(step: Step) -> set[str]:
    """Commands that are on PATH once this step has run."""
    if isinstance(step, BuildPackage):
        return {step.provides or step.package}
    if isinstance(step, InstallRepoPackage):
        return {step.name}
    return set()
