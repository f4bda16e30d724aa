"""
Plan check use case — validate a plan before running it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from archsetup.adapters.packages.probe import PackageStateProbe, PacmanProbe
from archsetup.adapters.registry import AdapterRegistry, build_registry
from archsetup.adapters.shell.runner import SubprocessRunner
from archsetup.core.config.loader import ConfigError
from archsetup.core.config.plan_loader import PlanError
from archsetup.core.models.plan import Plan, first_aur_step_index, provides_aur_helper
from archsetup.core.models.settings import ProvisionSettings
from archsetup.core.use_cases.provision import load_context


@dataclass
class PlanCheckResult:
    """Result of plan validation."""

    valid: bool = False
    plan: Plan | None = None
    config_path: Path | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "config_path": str(self.config_path) if self.config_path else None,
            "plan": self.plan.name if self.plan else None,
            "step_count": len(self.plan) if self.plan else 0,
            "critical_steps": [s.id for s in self.plan.steps if s.critical] if self.plan else [],
            "errors": self.errors,
            "warnings": self.warnings,
        }


def validate_plan(
    plan: Plan,
    settings: ProvisionSettings,
    registry: AdapterRegistry,
    probe: PackageStateProbe,
) -> tuple[list[str], list[str]]:
    """Semantic checks on a loaded plan.

    Returns:
        (errors, warnings)
    """
    errors: list[str] = []
    warnings: list[str] = []

    if not plan.steps:
        warnings.append("Plan has no steps. Nothing will be provisioned.")

    # Every kind in the plan needs an adapter
    unhandled = set(registry.unhandled_kinds())
    for kind in sorted({s.kind for s in plan.steps} & unhandled):
        errors.append(f"No adapter registered for step kind '{kind}'")

    # AUR packages need the helper first; the pipeline never reorders
    helper = settings.aur_helper
    first_aur = first_aur_step_index(plan)
    if first_aur is not None:
        earlier = plan.steps[:first_aur]
        provided_before = any(provides_aur_helper(s, helper) for s in earlier)
        if not provided_before and not probe.has_command(helper):
            first_id = plan.steps[first_aur].id
            provider = next(
                (s.id for s in plan.steps[first_aur:] if provides_aur_helper(s, helper)),
                None,
            )
            if provider:
                errors.append(
                    f"AUR step '{first_id}' runs before '{provider}' installs {helper}"
                )
            else:
                errors.append(
                    f"AUR step '{first_id}' needs {helper}, which is not installed "
                    "and no step in the plan installs it"
                )

    for step_id in settings.critical_steps:
        if plan.get(step_id) is None:
            warnings.append(f"critical_steps names unknown step '{step_id}'")

    # Tools the plan needs that are missing here. The AUR helper is
    # covered by the ordering check above.
    used = {type(s).adapter for s in plan.steps} - {"aur"}
    for name, status in registry.adapter_status().items():
        if name in used and not status["available"]:
            warnings.append(f"Adapter '{name}' is not available on this machine")

    return errors, warnings


def check_plan(
    config_path: Path | None = None,
    plan_source: str | None = None,
    registry: AdapterRegistry | None = None,
    probe: PackageStateProbe | None = None,
) -> PlanCheckResult:
    """Load and validate the configured plan.

    Args:
        config_path: Optional explicit path to archsetup.yml.
        plan_source: Optional plan override (path, URL or "default").
        registry: Optional adapter registry (default: built-ins).
        probe: Optional probe used to see whether the AUR helper is
            already installed.

    Returns:
        PlanCheckResult with validation status and any issues.
    """
    result = PlanCheckResult()

    try:
        settings, plan, used_config = load_context(config_path, plan_source)
    except (ConfigError, PlanError) as e:
        result.errors.append(str(e))
        return result

    result.plan = plan
    result.config_path = used_config

    if registry is None:
        registry = build_registry(settings)
    if probe is None:
        probe = PacmanProbe(SubprocessRunner(escalation=settings.escalation))

    errors, warnings = validate_plan(plan, settings, registry, probe)
    result.errors.extend(errors)
    result.warnings.extend(warnings)

    result.valid = len(result.errors) == 0
    return result
