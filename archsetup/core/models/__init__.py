"""
Domain models — Pydantic types for provisioning.

All models are re-exported here for convenient access:

    from archsetup.core.models import Plan, StepResult, ProvisionSettings
"""

from archsetup.core.models.plan import Plan
from archsetup.core.models.result import FailureKind, StepResult, StepStatus
from archsetup.core.models.settings import PrivilegeEscalation, ProvisionSettings
from archsetup.core.models.step import (
    STEP_TYPES,
    BuildPackage,
    CloneRepo,
    DownloadFile,
    InstallAurPackage,
    InstallPipPackage,
    InstallRepoPackage,
    RemoveOrphans,
    RunCommand,
    Step,
    SystemUpdate,
    WriteFile,
)

__all__ = [
    # step.py
    "BuildPackage",
    "CloneRepo",
    "DownloadFile",
    # result.py
    "FailureKind",
    "InstallAurPackage",
    "InstallPipPackage",
    "InstallRepoPackage",
    # plan.py
    "Plan",
    # settings.py
    "PrivilegeEscalation",
    "ProvisionSettings",
    "RemoveOrphans",
    "RunCommand",
    "STEP_TYPES",
    "Step",
    "StepResult",
    "StepStatus",
    "SystemUpdate",
    "WriteFile",
]
