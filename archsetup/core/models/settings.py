"""
ProvisionSettings — the explicit configuration a run is built from.

Nothing downstream reads ``$HOME``, the working directory or exported
shell variables. The home directory, the privilege-escalation
capability and the log locations all arrive here, once, at startup.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator


class PrivilegeEscalation(BaseModel):
    """How privileged commands get root.

    ``sudo``: prefix with ``sudo`` (``sudo -S -k`` when a password is
    supplied, password piped on stdin). ``none``: run as-is; only works
    when the process is already root.
    """

    model_config = ConfigDict(frozen=True)

    method: Literal["sudo", "none"] = "sudo"
    password: SecretStr | None = None


class ProvisionSettings(BaseModel):
    """Everything a pipeline needs to know about its environment."""

    model_config = ConfigDict(frozen=True)

    home: Path
    escalation: PrivilegeEscalation = Field(default_factory=PrivilegeEscalation)

    aur_helper: str = "yay"
    pip_command: list[str] = Field(default_factory=lambda: ["pip"])

    step_delay: float = 0.0
    default_timeout: int = 3600
    key_refresh_timeout: int = 5

    state_dir: Path | None = None
    failure_log: Path | None = None

    critical_steps: list[str] = Field(default_factory=list)
    plan: str = "default"

    @field_validator("escalation", mode="before")
    @classmethod
    def _escalation_shorthand(cls, value: object) -> object:
        # Allow `escalation: sudo` in YAML
        if isinstance(value, str):
            return {"method": value}
        return value

    @field_validator("step_delay", "default_timeout", "key_refresh_timeout")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    def expand_path(self, raw: str | Path) -> Path:
        """Resolve ``~/x`` and relative paths against the configured home."""
        text = str(raw)
        if text == "~":
            return self.home
        if text.startswith("~/"):
            return self.home / text[2:]
        path = Path(text)
        if path.is_absolute():
            return path
        return self.home / path

    @property
    def resolved_state_dir(self) -> Path:
        if self.state_dir is None:
            return self.home / ".local" / "state" / "archsetup"
        return self.expand_path(self.state_dir)

    @property
    def resolved_failure_log(self) -> Path:
        if self.failure_log is None:
            return self.resolved_state_dir / "failed_packages.log"
        return self.expand_path(self.failure_log)

    @property
    def run_history_path(self) -> Path:
        return self.resolved_state_dir / "runs.ndjson"
