"""
Configuration loader — reads archsetup.yml into ProvisionSettings.

This is the primary entry point for loading settings. It reads YAML,
validates against the Pydantic schema, and returns a frozen settings
object. The home directory is resolved here, once; nothing downstream
looks at ``$HOME`` again.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from archsetup.core.models.settings import ProvisionSettings

logger = logging.getLogger(__name__)

# Default config filename
CONFIG_FILE = "archsetup.yml"


class ConfigError(Exception):
    """Raised when configuration is invalid or unreadable."""


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for archsetup.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to archsetup.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def default_home() -> Path:
    """The invoking user's home directory, read once at startup."""
    return Path(os.path.expanduser("~")).resolve()


def load_settings(
    path: Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> ProvisionSettings:
    """Load and validate settings.

    Args:
        path: Explicit path to archsetup.yml. None = built-in defaults.
        overrides: Values that win over the file (CLI flags).

    Returns:
        Validated, frozen ProvisionSettings.

    Raises:
        ConfigError: If the file is missing or invalid.
    """
    data: dict[str, Any] = {}

    if path is not None:
        if not path.is_file():
            raise ConfigError(f"Config file not found: {path}")

        logger.debug("Loading settings from %s", path)
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Cannot read {path}: {e}") from e

        try:
            loaded = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"Expected a YAML mapping in {path}, got {type(loaded).__name__}")

        # The file may wrap everything under "archsetup" or be flat
        data = dict(loaded.get("archsetup", loaded))

    if overrides:
        data.update({k: v for k, v in overrides.items() if v is not None})

    home = data.get("home")
    data["home"] = Path(os.path.expanduser(str(home))) if home else default_home()

    try:
        settings = ProvisionSettings.model_validate(data)
    except Exception as e:
        raise ConfigError(f"Invalid configuration: {e}") from e

    logger.info("Settings loaded (home=%s, escalation=%s)", settings.home, settings.escalation.method)
    return settings
