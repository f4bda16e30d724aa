"""
Plan loader — builds a Plan from YAML, a program-list CSV, a URL, or
the built-in default.

CSV format (the LARBS ``progs.csv`` convention)::

    #TAG,NAME IN REPO (or git url),PURPOSE (should be a verb phrase...)
    ,xorg-server,"is the graphical server."
    A,google-chrome,"is the web browser."
    G,https://github.com/lukesmithxyz/dwm.git,"is the window manager."
    P,qdarkstyle,"is needed for a theme."

``A`` → AUR, ``G`` → build from git, ``P`` → pip, anything else → repo.
Lines starting with ``#`` are ignored.
"""

from __future__ import annotations

import csv
import logging
import urllib.error
import urllib.request
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from pydantic import TypeAdapter, ValidationError

from archsetup import __version__
from archsetup.core.models.plan import Plan
from archsetup.core.models.step import (
    BuildPackage,
    InstallAurPackage,
    InstallPipPackage,
    InstallRepoPackage,
    Step,
)

logger = logging.getLogger(__name__)

DEFAULT_PLAN = "default"
_DEFAULT_PLAN_RESOURCE = "default_plan.yml"

_STEP_ADAPTER: TypeAdapter[Step] = TypeAdapter(Step)


class PlanError(Exception):
    """Raised when a plan cannot be loaded or is invalid."""


# ── Parsers ─────────────────────────────────────────────────────


def parse_csv_plan(text: str, name: str = "progs") -> Plan:
    """Parse a ``kind,identifier,note`` program list."""
    rows = [line for line in text.splitlines() if line.strip() and not line.lstrip().startswith("#")]
    steps: list[Any] = []
    for line_num, row in enumerate(csv.reader(rows), start=1):
        if len(row) < 2 or not row[1].strip():
            raise PlanError(f"{name}: row {line_num} has no identifier: {row!r}")
        tag = row[0].strip().upper()
        identifier = row[1].strip()
        note = row[2].strip() if len(row) > 2 else ""

        if tag == "A":
            steps.append(InstallAurPackage(name=identifier, description=note))
        elif tag == "G":
            steps.append(BuildPackage(url=identifier, description=note))
        elif tag == "P":
            steps.append(InstallPipPackage(name=identifier, description=note))
        else:
            steps.append(InstallRepoPackage(name=identifier, description=note))

    return _make_plan(name, steps)


def parse_yaml_plan(text: str, name: str = "plan") -> Plan:
    """Parse ``{name, steps: [...]}`` or a bare list of step mappings."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise PlanError(f"Invalid YAML in {name}: {e}") from e

    if isinstance(data, dict):
        name = str(data.get("name") or name)
        raw_steps = data.get("steps") or []
    elif isinstance(data, list):
        raw_steps = data
    elif data is None:
        raw_steps = []
    else:
        raise PlanError(f"Expected a mapping or list in {name}, got {type(data).__name__}")

    if not isinstance(raw_steps, list):
        raise PlanError(f"'steps' in {name} must be a list")

    steps = []
    for index, raw in enumerate(raw_steps, start=1):
        try:
            steps.append(_STEP_ADAPTER.validate_python(raw))
        except ValidationError as e:
            raise PlanError(f"{name}: step {index} is invalid: {e}") from e

    return _make_plan(name, steps)


def _make_plan(name: str, steps: list[Any]) -> Plan:
    try:
        return Plan(name=name, steps=tuple(steps))
    except ValidationError as e:
        raise PlanError(f"Invalid plan {name}: {e}") from e


# ── Sources ─────────────────────────────────────────────────────


def _is_url(source: str) -> bool:
    return source.startswith(("http://", "https://"))


def _fetch(url: str, timeout: int = 30) -> str:
    request = urllib.request.Request(url, headers={"User-Agent": f"archsetup/{__version__}"})
    try:
        with urllib.request.urlopen(request, timeout=timeout) as resp:
            return resp.read().decode("utf-8")
    except (urllib.error.URLError, TimeoutError, UnicodeDecodeError) as e:
        raise PlanError(f"Cannot download plan from {url}: {e}") from e


def load_default_plan() -> Plan:
    """The plan shipped with the package."""
    text = resources.files("archsetup.data").joinpath(_DEFAULT_PLAN_RESOURCE).read_text(encoding="utf-8")
    return parse_yaml_plan(text, name=DEFAULT_PLAN)


def load_plan(source: str, base_dir: Path | None = None) -> Plan:
    """Load a plan from a path, a URL, or ``default``.

    Args:
        source: File path (.yml/.yaml/.csv), http(s) URL, or "default".
        base_dir: Directory relative paths are resolved against
            (the config file's directory).

    Raises:
        PlanError: If the source is unreadable or the plan invalid.
    """
    if source == DEFAULT_PLAN:
        return load_default_plan()

    if _is_url(source):
        logger.info("Downloading plan from %s", source)
        text = _fetch(source)
        stem = Path(source.split("?", 1)[0]).stem or "remote"
        if source.split("?", 1)[0].endswith(".csv"):
            return parse_csv_plan(text, name=stem)
        return parse_yaml_plan(text, name=stem)

    path = Path(source)
    if not path.is_absolute() and base_dir is not None:
        path = base_dir / path
    if not path.is_file():
        raise PlanError(f"Plan file not found: {path}")

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise PlanError(f"Cannot read {path}: {e}") from e

    logger.debug("Loading plan from %s", path)
    if path.suffix.lower() == ".csv":
        return parse_csv_plan(text, name=path.stem)
    return parse_yaml_plan(text, name=path.stem)

