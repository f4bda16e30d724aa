"""
Shared test fixtures and configuration.
"""

from pathlib import Path

import pytest

from archsetup.adapters.registry import AdapterRegistry, build_registry
from archsetup.core.models.settings import ProvisionSettings
from tests.fakes import FakeProbe, FakeRunner


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def home(tmp_path: Path) -> Path:
    """A throwaway home directory."""
    home = tmp_path / "home"
    home.mkdir()
    return home


@pytest.fixture
def settings(home: Path, tmp_path: Path) -> ProvisionSettings:
    """Settings rooted in tmp_path, nothing touches the real home."""
    return ProvisionSettings(home=home, state_dir=tmp_path / "state")


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe(commands=["yay", "git", "pip"])


@pytest.fixture
def runner(probe: FakeProbe) -> FakeRunner:
    return FakeRunner(probe=probe)


@pytest.fixture
def registry(settings: ProvisionSettings) -> AdapterRegistry:
    return build_registry(settings)
