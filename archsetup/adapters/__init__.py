"""Adapters — bindings for pacman, the AUR helper, git and the filesystem.

Public re-exports for convenient access.
"""

from archsetup.adapters.base import Adapter, ExecutionContext
from archsetup.adapters.mock import MockAdapter
from archsetup.adapters.registry import AdapterRegistry, build_registry

__all__ = [
    "Adapter",
    "AdapterRegistry",
    "ExecutionContext",
    "MockAdapter",
    "build_registry",
]
