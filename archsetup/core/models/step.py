"""
Step models — the declarative units of a provisioning plan.

A step says WHAT should be true on the machine ("nemo is installed",
"~/.config/i3/config has this content"). The adapter registered for the
step's kind decides HOW to check it and how to make it true.

Steps are a tagged union discriminated by ``kind``:

    update, repo, aur, pip, build, command, file, clone, download, orphans

Every step is frozen once validated. A plan never mutates its steps;
marking a step critical produces a copy.
"""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Annotated, Any, ClassVar, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class _StepBase(BaseModel):
    """Fields shared by every step kind."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Adapter that handles this kind (see adapters/registry.py)
    adapter: ClassVar[str] = ""

    id: str = ""
    description: str = ""
    critical: bool = False
    timeout: int | None = None      # seconds; None = settings.default_timeout

    @model_validator(mode="before")
    @classmethod
    def _fill_id(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("id"):
            data = {**data, "id": cls._derive_id(data)}
        return data

    @classmethod
    def _derive_id(cls, data: dict[str, Any]) -> str:
        return str(data.get("kind", "step"))

    @property
    def label(self) -> str:
        """Human-readable label for summaries."""
        return self.description or self.id


class SystemUpdate(_StepBase):
    """Full system upgrade (``pacman -Syu``).

    The one step the keyring RecoveryPolicy applies to.
    """

    adapter: ClassVar[str] = "pacman"

    kind: Literal["update"] = "update"
    packages: list[str] = Field(default_factory=list)

    @classmethod
    def _derive_id(cls, data: dict[str, Any]) -> str:
        return "update"


class InstallRepoPackage(_StepBase):
    """Install a package from the official repositories."""

    adapter: ClassVar[str] = "pacman"

    kind: Literal["repo"] = "repo"
    name: str

    @classmethod
    def _derive_id(cls, data: dict[str, Any]) -> str:
        return f"repo:{data.get('name', '')}"


class InstallAurPackage(_StepBase):
    """Install a package from the AUR through the configured helper."""

    adapter: ClassVar[str] = "aur"

    kind: Literal["aur"] = "aur"
    name: str

    @classmethod
    def _derive_id(cls, data: dict[str, Any]) -> str:
        return f"aur:{data.get('name', '')}"


class InstallPipPackage(_StepBase):
    """Install a package with the language package manager."""

    adapter: ClassVar[str] = "pip"

    kind: Literal["pip"] = "pip"
    name: str

    @classmethod
    def _derive_id(cls, data: dict[str, Any]) -> str:
        return f"pip:{data.get('name', '')}"


class BuildPackage(_StepBase):
    """Clone a PKGBUILD repository and build it with ``makepkg -si``.

    This is how the AUR helper itself gets bootstrapped, and what the
    ``G`` rows of a program list mean.
    """

    adapter: ClassVar[str] = "makepkg"

    kind: Literal["build"] = "build"
    url: str
    package: str = ""               # defaults to the repository basename
    provides: str | None = None     # command that is present once built
    workdir: str = ""               # defaults to ~/.local/src/<package>
    keep_sources: bool = True

    @model_validator(mode="before")
    @classmethod
    def _fill_package(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("package") and data.get("url"):
            data = {**data, "package": repo_basename(str(data["url"]))}
        return data

    @classmethod
    def _derive_id(cls, data: dict[str, Any]) -> str:
        package = data.get("package") or repo_basename(str(data.get("url", "")))
        return f"build:{package}"

    @property
    def source_dir(self) -> str:
        return self.workdir or f"~/.local/src/{self.package}"


class RunCommand(_StepBase):
    """Run an arbitrary command.

    ``unless``: predicate command; exit 0 means already satisfied.
    ``only_if``: predicate command; non-zero exit means nothing to do.
    With neither, the command runs every time.
    """

    adapter: ClassVar[str] = "shell"

    kind: Literal["command"] = "command"
    argv: list[str] = Field(min_length=1)
    unless: list[str] | None = None
    only_if: list[str] | None = None
    privileged: bool = False
    cwd: str | None = None

    @classmethod
    def _derive_id(cls, data: dict[str, Any]) -> str:
        argv = data.get("argv") or []
        return "command:" + " ".join(str(a) for a in argv[:3])


class WriteFile(_StepBase):
    """Write (replace) or append static content to a file."""

    adapter: ClassVar[str] = "filesystem"

    kind: Literal["file"] = "file"
    path: str
    content: str
    mode: Literal["replace", "append"] = "replace"
    privileged: bool = False

    @classmethod
    def _derive_id(cls, data: dict[str, Any]) -> str:
        return f"file:{data.get('path', '')}"


class CloneRepo(_StepBase):
    """Clone a git repository, or pull it if the checkout exists."""

    adapter: ClassVar[str] = "git"

    kind: Literal["clone"] = "clone"
    url: str
    dest: str
    branch: str | None = None

    @classmethod
    def _derive_id(cls, data: dict[str, Any]) -> str:
        return f"clone:{data.get('dest', '')}"


class DownloadFile(_StepBase):
    """Fetch a URL to a local path, once."""

    adapter: ClassVar[str] = "download"

    kind: Literal["download"] = "download"
    url: str
    dest: str

    @classmethod
    def _derive_id(cls, data: dict[str, Any]) -> str:
        return f"download:{data.get('dest', '')}"


class RemoveOrphans(_StepBase):
    """Remove packages installed as dependencies that nothing requires."""

    adapter: ClassVar[str] = "pacman"

    kind: Literal["orphans"] = "orphans"

    @classmethod
    def _derive_id(cls, data: dict[str, Any]) -> str:
        return "orphans"


Step = Annotated[
    Union[
        SystemUpdate,
        InstallRepoPackage,
        InstallAurPackage,
        InstallPipPackage,
        BuildPackage,
        RunCommand,
        WriteFile,
        CloneRepo,
        DownloadFile,
        RemoveOrphans,
    ],
    Field(discriminator="kind"),
]

STEP_TYPES: tuple[type[_StepBase], ...] = (
    SystemUpdate,
    InstallRepoPackage,
    InstallAurPackage,
    InstallPipPackage,
    BuildPackage,
    RunCommand,
    WriteFile,
    CloneRepo,
    DownloadFile,
    RemoveOrphans,
)


def repo_basename(url: str) -> str:
    """``https://aur.archlinux.org/yay-bin.git`` → ``yay-bin``."""
    name = PurePosixPath(url.rstrip("/")).name
    return name[:-4] if name.endswith(".git") else name
