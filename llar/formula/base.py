"""Formula capability interface.

A formula describes how to resolve and build one module from a given
version onwards. Formulas come in two flavors (Python files and YAML
files); the resolver and orchestrator only see this interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from llar.types import ModuleRef

if TYPE_CHECKING:
    from llar.build.cache import BuildResult
    from llar.build.context import BuildContext, Project


class ModuleDeps:
    """Collector for the direct dependencies declared by a formula."""

    def __init__(self) -> None:
        self._deps: list[ModuleRef] = []

    def require(self, path: str, version: str = "") -> None:
        """Declare a dependency on path.

        An empty version is filled from the module's manifest entry.
        """
        self._deps.append(ModuleRef(path, version))

    @property
    def deps(self) -> list[ModuleRef]:
        return list(self._deps)

    def __len__(self) -> int:
        return len(self._deps)


class Formula(ABC):
    """Build recipe for versions of one module."""

    @property
    @abstractmethod
    def module_id(self) -> str:
        """Path of the module this formula serves."""

    @property
    @abstractmethod
    def from_ver(self) -> str:
        """Lowest module version this formula serves."""

    @property
    def has_on_require(self) -> bool:
        """Whether on_require declares dependencies itself."""
        return False

    def on_require(self, project: Project, deps: ModuleDeps) -> None:
        """Declare the direct dependencies of project into deps."""

    @abstractmethod
    def on_build(self, ctx: BuildContext, project: Project, result: BuildResult) -> None:
        """Build project, recording output and metadata in result."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.module_id!r}, from_ver={self.from_ver!r})"


__all__ = ["Formula", "ModuleDeps"]
