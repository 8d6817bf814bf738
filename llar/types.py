"""Shared type definitions for llar.

This module contains the module reference type and path helpers shared
across subpackages to avoid circular imports.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePosixPath

from llar.errors import ResolutionError

# Version of the main module; always wins version comparisons.
MAIN_VERSION = ""

# Sentinel version meaning "absent"; always loses version comparisons.
NONE_VERSION = "none"


@dataclass(frozen=True, order=True)
class ModuleRef:
    """A specific version of a module identified by its path.

    Attributes:
        path: Module path in the form "owner/repo".
        version: Version string, "" for the main module or "none" for absent.
    """

    path: str
    version: str = MAIN_VERSION

    def __str__(self) -> str:
        if not self.version:
            return self.path
        return f"{self.path}@{self.version}"

    @classmethod
    def parse(cls, arg: str) -> ModuleRef:
        """Parse "owner/repo@version" or "owner/repo".

        The version is split on the last '@'.

        Args:
            arg: Module argument string.

        Returns:
            ModuleRef with an empty version when none was given.
        """
        path, sep, version = arg.rpartition("@")
        if not sep:
            return cls(arg, MAIN_VERSION)
        return cls(path, version)

    def is_none(self) -> bool:
        """Check if this reference carries the absent sentinel."""
        return self.version == NONE_VERSION


def split_path(path: str) -> tuple[str, str]:
    """Split a module path into owner and repo.

    Args:
        path: Module path "owner/repo".

    Returns:
        Tuple of (owner, repo).

    Raises:
        ResolutionError: If the path has no separator.
    """
    owner, sep, repo = path.partition("/")
    if not sep or not owner or not repo:
        raise ResolutionError(
            f"Invalid module path {path!r}: expected owner/repo",
            code="invalid_module_path",
        )
    return owner, repo


def escape_path(path: str) -> str:
    """Return a module path as a relative, local filesystem path.

    Args:
        path: Module path.

    Returns:
        Relative path string safe to join under a workspace directory.

    Raises:
        ResolutionError: If the path is empty, absolute or escapes upward.
    """
    pure = PurePosixPath(path)
    parts = path.split("/")
    if (
        not path
        or pure.is_absolute()
        or "\\" in path
        or any(part in ("", ".", "..") for part in parts)
    ):
        raise ResolutionError(
            f"Invalid module path {path!r}", code="invalid_module_path"
        )
    return str(pure)


__all__ = [
    "MAIN_VERSION",
    "NONE_VERSION",
    "ModuleRef",
    "escape_path",
    "split_path",
]
