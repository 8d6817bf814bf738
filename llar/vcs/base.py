"""Source repository interfaces."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Protocol


class SourceFS(Protocol):
    """Read-only view of a repository at one ref."""

    def read_file(self, name: str) -> bytes:
        """Read a file relative to the repository root.

        Raises:
            FileNotFoundError: If the file does not exist at this ref.
        """
        ...


class Repo(Protocol):
    """A versioned source repository."""

    def tags(self) -> list[str]:
        """Return every tag of the repository."""
        ...

    def latest(self) -> str:
        """Return the ref of the newest commit on the default branch."""
        ...

    def at(self, ref: str, local_dir: Path) -> SourceFS:
        """Return a view of the repository at ref, caching files in local_dir."""
        ...

    def sync(self, ref: str, path: str, dest_dir: Path) -> None:
        """Materialize path (relative to the repo root) at ref under dest_dir.

        Files land at ``dest_dir / path``; an empty path syncs the whole
        tree into dest_dir.
        """
        ...


RepoFactory = Callable[[str], Repo]


__all__ = ["Repo", "RepoFactory", "SourceFS"]
