"""Directory-backed repositories.

A local repository is a directory with one subdirectory per ref::

    <root>/
      1.2.11/   # sources at tag 1.2.11
      1.3.1/

The empty ref addresses the root directory itself, which is how a plain
checkout (such as a local formula repository) is used.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path, PurePosixPath

from llar.errors import VCSError
from llar.types import escape_path
from llar.vcs.base import RepoFactory

logger = logging.getLogger(__name__)


class LocalSourceFS:
    """Files of a local repository at one ref."""

    def __init__(self, base: Path) -> None:
        self.base = Path(base)

    def read_file(self, name: str) -> bytes:
        rel = PurePosixPath(name)
        if rel.is_absolute() or ".." in rel.parts:
            raise FileNotFoundError(name)
        return (self.base / rel).read_bytes()


class LocalRepo:
    """A repository stored as plain directories.

    Attributes:
        root: Repository root directory.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def __repr__(self) -> str:
        return f"LocalRepo({self.root})"

    def _base(self, ref: str) -> Path:
        if not ref:
            return self.root
        rel = PurePosixPath(ref)
        if rel.is_absolute() or ".." in rel.parts or len(rel.parts) != 1:
            raise VCSError(f"Invalid ref {ref!r}", code="invalid_ref")
        return self.root / ref

    def tags(self) -> list[str]:
        """Return the ref directories, sorted by name.

        Raises:
            VCSError: If the repository root does not exist.
        """
        if not self.root.is_dir():
            raise VCSError(f"Repository not found: {self.root}", code="repo_not_found")
        return sorted(
            p.name for p in self.root.iterdir() if p.is_dir() and not p.name.startswith(".")
        )

    def latest(self) -> str:
        return ""

    def at(self, ref: str, local_dir: Path) -> LocalSourceFS:
        return LocalSourceFS(self._base(ref))

    def sync(self, ref: str, path: str, dest_dir: Path) -> None:
        """Copy path at ref into dest_dir / path.

        Raises:
            VCSError: If the ref or path does not exist.
        """
        prefix = path.strip("/")
        src = self._base(ref) / prefix if prefix else self._base(ref)
        dest = Path(dest_dir) / prefix if prefix else Path(dest_dir)
        if not src.exists():
            raise VCSError(
                f"{prefix or 'root'} not found at ref {ref!r} in {self.root}",
                code="path_not_found",
            )
        if src.resolve() == dest.resolve():
            return
        if src.is_dir():
            shutil.copytree(src, dest, dirs_exist_ok=True)
        else:
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(src, dest)
        logger.debug("Synced %s to %s", src, dest)


def local_repo_factory(root: Path) -> RepoFactory:
    """Return a factory mapping module paths to ``root/<escaped path>`` repos."""
    root = Path(root)

    def factory(path: str) -> LocalRepo:
        return LocalRepo(root / escape_path(path))

    return factory


__all__ = ["LocalRepo", "LocalSourceFS", "local_repo_factory"]
