"""Formula repository store.

This module handles:
- Locating a module's directory inside the local formula repository
- Syncing module directories from the remote formula repository
- Loading the module's version comparator (custom or GNU default)
- Selecting the formula serving a given module version
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from llar.errors import FormulaLoadError
from llar.formula.base import Formula
from llar.formula.declarative import DECLARATIVE_SUFFIX, DeclarativeFormula
from llar.formula.python import (
    COMPARATOR_SUFFIX,
    FORMULA_SUFFIX,
    ModuleComparator,
    PythonFormula,
    load_comparator,
)
from llar.manifest import MANIFEST_FILE, Manifest, load_manifest
from llar.mvs.versions import gnu_compare
from llar.types import NONE_VERSION, ModuleRef, escape_path

if TYPE_CHECKING:
    from llar.vcs import Repo

logger = logging.getLogger(__name__)


def _gnu_module_compare(a: ModuleRef, b: ModuleRef) -> int:
    return gnu_compare(a.version, b.version)


def load_formula(path: Path) -> Formula:
    """Load a formula file of either flavor.

    Raises:
        FormulaLoadError: If the file has an unknown suffix or fails to load.
    """
    if path.name.endswith(FORMULA_SUFFIX):
        return PythonFormula(path)
    if path.name.endswith(DECLARATIVE_SUFFIX):
        return DeclarativeFormula.from_file(path)
    raise FormulaLoadError(f"Not a formula file: {path}", code="invalid_formula")


class FormulaModule:
    """The formulas, comparator and manifest of one module.

    Attributes:
        dir: Module directory inside the formula repository.
        path: Module path.
    """

    def __init__(self, fsys_dir: Path, path: str) -> None:
        self.dir = Path(fsys_dir)
        self.path = path
        self._lock = threading.Lock()
        self._comparator: ModuleComparator | None = None
        self._files: dict[Path, Formula] | None = None
        self._formulas: dict[str, Formula] = {}

    def comparator(self) -> ModuleComparator:
        """Return the module's version comparator, loading it on first use.

        Uses the first ``*_cmp.py`` file in the module directory, or GNU
        version ordering when there is none.

        Raises:
            FormulaLoadError: If a comparator file exists but fails to load.
        """
        with self._lock:
            if self._comparator is None:
                matches = sorted(self.dir.glob(f"*{COMPARATOR_SUFFIX}"))
                if matches:
                    logger.debug("Using comparator %s for %s", matches[0], self.path)
                    self._comparator = load_comparator(matches[0])
                else:
                    self._comparator = _gnu_module_compare
            return self._comparator

    def compare(self, v1: str, v2: str) -> int:
        """Compare two versions of this module."""
        return self.comparator()(ModuleRef(self.path, v1), ModuleRef(self.path, v2))

    def _formula_files(self) -> dict[Path, Formula]:
        with self._lock:
            if self._files is None:
                files: dict[Path, Formula] = {}
                candidates = [
                    *self.dir.rglob(f"*{FORMULA_SUFFIX}"),
                    *self.dir.rglob(f"*{DECLARATIVE_SUFFIX}"),
                ]
                for file in sorted(candidates):
                    files[file] = load_formula(file)
                self._files = files
            return self._files

    def at(self, version: str) -> Formula:
        """Return the formula serving version.

        The formula with the highest from_ver not above version wins.

        Raises:
            FormulaLoadError: If no formula serves version.
        """
        best: Formula | None = None
        for formula in self._formula_files().values():
            if self.compare(formula.from_ver, version) > 0:
                continue
            if best is None or self.compare(formula.from_ver, best.from_ver) > 0:
                best = formula
        if best is None:
            raise FormulaLoadError(
                f"No formula found for {self.path}@{version}", code="formula_not_found"
            )
        with self._lock:
            return self._formulas.setdefault(best.from_ver, best)

    def manifest(self) -> Manifest:
        """Load the module's versions.json.

        Raises:
            ManifestError: If the manifest is missing or malformed.
        """
        return load_manifest(self.manifest_path)

    @property
    def manifest_path(self) -> Path:
        return self.dir / MANIFEST_FILE

    def read_file(self, name: str) -> bytes:
        return (self.dir / name).read_bytes()


class FormulaStore:
    """Process-lifetime cache of formula modules.

    Attributes:
        root: Local checkout of the formula repository.
        repo: Remote formula repository, or None to use root as-is.
        offline: Never sync from repo when set.
    """

    def __init__(
        self,
        root: Path,
        repo: Repo | None = None,
        offline: bool = False,
    ) -> None:
        self.root = Path(root)
        self.repo = repo
        self.offline = offline
        self._lock = threading.Lock()
        self._modules: dict[str, FormulaModule] = {}

    def module_dir(self, path: str) -> Path:
        return self.root / escape_path(path)

    def module(self, path: str) -> FormulaModule:
        """Return the formula module for path, syncing it on first use.

        Raises:
            ResolutionError: If path is invalid or the sync fails.
            FormulaLoadError: If the module has no formula directory.
        """
        with self._lock:
            cached = self._modules.get(path)
            if cached is not None:
                return cached

            module_dir = self.module_dir(path)
            if self.repo is not None and not self.offline:
                logger.info("Syncing formulas for %s", path)
                self.repo.sync("", path, self.root)
            if not module_dir.is_dir():
                raise FormulaLoadError(
                    f"No formulas for {path} in {self.root}", code="formula_not_found"
                )
            fm = FormulaModule(module_dir, path)
            self._modules[path] = fm
            return fm

    def compare(self, path: str, v1: str, v2: str) -> int:
        """Compare two versions of path with its module comparator."""
        if v1 == v2:
            return 0
        if v1 == NONE_VERSION or v2 == NONE_VERSION:
            return -1 if v1 == NONE_VERSION else 1
        return self.module(path).compare(v1, v2)


__all__ = ["FormulaModule", "FormulaStore", "load_formula"]
