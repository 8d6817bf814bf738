"""Python formula files.

A Python formula is a ``*_llar.py`` file defining module-level names::

    ID = "madler/zlib"
    FROM_VER = "1.2.11"

    def on_require(project, deps):      # optional
        deps.require("other/lib", "1.0")

    def on_build(ctx, project, result):
        ...

A comparator is a ``*_cmp.py`` file defining
``compare_ver(a: ModuleRef, b: ModuleRef) -> int``.
"""

from __future__ import annotations

import hashlib
import importlib.util
import logging
import threading
from collections.abc import Callable
from pathlib import Path
from types import ModuleType
from typing import TYPE_CHECKING, Any

from llar.errors import FormulaLoadError
from llar.formula.base import Formula, ModuleDeps
from llar.types import ModuleRef

if TYPE_CHECKING:
    from llar.build.cache import BuildResult
    from llar.build.context import BuildContext, Project

logger = logging.getLogger(__name__)

FORMULA_SUFFIX = "_llar.py"
COMPARATOR_SUFFIX = "_cmp.py"

# Formula code runs at import time; loads are serialized.
_load_lock = threading.Lock()

ModuleComparator = Callable[[ModuleRef, ModuleRef], int]


def _import_file(path: Path) -> ModuleType:
    """Execute a Python file as an anonymous module.

    Raises:
        FormulaLoadError: If the file cannot be read or raises on import.
    """
    digest = hashlib.sha256(str(path.resolve()).encode()).hexdigest()[:16]
    name = f"_llar_formula_{path.stem}_{digest}"
    spec = importlib.util.spec_from_file_location(name, path)
    if spec is None or spec.loader is None:
        raise FormulaLoadError(f"Cannot load formula file {path}")
    module = importlib.util.module_from_spec(spec)
    with _load_lock:
        try:
            spec.loader.exec_module(module)
        except FileNotFoundError as e:
            raise FormulaLoadError(
                f"Formula file not found: {path}", code="formula_not_found"
            ) from e
        except Exception as e:
            raise FormulaLoadError(f"Failed to load formula {path}: {e}") from e
    logger.debug("Loaded formula file %s", path)
    return module


def _require_str(module: ModuleType, name: str, path: Path) -> str:
    value = getattr(module, name, None)
    if not isinstance(value, str) or not value:
        raise FormulaLoadError(
            f"Formula {path} must define a non-empty string {name}",
            code="invalid_formula",
        )
    return value


class PythonFormula(Formula):
    """Formula backed by a ``*_llar.py`` file.

    Attributes:
        path: Path of the formula file.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        module = _import_file(self.path)
        self._module_id = _require_str(module, "ID", self.path)
        self._from_ver = _require_str(module, "FROM_VER", self.path)

        on_build = getattr(module, "on_build", None)
        if not callable(on_build):
            raise FormulaLoadError(
                f"Formula {self.path} must define on_build(ctx, project, result)",
                code="invalid_formula",
            )
        self._on_build: Callable[..., Any] = on_build

        on_require = getattr(module, "on_require", None)
        if on_require is not None and not callable(on_require):
            raise FormulaLoadError(
                f"Formula {self.path}: on_require is not callable",
                code="invalid_formula",
            )
        self._on_require: Callable[..., Any] | None = on_require

    @property
    def module_id(self) -> str:
        return self._module_id

    @property
    def from_ver(self) -> str:
        return self._from_ver

    @property
    def has_on_require(self) -> bool:
        return self._on_require is not None

    def on_require(self, project: Project, deps: ModuleDeps) -> None:
        if self._on_require is not None:
            self._on_require(project, deps)

    def on_build(self, ctx: BuildContext, project: Project, result: BuildResult) -> None:
        self._on_build(ctx, project, result)


def load_comparator(path: Path) -> ModuleComparator:
    """Load ``compare_ver`` from a ``*_cmp.py`` file.

    Raises:
        FormulaLoadError: If the file fails to load or lacks compare_ver.
    """
    module = _import_file(Path(path))
    compare = getattr(module, "compare_ver", None)
    if not callable(compare):
        raise FormulaLoadError(
            f"Comparator {path} must define compare_ver(a, b)",
            code="invalid_comparator",
        )
    return compare


__all__ = [
    "COMPARATOR_SUFFIX",
    "FORMULA_SUFFIX",
    "ModuleComparator",
    "PythonFormula",
    "load_comparator",
]
