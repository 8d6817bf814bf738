"""Minimal Version Selection.

This module handles:
- Computing the build list for a set of targets (parallel fixed point)
- Minimizing a requirement list so that it still implies the build list
- The standard Requirements implementation backed by formula loaders
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from typing import Protocol

from llar.errors import ResolutionError
from llar.mvs.par import Work
from llar.mvs.versions import PathComparator, compare_sentinel, sort_build_list
from llar.types import NONE_VERSION, ModuleRef

logger = logging.getLogger(__name__)

# Default number of concurrent required() expansions.
DEFAULT_WORKERS = 10


class Requirements(Protocol):
    """The dependency graph queried by the MVS algorithms."""

    def required(self, m: ModuleRef) -> list[ModuleRef]:
        """Return the direct requirements of m."""
        ...

    def max(self, path: str, v1: str, v2: str) -> str:
        """Return the higher of two versions of the module at path."""
        ...

    def is_main(self, m: ModuleRef) -> bool:
        """Check whether m is the main module."""
        ...


class ModuleRequirements:
    """Requirements over formula-described modules.

    The main module's requirements are the given roots. Every other module
    is expanded through on_load, at most once per reference.

    Attributes:
        roots: Direct requirements of the main module.
    """

    def __init__(
        self,
        roots: Sequence[ModuleRef],
        is_main: Callable[[ModuleRef], bool],
        cmp: PathComparator,
        on_load: Callable[[ModuleRef], list[ModuleRef]],
    ) -> None:
        self.roots = list(roots)
        self._is_main = is_main
        self._cmp = compare_sentinel(cmp)
        self._on_load = on_load
        self._lock = threading.Lock()
        self._cache: dict[ModuleRef, list[ModuleRef]] = {}
        self._pending: dict[ModuleRef, threading.Event] = {}

    def is_main(self, m: ModuleRef) -> bool:
        return self._is_main(m)

    def required(self, m: ModuleRef) -> list[ModuleRef]:
        if self._is_main(m):
            return list(self.roots)
        if m.version == NONE_VERSION:
            return []

        with self._lock:
            if m in self._cache:
                return list(self._cache[m])
            event = self._pending.get(m)
            owner = event is None
            if owner:
                event = threading.Event()
                self._pending[m] = event

        if not owner:
            event.wait()
            with self._lock:
                if m not in self._cache:
                    raise ResolutionError(f"Failed to load requirements of {m}")
                return list(self._cache[m])

        try:
            deps = list(self._on_load(m))
            with self._lock:
                self._cache[m] = deps
            logger.debug("Loaded %d requirements for %s", len(deps), m)
            return list(deps)
        finally:
            with self._lock:
                self._pending.pop(m, None)
            event.set()

    def cmp_version(self, path: str, v1: str, v2: str) -> int:
        """Compare two versions of path honoring the main and none rules."""
        main_v1 = self._is_main(ModuleRef(path, v1))
        main_v2 = self._is_main(ModuleRef(path, v2))
        if main_v1 and main_v2:
            return 0
        if main_v1:
            return 1
        if main_v2:
            return -1
        return self._cmp(path, v1, v2)

    def max(self, path: str, v1: str, v2: str) -> str:
        if self.cmp_version(path, v1, v2) < 0:
            return v2
        return v1


def _path_cmp(reqs: Requirements) -> PathComparator:
    """Derive a comparator from a Requirements' max function."""
    cmp = getattr(reqs, "cmp_version", None)
    if cmp is not None:
        return cmp

    def compare(path: str, v1: str, v2: str) -> int:
        if v1 == v2:
            return 0
        return 1 if reqs.max(path, v1, v2) == v1 else -1

    return compare


def build_list(
    targets: Sequence[ModuleRef],
    reqs: Requirements,
    workers: int = DEFAULT_WORKERS,
) -> list[ModuleRef]:
    """Compute the build list for targets using MVS.

    The first target is the main module; it always comes first in the
    result. Every other path appears exactly once, at the highest version
    any reachable module requires. Paths selected only at "none" are
    omitted.

    Args:
        targets: Modules to resolve; targets[0] is the main module.
        reqs: Dependency graph.
        workers: Maximum concurrent required() calls.

    Returns:
        Build list with the main module first, then the rest sorted by
        path and version.

    Raises:
        ResolutionError: If any module's requirements cannot be loaded.
    """
    if not targets:
        return []

    lock = threading.Lock()
    selected: dict[str, str] = {}
    for t in targets:
        selected[t.path] = reqs.max(t.path, selected.get(t.path, NONE_VERSION), t.version)

    work: Work[ModuleRef] = Work()
    for t in targets:
        work.add(t)

    def expand(m: ModuleRef) -> None:
        required = reqs.required(m)
        with lock:
            for r in required:
                selected[r.path] = reqs.max(
                    r.path, selected.get(r.path, NONE_VERSION), r.version
                )
        for r in required:
            work.add(r)

    logger.debug("Resolving build list for %s", targets[0])
    try:
        work.do(workers, expand)
    except ResolutionError:
        raise
    except Exception as e:
        raise ResolutionError(f"Failed to resolve {targets[0]}: {e}") from e

    main = targets[0]
    rest = [
        ModuleRef(path, version)
        for path, version in selected.items()
        if path != main.path and version != NONE_VERSION
    ]
    result = [main, *sort_build_list(_path_cmp(reqs), rest)]
    logger.debug("Build list for %s has %d modules", main, len(result))
    return result


def req(
    main: ModuleRef,
    base: Sequence[str],
    reqs: Requirements,
    workers: int = DEFAULT_WORKERS,
) -> list[ModuleRef]:
    """Return the minimal requirement list for main.

    The result, used as main's requirements, produces the same build list.
    Modules whose paths are listed in base are kept whenever they are
    selected, even if something else already implies them.

    Args:
        main: The main module.
        base: Paths to keep in the result regardless of implication.
        reqs: Dependency graph.
        workers: Maximum concurrent required() calls.

    Returns:
        Requirements sorted by path, excluding main.

    Raises:
        ResolutionError: If any module's requirements cannot be loaded.
    """
    blist = build_list([main], reqs, workers)
    selected = {m.path: m.version for m in blist}

    # Post-order over the selected graph; main's own requirements are
    # ignored so that nothing is implied by main itself.
    cache: dict[ModuleRef, list[ModuleRef]] = {main: []}
    postorder: list[ModuleRef] = []

    def load(m: ModuleRef) -> list[ModuleRef]:
        try:
            return reqs.required(m)
        except ResolutionError:
            raise
        except Exception as e:
            raise ResolutionError(f"Failed to load requirements of {m}: {e}") from e

    # Iterative DFS; the second tuple element is the next requirement index.
    for root in blist:
        if root in cache:
            continue
        cache[root] = load(root)
        stack: list[tuple[ModuleRef, int]] = [(root, 0)]
        while stack:
            m, i = stack[-1]
            required = cache[m]
            if i < len(required):
                stack[-1] = (m, i + 1)
                r = required[i]
                if r not in cache:
                    cache[r] = load(r)
                    stack.append((r, 0))
            else:
                stack.pop()
                postorder.append(m)

    have: set[ModuleRef] = set()

    def mark(m: ModuleRef) -> None:
        pending = [m]
        while pending:
            n = pending.pop()
            if n in have:
                continue
            have.add(n)
            pending.extend(cache.get(n, []))

    minimal: list[ModuleRef] = []
    seen_base: set[str] = set()
    for path in base:
        if path in seen_base or path == main.path or path not in selected:
            continue
        seen_base.add(path)
        m = ModuleRef(path, selected[path])
        minimal.append(m)
        mark(m)

    for m in reversed(postorder):
        if m.path == main.path or m.version == NONE_VERSION:
            continue
        if selected.get(m.path) != m.version:
            continue
        if m not in have:
            minimal.append(m)
            mark(m)

    minimal.sort(key=lambda m: m.path)
    return minimal


__all__ = [
    "DEFAULT_WORKERS",
    "ModuleRequirements",
    "Requirements",
    "build_list",
    "req",
]
