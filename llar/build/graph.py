"""Build graph ordering.

This module handles:
- The BuildModule node type shared by the loader and the orchestrator
- Global build order (dependencies before dependents)
- Transitive dependency closure of one module
- Cycle detection for callers that want to reject cycles
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from llar.types import ModuleRef

if TYPE_CHECKING:
    from llar.formula.base import Formula

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class BuildModule:
    """A module selected for building, with its resolved dependencies.

    Nodes compare by identity; deps reference nodes of the same pool.

    Attributes:
        path: Module path.
        version: Selected version.
        deps: Direct dependencies within the same pool.
        formula: Formula that builds this module version.
    """

    path: str
    version: str
    deps: list[BuildModule] = field(default_factory=list)
    formula: Formula | None = None

    @property
    def ref(self) -> ModuleRef:
        return ModuleRef(self.path, self.version)

    def __repr__(self) -> str:
        deps = ", ".join(str(d.ref) for d in self.deps)
        return f"BuildModule({self.ref}, deps=[{deps}])"


def _postorder(
    roots: Iterable[BuildModule],
    allowed: set[BuildModule] | None,
    visited: set[BuildModule],
) -> list[BuildModule]:
    order: list[BuildModule] = []
    # Iterative DFS; the second tuple element is the next dep index.
    for root in roots:
        if root in visited or (allowed is not None and root not in allowed):
            continue
        visited.add(root)
        stack: list[tuple[BuildModule, int]] = [(root, 0)]
        while stack:
            node, i = stack[-1]
            if i < len(node.deps):
                stack[-1] = (node, i + 1)
                dep = node.deps[i]
                if allowed is not None and dep not in allowed:
                    continue
                if dep in visited:
                    if any(n is dep for n, _ in stack):
                        logger.debug("Cycle back-edge %s -> %s", node.ref, dep.ref)
                    continue
                visited.add(dep)
                stack.append((dep, 0))
            else:
                stack.pop()
                order.append(node)
    return order


def global_build_order(modules: Sequence[BuildModule]) -> list[BuildModule]:
    """Order modules so that each comes after its dependencies.

    Dependencies outside the given set are ignored. Cycles are broken
    silently at the first back-edge found.

    Args:
        modules: Module pool, iterated in the given order.

    Returns:
        Every module exactly once, dependencies first.
    """
    return _postorder(modules, set(modules), set())


def transitive_closure_of(
    module: BuildModule,
    within: Iterable[BuildModule] | None = None,
) -> list[BuildModule]:
    """Return every module reachable from module's deps, in build order.

    The module itself is never included, even when a cycle leads back to it.

    Args:
        module: Module whose dependencies to collect.
        within: Optional pool restricting which nodes are visited.

    Returns:
        Reachable dependencies, each before its own dependents.
    """
    allowed = set(within) if within is not None else None
    return _postorder(module.deps, allowed, {module})


def find_cycles(modules: Sequence[BuildModule]) -> list[list[BuildModule]]:
    """Find dependency cycles among modules.

    Uses Tarjan's strongly connected components over the module set.

    Args:
        modules: Module pool.

    Returns:
        One list per cycle (a component of more than one module, or a
        module depending on itself), in discovery order.
    """
    pool = set(modules)
    index: dict[BuildModule, int] = {}
    low: dict[BuildModule, int] = {}
    on_stack: set[BuildModule] = set()
    stack: list[BuildModule] = []
    cycles: list[list[BuildModule]] = []
    counter = 0

    for root in modules:
        if root in index:
            continue
        work: list[tuple[BuildModule, int]] = [(root, 0)]
        index[root] = low[root] = counter
        counter += 1
        stack.append(root)
        on_stack.add(root)
        while work:
            node, i = work[-1]
            if i < len(node.deps):
                work[-1] = (node, i + 1)
                dep = node.deps[i]
                if dep not in pool:
                    continue
                if dep not in index:
                    index[dep] = low[dep] = counter
                    counter += 1
                    stack.append(dep)
                    on_stack.add(dep)
                    work.append((dep, 0))
                elif dep in on_stack:
                    low[node] = min(low[node], index[dep])
                continue

            work.pop()
            if work:
                parent = work[-1][0]
                low[parent] = min(low[parent], low[node])
            if low[node] == index[node]:
                component: list[BuildModule] = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member is node:
                        break
                if len(component) > 1 or node in node.deps:
                    component.reverse()
                    cycles.append(component)
    return cycles


__all__ = [
    "BuildModule",
    "find_cycles",
    "global_build_order",
    "transitive_closure_of",
]
