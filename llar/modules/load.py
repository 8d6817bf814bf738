"""Module loading.

This module handles:
- Resolving the main module's version (latest tag when unspecified)
- Expanding each module's direct dependencies from its formula and manifest
- Running MVS over the formula repository
- Optionally rewriting the main module's manifest entry with minimal deps
- Building the BuildModule pool consumed by the orchestrator
"""

from __future__ import annotations

import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path

from llar.build.context import Deadline, Project
from llar.build.graph import BuildModule
from llar.errors import ResolutionError
from llar.formula.base import ModuleDeps
from llar.formula.store import FormulaStore
from llar.manifest import write_manifest
from llar.mvs.resolver import DEFAULT_WORKERS, ModuleRequirements, build_list, req
from llar.mvs.versions import max_version
from llar.types import MAIN_VERSION, ModuleRef
from llar.vcs.base import RepoFactory

logger = logging.getLogger(__name__)


@dataclass
class Resolution:
    """Outcome of resolving a main module.

    Attributes:
        main: Main module with its concrete version.
        build_list: Main module first, then every selected dependency.
        requirements: Dependency graph used for resolution.
    """

    main: ModuleRef
    build_list: list[ModuleRef]
    requirements: ModuleRequirements


def latest_version(path: str, store: FormulaStore, repo_factory: RepoFactory) -> str:
    """Return the highest tag of a module by its comparator.

    Raises:
        ResolutionError: If the module has no tags.
    """
    tags = repo_factory(path).tags()
    latest = max_version(path, tags, store.compare)
    if latest is None:
        raise ResolutionError(
            f"Failed to retrieve the latest version of {path}: no tags found",
            code="no_tags",
        )
    logger.info("Latest version of %s is %s", path, latest)
    return latest


def resolve_deps(
    ref: ModuleRef,
    store: FormulaStore,
    repo_factory: RepoFactory,
    deadline: Deadline | None = None,
) -> list[ModuleRef]:
    """Return the direct dependencies of a module version.

    The formula's on_require runs against the module sources. Dependencies
    it declares without a version take the version recorded in the
    manifest, or are dropped when the manifest has none. When on_require
    declares nothing, the manifest entry is used as-is.

    Raises:
        ManifestError: If the module has no valid versions.json.
        FormulaLoadError: If no formula serves the version.
        BuildTimeoutError: If the deadline expires.
    """
    if deadline is not None:
        deadline.check(f"Resolving {ref}")

    fm = store.module(ref.path)
    formula = fm.at(ref.version)
    current = fm.manifest().deps_of(ref.version)

    declared = ModuleDeps()
    if formula.has_on_require:
        with tempfile.TemporaryDirectory(prefix="llar-source-") as tmp:
            source = repo_factory(ref.path).at(ref.version, Path(tmp))
            formula.on_require(Project(reader=source), declared)

    recorded = {d.path: d.version for d in current}
    deps: list[ModuleRef] = []
    for dep in declared.deps:
        version = dep.version
        if not version:
            version = recorded.get(dep.path, "")
            if not version:
                logger.debug("Dropping %s of %s: no version recorded", dep.path, ref)
                continue
        deps.append(ModuleRef(dep.path, version))

    if not deps:
        deps = [d for d in current if d.version]
    logger.debug("%s requires %s", ref, ", ".join(map(str, deps)) or "nothing")
    return deps


def resolve(
    main: ModuleRef,
    store: FormulaStore,
    repo_factory: RepoFactory,
    *,
    workers: int = DEFAULT_WORKERS,
    deadline: Deadline | None = None,
) -> Resolution:
    """Resolve the build list of main with MVS.

    Raises:
        ResolutionError: If resolution fails.
    """
    if main.version == MAIN_VERSION:
        main = ModuleRef(main.path, latest_version(main.path, store, repo_factory))

    roots = resolve_deps(main, store, repo_factory, deadline)

    def on_load(m: ModuleRef) -> list[ModuleRef]:
        return resolve_deps(m, store, repo_factory, deadline)

    reqs = ModuleRequirements(
        roots=roots,
        is_main=lambda m: m == main,
        cmp=store.compare,
        on_load=on_load,
    )
    logger.info("Resolving %s", main)
    blist = build_list([main], reqs, workers)
    logger.info("Resolved %s: %d modules", main, len(blist))
    return Resolution(main=main, build_list=blist, requirements=reqs)


def tidy_main(
    resolution: Resolution,
    store: FormulaStore,
    workers: int = DEFAULT_WORKERS,
) -> list[ModuleRef]:
    """Rewrite the main module's manifest entry with its minimal requirements.

    Returns:
        The minimal requirement list that was written.
    """
    main = resolution.main
    minimal = req(main, [], resolution.requirements, workers)
    fm = store.module(main.path)
    manifest = fm.manifest().with_deps(main.version, minimal)
    write_manifest(manifest, fm.manifest_path)
    logger.info("Tidied %s: %d direct requirements", main, len(minimal))
    return minimal


def load(
    main: ModuleRef,
    store: FormulaStore,
    repo_factory: RepoFactory,
    *,
    tidy: bool = False,
    workers: int = DEFAULT_WORKERS,
    deadline: Deadline | None = None,
) -> list[BuildModule]:
    """Resolve main and return the modules to build.

    The main module comes first and depends on every other module; every
    other module depends on its direct requirements at their selected
    versions.

    Args:
        main: Main module; an empty version means the latest tag.
        store: Formula store.
        repo_factory: Maps module paths to their source repositories.
        tidy: Rewrite the main module's manifest entry with its
            minimal requirements.
        workers: Maximum concurrent dependency expansions.
        deadline: Deadline for the whole resolution.

    Returns:
        BuildModule pool, main first.

    Raises:
        ResolutionError: If resolution fails.
        FormulaLoadError: If a selected version has no formula.
    """
    resolution = resolve(main, store, repo_factory, workers=workers, deadline=deadline)
    if tidy:
        tidy_main(resolution, store, workers)

    nodes: dict[str, BuildModule] = {}
    for ref in resolution.build_list:
        formula = store.module(ref.path).at(ref.version)
        nodes[ref.path] = BuildModule(ref.path, ref.version, formula=formula)

    main_node = nodes[resolution.main.path]
    for node in nodes.values():
        if node is main_node:
            node.deps = [n for n in nodes.values() if n is not main_node]
            continue
        deps: list[BuildModule] = []
        for r in resolution.requirements.required(node.ref):
            dep = nodes.get(r.path)
            if dep is not None and dep is not node and dep not in deps:
                deps.append(dep)
        node.deps = deps

    return list(nodes.values())


__all__ = [
    "Resolution",
    "latest_version",
    "load",
    "resolve",
    "resolve_deps",
    "tidy_main",
]
