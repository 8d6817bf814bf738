"""Build orchestration.

This module provides the high-level build API:
- Builder.build(): build a resolved module pool with cache awareness
- Cache lookup per module version and matrix
- Locking to prevent duplicate builds across processes
- Source sync, formula invocation and result persistence

Modules are built one at a time in global build order; any failure
aborts the run and leaves already cached predecessors in place.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable, Sequence
from pathlib import Path

from llar.build.cache import BuildCache, BuildResult, build_lock
from llar.build.context import BuildContext, Deadline, Project
from llar.build.graph import (
    BuildModule,
    find_cycles,
    global_build_order,
    transitive_closure_of,
)
from llar.build.matrix import Matrix
from llar.errors import BuildError, BuildTimeoutError, LlarError, ResolutionError
from llar.types import ModuleRef, escape_path
from llar.vcs.base import RepoFactory

logger = logging.getLogger(__name__)

# Workspace subdirectory holding synced sources.
SOURCE_DIR = ".source"

# Module-level subdirectory holding build logs.
LOG_DIR = "logs"

DeadlineFactory = Callable[[ModuleRef], Deadline]


class Builder:
    """Builds resolved modules for one matrix.

    Attributes:
        workspace_dir: Root of caches, sources and install directories.
        matrix: Matrix key of this run.
        cache: Build cache in the workspace.
        results: Results of the last run keyed by module.
    """

    def __init__(
        self,
        workspace_dir: Path,
        matrix: Matrix | str,
        repo_factory: RepoFactory,
        build_timeout: float | None = None,
    ) -> None:
        self.workspace_dir = Path(workspace_dir)
        self.matrix = matrix.key() if isinstance(matrix, Matrix) else matrix
        self.repo_factory = repo_factory
        self.build_timeout = build_timeout
        self.cache = BuildCache(self.workspace_dir)
        self.results: dict[ModuleRef, BuildResult] = {}

    def source_dir(self, ref: ModuleRef) -> Path:
        return self.workspace_dir / SOURCE_DIR / f"{escape_path(ref.path)}@{ref.version}"

    def log_path(self, ref: ModuleRef) -> Path:
        return self.cache.cache_dir(ref.path) / LOG_DIR / f"{ref.version}-{self.matrix}.log"

    def build(
        self,
        main: ModuleRef,
        modules: Sequence[BuildModule],
        deadline_factory: DeadlineFactory | None = None,
    ) -> list[BuildResult]:
        """Build every module, dependencies first.

        Args:
            main: Main module of the run.
            modules: Module pool from the loader.
            deadline_factory: Creates the deadline of each module build;
                defaults to the builder's build_timeout.

        Returns:
            Build results in global build order.

        Raises:
            BuildError: If any module fails to build.
        """
        if deadline_factory is None:
            deadline_factory = self._default_deadline

        for cycle in find_cycles(modules):
            logger.warning(
                "Dependency cycle: %s", " -> ".join(str(m.ref) for m in cycle)
            )

        order = global_build_order(modules)
        logger.info("Building %s for %s: %d modules", main, self.matrix, len(order))

        self.results = {}
        ordered: list[BuildResult] = []
        for module in order:
            try:
                result = self._build_module(module, modules, deadline_factory(module.ref))
            except LlarError as e:
                if isinstance(e, BuildError) and e.module is None:
                    e.module = module.ref
                logger.error("Build of %s failed: %s", module.ref, e)
                raise
            except OSError as e:
                logger.error("Build of %s failed: %s", module.ref, e)
                raise BuildError(
                    f"Build of {module.ref} failed: {e}", module=module.ref
                ) from e
            self.results[module.ref] = result
            ordered.append(result)
        return ordered

    def _default_deadline(self, ref: ModuleRef) -> Deadline:
        return Deadline(self.build_timeout)

    def _install_dir_of(self, ref: ModuleRef) -> Path:
        return self.cache.install_dir(ref.path, ref.version, self.matrix)

    def _build_module(
        self,
        module: BuildModule,
        pool: Sequence[BuildModule],
        deadline: Deadline,
    ) -> BuildResult:
        ref = module.ref
        cached = self.cache.get(ref.path, ref.version, self.matrix)
        if cached is not None:
            logger.info("Cache hit for %s (%s)", ref, self.matrix)
            return cached

        formula = module.formula
        if formula is None:
            raise BuildError(f"No formula to build {ref}", module=ref, code="no_formula")

        try:
            with build_lock(
                self.cache.cache_dir(ref.path),
                f"{ref.version}-{self.matrix}",
                timeout=deadline.remaining(),
            ):
                # Another process may have built it while we waited.
                cached = self.cache.get(ref.path, ref.version, self.matrix)
                if cached is not None:
                    logger.info("Cache hit for %s (%s) after lock", ref, self.matrix)
                    return cached
                return self._run_formula(module, pool, deadline)
        except TimeoutError as e:
            if isinstance(e, BuildTimeoutError):
                raise
            raise BuildTimeoutError(str(e), module=ref) from e

    def _run_formula(
        self,
        module: BuildModule,
        pool: Sequence[BuildModule],
        deadline: Deadline,
    ) -> BuildResult:
        ref = module.ref
        assert module.formula is not None
        logger.info("Building %s (%s)", ref, self.matrix)

        source_dir = self.source_dir(ref)
        if source_dir.exists():
            shutil.rmtree(source_dir)
        source_dir.mkdir(parents=True)
        try:
            self.repo_factory(ref.path).sync(ref.version, "", source_dir)
        except (ResolutionError, OSError) as e:
            raise BuildError(
                f"Failed to fetch sources of {ref}: {e}", module=ref, code="source_unavailable"
            ) from e
        deadline.check(f"Build of {ref}")

        install_dir = self.cache.install_dir(ref.path, ref.version, self.matrix)
        if install_dir.exists():
            shutil.rmtree(install_dir)
        install_dir.mkdir(parents=True)

        closure = transitive_closure_of(module, within=pool)
        dep_results = {d.ref: self.results[d.ref] for d in closure if d.ref in self.results}

        ctx = BuildContext(
            module=ref,
            source_dir=source_dir,
            install_dir=install_dir,
            matrix=self.matrix,
            build_results=dep_results,
            output_dir_of=self._install_dir_of,
            deadline=deadline,
            log_path=self.log_path(ref),
        )
        project = Project(deps=[d.ref for d in module.deps], source_dir=source_dir)
        result = BuildResult()

        try:
            module.formula.on_build(ctx, project, result)
        except LlarError:
            raise
        except Exception as e:
            raise BuildError(f"Build of {ref} failed: {e}", module=ref) from e

        if result.errors:
            raise BuildError(
                f"Build of {ref} failed: {'; '.join(result.errors)}", module=ref
            )
        deadline.check(f"Build of {ref}")

        if result.output_dir is None:
            result.output_dir = install_dir
        try:
            self.cache.put(ref.path, ref.version, self.matrix, result)
        except OSError as e:
            raise BuildError(f"Failed to cache build of {ref}: {e}", module=ref) from e
        logger.info("Built %s (%s)", ref, self.matrix)
        return result


__all__ = ["Builder", "DeadlineFactory"]
