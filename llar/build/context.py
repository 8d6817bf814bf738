"""Build context handed to formulas.

This module handles:
- Per-step deadlines with cooperative cancellation
- The Project view of a module's sources and dependencies
- The BuildContext with output directories, matrix, dependency results
  and the dependency-aware build environment
"""

from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from llar.build.env import BuildEnv, CommandResult, run_command
from llar.errors import BuildError, BuildTimeoutError
from llar.types import ModuleRef

if TYPE_CHECKING:
    from llar.build.cache import BuildResult

logger = logging.getLogger(__name__)


class Deadline:
    """A point in time after which work must stop.

    Attributes:
        seconds: Total allowance, or None for no limit.
        cancelled: Event set when the owner asks work to stop early.
    """

    def __init__(self, seconds: float | None = None) -> None:
        self.seconds = seconds
        self.cancelled = threading.Event()
        self._expires = None if seconds is None else time.monotonic() + seconds

    def remaining(self) -> float | None:
        """Return the seconds left (never negative), or None without a limit."""
        if self._expires is None:
            return None
        return max(0.0, self._expires - time.monotonic())

    @property
    def expired(self) -> bool:
        if self.cancelled.is_set():
            return True
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def cancel(self) -> None:
        self.cancelled.set()

    def check(self, what: str) -> None:
        """Raise if the deadline has passed or was cancelled.

        Args:
            what: Description of the work, used in the error message.

        Raises:
            BuildTimeoutError: If the deadline has expired.
        """
        if self.cancelled.is_set():
            raise BuildTimeoutError(f"{what} was cancelled")
        if self.expired:
            raise BuildTimeoutError(f"{what} exceeded its deadline of {self.seconds}s")


class SourceReader(Protocol):
    def read_file(self, name: str) -> bytes: ...


class Project:
    """A module being resolved or built.

    Attributes:
        deps: Direct dependencies of the module.
        source_dir: Local directory holding the module sources, if any.
    """

    def __init__(
        self,
        deps: Sequence[ModuleRef] = (),
        source_dir: Path | None = None,
        reader: SourceReader | None = None,
    ) -> None:
        self.deps = list(deps)
        self.source_dir = source_dir
        self._reader = reader

    def read_file(self, name: str) -> bytes:
        """Read a file relative to the module's source root.

        Raises:
            FileNotFoundError: If the file does not exist.
        """
        if self._reader is not None:
            return self._reader.read_file(name)
        if self.source_dir is None:
            raise FileNotFoundError(name)
        return (self.source_dir / name).read_bytes()


class BuildContext:
    """Everything a formula needs while building one module.

    Attributes:
        module: Module being built.
        source_dir: Directory holding the synced sources.
        env: Environment advertising every already-built dependency.
        deadline: Deadline of this build step.
        log_path: File receiving the output of run().
    """

    def __init__(
        self,
        module: ModuleRef,
        source_dir: Path,
        install_dir: Path,
        matrix: str,
        build_results: Mapping[ModuleRef, BuildResult],
        output_dir_of: Callable[[ModuleRef], Path],
        deadline: Deadline | None = None,
        log_path: Path | None = None,
    ) -> None:
        self.module = module
        self.source_dir = source_dir
        self._install_dir = install_dir
        self._matrix = matrix
        self._build_results = dict(build_results)
        self._output_dir_of = output_dir_of
        self.deadline = deadline or Deadline()
        self.log_path = log_path

        env = BuildEnv()
        for dep, result in self._build_results.items():
            root = result.output_dir or output_dir_of(dep)
            env = env.use(Path(root))
        self.env = env

    def output_dir(self, dep: ModuleRef | None = None) -> Path:
        """Return the install directory of this module or of a dependency."""
        if dep is None:
            return self._install_dir
        result = self._build_results.get(dep)
        if result is not None and result.output_dir is not None:
            return Path(result.output_dir)
        return self._output_dir_of(dep)

    def current_matrix(self) -> str:
        return self._matrix

    def build_result_of(self, dep: ModuleRef) -> BuildResult | None:
        """Return the result of an already-built dependency, if known."""
        return self._build_results.get(dep)

    def run(
        self,
        cmd: Sequence[str | os.PathLike[str]],
        cwd: Path | None = None,
        env: BuildEnv | None = None,
    ) -> CommandResult:
        """Run a build command under this context's env and deadline.

        Raises:
            BuildTimeoutError: If the deadline expires.
            BuildError: If the command fails.
        """
        self.deadline.check(f"Build of {self.module}")
        result = run_command(
            cmd,
            cwd=cwd or self.source_dir,
            env=env if env is not None else self.env,
            log_path=self.log_path,
            timeout=self.deadline.remaining(),
            check=False,
        )
        if not result.success:
            raise BuildError(
                f"Command failed with exit code {result.exit_code}: {result.command}",
                module=self.module,
                code="command_failed",
            )
        return result


__all__ = ["BuildContext", "Deadline", "Project", "SourceReader"]
