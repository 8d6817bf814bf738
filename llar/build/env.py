"""Build environment and command execution.

This module handles:
- Explicit per-build environment overrides (never touching os.environ)
- Advertising installed dependencies to compilers, CMake and pkg-config
- Executing build commands with subprocess
- Capturing stdout/stderr to log files
- Enforcing command timeouts
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import sys
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from llar.errors import BuildError, BuildTimeoutError

logger = logging.getLogger(__name__)


class BuildEnv(Mapping[str, str]):
    """Immutable set of environment variable overrides.

    Every modifier returns a new BuildEnv. Path and flag modifiers extend
    the current override, or the inherited process value when the key has
    not been overridden yet.
    """

    def __init__(self, values: Mapping[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(values or {})

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"BuildEnv({self._values!r})"

    def _current(self, key: str) -> str:
        if key in self._values:
            return self._values[key]
        return os.environ.get(key, "")

    def set(self, key: str, value: str) -> BuildEnv:
        """Return a copy with key set to value."""
        values = dict(self._values)
        values[key] = value
        return BuildEnv(values)

    def prepend_path(self, key: str, value: str) -> BuildEnv:
        """Return a copy with value prepended to a PATH-style variable."""
        current = self._current(key)
        if current:
            value = value + os.pathsep + current
        return self.set(key, value)

    def append_flag(self, key: str, flag: str) -> BuildEnv:
        """Return a copy with flag appended to a space-separated variable."""
        current = self._current(key)
        if current:
            flag = current + " " + flag
        return self.set(key, flag)

    def use(self, root: Path) -> BuildEnv:
        """Advertise a dependency installed at root.

        Adds the dependency's pkg-config, include and library directories
        to the variables CMake, pkg-config and compilers consult. Only
        directories that exist are added, except CMAKE_PREFIX_PATH.

        Args:
            root: Install directory of the dependency.

        Returns:
            New BuildEnv including the dependency.
        """
        root = Path(root)
        include_dir = root / "include"
        lib_dir = root / "lib"
        pkgconfig_dir = lib_dir / "pkgconfig"

        env = self
        if pkgconfig_dir.is_dir():
            env = env.prepend_path("PKG_CONFIG_PATH", str(pkgconfig_dir))
        env = env.prepend_path("CMAKE_PREFIX_PATH", str(root))
        if include_dir.is_dir():
            env = env.prepend_path("CMAKE_INCLUDE_PATH", str(include_dir))
        if lib_dir.is_dir():
            env = env.prepend_path("CMAKE_LIBRARY_PATH", str(lib_dir))

        if sys.platform == "win32":
            if include_dir.is_dir():
                env = env.prepend_path("INCLUDE", str(include_dir))
            if lib_dir.is_dir():
                env = env.prepend_path("LIB", str(lib_dir))
        else:
            if include_dir.is_dir():
                env = env.append_flag("CPPFLAGS", f"-I{include_dir}")
            if lib_dir.is_dir():
                env = env.append_flag("LDFLAGS", f"-L{lib_dir}")
        return env

    def merged(self, base: Mapping[str, str] | None = None) -> dict[str, str]:
        """Return base (default: os.environ) with the overrides applied."""
        env = dict(os.environ if base is None else base)
        env.update(self._values)
        return env


@dataclass
class CommandResult:
    """Result of a command execution.

    Attributes:
        command: The command that was executed, shell-quoted.
        exit_code: Process exit code.
        started_at: Start time.
        finished_at: Finish time.
        log_path: Log file holding the output, if one was requested.
        output: Captured output when no log file was requested.
    """

    command: str
    exit_code: int
    started_at: datetime
    finished_at: datetime
    log_path: Path | None = None
    output: str = ""

    @property
    def success(self) -> bool:
        return self.exit_code == 0


def run_command(
    cmd: Sequence[str | os.PathLike[str]],
    cwd: Path | None = None,
    env: BuildEnv | Mapping[str, str] | None = None,
    log_path: Path | None = None,
    timeout: float | None = None,
    check: bool = False,
) -> CommandResult:
    """Execute a build command.

    Args:
        cmd: Command and arguments.
        cwd: Working directory.
        env: Environment overrides applied on top of os.environ.
        log_path: File receiving stdout and stderr (appended to).
        timeout: Timeout in seconds (None = no timeout).
        check: Raise BuildError on a non-zero exit code.

    Returns:
        CommandResult with execution details.

    Raises:
        BuildTimeoutError: If the command exceeds timeout.
        BuildError: If the command cannot be started, or exits non-zero
            while check is set.
    """
    argv = [os.fspath(c) for c in cmd]
    cmd_str = shlex.join(argv)
    logger.info("Executing: %s", cmd_str)
    if cwd is not None:
        logger.debug("Working directory: %s", cwd)

    full_env: dict[str, str] | None = None
    if env:
        full_env = env.merged() if isinstance(env, BuildEnv) else BuildEnv(env).merged()

    started_at = datetime.now(timezone.utc)
    output = ""

    try:
        if log_path is not None:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            with log_path.open("a") as log_file:
                log_file.write(f"# Command: {cmd_str}\n")
                log_file.write(f"# Started: {started_at.isoformat()}\n")
                log_file.write(f"# CWD: {cwd or Path.cwd()}\n")
                log_file.write("# " + "=" * 70 + "\n\n")
                log_file.flush()

                result = subprocess.run(
                    argv,
                    cwd=cwd,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    timeout=timeout,
                    env=full_env,
                    check=False,
                )
        else:
            result = subprocess.run(
                argv,
                cwd=cwd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=timeout,
                env=full_env,
                check=False,
            )
            output = result.stdout or ""

    except subprocess.TimeoutExpired as e:
        message = f"Command timed out after {timeout} seconds: {cmd_str}"
        logger.error(message)
        if log_path is not None:
            with log_path.open("a") as log_file:
                log_file.write(f"\n# TIMEOUT after {timeout} seconds\n")
        raise BuildTimeoutError(message) from e

    except OSError as e:
        message = f"Failed to execute {cmd_str}: {e}"
        logger.error(message)
        raise BuildError(message, code="execution_error") from e

    finished_at = datetime.now(timezone.utc)
    exit_code = result.returncode

    if log_path is not None:
        with log_path.open("a") as log_file:
            log_file.write(f"\n# Finished: {finished_at.isoformat()}\n")
            log_file.write(f"# Exit code: {exit_code}\n")
            duration = (finished_at - started_at).total_seconds()
            log_file.write(f"# Duration: {duration:.1f}s\n\n")

    if exit_code != 0:
        where = f". See log: {log_path}" if log_path is not None else ""
        logger.error("Command failed with exit code %d%s", exit_code, where)
        if check:
            raise BuildError(
                f"Command failed with exit code {exit_code}: {cmd_str}",
                code="command_failed",
            )

    return CommandResult(
        command=cmd_str,
        exit_code=exit_code,
        started_at=started_at,
        finished_at=finished_at,
        log_path=log_path,
        output=output,
    )


__all__ = ["BuildEnv", "CommandResult", "run_command"]
