"""Build-system helpers for formulas.

This module handles:
- Composing cmake configure/build/install commands
- Composing autotools configure/make/make install commands
- Pointing either at already-built dependencies through the build env

Commands run through BuildContext.run(), so they honor the build's
deadline and log file and never modify os.environ.
"""

from __future__ import annotations

import logging
from pathlib import Path

from llar.build.context import BuildContext
from llar.build.env import BuildEnv, CommandResult
from llar.errors import BuildError
from llar.types import ModuleRef

logger = logging.getLogger(__name__)

DEFAULT_BUILD_SUBDIR = "_build"


def _root_of(ctx: BuildContext, dep: ModuleRef | Path) -> Path:
    """Return the install directory of dep, which must exist."""
    root = ctx.output_dir(dep) if isinstance(dep, ModuleRef) else Path(dep)
    if not root.is_dir():
        raise BuildError(
            f"Dependency {dep} is not installed at {root}",
            module=ctx.module,
            code="dependency_missing",
        )
    return root


class CMake:
    """Drives a CMake configure/build/install sequence.

    Attributes:
        source_dir: Directory holding CMakeLists.txt.
        build_dir: Out-of-tree build directory.
        install_dir: Install prefix.
        generator: CMake generator name (e.g. "Ninja").
        build_type: CMAKE_BUILD_TYPE (e.g. "Release").
        toolchain: CMAKE_TOOLCHAIN_FILE path.
        env: Environment overrides for every command.
    """

    def __init__(
        self,
        ctx: BuildContext,
        source_dir: Path | None = None,
        build_dir: Path | None = None,
        install_dir: Path | None = None,
    ) -> None:
        self.ctx = ctx
        self.source_dir = source_dir or ctx.source_dir
        self.build_dir = build_dir or self.source_dir / DEFAULT_BUILD_SUBDIR
        self.install_dir = install_dir or ctx.output_dir()
        self.generator = ""
        self.build_type = ""
        self.toolchain = ""
        self.env: BuildEnv = ctx.env
        self._defines: dict[str, tuple[str, str]] = {}

    def define(self, key: str, value: str) -> None:
        """Add a -D<key>:STRING=<value> definition."""
        self._defines[key] = ("STRING", value)

    def define_bool(self, key: str, value: bool) -> None:
        """Add a -D<key>:BOOL=ON/OFF definition."""
        self._defines[key] = ("BOOL", "ON" if value else "OFF")

    def use(self, dep: ModuleRef | Path) -> None:
        """Make an installed dependency visible to CMake and compilers."""
        self.env = self.env.use(_root_of(self.ctx, dep))

    def define_args(self) -> list[str]:
        return [
            f"-D{key}:{type_name}={value}"
            for key, (type_name, value) in sorted(self._defines.items())
        ]

    def configure_command(self, *args: str) -> list[str]:
        if self.install_dir:
            self.define("CMAKE_INSTALL_PREFIX", str(self.install_dir))
        if self.toolchain:
            self.define("CMAKE_TOOLCHAIN_FILE", self.toolchain)
        if self.build_type:
            self.define("CMAKE_BUILD_TYPE", self.build_type)
        cmd = ["cmake", "-S", str(self.source_dir), "-B", str(self.build_dir)]
        if self.generator:
            cmd += ["-G", self.generator]
        return [*cmd, *self.define_args(), *args]

    def build_command(self, *args: str) -> list[str]:
        cmd = ["cmake", "--build", str(self.build_dir)]
        if self.build_type:
            cmd += ["--config", self.build_type]
        return [*cmd, *args]

    def install_command(self, *args: str) -> list[str]:
        cmd = ["cmake", "--install", str(self.build_dir)]
        if self.install_dir:
            cmd += ["--prefix", str(self.install_dir)]
        return [*cmd, *args]

    def configure(self, *args: str) -> CommandResult:
        self.build_dir.mkdir(parents=True, exist_ok=True)
        return self.ctx.run(self.configure_command(*args), cwd=self.source_dir, env=self.env)

    def build(self, *args: str) -> CommandResult:
        return self.ctx.run(self.build_command(*args), cwd=self.source_dir, env=self.env)

    def install(self, *args: str) -> CommandResult:
        return self.ctx.run(self.install_command(*args), cwd=self.source_dir, env=self.env)

    def output_dir(self) -> Path:
        """Return the install prefix, or the build directory without one."""
        return Path(self.install_dir) if self.install_dir else self.build_dir


class AutoTools:
    """Drives a configure/make/make install sequence.

    Attributes:
        source_dir: Directory holding the configure script.
        build_dir: Directory the commands run in.
        install_dir: Install prefix passed as --prefix.
        env: Environment overrides for every command.
    """

    def __init__(
        self,
        ctx: BuildContext,
        source_dir: Path | None = None,
        build_dir: Path | None = None,
        install_dir: Path | None = None,
    ) -> None:
        self.ctx = ctx
        self.source_dir = source_dir or ctx.source_dir
        self.build_dir = build_dir or self.source_dir
        self.install_dir = install_dir or ctx.output_dir()
        self.env: BuildEnv = ctx.env

    def set_env(self, key: str, value: str) -> None:
        self.env = self.env.set(key, value)

    def use(self, dep: ModuleRef | Path) -> None:
        """Make an installed dependency visible to configure and the compiler."""
        self.env = self.env.use(_root_of(self.ctx, dep))

    def configure_command(self, *args: str) -> list[str]:
        cmd = [str(self.source_dir / "configure")]
        if self.install_dir:
            cmd.append(f"--prefix={self.install_dir}")
        return [*cmd, *args]

    def configure(self, *args: str) -> CommandResult:
        self.build_dir.mkdir(parents=True, exist_ok=True)
        return self.ctx.run(self.configure_command(*args), cwd=self.build_dir, env=self.env)

    def build(self, *args: str) -> CommandResult:
        return self.ctx.run(["make", *args], cwd=self.build_dir, env=self.env)

    def install(self, *args: str) -> CommandResult:
        return self.ctx.run(["make", "install", *args], cwd=self.build_dir, env=self.env)

    def output_dir(self) -> Path:
        return Path(self.install_dir) if self.install_dir else self.build_dir


__all__ = ["AutoTools", "CMake"]
