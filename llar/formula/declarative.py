"""Declarative YAML formulas.

A ``*_llar.yaml`` file describes a formula without code::

    id: madler/zlib
    from_ver: "1.2.11"
    require:
      - id: other/lib
        version: "1.0"
    env:
      CFLAGS: -O2
    build:
      - [cmake, -S, "{source_dir}", -B, "{build_dir}",
         "-DCMAKE_INSTALL_PREFIX={install_dir}"]
      - [cmake, --build, "{build_dir}"]
      - [cmake, --install, "{build_dir}"]
    metadata: "-I{install_dir}/include -L{install_dir}/lib -lz"

Placeholders: ``{source_dir}``, ``{build_dir}`` (``<source_dir>/_build``),
``{install_dir}`` and ``{matrix}``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from llar.errors import BuildError, FormulaLoadError
from llar.formula.base import Formula, ModuleDeps

if TYPE_CHECKING:
    from llar.build.cache import BuildResult
    from llar.build.context import BuildContext, Project

logger = logging.getLogger(__name__)

DECLARATIVE_SUFFIX = "_llar.yaml"

BUILD_SUBDIR = "_build"


class RequireSchema(BaseModel):
    """A dependency declared by a declarative formula."""

    model_config = ConfigDict(extra="forbid")

    id: Annotated[str, Field(min_length=1, description="Module path owner/repo")]
    version: str = Field(
        default="",
        description="Version; empty means taken from versions.json",
    )


class DeclarativeFormulaSchema(BaseModel):
    """Schema of a ``*_llar.yaml`` formula file."""

    model_config = ConfigDict(extra="forbid")

    id: Annotated[str, Field(min_length=1, description="Module path owner/repo")]
    from_ver: Annotated[str, Field(min_length=1, description="Lowest served version")]
    require: list[RequireSchema] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    build: list[Annotated[list[str], Field(min_length=1)]] = Field(default_factory=list)
    metadata: str = ""


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the document is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


class DeclarativeFormula(Formula):
    """Formula backed by a ``*_llar.yaml`` file.

    Attributes:
        path: Path of the formula file, if loaded from disk.
        schema: Validated formula content.
    """

    def __init__(self, schema: DeclarativeFormulaSchema, path: Path | None = None) -> None:
        self.schema = schema
        self.path = path

    @classmethod
    def from_file(cls, path: Path) -> DeclarativeFormula:
        """Load and validate a declarative formula.

        Raises:
            FormulaLoadError: If the file is missing, not valid YAML, or
                does not match the schema.
        """
        try:
            data = load_yaml(path)
        except FileNotFoundError as e:
            raise FormulaLoadError(
                f"Formula file not found: {path}", code="formula_not_found"
            ) from e
        except (yaml.YAMLError, ValueError) as e:
            raise FormulaLoadError(f"Invalid formula {path}: {e}") from e
        try:
            schema = DeclarativeFormulaSchema.model_validate(data)
        except ValidationError as e:
            raise FormulaLoadError(
                f"Invalid formula {path}: {e}", code="invalid_formula"
            ) from e
        logger.debug("Loaded declarative formula %s", path)
        return cls(schema, path)

    @property
    def module_id(self) -> str:
        return self.schema.id

    @property
    def from_ver(self) -> str:
        return self.schema.from_ver

    @property
    def has_on_require(self) -> bool:
        return bool(self.schema.require)

    def on_require(self, project: Project, deps: ModuleDeps) -> None:
        for dep in self.schema.require:
            deps.require(dep.id, dep.version)

    def on_build(self, ctx: BuildContext, project: Project, result: BuildResult) -> None:
        install_dir = ctx.output_dir()
        build_dir = ctx.source_dir / BUILD_SUBDIR
        values = {
            "source_dir": str(ctx.source_dir),
            "build_dir": str(build_dir),
            "install_dir": str(install_dir),
            "matrix": ctx.current_matrix(),
        }

        env = ctx.env
        for key, value in self.schema.env.items():
            env = env.set(key, _expand(value, values))

        if self.schema.build:
            build_dir.mkdir(parents=True, exist_ok=True)
        for step in self.schema.build:
            ctx.run([_expand(arg, values) for arg in step], env=env)

        result.output_dir = install_dir
        result.metadata = _expand(self.schema.metadata, values)


def _expand(template: str, values: dict[str, str]) -> str:
    try:
        return template.format_map(values)
    except (KeyError, ValueError, IndexError) as e:
        raise BuildError(f"Invalid placeholder in {template!r}: {e}") from e


__all__ = [
    "DECLARATIVE_SUFFIX",
    "DeclarativeFormula",
    "DeclarativeFormulaSchema",
    "RequireSchema",
    "load_yaml",
]
