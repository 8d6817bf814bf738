"""Versions manifest (versions.json) handling.

Each formula module directory carries a ``versions.json`` file mapping
every known module version to its direct dependencies::

    {
      "id": "madler/zlib",
      "deps": {
        "1.3.1": [{"id": "other/lib", "version": "1.0"}]
      }
    }

The older ``"path"`` key is accepted in place of ``"id"`` when reading.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Iterable
from pathlib import Path

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from llar.errors import ManifestError
from llar.types import ModuleRef

logger = logging.getLogger(__name__)

MANIFEST_FILE = "versions.json"


class Dependency(BaseModel):
    """A dependency entry in the manifest."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(validation_alias=AliasChoices("id", "path"))
    version: str = ""

    def to_ref(self) -> ModuleRef:
        return ModuleRef(self.id, self.version)


class Manifest(BaseModel):
    """Contents of a versions.json file.

    Attributes:
        id: Module path the manifest belongs to.
        deps: Direct dependencies per module version.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default="", validation_alias=AliasChoices("id", "path"))
    deps: dict[str, list[Dependency]] = Field(default_factory=dict)

    def deps_of(self, version: str) -> list[ModuleRef]:
        """Return the dependencies recorded for version (empty if unknown)."""
        return [d.to_ref() for d in self.deps.get(version, [])]

    def with_deps(self, version: str, refs: Iterable[ModuleRef]) -> Manifest:
        """Return a copy with the dependency list of version replaced."""
        deps = dict(self.deps)
        deps[version] = [Dependency(id=r.path, version=r.version) for r in refs]
        return self.model_copy(update={"deps": deps})


def parse_manifest(data: str | bytes, source: str = MANIFEST_FILE) -> Manifest:
    """Parse manifest content.

    Args:
        data: JSON content.
        source: Name used in error messages.

    Raises:
        ManifestError: If the content is not a valid manifest.
    """
    try:
        return Manifest.model_validate_json(data)
    except ValidationError as e:
        raise ManifestError(f"Invalid manifest {source}: {e}") from e


def load_manifest(path: Path) -> Manifest:
    """Load a versions.json file.

    Args:
        path: Path to the manifest file.

    Returns:
        Parsed Manifest.

    Raises:
        ManifestError: If the file is missing or malformed.
    """
    try:
        data = path.read_bytes()
    except FileNotFoundError as e:
        raise ManifestError(
            f"Manifest not found: {path}", code="manifest_not_found"
        ) from e
    except OSError as e:
        raise ManifestError(f"Failed to read manifest {path}: {e}") from e
    return parse_manifest(data, str(path))


def write_manifest(manifest: Manifest, path: Path) -> None:
    """Write a manifest atomically with indentation.

    Args:
        manifest: Manifest to write.
        path: Destination path.
    """
    content = json.dumps(manifest.model_dump(mode="json"), indent=2) + "\n"
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".versions.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    logger.debug("Wrote manifest %s", path)


__all__ = [
    "MANIFEST_FILE",
    "Dependency",
    "Manifest",
    "load_manifest",
    "parse_manifest",
    "write_manifest",
]
