"""Build cache.

This module handles:
- Build results and their persisted cache entries
- One JSON cache file per module path in the workspace
- Install directory naming per version and matrix
- File locks serializing the check-build-store sequence across processes

Workspace layout::

    <workspace>/
      <escaped path>/
        .cache.json                       # "<version>|<matrix>" -> CacheEntry
      <escaped path>@<version>-<matrix>/  # install directory
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import tempfile
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, Field

from llar.errors import CacheError
from llar.types import escape_path

logger = logging.getLogger(__name__)

CACHE_FILE = ".cache.json"

# Seconds between non-blocking lock attempts.
LOCK_POLL_INTERVAL = 0.1


class BuildResult(BaseModel):
    """Outcome of building one module.

    Attributes:
        output_dir: Directory holding the installed headers and libraries.
        metadata: Free-form text the formula reports to consumers
            (typically compiler and linker flags).
        errors: Error messages; a non-empty list fails the build.
    """

    output_dir: Path | None = None
    metadata: str = ""
    errors: list[str] = Field(default_factory=list)

    def add_error(self, message: str) -> None:
        """Record a build error."""
        self.errors.append(message)


class CacheEntry(BaseModel):
    """A cached successful build."""

    build_result: BuildResult
    build_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class _CacheFile(BaseModel):
    cache: dict[str, CacheEntry] = Field(default_factory=dict)


def cache_key(version: str, matrix: str) -> str:
    """Return the cache file key for a version and matrix key."""
    return f"{version}|{matrix}"


class BuildCache:
    """Per-module JSON build cache rooted at a workspace directory.

    Attributes:
        workspace_dir: Root of cache files and install directories.
    """

    def __init__(self, workspace_dir: Path) -> None:
        self.workspace_dir = Path(workspace_dir)

    def cache_dir(self, path: str) -> Path:
        """Return the module-level directory holding the cache file."""
        return self.workspace_dir / escape_path(path)

    def cache_file(self, path: str) -> Path:
        return self.cache_dir(path) / CACHE_FILE

    def install_dir(self, path: str, version: str, matrix: str) -> Path:
        """Return the install directory for a module build."""
        return self.workspace_dir / f"{escape_path(path)}@{version}-{matrix}"

    def _read(self, path: str) -> _CacheFile:
        """Read a module's cache file.

        Raises:
            CacheError: If the file is missing or corrupt.
        """
        cache_file = self.cache_file(path)
        try:
            data = cache_file.read_bytes()
        except FileNotFoundError as e:
            raise CacheError(f"No build cache for {path}", code="cache_miss") from e
        except OSError as e:
            raise CacheError(f"Failed to read {cache_file}: {e}") from e
        try:
            return _CacheFile.model_validate_json(data)
        # ValidationError and undecodable bytes are both ValueErrors.
        except ValueError as e:
            raise CacheError(
                f"Corrupt build cache {cache_file}: {e}", code="cache_corrupt"
            ) from e

    def _load(self, path: str) -> _CacheFile:
        """Read a module's cache file, treating any failure as empty."""
        try:
            return self._read(path)
        except CacheError as e:
            if e.code == "cache_miss":
                logger.debug("%s", e)
            else:
                logger.warning("Ignoring build cache: %s", e)
            return _CacheFile()

    def _save(self, path: str, data: _CacheFile) -> None:
        cache_dir = self.cache_dir(path)
        cache_dir.mkdir(parents=True, exist_ok=True)
        content = json.dumps(data.model_dump(mode="json"), indent=2)
        fd, tmp_name = tempfile.mkstemp(dir=cache_dir, prefix=".cache.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp_name, cache_dir / CACHE_FILE)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def get(self, path: str, version: str, matrix: str) -> BuildResult | None:
        """Look up a cached build result.

        Args:
            path: Module path.
            version: Module version.
            matrix: Matrix key.

        Returns:
            The cached BuildResult, or None on a miss.
        """
        entry = self._load(path).cache.get(cache_key(version, matrix))
        if entry is None:
            return None
        return entry.build_result

    def put(
        self,
        path: str,
        version: str,
        matrix: str,
        result: BuildResult,
    ) -> CacheEntry:
        """Store a successful build result.

        The whole cache file is rewritten atomically; existing entries for
        other versions and matrices are kept.

        Args:
            path: Module path.
            version: Module version.
            matrix: Matrix key.
            result: Build result to store.

        Returns:
            The stored CacheEntry.
        """
        data = self._load(path)
        entry = CacheEntry(build_result=result.model_copy(deep=True))
        data.cache[cache_key(version, matrix)] = entry
        self._save(path, data)
        logger.debug("Cached build of %s@%s for %s", path, version, matrix)
        return entry

    def entries(self, path: str) -> dict[str, CacheEntry]:
        """Return all cache entries of a module keyed by "<version>|<matrix>"."""
        return dict(self._load(path).cache)

    def delete(
        self,
        path: str,
        version: str | None = None,
        matrix: str | None = None,
    ) -> int:
        """Remove cache entries of a module.

        Args:
            path: Module path.
            version: Only remove entries of this version.
            matrix: Only remove entries of this matrix key.

        Returns:
            Number of entries removed.
        """
        data = self._load(path)
        kept: dict[str, CacheEntry] = {}
        removed = 0
        for key, entry in data.cache.items():
            entry_version, _, entry_matrix = key.partition("|")
            if (version is None or entry_version == version) and (
                matrix is None or entry_matrix == matrix
            ):
                removed += 1
            else:
                kept[key] = entry
        if removed:
            data.cache = kept
            self._save(path, data)
            logger.info("Removed %d cache entries for %s", removed, path)
        return removed


def _lock_name(key: str) -> str:
    """Return the lock file name of a "<version>-<matrix>" build key."""
    safe = "".join(c if c.isalnum() or c in "._-" else "_" for c in key)
    return f".build_{safe[:64]}.lock"


@contextmanager
def build_lock(
    lock_dir: Path,
    key: str,
    timeout: float | None = None,
) -> Iterator[None]:
    """Hold the exclusive build lock of one module version and matrix.

    The lock is an flock on a dot file in the module's cache directory, so
    llar processes sharing a workspace never write the same install
    directory at once. Waiting is done by polling a non-blocking flock
    when a timeout is given.

    Args:
        lock_dir: Module cache directory.
        key: "<version>-<matrix>" of the build.
        timeout: Seconds to wait for another holder; None waits forever.

    Raises:
        TimeoutError: If the lock is still held elsewhere after timeout.
    """
    lock_dir.mkdir(parents=True, exist_ok=True)
    lock_file = lock_dir / _lock_name(key)

    with open(lock_file, "a") as f:
        if timeout is None:
            fcntl.flock(f, fcntl.LOCK_EX)
        else:
            give_up = time.monotonic() + timeout
            while True:
                try:
                    fcntl.flock(f, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() >= give_up:
                        raise TimeoutError(
                            f"{lock_dir.name}@{key} is being built elsewhere; "
                            f"gave up after {timeout:g}s"
                        ) from None
                    time.sleep(LOCK_POLL_INTERVAL)
        logger.debug("Locked %s@%s", lock_dir.name, key)
        try:
            yield
        finally:
            fcntl.flock(f, fcntl.LOCK_UN)
            logger.debug("Unlocked %s@%s", lock_dir.name, key)


__all__ = [
    "CACHE_FILE",
    "BuildCache",
    "BuildResult",
    "CacheEntry",
    "build_lock",
    "cache_key",
]
