"""Error taxonomy for llar.

Every error carries a stable ``code`` attribute for structured handling
by the CLI and callers. Only CacheError is recovered locally (as a cache
miss); the others abort the enclosing resolution or build run.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from llar.types import ModuleRef


class LlarError(Exception):
    """Base error for llar operations."""

    default_code = "llar_error"

    def __init__(self, message: str, code: str | None = None) -> None:
        """Initialize LlarError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
        """
        super().__init__(message)
        self.code = code or self.default_code


class ManifestError(LlarError):
    """Raised when a versions manifest is missing or corrupt."""

    default_code = "manifest_error"


class FormulaLoadError(LlarError):
    """Raised when a formula or comparator fails to load."""

    default_code = "formula_load_error"


class ResolutionError(LlarError):
    """Raised when dependency resolution fails."""

    default_code = "resolution_error"


class VCSError(ResolutionError):
    """Raised when a source repository operation fails."""

    default_code = "vcs_error"


class CacheError(LlarError):
    """Raised when a build cache file cannot be read or parsed."""

    default_code = "cache_error"


class BuildError(LlarError):
    """Raised when a module build fails."""

    default_code = "build_failed"

    def __init__(
        self,
        message: str,
        module: ModuleRef | None = None,
        code: str | None = None,
    ) -> None:
        """Initialize BuildError.

        Args:
            message: Error description.
            module: Module whose build failed, if known.
            code: Error code for structured error handling.
        """
        super().__init__(message, code)
        self.module = module


class BuildTimeoutError(BuildError, TimeoutError):
    """Raised when a resolution or build step exceeds its deadline."""

    default_code = "timeout"


__all__ = [
    "BuildError",
    "BuildTimeoutError",
    "CacheError",
    "FormulaLoadError",
    "LlarError",
    "ManifestError",
    "ResolutionError",
    "VCSError",
]
