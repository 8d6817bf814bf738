"""Runtime settings for llar.

Values come from LLAR_-prefixed environment variables, an optional .env
file and built-in defaults; command-line options take precedence.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_formula_dir() -> Path:
    """Return the default formula repository directory."""
    return Path.home() / ".cache" / ".llar" / "formulas"


def _default_workspace_dir() -> Path:
    """Return the default build workspace directory."""
    return Path.home() / ".cache" / ".llar" / "workspace"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the LLAR_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="LLAR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    formula_dir: Path = Field(
        default_factory=_default_formula_dir,
        description="Local checkout of the formula repository",
    )
    workspace_dir: Path = Field(
        default_factory=_default_workspace_dir,
        description="Root directory for build caches and install directories",
    )
    source_dir: Path | None = Field(
        default=None,
        description="Local module sources (<path>/<version>/); GitHub when unset",
    )

    # Sources
    formula_repo: str = Field(
        default="github.com/goplus/llarhub",
        description="Remote formula repository (host/owner/repo)",
    )

    # Operational modes
    offline: bool = Field(
        default=False,
        description="Offline mode - use the local formula directory as-is",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Concurrency
    max_workers: int = Field(
        default=10,
        ge=1,
        le=64,
        description="Maximum concurrent dependency expansions during resolution",
    )

    # Timeouts (in seconds)
    resolve_timeout: int = Field(
        default=600,
        ge=1,
        description="Deadline for resolving one module's dependencies",
    )
    build_timeout: int = Field(
        default=3600,
        ge=1,
        description="Deadline for building one module",
    )
    http_timeout: int = Field(
        default=60,
        ge=1,
        description="Timeout for a single VCS HTTP request",
    )


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]
