"""Build matrix definition.

A matrix names the build configuration axes of a module. Required axes
(arch, os, ...) must match the consumer; option axes toggle features. A
fully pinned matrix has exactly one value per axis and renders as the
single key used for cache entries and install directories.
"""

from __future__ import annotations

import itertools
import platform
import sys

from pydantic import BaseModel, Field, field_validator

# Normalized names for platform.machine() values.
_ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
    "x86": "386",
}

_OS_ALIASES = {
    "linux": "linux",
    "darwin": "darwin",
    "win32": "windows",
    "cygwin": "windows",
}


def _expand(axes: dict[str, list[str]]) -> list[str]:
    """Expand axes into "-"-joined value strings, sorted axis names outermost."""
    if not axes:
        return []
    values = [axes[name] for name in sorted(axes)]
    return ["-".join(combo) for combo in itertools.product(*values)]


class Matrix(BaseModel):
    """Build configuration axes.

    Attributes:
        require: Axes a dependency must share with its consumer.
        options: Optional feature axes.
    """

    require: dict[str, list[str]] = Field(default_factory=dict)
    options: dict[str, list[str]] = Field(default_factory=dict)

    @field_validator("require", "options")
    @classmethod
    def validate_axes(cls, v: dict[str, list[str]]) -> dict[str, list[str]]:
        """Reject axes without values."""
        empty = sorted(name for name, values in v.items() if not values)
        if empty:
            raise ValueError(f"matrix axes need at least one value: {', '.join(empty)}")
        return v

    def combination_count(self) -> int:
        """Return the number of distinct combinations (0 for an empty matrix)."""
        if not self.require and not self.options:
            return 0
        count = 1
        for values in (*self.require.values(), *self.options.values()):
            count *= len(values)
        return count

    def combinations(self) -> list[str]:
        """Enumerate every combination key.

        Axis names are sorted and each axis expands its values in declared
        order. Required values are joined with "-"; option values follow
        after a "|", unless there are no required axes.

        Returns:
            Combination keys, or an empty list for an empty matrix.
        """
        required = _expand(self.require)
        options = _expand(self.options)
        if not required:
            return options
        if not options:
            return required
        return [f"{r}|{o}" for r in required for o in options]

    def key(self) -> str:
        """Return the key of a fully pinned matrix.

        Raises:
            ValueError: If the matrix does not describe exactly one
                combination.
        """
        combos = self.combinations()
        if len(combos) != 1:
            raise ValueError(
                f"Matrix must describe exactly one combination, got {len(combos)}"
            )
        return combos[0]

    def __str__(self) -> str:
        return self.key()

    @classmethod
    def host(cls) -> Matrix:
        """Return the pinned matrix of the running machine."""
        machine = platform.machine().lower()
        arch = _ARCH_ALIASES.get(machine, machine)
        os_name = _OS_ALIASES.get(sys.platform, sys.platform)
        return cls(require={"arch": [arch], "os": [os_name]})

    @classmethod
    def parse(cls, key: str) -> Matrix:
        """Build a pinned matrix from a key such as "amd64-linux|zlibON".

        Axis names are positional ("000", "001", ... for required values
        and "o000", ... for options) so that key() returns the input.

        Raises:
            ValueError: If the key is empty or has an empty value.
        """
        req_part, sep, opt_part = key.partition("|")
        if not key or not req_part or (sep and not opt_part):
            raise ValueError(f"Invalid matrix key {key!r}")
        req_values = req_part.split("-")
        opt_values = opt_part.split("-") if sep else []
        if any(not v for v in (*req_values, *opt_values)):
            raise ValueError(f"Invalid matrix key {key!r}")
        # Zero-padded names keep sorted order equal to positional order.
        return cls(
            require={f"{i:03d}": [v] for i, v in enumerate(req_values)},
            options={f"o{i:03d}": [v] for i, v in enumerate(opt_values)},
        )


__all__ = ["Matrix"]
