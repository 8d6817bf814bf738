"""Minimal Version Selection for llar modules."""

from llar.mvs.par import Work
from llar.mvs.resolver import (
    DEFAULT_WORKERS,
    ModuleRequirements,
    Requirements,
    build_list,
    req,
)
from llar.mvs.versions import (
    compare_sentinel,
    gnu_compare,
    max_version,
    sort_build_list,
)

__all__ = [
    "DEFAULT_WORKERS",
    "ModuleRequirements",
    "Requirements",
    "Work",
    "build_list",
    "compare_sentinel",
    "gnu_compare",
    "max_version",
    "req",
    "sort_build_list",
]
