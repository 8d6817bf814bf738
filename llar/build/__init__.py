"""Build orchestration module.

This module handles:
- Build ordering over the resolved module graph
- Build matrices and the per-module build cache
- Build contexts, environments and command execution
- Running formulas for every module in build order
"""

from llar.build.cache import BuildCache, BuildResult, CacheEntry
from llar.build.graph import BuildModule
from llar.build.matrix import Matrix

__all__ = ["BuildCache", "BuildModule", "BuildResult", "CacheEntry", "Matrix"]

# Lazy imports for submodules to avoid circular imports
# Access via llar.build.orchestrator, llar.build.buildsys, etc.
