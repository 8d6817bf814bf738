"""llar - Package manager for native C/C++ libraries.

This package resolves module dependencies with Minimal Version Selection,
orders them for building, and drives per-module formula builds while
caching results per build matrix.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
