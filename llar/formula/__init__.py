"""Module formulas.

This module handles:
- The Formula capability used by the resolver and the orchestrator
- Python (``*_llar.py``) and declarative (``*_llar.yaml``) formula files
- Per-module formula selection and comparators in the formula store
"""

from llar.formula.base import Formula, ModuleDeps

__all__ = ["Formula", "ModuleDeps"]
