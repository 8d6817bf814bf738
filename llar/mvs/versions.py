"""Version ordering helpers.

This module handles:
- GNU-style version string comparison (the default per-module ordering)
- Sentinel-aware comparison for the "none" version
- Build list sorting by path, then version
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from functools import cmp_to_key

from llar.types import NONE_VERSION, ModuleRef

# Per-path comparator: cmp(path, v1, v2) -> negative, zero, or positive.
PathComparator = Callable[[str, str, str], int]


def _isdigit(c: str) -> bool:
    return "0" <= c <= "9"


def _order(c: str) -> int:
    """Return the sorting weight of a single character."""
    if _isdigit(c):
        return 0
    if ("a" <= c <= "z") or ("A" <= c <= "Z"):
        return ord(c)
    if c == "~":
        return -1
    if c == "":
        return 0
    return ord(c) + 256


def gnu_compare(a: str, b: str) -> int:
    """Compare two version strings the way GNU/dpkg verrevcmp does.

    Non-digit runs are compared character by character with letters
    sorting before other punctuation and '~' sorting before everything,
    including the end of the string. Digit runs are compared by numeric
    value, ignoring leading zeros.

    Args:
        a: First version string.
        b: Second version string.

    Returns:
        Negative if a < b, zero if equal, positive if a > b.
    """
    i = j = 0
    la, lb = len(a), len(b)

    while i < la or j < lb:
        first_diff = 0

        while (i < la and not _isdigit(a[i])) or (j < lb and not _isdigit(b[j])):
            ao = _order(a[i] if i < la else "")
            bo = _order(b[j] if j < lb else "")
            if ao != bo:
                return ao - bo
            i += 1
            j += 1

        while i < la and a[i] == "0":
            i += 1
        while j < lb and b[j] == "0":
            j += 1

        while i < la and j < lb and _isdigit(a[i]) and _isdigit(b[j]):
            if not first_diff:
                first_diff = ord(a[i]) - ord(b[j])
            i += 1
            j += 1

        if i < la and _isdigit(a[i]):
            return 1
        if j < lb and _isdigit(b[j]):
            return -1
        if first_diff:
            return first_diff

    return 0


def compare_sentinel(cmp: PathComparator) -> PathComparator:
    """Wrap a comparator so that "none" sorts below every other version.

    Args:
        cmp: Per-path comparator for concrete versions.

    Returns:
        Comparator honoring the "none" sentinel.
    """

    def compare(path: str, v1: str, v2: str) -> int:
        if v1 == NONE_VERSION and v2 == NONE_VERSION:
            return 0
        if v1 == NONE_VERSION:
            return -1
        if v2 == NONE_VERSION:
            return 1
        return cmp(path, v1, v2)

    return compare


def _split_suffix(version: str) -> tuple[str, str]:
    base, sep, suffix = version.partition("/")
    return base, sep + suffix


def sort_build_list(cmp: PathComparator, refs: Iterable[ModuleRef]) -> list[ModuleRef]:
    """Sort module references by path, then by version.

    Versions carrying a "/suffix" segment compare their base versions with
    cmp; equal base versions are ordered lexically by suffix.

    Args:
        cmp: Per-path comparator.
        refs: References to sort.

    Returns:
        New sorted list.
    """
    def key(a: ModuleRef, b: ModuleRef) -> int:
        if a.path != b.path:
            return -1 if a.path < b.path else 1
        va, fa = _split_suffix(a.version)
        vb, fb = _split_suffix(b.version)
        if va != vb:
            return cmp(a.path, a.version, b.version)
        if fa == fb:
            return 0
        return -1 if fa < fb else 1

    return sorted(refs, key=cmp_to_key(key))


def max_version(
    path: str, versions: Iterable[str], cmp: PathComparator
) -> str | None:
    """Return the highest version per cmp, or None if versions is empty."""
    best: str | None = None
    for v in versions:
        if best is None or cmp(path, v, best) > 0:
            best = v
    return best


__all__ = [
    "PathComparator",
    "compare_sentinel",
    "gnu_compare",
    "max_version",
    "sort_build_list",
]
