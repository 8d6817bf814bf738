"""Tests for mvs/versions.py module."""

import pytest

from llar.mvs.versions import (
    compare_sentinel,
    gnu_compare,
    max_version,
    sort_build_list,
)
from llar.types import ModuleRef


def _sign(n: int) -> int:
    return (n > 0) - (n < 0)


def _gnu(path: str, v1: str, v2: str) -> int:
    return gnu_compare(v1, v2)


class TestGnuCompare:
    """Tests for gnu_compare function."""

    @pytest.mark.parametrize(
        ("a", "b", "expected"),
        [
            ("1.0", "1.0", 0),
            ("1.2.10", "1.2.9", 1),
            ("1.2.9", "1.2.10", -1),
            ("01", "1", 0),
            ("1.0.0", "1.0", 1),
            ("1.0a", "1.0", 1),
            ("1.0~rc1", "1.0", -1),
            ("1.0~rc1", "1.0~rc2", -1),
            ("v1.2", "v1.10", -1),
            ("1.a", "1.+", -1),
            ("", "0", 0),
        ],
    )
    def test_ordering(self, a: str, b: str, expected: int) -> None:
        """Should order versions the way dpkg does."""
        assert _sign(gnu_compare(a, b)) == expected

    def test_antisymmetric(self) -> None:
        """Swapping arguments should flip the sign."""
        pairs = [("1.2.3", "1.10"), ("2.0~beta", "2.0"), ("1.0a", "1.0b")]
        for a, b in pairs:
            assert _sign(gnu_compare(a, b)) == -_sign(gnu_compare(b, a))


class TestCompareSentinel:
    """Tests for compare_sentinel function."""

    def test_none_is_lowest(self) -> None:
        """'none' should sort below every concrete version."""
        cmp = compare_sentinel(_gnu)
        assert cmp("a/b", "none", "0.0.1") < 0
        assert cmp("a/b", "0.0.1", "none") > 0
        assert cmp("a/b", "none", "none") == 0

    def test_delegates_concrete_versions(self) -> None:
        """Concrete versions should use the wrapped comparator."""
        cmp = compare_sentinel(_gnu)
        assert cmp("a/b", "1.10", "1.9") > 0


class TestSortBuildList:
    """Tests for sort_build_list function."""

    def test_sorts_by_path_then_version(self) -> None:
        """Paths should sort lexically and versions by the comparator."""
        refs = [
            ModuleRef("b/b", "1"),
            ModuleRef("a/a", "2"),
            ModuleRef("a/a", "1.10"),
            ModuleRef("a/a", "1.9"),
        ]
        assert sort_build_list(_gnu, refs) == [
            ModuleRef("a/a", "1.9"),
            ModuleRef("a/a", "1.10"),
            ModuleRef("a/a", "2"),
            ModuleRef("b/b", "1"),
        ]

    def test_suffix_versions(self) -> None:
        """Equal base versions should order by their /suffix."""
        refs = [
            ModuleRef("a/a", "1.0/x"),
            ModuleRef("a/a", "1.0/a"),
            ModuleRef("a/a", "1.0"),
        ]
        assert [r.version for r in sort_build_list(_gnu, refs)] == [
            "1.0",
            "1.0/a",
            "1.0/x",
        ]

    def test_does_not_mutate_input(self) -> None:
        """Sorting should return a new list."""
        refs = [ModuleRef("b/b", "1"), ModuleRef("a/a", "1")]
        sort_build_list(_gnu, refs)
        assert refs[0].path == "b/b"


class TestMaxVersion:
    """Tests for max_version function."""

    def test_highest(self) -> None:
        """Should pick the highest version by the comparator."""
        assert max_version("a/b", ["1.2", "1.10", "1.9"], _gnu) == "1.10"

    def test_empty(self) -> None:
        """Should return None for no versions."""
        assert max_version("a/b", [], _gnu) is None
