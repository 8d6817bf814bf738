"""Tests for build/matrix.py module."""

import pytest
from pydantic import ValidationError

from llar.build.matrix import Matrix


@pytest.fixture
def full_matrix() -> Matrix:
    """A matrix with two required axes and one option axis."""
    return Matrix(
        require={"os": ["linux", "darwin"], "arch": ["x86_64", "arm64"]},
        options={"zlib": ["zlibON", "zlibOFF"]},
    )


class TestCombinations:
    """Tests for combination enumeration."""

    def test_full(self, full_matrix: Matrix) -> None:
        """Axes should expand sorted by name with options after '|'."""
        assert full_matrix.combinations() == [
            "x86_64-linux|zlibON",
            "x86_64-linux|zlibOFF",
            "x86_64-darwin|zlibON",
            "x86_64-darwin|zlibOFF",
            "arm64-linux|zlibON",
            "arm64-linux|zlibOFF",
            "arm64-darwin|zlibON",
            "arm64-darwin|zlibOFF",
        ]

    def test_count(self, full_matrix: Matrix) -> None:
        """Count should be the product of axis sizes."""
        assert full_matrix.combination_count() == 8
        assert len(full_matrix.combinations()) == 8

    def test_require_only(self) -> None:
        """Without options there is no '|' part."""
        m = Matrix(require={"arch": ["amd64"], "os": ["linux", "darwin"]})
        assert m.combinations() == ["amd64-linux", "amd64-darwin"]

    def test_options_only(self) -> None:
        """Options alone render without a '|' prefix."""
        m = Matrix(options={"ssl": ["on", "off"]})
        assert m.combinations() == ["on", "off"]

    def test_empty(self) -> None:
        """An empty matrix has no combinations."""
        m = Matrix()
        assert m.combinations() == []
        assert m.combination_count() == 0

    @pytest.mark.parametrize(
        "axes",
        [
            {"require": {"arch": []}, "options": {"z": ["on"]}},
            {"require": {"arch": ["amd64"]}, "options": {"z": []}},
        ],
    )
    def test_axis_without_values_rejected(self, axes: dict) -> None:
        """An axis with no values cannot yield consistent combinations."""
        with pytest.raises(ValidationError, match="at least one value"):
            Matrix(**axes)


class TestKey:
    """Tests for pinned matrix keys."""

    def test_key_pinned(self) -> None:
        """A fully pinned matrix renders its only combination."""
        m = Matrix(require={"arch": ["amd64"], "os": ["linux"]}, options={"z": ["on"]})
        assert m.key() == "amd64-linux|on"
        assert str(m) == "amd64-linux|on"

    def test_key_ambiguous(self, full_matrix: Matrix) -> None:
        """Several combinations cannot form one key."""
        with pytest.raises(ValueError):
            full_matrix.key()

    def test_key_empty(self) -> None:
        """An empty matrix has no key."""
        with pytest.raises(ValueError):
            Matrix().key()

    def test_host(self) -> None:
        """The host matrix should be pinned to arch and os."""
        host = Matrix.host()
        assert set(host.require) == {"arch", "os"}
        assert host.key().count("-") == 1

    @pytest.mark.parametrize("key", ["amd64-linux", "amd64-linux|zlibON", "arm64"])
    def test_parse_round_trip(self, key: str) -> None:
        """parse should produce a matrix whose key is the input."""
        assert Matrix.parse(key).key() == key

    @pytest.mark.parametrize("key", ["", "amd64--linux", "|on", "amd64|"])
    def test_parse_invalid(self, key: str) -> None:
        """Empty keys or values should be rejected."""
        with pytest.raises(ValueError):
            Matrix.parse(key)
