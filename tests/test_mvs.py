"""Tests for mvs/resolver.py module.

The dependency graphs are plain dicts; versions use GNU ordering.
"""

import threading
from collections import Counter

import pytest

from llar.errors import ManifestError, ResolutionError
from llar.mvs.resolver import ModuleRequirements, build_list, req
from llar.mvs.versions import gnu_compare
from llar.types import ModuleRef


def _ref(s: str) -> ModuleRef:
    return ModuleRef.parse(s)


def _refs(*items: str) -> list[ModuleRef]:
    return [_ref(s) for s in items]


def _reqs(
    main: str,
    graph: dict[str, list[str]],
    calls: Counter | None = None,
) -> ModuleRequirements:
    """Build Requirements for main over graph ("path@ver" -> requirements)."""
    main_ref = _ref(main)
    lock = threading.Lock()

    def on_load(m: ModuleRef) -> list[ModuleRef]:
        if calls is not None:
            with lock:
                calls[m] += 1
        return _refs(*graph[str(m)])

    return ModuleRequirements(
        roots=_refs(*graph[main]),
        is_main=lambda m: m == main_ref,
        cmp=lambda path, v1, v2: gnu_compare(v1, v2),
        on_load=on_load,
    )


DIAMOND = {
    "a/a@1": ["b/b@1", "c/c@2"],
    "b/b@1": ["d/d@3"],
    "c/c@1": ["d/d@2"],
    "c/c@2": ["d/d@4"],
    "d/d@2": [],
    "d/d@3": [],
    "d/d@4": [],
}


class TestBuildList:
    """Tests for build_list function."""

    def test_diamond_selects_maximum(self) -> None:
        """Each path should be selected at its highest required version."""
        result = build_list([_ref("a/a@1")], _reqs("a/a@1", DIAMOND))
        assert result == _refs("a/a@1", "b/b@1", "c/c@2", "d/d@4")

    def test_main_first_rest_sorted(self) -> None:
        """Main should come first even when its path sorts last."""
        graph = {"z/z@1": ["b/b@1", "a/a@1"], "a/a@1": [], "b/b@1": []}
        result = build_list([_ref("z/z@1")], _reqs("z/z@1", graph))
        assert result == _refs("z/z@1", "a/a@1", "b/b@1")

    def test_confluent_across_worker_counts(self) -> None:
        """The result should not depend on the degree of parallelism."""
        expected = build_list([_ref("a/a@1")], _reqs("a/a@1", DIAMOND), workers=1)
        for workers in (2, 4, 16):
            for _ in range(5):
                got = build_list([_ref("a/a@1")], _reqs("a/a@1", DIAMOND), workers)
                assert got == expected

    def test_superseded_versions_still_expanded(self) -> None:
        """Requirements of a lower selected-then-raised version still count."""
        graph = {
            "a/a@1": ["b/b@1", "c/c@2"],
            "b/b@1": ["c/c@1"],
            "c/c@1": ["e/e@1"],
            "c/c@2": [],
            "e/e@1": [],
        }
        result = build_list([_ref("a/a@1")], _reqs("a/a@1", graph))
        assert result == _refs("a/a@1", "b/b@1", "c/c@2", "e/e@1")

    def test_main_version_always_wins(self) -> None:
        """A dependency requiring a newer main should not displace it."""
        graph = {"a/a@1": ["b/b@1"], "b/b@1": ["a/a@2"]}
        result = build_list([_ref("a/a@1")], _reqs("a/a@1", graph))
        assert result == _refs("a/a@1", "b/b@1")

    def test_none_version_omitted(self) -> None:
        """Paths selected only at 'none' should not appear."""
        graph = {"a/a@1": ["b/b@none", "c/c@1"], "c/c@1": []}
        result = build_list([_ref("a/a@1")], _reqs("a/a@1", graph))
        assert result == _refs("a/a@1", "c/c@1")

    def test_none_loses_to_concrete(self) -> None:
        """A concrete requirement should beat 'none' for the same path."""
        graph = {
            "a/a@1": ["b/b@none", "c/c@1"],
            "c/c@1": ["b/b@0.1"],
            "b/b@0.1": [],
        }
        result = build_list([_ref("a/a@1")], _reqs("a/a@1", graph))
        assert result == _refs("a/a@1", "b/b@0.1", "c/c@1")

    def test_cycle_terminates(self) -> None:
        """Cyclic requirements should resolve without looping."""
        graph = {"a/a@1": ["b/b@1"], "b/b@1": ["c/c@1"], "c/c@1": ["b/b@1"]}
        result = build_list([_ref("a/a@1")], _reqs("a/a@1", graph))
        assert result == _refs("a/a@1", "b/b@1", "c/c@1")

    def test_on_load_called_once_per_module(self) -> None:
        """Each module's requirements should be loaded at most once."""
        calls: Counter = Counter()
        build_list([_ref("a/a@1")], _reqs("a/a@1", DIAMOND, calls), workers=8)
        assert calls
        assert all(n == 1 for n in calls.values())

    def test_empty_targets(self) -> None:
        """No targets should give an empty build list."""
        assert build_list([], _reqs("a/a@1", DIAMOND)) == []

    def test_load_error_wrapped(self) -> None:
        """Arbitrary load failures should surface as ResolutionError."""
        graph = {"a/a@1": ["b/b@1"]}
        with pytest.raises(ResolutionError):
            build_list([_ref("a/a@1")], _reqs("a/a@1", graph))

    def test_llar_error_wrapped(self) -> None:
        """Non-resolution llar errors should also become ResolutionError."""

        def on_load(m: ModuleRef) -> list[ModuleRef]:
            raise ManifestError(f"no manifest for {m}")

        reqs = ModuleRequirements(
            roots=_refs("b/b@1"),
            is_main=lambda m: m == _ref("a/a@1"),
            cmp=lambda path, v1, v2: gnu_compare(v1, v2),
            on_load=on_load,
        )
        with pytest.raises(ResolutionError, match="no manifest"):
            build_list([_ref("a/a@1")], reqs)

    def test_resolution_error_passes_through(self) -> None:
        """ResolutionError raised by a loader should keep its code."""

        def on_load(m: ModuleRef) -> list[ModuleRef]:
            raise ResolutionError("gone", code="no_tags")

        reqs = ModuleRequirements(
            roots=_refs("b/b@1"),
            is_main=lambda m: m == _ref("a/a@1"),
            cmp=lambda path, v1, v2: gnu_compare(v1, v2),
            on_load=on_load,
        )
        with pytest.raises(ResolutionError) as exc_info:
            build_list([_ref("a/a@1")], reqs)
        assert exc_info.value.code == "no_tags"


class TestModuleRequirements:
    """Tests for ModuleRequirements."""

    def test_main_returns_roots(self) -> None:
        """The main module's requirements should be the roots."""
        reqs = _reqs("a/a@1", DIAMOND)
        assert reqs.required(_ref("a/a@1")) == _refs("b/b@1", "c/c@2")

    def test_none_has_no_requirements(self) -> None:
        """'none' versions should not be loaded."""
        reqs = _reqs("a/a@1", DIAMOND)
        assert reqs.required(_ref("x/x@none")) == []

    def test_max(self) -> None:
        """max should honor the comparator and the none sentinel."""
        reqs = _reqs("a/a@1", DIAMOND)
        assert reqs.max("d/d", "1.10", "1.9") == "1.10"
        assert reqs.max("d/d", "none", "0.1") == "0.1"
        assert reqs.max("a/a", "1", "9") == "1"

    def test_required_returns_copy(self) -> None:
        """Callers mutating the result should not affect the cache."""
        reqs = _reqs("a/a@1", DIAMOND)
        first = reqs.required(_ref("b/b@1"))
        first.clear()
        assert reqs.required(_ref("b/b@1")) == _refs("d/d@3")


class TestReq:
    """Tests for the req minimization function."""

    def test_drops_implied_requirement(self) -> None:
        """A requirement implied by another should be dropped."""
        graph = {
            "a/a@1": ["b/b@1", "c/c@1", "d/d@1"],
            "b/b@1": ["d/d@1"],
            "c/c@1": [],
            "d/d@1": [],
        }
        result = req(_ref("a/a@1"), [], _reqs("a/a@1", graph))
        assert result == _refs("b/b@1", "c/c@1")

    def test_base_paths_kept(self) -> None:
        """Paths listed in base should be kept even when implied."""
        graph = {
            "a/a@1": ["b/b@1", "d/d@1"],
            "b/b@1": ["d/d@1"],
            "d/d@1": [],
        }
        result = req(_ref("a/a@1"), ["d/d", "d/d"], _reqs("a/a@1", graph))
        assert result == _refs("b/b@1", "d/d@1")

    def test_outdated_requirement_dropped(self) -> None:
        """A requirement below the selected version should not be listed."""
        graph = {
            "a/a@1": ["b/b@1", "d/d@1"],
            "b/b@1": ["d/d@2"],
            "d/d@1": [],
            "d/d@2": [],
        }
        result = req(_ref("a/a@1"), [], _reqs("a/a@1", graph))
        assert result == _refs("b/b@1")

    def test_deep_chain(self) -> None:
        """Chains deeper than the interpreter stack should still minimize."""
        depth = 3000
        graph = {"app/main@1": ["chain/m0@1"], f"chain/m{depth}@1": []}
        for i in range(depth):
            graph[f"chain/m{i}@1"] = [f"chain/m{i + 1}@1"]

        reqs = _reqs("app/main@1", graph)
        assert len(build_list([_ref("app/main@1")], reqs)) == depth + 2
        result = req(_ref("app/main@1"), ["chain/m100"], _reqs("app/main@1", graph))
        assert result == _refs("chain/m0@1", "chain/m100@1")

    def test_preserves_build_list(self) -> None:
        """The minimal list should produce the same build list."""
        main = _ref("a/a@1")
        full = build_list([main], _reqs("a/a@1", DIAMOND))
        minimal = req(main, [], _reqs("a/a@1", DIAMOND))

        graph = dict(DIAMOND)
        graph["a/a@1"] = [str(m) for m in minimal]
        assert build_list([main], _reqs("a/a@1", graph)) == full
