"""Tests for mvs/par.py module."""

import threading

import pytest

from llar.mvs.par import Work


class TestWork:
    """Tests for the Work worklist."""

    def test_processes_dynamically_added_items_once(self) -> None:
        """Items added from fn should be processed, each exactly once."""
        work: Work[int] = Work()
        seen: list[int] = []
        lock = threading.Lock()

        def fn(n: int) -> None:
            with lock:
                seen.append(n)
            # Every item fans out to the same children, so most adds repeat.
            for child in (n * 2, n * 2 + 1):
                if child < 64:
                    work.add(child)

        work.add(1)
        work.do(4, fn)

        assert sorted(seen) == list(range(1, 64))

    def test_duplicate_adds_ignored(self) -> None:
        """Adding the same item twice should process it once."""
        work: Work[str] = Work()
        calls: list[str] = []
        work.add("a")
        work.add("a")
        work.do(2, calls.append)
        assert calls == ["a"]

    def test_empty_returns_immediately(self) -> None:
        """Do on an empty set should return without calling fn."""
        work: Work[str] = Work()
        work.do(3, lambda item: pytest.fail("fn should not be called"))

    def test_error_is_reraised(self) -> None:
        """The first exception raised by fn should propagate from do."""
        work: Work[int] = Work()
        for i in range(10):
            work.add(i)

        def fn(n: int) -> None:
            if n == 5:
                raise ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            work.do(3, fn)

    def test_invalid_worker_count(self) -> None:
        """n below 1 should be rejected."""
        work: Work[int] = Work()
        with pytest.raises(ValueError):
            work.do(0, lambda item: None)

    def test_do_twice_rejected(self) -> None:
        """A Work should only be run once."""
        work: Work[int] = Work()
        work.add(1)
        work.do(1, lambda item: None)
        with pytest.raises(RuntimeError):
            work.do(1, lambda item: None)

    def test_respects_parallelism_bound(self) -> None:
        """No more than n items should run concurrently."""
        work: Work[int] = Work()
        lock = threading.Lock()
        active = 0
        peak = 0

        def fn(n: int) -> None:
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            threading.Event().wait(0.005)
            with lock:
                active -= 1

        for i in range(20):
            work.add(i)
        work.do(3, fn)
        assert 1 <= peak <= 3
