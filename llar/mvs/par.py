"""Bounded-parallel dynamic worklist.

Work processes a set of hashable items, each at most once, with a fixed
number of runner threads. Items may be added while other items are being
processed, including from inside the processing function itself. Do
returns once the queue is empty and every runner is idle at the same time.
"""

from __future__ import annotations

import logging
import random
import threading
from collections.abc import Callable, Hashable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Hashable)


class Work(Generic[T]):
    """A set of work items executed in parallel, at most once each."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._wait = threading.Condition(self._lock)
        self._added: set[T] = set()
        self._todo: list[T] = []
        self._running = 0
        self._waiting = 0
        self._error: BaseException | None = None
        self._fn: Callable[[T], None] | None = None

    def add(self, item: T) -> None:
        """Add an item to the work set, if it has not been added already."""
        with self._lock:
            if item in self._added:
                return
            self._added.add(item)
            self._todo.append(item)
            if self._waiting > 0:
                self._wait.notify()

    def do(self, n: int, fn: Callable[[T], None]) -> None:
        """Run fn on every item in the work set with at most n in flight.

        At least one item should be added before calling do (otherwise it
        returns immediately). fn may add new items. If fn raises, no new
        items are started and the first exception is re-raised once all
        runners have stopped.

        Args:
            n: Maximum number of concurrent invocations of fn.
            fn: Function to run for each item.

        Raises:
            ValueError: If n is less than 1.
            RuntimeError: If do was already called on this Work.
        """
        if n < 1:
            raise ValueError("Work.do: n < 1")
        with self._lock:
            if self._running >= 1:
                raise RuntimeError("Work.do: already called do")
            self._running = n
            self._fn = fn

        threads = [
            threading.Thread(target=self._runner, name=f"llar-work-{i}", daemon=True)
            for i in range(n - 1)
        ]
        for t in threads:
            t.start()
        self._runner()
        for t in threads:
            t.join()

        if self._error is not None:
            raise self._error

    def _runner(self) -> None:
        """Execute items until nothing is left and all runners are waiting."""
        assert self._fn is not None
        while True:
            with self._lock:
                while not self._todo or self._error is not None:
                    self._waiting += 1
                    if self._waiting == self._running:
                        # All done.
                        self._wait.notify_all()
                        return
                    self._wait.wait()
                    self._waiting -= 1

                # Pick at random to avoid contention between items
                # that were added at about the same time.
                i = random.randrange(len(self._todo))
                item = self._todo[i]
                self._todo[i] = self._todo[-1]
                self._todo.pop()

            try:
                self._fn(item)
            except BaseException as e:
                logger.debug("Work item %r failed: %s", item, e)
                with self._lock:
                    if self._error is None:
                        self._error = e
                    self._wait.notify_all()


__all__ = ["Work"]
