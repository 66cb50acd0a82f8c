# tests/engine/test_scheduler.py
"""Tests for BoundedScheduler."""

from __future__ import annotations

import random
import threading
import time

import pytest

from chainmirror.contracts import (
    AggregateWorkError,
    ConfigurationError,
    FailurePolicy,
    WorkItemFailed,
)
from chainmirror.engine.scheduler import BoundedScheduler


class RecordingProgress:
    """ProgressReporter that records every call."""

    def __init__(self) -> None:
        self.started_with: int | None = None
        self.advances = 0
        self.finished = False
        self.threads: set[int] = set()

    def start(self, total: int) -> None:
        self.started_with = total

    def advance(self) -> None:
        self.advances += 1
        self.threads.add(threading.get_ident())

    def finish(self) -> None:
        self.finished = True


class ConcurrencyProbe:
    """Work function that tracks how many invocations run at once."""

    def __init__(self, *, max_delay: float = 0.01, seed: int = 1234) -> None:
        self._lock = threading.Lock()
        self._rng = random.Random(seed)
        self._max_delay = max_delay
        self.running = 0
        self.peak = 0
        self.started: list[int] = []
        self.finished: list[int] = []

    def __call__(self, item: int) -> int:
        with self._lock:
            self.running += 1
            self.peak = max(self.peak, self.running)
            self.started.append(item)
            delay = self._rng.uniform(0, self._max_delay)
        try:
            time.sleep(delay)
            return item * item
        finally:
            with self._lock:
                self.running -= 1
                self.finished.append(item)


class TestBoundedScheduler:
    """Concurrency bound, ordering and progress."""

    def test_results_follow_input_order(self) -> None:
        probe = ConcurrencyProbe()
        items = list(range(40))

        results = BoundedScheduler(7).run(items, probe)

        assert results == [i * i for i in items]

    @pytest.mark.parametrize("limit", [1, 3, 8])
    def test_never_exceeds_concurrency_limit(self, limit: int) -> None:
        probe = ConcurrencyProbe(seed=limit)
        scheduler = BoundedScheduler(limit)

        scheduler.run(list(range(30)), probe)

        assert probe.peak <= limit
        assert scheduler.peak_outstanding == limit

    def test_limit_larger_than_input(self) -> None:
        probe = ConcurrencyProbe()
        scheduler = BoundedScheduler(100)

        assert scheduler.run([1, 2, 3], probe) == [1, 4, 9]
        assert scheduler.peak_outstanding == 3

    def test_dispatch_follows_input_order_with_limit_one(self) -> None:
        probe = ConcurrencyProbe()

        BoundedScheduler(1).run([5, 3, 9, 1], probe)

        assert probe.started == [5, 3, 9, 1]
        assert probe.peak == 1

    def test_greedy_dispatch_does_not_wait_for_slow_items(self) -> None:
        """A slow item must not hold back the items queued behind the others."""
        release = threading.Event()
        done_while_blocked: list[int] = []

        def work(item: int) -> int:
            if item == 0:
                assert release.wait(timeout=5)
            else:
                done_while_blocked.append(item)
                if len(done_while_blocked) == 5:
                    release.set()
            return item

        results = BoundedScheduler(2).run(list(range(6)), work)

        assert results == list(range(6))
        assert sorted(done_while_blocked) == [1, 2, 3, 4, 5]

    def test_progress_advances_once_per_item(self) -> None:
        progress = RecordingProgress()

        BoundedScheduler(4, progress=progress).run(list(range(25)), ConcurrencyProbe())

        assert progress.started_with == 25
        assert progress.advances == 25
        assert progress.finished
        assert progress.threads == {threading.get_ident()}

    def test_empty_input_returns_empty_list(self) -> None:
        progress = RecordingProgress()

        assert BoundedScheduler(3, progress=progress).run([], ConcurrencyProbe()) == []
        assert progress.started_with is None
        assert progress.advances == 0

    @pytest.mark.parametrize("limit", [0, -1])
    def test_invalid_limit_rejected(self, limit: int) -> None:
        with pytest.raises(ConfigurationError, match="Concurrency limit"):
            BoundedScheduler(limit)


class TestFailFast:
    """FAIL_FAST stops dispatching and drains outstanding work."""

    def test_raises_work_item_failed_with_cause(self) -> None:
        boom = ValueError("bad block")

        def work(item: int) -> int:
            if item == 2:
                raise boom
            return item

        with pytest.raises(WorkItemFailed) as exc_info:
            BoundedScheduler(1).run([0, 1, 2, 3, 4], work)

        assert exc_info.value.item == 2
        assert exc_info.value.failure.index == 2
        assert exc_info.value.__cause__ is boom

    def test_unstarted_items_never_run(self) -> None:
        started: list[int] = []

        def work(item: int) -> int:
            started.append(item)
            if item == 2:
                raise RuntimeError("stop")
            return item

        with pytest.raises(WorkItemFailed):
            BoundedScheduler(1).run(list(range(10)), work)

        assert started == [0, 1, 2]

    def test_outstanding_invocations_drain_before_raise(self) -> None:
        probe = ConcurrencyProbe(max_delay=0.02)

        def work(item: int) -> int:
            if item == 3:
                raise RuntimeError("stop")
            return probe(item)

        with pytest.raises(WorkItemFailed):
            BoundedScheduler(4).run(list(range(50)), work)

        assert probe.running == 0
        assert sorted(probe.started) == sorted(probe.finished)
        assert len(probe.started) < 49

    def test_progress_counts_failed_and_drained_items(self) -> None:
        progress = RecordingProgress()
        calls: list[int] = []
        lock = threading.Lock()

        def work(item: int) -> int:
            with lock:
                calls.append(item)
            if item == 1:
                raise RuntimeError("stop")
            return item

        with pytest.raises(WorkItemFailed):
            BoundedScheduler(2, progress=progress).run(list(range(20)), work)

        assert progress.advances == len(calls)
        assert progress.finished


class TestBestEffort:
    """BEST_EFFORT runs everything and aggregates failures."""

    def test_all_items_run_and_failures_aggregate(self) -> None:
        started: list[int] = []
        lock = threading.Lock()

        def work(item: int) -> str:
            with lock:
                started.append(item)
            if item in (1, 3):
                raise KeyError(item)
            return f"ok-{item}"

        scheduler = BoundedScheduler(2, failure_policy=FailurePolicy.BEST_EFFORT)
        with pytest.raises(AggregateWorkError) as exc_info:
            scheduler.run(list(range(6)), work)

        error = exc_info.value
        assert sorted(started) == list(range(6))
        assert [f.index for f in error.failures] == [1, 3]
        assert all(isinstance(f.error, KeyError) for f in error.failures)
        assert error.results == ["ok-0", None, "ok-2", None, "ok-4", "ok-5"]

    def test_no_failures_returns_results(self) -> None:
        scheduler = BoundedScheduler(3, failure_policy=FailurePolicy.BEST_EFFORT)

        assert scheduler.run([1, 2, 3], lambda x: x + 1) == [2, 3, 4]

    def test_progress_counts_every_item(self) -> None:
        progress = RecordingProgress()

        def work(item: int) -> int:
            if item % 2:
                raise RuntimeError(item)
            return item

        scheduler = BoundedScheduler(3, failure_policy=FailurePolicy.BEST_EFFORT, progress=progress)
        with pytest.raises(AggregateWorkError):
            scheduler.run(list(range(9)), work)

        assert progress.advances == 9
