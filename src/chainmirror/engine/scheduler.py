# src/chainmirror/engine/scheduler.py
"""Bounded, greedy, order-preserving work scheduler.

Runs a callable over a list of items on a thread pool while:
- Keeping at most ``concurrency_limit`` invocations outstanding
- Dispatching the next unstarted item as soon as any invocation finishes
- Writing each result into the slot of its input index
- Signalling progress once per finished invocation, from the calling thread
- Applying an explicit failure policy (fail fast or best effort)
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Any, TypeVar

import structlog

from chainmirror.contracts.enums import FailurePolicy
from chainmirror.contracts.errors import (
    AggregateWorkError,
    ConfigurationError,
    ItemFailure,
    WorkItemFailed,
)
from chainmirror.contracts.progress import NullProgressReporter, ProgressReporter

logger = structlog.get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class BoundedScheduler:
    """Runs work over items with a fixed concurrency cap.

    The scheduler is synchronous from the caller's perspective: run() blocks
    until every dispatched invocation has finished, even when it raises.

    Usage:
        scheduler = BoundedScheduler(100, failure_policy=FailurePolicy.BEST_EFFORT)
        results = scheduler.run(pending, worker.ingest)
        assert len(results) == len(pending)
    """

    def __init__(
        self,
        concurrency_limit: int,
        *,
        failure_policy: FailurePolicy = FailurePolicy.FAIL_FAST,
        progress: ProgressReporter | None = None,
    ) -> None:
        """Initialize scheduler.

        Args:
            concurrency_limit: Maximum outstanding invocations (>= 1)
            failure_policy: What to do when an invocation raises
            progress: Reporter advanced once per finished invocation

        Raises:
            ConfigurationError: If concurrency_limit < 1
        """
        if concurrency_limit < 1:
            raise ConfigurationError(f"Concurrency limit must be >= 1, got {concurrency_limit}")
        self._limit = concurrency_limit
        self._failure_policy = failure_policy
        self._progress: ProgressReporter = progress if progress is not None else NullProgressReporter()
        self._peak_outstanding = 0

    @property
    def concurrency_limit(self) -> int:
        return self._limit

    @property
    def failure_policy(self) -> FailurePolicy:
        return self._failure_policy

    @property
    def peak_outstanding(self) -> int:
        """Highest number of simultaneously outstanding invocations in the last run."""
        return self._peak_outstanding

    def run(self, items: Sequence[T], work: Callable[[T], R]) -> list[R]:
        """Apply work to every item and return results in input order.

        Args:
            items: Work items; ``results[i]`` is ``work(items[i])``
            work: Callable invoked once per dispatched item, on a pool thread

        Returns:
            One result per item, in input order

        Raises:
            WorkItemFailed: FAIL_FAST policy, for the first observed failure.
                Items not yet dispatched at that point are never run.
            AggregateWorkError: BEST_EFFORT policy, if any item failed
        """
        items = list(items)
        self._peak_outstanding = 0
        if not items:
            return []

        total = len(items)
        slots: list[Any] = [None] * total
        failures: list[ItemFailure] = []
        outstanding: dict[Future[R], int] = {}
        next_index = 0
        stop_dispatch = False

        self._progress.start(total)
        try:
            with ThreadPoolExecutor(
                max_workers=min(self._limit, total),
                thread_name_prefix="chainmirror-worker",
            ) as pool:
                while outstanding or (next_index < total and not stop_dispatch):
                    # Refill up to the cap before waiting
                    while not stop_dispatch and next_index < total and len(outstanding) < self._limit:
                        outstanding[pool.submit(work, items[next_index])] = next_index
                        next_index += 1
                    self._peak_outstanding = max(self._peak_outstanding, len(outstanding))

                    done, _ = wait(outstanding, return_when=FIRST_COMPLETED)
                    for future in sorted(done, key=outstanding.__getitem__):
                        index = outstanding.pop(future)
                        error = future.exception()
                        if error is None:
                            slots[index] = future.result()
                        else:
                            failure = ItemFailure(index=index, item=items[index], error=error)
                            failures.append(failure)
                            self._log_failure(failure, dispatched=next_index, total=total)
                            if self._failure_policy == FailurePolicy.FAIL_FAST:
                                stop_dispatch = True
                        self._progress.advance()
        finally:
            self._progress.finish()

        if failures:
            if self._failure_policy == FailurePolicy.FAIL_FAST:
                first = failures[0]
                raise WorkItemFailed(first) from first.error
            raise AggregateWorkError(failures, slots)

        results: list[R] = slots
        return results

    def _log_failure(self, failure: ItemFailure, *, dispatched: int, total: int) -> None:
        logger.warning(
            "work_item_failed",
            item=failure.item,
            index=failure.index,
            error=str(failure.error),
            error_type=type(failure.error).__name__,
            policy=self._failure_policy.value,
            dispatched=dispatched,
            total=total,
        )
