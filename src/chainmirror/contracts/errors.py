# src/chainmirror/contracts/errors.py
"""Exception hierarchy for chainmirror.

Each subsystem raises its own error type so the CLI can decide how to report
it. Scheduler outcomes (WorkItemFailed, AggregateWorkError) wrap the original
per-item errors rather than replacing them.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any


class ChainMirrorError(Exception):
    """Base exception for all chainmirror failures."""


class ConfigurationError(ChainMirrorError):
    """Raised for missing or invalid settings, before any work starts.

    Never retried.
    """


class FetchError(ChainMirrorError):
    """Raised when a chain source call fails.

    Attributes:
        retryable: True for transient conditions (network errors, 5xx, 429).
            Not-found and malformed responses are not retryable.
    """

    def __init__(self, message: str, *, retryable: bool) -> None:
        super().__init__(message)
        self.retryable = retryable


class PersistenceError(ChainMirrorError):
    """Raised when a store read or write fails."""


@dataclass(frozen=True)
class ItemFailure:
    """One failed work item, as observed by the scheduler."""

    index: int
    item: Any
    error: BaseException


class WorkItemFailed(ChainMirrorError):
    """Raised by a fail-fast scheduler run for the first failed item.

    The original error is chained as ``__cause__`` and kept on ``failure``.
    """

    def __init__(self, failure: ItemFailure) -> None:
        super().__init__(f"Work item {failure.item!r} failed: {type(failure.error).__name__}: {failure.error}")
        self.failure = failure

    @property
    def item(self) -> Any:
        return self.failure.item


class AggregateWorkError(ChainMirrorError):
    """Raised by a best-effort scheduler run when any item failed.

    Attributes:
        failures: Failures ordered by item index.
        results: Result slots for every item; failed slots hold None.
    """

    def __init__(self, failures: Sequence[ItemFailure], results: Sequence[Any]) -> None:
        self.failures = tuple(sorted(failures, key=lambda f: f.index))
        self.results = list(results)
        first = self.failures[0]
        super().__init__(
            f"{len(self.failures)} of {len(self.results)} work items failed; "
            f"first: {first.item!r}: {type(first.error).__name__}: {first.error}"
        )
