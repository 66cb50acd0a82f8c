# src/chainmirror/engine/planner.py
"""Range planning: which sequence numbers still need ingesting.

The plan is always recomputed from the live head and the store's completed
set. Nothing is cached between runs because the chain grows between them.
"""

from __future__ import annotations

from collections.abc import Set

import structlog

from chainmirror.contracts.errors import ConfigurationError
from chainmirror.contracts.source import ChainSource
from chainmirror.core.config import IngestSettings
from chainmirror.core.store.repository import RecordStore

logger = structlog.get_logger(__name__)


def plan_pending(
    head: int,
    completed: Set[int],
    *,
    upper_bound_cap: int | None = None,
    max_count: int | None = None,
    latest_first: bool = False,
) -> list[int]:
    """Compute the ordered sequence numbers still to ingest.

    Args:
        head: Highest known sequence number at the source
        completed: Sequence numbers already fully stored; values outside the
            planned range are ignored
        upper_bound_cap: Exclusive cap. When ``cap <= head`` the range ends
            at ``cap - 1``; a cap above head changes nothing
        max_count: Keep only the first N pending numbers (ascending order)
        latest_first: Reverse the truncated list

    Returns:
        Pending sequence numbers. Truncation happens before reversal, so
        ``latest_first`` yields the newest of the *oldest* N pending numbers.

    Raises:
        ConfigurationError: If head, cap or max_count is negative
    """
    if head < 0:
        raise ConfigurationError(f"Source head must be >= 0, got {head}")
    if upper_bound_cap is not None and upper_bound_cap < 0:
        raise ConfigurationError(f"Upper bound cap must be >= 0, got {upper_bound_cap}")
    if max_count is not None and max_count < 0:
        raise ConfigurationError(f"max_count must be >= 0, got {max_count}")

    upper = head
    if upper_bound_cap is not None and upper_bound_cap <= head:
        upper = upper_bound_cap - 1

    pending = [n for n in range(upper + 1) if n not in completed]
    if max_count is not None:
        pending = pending[:max_count]
    if latest_first:
        pending.reverse()
    return pending


class RangePlanner:
    """Plans a run against the live source head and the store.

    Example:
        planner = RangePlanner(source, store, settings.ingest)
        for number in planner.plan():
            ...
    """

    def __init__(self, source: ChainSource, store: RecordStore, settings: IngestSettings) -> None:
        self._source = source
        self._store = store
        self._settings = settings

    def plan(self) -> list[int]:
        """Read head and completed set now and return the pending numbers.

        Raises:
            FetchError: If the head cannot be read
            PersistenceError: If the completed set cannot be read
            ConfigurationError: If the source reports a negative head
        """
        head = self._source.current_head()
        completed = self._store.completed_sequence_numbers()
        pending = plan_pending(
            head,
            completed,
            upper_bound_cap=self._settings.up_to,
            max_count=self._settings.max_count,
            latest_first=self._settings.latest_first,
        )
        logger.info(
            "ingest_planned",
            head=head,
            completed=len(completed),
            pending=len(pending),
            up_to=self._settings.up_to,
            max_count=self._settings.max_count,
            latest_first=self._settings.latest_first,
        )
        return pending
