# src/chainmirror/engine/worker.py
"""IngestionWorker: fetch one record from the source and persist it.

Per sequence number the worker:
1. Resolves the record identity
2. Fetches the record body
3. Upserts the record row with ``complete = false``
4. Fetches the event log
5. Derives each sub-entry's outcome from the events and upserts it
6. Marks the record complete

Every step is an idempotent upsert, so calling ingest() again for a number
whose previous attempt failed midway converges to the same rows.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import TypeVar

import structlog

from chainmirror.contracts.errors import FetchError
from chainmirror.contracts.records import (
    EventPhase,
    IngestedRecord,
    OutcomeEvent,
    RawSubEntry,
    Record,
    SubRecord,
)
from chainmirror.contracts.source import ChainSource
from chainmirror.core.canonical import canonical_json
from chainmirror.core.store.repository import RecordStore
from chainmirror.engine.retry import MaxRetriesExceeded, RetryConfig, RetryManager

logger = structlog.get_logger(__name__)

T = TypeVar("T")

FAILURE_MARKER_CATEGORY = "system"
FAILURE_MARKER_NAME = "ExtrinsicFailed"


def is_failure_marker(event: OutcomeEvent) -> bool:
    """True for the event a chain emits when a sub-entry's dispatch failed."""
    return event.category.lower() == FAILURE_MARKER_CATEGORY and event.name == FAILURE_MARKER_NAME


def failure_detail_of(event: OutcomeEvent) -> str:
    """Canonical JSON of a failure marker's dispatch error.

    Module errors carry the interesting part under ``Module`` (``module`` in
    some encodings); other dispatch errors are stored whole.
    """
    if not event.data:
        return canonical_json([])
    dispatch_error = event.data[0]
    if isinstance(dispatch_error, dict):
        for key in ("Module", "module"):
            if key in dispatch_error:
                return canonical_json(dispatch_error[key])
    return canonical_json(dispatch_error)


def correlate_events(events: Sequence[OutcomeEvent]) -> dict[int, list[OutcomeEvent]]:
    """Group apply-phase events by the sub-entry position they belong to."""
    by_position: dict[int, list[OutcomeEvent]] = {}
    for event in events:
        if event.phase != EventPhase.APPLY_EXTRINSIC or event.index is None:
            continue
        by_position.setdefault(event.index, []).append(event)
    return by_position


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, FetchError) and error.retryable


class IngestionWorker:
    """Ingests single records. Safe to call from many threads at once.

    Example:
        worker = IngestionWorker(source, store, RetryManager(RetryConfig()))
        ingested = worker.ingest(42)
        print(ingested.sub_record_count, ingested.failed_sub_record_count)
    """

    def __init__(
        self,
        source: ChainSource,
        store: RecordStore,
        retry: RetryManager | None = None,
    ) -> None:
        self._source = source
        self._store = store
        self._retry = retry if retry is not None else RetryManager(RetryConfig())

    def ingest(self, sequence_number: int) -> IngestedRecord:
        """Fetch and persist one record, then mark it complete.

        Raises:
            FetchError: If a source call fails (after retries for transient errors)
            PersistenceError: If a store write fails
        """
        identity = self._fetch(
            lambda: self._source.identity_of(sequence_number),
            operation="identity_of",
            sequence_number=sequence_number,
        )
        body = self._fetch(
            lambda: self._source.body_of(identity),
            operation="body_of",
            sequence_number=sequence_number,
        )

        self._store.upsert_record(
            Record(
                identity=body.identity,
                parent_identity=body.parent_identity,
                sequence_number=body.sequence_number,
                complete=False,
            )
        )

        events = self._fetch(
            lambda: self._source.event_log_of(identity),
            operation="event_log_of",
            sequence_number=sequence_number,
        )
        by_position = correlate_events(events)

        failed = 0
        for position, entry in enumerate(body.raw_sub_entries):
            sub_record = _build_sub_record(body.identity, position, entry, by_position.get(position, ()))
            if not sub_record.outcome:
                failed += 1
            self._store.upsert_sub_record(sub_record)

        self._store.set_complete(body.identity)

        logger.debug(
            "record_ingested",
            sequence_number=body.sequence_number,
            identity=body.identity,
            sub_records=len(body.raw_sub_entries),
            failed_sub_records=failed,
        )
        return IngestedRecord(
            sequence_number=body.sequence_number,
            identity=body.identity,
            sub_record_count=len(body.raw_sub_entries),
            failed_sub_record_count=failed,
        )

    def _fetch(self, call: Callable[[], T], *, operation: str, sequence_number: int) -> T:
        """Run a source call under the retry policy.

        Exhausted retries surface as a non-retryable FetchError so callers
        see one error type for every source failure.
        """

        def on_retry(attempt: int, error: BaseException) -> None:
            logger.warning(
                "fetch_retry",
                operation=operation,
                sequence_number=sequence_number,
                attempt=attempt + 1,
                max_attempts=self._retry.config.max_attempts,
                error=str(error),
            )

        try:
            return self._retry.execute_with_retry(call, is_retryable=_is_retryable, on_retry=on_retry)
        except MaxRetriesExceeded as e:
            raise FetchError(
                f"{operation}({sequence_number}) failed after {e.attempts} attempts: {e.last_error}",
                retryable=False,
            ) from e.last_error


def _build_sub_record(
    record_identity: str,
    position: int,
    entry: RawSubEntry,
    events: Sequence[OutcomeEvent],
) -> SubRecord:
    # No correlated events means nothing reported a failure
    marker = next((event for event in events if is_failure_marker(event)), None)
    return SubRecord(
        record_identity=record_identity,
        position=position,
        origin=entry.origin,
        sequence_tag=entry.sequence_tag,
        category=entry.category,
        operation=entry.operation,
        payload=canonical_json(entry.arguments),
        outcome=marker is None,
        failure_detail=failure_detail_of(marker) if marker is not None else None,
    )
