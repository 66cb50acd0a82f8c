# src/chainmirror/engine/orchestrator.py
"""Run orchestration: plan, schedule and summarize one ingestion run.

The orchestrator owns no resources. Callers open the source and the store,
pass them in, and close them afterwards.
"""

from __future__ import annotations

import time
from dataclasses import dataclass

import structlog

from chainmirror.contracts.errors import AggregateWorkError, WorkItemFailed
from chainmirror.contracts.progress import ProgressReporter
from chainmirror.contracts.records import IngestedRecord, StoreSummary
from chainmirror.contracts.source import ChainSource
from chainmirror.core.config import ChainMirrorSettings
from chainmirror.core.store.repository import RecordStore
from chainmirror.engine.planner import RangePlanner, plan_pending
from chainmirror.engine.retry import RetryConfig, RetryManager
from chainmirror.engine.scheduler import BoundedScheduler
from chainmirror.engine.worker import IngestionWorker

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RunResult:
    """Outcome of a completed ingestion run."""

    planned: int
    ingested: int
    sub_records: int
    failed_sub_records: int
    duration_seconds: float


@dataclass(frozen=True)
class StoreStatus:
    """Store contents compared against the live source head."""

    head: int
    pending: int
    summary: StoreSummary


def run_ingestion(
    settings: ChainMirrorSettings,
    source: ChainSource,
    store: RecordStore,
    *,
    progress: ProgressReporter | None = None,
) -> RunResult:
    """Ingest every pending record once.

    Args:
        settings: Validated settings; ``ingest`` and ``retry`` sections apply
        source: Open chain source
        store: Record store to write into
        progress: Reporter advanced once per finished record

    Returns:
        RunResult for a run in which every planned record was ingested

    Raises:
        WorkItemFailed: fail_fast policy, first failed record
        AggregateWorkError: best_effort policy, if any record failed
        FetchError: If the head cannot be read while planning
        PersistenceError: If the completed set cannot be read while planning
    """
    started = time.monotonic()
    pending = RangePlanner(source, store, settings.ingest).plan()

    worker = IngestionWorker(source, store, RetryManager(RetryConfig.from_settings(settings.retry)))
    scheduler = BoundedScheduler(
        settings.ingest.concurrency,
        failure_policy=settings.ingest.failure_policy,
        progress=progress,
    )

    try:
        ingested: list[IngestedRecord] = scheduler.run(pending, worker.ingest)
    except WorkItemFailed as e:
        logger.error(
            "ingest_aborted",
            policy=settings.ingest.failure_policy.value,
            planned=len(pending),
            failed_item=e.item,
            error=str(e.failure.error),
            duration_seconds=round(time.monotonic() - started, 3),
        )
        raise
    except AggregateWorkError as e:
        logger.error(
            "ingest_aborted",
            policy=settings.ingest.failure_policy.value,
            planned=len(pending),
            failed=len(e.failures),
            failed_items=[f.item for f in e.failures],
            duration_seconds=round(time.monotonic() - started, 3),
        )
        raise

    result = RunResult(
        planned=len(pending),
        ingested=len(ingested),
        sub_records=sum(r.sub_record_count for r in ingested),
        failed_sub_records=sum(r.failed_sub_record_count for r in ingested),
        duration_seconds=time.monotonic() - started,
    )
    logger.info(
        "ingest_completed",
        planned=result.planned,
        ingested=result.ingested,
        sub_records=result.sub_records,
        failed_sub_records=result.failed_sub_records,
        duration_seconds=round(result.duration_seconds, 3),
    )
    return result


def store_status(settings: ChainMirrorSettings, source: ChainSource, store: RecordStore) -> StoreStatus:
    """Summarize the store and count what a run with these settings would ingest."""
    head = source.current_head()
    pending = plan_pending(
        head,
        store.completed_sequence_numbers(),
        upper_bound_cap=settings.ingest.up_to,
        max_count=settings.ingest.max_count,
        latest_first=settings.ingest.latest_first,
    )
    return StoreStatus(head=head, pending=len(pending), summary=store.summary())
