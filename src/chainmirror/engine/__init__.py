# src/chainmirror/engine/__init__.py
"""Ingestion engine: planning, bounded scheduling, per-record work and retries."""

from chainmirror.engine.orchestrator import RunResult, StoreStatus, run_ingestion, store_status
from chainmirror.engine.planner import RangePlanner, plan_pending
from chainmirror.engine.retry import MaxRetriesExceeded, RetryConfig, RetryManager
from chainmirror.engine.scheduler import BoundedScheduler
from chainmirror.engine.worker import IngestionWorker

__all__ = [
    "BoundedScheduler",
    "IngestionWorker",
    "MaxRetriesExceeded",
    "RangePlanner",
    "RetryConfig",
    "RetryManager",
    "RunResult",
    "StoreStatus",
    "plan_pending",
    "run_ingestion",
    "store_status",
]
