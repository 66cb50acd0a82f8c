"""Shared contracts for cross-boundary data types.

This package is a LEAF MODULE: it imports nothing from core, engine or
sources. Settings classes live in chainmirror.core.config.
"""

from chainmirror.contracts.enums import FailurePolicy, SourceBackend
from chainmirror.contracts.errors import (
    AggregateWorkError,
    ChainMirrorError,
    ConfigurationError,
    FetchError,
    ItemFailure,
    PersistenceError,
    WorkItemFailed,
)
from chainmirror.contracts.progress import NullProgressReporter, ProgressReporter
from chainmirror.contracts.records import (
    EventPhase,
    IngestedRecord,
    OutcomeEvent,
    RawSubEntry,
    Record,
    RecordBody,
    StoreSummary,
    SubRecord,
)
from chainmirror.contracts.source import ChainSource

__all__ = [
    "AggregateWorkError",
    "ChainMirrorError",
    "ChainSource",
    "ConfigurationError",
    "EventPhase",
    "FailurePolicy",
    "FetchError",
    "IngestedRecord",
    "ItemFailure",
    "NullProgressReporter",
    "OutcomeEvent",
    "PersistenceError",
    "ProgressReporter",
    "RawSubEntry",
    "Record",
    "RecordBody",
    "SourceBackend",
    "StoreSummary",
    "SubRecord",
    "WorkItemFailed",
]
