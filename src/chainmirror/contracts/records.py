# src/chainmirror/contracts/records.py
"""Record types crossing the source, engine and store boundaries.

Source-side shapes (RecordBody, RawSubEntry, OutcomeEvent) describe what a
chain source returns. Store-side shapes (Record, SubRecord) mirror one row of
the ``records`` and ``subrecords`` tables exactly.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class EventPhase(StrEnum):
    """Phase of block execution an event was emitted in.

    Only APPLY_EXTRINSIC events carry an index that correlates them to a
    sub-entry position.
    """

    APPLY_EXTRINSIC = "applied"
    INITIALIZATION = "initialization"
    FINALIZATION = "finalization"


@dataclass(frozen=True)
class RawSubEntry:
    """One undecoded-for-storage extrinsic as returned by a source.

    Attributes:
        origin: Signer account, None for unsigned extrinsics
        sequence_tag: Signer nonce, None for unsigned extrinsics
        category: Pallet/module name (e.g. "balances")
        operation: Call name (e.g. "transfer")
        arguments: Call arguments, JSON-compatible
    """

    origin: str | None
    sequence_tag: int | None
    category: str
    operation: str
    arguments: Any


@dataclass(frozen=True)
class RecordBody:
    """Full block body fetched by identity."""

    identity: str
    parent_identity: str | None
    sequence_number: int
    raw_sub_entries: tuple[RawSubEntry, ...]


@dataclass(frozen=True)
class OutcomeEvent:
    """One entry of a block's event log.

    Attributes:
        phase: Execution phase the event was emitted in
        index: Extrinsic position for APPLY_EXTRINSIC events, else None
        category: Emitting pallet/module (e.g. "System")
        name: Event name (e.g. "ExtrinsicFailed")
        data: Event payload items, JSON-compatible
    """

    phase: EventPhase
    index: int | None
    category: str
    name: str
    data: tuple[Any, ...] = ()


@dataclass(frozen=True)
class Record:
    """One row of the ``records`` table."""

    identity: str
    parent_identity: str | None
    sequence_number: int
    complete: bool = False


@dataclass(frozen=True)
class SubRecord:
    """One row of the ``subrecords`` table.

    ``payload`` and ``failure_detail`` hold canonical JSON text so that
    re-ingesting the same block writes byte-identical rows.
    """

    record_identity: str
    position: int
    origin: str | None
    sequence_tag: int | None
    category: str
    operation: str
    payload: str
    outcome: bool
    failure_detail: str | None = None

    def __post_init__(self) -> None:
        if self.outcome and self.failure_detail is not None:
            raise ValueError(f"SubRecord {self.record_identity}:{self.position} succeeded but carries a failure_detail")
        if not self.outcome and not self.failure_detail:
            raise ValueError(f"SubRecord {self.record_identity}:{self.position} failed without a failure_detail")


@dataclass(frozen=True)
class IngestedRecord:
    """Result of one successful worker invocation."""

    sequence_number: int
    identity: str
    sub_record_count: int
    failed_sub_record_count: int


@dataclass(frozen=True)
class StoreSummary:
    """Aggregate view of what a store holds."""

    total_records: int
    complete_records: int
    highest_complete: int | None
