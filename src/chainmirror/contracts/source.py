# src/chainmirror/contracts/source.py
"""Protocol every chain source implements.

Implementations own their transport, timeouts and wire decoding. Every call
may block on the network and raises FetchError on failure.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from chainmirror.contracts.records import OutcomeEvent, RecordBody


class ChainSource(Protocol):
    """Read-only access to a remote record series."""

    def current_head(self) -> int:
        """Highest known sequence number."""
        ...

    def identity_of(self, sequence_number: int) -> str:
        """Resolve a sequence number to its record identity (block hash)."""
        ...

    def body_of(self, identity: str) -> RecordBody:
        """Fetch the full record body, including raw sub-entries."""
        ...

    def event_log_of(self, identity: str) -> Sequence[OutcomeEvent]:
        """Fetch the event log emitted while executing the record."""
        ...

    def close(self) -> None:
        """Release transport resources."""
        ...
