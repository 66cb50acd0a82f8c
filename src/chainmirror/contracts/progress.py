# src/chainmirror/contracts/progress.py
"""Progress reporting protocol.

The scheduler calls ``start`` once, ``advance`` exactly once per finished
work item (success or failure), and ``finish`` once. All calls happen on the
scheduler's dispatching thread.
"""

from __future__ import annotations

from typing import Protocol


class ProgressReporter(Protocol):
    """Receives one advance signal per completed item."""

    def start(self, total: int) -> None: ...

    def advance(self) -> None: ...

    def finish(self) -> None: ...


class NullProgressReporter:
    """No-op reporter for library use and tests.

    Does NOT inherit from anything: it satisfies ProgressReporter
    structurally, like any other reporter.
    """

    def start(self, total: int) -> None:
        pass

    def advance(self) -> None:
        pass

    def finish(self) -> None:
        pass
