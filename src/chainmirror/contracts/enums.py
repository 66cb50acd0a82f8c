# src/chainmirror/contracts/enums.py
"""Enumerations shared by configuration and the engine."""

from enum import StrEnum


class FailurePolicy(StrEnum):
    """What the scheduler does when a work item fails.

    FAIL_FAST: stop dispatching new items, let outstanding ones finish, then
        raise the first failure.
    BEST_EFFORT: keep dispatching, collect every failure, raise them together
        once all items have run.
    """

    FAIL_FAST = "fail_fast"
    BEST_EFFORT = "best_effort"


class SourceBackend(StrEnum):
    """Chain source implementations."""

    SIDECAR = "sidecar"
    SUBSTRATE = "substrate"
