# tests/conftest.py
"""Shared test fixtures.

Fixtures:
- store_db / store: in-memory SQLite record store shared across threads
- chain: FakeChain with head 10 and two extrinsics per block
- fast_retry: RetryManager with zero backoff so retry tests stay fast

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/engine/
"""

from __future__ import annotations

import os
from collections.abc import Iterator

import pytest
from hypothesis import Phase, Verbosity, settings

from chainmirror.core.store import RecordStore, StoreDB
from chainmirror.engine.retry import RetryConfig, RetryManager
from tests.helpers.fake_chain import FakeChain


@pytest.fixture
def store_db() -> Iterator[StoreDB]:
    db = StoreDB.in_memory()
    yield db
    db.close()


@pytest.fixture
def store(store_db: StoreDB) -> RecordStore:
    return RecordStore(store_db)


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain(head=10)


@pytest.fixture
def fast_retry() -> RetryManager:
    return RetryManager(RetryConfig(max_attempts=3, base_delay=0.0, max_delay=0.01, jitter=0.0))


# =============================================================================
# Hypothesis Configuration
# =============================================================================

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Disable deadline for CI (timing varies)
)

settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))
