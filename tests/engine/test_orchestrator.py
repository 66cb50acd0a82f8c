# tests/engine/test_orchestrator.py
"""Tests for run orchestration."""

from __future__ import annotations

from typing import Any

import pytest

from chainmirror.contracts import AggregateWorkError, WorkItemFailed
from chainmirror.core.config import ChainMirrorSettings, build_settings
from chainmirror.core.store import RecordStore
from chainmirror.engine.orchestrator import run_ingestion, store_status
from tests.helpers.fake_chain import FakeChain


def _settings(**ingest: Any) -> ChainMirrorSettings:
    return build_settings(
        {
            "source": {"url": "http://chain.invalid"},
            "ingest": {"concurrency": 4, **ingest},
            "retry": {"max_attempts": 2, "initial_delay_seconds": 0, "jitter_seconds": 0},
        }
    )


class TestRunIngestion:
    """run_ingestion wires planner, scheduler and worker together."""

    def test_ingests_every_pending_record(self, store: RecordStore) -> None:
        chain = FakeChain(head=9, failing_positions={3: {1}})

        result = run_ingestion(_settings(), chain, store)

        assert result.planned == 10
        assert result.ingested == 10
        assert result.sub_records == 20
        assert result.failed_sub_records == 1
        assert store.completed_sequence_numbers() == set(range(10))

    def test_second_run_has_nothing_to_do(self, store: RecordStore) -> None:
        chain = FakeChain(head=4)
        run_ingestion(_settings(), chain, store)
        body_calls = chain.calls["body_of"]

        result = run_ingestion(_settings(), chain, store)

        assert result.planned == 0
        assert chain.calls["body_of"] == body_calls

    def test_resumes_after_head_advances(self, store: RecordStore) -> None:
        chain = FakeChain(head=3)
        run_ingestion(_settings(), chain, store)

        chain.head = 6
        result = run_ingestion(_settings(), chain, store)

        assert result.planned == 3
        assert store.completed_sequence_numbers() == set(range(7))

    def test_fail_fast_aborts_and_keeps_written_rows(self, store: RecordStore) -> None:
        chain = FakeChain(head=20)
        chain.broken_numbers.add(2)

        with pytest.raises(WorkItemFailed) as exc_info:
            run_ingestion(_settings(concurrency=1), chain, store)

        assert exc_info.value.item == 2
        assert store.completed_sequence_numbers() == {0, 1}

    def test_best_effort_reports_every_failure(self, store: RecordStore) -> None:
        chain = FakeChain(head=6)
        chain.broken_numbers.update({1, 4})

        with pytest.raises(AggregateWorkError) as exc_info:
            run_ingestion(_settings(failure_policy="best_effort"), chain, store)

        assert [f.item for f in exc_info.value.failures] == [1, 4]
        assert store.completed_sequence_numbers() == {0, 2, 3, 5, 6}

    def test_concurrency_setting_bounds_source_calls(self, store: RecordStore) -> None:
        chain = FakeChain(head=30, delay=lambda n: 0.005)

        run_ingestion(_settings(concurrency=3), chain, store)

        assert 1 <= chain.peak_in_flight <= 3

    def test_progress_is_advanced_per_record(self, store: RecordStore) -> None:
        advances: list[int] = []

        class Progress:
            def start(self, total: int) -> None:
                advances.append(-total)

            def advance(self) -> None:
                advances.append(1)

            def finish(self) -> None:
                advances.append(0)

        run_ingestion(_settings(max_count=5), FakeChain(head=20), store, progress=Progress())

        assert advances == [-5, 1, 1, 1, 1, 1, 0]


class TestStoreStatus:
    """store_status compares the store against the live head."""

    def test_counts_pending_and_complete(self, store: RecordStore) -> None:
        chain = FakeChain(head=7)
        run_ingestion(_settings(max_count=3), chain, store)

        status = store_status(_settings(), chain, store)

        assert status.head == 7
        assert status.pending == 5
        assert status.summary.complete_records == 3
        assert status.summary.highest_complete == 2
