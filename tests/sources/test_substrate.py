# tests/sources/test_substrate.py
"""Tests for SubstrateSource with a stand-in node client."""

from __future__ import annotations

import sys
from typing import Any

import pytest

from chainmirror.contracts import ConfigurationError, EventPhase, FetchError
from chainmirror.contracts.enums import SourceBackend
from chainmirror.core.config import SourceSettings
from chainmirror.sources import SidecarSource, open_chain_source
from chainmirror.sources.substrate import SubstrateSource


class NodeRejected(Exception):
    """Stand-in for substrate-interface's request exception."""


class Decoded:
    """Mimics a decoded scale object exposing ``.value``."""

    def __init__(self, value: dict[str, Any]) -> None:
        self.value = value


class FakeNodeClient:
    def __init__(self) -> None:
        self.closed = False
        self.fail_with: BaseException | None = None

    def _check(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    def get_chain_head(self) -> str:
        self._check()
        return "0xhead"

    def get_block_number(self, block_hash: str) -> int:
        assert block_hash == "0xhead"
        return 77

    def get_block_hash(self, block_id: int) -> str | None:
        self._check()
        return None if block_id > 77 else f"0x{block_id:04x}"

    def get_block(self, block_hash: str) -> dict[str, Any] | None:
        self._check()
        return {
            "header": {"number": 12, "parentHash": "0x000b", "hash": block_hash},
            "extrinsics": [
                Decoded({"call": {"call_module": "Timestamp", "call_function": "set", "call_args": [{"name": "now", "type": "Moment", "value": 5}]}}),
                Decoded(
                    {
                        "address": "5Alice",
                        "nonce": 3,
                        "call": {
                            "call_module": "Balances",
                            "call_function": "transfer",
                            "call_args": [{"name": "dest", "type": "Address", "value": "5Bob"}, {"name": "value", "type": "Balance", "value": 10}],
                        },
                    }
                ),
            ],
        }

    def get_events(self, block_hash: str) -> list[Any]:
        self._check()
        return [
            Decoded({"phase": "Initialization", "extrinsic_idx": None, "module_id": "Timestamp", "event_id": "Set", "attributes": None}),
            Decoded({"phase": "ApplyExtrinsic", "extrinsic_idx": 0, "module_id": "System", "event_id": "ExtrinsicSuccess", "attributes": {"dispatch_info": {}}}),
            Decoded(
                {
                    "phase": "ApplyExtrinsic",
                    "extrinsic_idx": 1,
                    "module_id": "System",
                    "event_id": "ExtrinsicFailed",
                    "attributes": {"dispatch_error": {"Module": {"index": 5, "error": "0x02000000"}}, "dispatch_info": {}},
                }
            ),
            Decoded({"phase": "Finalization", "extrinsic_idx": None, "module_id": "Treasury", "event_id": "Burnt", "attributes": [{"type": "u128", "value": 1}]}),
        ]

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def client() -> FakeNodeClient:
    return FakeNodeClient()


@pytest.fixture
def source(client: FakeNodeClient) -> SubstrateSource:
    return SubstrateSource(client, request_errors=(NodeRejected,))


class TestSubstrateSource:
    """Decoding of node responses."""

    def test_current_head(self, source: SubstrateSource) -> None:
        assert source.current_head() == 77

    def test_identity_of(self, source: SubstrateSource) -> None:
        assert source.identity_of(12) == "0x000c"

    def test_identity_beyond_head_is_final(self, source: SubstrateSource) -> None:
        with pytest.raises(FetchError, match="No block #78") as exc_info:
            source.identity_of(78)

        assert not exc_info.value.retryable

    def test_body_of(self, source: SubstrateSource) -> None:
        body = source.body_of("0x000c")

        assert body.sequence_number == 12
        assert body.parent_identity == "0x000b"
        inherent, transfer = body.raw_sub_entries
        assert (inherent.origin, inherent.sequence_tag, inherent.category) == (None, None, "Timestamp")
        assert inherent.arguments == {"now": 5}
        assert (transfer.origin, transfer.sequence_tag, transfer.operation) == ("5Alice", 3, "transfer")
        assert transfer.arguments == {"dest": "5Bob", "value": 10}

    def test_event_log_of(self, source: SubstrateSource) -> None:
        events = source.event_log_of("0x000c")

        assert [e.phase for e in events] == [
            EventPhase.INITIALIZATION,
            EventPhase.APPLY_EXTRINSIC,
            EventPhase.APPLY_EXTRINSIC,
            EventPhase.FINALIZATION,
        ]
        assert [e.index for e in events] == [None, 0, 1, None]
        assert events[2].data[0] == {"Module": {"index": 5, "error": "0x02000000"}}
        assert events[3].data == (1,)

    def test_close(self, source: SubstrateSource, client: FakeNodeClient) -> None:
        source.close()
        assert client.closed


class TestSubstrateErrors:
    """Error classification."""

    def test_connection_errors_are_retryable(self, source: SubstrateSource, client: FakeNodeClient) -> None:
        client.fail_with = ConnectionResetError("socket closed")

        with pytest.raises(FetchError) as exc_info:
            source.body_of("0x01")

        assert exc_info.value.retryable

    def test_rejected_requests_are_final(self, source: SubstrateSource, client: FakeNodeClient) -> None:
        client.fail_with = NodeRejected("unknown block")

        with pytest.raises(FetchError, match="node rejected") as exc_info:
            source.event_log_of("0x01")

        assert not exc_info.value.retryable

    def test_unknown_phase_is_final(self, source: SubstrateSource, client: FakeNodeClient, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(client, "get_events", lambda block_hash: [{"phase": "Sideways", "module_id": "X", "event_id": "Y"}])

        with pytest.raises(FetchError, match="undecodable events"):
            source.event_log_of("0x01")


class TestOpenChainSource:
    """Factory selection."""

    def test_sidecar_is_default(self) -> None:
        source = open_chain_source(SourceSettings(url="http://sidecar.test"))
        try:
            assert isinstance(source, SidecarSource)
        finally:
            source.close()

    def test_substrate_without_library_reports_install_hint(self, monkeypatch: pytest.MonkeyPatch) -> None:
        # None in sys.modules makes the import raise ModuleNotFoundError
        monkeypatch.setitem(sys.modules, "substrateinterface", None)

        with pytest.raises(ConfigurationError, match=r"chainmirror\[substrate\]"):
            open_chain_source(SourceSettings(url="ws://node.test", backend=SourceBackend.SUBSTRATE))
