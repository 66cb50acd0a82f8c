# src/chainmirror/sources/substrate.py
"""Chain source talking directly to a node over RPC via substrate-interface.

Decoding runs in this process, so chains with custom types need their type
definitions passed in as a type registry.

substrate-interface is an optional dependency (``chainmirror[substrate]``)
and is imported only when a connection is opened. One websocket connection
is not safe for concurrent requests, so every call holds the source's lock;
run several sources if one connection becomes the bottleneck.
"""

from __future__ import annotations

from collections.abc import Callable
from threading import Lock
from typing import Any, TypeVar

import structlog

from chainmirror.contracts.errors import ConfigurationError, FetchError
from chainmirror.contracts.records import EventPhase, OutcomeEvent, RawSubEntry, RecordBody

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_PHASES = {
    "ApplyExtrinsic": EventPhase.APPLY_EXTRINSIC,
    "Initialization": EventPhase.INITIALIZATION,
    "Finalization": EventPhase.FINALIZATION,
}

_INSTALL_HINT = "The substrate backend needs substrate-interface: pip install 'chainmirror[substrate]'"


def _value_of(obj: Any) -> Any:
    """Decoded scale objects expose their plain value as ``.value``."""
    return getattr(obj, "value", obj)


def _signer(address: Any) -> str | None:
    if address is None:
        return None
    if isinstance(address, dict):
        return address.get("Id") or address.get("id")
    return str(address)


def _call_arguments(call_args: Any) -> Any:
    """Turn substrate-interface's ``[{"name", "type", "value"}, ...]`` into a name -> value mapping."""
    if isinstance(call_args, list) and all(isinstance(a, dict) and "name" in a for a in call_args):
        return {a["name"]: a.get("value") for a in call_args}
    return call_args


def _event_data(attributes: Any) -> tuple[Any, ...]:
    """Normalize event attributes to a positional tuple.

    Newer metadata decodes named fields as a dict, older as a list of
    ``{"type", "value"}`` items or plain values.
    """
    if attributes is None:
        return ()
    if isinstance(attributes, dict):
        return tuple(attributes.values())
    if isinstance(attributes, list | tuple):
        return tuple(a["value"] if isinstance(a, dict) and "value" in a else a for a in attributes)
    return (attributes,)


class SubstrateSource:
    """ChainSource over a node's JSON-RPC endpoint.

    Example:
        source = SubstrateSource.connect("ws://127.0.0.1:9944", type_definitions={"types": {...}})
    """

    def __init__(
        self,
        client: Any,
        *,
        request_errors: tuple[type[BaseException], ...] = (),
        transport_errors: tuple[type[BaseException], ...] = (OSError,),
    ) -> None:
        """Wrap an open substrate-interface client.

        Args:
            client: SubstrateInterface instance (or a test double with the same methods)
            request_errors: Exception types meaning the node rejected the request.
                They become non-retryable FetchErrors.
            transport_errors: Exception types meaning the connection failed.
                They become retryable FetchErrors.
        """
        self._client = client
        self._request_errors = request_errors
        self._transport_errors = transport_errors
        self._lock = Lock()

    @classmethod
    def connect(
        cls,
        url: str,
        *,
        type_definitions: dict[str, Any] | None = None,
        timeout: float = 30.0,
    ) -> SubstrateSource:
        """Open a connection to a node.

        Raises:
            ConfigurationError: If substrate-interface is not installed
            FetchError: If the node cannot be reached
        """
        try:
            from substrateinterface import SubstrateInterface
            from substrateinterface.exceptions import SubstrateRequestException
            from websocket import WebSocketException
        except ModuleNotFoundError as e:
            raise ConfigurationError(_INSTALL_HINT) from e

        try:
            client = SubstrateInterface(
                url=url,
                type_registry=type_definitions,
                ws_options={"timeout": timeout},
            )
        except SubstrateRequestException as e:
            raise FetchError(f"Cannot connect to {url}: {e}", retryable=False) from e
        except (OSError, WebSocketException) as e:
            raise FetchError(f"Cannot connect to {url}: {e}", retryable=True) from e
        logger.debug("substrate_connected", url=url, chain=getattr(client, "chain", None))
        return cls(
            client,
            request_errors=(SubstrateRequestException,),
            transport_errors=(OSError, WebSocketException),
        )

    def close(self) -> None:
        self._client.close()

    # === ChainSource ===

    def current_head(self) -> int:
        def call() -> int:
            return int(self._client.get_block_number(self._client.get_chain_head()))

        return self._call("current_head", call)

    def identity_of(self, sequence_number: int) -> str:
        identity = self._call(
            f"identity_of({sequence_number})",
            lambda: self._client.get_block_hash(block_id=sequence_number),
        )
        if identity is None:
            raise FetchError(f"No block #{sequence_number} at the node", retryable=False)
        return str(identity)

    def body_of(self, identity: str) -> RecordBody:
        block = self._call(f"body_of({identity})", lambda: self._client.get_block(block_hash=identity))
        if block is None:
            raise FetchError(f"Block {identity} not found", retryable=False)
        try:
            header = block["header"]
            entries = []
            for extrinsic in block["extrinsics"]:
                value = _value_of(extrinsic)
                call = value["call"]
                nonce = value.get("nonce")
                entries.append(
                    RawSubEntry(
                        origin=_signer(value.get("address")),
                        sequence_tag=int(nonce) if nonce is not None else None,
                        category=str(call["call_module"]),
                        operation=str(call["call_function"]),
                        arguments=_call_arguments(call.get("call_args", [])),
                    )
                )
            return RecordBody(
                identity=identity,
                parent_identity=header.get("parentHash"),
                sequence_number=int(header["number"]),
                raw_sub_entries=tuple(entries),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise FetchError(f"Block {identity}: undecodable body: {e!r}", retryable=False) from e

    def event_log_of(self, identity: str) -> list[OutcomeEvent]:
        records = self._call(f"event_log_of({identity})", lambda: self._client.get_events(block_hash=identity))
        log = []
        try:
            for record in records:
                value = _value_of(record)
                phase = _PHASES[value["phase"]]
                log.append(
                    OutcomeEvent(
                        phase=phase,
                        index=value.get("extrinsic_idx") if phase == EventPhase.APPLY_EXTRINSIC else None,
                        category=str(value["module_id"]),
                        name=str(value["event_id"]),
                        data=_event_data(value.get("attributes")),
                    )
                )
        except (KeyError, TypeError, ValueError) as e:
            raise FetchError(f"Block {identity}: undecodable events: {e!r}", retryable=False) from e
        return log

    # === Internals ===

    def _call(self, what: str, call: Callable[[], T]) -> T:
        with self._lock:
            try:
                return call()
            except FetchError:
                raise
            except self._request_errors as e:
                raise FetchError(f"{what}: node rejected request: {e}", retryable=False) from e
            except self._transport_errors as e:
                raise FetchError(f"{what}: {type(e).__name__}: {e}", retryable=True) from e
