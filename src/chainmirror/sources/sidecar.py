# src/chainmirror/sources/sidecar.py
"""Chain source backed by a Substrate API Sidecar style HTTP JSON API.

Endpoints used:
- ``GET /blocks/head/header`` for the current head
- ``GET /blocks/{number}`` and ``GET /blocks/{hash}`` for full blocks

Sidecar attaches each extrinsic's events to the extrinsic itself. This source
flattens them back into one event log with apply-phase indices, so the engine
correlates events the same way for every backend.

Numbers arrive as decimal strings; they are converted at this boundary.
"""

from __future__ import annotations

import json
import math
from collections import OrderedDict
from json import JSONDecodeError
from threading import Lock
from typing import Any

import httpx
import structlog

from chainmirror.contracts.errors import FetchError
from chainmirror.contracts.records import EventPhase, OutcomeEvent, RawSubEntry, RecordBody

logger = structlog.get_logger(__name__)

# Rate limiting is the only client error worth another attempt
_RETRYABLE_STATUS = frozenset({429})

_BLOCK_QUERY = {"eventDocs": "false", "extrinsicDocs": "false"}


def _contains_non_finite(obj: Any) -> bool:
    if isinstance(obj, float):
        return math.isnan(obj) or math.isinf(obj)
    if isinstance(obj, dict):
        return any(_contains_non_finite(v) for v in obj.values())
    if isinstance(obj, list):
        return any(_contains_non_finite(v) for v in obj)
    return False


def _parse_json_strict(response: httpx.Response, path: str) -> Any:
    """Parse a response body, rejecting NaN/Infinity which cannot be stored canonically."""
    try:
        parsed = json.loads(response.text)
    except JSONDecodeError as e:
        raise FetchError(f"GET {path}: malformed JSON: {e}", retryable=False) from e
    if _contains_non_finite(parsed):
        raise FetchError(f"GET {path}: JSON contains non-finite values (NaN or Infinity)", retryable=False)
    return parsed


def _as_int(value: Any) -> int:
    """Sidecar encodes integers as decimal strings."""
    if isinstance(value, bool):
        raise ValueError(f"expected integer, got {value!r}")
    return int(value)


def _split_method(method: Any) -> tuple[str, str]:
    """Return (pallet, name) from either ``{"pallet", "method"}`` or ``"pallet.method"``."""
    if isinstance(method, dict):
        return str(method["pallet"]), str(method["method"])
    pallet, _, name = str(method).partition(".")
    if not name:
        raise ValueError(f"unrecognized method descriptor {method!r}")
    return pallet, name


def _signer_of(extrinsic: dict[str, Any]) -> str | None:
    signature = extrinsic.get("signature")
    if not signature:
        return None
    signer = signature.get("signer")
    if isinstance(signer, dict):
        return signer.get("id") or signer.get("Id")
    return signer


def _events_of(extrinsic_events: list[dict[str, Any]], phase: EventPhase, index: int | None) -> list[OutcomeEvent]:
    events = []
    for raw in extrinsic_events:
        category, name = _split_method(raw["method"])
        events.append(
            OutcomeEvent(
                phase=phase,
                index=index,
                category=category,
                name=name,
                data=tuple(raw.get("data") or ()),
            )
        )
    return events


class SidecarSource:
    """ChainSource over HTTP.

    httpx.Client is thread-safe and pools connections, so one instance serves
    every worker thread.

    Example:
        source = SidecarSource("http://127.0.0.1:8080", timeout=10.0)
        try:
            head = source.current_head()
        finally:
            source.close()
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        cache_size: int = 256,
        client: httpx.Client | None = None,
    ) -> None:
        """Initialize source.

        Args:
            base_url: Sidecar root URL
            timeout: Per-request timeout in seconds
            cache_size: Number of block payloads kept for the identity, body
                and event log calls a worker makes for the same block
            client: Preconfigured client (tests); base_url is still used for paths
        """
        self._base_url = base_url.rstrip("/")
        self._client = client if client is not None else httpx.Client(timeout=timeout, follow_redirects=True)
        self._cache_size = cache_size
        self._cache: OrderedDict[str, dict[str, Any]] = OrderedDict()
        self._cache_lock = Lock()

    def close(self) -> None:
        """Close the underlying httpx client and release connections."""
        self._client.close()

    # === ChainSource ===

    def current_head(self) -> int:
        payload = self._get("/blocks/head/header")
        try:
            return _as_int(payload["number"])
        except (KeyError, TypeError, ValueError) as e:
            raise FetchError(f"GET /blocks/head/header: malformed header: {e!r}", retryable=False) from e

    def identity_of(self, sequence_number: int) -> str:
        payload = self._get(f"/blocks/{sequence_number}", params=_BLOCK_QUERY)
        try:
            identity = str(payload["hash"])
        except (KeyError, TypeError) as e:
            raise FetchError(f"GET /blocks/{sequence_number}: block has no hash", retryable=False) from e
        self._remember(identity, payload)
        return identity

    def body_of(self, identity: str) -> RecordBody:
        payload = self._block(identity)
        try:
            entries = tuple(
                RawSubEntry(
                    origin=_signer_of(extrinsic),
                    sequence_tag=_as_int(extrinsic["nonce"]) if extrinsic.get("nonce") is not None else None,
                    category=_split_method(extrinsic["method"])[0],
                    operation=_split_method(extrinsic["method"])[1],
                    arguments=extrinsic.get("args", {}),
                )
                for extrinsic in payload["extrinsics"]
            )
            return RecordBody(
                identity=identity,
                parent_identity=payload.get("parentHash"),
                sequence_number=_as_int(payload["number"]),
                raw_sub_entries=entries,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise FetchError(f"Block {identity}: malformed body: {e!r}", retryable=False) from e

    def event_log_of(self, identity: str) -> list[OutcomeEvent]:
        payload = self._block(identity)
        try:
            log = _events_of((payload.get("onInitialize") or {}).get("events", []), EventPhase.INITIALIZATION, None)
            for index, extrinsic in enumerate(payload["extrinsics"]):
                log.extend(_events_of(extrinsic.get("events", []), EventPhase.APPLY_EXTRINSIC, index))
            log.extend(_events_of((payload.get("onFinalize") or {}).get("events", []), EventPhase.FINALIZATION, None))
        except (KeyError, TypeError, ValueError) as e:
            raise FetchError(f"Block {identity}: malformed events: {e!r}", retryable=False) from e
        # Last call a worker makes for this block
        with self._cache_lock:
            self._cache.pop(identity, None)
        return log

    # === Internals ===

    def _block(self, identity: str) -> dict[str, Any]:
        with self._cache_lock:
            cached = self._cache.get(identity)
        if cached is not None:
            return cached
        payload = self._get(f"/blocks/{identity}", params=_BLOCK_QUERY)
        self._remember(identity, payload)
        return payload

    def _remember(self, identity: str, payload: dict[str, Any]) -> None:
        with self._cache_lock:
            self._cache[identity] = payload
            self._cache.move_to_end(identity)
            while len(self._cache) > self._cache_size:
                self._cache.popitem(last=False)

    def _get(self, path: str, params: dict[str, str] | None = None) -> Any:
        url = f"{self._base_url}{path}"
        try:
            response = self._client.get(url, params=params)
        except httpx.TransportError as e:
            raise FetchError(f"GET {path}: {type(e).__name__}: {e}", retryable=True) from e

        if response.status_code >= 400:
            retryable = response.status_code >= 500 or response.status_code in _RETRYABLE_STATUS
            logger.debug("sidecar_http_error", path=path, status_code=response.status_code, retryable=retryable)
            raise FetchError(
                f"GET {path}: HTTP {response.status_code}: {response.text[:200]}",
                retryable=retryable,
            )

        payload = _parse_json_strict(response, path)
        if not isinstance(payload, dict):
            raise FetchError(f"GET {path}: expected a JSON object, got {type(payload).__name__}", retryable=False)
        return payload
