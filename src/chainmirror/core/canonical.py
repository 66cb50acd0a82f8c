# src/chainmirror/core/canonical.py
"""
Canonical JSON serialization for stored payloads.

Extrinsic arguments and dispatch errors are stored as text. Serializing them
per RFC 8785/JCS (rfc8785 package) makes re-ingestion of the same block
produce byte-identical rows regardless of dict ordering in the source
response.

Chain values routinely exceed the IEEE-754 safe integer range (u128
balances), which JCS cannot represent as numbers. Such integers are written
as decimal strings, the same convention node JSON APIs use.
"""

from __future__ import annotations

import math
from typing import Any

import rfc8785

# Largest integer JCS serializes as a number (2**53 - 1)
_MAX_SAFE_INTEGER = 9_007_199_254_740_991


def _normalize_value(obj: Any) -> Any:
    """Convert a single value to a JSON-safe primitive.

    Raises:
        ValueError: If value is a non-finite float
        TypeError: If value has no JSON representation
    """
    if isinstance(obj, bool) or obj is None or isinstance(obj, str):
        return obj
    if isinstance(obj, int):
        if abs(obj) > _MAX_SAFE_INTEGER:
            return str(obj)
        return obj
    if isinstance(obj, float):
        if math.isnan(obj) or math.isinf(obj):
            raise ValueError(f"Cannot canonicalize non-finite float: {obj}")
        return obj
    if isinstance(obj, bytes):
        return "0x" + obj.hex()
    raise TypeError(f"Cannot canonicalize value of type {type(obj).__name__}: {obj!r}")


def _normalize_for_canonical(data: Any) -> Any:
    """Recursively normalize a data structure for canonical JSON."""
    if isinstance(data, dict):
        return {str(k): _normalize_for_canonical(v) for k, v in data.items()}
    if isinstance(data, list | tuple):
        return [_normalize_for_canonical(v) for v in data]
    return _normalize_value(data)


def canonical_json(obj: Any) -> str:
    """Produce canonical JSON text.

    Args:
        obj: Data structure to serialize

    Returns:
        Canonical JSON string (no whitespace, sorted keys)

    Raises:
        ValueError: If data contains NaN or Infinity
        TypeError: If data contains types that cannot be serialized
    """
    normalized = _normalize_for_canonical(obj)
    result: bytes = rfc8785.dumps(normalized)
    return result.decode("utf-8")
