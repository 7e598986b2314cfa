"""
Conduit - Safe Serialization

JSON rendering for log payloads. ``safe_stringify`` never raises: circular
references are replaced with a marker and values the encoder does not know
are rendered as strings.
"""

from __future__ import annotations

import json
from typing import Any

CIRCULAR_MARKER = "[Circular]"


def _fallback(value: Any) -> str:
    try:
        return str(value)
    except Exception:
        return object.__repr__(value)


def _key(key: Any) -> str:
    return key if isinstance(key, str) else _fallback(key)


def _prune(value: Any, seen: set) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value

    marker = id(value)
    if marker in seen:
        return CIRCULAR_MARKER

    if isinstance(value, dict):
        seen.add(marker)
        try:
            return {_key(key): _prune(item, seen) for key, item in value.items()}
        finally:
            seen.discard(marker)

    if isinstance(value, (list, tuple, set, frozenset)):
        seen.add(marker)
        try:
            return [_prune(item, seen) for item in value]
        finally:
            seen.discard(marker)

    if isinstance(value, BaseException):
        return {"name": type(value).__name__, "message": _fallback(value)}

    return value


def safe_stringify(value: Any) -> str:
    """Serialize ``value`` to JSON without ever raising."""
    try:
        return json.dumps(_prune(value, set()), default=_fallback)
    except Exception:
        return json.dumps(_fallback(value))
