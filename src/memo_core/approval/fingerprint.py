# memo_core/approval/fingerprint.py
"""Request fingerprints for the approval cache.

A fingerprint identifies one (tool, params) pair. Structurally equal params
hash the same regardless of key order; serialisation never raises.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable, Mapping
from typing import Any

MAX_STABLE_DEPTH = 100
CIRCULAR_SENTINEL = "[Circular]"
MAX_DEPTH_SENTINEL = "[MaxDepthExceeded]"
FINGERPRINT_LENGTH = 16


def _quote(value: str) -> str:
    return json.dumps(value, ensure_ascii=False)


def stable_stringify(value: Any) -> str:
    """Serialize ``value`` to JSON with sorted keys and cycle/depth guards."""
    return _stringify(value, set(), 0)


def _stringify(value: Any, path: set[int], depth: int) -> str:
    if value is None or isinstance(value, (bool, int, float, str)):
        return json.dumps(value, ensure_ascii=False)

    if depth > MAX_STABLE_DEPTH:
        return _quote(MAX_DEPTH_SENTINEL)

    if isinstance(value, (Mapping, list, tuple, set, frozenset)):
        marker = id(value)
        if marker in path:
            return _quote(CIRCULAR_SENTINEL)
        path.add(marker)
        try:
            if isinstance(value, Mapping):
                items = sorted(
                    ((str(k), v) for k, v in value.items()), key=lambda kv: kv[0]
                )
                body = ",".join(
                    f"{_quote(k)}:{_stringify(v, path, depth + 1)}" for k, v in items
                )
                return "{" + body + "}"
            parts: Iterable[str] = (_stringify(v, path, depth + 1) for v in value)
            if isinstance(value, (set, frozenset)):
                parts = sorted(parts)
            return "[" + ",".join(parts) + "]"
        finally:
            path.discard(marker)

    if hasattr(value, "model_dump"):
        return _stringify(value.model_dump(mode="json"), path, depth + 1)

    if isinstance(value, bytes):
        return _quote(value.decode("utf-8", errors="replace"))

    return _quote(str(value))


def generate_fingerprint(tool_name: str, params: Any) -> str:
    """First 16 hex chars of sha256("<tool>:<stable json>")."""
    raw = f"{tool_name}:{stable_stringify(params)}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


def generate_partial_fingerprint(
    tool_name: str, params: Any, keys: Iterable[str]
) -> str:
    """Fingerprint over a subset of params (only the listed keys)."""
    if not isinstance(params, Mapping):
        return generate_fingerprint(tool_name, params)

    filtered = {key: params[key] for key in keys if key in params}
    return generate_fingerprint(tool_name, filtered)
