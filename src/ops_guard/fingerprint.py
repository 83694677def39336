"""ops_guard.fingerprint

Canonicalization and content hashes.

Two calls that differ only in key order, or in volatile fields such as
timestamps and request ids, produce the same fingerprint. The Loop Guard and
the strike tracker both key on these hashes so "same call" means the same
thing everywhere.
"""

from __future__ import annotations

import json
from hashlib import sha256
from typing import Any, Collection, Optional

from .config import DEFAULT_VOLATILE_PARAM_KEYS


def _canonicalize(obj: Any, ignore_keys: Collection[str] = ()) -> Any:
    """Convert `obj` into a JSON-serializable structure with deterministic ordering."""
    if obj is None or isinstance(obj, (bool, int, float, str)):
        return obj
    if isinstance(obj, bytes):
        return {"__bytes__": sha256(obj).hexdigest()}
    if isinstance(obj, (list, tuple)):
        return [_canonicalize(x, ignore_keys) for x in obj]
    if isinstance(obj, (set, frozenset)):
        return sorted((_canonicalize(x, ignore_keys) for x in obj), key=lambda x: str(x))
    if isinstance(obj, dict):
        items = [
            (str(k), _canonicalize(v, ignore_keys))
            for k, v in obj.items()
            if str(k) not in ignore_keys
        ]
        return {k: v for k, v in sorted(items, key=lambda kv: kv[0])}
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return _canonicalize(to_dict(), ignore_keys)
    return str(obj)


def stable_json_dumps(obj: Any, ignore_keys: Collection[str] = ()) -> str:
    return json.dumps(
        _canonicalize(obj, ignore_keys),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def content_hash(obj: Any, ignore_keys: Collection[str] = ()) -> str:
    """Short sha256 of the canonical form of ``obj`` (16 hex chars)."""
    return sha256(stable_json_dumps(obj, ignore_keys).encode("utf-8")).hexdigest()[:16]


def issue_key(
    tool_name: str,
    params: Any,
    ignore_keys: Optional[Collection[str]] = None,
) -> str:
    """Fingerprint of a logical action for three-strike tracking.

    ``"<tool>:<hash>"`` over the canonical params with volatile keys removed
    at every depth.
    """
    keys = DEFAULT_VOLATILE_PARAM_KEYS if ignore_keys is None else ignore_keys
    return f"{tool_name}:{content_hash(params if params is not None else {}, keys)}"
