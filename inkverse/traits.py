"""Traits: nested string-leaf key/value structures on characters and world entries.

    TraitValue = str | list[str] | dict[str, TraitValue]

Depth is counted in objects: the top-level traits object is depth 1, and no
object may sit deeper than MAX_DEPTH. Model proposals are coerced into this
shape with normalize_traits(); stored traits are combined with deep_merge().
"""

import json
from typing import Any, Union

MAX_DEPTH = 5

TraitValue = Union[str, list[str], dict[str, "TraitValue"]]


def _leaf(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value, ensure_ascii=False)


def _normalize_object(obj: dict, depth: int) -> dict[str, TraitValue]:
    out: dict[str, TraitValue] = {}
    for key, value in obj.items():
        if value is None:
            continue
        if isinstance(value, dict):
            # Objects past the depth bound collapse into a JSON string leaf
            if depth + 1 > MAX_DEPTH:
                out[str(key)] = _leaf(value)
            else:
                out[str(key)] = _normalize_object(value, depth + 1)
        elif isinstance(value, list):
            out[str(key)] = [_leaf(item) for item in value if item is not None]
        else:
            out[str(key)] = _leaf(value)
    return out


def normalize_traits(value: Any) -> dict[str, TraitValue] | None:
    """Coerce a proposed traits value into TraitValue shape. Non-objects yield None."""
    if not isinstance(value, dict):
        return None
    return _normalize_object(value, 1)


def traits_depth(value: Any) -> int:
    """Object nesting depth of a traits value (a leaf has depth 0)."""
    if isinstance(value, dict):
        return 1 + max((traits_depth(v) for v in value.values()), default=0)
    return 0


def deep_merge(base: Any, patch: Any) -> dict[str, Any]:
    """Merge `patch` onto `base` key-by-key and return a new dict.

    Nested objects recurse, arrays replace wholesale, other values overwrite.
    Neither argument is mutated.
    """
    out: dict[str, Any] = dict(base) if isinstance(base, dict) else {}
    if not isinstance(patch, dict):
        return out
    for key, value in patch.items():
        if isinstance(value, list):
            out[key] = list(value)
        elif isinstance(value, dict):
            current = out.get(key)
            out[key] = deep_merge(current if isinstance(current, dict) else {}, value)
        else:
            out[key] = value
    return out
