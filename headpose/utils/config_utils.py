from __future__ import annotations

from typing import Any, Dict, Optional, Sequence, Tuple


def as_float(x: Any, default: float) -> float:
    try:
        return float(x)
    except (TypeError, ValueError):
        return float(default)


def as_int(x: Any, default: int) -> int:
    try:
        return int(x)
    except (TypeError, ValueError):
        return int(default)


def as_range(x: Any, default: Tuple[float, float]) -> Tuple[float, float]:
    """
    Coerce a two-element [min, max] list into an ordered float pair.
    Anything else yields the default. Reversed bounds are swapped.
    """
    if not isinstance(x, (list, tuple)) or len(x) != 2:
        return (float(default[0]), float(default[1]))
    lo = as_float(x[0], default[0])
    hi = as_float(x[1], default[1])
    return (lo, hi) if lo <= hi else (hi, lo)


def as_index_list(x: Any) -> Optional[Tuple[int, ...]]:
    """Non-negative int list -> tuple. None if x is not such a list; [] -> ()."""
    if not isinstance(x, Sequence) or isinstance(x, (str, bytes)):
        return None
    out = []
    for v in x:
        i = as_int(v, -1)
        if i < 0:
            return None
        out.append(i)
    return tuple(out)


def get_section(root: Dict[str, Any], key: str) -> Dict[str, Any]:
    v = root.get(key, {})
    return v if isinstance(v, dict) else {}
