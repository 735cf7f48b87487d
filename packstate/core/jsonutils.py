# packstate/core/jsonutils.py
from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from enum import Enum
from pathlib import PurePath
from typing import Any

__all__ = ["safeJsonDumps", "tryJSONify"]



def safeJsonDumps(obj: object) -> str:
    """
    Serializes an object to a compact JSON string.
    If direct JSON encoding fails, falls back to tryJSONify and retries.
    """
    try:
        return json.dumps(obj, ensure_ascii=False, allow_nan=False, separators=(",", ":"))
    except Exception:
        safePayload = tryJSONify(obj)
        return json.dumps(safePayload, ensure_ascii=False, allow_nan=False, separators=(",", ":"))



def tryJSONify(obj: Any, *, _seen: set[int] | None = None, _depth: int = 0, _maxDepth: int = 10) -> Any:
    """
    Best-effort conversion into JSON-safe values.

      • Paths → str, Enums → value, datetimes → ISO strings
      • dataclasses → dict, sets/tuples → list
      • cycles and too deep nesting → "<cycle>" / "<max-depth>"
      • anything else → repr()
    """
    if obj is None or isinstance(obj, (bool, int, str)):
        return obj
    if isinstance(obj, float):
        return obj if obj == obj and obj not in (float("inf"), float("-inf")) else str(obj)
    if isinstance(obj, PurePath):
        return str(obj)
    if isinstance(obj, Enum):
        return tryJSONify(obj.value, _seen=_seen, _depth=_depth, _maxDepth=_maxDepth)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if _depth >= _maxDepth:
        return "<max-depth>"

    seen = _seen if _seen is not None else set()
    if id(obj) in seen:
        return "<cycle>"
    seen.add(id(obj))
    try:
        if is_dataclass(obj) and not isinstance(obj, type):
            obj = asdict(obj)
        if isinstance(obj, Mapping):
            return {
                str(key): tryJSONify(value, _seen=seen, _depth=_depth + 1, _maxDepth=_maxDepth)
                for key, value in obj.items()
            }
        if isinstance(obj, (list, tuple, set, frozenset)):
            return [tryJSONify(item, _seen=seen, _depth=_depth + 1, _maxDepth=_maxDepth) for item in obj]
    finally:
        seen.discard(id(obj))
    return repr(obj)
