from __future__ import annotations
from dataclasses import asdict, is_dataclass
from enum import Enum
from typing import Any, Mapping

import orjson as _orjson
from pydantic import BaseModel

__all__ = ["dumps", "loads", "sanitize"]

def sanitize(obj: Any) -> Any:
    """Recursively convert *obj* into something JSON-serialisable.

    - Exceptions → {"error": <Type>, "message": str(e)}
    - Pydantic models → model_dump(mode="json")
    - dataclasses → dict of their fields
    - Enums → their value
    - bytes → UTF-8 string (replacement on errors)
    - sets/tuples → lists
    """
    if obj is None or isinstance(obj, (str, int, float, bool)) and not isinstance(obj, Enum):
        return obj

    if isinstance(obj, Enum):
        return sanitize(obj.value)

    if isinstance(obj, BaseException):
        out = {"error": obj.__class__.__name__, "message": str(obj)}
        to_dict = getattr(obj, "to_dict", None)
        if callable(to_dict):
            out.update(sanitize(to_dict()))
        return out

    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")

    if is_dataclass(obj) and not isinstance(obj, type):
        return sanitize(asdict(obj))

    if isinstance(obj, (bytes, bytearray, memoryview)):
        return bytes(obj).decode("utf-8", "replace")

    if isinstance(obj, Mapping):
        return {str(k): sanitize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set, frozenset)):
        return [sanitize(v) for v in obj]

    # datetimes, dates, UUIDs …
    if hasattr(obj, "isoformat"):
        try:
            return obj.isoformat()
        except (TypeError, ValueError):
            pass
    return str(obj)

def dumps(obj: Any) -> str:
    """
    JSON dump that returns a *str* (UTF‑8) with deterministic key ordering.
    """
    return _orjson.dumps(obj, option=_orjson.OPT_SORT_KEYS, default=sanitize).decode("utf-8")

def loads(data: str | bytes) -> Any:
    """JSON load from str/bytes; a leading UTF-8 BOM is tolerated.

    Raises ``ValueError`` (``orjson.JSONDecodeError``) on malformed input.
    """
    b = data.encode("utf-8") if isinstance(data, str) else bytes(data)
    if b[:3] == b"\xef\xbb\xbf":
        b = b[3:]
    return _orjson.loads(b)
