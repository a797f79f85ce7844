"""Conversion between Python values and BiDi script values.

``serialize`` produces ``script.LocalValue`` dicts for call arguments;
``deserialize`` turns ``script.RemoteValue`` dicts back into Python values.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

from .js_handle import JSHandle

_MAX_SAFE_INTEGER = 2**53 - 1

_PY_TO_JS_FLAGS = ((re.IGNORECASE, "i"), (re.MULTILINE, "m"), (re.DOTALL, "s"))
_JS_TO_PY_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}


@dataclass(frozen=True)
class RegExp:
    """A JavaScript regular expression that Python's ``re`` cannot compile."""

    pattern: str
    flags: str = ""


def serialize(value: Any, *, realm: Any = None) -> dict[str, Any]:
    """Serialize ``value``; ``realm`` rejects handles owned by another realm."""
    return _serialize(value, realm, set())


def _serialize(value: Any, realm: Any, path: set[int]) -> dict[str, Any]:
    if isinstance(value, JSHandle):
        return _serialize_handle(value, realm)
    if value is None:
        return {"type": "null"}
    if isinstance(value, bool):
        return {"type": "boolean", "value": value}
    if isinstance(value, int):
        if abs(value) > _MAX_SAFE_INTEGER:
            return {"type": "bigint", "value": str(value)}
        return {"type": "number", "value": value}
    if isinstance(value, float):
        return _serialize_number(value)
    if isinstance(value, str):
        return {"type": "string", "value": value}
    if isinstance(value, datetime):
        moment = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        text = moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
        return {"type": "date", "value": text}
    if isinstance(value, date):
        return {"type": "date", "value": f"{value.isoformat()}T00:00:00.000Z"}
    if isinstance(value, RegExp):
        return {"type": "regexp", "value": {"pattern": value.pattern, "flags": value.flags}}
    if isinstance(value, re.Pattern):
        flags = "".join(js for py, js in _PY_TO_JS_FLAGS if value.flags & py)
        return {"type": "regexp", "value": {"pattern": value.pattern, "flags": flags}}
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        if id(value) in path:
            raise ValueError("Recursive objects are not allowed")
        path.add(id(value))
        try:
            return _serialize_container(value, realm, path)
        finally:
            path.discard(id(value))
    if callable(value):
        raise TypeError("Unable to serialize a Python callable; pass function source as a string")
    raise TypeError(f"Unable to serialize {type(value).__name__}. Use plain values instead")


def _serialize_container(value: Any, realm: Any, path: set[int]) -> dict[str, Any]:
    if isinstance(value, (list, tuple)):
        return {"type": "array", "value": [_serialize(item, realm, path) for item in value]}
    if isinstance(value, (set, frozenset)):
        return {"type": "set", "value": [_serialize(item, realm, path) for item in value]}
    if all(isinstance(k, str) for k in value):
        return {"type": "object", "value": [[k, _serialize(v, realm, path)] for k, v in value.items()]}
    return {
        "type": "map",
        "value": [[_serialize(k, realm, path), _serialize(v, realm, path)] for k, v in value.items()],
    }


def _serialize_number(value: float) -> dict[str, Any]:
    if math.isnan(value):
        return {"type": "number", "value": "NaN"}
    if math.isinf(value):
        return {"type": "number", "value": "Infinity" if value > 0 else "-Infinity"}
    if value == 0 and math.copysign(1.0, value) < 0:
        return {"type": "number", "value": "-0"}
    return {"type": "number", "value": value}


def _serialize_handle(handle: JSHandle, realm: Any) -> dict[str, Any]:
    handle.assert_alive()
    remote = handle.remote_value
    if remote.get("sharedId"):
        return {"sharedId": remote["sharedId"]}
    if realm is not None and handle.realm is not realm:
        raise ValueError("JSHandles can be evaluated only in the realm they were created in")
    if remote.get("handle"):
        return {"handle": remote["handle"]}
    # Primitive results carry no reference; send the value itself.
    return {k: v for k, v in remote.items() if k in {"type", "value"}}


def deserialize(remote_value: Any) -> Any:
    if not isinstance(remote_value, dict):
        return remote_value
    kind = remote_value.get("type")
    value = remote_value.get("value")

    if kind in {"undefined", "null"}:
        return None
    if kind in {"string", "boolean"}:
        return value
    if kind == "number":
        return _deserialize_number(value)
    if kind == "bigint":
        return int(value)
    if kind == "array":
        return [deserialize(item) for item in value or []]
    if kind == "set":
        return {_hashable(deserialize(item)) for item in value or []}
    if kind == "object":
        return {_key(k): deserialize(v) for k, v in value or []}
    if kind == "map":
        return {_hashable(_key(k)): deserialize(v) for k, v in value or []}
    if kind == "regexp":
        return _deserialize_regexp(value or {})
    if kind == "date":
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    # node, function, window, promise, error, proxy, ...: no Python equivalent
    return None


def _deserialize_regexp(value: dict[str, Any]) -> Any:
    pattern = value.get("pattern") or ""
    js_flags = value.get("flags") or ""
    flags = 0
    for ch in js_flags:
        flags |= _JS_TO_PY_FLAGS.get(ch, 0)
    try:
        return re.compile(pattern, flags)
    except re.error:
        # Unicode property escapes, `[^]` and friends have no `re` spelling.
        return RegExp(pattern, js_flags)


def _deserialize_number(value: Any) -> Any:
    if value == "NaN":
        return math.nan
    if value == "Infinity":
        return math.inf
    if value == "-Infinity":
        return -math.inf
    if value == "-0":
        return -0.0
    return value


def _key(key: Any) -> Any:
    return key if isinstance(key, str) else deserialize(key)


def _hashable(value: Any) -> Any:
    if isinstance(value, list):
        return tuple(_hashable(v) for v in value)
    if isinstance(value, dict):
        return tuple((k, _hashable(v)) for k, v in value.items())
    if isinstance(value, set):
        return frozenset(value)
    return value
