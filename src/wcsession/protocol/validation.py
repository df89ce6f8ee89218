from __future__ import annotations
import json
import string
from typing import Any, Dict
from .constants import MAX_MSG_BYTES, MAX_JSON_DEPTH, MAX_JSON_KEYS

_HEX = frozenset(string.hexdigits)


def fuzz_resistant_json_loads(s: str) -> Any:
    if len(s) > MAX_MSG_BYTES * 2:
        raise ValueError("Message too large")

    def object_hook(obj):
        if len(obj) > MAX_JSON_KEYS:
            raise ValueError("Too many JSON keys")
        return obj

    parsed = json.loads(s, object_hook=object_hook)

    def check_depth(obj, depth=0):
        if depth > MAX_JSON_DEPTH:
            raise ValueError("JSON nesting too deep")
        if isinstance(obj, dict):
            for v in obj.values():
                check_depth(v, depth + 1)
        elif isinstance(obj, list):
            for v in obj:
                check_depth(v, depth + 1)

    check_depth(parsed)
    return parsed


def json_object_loads(s: str) -> Dict[str, Any]:
    parsed = fuzz_resistant_json_loads(s)
    if not isinstance(parsed, dict):
        raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed


def json_dumps_compact(o: Any) -> str:
    return json.dumps(o, ensure_ascii=False, separators=(",", ":"))


def validate_hex(s: str, name: str, min_bytes: int, max_bytes: int | None = None) -> bytes:
    if not isinstance(s, str) or len(s) % 2 or not _HEX.issuperset(s):
        raise ValueError(f"Invalid hex for {name}")
    data = bytes.fromhex(s)
    if len(data) < min_bytes:
        raise ValueError(f"{name} too short: {len(data)} < {min_bytes}")
    if max_bytes and len(data) > max_bytes:
        raise ValueError(f"{name} too long: {len(data)} > {max_bytes}")
    return data
