from __future__ import annotations
import json
from typing import Any, Dict, List, Optional, Union

# Closed set of shapes a decoded provider chunk can take
JsonValue = Union[None, bool, int, float, str, List["JsonValue"], Dict[str, "JsonValue"]]
JsonObject = Dict[str, JsonValue]


def primitive_text(value: Any) -> Optional[str]:
    """Stringify a JSON primitive the way it is spelled on the wire.

    Strings are returned unchanged; numbers and booleans use their JSON form
    (``true``, ``42``, ``1.5``). Anything else yields ``None``.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, (bool, int, float)):
        return json.dumps(value)
    return None


def as_object(value: Any) -> Optional[JsonObject]:
    return value if isinstance(value, dict) else None


def loads_object(data: str) -> JsonObject:
    """Parse one SSE payload; raises ValueError unless it is a JSON object."""
    parsed = json.loads(data)
    if not isinstance(parsed, dict):
        raise ValueError(f"expected JSON object, got {type(parsed).__name__}")
    return parsed


def first_choice(chunk: JsonObject) -> Optional[JsonObject]:
    choices = chunk.get("choices")
    if isinstance(choices, list) and choices:
        return as_object(choices[0])
    return None
