"""Heuristic reasoning/answer text extraction for OpenAI-compatible stream chunks.

Providers disagree on where they put "thinking" tokens: some use a sibling key
(``reasoning_content``, ``reasoning``, ``thinking`` ...), some multiplex typed
blocks inside ``content``, and non-streaming shapes put text on the choice
itself. Extraction walks these shapes in a fixed precedence order.
"""

from __future__ import annotations
from typing import Any, AbstractSet, Optional, Sequence, Tuple

from examsolver.core.json_value import JsonObject, JsonValue, as_object, primitive_text

REASONING_FIELD_KEYS: Tuple[str, ...] = (
    "reasoning_content",
    "reasoning",
    "reasoningContent",
    "reasoning_text",
    "reasoningText",
    "reasoning_output",
    "reasoningOutput",
    "reasoning_details",
    "chain_of_thought",
    "chainOfThought",
    "thoughts",
    "thinking",
    "thinking_content",
    "thinkingContent",
    "thought",
    "analysis",
)

REASONING_BLOCK_TYPES = frozenset(
    {
        "reasoning",
        "reasoning_content",
        "reasoning_text",
        "reasoning_delta",
        "reasoning_delta_text",
        "reasoning_summary",
        "thinking",
        "thinking_content",
        "thinking_delta",
        "thinking_delta_text",
        "summary",
        "summary_text",
        "analysis",
        "thought",
    }
)

CONTENT_FIELD_KEYS: Tuple[str, ...] = (
    "content",
    "text",
    "output_text",
    "answer",
    "value",
    "token",
    "parts",
    "delta",
)

CONTENT_BLOCK_TYPES = frozenset(
    {
        "text",
        "text_delta",
        "output_text",
        "output_text_delta",
        "answer",
        "final_answer",
        "final",
        "assistant_response",
        "assistant",
        "message",
        "content",
        "response_text",
        "final_text",
    }
)

_ALL_TEXT_KEYS: Tuple[str, ...] = CONTENT_FIELD_KEYS + REASONING_FIELD_KEYS
_REASONING_KEY_SET = frozenset(REASONING_FIELD_KEYS)


def _signal(text: Optional[str]) -> Optional[str]:
    # Empty output falls through to the next heuristic
    return text if text else None


def extract_text(
    value: JsonValue,
    preferred_keys: Sequence[str] = _ALL_TEXT_KEYS,
    excluded_keys: AbstractSet[str] = frozenset(),
) -> Optional[str]:
    """Recursively pull text out of an arbitrary JSON value.

    Primitives are stringified, arrays concatenate their elements, objects
    return the first non-empty preferred key or else concatenate every
    non-excluded entry.
    """
    if value is None:
        return None
    text = primitive_text(value)
    if text is not None:
        return _signal(text)
    if isinstance(value, list):
        parts = [extract_text(item, preferred_keys, excluded_keys) for item in value]
        return _signal("".join(p for p in parts if p))
    if isinstance(value, dict):
        for key in preferred_keys:
            if key in excluded_keys:
                continue
            found = extract_text(value.get(key), preferred_keys, excluded_keys)
            if found:
                return found
        parts = [
            extract_text(v, preferred_keys, excluded_keys)
            for k, v in value.items()
            if k not in excluded_keys
        ]
        return _signal("".join(p for p in parts if p))
    return None


def _normalize_type(raw: Any) -> str:
    return raw.strip().lower() if isinstance(raw, str) else ""


def extract_typed_blocks(
    value: JsonValue,
    include_types: AbstractSet[str],
    exclude_types: AbstractSet[str] = frozenset(),
    allow_untyped: bool = False,
) -> Optional[str]:
    """Concatenate the text of blocks whose ``type`` passes the filters."""
    if value is None:
        return None
    if isinstance(value, list):
        parts = [
            extract_typed_blocks(block, include_types, exclude_types, allow_untyped)
            for block in value
        ]
        return _signal("".join(p for p in parts if p))
    block = as_object(value)
    if block is None:
        return None
    block_type = _normalize_type(block.get("type"))
    if block_type:
        if block_type in exclude_types or block_type not in include_types:
            return None
    elif not allow_untyped:
        return None
    return extract_text(block, _ALL_TEXT_KEYS, frozenset({"type"}))


def _primitive_array_text(value: JsonValue) -> Optional[str]:
    if not isinstance(value, list):
        return None
    parts = [primitive_text(item) for item in value if not isinstance(item, (list, dict))]
    return _signal("".join(p for p in parts if p))


def _probe_keys(obj: Optional[JsonObject], keys: Sequence[str]) -> Optional[str]:
    if obj is None:
        return None
    for key in keys:
        found = extract_text(obj.get(key))
        if found:
            return found
    return None


def extract_reasoning(choice: Optional[JsonObject], delta: Optional[JsonObject]) -> Optional[str]:
    found = _probe_keys(delta, REASONING_FIELD_KEYS)
    if found:
        return found
    if delta is not None:
        found = extract_typed_blocks(delta.get("content"), REASONING_BLOCK_TYPES)
        if found:
            return found
    # Non-streaming shapes carry reasoning at the choice or message level
    found = _probe_keys(choice, REASONING_FIELD_KEYS)
    if found:
        return found
    if choice is not None:
        return _probe_keys(as_object(choice.get("message")), REASONING_FIELD_KEYS)
    return None


def extract_content(choice: Optional[JsonObject], delta: Optional[JsonObject]) -> Optional[str]:
    if delta is not None:
        raw = delta.get("content")
        found = extract_typed_blocks(
            raw, CONTENT_BLOCK_TYPES, exclude_types=REASONING_BLOCK_TYPES, allow_untyped=True
        )
        if found:
            return found
        found = _primitive_array_text(raw)
        if found:
            return found
        if raw is not None and not isinstance(raw, (list, dict)):
            found = _signal(primitive_text(raw))
            if found:
                return found
        for key in CONTENT_FIELD_KEYS:
            if key == "content":
                continue
            found = extract_text(delta.get(key), CONTENT_FIELD_KEYS, _REASONING_KEY_SET)
            if found:
                return found
    if choice is None:
        return None
    found = extract_text(choice.get("text"))
    if found:
        return found
    message = as_object(choice.get("message"))
    if message is not None:
        return extract_text(message.get("content"), CONTENT_FIELD_KEYS, _REASONING_KEY_SET)
    return None


def classify_chunk(
    choice: Optional[JsonObject], delta: Optional[JsonObject]
) -> Tuple[Optional[str], Optional[str]]:
    """Return ``(reasoning, content)`` for one chunk.

    When a provider repeats the same literal text under a reasoning key and a
    content key, the chunk is reported as reasoning only.
    """
    reasoning = extract_reasoning(choice, delta)
    content = extract_content(choice, delta)
    if reasoning and content == reasoning:
        content = None
    return reasoning, content
