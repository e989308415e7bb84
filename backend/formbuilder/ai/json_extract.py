"""
Best-effort JSON recovery from LLM text.
Order: direct parse → fenced code block → first balanced top-level {...} span.
"""
import json
import re
from typing import Any, Optional

_THINK_RE = re.compile(r"<think>.*?</think>", re.DOTALL)
_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)
# Deeply nested input exhausts the decoder's recursion limit.
_PARSE_ERRORS = (json.JSONDecodeError, RecursionError)


def strip_reasoning(text: str) -> str:
    """Drop <think> blocks emitted by reasoning models (Qwen/DeepSeek)."""
    return _THINK_RE.sub("", text).strip()


def extract_json(text: str) -> Optional[Any]:
    """Return the first JSON value recoverable from text, or None."""
    if not text:
        return None
    text = strip_reasoning(text)

    try:
        return json.loads(text)
    except _PARSE_ERRORS:
        pass

    for block in _FENCE_RE.findall(text):
        try:
            return json.loads(block)
        except _PARSE_ERRORS:
            continue

    span = _first_object_span(text)
    if span is not None:
        try:
            return json.loads(span)
        except _PARSE_ERRORS:
            return None
    return None


def _first_object_span(text: str) -> Optional[str]:
    """Find the first balanced {...} span, ignoring braces inside strings."""
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None
