"""
LLM Output Parsing
==================

Model replies are parsed into a tagged result instead of raising:

    Parsed(value)            - the reply held the JSON we asked for
    Fallback(reason, raw)    - it did not; callers pick a safe default

Replies wrapped in ```json fences are unwrapped first.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar, Union

T = TypeVar("T")

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)


@dataclass(frozen=True)
class Parsed(Generic[T]):
    value: T


@dataclass(frozen=True)
class Fallback:
    reason: str
    raw: str = ""


ParseResult = Union[Parsed[T], Fallback]


def strip_code_fences(text: str) -> str:
    """Return the body of the first fenced block, or the trimmed text."""
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def _locate_json(text: str) -> str:
    """Narrow prose-wrapped replies down to the outermost object or array."""
    starts = [i for i in (text.find("{"), text.find("[")) if i >= 0]
    if not starts:
        return text
    start = min(starts)
    closing = "}" if text[start] == "{" else "]"
    end = text.rfind(closing)
    if end <= start:
        return text
    return text[start:end + 1]


def parse_json_response(text: str) -> ParseResult[Any]:
    """Parse a model reply as JSON."""
    if not text or not text.strip():
        return Fallback("Empty response", text or "")

    body = strip_code_fences(text)
    try:
        return Parsed(json.loads(body))
    except json.JSONDecodeError:
        pass

    try:
        return Parsed(json.loads(_locate_json(body)))
    except json.JSONDecodeError as e:
        return Fallback(f"JSON parsing failed: {e.msg}", text)


def parse_json_object(text: str) -> ParseResult[dict]:
    """Parse a reply that must be a JSON object."""
    result = parse_json_response(text)
    if isinstance(result, Parsed) and not isinstance(result.value, dict):
        return Fallback("Expected a JSON object", text)
    return result


def parse_json_list(text: str) -> ParseResult[list]:
    """Parse a reply that must be a JSON array."""
    result = parse_json_response(text)
    if isinstance(result, Parsed) and not isinstance(result.value, list):
        return Fallback("Expected a JSON array", text)
    return result


def map_parsed(result: ParseResult[Any], fn: Callable[[Any], T]) -> ParseResult[T]:
    """
    Apply `fn` to a Parsed value. A ValueError, KeyError or TypeError from
    `fn` turns the result into a Fallback.
    """
    if isinstance(result, Fallback):
        return result
    try:
        return Parsed(fn(result.value))
    except (ValueError, KeyError, TypeError) as e:
        return Fallback(f"Unexpected response shape: {e}", json.dumps(result.value, default=str))
