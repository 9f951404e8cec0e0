"""Locate and parse JSON embedded in free-form model output.

Providers wrap structured answers inconsistently: bare JSON, a ```json fence,
or JSON in the middle of prose. Tiers are tried in a fixed order:

1. the whole body,
2. the interior of a fence labelled ``json``,
3. the first balanced top-level ``{...}`` / ``[...]`` span.
"""

import json
import re
from typing import Any, Iterator, Optional, Tuple

from core.errors import ExtractionError

__all__ = ["extract_json", "extraction_tier", "find_balanced_span"]

_JSON_FENCE = re.compile(r"```[ \t]*json[ \t]*\r?\n?(.*?)```", re.IGNORECASE | re.DOTALL)

_PAIRS = {"{": "}", "[": "]"}


def _loads(text: str, expect: Optional[type]) -> Tuple[bool, Any]:
    try:
        value = json.loads(text)
    except (TypeError, ValueError):
        return False, None
    if expect is not None and not isinstance(value, expect):
        return False, None
    return True, value


def find_balanced_span(text: str, openers: str = "{[") -> Optional[str]:
    """Return the first balanced top-level span starting with one of ``openers``.

    Brackets inside JSON strings are ignored. Nested spans are never
    candidates, and an opener that never closes ends the scan.
    """
    for begin, end in _top_level_spans(text, openers):
        return text[begin:end + 1]
    return None


def _top_level_spans(text: str, openers: str) -> Iterator[Tuple[int, int]]:
    """Yield ``(begin, end)`` of every top-level bracket span opened by one of ``openers``.

    Spans opened by other brackets are stepped over whole. The first span that
    does not close stops the scan: the rest is truncated or malformed output.
    """
    pos = 0
    while True:
        positions = [p for p in (text.find(o, pos) for o in _PAIRS) if p != -1]
        if not positions:
            return
        begin = min(positions)
        end = _match_close(text, begin)
        if end is None:
            return
        if text[begin] in openers:
            yield begin, end
        pos = end + 1


def _match_close(text: str, begin: int) -> Optional[int]:
    stack = [_PAIRS[text[begin]]]
    in_string = False
    escaped = False
    for i in range(begin + 1, len(text)):
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
        elif ch in _PAIRS:
            stack.append(_PAIRS[ch])
        elif ch in "}]":
            if ch != stack[-1]:
                return None
            stack.pop()
            if not stack:
                return i
    return None


def _openers_for(expect: Optional[type]) -> str:
    if expect is dict:
        return "{"
    if expect is list:
        return "["
    return "{["


def _extract(text: str, expect: Optional[type]) -> Tuple[int, Any]:
    if not isinstance(text, str) or not text.strip():
        raise ExtractionError("empty response body")

    ok, value = _loads(text.strip(), expect)
    if ok:
        return 1, value

    for block in _JSON_FENCE.findall(text):
        ok, value = _loads(block.strip(), expect)
        if ok:
            return 2, value

    # Fence markers split the body so a broken fenced block cannot swallow
    # the prose after it. Within a segment only top-level spans are tried.
    openers = _openers_for(expect)
    for segment in text.split("```"):
        for begin, end in _top_level_spans(segment, openers):
            ok, value = _loads(segment[begin:end + 1], expect)
            if ok:
                return 3, value

    raise ExtractionError("no JSON payload found in response")


def extract_json(text: str, expect: Optional[type] = None) -> Any:
    """Parse the structured payload out of ``text``.

    ``expect`` (``dict`` or ``list``) restricts the accepted top-level type.
    Raises ExtractionError when no tier yields a payload.
    """
    return _extract(text, expect)[1]


def extraction_tier(text: str, expect: Optional[type] = None) -> int:
    """Which tier (1-3) produced the payload; raises ExtractionError if none did."""
    return _extract(text, expect)[0]
