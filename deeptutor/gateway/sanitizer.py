"""
Best-effort recovery of JSON values from raw model output.

Model text may arrive wrapped in code fences, prefixed with prose, or cut off by the
token budget mid-structure. parse_json_response never raises: it returns either a
ParseSuccess carrying the value or a ParseFailure explaining why nothing was recovered.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Optional, Union

# Closing delimiters tried (from the end backwards) when repairing truncated text
MAX_REPAIR_ATTEMPTS = 64

_LEADING_FENCE = re.compile(r"^\s*```[\w+-]*[ \t]*\n?")
_TRAILING_FENCE = re.compile(r"\n?[ \t]*```\s*$")
_CLOSERS = {"{": "}", "[": "]"}


@dataclass(frozen=True)
class ParseSuccess:
    value: Any
    repaired: bool = False


@dataclass(frozen=True)
class ParseFailure:
    reason: str
    raw_text: str = ""


ParseResult = Union[ParseSuccess, ParseFailure]


def strip_fences(text: str) -> str:
    """Remove a leading ```lang fence and a trailing ``` fence plus surrounding whitespace."""
    text = _LEADING_FENCE.sub("", text.strip(), count=1)
    text = _TRAILING_FENCE.sub("", text, count=1)
    return text.strip()


def _loads(text: str) -> Optional[ParseSuccess]:
    try:
        return ParseSuccess(json.loads(text))
    except (ValueError, RecursionError):
        return None


def _close_open_structures(text: str) -> Optional[str]:
    """Append the closers for any brackets still open at the end of text."""
    stack = []
    in_string = False
    escaped = False
    for ch in text:
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
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in "}]":
            if not stack or stack.pop() != ch:
                return None
    if in_string or not stack:
        return None
    return text + "".join(reversed(stack))


def parse_json_response(text: Any) -> ParseResult:
    """
    Recover a JSON value from model output.

    1. Strip code fences and whitespace, then parse directly.
    2. Skip any prose before the first { or [ and parse again.
    3. Close whatever brackets the body leaves open.
    4. Truncate to each closing delimiter from the end backwards; parse the
       truncated text as is, then with its still-open brackets closed.
    """
    if not isinstance(text, str):
        return ParseFailure("response is not text", repr(text)[:200])

    cleaned = strip_fences(text)
    if not cleaned:
        return ParseFailure("empty response", text)

    parsed = _loads(cleaned)
    if parsed is not None:
        return parsed

    starts = [pos for pos in (cleaned.find("{"), cleaned.find("[")) if pos >= 0]
    if not starts:
        return ParseFailure("no JSON structure found", text)
    body = cleaned[min(starts):]

    parsed = _loads(body)
    if parsed is not None:
        return ParseSuccess(parsed.value, repaired=True)

    closed = _close_open_structures(body)
    if closed:
        parsed = _loads(closed)
        if parsed is not None:
            return ParseSuccess(parsed.value, repaired=True)

    attempts = 0
    for pos in range(len(body) - 1, -1, -1):
        if body[pos] not in "}]":
            continue
        attempts += 1
        if attempts > MAX_REPAIR_ATTEMPTS:
            break
        candidate = body[:pos + 1]
        parsed = _loads(candidate)
        if parsed is not None:
            return ParseSuccess(parsed.value, repaired=True)
        closed = _close_open_structures(candidate)
        if closed:
            parsed = _loads(closed)
            if parsed is not None:
                return ParseSuccess(parsed.value, repaired=True)

    return ParseFailure("unrecoverable JSON", text)
