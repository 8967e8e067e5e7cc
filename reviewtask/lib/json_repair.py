"""
Recover JSON from analyzer responses.

Model output is supposed to be bare JSON but often isn't: it arrives wrapped
in a code fence, preceded by an explanation, with raw newlines inside
strings, or cut off mid-array. parse_json_response tries the text as-is and
then each repair in turn until one parses.
"""

import json
import logging
import re
from typing import Any, Callable

logger = logging.getLogger(__name__)

_FENCE_PATTERN = re.compile(r'```(?:json)?[ \t]*\n(.*?)\n[ \t]*```', re.DOTALL)

_CONTROL_ESCAPES = {"\n": "\\n", "\r": "\\r", "\t": "\\t", "\b": "\\b", "\f": "\\f"}


class JSONRepairError(ValueError):
    """No repair strategy produced valid JSON."""
    pass


def strip_markdown_fences(text: str) -> str:
    """Return the body of the first fenced code block, or the text unchanged."""
    text = text.strip()
    match = _FENCE_PATTERN.search(text)
    if match:
        return match.group(1).strip()
    if text.startswith("```"):
        lines = text.split("\n")[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        return "\n".join(lines).strip()
    return text


def extract_json_block(text: str) -> str:
    """Cut the first top-level JSON array or object out of surrounding prose.

    If the value never closes, everything from its opening bracket is
    returned so the truncation repair can still have a go.
    """
    starts = [i for i in (text.find("["), text.find("{")) if i != -1]
    if not starts:
        return text
    start = min(starts)

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
        elif ch in "[{":
            depth += 1
        elif ch in "]}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return text[start:]


def escape_control_characters(text: str) -> str:
    """Escape raw control characters that appear inside JSON strings."""
    out = []
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
            elif ch in _CONTROL_ESCAPES:
                out.append(_CONTROL_ESCAPES[ch])
                continue
            elif ord(ch) < 0x20:
                out.append(f"\\u{ord(ch):04x}")
                continue
        elif ch == '"':
            in_string = True
        out.append(ch)
    return "".join(out)


def close_truncated_json(text: str) -> str:
    """Close an unterminated string and any open arrays or objects.

    A dangling partial element (after the last complete one) is dropped.
    """
    stack = []
    in_string = False
    escaped = False
    last_complete = None  # index after the last fully closed element at any depth

    for i, ch in enumerate(text):
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
        elif ch in "[{":
            stack.append("]" if ch == "[" else "}")
        elif ch in "]}":
            if stack:
                stack.pop()
            last_complete = i + 1

    if not stack:
        return text + ('"' if in_string else "")

    if last_complete is not None:
        body = text[:last_complete]
        # recount what is still open at the cut point
        return _close_prefix(body)
    return _close_prefix(text + ('"' if in_string else ""))


def _close_prefix(text: str) -> str:
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
        elif ch in "[{":
            stack.append("]" if ch == "[" else "}")
        elif ch in "]}" and stack:
            stack.pop()
    text = text.rstrip().rstrip(",")
    return text + "".join(reversed(stack))


STRATEGIES: list[tuple[str, Callable[[str], str]]] = [
    ("strip_fences", strip_markdown_fences),
    ("extract_block", extract_json_block),
    ("escape_control", escape_control_characters),
    ("close_truncated", close_truncated_json),
]


def parse_json_response(text: str) -> Any:
    """Parse analyzer output, applying repairs cumulatively until it parses.

    Raises:
        JSONRepairError: if nothing worked
    """
    current = text.strip()
    try:
        return json.loads(current)
    except json.JSONDecodeError:
        pass

    last_error = None
    for name, strategy in STRATEGIES:
        current = strategy(current)
        try:
            value = json.loads(current)
        except json.JSONDecodeError as e:
            last_error = e
            continue
        logger.debug(f"Recovered analyzer JSON with '{name}'")
        return value

    raise JSONRepairError(f"Could not recover JSON from response: {last_error}")
