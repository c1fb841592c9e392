"""
Lenient JSON parsing for model output that wraps JSON in prose or code fences.
"""
import json
from typing import Any, List, Optional

_CLOSERS = {'{': '}', '[': ']'}


def _match_close(text: str, start: int) -> Optional[int]:
    """Index of the bracket closing text[start], or None if unbalanced."""
    stack = [_CLOSERS[text[start]]]
    in_string = False
    escaped = False
    for i in range(start + 1, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == '\\':
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in '}]':
            if ch != stack.pop():
                return None
            if not stack:
                return i
    return None


def find_json_blocks(text: str) -> List[str]:
    """Top-level balanced {...}/[...] substrings, largest first."""
    blocks = []
    i = 0
    while i < len(text):
        if text[i] in _CLOSERS:
            end = _match_close(text, i)
            if end is not None:
                blocks.append(text[i:end + 1])
                i = end + 1
                continue
        i += 1

    # First opener to last closer, for blocks a stray quote confused
    first = min((p for p in (text.find('{'), text.find('[')) if p >= 0), default=-1)
    last = max(text.rfind('}'), text.rfind(']'))
    if 0 <= first < last:
        span = text[first:last + 1]
        if span not in blocks:
            blocks.append(span)

    return sorted(blocks, key=len, reverse=True)


def salvage_json(text: str) -> Any:
    """Parse the largest recoverable JSON block in `text`. Raises ValueError if there is none."""
    for block in find_json_blocks(text or ""):
        try:
            return json.loads(block)
        except json.JSONDecodeError:
            continue
    raise ValueError("no parseable JSON block found")


def parse_json_lenient(text: str) -> Any:
    """Strict json.loads first, then salvage."""
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return salvage_json(text)
