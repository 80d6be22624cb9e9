"""
core/normalize.py -- Canonical form for the attribute where_used field.

where_used reaches the API in several shapes depending on the client:
  - a native JSON list:                 ["crm", "billing"]
  - a single plain string:              "crm"
  - a JSON-encoded list in a form field: '["crm", "billing"]'
  - list elements that are themselves JSON-encoded lists, or JSON strings
    wrapping JSON lists, produced by multipart forms that re-serialize an
    already serialized value:          ['["crm"]', '"[\\"billing\\"]"']

normalize_where_used() reduces all of these to a flat list of non-empty,
trimmed, de-duplicated strings in first-seen order. It is applied on every
write and again on every read, so rows stored by older clients come back
clean. Its output is a fixed point: normalize_where_used(normalize_where_used(x))
== normalize_where_used(x).

encode_where_used() / decode_where_used() are the column codec used by
vault/store.py. The column holds a JSON array of strings.

Layer rule: core/ is the kernel. No imports from api/, auth/, or vault/.
"""

from __future__ import annotations

import json
from typing import Any


def _parse_json(text: str) -> tuple[bool, Any]:
    # Bracket nesting deeper than the interpreter's recursion limit counts as
    # unparseable text, not a server error.
    try:
        return True, json.loads(text)
    except (ValueError, RecursionError):
        return False, None


def _looks_like_json(text: str) -> bool:
    return text.lstrip()[:1] in ("[", "{")


def _expand_string(value: str) -> list[Any]:
    """Unwrap one JSON-encoded string, recursing into any list it contains.

    A string that does not decode to a list (directly, or through one more
    JSON-looking string layer) is kept as the original single element.
    """
    ok, parsed = _parse_json(value)
    if not ok:
        return [value]
    if isinstance(parsed, list):
        return _expand_list(parsed)
    if isinstance(parsed, str) and _looks_like_json(parsed):
        ok, inner = _parse_json(parsed)
        if ok and isinstance(inner, list):
            return _expand_list(inner)
    return [value]


def _expand_list(values: list | tuple) -> list[Any]:
    """Depth-first flatten with an explicit stack, so nesting depth is unbounded."""
    flat: list[Any] = []
    stack = [iter(values)]
    while stack:
        for item in stack[-1]:
            if isinstance(item, (list, tuple)):
                stack.append(iter(item))
                break
            if isinstance(item, str):
                flat.extend(_expand_string(item))
            else:
                flat.append(item)
        else:
            stack.pop()
    return flat


def _as_text(item: Any) -> str:
    if isinstance(item, str):
        return item.strip()
    if not item:
        # None, False, 0 and empty containers are dropped
        return ""
    try:
        return json.dumps(item)
    except RecursionError:
        # objects nested too deeply to serialize are dropped
        return ""


def normalize_where_used(value: Any) -> list[str]:
    """Return the canonical flat list of where_used tags for any input shape."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        items = _expand_list(value)
    elif isinstance(value, str):
        items = _expand_string(value)
    else:
        items = [value]

    seen: set[str] = set()
    result: list[str] = []
    for item in items:
        text = _as_text(item)
        if text and text not in seen:
            seen.add(text)
            result.append(text)
    return result


def encode_where_used(value: Any) -> str:
    """Normalize and serialize for storage in the where_used TEXT column."""
    return json.dumps(normalize_where_used(value))


def decode_where_used(raw: str | None) -> list[str]:
    """Deserialize a stored where_used column, healing legacy encodings.

    The column is JSON-decoded first, so a legacy row holding a bare JSON
    string ('"crm"') reads back as ["crm"]. Text that is not JSON at all is
    normalized as-is.
    """
    if not raw:
        return []
    ok, parsed = _parse_json(raw)
    return normalize_where_used(parsed if ok else raw)
