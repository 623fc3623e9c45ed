"""
Heuristic text extraction from provider response bodies.

Provider envelopes are unpredictable (Responses API output arrays, chat
choices, nested message/content objects). `extract_text` walks the decoded
JSON value and returns the first string that looks like real content:

1. Fast path for the Responses API shape: output[].content[] items with
   type == "output_text".
2. Depth-bounded structural recursion over the JSON variant. Strings are
   screened (id prefixes, too short, too few words, too many symbols),
   dicts try priority fields before the remaining non-metadata keys.

First acceptable hit wins; matches are never concatenated.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Union

JsonValue = Union[None, bool, int, float, str, List[Any], Dict[str, Any]]

MAX_DEPTH = 5
MIN_TEXT_LENGTH = 10
MIN_WORDS = 3
LONG_TEXT_LENGTH = 100
SYMBOL_RATIO_LIMIT = 0.4
SYMBOL_CHECK_LENGTH = 1000

_ID_PREFIX = re.compile(r"^(resp_|msg_|req_|id_|chatcmpl-)", re.IGNORECASE)
_WORD = re.compile(r"\b[a-zA-Z]{2,}\b")
_SYMBOL = re.compile(r"[^a-zA-Z0-9\s.,!?;:'\"()\-]")
_CLEAN_RUN = re.compile(r"[a-zA-Z\s.,!?;:'\"()\-]{50,}")

PRIORITY_FIELDS = ("output_text", "text", "content", "message", "output")
METADATA_KEYS = frozenset(
    {"id", "object", "created_at", "status", "error", "usage", "model", "billing"}
)


def extract_text(body: JsonValue, *, max_depth: int = MAX_DEPTH) -> Optional[str]:
    """
    Pull plausible plain text out of a decoded JSON response body.

    Args:
        body: Decoded JSON value (dict/list/str/number/bool/None)
        max_depth: Maximum nesting depth the recursive search descends to

    Returns:
        The first acceptable string, or None if nothing plausible was found
    """
    direct = _extract_output_text(body)
    if direct:
        return direct
    return _search(body, 0, max_depth)


def _extract_output_text(body: JsonValue) -> Optional[str]:
    if not isinstance(body, dict):
        return None

    output = body.get("output")
    if isinstance(output, list):
        items = [item for item in output if isinstance(item, dict)]
        # output_text content ranks above any other text field
        for item in items:
            for part in _dict_items(item.get("content")):
                text = part.get("text")
                if part.get("type") == "output_text" and isinstance(text, str) and text:
                    return text
        for item in items:
            for part in _dict_items(item.get("content")):
                text = part.get("text")
                if isinstance(text, str) and text:
                    return text
            text = item.get("text")
            if isinstance(text, str) and text:
                return text

    output_text = body.get("output_text")
    if isinstance(output_text, str) and output_text.strip():
        return output_text
    return None


def _dict_items(value: JsonValue) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _search(value: JsonValue, depth: int, max_depth: int) -> Optional[str]:
    if depth > max_depth or value is None:
        return None
    # bool is an int subclass; neither carries text
    if isinstance(value, (bool, int, float)):
        return None
    if isinstance(value, str):
        return accept_string(value)
    if isinstance(value, list):
        for item in value:
            found = _search(item, depth + 1, max_depth)
            if found:
                return found
        return None
    if isinstance(value, dict):
        return _search_object(value, depth, max_depth)
    return None


def _search_object(value: Dict[str, Any], depth: int, max_depth: int) -> Optional[str]:
    for key in PRIORITY_FIELDS:
        if key not in value:
            continue
        field_value = value[key]
        if isinstance(field_value, str):
            # `text` only needs to be long enough; other fields are screened
            if key == "text":
                if len(field_value) > MIN_TEXT_LENGTH and not _ID_PREFIX.match(field_value):
                    return field_value
            else:
                accepted = accept_string(field_value)
                if accepted:
                    return accepted
            continue
        found = _search(field_value, depth + 1, max_depth)
        if found:
            return found

    for key, field_value in value.items():
        if key in METADATA_KEYS or key in PRIORITY_FIELDS:
            continue
        found = _search(field_value, depth + 1, max_depth)
        if found:
            return found
    return None


def accept_string(text: str) -> Optional[str]:
    """
    Screen a candidate string.

    Returns the string (or a salvaged clean substring) when it reads like
    content, None when it looks like an id, a token or corrupted data.
    """
    if _ID_PREFIX.match(text):
        return None
    if len(text) < MIN_TEXT_LENGTH:
        return None

    words = _WORD.findall(text)
    if len(words) < MIN_WORDS and len(text) < LONG_TEXT_LENGTH:
        return None

    symbol_ratio = len(_SYMBOL.findall(text)) / len(text)
    if symbol_ratio > SYMBOL_RATIO_LIMIT and len(text) < SYMBOL_CHECK_LENGTH:
        clean = _CLEAN_RUN.findall(text)
        if clean:
            return max(clean, key=len).strip()
        return None

    return text
