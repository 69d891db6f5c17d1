"""Helpers for pulling structured data out of model output."""

from __future__ import annotations

import json
import re
from typing import Any

_CODE_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def extract_json_dict(raw: str) -> dict[str, Any]:
    """
    Return the first JSON object in ``raw``.

    Model output sometimes wraps the object in prose or a fenced block even
    when JSON mode is requested. Raises ValueError if no object is found or
    the first JSON value is not an object.
    """
    if not isinstance(raw, str):
        raise ValueError("payload must be a string")
    text = raw.lstrip("\ufeff").strip()
    if not text:
        raise ValueError("payload is empty")

    fenced = _CODE_FENCE_RE.search(text)
    if fenced:
        text = fenced.group(1).strip()

    decoder = json.JSONDecoder()
    for index, char in enumerate(text):
        if char not in "{[":
            continue
        try:
            obj, _ = decoder.raw_decode(text[index:])
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict):
            return obj
        raise ValueError("JSON root must be an object")

    raise ValueError("No JSON object found in payload")


def string_list(value: Any, *, limit: int = 10) -> list[str]:
    """Coerce a model-provided scalar or list into trimmed, de-duplicated strings."""
    if value is None:
        return []
    items = value if isinstance(value, (list, tuple)) else [value]
    seen: set[str] = set()
    result: list[str] = []
    for item in items:
        if item is None or isinstance(item, (dict, list)):
            continue
        text = str(item).strip()
        key = text.casefold()
        if text and key not in seen:
            seen.add(key)
            result.append(text)
        if len(result) >= limit:
            break
    return result


__all__ = ["extract_json_dict", "string_list"]
