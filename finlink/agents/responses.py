"""
Helpers for pulling JSON out of model responses.

Gemini is asked for bare JSON but sometimes wraps it in markdown fences
or adds a sentence around it.
"""

import json
import re
from typing import Any, Optional


_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    return _FENCE.sub("", (text or "").strip()).strip()


def _find_json(text: str, opener: str, closer: str) -> Optional[Any]:
    cleaned = strip_code_fences(text)
    start = cleaned.find(opener)
    end = cleaned.rfind(closer) + 1
    if start < 0 or end <= start:
        return None
    try:
        return json.loads(cleaned[start:end])
    except ValueError:
        return None


def find_json_object(text: str) -> Optional[dict]:
    """First-to-last brace slice of the response, parsed, or None."""
    data = _find_json(text, "{", "}")
    return data if isinstance(data, dict) else None


def find_json_array(text: str) -> Optional[list]:
    """First-to-last bracket slice of the response, parsed, or None."""
    data = _find_json(text, "[", "]")
    return data if isinstance(data, list) else None
