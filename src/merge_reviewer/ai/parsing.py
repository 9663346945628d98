"""Lenient parsing of free-form model output.

Model output is treated as untrusted: it is first parsed into a loose
``dict`` and then coerced field by field into typed values by the callers.
"""

import json
import logging
import math
import re
from enum import Enum
from typing import Any, TypeVar

from merge_reviewer.errors import ResponseParseError

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)

_FENCE_JSON = re.compile(r"```json\s*([\s\S]*?)```")
_FENCE_ANY = re.compile(r"```\s*([\s\S]*?)```")
_BRACES = re.compile(r"\{[\s\S]*\}")


def _strip_code_fences(content: str) -> str:
    if "```json" in content:
        match = _FENCE_JSON.search(content)
        if match:
            return match.group(1).strip()
    elif "```" in content:
        match = _FENCE_ANY.search(content)
        if match:
            return match.group(1).strip()
    return content


def _loads_object(text: str) -> dict[str, Any] | None:
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def extract_json_document(text: str) -> dict[str, Any]:
    """Extract a JSON object from model output.

    Tries, in order: the whole (fence-stripped) text, the outermost
    brace-delimited span, and a line scan that grows a candidate from the
    first line opening an object until it parses.

    Args:
        text: Raw model output

    Returns:
        The parsed object

    Raises:
        ResponseParseError: If no strategy yields a JSON object
    """
    content = _strip_code_fences((text or "").strip())

    data = _loads_object(content)
    if data is not None:
        return data

    match = _BRACES.search(content)
    if match:
        data = _loads_object(match.group(0))
        if data is not None:
            logger.debug("Parsed model output via brace extraction")
            return data

    lines = content.splitlines()
    start = next((i for i, line in enumerate(lines) if line.strip().startswith("{")), None)
    if start is not None:
        for end in range(start, len(lines)):
            if not lines[end].rstrip().endswith("}"):
                continue
            data = _loads_object("\n".join(lines[start : end + 1]))
            if data is not None:
                logger.debug("Parsed model output via line scan")
                return data

    raise ResponseParseError("No valid JSON object found in model output")


def clamp_number(value: Any, low: float, high: float, default: float) -> float:
    """Coerce a loosely-typed value into a bounded number.

    Missing, non-numeric and NaN values fall back to ``default``.
    """
    if isinstance(value, bool):
        return default
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return default
    if not isinstance(value, (int, float)) or math.isnan(value):
        return default
    return max(low, min(high, float(value)))


def coerce_enum(value: Any, enum_cls: type[E], default: E) -> E:
    """Match a string against an enum's values, case-insensitively."""
    if isinstance(value, str):
        normalized = value.strip().lower()
        for member in enum_cls:
            if str(member.value).lower() == normalized:
                return member
    return default


def coerce_str(value: Any, default: str) -> str:
    """Return a non-blank string or the default."""
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def coerce_int(value: Any) -> int | None:
    """Return a positive integer or None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, float) and value.is_integer() and value > 0:
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        number = int(value.strip())
        return number if number > 0 else None
    return None


def estimate_tokens(text: str) -> int:
    """Rough token estimate (about four characters per token)."""
    return math.ceil(len(text) / 4)
