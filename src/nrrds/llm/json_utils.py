"""Cleanup helpers for JSON produced by the formatting models."""

import json
import re
from typing import Any, Dict

from loguru import logger

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*$", re.IGNORECASE)


def sanitize_model_json(raw: str) -> str:
    """Strip markdown code fences and stray backticks around a JSON payload.

    Only a fence on the first line and a closing fence on the last line are
    removed; anything inside is left untouched.
    """
    cleaned = raw.strip()

    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        if _FENCE_OPEN.match(lines[0].strip()):
            lines.pop(0)
        if lines and lines[-1].strip() == "```":
            lines.pop()
        cleaned = "\n".join(lines).strip()

    return cleaned.strip("`").strip()


def extract_braced_json(raw: str) -> str:
    """Return the text between the first ``{`` and the last ``}`` inclusive.

    Input without such a pair is returned stripped but otherwise unchanged.
    """
    cleaned = raw.strip()
    first = cleaned.find("{")
    last = cleaned.rfind("}")
    if first != -1 and last > first:
        return cleaned[first:last + 1]
    return cleaned


def parse_model_json(text: str) -> Dict[str, Any]:
    """Parse a JSON object.

    Raises:
        ValueError: If the text is not valid JSON or not an object
    """
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        logger.debug(f"JSON parse failed at char {e.pos}: {text[:300]}")
        raise ValueError(f"invalid JSON: {e.msg}") from e
    if not isinstance(parsed, dict):
        raise ValueError(f"expected a JSON object, got {type(parsed).__name__}")
    return parsed
