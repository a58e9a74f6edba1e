from __future__ import annotations

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)


def parse_json_object(raw: Any) -> Any | None:
    """
    Parse a JSON-serializable object from a string or pass through dict/list.

    Returns None for empty strings or invalid JSON.
    """
    if raw is None:
        return None
    if isinstance(raw, str):
        raw_str = raw.strip()
        if not raw_str:
            return None
        try:
            return json.loads(raw_str)
        except json.JSONDecodeError:
            logger.warning("Invalid JSON string for structured field: %s", raw_str)
            return None
    if isinstance(raw, (dict, list)):
        return raw
    return None


def dump_json_field(value: Any) -> str | None:
    """Safely serialize structured fields to JSON strings for storage."""
    if value is None:
        return None
    try:
        return json.dumps(value)
    except (TypeError, ValueError):
        logger.warning("Unable to serialize structured field to JSON: %s", value)
        return None
