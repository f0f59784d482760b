"""Shared validation helpers for Perplexity MCP tools."""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

# ISO 3166-1 alpha-2 country codes, e.g. US, GB, MY.
COUNTRY_CODE_REGEX = re.compile(r"^[A-Za-z]{2}$")
MAX_QUERY_LENGTH = 2000


def clamp_limit(value: Optional[int], *, default: int, max_value: int, minimum: int = 0) -> int:
    """Clamp limit-style integers to configured bounds."""
    if value is None or isinstance(value, bool):
        return default
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    if parsed < minimum:
        return default
    return min(parsed, max_value)


def is_valid_country_code(country: Optional[str]) -> bool:
    if not country or not isinstance(country, str):
        return False
    return bool(COUNTRY_CODE_REGEX.fullmatch(country.strip()))


def normalize_messages(messages: Any) -> Optional[List[Dict[str, str]]]:
    """
    Validate a chat message list.

    Returns:
        A list of ``{"role", "content"}`` dicts, or None when the input is not a
        non-empty list of messages with string role and content.
    """
    if not isinstance(messages, list) or not messages:
        return None
    normalized: List[Dict[str, str]] = []
    for message in messages:
        if not isinstance(message, dict):
            return None
        role = message.get("role")
        content = message.get("content")
        if not isinstance(role, str) or not role.strip() or not isinstance(content, str):
            return None
        normalized.append({"role": role.strip(), "content": content})
    return normalized
