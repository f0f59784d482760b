"""Diagnostic tool confirming the server is reachable."""

from __future__ import annotations

from typing import Any, Dict, Optional

from perplexity_mcp.analytics.store import format_timestamp, utcnow
from perplexity_mcp.perplexity_api import default_client

PERPLEXITY_TOOLS = ["perplexity_ask", "perplexity_research", "perplexity_reason", "perplexity_search"]


def perplexity_hello(*, api_key: Optional[str] = None, client=default_client) -> Dict[str, Any]:
    """Report transport, key availability, and the tool list without calling upstream."""
    return {
        "message": "Hello from Perplexity MCP Server!",
        "timestamp": format_timestamp(utcnow()),
        "transport": "streamable-http",
        "hasApiKey": bool(api_key) or client.has_default_key,
        "availableTools": list(PERPLEXITY_TOOLS),
    }
