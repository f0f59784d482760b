"""Direct web search tool backed by the Perplexity Search API."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from perplexity_mcp.config import ServerConfig, default_config
from perplexity_mcp.perplexity_api import (
    MissingApiKeyError,
    PerplexityApiError,
    default_client,
)
from perplexity_mcp.tools.validators import MAX_QUERY_LENGTH, clamp_limit, is_valid_country_code

logger = logging.getLogger(__name__)

NO_RESULTS_MESSAGE = "No search results found."


def format_search_results(data: Dict[str, Any]) -> str:
    results = data.get("results")
    if not isinstance(results, list):
        return NO_RESULTS_MESSAGE

    lines = [f"Found {len(results)} search results:", ""]
    for index, result in enumerate(results, start=1):
        if not isinstance(result, dict):
            continue
        lines.append(f"{index}. **{result.get('title', '')}**")
        lines.append(f"   URL: {result.get('url', '')}")
        if result.get("snippet"):
            lines.append(f"   {result['snippet']}")
        if result.get("date"):
            lines.append(f"   Date: {result['date']}")
        lines.append("")
    return "\n".join(lines) + "\n"


async def perplexity_search(
    query: str,
    max_results: Optional[int] = None,
    country: Optional[str] = None,
    *,
    api_key: Optional[str] = None,
    client=default_client,
    config: ServerConfig = default_config,
) -> Any:
    """
    Ranked web search returning titles, URLs, snippets, and dates.

    Args:
        query: Search query string.
        max_results: Number of results (1-20, default 10).
        country: Optional ISO 3166-1 alpha-2 code for regional results.
        api_key: Caller-supplied key; falls back to the server default.
        client: Perplexity API client (override for testing).

    Returns:
        Formatted result text, or an error dict.
    """
    if not isinstance(query, str) or not query.strip():
        return {"error": "Query is required."}
    if len(query) > MAX_QUERY_LENGTH:
        return {"error": f"Query must be at most {MAX_QUERY_LENGTH} characters."}
    if country is not None and not is_valid_country_code(country):
        return {"error": "Invalid country code."}

    effective_limit = clamp_limit(
        max_results,
        default=config.default_search_results,
        max_value=config.max_search_results,
        minimum=1,
    )
    try:
        data = await client.search(
            query.strip(),
            max_results=effective_limit,
            country=country.strip().upper() if country else None,
            api_key=api_key,
        )
    except MissingApiKeyError as exc:
        return {"error": f"Error: {exc.message}"}
    except PerplexityApiError as exc:
        return {"error": f"Perplexity Search API error: {exc.message}"}
    except Exception:
        logger.exception("Unexpected error running search")
        return {"error": "Error: Unexpected error while calling Perplexity."}

    return format_search_results(data)
