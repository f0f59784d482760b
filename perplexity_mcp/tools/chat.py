"""Chat completion tools: ask, research, and reason."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

from perplexity_mcp.config import ASK_MODEL, REASON_MODEL, RESEARCH_MODEL
from perplexity_mcp.perplexity_api import (
    MissingApiKeyError,
    PerplexityApiError,
    default_client,
)
from perplexity_mcp.tools.validators import normalize_messages

logger = logging.getLogger(__name__)

THINK_BLOCK_REGEX = re.compile(r"<think>[\s\S]*?</think>")


def strip_thinking_tokens(content: str) -> str:
    """Remove ``<think>...</think>`` blocks emitted by reasoning models."""
    return THINK_BLOCK_REGEX.sub("", content).strip()


def format_completion(data: Dict[str, Any], *, strip_thinking: bool = False) -> str:
    """Extract the first choice's content and append numbered citations."""
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise PerplexityApiError("Unexpected response from Perplexity API.") from exc
    if not isinstance(content, str):
        raise PerplexityApiError("Unexpected response from Perplexity API.")

    if strip_thinking:
        content = strip_thinking_tokens(content)

    citations = data.get("citations")
    if isinstance(citations, list) and citations:
        content += "\n\nCitations:\n"
        for index, citation in enumerate(citations, start=1):
            content += f"[{index}] {citation}\n"
    return content


async def _complete(
    messages: Any,
    model: str,
    *,
    strip_thinking: bool,
    api_key: Optional[str],
    client,
) -> Any:
    normalized: Optional[List[Dict[str, str]]] = normalize_messages(messages)
    if normalized is None:
        return {"error": "Invalid messages."}

    try:
        data = await client.chat_completion(normalized, model, api_key=api_key)
        return format_completion(data, strip_thinking=strip_thinking)
    except MissingApiKeyError as exc:
        return {"error": f"Error: {exc.message}"}
    except PerplexityApiError as exc:
        return {"error": f"Perplexity API error: {exc.message}"}
    except Exception:
        logger.exception("Unexpected error running chat completion model=%s", model)
        return {"error": "Error: Unexpected error while calling Perplexity."}


async def perplexity_ask(
    messages: List[Dict[str, str]],
    *,
    api_key: Optional[str] = None,
    client=default_client,
) -> Any:
    """
    General conversational answer with real-time web search (sonar-pro).

    Args:
        messages: Conversation as a list of ``{"role", "content"}`` dicts.
        api_key: Caller-supplied key; falls back to the server default.
        client: Perplexity API client (override for testing).

    Returns:
        The answer text with citations, or an error dict.
    """
    return await _complete(messages, ASK_MODEL, strip_thinking=False, api_key=api_key, client=client)


async def perplexity_research(
    messages: List[Dict[str, str]],
    strip_thinking: bool = False,
    *,
    api_key: Optional[str] = None,
    client=default_client,
) -> Any:
    """Deep research report (sonar-deep-research)."""
    return await _complete(
        messages,
        RESEARCH_MODEL,
        strip_thinking=strip_thinking is True,
        api_key=api_key,
        client=client,
    )


async def perplexity_reason(
    messages: List[Dict[str, str]],
    strip_thinking: bool = False,
    *,
    api_key: Optional[str] = None,
    client=default_client,
) -> Any:
    """Step-by-step reasoning answer (sonar-reasoning-pro)."""
    return await _complete(
        messages,
        REASON_MODEL,
        strip_thinking=strip_thinking is True,
        api_key=api_key,
        client=client,
    )
