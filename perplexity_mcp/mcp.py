"""
Lightweight JSON-RPC surface for MCP-style tooling.

This keeps a minimal mapping of tool names to their implementations. It is
stateless; the per-request API key is passed explicitly into every call.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from perplexity_mcp.config import default_config
from perplexity_mcp.tools import (
    perplexity_ask,
    perplexity_hello,
    perplexity_reason,
    perplexity_research,
    perplexity_search,
)

MESSAGES_SCHEMA: Dict[str, Any] = {
    "type": "array",
    "description": "Array of conversation messages",
    "minItems": 1,
    "items": {
        "type": "object",
        "properties": {
            "role": {
                "type": "string",
                "description": "Role of the message (e.g., system, user, assistant)",
            },
            "content": {"type": "string", "description": "The content of the message"},
        },
        "required": ["role", "content"],
    },
}

STRIP_THINKING_SCHEMA: Dict[str, Any] = {
    "type": "boolean",
    "description": (
        "If true, removes <think>...</think> tags from the response to save context "
        "tokens. Default is false."
    ),
}


ToolCallable = Callable[..., Awaitable[Any]] | Callable[..., Any]


@dataclass(slots=True)
class ToolDefinition:
    name: str
    description: str
    params: Dict[str, Any]
    input_schema: Dict[str, Any]
    callable: ToolCallable


TOOL_REGISTRY: Dict[str, ToolDefinition] = {
    "perplexity_ask": ToolDefinition(
        name="perplexity_ask",
        description=(
            "General-purpose conversational AI with real-time web search using the sonar-pro "
            "model. Great for quick questions and everyday searches."
        ),
        params={"messages": "array of {role, content} (required)"},
        input_schema={
            "type": "object",
            "properties": {"messages": MESSAGES_SCHEMA},
            "required": ["messages"],
            "additionalProperties": False,
        },
        callable=perplexity_ask,
    ),
    "perplexity_research": ToolDefinition(
        name="perplexity_research",
        description=(
            "Deep, comprehensive research using the sonar-deep-research model. Ideal for "
            "thorough analysis and detailed reports."
        ),
        params={
            "messages": "array of {role, content} (required)",
            "strip_thinking": "boolean (optional, default false)",
        },
        input_schema={
            "type": "object",
            "properties": {"messages": MESSAGES_SCHEMA, "strip_thinking": STRIP_THINKING_SCHEMA},
            "required": ["messages"],
            "additionalProperties": False,
        },
        callable=perplexity_research,
    ),
    "perplexity_reason": ToolDefinition(
        name="perplexity_reason",
        description=(
            "Advanced reasoning and problem-solving using the sonar-reasoning-pro model. "
            "Perfect for complex analytical tasks."
        ),
        params={
            "messages": "array of {role, content} (required)",
            "strip_thinking": "boolean (optional, default false)",
        },
        input_schema={
            "type": "object",
            "properties": {"messages": MESSAGES_SCHEMA, "strip_thinking": STRIP_THINKING_SCHEMA},
            "required": ["messages"],
            "additionalProperties": False,
        },
        callable=perplexity_reason,
    ),
    "perplexity_search": ToolDefinition(
        name="perplexity_search",
        description=(
            "Direct web search using the Perplexity Search API. Returns ranked search results "
            "with titles, URLs, snippets, and metadata. Perfect for finding up-to-date facts, "
            "news, or specific information."
        ),
        params={
            "query": "string (required)",
            "max_results": f"integer (optional, 1-{default_config.max_search_results})",
            "country": "string (optional, ISO 3166-1 alpha-2)",
        },
        input_schema={
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Search query string"},
                "max_results": {
                    "type": "integer",
                    "minimum": 1,
                    "maximum": default_config.max_search_results,
                    "description": (
                        f"Maximum number of results to return (1-{default_config.max_search_results}, "
                        f"default: {default_config.default_search_results})"
                    ),
                },
                "country": {
                    "type": "string",
                    "pattern": "^[A-Za-z]{2}$",
                    "description": "ISO 3166-1 alpha-2 country code for regional results (e.g., US, GB, MY)",
                },
            },
            "required": ["query"],
            "additionalProperties": False,
        },
        callable=perplexity_search,
    ),
    "perplexity_hello": ToolDefinition(
        name="perplexity_hello",
        description="A simple test tool to verify that the MCP server is working correctly",
        params={},
        input_schema={
            "type": "object",
            "properties": {},
            "required": [],
            "additionalProperties": False,
        },
        callable=perplexity_hello,
    ),
}


def list_tools() -> List[Dict[str, Any]]:
    """Return a simple list of available tools."""
    return [
        {
            "name": tool.name,
            "description": tool.description,
            "params": tool.params,
            "inputSchema": tool.input_schema,
        }
        for tool in TOOL_REGISTRY.values()
    ]


def is_registered(tool_name: str) -> bool:
    return tool_name in TOOL_REGISTRY


async def call_tool(
    tool_name: str,
    params: Optional[Dict[str, Any]] = None,
    *,
    api_key: Optional[str] = None,
) -> Any:
    """Dispatch to a tool by name."""
    params = params or {}
    tool = TOOL_REGISTRY.get(tool_name)
    if tool is None:
        return {"error": f"Unknown tool: {tool_name}"}

    # Only schema properties are accepted; api_key and client are never caller-controlled.
    allowed = tool.input_schema.get("properties", {})
    if any(key not in allowed for key in params):
        return {"error": "Invalid parameters."}

    # Match parameters by name; tools already handle validation and error shaping.
    kwargs = {**params, "api_key": api_key}
    try:
        result = tool.callable(**kwargs)
        if isinstance(result, Awaitable):
            return await result  # type: ignore[return-value]
        return result
    except TypeError:
        return {"error": "Invalid parameters."}
    except Exception:
        return {"error": "Unexpected error while calling tool."}
