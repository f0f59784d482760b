"""Minimal sanity checks for the Perplexity MCP tools against the real API."""

from __future__ import annotations

import asyncio
import os
import sys

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from perplexity_mcp.perplexity_api import default_client  # noqa: E402
from perplexity_mcp.tools import (  # noqa: E402
    perplexity_ask,
    perplexity_hello,
    perplexity_search,
)

# Override via env to probe a different topic.
SAMPLE_QUERY = os.getenv("PERPLEXITY_SAMPLE_QUERY", "Model Context Protocol")
# Opt-in to the chat completion check (billed per call).
RUN_ASK = os.getenv("RUN_ASK_SANITY", "false").lower() in {"1", "true", "yes"}


async def main() -> None:
    try:
        print("Hello:", perplexity_hello())
        print("Search (limit 3):", await perplexity_search(SAMPLE_QUERY, max_results=3))
        if RUN_ASK:
            messages = [{"role": "user", "content": f"In one sentence, what is {SAMPLE_QUERY}?"}]
            print("Ask:", await perplexity_ask(messages))
    finally:
        await default_client.aclose()


if __name__ == "__main__":
    asyncio.run(main())
