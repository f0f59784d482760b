"""LLM-facing tool implementations."""

from .chat import perplexity_ask, perplexity_reason, perplexity_research
from .hello import PERPLEXITY_TOOLS, perplexity_hello
from .search import perplexity_search

__all__ = [
    "PERPLEXITY_TOOLS",
    "perplexity_ask",
    "perplexity_research",
    "perplexity_reason",
    "perplexity_search",
    "perplexity_hello",
]
