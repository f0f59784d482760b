"""
Perplexity MCP server package.

This package exposes Perplexity-backed tools (ask, search, research, reason)
over an MCP JSON-RPC endpoint and keeps persistent, in-process usage
analytics. See DESIGN.md for full details.
"""

__all__ = ["analytics", "config"]
