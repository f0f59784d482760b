"""Run the server with uvicorn: ``python -m perplexity_mcp``."""

from __future__ import annotations

import logging

import uvicorn

from perplexity_mcp.config import default_config
from perplexity_mcp.server import app

logger = logging.getLogger(__name__)


def main() -> None:
    logger.info(
        "Starting Perplexity MCP server on http://%s:%s (MCP endpoint /mcp, analytics file %s)",
        default_config.host,
        default_config.port,
        default_config.analytics_file,
    )
    # uvicorn turns SIGTERM/SIGINT into a lifespan shutdown, which flushes analytics.
    uvicorn.run(
        app,
        host=default_config.host,
        port=default_config.port,
        log_level=default_config.log_level.lower(),
    )


if __name__ == "__main__":
    main()
