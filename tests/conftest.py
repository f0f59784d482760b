import os
import sys

import pytest

# Ensure repository root is on sys.path before importing project modules.
repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if repo_root not in sys.path:
    sys.path.insert(0, repo_root)

from fastapi.testclient import TestClient  # noqa: E402

from perplexity_mcp.config import ServerConfig  # noqa: E402
from perplexity_mcp.server import app  # noqa: E402


@pytest.fixture
def server_config(tmp_path):
    return ServerConfig(
        analytics_file=str(tmp_path / "data" / "analytics.json"),
        analytics_import_key=None,
        api_key=None,
    )


@pytest.fixture
def app_client(server_config):
    # Entering the TestClient runs the lifespan, which loads analytics from server_config.
    app.state.config = server_config
    try:
        with TestClient(app) as client:
            yield client
    finally:
        del app.state.config
