"""
Configuration helpers for the Perplexity MCP server.

This module centralizes upstream URL selection, API key loading, timeouts, and
the analytics persistence settings. No secrets are stored in the repository;
the API key is read from environment or a local file if present.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

# Default connection settings
DEFAULT_BASE_URL = os.getenv("PERPLEXITY_BASE_URL", "https://api.perplexity.ai")


def _load_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw:
        try:
            return float(raw)
        except ValueError:
            return default
    return default


def _load_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw:
        try:
            value = int(raw)
        except ValueError:
            return default
        return value if value >= 0 else default
    return default


def _load_timeout() -> float:
    # The upstream timeout is configured in milliseconds; research calls can take minutes.
    return _load_float("PERPLEXITY_TIMEOUT_MS", 300000.0) / 1000.0


DEFAULT_TIMEOUT = _load_timeout()

# API key handling
API_KEY_ENV_VAR = "PERPLEXITY_API_KEY"
API_KEY_FILE_ENV_VAR = "PERPLEXITY_API_KEY_FILE"
DEFAULT_API_KEY_FILE = "apikey.txt"

# Models
ASK_MODEL = "sonar-pro"
RESEARCH_MODEL = "sonar-deep-research"
REASON_MODEL = "sonar-reasoning-pro"

# Search limits
MAX_SEARCH_RESULTS = 20
DEFAULT_SEARCH_RESULTS = 10

# Analytics persistence
ANALYTICS_DIR = os.getenv("ANALYTICS_DIR", "/app/data")
ANALYTICS_FILE = os.getenv("ANALYTICS_FILE") or os.path.join(ANALYTICS_DIR, "analytics.json")
ANALYTICS_SAVE_INTERVAL = _load_float("ANALYTICS_SAVE_INTERVAL", 60.0)
ANALYTICS_RECENT_CAPACITY = _load_int("ANALYTICS_RECENT_CAPACITY", 100)
ANALYTICS_HOURLY_RETENTION = _load_int("ANALYTICS_HOURLY_RETENTION", 24 * 7)
ANALYTICS_MAX_CLIENTS = _load_int("ANALYTICS_MAX_CLIENTS", 10000)

HOST = os.getenv("HOST", "0.0.0.0")
PORT = _load_int("PORT", 8080)
LOG_LEVEL = os.getenv("PERPLEXITY_MCP_LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("PERPLEXITY_MCP_LOG_FORMAT", "json")  # json or plain


def load_api_key() -> Optional[str]:
    """
    Load the default Perplexity API key from environment or a local file.

    Returns:
        The API key string if available, otherwise None. The key is never logged
        or returned to callers.
    """
    env_key = os.getenv(API_KEY_ENV_VAR)
    if env_key:
        return env_key.strip()

    key_path = os.getenv(API_KEY_FILE_ENV_VAR, DEFAULT_API_KEY_FILE)
    if key_path:
        path = Path(key_path)
        if path.is_file():
            return path.read_text(encoding="utf-8").strip() or None

    return None


def load_import_key() -> Optional[str]:
    """Return the pre-shared analytics import key, or None when imports are open."""
    raw = os.getenv("ANALYTICS_IMPORT_KEY")
    return raw or None


@dataclass(slots=True)
class ServerConfig:
    """Runtime configuration for upstream access and analytics persistence."""

    base_url: str = DEFAULT_BASE_URL
    timeout: float = DEFAULT_TIMEOUT
    api_key: Optional[str] = load_api_key()
    max_search_results: int = MAX_SEARCH_RESULTS
    default_search_results: int = DEFAULT_SEARCH_RESULTS
    analytics_file: str = ANALYTICS_FILE
    analytics_import_key: Optional[str] = load_import_key()
    analytics_save_interval: float = ANALYTICS_SAVE_INTERVAL
    analytics_recent_capacity: int = ANALYTICS_RECENT_CAPACITY
    analytics_hourly_retention: int = ANALYTICS_HOURLY_RETENTION
    analytics_max_clients: int = ANALYTICS_MAX_CLIENTS
    host: str = HOST
    port: int = PORT
    log_level: str = LOG_LEVEL
    log_format: str = LOG_FORMAT


default_config = ServerConfig()
