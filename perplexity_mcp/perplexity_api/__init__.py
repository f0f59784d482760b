"""HTTP client wrappers for the Perplexity API."""

from .client import (
    MissingApiKeyError,
    PerplexityApiClient,
    PerplexityApiError,
    UpstreamUnreachableError,
    default_client,
)

__all__ = [
    "PerplexityApiClient",
    "PerplexityApiError",
    "MissingApiKeyError",
    "UpstreamUnreachableError",
    "default_client",
]
