"""
Thin HTTP client for the Perplexity chat completion and search endpoints.

Upstream failures are mapped to internal exceptions that the tool layer turns
into safe, user-facing messages.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from perplexity_mcp.config import ServerConfig, default_config

logger = logging.getLogger(__name__)


class PerplexityApiError(Exception):
    """Base exception for Perplexity API errors."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class MissingApiKeyError(PerplexityApiError):
    """Raised when neither the caller nor the server supplies an API key."""


class UpstreamUnreachableError(PerplexityApiError):
    """Raised when the Perplexity API cannot be reached or times out."""


MISSING_KEY_MESSAGE = (
    "No Perplexity API key available. Please provide your API key via URL query "
    "param (?apiKey=YOUR_KEY)."
)


def _error_message(data: Any) -> Optional[str]:
    # Perplexity returns {"error": "..."}, {"message": "..."} or {"error": {"message": "..."}}.
    if not isinstance(data, dict):
        return None
    raw_error = data.get("error")
    if isinstance(raw_error, str) and raw_error:
        return raw_error
    if isinstance(raw_error, dict):
        nested = raw_error.get("message")
        if isinstance(nested, str) and nested:
            return nested
    raw_message = data.get("message")
    if isinstance(raw_message, str) and raw_message:
        return raw_message
    return None


class PerplexityApiClient:
    """Async client for the Perplexity API surface used by the tools."""

    def __init__(
        self,
        config: ServerConfig | None = None,
        *,
        async_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.config = config or default_config
        self._client: Optional[httpx.AsyncClient] = async_client
        self._owns_client = async_client is None

    @property
    def has_default_key(self) -> bool:
        return bool(self.config.api_key)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url, timeout=self.config.timeout
            )
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _build_headers(self, api_key: Optional[str]) -> Dict[str, str]:
        key = api_key or self.config.api_key
        if not key:
            raise MissingApiKeyError(MISSING_KEY_MESSAGE)
        return {
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
        }

    def _process_response(self, response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            data = None

        if response.status_code >= 400:
            message = _error_message(data) or f"Request failed with status code {response.status_code}"
            raise PerplexityApiError(message, status_code=response.status_code)

        if not isinstance(data, dict):
            raise PerplexityApiError("Unexpected response from Perplexity API.", status_code=response.status_code)
        return data

    async def _post(self, path: str, body: Dict[str, Any], *, api_key: Optional[str]) -> Dict[str, Any]:
        headers = self._build_headers(api_key)
        client = await self._get_client()
        try:
            response = await client.post(path, json=body, headers=headers)
        except httpx.TimeoutException as exc:
            logger.warning("Perplexity API timed out for path %s", path)
            raise UpstreamUnreachableError(f"timeout of {self.config.timeout:g}s exceeded") from exc
        except httpx.RequestError as exc:
            logger.warning("Perplexity API unreachable for path %s", path)
            raise UpstreamUnreachableError(str(exc) or "Perplexity API unreachable") from exc
        return self._process_response(response)

    async def chat_completion(
        self,
        messages: List[Dict[str, str]],
        model: str,
        *,
        api_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Run a chat completion; returns the raw response body."""
        return await self._post(
            "/chat/completions", {"model": model, "messages": messages}, api_key=api_key
        )

    async def search(
        self,
        query: str,
        *,
        max_results: int,
        country: Optional[str] = None,
        api_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Run a ranked web search; returns the raw response body."""
        body: Dict[str, Any] = {"query": query, "max_results": max_results}
        if country:
            body["country"] = country
        return await self._post("/search", body, api_key=api_key)


default_client = PerplexityApiClient()
