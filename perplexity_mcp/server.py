"""FastAPI application wiring Perplexity MCP tools and usage analytics to HTTP routes."""

from __future__ import annotations

import json
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse, Response

from perplexity_mcp import mcp
from perplexity_mcp.analytics import (
    AnalyticsPersistence,
    AnalyticsStore,
    ImportUnauthorizedError,
    RequestObserved,
    SnapshotFormatError,
    ToolInvoked,
)
from perplexity_mcp.analytics import views
from perplexity_mcp.analytics.store import UNKNOWN, format_timestamp, utcnow
from perplexity_mcp.config import ServerConfig, default_config
from perplexity_mcp.perplexity_api import default_client
from perplexity_mcp.tools import PERPLEXITY_TOOLS

logger = logging.getLogger(__name__)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "level": record.levelname,
            "message": record.getMessage(),
            "name": record.name,
        }
        for key in ("tool", "request_id", "error"):
            if hasattr(record, key):
                payload[key] = getattr(record, key)
        return json.dumps(payload)


def _configure_logging(config: ServerConfig) -> None:
    level = getattr(logging, config.log_level.upper(), logging.INFO)
    if config.log_format.lower() == "json":
        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())
        logging.basicConfig(level=level, handlers=[handler])
    else:
        logging.basicConfig(level=level)


_configure_logging(default_config)

APP_VERSION = "1.1.0"
MCP_SERVER_NAME = "Perplexity MCP Server"
MCP_SERVER_VERSION = APP_VERSION
TRANSPORT = "streamable-http"

# Only the server's own routes are counted so scanners cannot grow the endpoint map.
TRACKED_ENDPOINTS = frozenset({"/", "/health", "/mcp", "/analytics", "/analytics/tools"})


def build_analytics(config: ServerConfig) -> tuple[AnalyticsStore, AnalyticsPersistence]:
    store = AnalyticsStore(
        recent_capacity=config.analytics_recent_capacity,
        hourly_retention=config.analytics_hourly_retention,
        max_clients=config.analytics_max_clients,
    )
    persistence = AnalyticsPersistence(
        store,
        config.analytics_file,
        save_interval=config.analytics_save_interval,
        import_key=config.analytics_import_key,
    )
    return store, persistence


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: tests may pin a different config on app.state before entering.
    config: ServerConfig = getattr(app.state, "config", default_config)
    store, persistence = build_analytics(config)
    outcome = persistence.load()
    persistence.start()
    app.state.analytics = store
    app.state.persistence = persistence
    logger.info("Analytics %s from %s", outcome.value, persistence.path)
    try:
        yield
    finally:
        # Shutdown: uvicorn runs this on SIGTERM/SIGINT.
        await persistence.stop()
        await default_client.aclose()


app = FastAPI(
    title="Perplexity MCP Server",
    description="MCP server for Perplexity API - search, ask, research, and reasoning.",
    version=APP_VERSION,
    lifespan=lifespan,
)


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN


def _user_agent(request: Request) -> str:
    return request.headers.get("user-agent") or UNKNOWN


def _tracked_endpoint(path: str) -> Optional[str]:
    # Trailing-slash variants are redirected by FastAPI; only the target is counted.
    return path if path in TRACKED_ENDPOINTS else None


def _analytics(request: Request) -> AnalyticsStore:
    return request.app.state.analytics


@app.middleware("http")
async def add_request_context(request: Request, call_next):
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id
    start = time.time()
    endpoint = _tracked_endpoint(request.url.path)
    if endpoint is not None:
        _analytics(request).record(
            RequestObserved(
                method=request.method,
                endpoint=endpoint,
                client_ip=_client_ip(request),
                user_agent=_user_agent(request),
            )
        )
    response = await call_next(request)
    duration_ms = (time.time() - start) * 1000
    logger.debug(
        "request method=%s path=%s status=%s duration_ms=%.2f",
        request.method,
        request.url.path,
        response.status_code,
        duration_ms,
        extra={"request_id": request_id},
    )
    response.headers["X-Request-ID"] = request_id
    return response


def _log_tool_result(tool_name: str, result: Any, request_id: Optional[str] = None) -> None:
    if isinstance(result, dict) and result.get("error"):
        logger.warning(
            "tool=%s outcome=error error=%s request_id=%s",
            tool_name,
            result.get("error"),
            request_id,
            extra={"tool": tool_name, "request_id": request_id, "error": result.get("error")},
        )
    else:
        logger.info(
            "tool=%s outcome=success request_id=%s",
            tool_name,
            request_id,
            extra={"tool": tool_name, "request_id": request_id},
        )


@app.get("/")
async def root() -> JSONResponse:
    """Server info, tool list, and endpoint map."""
    return JSONResponse(
        content={
            "name": MCP_SERVER_NAME,
            "version": APP_VERSION,
            "description": "MCP server for Perplexity API - search, ask, research, and reasoning",
            "transport": TRANSPORT,
            "tools": {
                "perplexity_ask": "General conversational AI with web search (sonar-pro)",
                "perplexity_research": "Deep comprehensive research (sonar-deep-research)",
                "perplexity_reason": "Advanced reasoning and problem-solving (sonar-reasoning-pro)",
                "perplexity_search": "Direct web search with ranked results (Search API)",
            },
            "endpoints": {
                "mcp": "/mcp",
                "health": "/health",
                "analytics": "/analytics",
                "analyticsTools": "/analytics/tools",
                "analyticsImport": "/analytics/import",
            },
            "apiKeySupport": {
                "queryParam": "?apiKey=YOUR_PERPLEXITY_API_KEY",
                "header": "X-API-Key: YOUR_PERPLEXITY_API_KEY",
                "example": "/mcp?apiKey=pplx-xxxx",
            },
        }
    )


@app.get("/health")
async def health() -> JSONResponse:
    """Lightweight health endpoint for monitoring."""
    return JSONResponse(
        content={
            "status": "healthy",
            "server": MCP_SERVER_NAME,
            "version": APP_VERSION,
            "transport": TRANSPORT,
            "timestamp": format_timestamp(utcnow()),
            "hasDefaultApiKey": default_client.has_default_key,
            "tools": list(PERPLEXITY_TOOLS),
        }
    )


@app.get("/analytics")
async def analytics_summary(request: Request) -> JSONResponse:
    """Aggregated usage report."""
    return JSONResponse(content=views.analytics_report(_analytics(request).snapshot()))


@app.get("/analytics/tools")
async def analytics_tools(request: Request) -> JSONResponse:
    """Per-tool counts, percentages, and the recent call list."""
    return JSONResponse(content=views.tools_report(_analytics(request).snapshot()))


@app.post("/analytics/import")
async def analytics_import(request: Request, key: Optional[str] = Query(None)) -> JSONResponse:
    """Merge a backup snapshot or report into the live counters."""
    persistence: AnalyticsPersistence = request.app.state.persistence
    request_id = getattr(request.state, "request_id", None)
    try:
        persistence.check_credential(key)
    except ImportUnauthorizedError:
        logger.warning("analytics import rejected: invalid key", extra={"request_id": request_id})
        return JSONResponse(status_code=403, content={"error": "Invalid import key"})

    try:
        payload = await request.json()
        merged = persistence.import_snapshot(payload, key)
    except (ValueError, RecursionError, SnapshotFormatError) as exc:
        details = str(exc) if isinstance(exc, SnapshotFormatError) else "Request body is not valid JSON"
        logger.warning(
            "analytics import rejected: %s",
            details,
            extra={"request_id": request_id, "error": details},
        )
        return JSONResponse(
            status_code=400,
            content={"error": "Failed to import analytics", "details": details},
        )

    return JSONResponse(
        content={
            "message": "Analytics imported successfully",
            "currentStats": {
                "totalRequests": merged.total_requests,
                "totalToolCalls": merged.total_tool_calls,
            },
        }
    )


def _request_api_key(request: Request) -> Optional[str]:
    return request.query_params.get("apiKey") or request.headers.get("x-api-key") or None


@app.post("/mcp")
async def mcp_gateway(request: Request) -> Response:
    """
    Minimal JSON-RPC gateway for MCP integrations.

    Supported methods:
      - initialize
      - list_tools / tools/list
      - call_tool / tools/call
    """
    request_id = getattr(request.state, "request_id", None)
    start_time = time.time()

    def _respond(payload: Dict[str, Any], status_code: int = 200, *, outcome: str, method_label: Optional[str] = None, tool_label: Optional[str] = None, error_code: Optional[int] = None) -> JSONResponse:
        duration_ms = (time.time() - start_time) * 1000
        logger.debug(
            "mcp outcome=%s method=%s tool=%s id=%s status=%s duration_ms=%.2f error_code=%s",
            outcome,
            method_label,
            tool_label,
            payload.get("id"),
            status_code,
            duration_ms,
            error_code,
            extra={"request_id": request_id, "tool": tool_label, "error": error_code},
        )
        return JSONResponse(status_code=status_code, content=payload)

    try:
        body = await request.json()
    except (ValueError, RecursionError):
        payload = _jsonrpc_error_payload(None, -32700, "Parse error")
        return _respond(payload, status_code=400, outcome="error", method_label=None, error_code=-32700)

    if not isinstance(body, dict):
        payload = _jsonrpc_error_payload(None, -32600, "Invalid request")
        return _respond(payload, status_code=400, outcome="error", method_label=None, error_code=-32600)

    method = body.get("method")
    rpc_id = body.get("id")
    raw_params = body.get("params")
    if raw_params is None:
        params = {}
    elif isinstance(raw_params, dict):
        params = raw_params
    else:
        payload = _jsonrpc_error_payload(rpc_id, -32602, "Invalid params")
        return _respond(payload, outcome="error", method_label=method, error_code=-32602)

    if not method:
        payload = _jsonrpc_error_payload(rpc_id, -32600, "Invalid request")
        return _respond(payload, outcome="error", method_label=None, error_code=-32600)

    if method == "initialize":
        protocol_version = params.get("protocolVersion")
        if not isinstance(protocol_version, str) or not protocol_version:
            payload = _jsonrpc_error_payload(rpc_id, -32602, "Invalid params")
            return _respond(payload, outcome="error", method_label=method, error_code=-32602)

        result = {
            "protocolVersion": protocol_version,
            "serverInfo": {"name": MCP_SERVER_NAME, "version": MCP_SERVER_VERSION},
            "capabilities": {"tools": {"listChanged": False}},
        }
        return _respond(_jsonrpc_success_payload(rpc_id, result), outcome="success", method_label=method)

    if method in ("list_tools", "tools/list"):
        result = {"tools": mcp.list_tools()}
        return _respond(_jsonrpc_success_payload(rpc_id, result), outcome="success", method_label=method)

    if method in ("call_tool", "tools/call"):
        tool_name = params.get("tool") or params.get("name")
        tool_params = params.get("params")
        if tool_params is None:
            tool_params = params.get("arguments") or {}
        if not isinstance(tool_name, str) or not tool_name.strip():
            payload = _jsonrpc_error_payload(rpc_id, -32602, "Invalid params")
            return _respond(payload, outcome="error", method_label=method, tool_label=None, error_code=-32602)
        if not isinstance(tool_params, dict):
            payload = _jsonrpc_error_payload(rpc_id, -32602, "Invalid params")
            return _respond(payload, outcome="error", method_label=method, tool_label=tool_name, error_code=-32602)

        # Unknown names are not counted so the per-tool map stays bounded.
        if mcp.is_registered(tool_name):
            _analytics(request).record(
                ToolInvoked(
                    tool_name=tool_name,
                    client_ip=_client_ip(request),
                    user_agent=_user_agent(request),
                )
            )
        try:
            result = await mcp.call_tool(tool_name, tool_params, api_key=_request_api_key(request))
        except Exception:
            logger.exception("mcp tool dispatch failed tool=%s", tool_name, extra={"request_id": request_id})
            payload = _jsonrpc_error_payload(rpc_id, -32603, "Internal server error")
            return _respond(payload, status_code=500, outcome="error", method_label=method, tool_label=tool_name, error_code=-32603)
        _log_tool_result(tool_name, result, request_id)
        return _respond(
            _jsonrpc_success_payload(rpc_id, _wrap_tool_result(result)),
            outcome="success",
            method_label=method,
            tool_label=tool_name,
        )

    if method in ("notifications/initialized", "initialized"):
        # Notifications should not return a JSON-RPC response body.
        return Response(status_code=204)

    payload = _jsonrpc_error_payload(rpc_id, -32601, "Method not found")
    return _respond(payload, outcome="error", method_label=method, error_code=-32601)


# Run with: python -m perplexity_mcp  (or uvicorn perplexity_mcp.server:app)


def _jsonrpc_success_payload(rpc_id: Any, result: Any) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": rpc_id, "result": result}


def _jsonrpc_error_payload(rpc_id: Any, code: int, message: str) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": rpc_id, "error": {"code": code, "message": message}}


def _wrap_tool_result(result: Any) -> Dict[str, Any]:
    """
    Shape tool outputs into MCP-friendly content array.
    """
    # Tool-level errors are returned in-band with isError flag.
    if isinstance(result, dict) and "error" in result:
        message = result.get("error") or "Error"
        return {"content": [{"type": "text", "text": str(message)}], "isError": True}

    # Plain string results are returned directly as text.
    if isinstance(result, str):
        return {"content": [{"type": "text", "text": result}]}

    # Structured outputs get an indented text rendering plus structuredContent.
    try:
        text_repr = json.dumps(result, indent=2)
    except (TypeError, ValueError):
        text_repr = str(result)
    return {
        "content": [{"type": "text", "text": text_repr}],
        "structuredContent": result,
    }
