"""Read-only aggregated views derived from analytics snapshots."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from perplexity_mcp.analytics.codec import encode_tool_call
from perplexity_mcp.analytics.store import (
    AnalyticsSnapshot,
    format_timestamp,
    format_uptime,
    utcnow,
)

SERVER_LABEL = "Perplexity Search MCP"
TOP_CLIENTS = 20
HOURLY_WINDOW = 24
REPORT_RECENT_CALLS = 20


def summary(snapshot: AnalyticsSnapshot, now: Optional[datetime] = None) -> Dict[str, Any]:
    return {
        "totalRequests": snapshot.total_requests,
        "totalToolCalls": snapshot.total_tool_calls,
        "uniqueClients": len(snapshot.clients_by_ip),
        "uptime": format_uptime(snapshot.server_start_time, now or utcnow()),
    }


def _by_count(counts: Dict[str, int]) -> List[Tuple[str, int]]:
    # sorted() is stable, so equal counts keep their insertion order.
    return sorted(counts.items(), key=lambda item: item[1], reverse=True)


def tool_breakdown(snapshot: AnalyticsSnapshot) -> List[Tuple[str, int]]:
    return _by_count(snapshot.tool_calls)


def top_clients(snapshot: AnalyticsSnapshot, limit: int = TOP_CLIENTS) -> List[Tuple[str, int]]:
    return _by_count(snapshot.clients_by_ip)[:limit]


def hourly_series(snapshot: AnalyticsSnapshot, hours: int = HOURLY_WINDOW) -> List[Tuple[str, int]]:
    """Return the newest ``hours`` buckets, oldest first."""
    if hours <= 0:
        return []
    # Hour keys are fixed-width ISO prefixes, so lexical order is chronological.
    return sorted(snapshot.hourly_requests.items())[-hours:]


def format_percentage(count: int, total: int) -> str:
    if total <= 0:
        return "0%"
    return f"{count / total * 100:.1f}%"


def tool_percentages(snapshot: AnalyticsSnapshot) -> List[Dict[str, Any]]:
    total = snapshot.total_tool_calls
    return [
        {"tool": tool, "count": count, "percentage": format_percentage(count, total)}
        for tool, count in tool_breakdown(snapshot)
    ]


def recent_calls(snapshot: AnalyticsSnapshot, limit: Optional[int] = None) -> List[Dict[str, str]]:
    calls = snapshot.recent_tool_calls if limit is None else snapshot.recent_tool_calls[:limit]
    return [encode_tool_call(call) for call in calls]


def analytics_report(snapshot: AnalyticsSnapshot, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Full dashboard payload served by ``GET /analytics``."""
    overview = summary(snapshot, now)
    return {
        "server": SERVER_LABEL,
        "uptime": overview["uptime"],
        "serverStartTime": (
            format_timestamp(snapshot.server_start_time) if snapshot.server_start_time else None
        ),
        "summary": {
            "totalRequests": overview["totalRequests"],
            "totalToolCalls": overview["totalToolCalls"],
            "uniqueClients": overview["uniqueClients"],
        },
        "breakdown": {
            "byMethod": dict(snapshot.requests_by_method),
            "byEndpoint": dict(snapshot.requests_by_endpoint),
            "byTool": dict(tool_breakdown(snapshot)),
        },
        "clients": {
            "byIp": dict(top_clients(snapshot)),
            "byUserAgent": dict(snapshot.clients_by_user_agent),
        },
        "hourlyRequests": dict(hourly_series(snapshot)),
        "recentToolCalls": recent_calls(snapshot, REPORT_RECENT_CALLS),
    }


def tools_report(snapshot: AnalyticsSnapshot) -> Dict[str, Any]:
    """Per-tool payload served by ``GET /analytics/tools``."""
    return {
        "totalToolCalls": snapshot.total_tool_calls,
        "tools": tool_percentages(snapshot),
        "recentCalls": recent_calls(snapshot),
    }
