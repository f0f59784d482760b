from datetime import datetime, timedelta, timezone

from perplexity_mcp.analytics import views
from perplexity_mcp.analytics.store import AnalyticsSnapshot, ToolCall

STARTED = datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc)


def test_summary_counts_unique_clients_and_uptime():
    snap = AnalyticsSnapshot(
        server_start_time=STARTED,
        total_requests=12,
        total_tool_calls=3,
        clients_by_ip={"1.1.1.1": 10, "2.2.2.2": 2},
    )
    assert views.summary(snap, now=STARTED + timedelta(hours=5, minutes=7)) == {
        "totalRequests": 12,
        "totalToolCalls": 3,
        "uniqueClients": 2,
        "uptime": "5h 7m",
    }


def test_tool_breakdown_sorts_descending_and_keeps_tie_order():
    snap = AnalyticsSnapshot(
        tool_calls={"perplexity_hello": 1, "perplexity_ask": 5, "perplexity_reason": 2, "perplexity_search": 5}
    )
    assert views.tool_breakdown(snap) == [
        ("perplexity_ask", 5),
        ("perplexity_search", 5),
        ("perplexity_reason", 2),
        ("perplexity_hello", 1),
    ]


def test_top_clients_limits_to_twenty():
    snap = AnalyticsSnapshot(clients_by_ip={f"10.0.0.{i}": i for i in range(30)})
    top = views.top_clients(snap)
    assert len(top) == 20
    assert top[0] == ("10.0.0.29", 29)
    assert top[-1] == ("10.0.0.10", 10)


def test_hourly_series_returns_last_24_oldest_first():
    hours = {}
    for offset in range(30):
        key = (STARTED + timedelta(hours=offset)).strftime("%Y-%m-%dT%H")
        hours[key] = offset
    # Insertion order must not matter.
    snap = AnalyticsSnapshot(hourly_requests=dict(reversed(list(hours.items()))))

    series = views.hourly_series(snap)
    assert len(series) == 24
    assert series[0] == ("2024-01-01T06", 6)
    assert series[-1] == ("2024-01-02T05", 29)
    assert views.hourly_series(snap, hours=0) == []


def test_tool_percentages():
    snap = AnalyticsSnapshot(
        total_tool_calls=3,
        tool_calls={"perplexity_ask": 2, "perplexity_search": 1},
    )
    assert views.tool_percentages(snap) == [
        {"tool": "perplexity_ask", "count": 2, "percentage": "66.7%"},
        {"tool": "perplexity_search", "count": 1, "percentage": "33.3%"},
    ]


def test_tool_percentages_with_zero_total():
    snap = AnalyticsSnapshot(total_tool_calls=0, tool_calls={"perplexity_ask": 0, "perplexity_search": 0})
    assert [row["percentage"] for row in views.tool_percentages(snap)] == ["0%", "0%"]


def test_analytics_report_shape():
    calls = tuple(ToolCall(f"tool-{i}", "2024-01-01T00:00:00.000Z", "ip", "ua") for i in range(25))
    snap = AnalyticsSnapshot(
        server_start_time=STARTED,
        total_requests=2,
        total_tool_calls=25,
        requests_by_method={"GET": 2},
        requests_by_endpoint={"/health": 2},
        tool_calls={"perplexity_ask": 25},
        recent_tool_calls=calls,
        clients_by_ip={"ip": 2},
        clients_by_user_agent={"ua": 2},
        hourly_requests={"2024-01-01T00": 2},
    )

    report = views.analytics_report(snap, now=STARTED + timedelta(days=1, minutes=1))
    assert report["server"] == views.SERVER_LABEL
    assert report["uptime"] == "1d 0h 1m"
    assert report["serverStartTime"] == "2024-01-01T00:00:00.000Z"
    assert report["summary"] == {"totalRequests": 2, "totalToolCalls": 25, "uniqueClients": 1}
    assert report["breakdown"] == {
        "byMethod": {"GET": 2},
        "byEndpoint": {"/health": 2},
        "byTool": {"perplexity_ask": 25},
    }
    assert report["clients"] == {"byIp": {"ip": 2}, "byUserAgent": {"ua": 2}}
    assert report["hourlyRequests"] == {"2024-01-01T00": 2}
    assert len(report["recentToolCalls"]) == 20
    assert report["recentToolCalls"][0]["tool"] == "tool-0"


def test_tools_report_includes_every_recent_call():
    calls = tuple(ToolCall("perplexity_ask", "2024-01-01T00:00:00.000Z", "ip", "ua") for _ in range(30))
    snap = AnalyticsSnapshot(total_tool_calls=30, tool_calls={"perplexity_ask": 30}, recent_tool_calls=calls)

    report = views.tools_report(snap)
    assert report["totalToolCalls"] == 30
    assert report["tools"] == [{"tool": "perplexity_ask", "count": 30, "percentage": "100.0%"}]
    assert len(report["recentCalls"]) == 30
    assert report["recentCalls"][0] == {
        "tool": "perplexity_ask",
        "timestamp": "2024-01-01T00:00:00.000Z",
        "clientIp": "ip",
        "userAgent": "ua",
    }
