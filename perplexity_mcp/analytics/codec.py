"""
JSON codec for analytics snapshots.

Two layouts are understood: the native snapshot file written by
``encode_snapshot`` and the ``/analytics`` report served by the HTTP surface,
which operators fetch as backups and later import.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from perplexity_mcp.analytics.store import (
    AnalyticsSnapshot,
    ToolCall,
    format_timestamp,
    parse_timestamp,
)

SNAPSHOT_VERSION = 1

# (JSON field, snapshot attribute) pairs for the per-key counters.
COUNTER_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("requestsByMethod", "requests_by_method"),
    ("requestsByEndpoint", "requests_by_endpoint"),
    ("toolCalls", "tool_calls"),
    ("clientsByIp", "clients_by_ip"),
    ("clientsByUserAgent", "clients_by_user_agent"),
    ("hourlyRequests", "hourly_requests"),
)

REPORT_SECTIONS = ("summary", "breakdown", "clients")


class AnalyticsError(Exception):
    """Base exception for analytics errors."""


class SnapshotFormatError(AnalyticsError):
    """Raised when snapshot data is malformed."""


def encode_tool_call(call: ToolCall) -> Dict[str, str]:
    return {
        "tool": call.tool,
        "timestamp": call.timestamp,
        "clientIp": call.client_ip,
        "userAgent": call.user_agent,
    }


def encode_snapshot(snapshot: AnalyticsSnapshot) -> Dict[str, Any]:
    """Shape a snapshot into the on-disk JSON layout."""
    payload: Dict[str, Any] = {
        "version": SNAPSHOT_VERSION,
        "serverStartTime": (
            format_timestamp(snapshot.server_start_time) if snapshot.server_start_time else None
        ),
        "totalRequests": snapshot.total_requests,
        "totalToolCalls": snapshot.total_tool_calls,
    }
    for json_field, attribute in COUNTER_FIELDS:
        payload[json_field] = dict(getattr(snapshot, attribute))
    payload["recentToolCalls"] = [encode_tool_call(call) for call in snapshot.recent_tool_calls]
    return payload


def dumps_snapshot(snapshot: AnalyticsSnapshot) -> str:
    return json.dumps(encode_snapshot(snapshot), indent=2)


def _count(value: Any, field_name: str) -> int:
    if value is None:
        return 0
    # bool is an int subclass; reject it explicitly.
    if isinstance(value, bool) or not isinstance(value, int):
        raise SnapshotFormatError(f"{field_name} must be a non-negative integer")
    if value < 0:
        raise SnapshotFormatError(f"{field_name} must be a non-negative integer")
    return value


def _counts(value: Any, field_name: str) -> Dict[str, int]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise SnapshotFormatError(f"{field_name} must be an object")
    counts: Dict[str, int] = {}
    for key, raw_count in value.items():
        if not isinstance(key, str):
            raise SnapshotFormatError(f"{field_name} keys must be strings")
        counts[key] = _count(raw_count, f"{field_name}.{key}")
    return counts


def _start_time(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    if not isinstance(value, str):
        raise SnapshotFormatError("serverStartTime must be an ISO-8601 string")
    try:
        return parse_timestamp(value)
    except ValueError as exc:
        raise SnapshotFormatError("serverStartTime must be an ISO-8601 string") from exc


def _tool_calls(value: Any) -> Tuple[ToolCall, ...]:
    if value is None:
        return ()
    if not isinstance(value, list):
        raise SnapshotFormatError("recentToolCalls must be a list")
    calls: List[ToolCall] = []
    for index, raw in enumerate(value):
        if not isinstance(raw, Mapping):
            raise SnapshotFormatError(f"recentToolCalls[{index}] must be an object")
        fields = {}
        for key in ("tool", "timestamp", "clientIp", "userAgent"):
            item = raw.get(key)
            if not isinstance(item, str):
                raise SnapshotFormatError(f"recentToolCalls[{index}].{key} must be a string")
            fields[key] = item
        calls.append(
            ToolCall(
                tool=fields["tool"],
                timestamp=fields["timestamp"],
                client_ip=fields["clientIp"],
                user_agent=fields["userAgent"],
            )
        )
    return tuple(calls)


def _check_version(data: Mapping[str, Any]) -> None:
    # Files written before versioning carry no field and count as version 0.
    version = data.get("version", 0)
    if isinstance(version, bool) or not isinstance(version, int):
        raise SnapshotFormatError("version must be an integer")
    if version > SNAPSHOT_VERSION:
        raise SnapshotFormatError(f"Unsupported snapshot version {version}")


def decode_snapshot(data: Any) -> AnalyticsSnapshot:
    """Decode the native snapshot layout; missing fields take their empty defaults."""
    if not isinstance(data, Mapping):
        raise SnapshotFormatError("Snapshot must be a JSON object")
    _check_version(data)
    counters = {attribute: _counts(data.get(json_field), json_field) for json_field, attribute in COUNTER_FIELDS}
    return AnalyticsSnapshot(
        server_start_time=_start_time(data.get("serverStartTime")),
        total_requests=_count(data.get("totalRequests"), "totalRequests"),
        total_tool_calls=_count(data.get("totalToolCalls"), "totalToolCalls"),
        recent_tool_calls=_tool_calls(data.get("recentToolCalls")),
        **counters,
    )


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = data.get(name)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise SnapshotFormatError(f"{name} must be an object")
    return value


def decode_report(data: Any) -> AnalyticsSnapshot:
    """
    Decode an ``/analytics`` report into a snapshot for merging.

    Reports carry only the top clients and the last 24 hour buckets, so an
    import from a report is a partial restore of those facets.
    """
    if not isinstance(data, Mapping):
        raise SnapshotFormatError("Report must be a JSON object")
    summary = _section(data, "summary")
    breakdown = _section(data, "breakdown")
    clients = _section(data, "clients")
    return AnalyticsSnapshot(
        server_start_time=_start_time(data.get("serverStartTime")),
        total_requests=_count(summary.get("totalRequests"), "summary.totalRequests"),
        total_tool_calls=_count(summary.get("totalToolCalls"), "summary.totalToolCalls"),
        requests_by_method=_counts(breakdown.get("byMethod"), "breakdown.byMethod"),
        requests_by_endpoint=_counts(breakdown.get("byEndpoint"), "breakdown.byEndpoint"),
        tool_calls=_counts(breakdown.get("byTool"), "breakdown.byTool"),
        clients_by_ip=_counts(clients.get("byIp"), "clients.byIp"),
        clients_by_user_agent=_counts(clients.get("byUserAgent"), "clients.byUserAgent"),
        hourly_requests=_counts(data.get("hourlyRequests"), "hourlyRequests"),
    )


def decode_import_payload(data: Any) -> AnalyticsSnapshot:
    """Decode either supported layout, picking the report layout when its sections are present."""
    if not isinstance(data, Mapping):
        raise SnapshotFormatError("Import payload must be a JSON object")
    if any(section in data for section in REPORT_SECTIONS):
        return decode_report(data)
    return decode_snapshot(data)


def loads_snapshot(text: Union[str, bytes]) -> AnalyticsSnapshot:
    # Bytes are decoded here so undecodable files surface as SnapshotFormatError.
    try:
        data = json.loads(text)
    except (ValueError, RecursionError) as exc:
        raise SnapshotFormatError(f"Snapshot is not valid JSON: {exc}") from exc
    return decode_snapshot(data)
