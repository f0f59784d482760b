"""
In-process usage analytics store (not suitable for multi-process aggregation).

The store keeps running totals, per-key counters, and a bounded list of the
most recent tool calls. It performs no I/O; persistence lives in
``perplexity_mcp.analytics.persistence``.
"""

from __future__ import annotations

from collections import OrderedDict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Deque, Dict, Optional, Tuple, Union

UNKNOWN = "unknown"
USER_AGENT_MAX_LENGTH = 50
DEFAULT_RECENT_CAPACITY = 100
DEFAULT_HOURLY_RETENTION = 24 * 7
DEFAULT_MAX_CLIENTS = 10000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render a datetime as a UTC ISO-8601 string with millisecond precision."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    rendered = value.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return rendered.replace("+00:00", "Z")


def parse_timestamp(raw: str) -> datetime:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed); naive values are taken as UTC."""
    text = raw.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def hour_key(value: datetime) -> str:
    """Truncate a timestamp to its hour bucket, e.g. ``2024-01-01T10``."""
    return format_timestamp(value)[:13]


def truncate_user_agent(user_agent: Optional[str]) -> str:
    return (user_agent or UNKNOWN)[:USER_AGENT_MAX_LENGTH]


def format_uptime(start: Optional[datetime], now: datetime) -> str:
    """Format elapsed time as ``Xd Yh Zm``, ``Yh Zm`` or ``Zm``."""
    if start is None:
        return "0m"
    seconds = max(0, int((now - start).total_seconds()))
    days, remainder = divmod(seconds, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes = remainder // 60
    if days > 0:
        return f"{days}d {hours}h {minutes}m"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


@dataclass(frozen=True, slots=True)
class RequestObserved:
    method: str
    endpoint: str
    client_ip: str = UNKNOWN
    user_agent: str = UNKNOWN
    at_time: datetime = field(default_factory=utcnow)


@dataclass(frozen=True, slots=True)
class ToolInvoked:
    tool_name: str
    client_ip: str = UNKNOWN
    user_agent: str = UNKNOWN
    at_time: datetime = field(default_factory=utcnow)


AnalyticsEvent = Union[RequestObserved, ToolInvoked]


@dataclass(frozen=True, slots=True)
class ToolCall:
    """One entry of the recent tool call list."""

    tool: str
    timestamp: str
    client_ip: str
    user_agent: str


@dataclass(frozen=True, slots=True)
class AnalyticsSnapshot:
    """Point-in-time copy of the store; never shares structures with the live store."""

    server_start_time: Optional[datetime] = None
    total_requests: int = 0
    total_tool_calls: int = 0
    requests_by_method: Dict[str, int] = field(default_factory=dict)
    requests_by_endpoint: Dict[str, int] = field(default_factory=dict)
    tool_calls: Dict[str, int] = field(default_factory=dict)
    recent_tool_calls: Tuple[ToolCall, ...] = ()
    clients_by_ip: Dict[str, int] = field(default_factory=dict)
    clients_by_user_agent: Dict[str, int] = field(default_factory=dict)
    hourly_requests: Dict[str, int] = field(default_factory=dict)


def _bump(counts: Dict[str, int], key: str, amount: int = 1) -> None:
    counts[key] = counts.get(key, 0) + amount


def _bump_recent(counts: "OrderedDict[str, int]", key: str, amount: int, limit: int) -> None:
    # Least-recently-seen keys are evicted first once the cap is exceeded.
    _bump(counts, key, amount)
    counts.move_to_end(key)
    if limit:
        while len(counts) > limit:
            counts.popitem(last=False)


def _prune_hours(counts: Dict[str, int], retention: int) -> None:
    if not retention or len(counts) <= retention:
        return
    for key in sorted(counts)[: len(counts) - retention]:
        del counts[key]


class AnalyticsStore:
    """Thread-safe counters for requests and tool calls."""

    def __init__(
        self,
        *,
        recent_capacity: int = DEFAULT_RECENT_CAPACITY,
        hourly_retention: int = DEFAULT_HOURLY_RETENTION,
        max_clients: int = DEFAULT_MAX_CLIENTS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.recent_capacity = recent_capacity
        self.hourly_retention = hourly_retention
        self.max_clients = max_clients
        self._clock = clock
        self._lock = Lock()
        self._reset_state(clock())

    def _reset_state(self, start: datetime) -> None:
        self._server_start_time = start
        self._total_requests = 0
        self._total_tool_calls = 0
        self._requests_by_method: Dict[str, int] = {}
        self._requests_by_endpoint: Dict[str, int] = {}
        self._tool_calls: Dict[str, int] = {}
        self._clients_by_ip: OrderedDict[str, int] = OrderedDict()
        self._clients_by_user_agent: OrderedDict[str, int] = OrderedDict()
        self._hourly_requests: Dict[str, int] = {}
        self._recent_tool_calls: Deque[ToolCall] = deque(maxlen=self.recent_capacity or None)

    @property
    def server_start_time(self) -> datetime:
        with self._lock:
            return self._server_start_time

    def record(self, event: AnalyticsEvent) -> None:
        """Fold one event into the aggregates."""
        with self._lock:
            if isinstance(event, RequestObserved):
                self._record_request(event)
            elif isinstance(event, ToolInvoked):
                self._record_tool(event)
            else:
                raise TypeError(f"Unsupported analytics event: {type(event).__name__}")

    def _record_request(self, event: RequestObserved) -> None:
        self._total_requests += 1
        _bump(self._requests_by_method, event.method or UNKNOWN)
        _bump(self._requests_by_endpoint, event.endpoint or UNKNOWN)
        _bump_recent(self._clients_by_ip, event.client_ip or UNKNOWN, 1, self.max_clients)
        _bump_recent(
            self._clients_by_user_agent,
            truncate_user_agent(event.user_agent),
            1,
            self.max_clients,
        )
        key = hour_key(event.at_time)
        is_new_hour = key not in self._hourly_requests
        _bump(self._hourly_requests, key)
        if is_new_hour:
            _prune_hours(self._hourly_requests, self.hourly_retention)

    def _record_tool(self, event: ToolInvoked) -> None:
        self._total_tool_calls += 1
        _bump(self._tool_calls, event.tool_name)
        # deque(maxlen=...) drops from the right, which holds the oldest call.
        self._recent_tool_calls.appendleft(
            ToolCall(
                tool=event.tool_name,
                timestamp=format_timestamp(event.at_time),
                client_ip=event.client_ip or UNKNOWN,
                user_agent=truncate_user_agent(event.user_agent),
            )
        )

    def snapshot(self) -> AnalyticsSnapshot:
        with self._lock:
            return AnalyticsSnapshot(
                server_start_time=self._server_start_time,
                total_requests=self._total_requests,
                total_tool_calls=self._total_tool_calls,
                requests_by_method=dict(self._requests_by_method),
                requests_by_endpoint=dict(self._requests_by_endpoint),
                tool_calls=dict(self._tool_calls),
                recent_tool_calls=tuple(self._recent_tool_calls),
                clients_by_ip=dict(self._clients_by_ip),
                clients_by_user_agent=dict(self._clients_by_user_agent),
                hourly_requests=dict(self._hourly_requests),
            )

    def restore(self, snapshot: AnalyticsSnapshot) -> None:
        """Replace the live state with a persisted snapshot."""
        with self._lock:
            self._reset_state(snapshot.server_start_time or self._clock())
            self._total_requests = snapshot.total_requests
            self._total_tool_calls = snapshot.total_tool_calls
            self._requests_by_method = dict(snapshot.requests_by_method)
            self._requests_by_endpoint = dict(snapshot.requests_by_endpoint)
            self._tool_calls = dict(snapshot.tool_calls)
            for ip, count in snapshot.clients_by_ip.items():
                _bump_recent(self._clients_by_ip, ip, count, self.max_clients)
            for agent, count in snapshot.clients_by_user_agent.items():
                _bump_recent(self._clients_by_user_agent, agent, count, self.max_clients)
            self._hourly_requests = dict(snapshot.hourly_requests)
            _prune_hours(self._hourly_requests, self.hourly_retention)
            self._recent_tool_calls.extend(snapshot.recent_tool_calls[: self.recent_capacity or None])

    def merge(self, snapshot: AnalyticsSnapshot) -> None:
        """
        Add a foreign snapshot's counters into the live state.

        Totals and per-key counts are summed; keys missing locally are created.
        Recent tool calls and the start time are left untouched. Merging the
        same snapshot twice counts it twice.
        """
        with self._lock:
            self._total_requests += snapshot.total_requests
            self._total_tool_calls += snapshot.total_tool_calls
            for method, count in snapshot.requests_by_method.items():
                _bump(self._requests_by_method, method, count)
            for endpoint, count in snapshot.requests_by_endpoint.items():
                _bump(self._requests_by_endpoint, endpoint, count)
            for tool, count in snapshot.tool_calls.items():
                _bump(self._tool_calls, tool, count)
            for ip, count in snapshot.clients_by_ip.items():
                _bump_recent(self._clients_by_ip, ip, count, self.max_clients)
            for agent, count in snapshot.clients_by_user_agent.items():
                _bump_recent(self._clients_by_user_agent, agent, count, self.max_clients)
            for hour, count in snapshot.hourly_requests.items():
                _bump(self._hourly_requests, hour, count)
            _prune_hours(self._hourly_requests, self.hourly_retention)

    def uptime(self, now: Optional[datetime] = None) -> str:
        return format_uptime(self.server_start_time, now or self._clock())

    def reset(self) -> None:
        with self._lock:
            self._reset_state(self._clock())
