import asyncio
import dataclasses
import json
from datetime import datetime, timezone

import pytest

from perplexity_mcp.analytics import (
    AnalyticsPersistence,
    AnalyticsStore,
    ImportUnauthorizedError,
    LoadOutcome,
    RequestObserved,
    SnapshotFormatError,
    ToolInvoked,
)

T10 = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)


def _read(path):
    return json.loads(path.read_text(encoding="utf-8"))


def _without_start(snapshot):
    return dataclasses.replace(snapshot, server_start_time=None)


def test_cold_start_creates_directory_and_file(tmp_path):
    path = tmp_path / "nested" / "data" / "analytics.json"
    persistence = AnalyticsPersistence(AnalyticsStore(), path)

    assert persistence.load() is LoadOutcome.INITIALIZED
    assert path.is_file()
    data = _read(path)
    assert data["totalRequests"] == 0
    assert data["recentToolCalls"] == []


def test_cold_start_save_then_load_is_idempotent(tmp_path):
    path = tmp_path / "analytics.json"
    first = AnalyticsStore()
    first_persistence = AnalyticsPersistence(first, path)
    first_persistence.load()
    assert first_persistence.save()

    second = AnalyticsStore()
    assert AnalyticsPersistence(second, path).load() is LoadOutcome.RESTORED
    assert _without_start(second.snapshot()) == _without_start(first.snapshot())


def test_restart_restores_counters_and_start_time(tmp_path):
    path = tmp_path / "analytics.json"
    store = AnalyticsStore(clock=lambda: T10)
    persistence = AnalyticsPersistence(store, path)
    persistence.load()
    store.record(RequestObserved("POST", "/mcp", client_ip="203.0.113.5", at_time=T10))
    store.record(ToolInvoked("perplexity_ask", at_time=T10))
    persistence.save()

    restored = AnalyticsStore()
    assert AnalyticsPersistence(restored, path).load() is LoadOutcome.RESTORED
    snap = restored.snapshot()
    assert snap.server_start_time == T10
    assert snap.total_requests == 1
    assert snap.clients_by_ip == {"203.0.113.5": 1}
    assert snap.tool_calls == {"perplexity_ask": 1}
    assert [call.tool for call in snap.recent_tool_calls] == ["perplexity_ask"]


def test_file_without_start_time_gets_fresh_one(tmp_path):
    path = tmp_path / "analytics.json"
    path.write_text(json.dumps({"totalRequests": 7}), encoding="utf-8")
    store = AnalyticsStore(clock=lambda: T10)

    assert AnalyticsPersistence(store, path).load() is LoadOutcome.RESTORED
    assert store.server_start_time == T10
    assert store.snapshot().total_requests == 7


def test_corrupt_file_keeps_defaults_and_is_not_overwritten(tmp_path):
    path = tmp_path / "analytics.json"
    path.write_text("{not json", encoding="utf-8")
    store = AnalyticsStore()

    assert AnalyticsPersistence(store, path).load() is LoadOutcome.FAILED
    assert store.snapshot().total_requests == 0
    assert path.read_text(encoding="utf-8") == "{not json"


@pytest.mark.parametrize(
    "raw",
    [b"\x80\x81 garbage", b"\xff\xfe garbage", b"[" * 200000],
    ids=["invalid-utf8", "bom-garbage", "deep-nesting"],
)
def test_undecodable_file_keeps_defaults(tmp_path, raw):
    path = tmp_path / "analytics.json"
    path.write_bytes(raw)
    store = AnalyticsStore()

    assert AnalyticsPersistence(store, path).load() is LoadOutcome.FAILED
    assert store.snapshot().total_requests == 0
    assert path.read_bytes() == raw


def test_unwritable_location_is_not_fatal(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    persistence = AnalyticsPersistence(AnalyticsStore(), blocker / "analytics.json")

    assert persistence.load() is LoadOutcome.INITIALIZED
    assert persistence.save() is False


def test_save_replaces_file_without_leaving_temp(tmp_path):
    path = tmp_path / "analytics.json"
    store = AnalyticsStore()
    persistence = AnalyticsPersistence(store, path)
    persistence.load()
    store.record(RequestObserved("GET", "/health"))

    assert persistence.save()
    assert _read(path)["totalRequests"] == 1
    assert not (tmp_path / "analytics.json.tmp").exists()


def test_import_merges_and_saves_immediately(tmp_path):
    path = tmp_path / "analytics.json"
    store = AnalyticsStore()
    persistence = AnalyticsPersistence(store, path)
    persistence.load()
    store.record(RequestObserved("GET", "/health"))

    merged = persistence.import_snapshot(
        {"totalRequests": 10, "totalToolCalls": 2, "toolCalls": {"perplexity_ask": 2}}
    )

    assert merged.total_requests == 11
    assert merged.tool_calls == {"perplexity_ask": 2}
    on_disk = _read(path)
    assert on_disk["totalRequests"] == 11
    assert on_disk["toolCalls"] == {"perplexity_ask": 2}


def test_repeated_import_double_counts(tmp_path):
    payload = {"totalRequests": 3, "requestsByEndpoint": {"/mcp": 3}}
    persistence = AnalyticsPersistence(AnalyticsStore(), tmp_path / "analytics.json")
    persistence.load()

    persistence.import_snapshot(payload)
    twice = persistence.import_snapshot(payload)

    assert twice.total_requests == 6
    assert twice.requests_by_endpoint == {"/mcp": 6}


def test_import_with_wrong_key_is_rejected_before_mutation(tmp_path):
    store = AnalyticsStore()
    persistence = AnalyticsPersistence(store, tmp_path / "analytics.json", import_key="secret")
    persistence.load()

    with pytest.raises(ImportUnauthorizedError):
        persistence.import_snapshot({"totalRequests": 5}, "wrong")
    with pytest.raises(ImportUnauthorizedError):
        persistence.import_snapshot({"totalRequests": 5}, None)
    assert store.snapshot().total_requests == 0

    merged = persistence.import_snapshot({"totalRequests": 5}, "secret")
    assert merged.total_requests == 5


def test_invalid_import_leaves_state_untouched(tmp_path):
    store = AnalyticsStore()
    persistence = AnalyticsPersistence(store, tmp_path / "analytics.json")
    persistence.load()

    # The valid totalRequests field must not be applied when a later field is bad.
    with pytest.raises(SnapshotFormatError):
        persistence.import_snapshot({"totalRequests": 5, "toolCalls": {"perplexity_ask": -1}})
    assert store.snapshot().total_requests == 0


@pytest.mark.asyncio
async def test_periodic_task_saves_new_events(tmp_path):
    path = tmp_path / "analytics.json"
    store = AnalyticsStore()
    persistence = AnalyticsPersistence(store, path, save_interval=0.05)
    persistence.load()
    persistence.start()
    assert persistence.running

    store.record(RequestObserved("GET", "/health"))
    for _ in range(100):
        await asyncio.sleep(0.02)
        if _read(path)["totalRequests"] == 1:
            break
    assert _read(path)["totalRequests"] == 1

    await persistence.stop()
    assert not persistence.running


@pytest.mark.asyncio
async def test_shutdown_flushes_unsaved_events(tmp_path):
    path = tmp_path / "analytics.json"
    store = AnalyticsStore()
    persistence = AnalyticsPersistence(store, path, save_interval=3600)
    persistence.load()
    persistence.start()

    for _ in range(4):
        store.record(RequestObserved("GET", "/health"))
    store.record(ToolInvoked("perplexity_search"))
    assert _read(path)["totalRequests"] == 0

    assert await persistence.stop() is True
    data = _read(path)
    assert data["totalRequests"] == 4
    assert data["totalToolCalls"] == 1


@pytest.mark.asyncio
async def test_cancelling_stop_propagates(tmp_path):
    path = tmp_path / "analytics.json"
    store = AnalyticsStore()
    persistence = AnalyticsPersistence(store, path, save_interval=3600)
    persistence.load()
    persistence.start()
    store.record(RequestObserved("GET", "/health"))

    stopper = asyncio.create_task(persistence.stop())
    await asyncio.sleep(0)
    stopper.cancel()

    with pytest.raises(asyncio.CancelledError):
        await stopper
    assert stopper.cancelled()
    assert not persistence.running
    # The final flush did not run.
    assert _read(path)["totalRequests"] == 0
