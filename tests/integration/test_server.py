"""Integration tests for the Readiness MCP server."""

from __future__ import annotations

import asyncio
import json

import pytest
from fastmcp import Client

from readiness.core.server.app import create_app
from readiness.domains.health.connectors.mock_data import MockSignalProvider


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _payload(result) -> dict:
    return json.loads(result.content[0].text)


ALL_EXPECTED_TOOLS = [
    "health_check",
    "calculate_scores",
    "refresh_scores",
    "get_scores",
    "get_score_history",
    "list_anomalies",
    "dismiss_anomaly",
    "record_signal",
    "sync_signals",
]


@pytest.fixture
def client(signal_repository):
    """MCP client over a server backed by in-memory storage and mock signals."""
    mcp = create_app(
        repository_override=signal_repository,
        provider_override=MockSignalProvider(),
    )
    return Client(mcp)


def test_server_starts_and_lists_tools(client):
    async def _check():
        async with client:
            tool_names = [t.name for t in await client.list_tools()]
            for expected in ALL_EXPECTED_TOOLS:
                assert expected in tool_names, f"Missing tool: {expected}"
    _run(_check())


def test_health_check_reports_initial_phase(client):
    async def _check():
        async with client:
            result = await client.call_tool("health_check", {})
            data = _payload(result)
            assert data["status"] == "ok"
            assert data["phase"] == "initial"
            assert data["signal_source"] == "mock"
            assert data["samples_stored"] == 0
    _run(_check())


def test_sync_then_calculate(client, signal_repository):
    async def _check():
        async with client:
            synced = _payload(await client.call_tool("sync_signals", {"days": 30}))
            assert synced["status"] == "synced"
            assert synced["counts"]["hrv"] == 60

            scores = _payload(await client.call_tool("calculate_scores", {}))
            assert scores["phase"] == "ready"
            assert scores["last_error"] is None
            for kind in ("recovery", "sleep", "strain"):
                assert scores[kind] is not None
                assert 0 <= scores[kind]["value"] <= 100

            current = _payload(await client.call_tool("get_scores", {}))
            assert current["recovery"] == scores["recovery"]

            history = _payload(await client.call_tool("get_score_history", {"kind": "sleep"}))
            assert history["count"] == 1
    _run(_check())
    assert signal_repository.count_samples() > 0


def test_repeat_calculation_is_served_from_cache(client):
    async def _check():
        async with client:
            await client.call_tool("sync_signals", {"days": 14})
            first = _payload(await client.call_tool("calculate_scores", {}))
            second = _payload(await client.call_tool("calculate_scores", {}))
            assert second["recovery"]["computed_at"] == first["recovery"]["computed_at"]

            refreshed = _payload(await client.call_tool("refresh_scores", {}))
            assert refreshed["phase"] == "ready"
    _run(_check())


def test_record_signal_validates_metric(client):
    async def _check():
        async with client:
            bad = _payload(await client.call_tool("record_signal", {"metric": "steps", "value": 1.0}))
            assert bad["status"] == "error"
            assert "steps" in bad["message"]

            ok = _payload(await client.call_tool("record_signal", {
                "metric": "hrv", "value": 58.0, "timestamp": "2026-01-15T06:30:00+00:00",
            }))
            assert ok == {
                "status": "saved", "metric": "hrv", "value": 58.0, "unit": "ms", "day": "2026-01-15",
            }
    _run(_check())


def test_score_history_rejects_unknown_kind(client):
    async def _check():
        async with client:
            data = _payload(await client.call_tool("get_score_history", {"kind": "mood"}))
            assert data["status"] == "error"
    _run(_check())


def test_anomaly_tools(client):
    async def _check():
        async with client:
            listed = _payload(await client.call_tool("list_anomalies", {}))
            assert listed == {"phase": "initial", "count": 0, "anomalies": []}

            bad = _payload(await client.call_tool(
                "dismiss_anomaly", {"event_id": "illness:2026-01-15", "until": "soon"},
            ))
            assert bad["status"] == "error"

            recorded = _payload(await client.call_tool(
                "dismiss_anomaly", {"event_id": "illness:2026-01-15", "until": "2026-01-18"},
            ))
            assert recorded["status"] == "recorded"
            assert recorded["dismissed_until"] == "2026-01-18"
    _run(_check())
