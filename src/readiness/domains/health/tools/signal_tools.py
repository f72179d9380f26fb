"""MCP tools for feeding signals into the signal bank."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

from readiness.domains.health.connectors.sync import sync_provider_into_repository
from readiness.domains.health.domain_logic.models import METRIC_UNITS, Metric, SignalSample

if TYPE_CHECKING:
    from readiness.core.storage.repository import SignalRepository
    from readiness.domains.health.connectors import SignalProvider
    from readiness.domains.health.domain_logic.coordinator import ScoresCoordinator

logger = logging.getLogger(__name__)


def register_signal_tools(
    mcp: FastMCP,
    repository: SignalRepository,
    coordinator: ScoresCoordinator,
    provider: SignalProvider | None = None,
) -> None:
    """Register signal recording and sync tools on the MCP server."""

    @mcp.tool
    async def record_signal(
        ctx: Context,
        metric: str,
        value: float,
        timestamp: str = "",
        end: str = "",
    ) -> str:
        """Record one signal sample by hand.

        Args:
            metric: One of 'hrv', 'rhr', 'respiratory_rate', 'sleep_stage',
                'active_energy', 'training_stress'.
            value: Sample value in the metric's unit (ms, bpm, breaths/min,
                sleep stage code, kcal, TSS).
            timestamp: When the sample was taken (ISO 8601). Defaults to now.
            end: End of the interval for sleep-stage samples (ISO 8601).
        """
        try:
            signal_metric = Metric(metric)
        except ValueError:
            valid = ", ".join(m.value for m in Metric)
            return json.dumps({"status": "error", "message": f"Unknown metric {metric!r}; expected one of {valid}"})

        try:
            at = datetime.fromisoformat(timestamp) if timestamp else datetime.now(timezone.utc)
            until = datetime.fromisoformat(end) if end else None
        except ValueError as exc:
            return json.dumps({"status": "error", "message": f"Invalid timestamp: {exc}"})

        sample = SignalSample(
            metric=signal_metric,
            value=value,
            unit=METRIC_UNITS[signal_metric],
            timestamp=at,
            source="manual",
            end=until,
        )
        repository.append_samples([sample])
        await coordinator.invalidate_inputs()
        logger.info("Manual %s sample recorded for %s", signal_metric.value, sample.day)
        return json.dumps({
            "status": "saved",
            "metric": signal_metric.value,
            "value": value,
            "unit": sample.unit,
            "day": sample.day.isoformat(),
        })

    @mcp.tool
    async def sync_signals(
        ctx: Context,
        days: int = 30,
    ) -> str:
        """Import recent samples from the configured signal sources.

        Args:
            days: How many days back to import (default: 30).
        """
        if provider is None:
            return json.dumps({"status": "error", "message": "No signal source configured"})

        end = datetime.now(timezone.utc).date()
        start = end - timedelta(days=max(days, 1) - 1)
        counts = await sync_provider_into_repository(provider, repository, start, end)
        if counts:
            await coordinator.invalidate_inputs()
        return json.dumps({
            "status": "synced" if counts else "skipped",
            "source": provider.data_source,
            "start": start.isoformat(),
            "end": end.isoformat(),
            "counts": counts,
        })
