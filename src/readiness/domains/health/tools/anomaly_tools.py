"""MCP tools for illness/wellness anomaly alerts."""

from __future__ import annotations

import json
import logging
from datetime import date, timedelta
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

if TYPE_CHECKING:
    from readiness.domains.health.domain_logic.coordinator import ScoresCoordinator

logger = logging.getLogger(__name__)


def register_anomaly_tools(mcp: FastMCP, coordinator: ScoresCoordinator) -> None:
    """Register anomaly listing and dismissal tools on the MCP server."""

    @mcp.tool
    async def list_anomalies(
        ctx: Context,
        include_dismissed: bool = False,
    ) -> str:
        """List the anomalies from the latest calculation.

        Args:
            include_dismissed: Also return events hidden by a dismissal.
        """
        if include_dismissed:
            events = list(coordinator.state.anomalies)
        else:
            events = coordinator.active_anomalies()
        return json.dumps({
            "phase": coordinator.state.phase.value,
            "count": len(events),
            "anomalies": [e.to_dict() for e in events],
        })

    @mcp.tool
    async def dismiss_anomaly(
        ctx: Context,
        event_id: str,
        until: str = "",
    ) -> str:
        """Hide an anomaly alert until a given date.

        Args:
            event_id: Id of the event, as returned by list_anomalies.
            until: Last day the alert stays hidden (ISO 8601). Defaults to
                three days from now.
        """
        if until:
            try:
                until_day = date.fromisoformat(until)
            except ValueError:
                return json.dumps({"status": "error", "message": f"Invalid date: {until!r}"})
        else:
            until_day = date.today() + timedelta(days=3)

        matched = await coordinator.dismiss_anomaly(event_id, until_day)
        logger.info("Dismissal for %s until %s (matched=%s)", event_id, until_day, matched)
        return json.dumps({
            "status": "dismissed" if matched else "recorded",
            "event_id": event_id,
            "dismissed_until": until_day.isoformat(),
        })
