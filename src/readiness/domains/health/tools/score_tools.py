"""MCP tools for calculating and reading readiness scores.

All calculation goes through the ScoresCoordinator, so concurrent tool calls
share one in-flight run and reads always see a consistent snapshot.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from readiness.domains.health.domain_logic.models import CalculationState, ScoreKind, ScoreResult

if TYPE_CHECKING:
    from readiness.core.storage.repository import SignalRepository
    from readiness.domains.health.domain_logic.coordinator import ScoresCoordinator

logger = logging.getLogger(__name__)


def score_summary(result: ScoreResult | None) -> dict[str, Any] | None:
    if result is None:
        return None
    return {
        "value": result.value,
        "band": result.band.value,
        "color": result.color,
        "status": result.status.value,
        "day": result.day.isoformat(),
        "computed_at": result.computed_at.isoformat() if result.computed_at else None,
        "sub_scores": result.sub_scores,
        "warnings": list(result.warnings),
    }


def state_payload(state: CalculationState) -> dict[str, Any]:
    """Compact JSON view of a CalculationState for tool responses."""
    return {
        "phase": state.phase.value,
        "stale": state.stale,
        "last_error": state.last_error,
        "updated_at": state.updated_at.isoformat() if state.updated_at else None,
        "recovery": score_summary(state.recovery),
        "sleep": score_summary(state.sleep),
        "strain": score_summary(state.strain),
        "anomalies": [e.to_dict() for e in state.anomalies],
    }


def register_score_tools(
    mcp: FastMCP,
    coordinator: ScoresCoordinator,
    repository: SignalRepository | None = None,
) -> None:
    """Register score calculation and history tools on the MCP server."""

    @mcp.tool
    async def calculate_scores(
        ctx: Context,
        force_refresh: bool = False,
    ) -> str:
        """Calculate today's recovery, sleep and strain scores.

        Results are cached; a repeated call within the cache lifetime returns
        immediately. If another calculation is already running, this call
        waits for it instead of starting a second one.

        Args:
            force_refresh: Recompute even if cached scores are still fresh.
        """
        start_time = time.monotonic()
        state = await coordinator.calculate_all(force_refresh=force_refresh)
        elapsed_ms = (time.monotonic() - start_time) * 1000
        logger.info("calculate_scores finished in %.1f ms (phase=%s)", elapsed_ms, state.phase.value)
        payload = state_payload(state)
        payload["duration_ms"] = round(elapsed_ms, 1)
        return json.dumps(payload)

    @mcp.tool
    async def refresh_scores(ctx: Context) -> str:
        """Recompute all scores from the latest signals.

        Current scores stay visible while the refresh runs.
        """
        state = await coordinator.refresh()
        return json.dumps(state_payload(state))

    @mcp.tool
    async def get_scores(ctx: Context) -> str:
        """Return the current scores without triggering a calculation."""
        return json.dumps(state_payload(coordinator.state))

    @mcp.tool
    async def get_score_history(
        ctx: Context,
        kind: str = "recovery",
        days: int = 30,
    ) -> str:
        """Return stored daily scores for one score kind, newest first.

        Args:
            kind: One of 'recovery', 'sleep', 'strain'.
            days: How many days back to look (default: 30).
        """
        if repository is None:
            return json.dumps({"status": "error", "message": "Score history requires storage"})
        try:
            score_kind = ScoreKind(kind)
        except ValueError:
            valid = ", ".join(k.value for k in ScoreKind)
            return json.dumps({"status": "error", "message": f"Unknown kind {kind!r}; expected one of {valid}"})

        end = datetime.now(timezone.utc).date()
        start = end - timedelta(days=max(days, 1) - 1)
        history = repository.get_score_history(score_kind, start=start, end=end, limit=max(days, 1))
        return json.dumps({
            "kind": score_kind.value,
            "days": days,
            "count": len(history),
            "scores": [score_summary(r) for r in history],
        })
