"""Copy samples from a SignalProvider into the signal bank."""

from __future__ import annotations

import logging
from datetime import date

from readiness.core.storage.repository import SignalRepository
from readiness.domains.health.connectors import SignalProvider
from readiness.domains.health.domain_logic.models import Metric

logger = logging.getLogger(__name__)


async def sync_provider_into_repository(
    provider: SignalProvider,
    repository: SignalRepository,
    start: date,
    end: date,
) -> dict[str, int]:
    """Pull every metric and workout for ``start..end`` and store them.

    Re-syncing the same range is safe: samples for the same instant and source
    supersede the stored ones.

    Returns:
        Count of stored rows per metric name, plus ``"workouts"``.
    """
    if not provider.is_connected():
        logger.warning("Skipping sync: provider %s is not connected", provider.data_source)
        return {}

    counts: dict[str, int] = {}
    for metric in Metric:
        samples = await provider.get_samples(metric, start, end)
        counts[metric.value] = repository.append_samples(samples)

    workouts = await provider.get_workouts(start, end)
    for workout in workouts:
        repository.save_workout(workout)
    counts["workouts"] = len(workouts)

    repository.record_sync(provider.data_source, provider.data_source.replace("_", " ").title())
    logger.info(
        "Synced %s %s..%s: %d samples, %d workouts",
        provider.data_source, start, end,
        sum(v for k, v in counts.items() if k != "workouts"), len(workouts),
    )
    return counts
