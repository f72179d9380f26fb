"""Rolling personal baselines from SignalStore history.

A baseline is the mean and standard deviation of one value per day over the
trailing window ``[as_of - window_days, as_of)``. Today is never part of its
own baseline. Fewer than ``min_samples`` usable days yields an explicit
insufficient-data baseline instead of a guessed default.
"""

from __future__ import annotations

import logging
import statistics
from collections.abc import Callable
from datetime import date, datetime, timedelta, timezone

from readiness.domains.health.connectors import SignalStore
from readiness.domains.health.domain_logic.daily_signals import daily_values
from readiness.domains.health.domain_logic.models import BASELINE_WINDOWS, Baseline, Metric
from readiness.domains.health.domain_logic.upstream import bounded_fetch

logger = logging.getLogger(__name__)

OUTLIER_SIGMA = 3.0
MIN_VALUES_FOR_OUTLIER_REMOVAL = 4


def remove_outliers(values: list[float], sigma: float = OUTLIER_SIGMA) -> list[float]:
    """Drop values more than ``sigma`` standard deviations from the mean."""
    if len(values) < MIN_VALUES_FOR_OUTLIER_REMOVAL:
        return list(values)
    mean = statistics.fmean(values)
    sd = statistics.pstdev(values)
    if sd == 0:
        return list(values)
    return [v for v in values if abs(v - mean) <= sigma * sd]


def summarize(
    metric: Metric,
    values: list[float],
    *,
    window_days: int,
    as_of: date,
    computed_at: datetime,
    min_samples: int = 3,
) -> Baseline:
    """Build a Baseline from one value per day."""
    cleaned = remove_outliers(values)
    if len(cleaned) < min_samples:
        return Baseline.insufficient(
            metric, window_days, as_of, computed_at, sample_count=len(cleaned)
        )
    return Baseline(
        metric=metric,
        window_days=window_days,
        mean=statistics.fmean(cleaned),
        std_dev=statistics.stdev(cleaned) if len(cleaned) > 1 else 0.0,
        sample_count=len(cleaned),
        computed_at=computed_at,
        as_of=as_of,
    )


class BaselineTracker:
    """Computes rolling baselines per metric.

    Stateless apart from its collaborators: two calls with the same store
    contents and ``as_of`` return equal baselines (``computed_at`` aside).
    Caching is the caller's job.

    Usage::

        tracker = BaselineTracker(store, min_samples=3)
        hrv = await tracker.compute(Metric.HRV, date.today())
        if hrv.insufficient_data:
            ...
    """

    def __init__(
        self,
        store: SignalStore,
        *,
        min_samples: int = 3,
        fetch_timeout: float = 8.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._min_samples = min_samples
        self._fetch_timeout = fetch_timeout
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def daily_history(self, metric: Metric, as_of: date, window_days: int) -> dict[date, float]:
        """Return one value per day for the trailing window before ``as_of``.

        Raises:
            UpstreamUnavailable: If the store fails or exceeds the fetch timeout.
        """
        first_day = as_of - timedelta(days=window_days)
        # Sleep nights attribute the evening before to the next day.
        fetch_start = first_day - timedelta(days=1) if metric is Metric.SLEEP_STAGE else first_day
        samples = await bounded_fetch(
            self._store.get_samples(metric, fetch_start, as_of - timedelta(days=1)),
            timeout=self._fetch_timeout,
            source="signal store",
            what=f"{metric.value} history",
        )
        values = daily_values(samples, metric)
        return {d: v for d, v in values.items() if first_day <= d < as_of}

    async def compute(self, metric: Metric, as_of: date, window_days: int = 30) -> Baseline:
        """Compute the baseline for ``metric`` over the window ending before ``as_of``."""
        history = await self.daily_history(metric, as_of, window_days)
        baseline = summarize(
            metric,
            [history[d] for d in sorted(history)],
            window_days=window_days,
            as_of=as_of,
            computed_at=self._clock(),
            min_samples=self._min_samples,
        )
        if baseline.insufficient_data:
            logger.info(
                "Insufficient %s history for %d-day baseline (%d days)",
                metric.value, window_days, baseline.sample_count,
            )
        return baseline

    async def compute_windows(self, metric: Metric, as_of: date) -> dict[int, Baseline]:
        """Compute the 7- and 30-day baselines from a single store read."""
        longest = max(BASELINE_WINDOWS)
        history = await self.daily_history(metric, as_of, longest)
        now = self._clock()
        result: dict[int, Baseline] = {}
        for window in BASELINE_WINDOWS:
            first_day = as_of - timedelta(days=window)
            values = [history[d] for d in sorted(history) if d >= first_day]
            result[window] = summarize(
                metric, values,
                window_days=window, as_of=as_of, computed_at=now,
                min_samples=self._min_samples,
            )
        return result
