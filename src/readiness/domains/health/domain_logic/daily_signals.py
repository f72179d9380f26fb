"""Per-day aggregation of raw signal samples.

Samples arrive irregularly (several HRV readings a night, one resting HR a
day, dozens of sleep-stage intervals). Calculators and the baseline tracker
work on one value per metric per day, produced here.
"""

from __future__ import annotations

import statistics
from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, timedelta

from readiness.domains.health.domain_logic.models import Metric, SignalSample, SleepStage

# A night is attributed to the day on which it ends: anything that starts
# between noon yesterday and noon today belongs to today's night.
_NIGHT_OFFSET = timedelta(hours=12)

MIN_STAGE_COVERAGE = 0.5

_ASLEEP_STAGES = {SleepStage.ASLEEP, SleepStage.CORE, SleepStage.DEEP, SleepStage.REM}
_SUMMED_METRICS = {Metric.ACTIVE_ENERGY, Metric.TRAINING_STRESS}


def night_of(sample: SignalSample) -> date:
    """Return the day a sleep sample's night is attributed to."""
    return (sample.timestamp + _NIGHT_OFFSET).date()


def _stage(sample: SignalSample) -> SleepStage | None:
    try:
        return SleepStage(int(sample.value))
    except ValueError:
        return None


@dataclass(frozen=True)
class SleepNight:
    """Durations (seconds) and wake events for one night of sleep."""

    day: date
    in_bed_seconds: float
    asleep_seconds: float
    awake_seconds: float
    deep_seconds: float = 0.0
    rem_seconds: float = 0.0
    core_seconds: float = 0.0
    wake_events: int = 0
    sample_count: int = 0

    @property
    def staged_seconds(self) -> float:
        return self.deep_seconds + self.rem_seconds + self.core_seconds

    @property
    def stage_coverage(self) -> float:
        """Fraction of asleep time that carries a specific stage."""
        if self.asleep_seconds <= 0:
            return 0.0
        return min(1.0, self.staged_seconds / self.asleep_seconds)

    @property
    def has_stage_data(self) -> bool:
        return self.stage_coverage >= MIN_STAGE_COVERAGE

    @property
    def asleep_hours(self) -> float:
        return self.asleep_seconds / 3600.0

    @property
    def efficiency(self) -> float | None:
        if self.in_bed_seconds <= 0:
            return None
        return min(1.0, self.asleep_seconds / self.in_bed_seconds)


def build_sleep_night(samples: Iterable[SignalSample], day: date) -> SleepNight | None:
    """Summarize the sleep-stage samples belonging to ``day``'s night.

    Returns ``None`` when nothing was recorded for that night.
    """
    totals: dict[SleepStage, float] = defaultdict(float)
    wake_events = 0
    count = 0
    first_start = None
    last_end = None

    for sample in samples:
        if sample.metric is not Metric.SLEEP_STAGE or night_of(sample) != day:
            continue
        stage = _stage(sample)
        if stage is None:
            continue
        count += 1
        totals[stage] += sample.duration_seconds
        if stage is SleepStage.AWAKE:
            wake_events += 1
        end = sample.end or sample.timestamp
        if first_start is None or sample.timestamp < first_start:
            first_start = sample.timestamp
        if last_end is None or end > last_end:
            last_end = end

    if count == 0:
        return None

    asleep = sum(totals[s] for s in _ASLEEP_STAGES)
    awake = totals[SleepStage.AWAKE]
    in_bed = totals[SleepStage.IN_BED]
    if in_bed <= 0 and first_start is not None and last_end is not None:
        in_bed = (last_end - first_start).total_seconds()
    in_bed = max(in_bed, asleep + awake)

    return SleepNight(
        day=day,
        in_bed_seconds=in_bed,
        asleep_seconds=asleep,
        awake_seconds=awake,
        deep_seconds=totals[SleepStage.DEEP],
        rem_seconds=totals[SleepStage.REM],
        core_seconds=totals[SleepStage.CORE],
        wake_events=wake_events,
        sample_count=count,
    )


def daily_values(samples: Iterable[SignalSample], metric: Metric) -> dict[date, float]:
    """Collapse samples of one metric to a single value per day.

    HRV, RHR and respiratory rate are averaged, active energy and training
    stress are summed, and sleep becomes asleep hours per night with
    low-coverage nights left out.
    """
    samples = [s for s in samples if s.metric is metric]

    if metric is Metric.SLEEP_STAGE:
        values: dict[date, float] = {}
        for day in sorted({night_of(s) for s in samples}):
            night = build_sleep_night(samples, day)
            if night is not None and night.has_stage_data and night.asleep_seconds > 0:
                values[day] = night.asleep_hours
        return values

    grouped: dict[date, list[float]] = defaultdict(list)
    for sample in samples:
        grouped[sample.day].append(sample.value)

    if metric in _SUMMED_METRICS:
        return {day: float(sum(vals)) for day, vals in grouped.items()}
    return {day: statistics.fmean(vals) for day, vals in grouped.items()}


@dataclass(frozen=True)
class DailySignals:
    """One day's aggregated signals as seen by the anomaly detector."""

    day: date
    hrv: float | None = None
    rhr: float | None = None
    respiratory_rate: float | None = None
    active_energy: float | None = None
    sleep_score: float | None = None


def build_daily_window(
    daily: Mapping[Metric, Mapping[date, float]],
    days: Iterable[date],
    sleep_scores: Mapping[date, float] | None = None,
) -> list[DailySignals]:
    """Build the ordered per-day window consumed by the anomaly detector.

    ``daily`` holds per-day values by metric, as returned by ``daily_values``.
    Metrics or days without a value are left as ``None``.
    """
    sleep_scores = sleep_scores or {}

    def value(metric: Metric, day: date) -> float | None:
        return daily.get(metric, {}).get(day)

    return [
        DailySignals(
            day=day,
            hrv=value(Metric.HRV, day),
            rhr=value(Metric.RHR, day),
            respiratory_rate=value(Metric.RESPIRATORY_RATE, day),
            active_energy=value(Metric.ACTIVE_ENERGY, day),
            sleep_score=sleep_scores.get(day),
        )
        for day in sorted(days)
    ]
