"""Mock signal generator for development and testing.

All mock data represents a healthy, moderately trained adult: HRV around
55 ms, resting HR around 54 bpm, seven to eight hours of staged sleep and a
mix of rest days and 40-120 TSS training days. Output is deterministic for a
given seed so scores derived from it are reproducible.
"""

from __future__ import annotations

import random
from datetime import date, datetime, time, timedelta, timezone

from readiness.domains.health.domain_logic.models import (
    METRIC_UNITS,
    Metric,
    SignalSample,
    SleepStage,
    WorkoutStream,
)

SOURCE = "mock"

# (stage, minutes) cycle repeated through the night
_SLEEP_CYCLE = [
    (SleepStage.CORE, 25),
    (SleepStage.DEEP, 20),
    (SleepStage.CORE, 20),
    (SleepStage.REM, 20),
    (SleepStage.AWAKE, 2),
]


def _daily_rng(seed: int, day: date, salt: str) -> random.Random:
    return random.Random(f"{seed}:{day.isoformat()}:{salt}")


def mock_day_samples(day: date, seed: int = 7) -> list[SignalSample]:
    """Return one day's worth of point samples (HRV, RHR, respiration, energy, TSS)."""
    rng = _daily_rng(seed, day, "point")
    morning = datetime.combine(day, time(6, 30), tzinfo=timezone.utc)
    evening = datetime.combine(day, time(20, 0), tzinfo=timezone.utc)

    def sample(metric: Metric, value: float, at: datetime) -> SignalSample:
        return SignalSample(metric, round(value, 2), METRIC_UNITS[metric], at, SOURCE)

    samples = [
        sample(Metric.HRV, rng.gauss(55, 5), morning),
        sample(Metric.HRV, rng.gauss(55, 5), morning + timedelta(minutes=20)),
        sample(Metric.RHR, rng.gauss(54, 1.5), morning),
        sample(Metric.RESPIRATORY_RATE, rng.gauss(14.5, 0.4), morning),
        sample(Metric.ACTIVE_ENERGY, max(150.0, rng.gauss(620, 120)), evening),
    ]
    if day.weekday() not in (0, 4):  # Monday and Friday are rest days
        samples.append(sample(Metric.TRAINING_STRESS, rng.uniform(40, 120), evening))
    return samples


def mock_night_samples(day: date, seed: int = 7) -> list[SignalSample]:
    """Return the sleep-stage intervals of the night ending on ``day``."""
    rng = _daily_rng(seed, day, "sleep")
    bedtime = datetime.combine(day - timedelta(days=1), time(22, 45), tzinfo=timezone.utc)
    bedtime += timedelta(minutes=rng.randint(0, 40))
    target = timedelta(hours=rng.uniform(7.0, 8.2))

    samples: list[SignalSample] = []
    cursor = bedtime + timedelta(minutes=rng.randint(8, 20))  # sleep latency
    asleep = timedelta()
    while asleep < target:
        for stage, minutes in _SLEEP_CYCLE:
            length = timedelta(minutes=max(1, minutes + rng.randint(-4, 4)))
            samples.append(SignalSample(
                Metric.SLEEP_STAGE, float(stage.value), METRIC_UNITS[Metric.SLEEP_STAGE],
                cursor, SOURCE, end=cursor + length,
            ))
            cursor += length
            if stage is not SleepStage.AWAKE:
                asleep += length
    samples.insert(0, SignalSample(
        Metric.SLEEP_STAGE, float(SleepStage.IN_BED.value), METRIC_UNITS[Metric.SLEEP_STAGE],
        bedtime, SOURCE, end=cursor + timedelta(minutes=5),
    ))
    return samples


class MockSignalProvider:
    """SignalProvider returning deterministic synthetic history.

    Usage::

        provider = MockSignalProvider(seed=7)
        hrv = await provider.get_samples(Metric.HRV, start, end)
    """

    def __init__(self, seed: int = 7) -> None:
        self._seed = seed

    async def get_samples(self, metric: Metric, start: date, end: date) -> list[SignalSample]:
        samples: list[SignalSample] = []
        day = start
        while day <= end:
            if metric is Metric.SLEEP_STAGE:
                # The night ending tomorrow starts today.
                night = mock_night_samples(day + timedelta(days=1), self._seed)
                samples.extend(s for s in night if s.day == day)
                samples.extend(
                    s for s in mock_night_samples(day, self._seed) if s.day == day
                )
            else:
                samples.extend(s for s in mock_day_samples(day, self._seed) if s.metric is metric)
            day += timedelta(days=1)
        return sorted(samples, key=lambda s: s.timestamp)

    async def get_workouts(self, start: date, end: date) -> list[WorkoutStream]:
        # Mock training load is pre-aggregated as TRAINING_STRESS samples.
        return []

    def is_connected(self) -> bool:
        return True

    @property
    def data_source(self) -> str:
        return "mock"
