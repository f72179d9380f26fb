"""Builders and fakes shared by the test suite."""

from __future__ import annotations

import asyncio
from datetime import date, datetime, time, timedelta, timezone

from readiness.domains.health.domain_logic.models import (
    METRIC_UNITS,
    Metric,
    ScoreKind,
    ScoreResult,
    SignalSample,
    SleepStage,
    WorkoutStream,
)

TODAY = date(2026, 1, 15)


# ---------------------------------------------------------------------------
# Sample builders
# ---------------------------------------------------------------------------

def make_sample(
    metric: Metric,
    value: float,
    day: date,
    *,
    hour: int = 7,
    source: str = "test",
) -> SignalSample:
    """A point sample taken at ``hour`` o'clock UTC on ``day``."""
    return SignalSample(
        metric=metric,
        value=value,
        unit=METRIC_UNITS[metric],
        timestamp=datetime.combine(day, time(hour), tzinfo=timezone.utc),
        source=source,
    )


def make_night(
    day: date,
    *,
    deep_min: float = 90,
    rem_min: float = 100,
    core_min: float = 250,
    awake_min: float = 10,
    wake_events: int = 2,
    staged: bool = True,
    source: str = "test",
) -> list[SignalSample]:
    """Sleep-stage intervals for the night ending on ``day``, starting 23:00."""
    start = datetime.combine(day - timedelta(days=1), time(23), tzinfo=timezone.utc)
    segments: list[tuple[SleepStage, float]] = []
    if staged:
        segments += [(SleepStage.CORE, core_min), (SleepStage.DEEP, deep_min), (SleepStage.REM, rem_min)]
    else:
        segments.append((SleepStage.ASLEEP, deep_min + rem_min + core_min))
    for _ in range(wake_events):
        segments.append((SleepStage.AWAKE, awake_min / max(wake_events, 1)))

    samples = []
    cursor = start
    for stage, minutes in segments:
        end = cursor + timedelta(minutes=minutes)
        samples.append(SignalSample(
            metric=Metric.SLEEP_STAGE,
            value=float(stage.value),
            unit="stage",
            timestamp=cursor,
            source=source,
            end=end,
        ))
        cursor = end
    return samples


def steady_history(
    today: date = TODAY,
    days: int = 30,
    *,
    hrv: float = 60.0,
    rhr: float = 55.0,
    resp: float = 14.0,
    energy: float = 500.0,
    tss: float = 50.0,
    jitter: float = 0.02,
) -> list[SignalSample]:
    """``days`` days of mildly varying samples ending yesterday."""
    samples: list[SignalSample] = []
    for i in range(days, 0, -1):
        day = today - timedelta(days=i)
        wobble = 1.0 + (jitter if i % 2 else -jitter)
        samples += [
            make_sample(Metric.HRV, hrv * wobble, day),
            make_sample(Metric.RHR, rhr * (2 - wobble), day),
            make_sample(Metric.RESPIRATORY_RATE, resp * wobble, day),
            make_sample(Metric.ACTIVE_ENERGY, energy * wobble, day, hour=20),
            make_sample(Metric.TRAINING_STRESS, tss * wobble, day, hour=18),
        ]
        samples += make_night(day)
    return samples


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime.combine(TODAY, time(9), tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeSignalStore:
    """In-memory SignalStore with failure and latency injection."""

    def __init__(self, samples: list[SignalSample] | None = None) -> None:
        self.samples: list[SignalSample] = list(samples or [])
        self.workouts: list[WorkoutStream] = []
        self.scores: list[ScoreResult] = []
        self.calls: list[tuple[str, object]] = []
        self.fail_with: Exception | None = None
        self.delay: float = 0.0
        self.gate: asyncio.Event | None = None

    async def _wait(self) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with

    async def get_samples(self, metric: Metric, start: date, end: date) -> list[SignalSample]:
        self.calls.append(("samples", metric))
        await self._wait()
        return [s for s in self.samples if s.metric is metric and start <= s.day <= end]

    async def get_workouts(self, start: date, end: date) -> list[WorkoutStream]:
        self.calls.append(("workouts", None))
        await self._wait()
        return [w for w in self.workouts if start <= w.day <= end]

    async def get_score_history(self, kind: ScoreKind, start: date, end: date) -> list[ScoreResult]:
        self.calls.append(("scores", kind))
        await self._wait()
        matching = [r for r in self.scores if r.kind is kind and start <= r.day <= end]
        return sorted(matching, key=lambda r: r.day, reverse=True)


