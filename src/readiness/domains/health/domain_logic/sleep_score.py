"""Sleep score calculator.

Four weighted sub-scores on 0-100:

    performance    35%  asleep time vs. personal sleep need (capped at 100)
    stageQuality   30%  deep and REM share vs. target bands
    efficiency     20%  asleep time / time in bed
    disturbances   15%  wake-event count, minus a penalty for long wake time

Missing stage data only neutralizes stageQuality (50); the other three still
score. A day with no sleep recorded at all yields a ``NO_DATA`` sentinel so
the recovery calculator can rebalance its weights.
"""

from __future__ import annotations

from datetime import date, datetime

from readiness.domains.health.domain_logic.daily_signals import SleepNight
from readiness.domains.health.domain_logic.models import (
    Baseline,
    ScoreBand,
    ScoreKind,
    ScoreResult,
    ScoreStatus,
    clamp_score,
    new_result_id,
    sleep_band,
)

WEIGHTS = {
    "performance": 0.35,
    "stageQuality": 0.30,
    "efficiency": 0.20,
    "disturbances": 0.15,
}

NEUTRAL = 50.0

# (low, high) fraction of asleep time
DEEP_TARGET = (0.15, 0.25)
REM_TARGET = (0.20, 0.25)

MIN_SLEEP_NEED_HOURS = 6.5
MAX_SLEEP_NEED_HOURS = 9.5


def sleep_need_hours(baseline: Baseline | None, default_hours: float = 8.0) -> float:
    """Personal sleep need: the 30-day asleep-hours mean, else the default."""
    if baseline is None or baseline.insufficient_data:
        return default_hours
    return max(MIN_SLEEP_NEED_HOURS, min(MAX_SLEEP_NEED_HOURS, baseline.mean))


def performance_score(asleep_hours: float, need_hours: float) -> float:
    if need_hours <= 0:
        return NEUTRAL
    return min(100.0, asleep_hours / need_hours * 100.0)


def stage_share_score(share: float, target: tuple[float, float]) -> float:
    """Score one stage's share of the night against its target band."""
    low, high = target
    if low <= share <= high:
        return 100.0
    if share < low:
        return share / low * 100.0
    # Too much of one stage is mildly penalized.
    return max(60.0, 100.0 - (share - high) * 200.0)


def stage_quality_score(night: SleepNight) -> float | None:
    """Average of deep and REM band scores; ``None`` without stage data."""
    if not night.has_stage_data or night.asleep_seconds <= 0:
        return None
    deep = night.deep_seconds / night.asleep_seconds
    rem = night.rem_seconds / night.asleep_seconds
    return (stage_share_score(deep, DEEP_TARGET) + stage_share_score(rem, REM_TARGET)) / 2


def efficiency_score(night: SleepNight) -> float | None:
    efficiency = night.efficiency
    if efficiency is None:
        return None
    return efficiency * 100.0


def disturbance_score(wake_events: int, awake_seconds: float) -> float:
    if wake_events <= 2:
        base = 100.0
    elif wake_events <= 5:
        base = 75.0
    elif wake_events <= 8:
        base = 50.0
    else:
        base = 25.0
    awake_minutes = awake_seconds / 60.0
    penalty = min(25.0, max(0.0, awake_minutes - 20.0) * 0.5)
    return max(0.0, base - penalty)


def no_sleep_result(day: date, now: datetime, *, result_id: str | None = None) -> ScoreResult:
    """Sentinel result for a day without any recorded sleep."""
    return ScoreResult(
        id=result_id or new_result_id(),
        kind=ScoreKind.SLEEP,
        day=day,
        value=0,
        band=ScoreBand.NO_DATA,
        sub_scores={},
        inputs_snapshot={"samples": 0},
        computed_at=now,
        status=ScoreStatus.NO_DATA,
    )


def calculate_sleep_score(
    night: SleepNight | None,
    *,
    sleep_need: float,
    day: date,
    now: datetime,
    result_id: str | None = None,
) -> ScoreResult:
    """Score one night of sleep.

    Args:
        night: Aggregated night, or ``None`` if nothing was recorded.
        sleep_need: Hours of sleep this person needs (see ``sleep_need_hours``).
        day: Day the night is attributed to.
        now: Calculation timestamp.
        result_id: Optional id for the result; a UUID is generated otherwise.

    Returns:
        The sleep ScoreResult, or the ``NO_DATA`` sentinel.
    """
    if night is None or (night.asleep_seconds <= 0 and night.in_bed_seconds <= 0):
        return no_sleep_result(day, now, result_id=result_id)

    stage = stage_quality_score(night)
    efficiency = efficiency_score(night)
    sub_scores = {
        "performance": performance_score(night.asleep_hours, sleep_need),
        "stageQuality": stage if stage is not None else NEUTRAL,
        "efficiency": efficiency if efficiency is not None else NEUTRAL,
        "disturbances": disturbance_score(night.wake_events, night.awake_seconds),
    }
    total = sum(sub_scores[name] * weight for name, weight in WEIGHTS.items())
    value = clamp_score(total)

    asleep = night.asleep_seconds or 1.0
    return ScoreResult(
        id=result_id or new_result_id(),
        kind=ScoreKind.SLEEP,
        day=day,
        value=value,
        band=sleep_band(value),
        sub_scores={k: round(v, 2) for k, v in sub_scores.items()},
        inputs_snapshot={
            "asleep_hours": round(night.asleep_hours, 2),
            "in_bed_hours": round(night.in_bed_seconds / 3600.0, 2),
            "sleep_need_hours": round(sleep_need, 2),
            "deep_pct": round(night.deep_seconds / asleep * 100.0, 1),
            "rem_pct": round(night.rem_seconds / asleep * 100.0, 1),
            "stage_coverage": round(night.stage_coverage, 2),
            "wake_events": night.wake_events,
            "samples": night.sample_count,
        },
        computed_at=now,
        status=ScoreStatus.OK if stage is not None and efficiency is not None else ScoreStatus.LIMITED_DATA,
    )
