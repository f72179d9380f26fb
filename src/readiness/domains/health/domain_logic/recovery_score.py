"""Recovery score calculator.

Weighted combination of five sub-scores (0-100):

    hrv          30%  HRV deviation from the personal baseline
    sleep        30%  the Sleep ScoreResult passed in by the caller
    rhr          20%  resting HR deviation from the personal baseline
    respiratory  10%  respiratory-rate deviation from the personal baseline
    form         10%  training stress balance, minus yesterday's load penalty

Deviations are relative to the baseline mean and expressed in units of the
person's own day-to-day variability (baseline coefficient of variation), so
a 10% HRV drop counts for more in someone whose HRV rarely moves. A metric
with no reading today or an insufficient baseline scores a neutral 50.

Bands: >=66 optimal (green), 34-65 moderate (yellow), <34 limited (red).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from readiness.domains.health.domain_logic.models import (
    Baseline,
    Metric,
    ScoreBand,
    ScoreKind,
    ScoreResult,
    ScoreStatus,
    clamp_score,
    new_result_id,
    recovery_band,
)
from readiness.domains.health.domain_logic.validation import validate_measurement
from readiness.domains.health.errors import InconsistentStateError

WEIGHTS = {
    "hrv": 0.30,
    "sleep": 0.30,
    "rhr": 0.20,
    "respiratory": 0.10,
    "form": 0.10,
}

# Sleep weight redistributed proportionally when no sleep was recorded.
NO_SLEEP_WEIGHTS = {
    "hrv": 0.428,
    "rhr": 0.286,
    "respiratory": 0.143,
    "form": 0.143,
}

NEUTRAL = 50.0

# Points per unit of normalized deviation (one coefficient of variation).
DEVIATION_POINTS = 20.0

# Used when a baseline has no spread to normalize by.
DEFAULT_CV = {
    Metric.HRV: 0.10,
    Metric.RHR: 0.05,
    Metric.RESPIRATORY_RATE: 0.05,
}


@dataclass(frozen=True)
class RecoveryInputs:
    """Today's physiological readings plus yesterday's training state."""

    hrv_ms: float | None = None
    rhr_bpm: float | None = None
    respiratory_rate: float | None = None
    tsb: float | None = None
    yesterday_tss: float | None = None


def normalized_deviation(value: float, baseline: Baseline) -> tuple[float, float] | None:
    """Return ``(pct, deviations)`` of ``value`` against ``baseline``.

    ``pct`` is the fractional change from the baseline mean; ``deviations`` is
    ``pct`` divided by the baseline coefficient of variation.
    """
    if baseline.insufficient_data or baseline.mean <= 0:
        return None
    pct = (value - baseline.mean) / baseline.mean
    cv = baseline.coefficient_of_variation or DEFAULT_CV.get(baseline.metric, 0.10)
    return pct, pct / cv


def hrv_score(value: float | None, baseline: Baseline | None) -> float | None:
    if value is None or baseline is None:
        return None
    deviation = normalized_deviation(value, baseline)
    if deviation is None:
        return None
    return max(0.0, min(100.0, NEUTRAL + DEVIATION_POINTS * deviation[1]))


def rhr_score(value: float | None, baseline: Baseline | None) -> float | None:
    if value is None or baseline is None:
        return None
    deviation = normalized_deviation(value, baseline)
    if deviation is None:
        return None
    return max(0.0, min(100.0, NEUTRAL - DEVIATION_POINTS * deviation[1]))


def respiratory_score(value: float | None, baseline: Baseline | None) -> float | None:
    """100 at baseline; elevated breathing is penalized harder than suppressed."""
    if value is None or baseline is None:
        return None
    deviation = normalized_deviation(value, baseline)
    if deviation is None:
        return None
    d = deviation[1]
    score = 100.0 - 25.0 * d if d >= 0 else 100.0 - 15.0 * abs(d)
    return max(0.0, min(100.0, score))


def tss_penalty(tss: float | None) -> float:
    """Points removed from form for yesterday's training stress."""
    if tss is None or tss < 50:
        return 0.0
    if tss < 100:
        return (tss - 50) * 0.2
    if tss < 200:
        return 10.0 + (tss - 100) * 0.15
    return min(40.0, 25.0 + (tss - 200) * 0.1)


def form_score(tsb: float | None, yesterday_tss: float | None = None) -> float | None:
    """Map training stress balance to 0-100; fresh (TSB >= 0) is 100."""
    if tsb is None:
        return None
    if tsb >= 0:
        base = 100.0
    elif tsb >= -30:
        base = 100.0 + 2.0 * tsb
    else:
        base = max(0.0, 40.0 + (tsb + 30.0) * 1.5)
    return max(0.0, base - tss_penalty(yesterday_tss))


def _baseline_snapshot(baseline: Baseline | None) -> dict[str, Any] | None:
    if baseline is None:
        return None
    return {
        "mean": round(baseline.mean, 2),
        "std_dev": round(baseline.std_dev, 2),
        "sample_count": baseline.sample_count,
        "window_days": baseline.window_days,
        "insufficient_data": baseline.insufficient_data,
    }


def calculate_recovery_score(
    inputs: RecoveryInputs,
    baselines: dict[Metric, Baseline],
    sleep: ScoreResult,
    *,
    day: date,
    now: datetime,
    result_id: str | None = None,
) -> ScoreResult:
    """Score today's recovery.

    Args:
        inputs: Today's readings and yesterday's training state.
        baselines: Baselines keyed by metric (HRV, RHR, respiratory rate).
        sleep: The Sleep result computed for the same day. May be the
            ``NO_DATA`` sentinel, never ``None``.
        day: Day being scored.
        now: Calculation timestamp.
        result_id: Optional id for the result.

    Raises:
        InconsistentStateError: If ``sleep`` is missing, not a Sleep result, or
            belongs to a different day.
    """
    if sleep is None or sleep.kind is not ScoreKind.SLEEP:
        raise InconsistentStateError("Recovery requires the Sleep result for the same day")
    if sleep.day != day:
        raise InconsistentStateError(
            f"Recovery for {day} was given the Sleep result for {sleep.day}"
        )

    warnings: list[str] = []
    hrv_value, failure = validate_measurement("hrv_ms", inputs.hrv_ms)
    if failure:
        warnings.append(failure.describe())
    rhr_value, failure = validate_measurement("resting_heart_rate", inputs.rhr_bpm)
    if failure:
        warnings.append(failure.describe())
    resp_value, failure = validate_measurement("respiratory_rate", inputs.respiratory_rate)
    if failure:
        warnings.append(failure.describe())

    hrv_baseline = baselines.get(Metric.HRV)
    rhr_baseline = baselines.get(Metric.RHR)
    resp_baseline = baselines.get(Metric.RESPIRATORY_RATE)

    computed = {
        "hrv": hrv_score(hrv_value, hrv_baseline),
        "rhr": rhr_score(rhr_value, rhr_baseline),
        "respiratory": respiratory_score(resp_value, resp_baseline),
        "form": form_score(inputs.tsb, inputs.yesterday_tss),
    }

    snapshot: dict[str, Any] = {
        "sleep": sleep.reference(),
        "hrv_ms": hrv_value,
        "rhr_bpm": rhr_value,
        "respiratory_rate": resp_value,
        "tsb": inputs.tsb,
        "yesterday_tss": inputs.yesterday_tss,
        "baselines": {
            "hrv": _baseline_snapshot(hrv_baseline),
            "rhr": _baseline_snapshot(rhr_baseline),
            "respiratory_rate": _baseline_snapshot(resp_baseline),
        },
    }

    if computed["hrv"] is None and computed["rhr"] is None and not sleep.has_data:
        return ScoreResult(
            id=result_id or new_result_id(),
            kind=ScoreKind.RECOVERY,
            day=day,
            value=0,
            band=ScoreBand.NO_DATA,
            sub_scores={},
            inputs_snapshot=snapshot,
            computed_at=now,
            status=ScoreStatus.NO_DATA,
            warnings=tuple(warnings),
        )

    sub_scores = {k: (v if v is not None else NEUTRAL) for k, v in computed.items()}
    if sleep.has_data:
        sub_scores["sleep"] = float(sleep.value)
        weights = WEIGHTS
    else:
        weights = NO_SLEEP_WEIGHTS

    total = sum(sub_scores[name] * weight for name, weight in weights.items())
    value = clamp_score(total)

    limited = any(v is None for v in computed.values()) or not sleep.has_data or warnings
    return ScoreResult(
        id=result_id or new_result_id(),
        kind=ScoreKind.RECOVERY,
        day=day,
        value=value,
        band=recovery_band(value),
        sub_scores={k: round(v, 2) for k, v in sub_scores.items()},
        inputs_snapshot=snapshot,
        computed_at=now,
        status=ScoreStatus.LIMITED_DATA if limited else ScoreStatus.OK,
        warnings=tuple(warnings),
    )
