"""Multi-signal anomaly detection over a rolling window of daily signals.

Two independent detectors, both stateless and re-run from scratch each time:

Illness
    Compares the latest day against personal baselines. Each signal has a
    fixed threshold (HRV drop >10% or spike >100%, RHR rise >3%, sleep score
    drop >15%, respiratory change >8%, activity drop >25%). An event is raised
    once ``min_signals`` thresholds cross. Confidence follows the number of
    crossed signals (1 Low, 2 Moderate, 3+ High) and is raised one level when
    any crossed signal exceeds twice its threshold.

Wellness
    Looks for sustained trends: RHR >15% above, HRV >20% below or respiratory
    rate >20% above baseline on consecutive days ending today. A very good
    recovery score suppresses all but the broadest trends.

Events are identified by ``(kind, first_detected)``. ``first_detected`` is
the first day of the unbroken run of flagged days that ends today, so the
same ongoing condition keeps the same id on every run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from readiness.domains.health.domain_logic.config import (
    IllnessThresholds,
    ScoringConfig,
    WellnessThresholds,
)
from readiness.domains.health.domain_logic.daily_signals import DailySignals
from readiness.domains.health.domain_logic.models import (
    AnomalyEvent,
    AnomalyKind,
    Baseline,
    Confidence,
    Metric,
    anomaly_event_id,
)

logger = logging.getLogger(__name__)

_METRIC_LABELS = {
    Metric.HRV: "hrv",
    Metric.RHR: "rhr",
    Metric.RESPIRATORY_RATE: "respiratory_rate",
    Metric.ACTIVE_ENERGY: "activity",
    Metric.SLEEP_STAGE: "sleep_score",
}

_RECOMMENDATIONS = {
    (AnomalyKind.ILLNESS, Confidence.LOW): (
        "One signal is off baseline. Train as planned but keep an eye on how you feel."
    ),
    (AnomalyKind.ILLNESS, Confidence.MODERATE): (
        "Several signals point to strain on your body. Consider an easy day and extra sleep."
    ),
    (AnomalyKind.ILLNESS, Confidence.HIGH): (
        "Your body shows strong signs of fighting something off. Prioritize rest today."
    ),
    (AnomalyKind.WELLNESS, Confidence.LOW): (
        "A metric has drifted from baseline for a few days. Watch the trend."
    ),
    (AnomalyKind.WELLNESS, Confidence.MODERATE): (
        "Multiple metrics have stayed off baseline. Reduce intensity and recover."
    ),
    (AnomalyKind.WELLNESS, Confidence.HIGH): (
        "A sustained multi-metric change. Take rest days and check in with how you feel."
    ),
}


@dataclass(frozen=True)
class CrossedSignal:
    """One signal past its threshold on one day."""

    metric: Metric
    deviation: float  # fractional change from baseline
    ratio: float  # |deviation| / threshold


def _pct(value: float | None, baseline: Baseline | None) -> float | None:
    if value is None or baseline is None or baseline.insufficient_data or baseline.mean <= 0:
        return None
    return (value - baseline.mean) / baseline.mean


def illness_signals(
    day: DailySignals,
    baselines: dict[Metric, Baseline],
    sleep_score_baseline: float | None,
    thresholds: IllnessThresholds,
) -> list[CrossedSignal]:
    """Return every illness threshold crossed on ``day``."""
    crossed: list[CrossedSignal] = []

    hrv = _pct(day.hrv, baselines.get(Metric.HRV))
    if hrv is not None:
        if hrv < -thresholds.hrv_drop:
            crossed.append(CrossedSignal(Metric.HRV, hrv, -hrv / thresholds.hrv_drop))
        elif hrv > thresholds.hrv_spike:
            crossed.append(CrossedSignal(Metric.HRV, hrv, hrv / thresholds.hrv_spike))

    rhr = _pct(day.rhr, baselines.get(Metric.RHR))
    if rhr is not None and rhr > thresholds.rhr_rise:
        crossed.append(CrossedSignal(Metric.RHR, rhr, rhr / thresholds.rhr_rise))

    if day.sleep_score is not None and sleep_score_baseline:
        sleep = (day.sleep_score - sleep_score_baseline) / sleep_score_baseline
        if sleep < -thresholds.sleep_drop:
            crossed.append(CrossedSignal(Metric.SLEEP_STAGE, sleep, -sleep / thresholds.sleep_drop))

    resp = _pct(day.respiratory_rate, baselines.get(Metric.RESPIRATORY_RATE))
    if resp is not None and abs(resp) > thresholds.respiratory_change:
        crossed.append(CrossedSignal(
            Metric.RESPIRATORY_RATE, resp, abs(resp) / thresholds.respiratory_change
        ))

    activity = _pct(day.active_energy, baselines.get(Metric.ACTIVE_ENERGY))
    if activity is not None and activity < -thresholds.activity_drop:
        crossed.append(CrossedSignal(
            Metric.ACTIVE_ENERGY, activity, -activity / thresholds.activity_drop
        ))

    return crossed


def illness_confidence(crossed: list[CrossedSignal], thresholds: IllnessThresholds) -> Confidence:
    confidence = Confidence.from_signal_count(len(crossed))
    if any(s.ratio > thresholds.magnitude_multiplier for s in crossed):
        confidence = confidence.escalate()
    return confidence


def _detect_illness(
    window: list[DailySignals],
    baselines: dict[Metric, Baseline],
    sleep_score_baseline: float | None,
    config: ScoringConfig,
) -> AnomalyEvent | None:
    thresholds = config.illness
    min_signals = max(1, config.anomaly_min_signals)

    latest = window[-1]
    crossed = illness_signals(latest, baselines, sleep_score_baseline, thresholds)
    if len(crossed) < min_signals:
        return None

    first = latest.day
    for day in reversed(window[:-1]):
        if day.day != first - timedelta(days=1):
            break
        if len(illness_signals(day, baselines, sleep_score_baseline, thresholds)) < min_signals:
            break
        first = day.day

    confidence = illness_confidence(crossed, thresholds)
    return AnomalyEvent(
        id=anomaly_event_id(AnomalyKind.ILLNESS, first),
        kind=AnomalyKind.ILLNESS,
        confidence=confidence,
        triggered_signals=frozenset(s.metric for s in crossed),
        first_detected=first,
        deviations={_METRIC_LABELS[s.metric]: round(s.deviation, 4) for s in crossed},
        recommendation=_RECOMMENDATIONS[(AnomalyKind.ILLNESS, confidence)],
    )


def _wellness_flags(
    day: DailySignals, baselines: dict[Metric, Baseline], thresholds: WellnessThresholds
) -> dict[Metric, float]:
    flags: dict[Metric, float] = {}
    rhr = _pct(day.rhr, baselines.get(Metric.RHR))
    if rhr is not None and rhr > thresholds.rhr_elevated:
        flags[Metric.RHR] = rhr
    hrv = _pct(day.hrv, baselines.get(Metric.HRV))
    if hrv is not None and hrv < -thresholds.hrv_depressed:
        flags[Metric.HRV] = hrv
    resp = _pct(day.respiratory_rate, baselines.get(Metric.RESPIRATORY_RATE))
    if resp is not None and resp > thresholds.respiratory_elevated:
        flags[Metric.RESPIRATORY_RATE] = resp
    return flags


def _detect_wellness(
    window: list[DailySignals],
    baselines: dict[Metric, Baseline],
    recovery_score: int | None,
    config: ScoringConfig,
) -> AnomalyEvent | None:
    thresholds = config.wellness
    streaks: dict[Metric, int] = {}
    latest_flags = _wellness_flags(window[-1], baselines, thresholds)

    for metric in latest_flags:
        streak = 0
        expected = window[-1].day
        for day in reversed(window):
            if day.day != expected or metric not in _wellness_flags(day, baselines, thresholds):
                break
            streak += 1
            expected = day.day - timedelta(days=1)
        streaks[metric] = streak

    affected = {m: s for m, s in streaks.items() if s >= thresholds.min_consecutive_days}
    if not affected:
        return None

    if (
        recovery_score is not None
        and recovery_score >= thresholds.good_recovery_override
        and len(affected) < 3
    ):
        logger.info("Wellness trend suppressed by recovery score %d", recovery_score)
        return None

    longest = max(affected.values())
    confidence = Confidence.from_signal_count(len(affected))
    if longest >= thresholds.long_trend_days:
        confidence = confidence.escalate()

    first = window[-1].day - timedelta(days=longest - 1)
    return AnomalyEvent(
        id=anomaly_event_id(AnomalyKind.WELLNESS, first),
        kind=AnomalyKind.WELLNESS,
        confidence=confidence,
        triggered_signals=frozenset(affected),
        first_detected=first,
        deviations={_METRIC_LABELS[m]: round(latest_flags[m], 4) for m in affected},
        recommendation=_RECOMMENDATIONS[(AnomalyKind.WELLNESS, confidence)],
    )


def detect_anomalies(
    window: list[DailySignals],
    baselines: dict[Metric, Baseline],
    *,
    sleep_score_baseline: float | None = None,
    recovery_score: int | None = None,
    config: ScoringConfig | None = None,
) -> list[AnomalyEvent]:
    """Evaluate the window and return the current illness/wellness events.

    Args:
        window: Daily signals ordered oldest to newest; the last entry is
            the day being evaluated.
        baselines: Baselines keyed by metric (HRV, RHR, respiratory rate,
            active energy).
        sleep_score_baseline: Mean sleep score over the baseline window.
        recovery_score: Today's recovery score, used to suppress wellness
            alerts on clearly good days.
        config: Thresholds and window settings.

    Returns:
        Zero, one or two events (at most one per kind).
    """
    config = config or ScoringConfig()
    if not window:
        return []
    window = sorted(window, key=lambda d: d.day)[-config.anomaly_window_days:]

    events: list[AnomalyEvent] = []
    illness = _detect_illness(window, baselines, sleep_score_baseline, config)
    if illness is not None:
        events.append(illness)
    wellness = _detect_wellness(window, baselines, recovery_score, config)
    if wellness is not None:
        events.append(wellness)
    return events
