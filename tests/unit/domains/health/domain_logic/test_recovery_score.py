"""Tests for the recovery score calculator."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from helpers import TODAY
from readiness.domains.health.domain_logic.models import (
    Baseline,
    Metric,
    ScoreBand,
    ScoreKind,
    ScoreResult,
    ScoreStatus,
    recovery_band,
    sleep_band,
)
from readiness.domains.health.domain_logic.recovery_score import (
    RecoveryInputs,
    calculate_recovery_score,
    form_score,
    hrv_score,
    respiratory_score,
    rhr_score,
    tss_penalty,
)
from readiness.domains.health.domain_logic.sleep_score import no_sleep_result
from readiness.domains.health.errors import InconsistentStateError

NOW = datetime(2026, 1, 15, 9, tzinfo=timezone.utc)


def _baseline(metric: Metric, mean: float, std_dev: float) -> Baseline:
    return Baseline(
        metric=metric, window_days=30, mean=mean, std_dev=std_dev,
        sample_count=30, computed_at=NOW, as_of=TODAY,
    )


def _sleep(value: int, day=TODAY) -> ScoreResult:
    return ScoreResult(
        id=f"sleep-{value}", kind=ScoreKind.SLEEP, day=day, value=value,
        band=sleep_band(value), computed_at=NOW,
    )


BASELINES = {
    Metric.HRV: _baseline(Metric.HRV, 53.0, 4.0),
    Metric.RHR: _baseline(Metric.RHR, 55.0, 2.75),
    Metric.RESPIRATORY_RATE: _baseline(Metric.RESPIRATORY_RATE, 14.0, 0.7),
}


class TestCalculateRecoveryScore:
    def test_suppressed_hrv_and_elevated_rhr_is_yellow_not_green(self):
        inputs = RecoveryInputs(hrv_ms=45.0, rhr_bpm=58.0, tsb=-5.0)
        result = calculate_recovery_score(inputs, BASELINES, _sleep(70), day=TODAY, now=NOW)
        assert result.value == 44
        assert result.band is ScoreBand.MODERATE
        assert result.color == "yellow"
        assert result.sub_scores["hrv"] == pytest.approx(10.0, abs=0.01)
        assert result.sub_scores["sleep"] == 70.0
        assert result.sub_scores["form"] == 90.0
        # No respiratory reading today: neutral, and flagged as limited.
        assert result.sub_scores["respiratory"] == 50.0
        assert result.status is ScoreStatus.LIMITED_DATA

    def test_at_baseline_with_good_sleep_is_green(self):
        inputs = RecoveryInputs(hrv_ms=53.0, rhr_bpm=55.0, respiratory_rate=14.0, tsb=2.0)
        result = calculate_recovery_score(inputs, BASELINES, _sleep(90), day=TODAY, now=NOW)
        # 0.3*50 + 0.3*90 + 0.2*50 + 0.1*100 + 0.1*100
        assert result.value == 72
        assert result.band is ScoreBand.OPTIMAL
        assert result.status is ScoreStatus.OK

    def test_references_the_sleep_result_it_was_given(self):
        sleep = _sleep(70)
        result = calculate_recovery_score(RecoveryInputs(hrv_ms=50.0), BASELINES, sleep, day=TODAY, now=NOW)
        assert result.inputs_snapshot["sleep"]["id"] == sleep.id
        assert result.inputs_snapshot["sleep"]["value"] == 70

    def test_is_deterministic_for_identical_inputs(self):
        inputs = RecoveryInputs(hrv_ms=48.0, rhr_bpm=57.0, respiratory_rate=15.0, tsb=-12.0)
        sleep = _sleep(64)
        first = calculate_recovery_score(inputs, BASELINES, sleep, day=TODAY, now=NOW, result_id="a")
        calculate_recovery_score(RecoveryInputs(hrv_ms=70.0), BASELINES, sleep, day=TODAY, now=NOW)
        second = calculate_recovery_score(inputs, BASELINES, sleep, day=TODAY, now=NOW, result_id="a")
        assert first == second

    def test_missing_sleep_result_fails_loudly(self):
        with pytest.raises(InconsistentStateError):
            calculate_recovery_score(RecoveryInputs(), BASELINES, None, day=TODAY, now=NOW)

    def test_sleep_result_from_another_day_fails_loudly(self):
        with pytest.raises(InconsistentStateError):
            calculate_recovery_score(
                RecoveryInputs(hrv_ms=50.0), BASELINES,
                _sleep(70, day=TODAY - timedelta(days=1)), day=TODAY, now=NOW,
            )

    def test_no_sleep_rebalances_weights(self):
        inputs = RecoveryInputs(hrv_ms=53.0, rhr_bpm=55.0, respiratory_rate=14.0, tsb=0.0)
        result = calculate_recovery_score(
            inputs, BASELINES, no_sleep_result(TODAY, NOW), day=TODAY, now=NOW
        )
        assert "sleep" not in result.sub_scores
        # 0.428*50 + 0.286*50 + 0.143*100 + 0.143*100
        assert result.value == 64
        assert result.status is ScoreStatus.LIMITED_DATA

    def test_nothing_recorded_is_no_data(self):
        result = calculate_recovery_score(
            RecoveryInputs(), BASELINES, no_sleep_result(TODAY, NOW), day=TODAY, now=NOW
        )
        assert result.status is ScoreStatus.NO_DATA
        assert result.band is ScoreBand.NO_DATA

    def test_insufficient_baseline_gives_neutral_sub_score(self):
        baselines = dict(BASELINES)
        baselines[Metric.HRV] = Baseline.insufficient(Metric.HRV, 30, TODAY, NOW, sample_count=2)
        result = calculate_recovery_score(
            RecoveryInputs(hrv_ms=20.0, rhr_bpm=55.0), baselines, _sleep(80), day=TODAY, now=NOW
        )
        assert result.sub_scores["hrv"] == 50.0

    def test_out_of_range_reading_is_dropped_with_warning(self):
        result = calculate_recovery_score(
            RecoveryInputs(hrv_ms=53.0, rhr_bpm=250.0), BASELINES, _sleep(80), day=TODAY, now=NOW
        )
        assert result.sub_scores["rhr"] == 50.0
        assert result.warnings
        assert "resting_heart_rate" in result.warnings[0]

    def test_scores_stay_in_range_for_extreme_inputs(self):
        for hrv, rhr in ((5.0, 100.0), (300.0, 30.0)):
            result = calculate_recovery_score(
                RecoveryInputs(hrv_ms=hrv, rhr_bpm=rhr, respiratory_rate=40.0, tsb=-200.0,
                               yesterday_tss=900.0),
                BASELINES, _sleep(0), day=TODAY, now=NOW,
            )
            assert 0 <= result.value <= 100
            assert result.band is recovery_band(result.value)


class TestSubScores:
    def test_hrv_above_baseline_scores_higher(self):
        baseline = BASELINES[Metric.HRV]
        assert hrv_score(60.0, baseline) > hrv_score(53.0, baseline) > hrv_score(45.0, baseline)

    def test_rhr_above_baseline_scores_lower(self):
        baseline = BASELINES[Metric.RHR]
        assert rhr_score(52.0, baseline) > rhr_score(55.0, baseline) > rhr_score(58.0, baseline)

    def test_elevated_breathing_penalized_more_than_suppressed(self):
        baseline = BASELINES[Metric.RESPIRATORY_RATE]
        assert respiratory_score(14.0, baseline) == 100.0
        assert respiratory_score(14.7, baseline) < respiratory_score(13.3, baseline)

    def test_missing_value_is_none(self):
        assert hrv_score(None, BASELINES[Metric.HRV]) is None
        assert rhr_score(55.0, None) is None

    def test_form_curve(self):
        assert form_score(None) is None
        assert form_score(10.0) == 100.0
        assert form_score(-10.0) == 80.0
        assert form_score(-30.0) == 40.0
        assert form_score(-50.0) == 10.0
        assert form_score(-100.0) == 0.0

    def test_yesterday_load_penalty(self):
        assert tss_penalty(None) == 0.0
        assert tss_penalty(40.0) == 0.0
        assert tss_penalty(75.0) == pytest.approx(5.0)
        assert tss_penalty(150.0) == pytest.approx(17.5)
        assert tss_penalty(500.0) == 40.0
        assert form_score(0.0, 150.0) == pytest.approx(82.5)
