"""Tunable scoring parameters.

``ScoringConfig`` is built from application settings (see
``readiness.core.config.settings.Settings.scoring_config``) and handed to the
coordinator and calculators. Defaults match the documented engine behavior.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal


@dataclass(frozen=True)
class AthleteProfile:
    """Per-athlete physiology used by the strain calculator."""

    ftp_watts: float | None = None
    max_heart_rate: float = 190.0
    resting_heart_rate: float = 60.0
    sex: Literal["male", "female", "unspecified"] = "unspecified"


@dataclass(frozen=True)
class IllnessThresholds:
    """Fractional deviations from baseline that flag a possible illness."""

    hrv_drop: float = 0.10
    hrv_spike: float = 1.00
    rhr_rise: float = 0.03
    sleep_drop: float = 0.15
    respiratory_change: float = 0.08
    activity_drop: float = 0.25
    # A crossed signal this many times past its threshold raises confidence.
    magnitude_multiplier: float = 2.0


@dataclass(frozen=True)
class WellnessThresholds:
    """Sustained-trend thresholds for wellness alerts."""

    rhr_elevated: float = 0.15
    hrv_depressed: float = 0.20
    respiratory_elevated: float = 0.20
    min_consecutive_days: int = 2
    long_trend_days: int = 4
    good_recovery_override: int = 75


@dataclass(frozen=True)
class ScoringConfig:
    baseline_window_days: int = 30
    baseline_min_samples: int = 3
    fetch_timeout_seconds: float = 8.0
    default_sleep_need_hours: float = 8.0
    training_history_days: int = 90
    anomaly_window_days: int = 7
    anomaly_min_signals: int = 1
    profile: AthleteProfile = field(default_factory=AthleteProfile)
    illness: IllnessThresholds = field(default_factory=IllnessThresholds)
    wellness: WellnessThresholds = field(default_factory=WellnessThresholds)
