"""Physiological range checks for calculator inputs.

Athlete profile values outside range are replaced by documented defaults.
Daily measurements outside range are dropped, so the affected sub-score falls
back to neutral. Both cases log a warning and surface a ``ValidationFailure``.
Workout stream samples are filtered quietly with ``in_range``.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from readiness.domains.health.domain_logic.config import AthleteProfile
from readiness.domains.health.errors import ValidationFailure

logger = logging.getLogger(__name__)

# field -> (low, high, default)
PROFILE_RANGES: dict[str, tuple[float, float, float]] = {
    "ftp_watts": (50.0, 600.0, 200.0),
    "max_heart_rate": (100.0, 220.0, 190.0),
    "resting_heart_rate": (30.0, 100.0, 60.0),
}

# field -> (low, high)
MEASUREMENT_RANGES: dict[str, tuple[float, float]] = {
    "hrv_ms": (5.0, 300.0),
    "resting_heart_rate": (30.0, 100.0),
    "respiratory_rate": (6.0, 40.0),
    "training_stress": (0.0, 1000.0),
    "heart_rate": (25.0, 250.0),
    "power_watts": (0.0, 2500.0),
}


def validate_profile(profile: AthleteProfile) -> tuple[AthleteProfile, list[ValidationFailure]]:
    """Return a profile with every out-of-range field replaced by its default."""
    failures: list[ValidationFailure] = []
    updates: dict[str, float] = {}

    for name, (low, high, default) in PROFILE_RANGES.items():
        value = getattr(profile, name)
        if value is None:
            continue
        if value != value or not low <= value <= high:
            failure = ValidationFailure(name, value, default, (low, high))
            logger.warning("Invalid athlete profile value: %s", failure.describe())
            failures.append(failure)
            updates[name] = default

    if profile.max_heart_rate <= profile.resting_heart_rate and not updates:
        low, high, default = PROFILE_RANGES["max_heart_rate"]
        failure = ValidationFailure("max_heart_rate", profile.max_heart_rate, default, (low, high))
        logger.warning("Max HR not above resting HR: %s", failure.describe())
        failures.append(failure)
        updates["max_heart_rate"] = default

    if updates:
        profile = replace(profile, **updates)
    return profile, failures


def in_range(name: str, value: float) -> bool:
    """Quiet range check for high-rate stream samples."""
    low, high = MEASUREMENT_RANGES[name]
    return value == value and low <= value <= high


def validate_measurement(
    name: str, value: float | None
) -> tuple[float | None, ValidationFailure | None]:
    """Return ``(value, None)`` if in range, else ``(None, failure)``."""
    if value is None:
        return None, None
    low, high = MEASUREMENT_RANGES[name]
    if value != value or not low <= value <= high:
        failure = ValidationFailure(name, value, None, (low, high))
        logger.warning("Discarding out-of-range measurement: %s", failure.describe())
        return None, failure
    return value, None
