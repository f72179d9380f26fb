"""Training load: daily stress, TRIMP estimates and CTL/ATL/TSB.

Daily training stress comes from pre-aggregated external values (TSS) when
the activity source provides them, otherwise from a Banister TRIMP estimate
over the day's workout heart-rate streams, blended with power when an FTP is
known. Chronic (42-day) and acute (7-day) load are exponentially weighted
averages with ``alpha = 2 / (N + 1)``; their difference is the training
stress balance (TSB, "form").
"""

from __future__ import annotations

import bisect
import logging
import math
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, timedelta

from readiness.domains.health.domain_logic.config import AthleteProfile
from readiness.domains.health.domain_logic.models import WorkoutStream
from readiness.domains.health.domain_logic.validation import in_range

logger = logging.getLogger(__name__)

CTL_DAYS = 42
ATL_DAYS = 7

# First-two-weeks seeding of the averages from the mean daily load.
SEED_DAYS = 14
CTL_SEED_FACTOR = 0.7
ATL_SEED_FACTOR = 0.4

SEX_FACTORS = {"male": 1.92, "female": 1.67, "unspecified": 1.85}

HR_WEIGHT = 0.6
POWER_WEIGHT = 0.4

# Gaps longer than this between heart-rate samples are not integrated.
MAX_SAMPLE_GAP_SECONDS = 300.0
TRAILING_SAMPLE_SECONDS = 60.0


def ewa_alpha(days: int) -> float:
    return 2.0 / (days + 1)


@dataclass(frozen=True)
class TrainingLoad:
    ctl: float
    atl: float
    days_of_history: int

    @property
    def tsb(self) -> float:
        return self.ctl - self.atl


def compute_training_load(daily_stress: dict[date, float], through: date) -> TrainingLoad | None:
    """Run the CTL/ATL averages from the first recorded day through ``through``.

    Days without a value count as zero load. Returns ``None`` when no stress
    was ever recorded on or before ``through``.
    """
    days = sorted(d for d in daily_stress if d <= through)
    if not days:
        return None

    first = days[0]
    seed_values = [
        daily_stress.get(first + timedelta(days=i), 0.0) for i in range(SEED_DAYS)
        if first + timedelta(days=i) <= through
    ]
    seed = sum(seed_values) / len(seed_values)
    ctl = seed * CTL_SEED_FACTOR
    atl = seed * ATL_SEED_FACTOR

    a_ctl = ewa_alpha(CTL_DAYS)
    a_atl = ewa_alpha(ATL_DAYS)
    day = first
    count = 0
    while day <= through:
        load = daily_stress.get(day, 0.0)
        ctl += a_ctl * (load - ctl)
        atl += a_atl * (load - atl)
        count += 1
        day += timedelta(days=1)

    return TrainingLoad(ctl=ctl, atl=atl, days_of_history=count)


def heart_rate_reserve(hr: float, profile: AthleteProfile) -> float:
    span = profile.max_heart_rate - profile.resting_heart_rate
    if span <= 0:
        return 0.0
    return max(0.0, min(1.0, (hr - profile.resting_heart_rate) / span))


def _nearest_power(power: tuple[tuple[float, float], ...], times: list[float], t: float) -> float | None:
    if not power:
        return None
    i = bisect.bisect_left(times, t)
    candidates = [j for j in (i - 1, i) if 0 <= j < len(power)]
    best = min(candidates, key=lambda j: abs(times[j] - t))
    if abs(times[best] - t) > MAX_SAMPLE_GAP_SECONDS:
        return None
    return power[best][1]


def workout_trimp(workout: WorkoutStream, profile: AthleteProfile) -> float:
    """Banister TRIMP for one workout.

    Each heart-rate sample contributes ``minutes * x * 0.64 * e^(k * x)`` where
    ``x`` is the heart-rate reserve fraction and ``k`` the sex factor. When
    power and an FTP are available, ``x`` blends 60% heart rate with 40%
    power / FTP. Heart-rate and power samples outside physiological range
    are ignored.
    """
    stream = sorted(s for s in workout.heart_rate if in_range("heart_rate", s[1]))
    power = tuple(sorted(s for s in workout.power if in_range("power_watts", s[1])))
    dropped = len(workout.heart_rate) - len(stream) + len(workout.power) - len(power)
    if dropped:
        logger.warning(
            "Ignoring %d out-of-range stream samples in workout on %s", dropped, workout.day
        )
    if not stream:
        return 0.0

    k = SEX_FACTORS.get(profile.sex, SEX_FACTORS["unspecified"])
    ftp = profile.ftp_watts
    power_times = [t for t, _ in power]

    total = 0.0
    for i, (t, hr) in enumerate(stream):
        if i + 1 < len(stream):
            dt = stream[i + 1][0] - t
            if dt > MAX_SAMPLE_GAP_SECONDS:
                continue
        else:
            dt = min(TRAILING_SAMPLE_SECONDS, max(0.0, workout.duration_seconds - t))
        if dt <= 0:
            continue

        x = heart_rate_reserve(hr, profile)
        if ftp:
            watts = _nearest_power(power, power_times, t)
            if watts is not None:
                x = HR_WEIGHT * x + POWER_WEIGHT * min(1.5, watts / ftp)
        total += (dt / 60.0) * x * 0.64 * math.exp(k * x)
    return total


def daily_training_stress(
    external: dict[date, float],
    workouts: Iterable[WorkoutStream],
    profile: AthleteProfile,
) -> dict[date, tuple[float, str]]:
    """Merge external daily stress with TRIMP estimates.

    External values win for any day that has one; TRIMP fills the rest.

    Returns:
        ``{day: (stress, source)}`` with source ``"training_stress"`` or ``"trimp"``.
    """
    trimp: dict[date, float] = defaultdict(float)
    for workout in workouts:
        trimp[workout.day] += workout_trimp(workout, profile)

    merged: dict[date, tuple[float, str]] = {
        day: (value, "trimp") for day, value in trimp.items() if value > 0
    }
    for day, value in external.items():
        merged[day] = (value, "training_stress")
    return merged
