"""Strain score calculator.

Today's load (external TSS, or TRIMP from workout streams, plus a small
capped contribution from non-exercise active energy) is converted to an
EPOC-like quantity and log-compressed onto 0-100:

    epoc   = 0.25 * load ** 1.1
    strain = 100 * ln(epoc + 1) / ln(EPOC_MAX + 1)

which is the familiar 0-18 strain scale multiplied by 100/18. Bands use the
0-18 cut points 6 / 11 / 16.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from readiness.domains.health.domain_logic.config import AthleteProfile
from readiness.domains.health.domain_logic.models import (
    ScoreBand,
    ScoreKind,
    ScoreResult,
    ScoreStatus,
    WorkoutStream,
    clamp_score,
    new_result_id,
    strain_band,
)
from readiness.domains.health.domain_logic.training_load import (
    compute_training_load,
    daily_training_stress,
)
from readiness.domains.health.domain_logic.validation import validate_measurement, validate_profile

EPOC_MAX = 1200.0

# kcal of non-exercise active energy per unit of load, and the cap on it
NEAT_KCAL_PER_LOAD = 50.0
NEAT_MAX_LOAD = 20.0


@dataclass(frozen=True)
class StrainInputs:
    """Everything the strain calculator reads for one day.

    ``external_stress`` and ``workouts`` cover the training history window
    (including today) so chronic and acute load can be derived.
    """

    external_stress: dict[date, float]
    workouts: tuple[WorkoutStream, ...] = ()
    active_energy_kcal: float | None = None


def strain_from_load(load: float) -> float:
    """Map a daily load to the 0-100 strain scale."""
    if load <= 0:
        return 0.0
    epoc = 0.25 * load ** 1.1
    return 100.0 * math.log(epoc + 1.0) / math.log(EPOC_MAX + 1.0)


def non_exercise_load(active_energy_kcal: float | None) -> float:
    if not active_energy_kcal or active_energy_kcal <= 0:
        return 0.0
    return min(NEAT_MAX_LOAD, active_energy_kcal / NEAT_KCAL_PER_LOAD)


def calculate_strain_score(
    inputs: StrainInputs,
    profile: AthleteProfile,
    *,
    day: date,
    now: datetime,
    result_id: str | None = None,
) -> ScoreResult:
    """Score today's strain and report chronic/acute load alongside it."""
    profile, failures = validate_profile(profile)
    warnings = [f.describe() for f in failures]

    external: dict[date, float] = {}
    for d, value in inputs.external_stress.items():
        checked, failure = validate_measurement("training_stress", value)
        if failure:
            warnings.append(failure.describe())
        if checked is not None:
            external[d] = checked

    stress = daily_training_stress(external, inputs.workouts, profile)
    today_stress, source = stress.get(day, (0.0, "none"))
    neat = non_exercise_load(inputs.active_energy_kcal)

    today_workouts = [w for w in inputs.workouts if w.day == day]
    if source == "none" and not today_workouts and inputs.active_energy_kcal is None:
        return ScoreResult(
            id=result_id or new_result_id(),
            kind=ScoreKind.STRAIN,
            day=day,
            value=0,
            band=ScoreBand.NO_DATA,
            inputs_snapshot={"source": "none"},
            computed_at=now,
            status=ScoreStatus.NO_DATA,
            warnings=tuple(warnings),
        )

    history = {d: v for d, (v, _src) in stress.items()}
    load_today = compute_training_load(history, day)
    load_yesterday = compute_training_load(history, day - timedelta(days=1))

    value = clamp_score(strain_from_load(today_stress + neat))
    sub_scores = {
        "trainingStress": round(today_stress, 1),
        "nonExerciseLoad": round(neat, 1),
        "strain18": round(value * 18 / 100, 1),
    }
    if load_today is not None:
        sub_scores.update({
            "ctl": round(load_today.ctl, 1),
            "atl": round(load_today.atl, 1),
            "tsb": round(load_today.tsb, 1),
        })

    return ScoreResult(
        id=result_id or new_result_id(),
        kind=ScoreKind.STRAIN,
        day=day,
        value=value,
        band=strain_band(value),
        sub_scores=sub_scores,
        inputs_snapshot={
            "source": source,
            "workouts": len(today_workouts),
            "active_energy_kcal": inputs.active_energy_kcal,
            "history_days": load_today.days_of_history if load_today else 0,
            "form_tsb": round(load_yesterday.tsb, 1) if load_yesterday else None,
            "profile": {
                "ftp_watts": profile.ftp_watts,
                "max_heart_rate": profile.max_heart_rate,
                "resting_heart_rate": profile.resting_heart_rate,
                "sex": profile.sex,
            },
        },
        computed_at=now,
        status=ScoreStatus.LIMITED_DATA if warnings else ScoreStatus.OK,
        warnings=tuple(warnings),
    )
