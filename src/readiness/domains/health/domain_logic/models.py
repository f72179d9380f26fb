"""Domain models for signals, baselines, scores, anomalies and coordinator state.

Everything here is an immutable value object. Results are superseded by newer
results for the same day, never mutated; the only mutable aggregate in the
engine is the ``ScoresCoordinator`` that publishes ``CalculationState``
snapshots built from these types.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Signals
# ---------------------------------------------------------------------------

class Metric(str, Enum):
    """Physiological and training signal kinds recorded per day."""

    HRV = "hrv"
    RHR = "rhr"
    RESPIRATORY_RATE = "respiratory_rate"
    SLEEP_STAGE = "sleep_stage"
    ACTIVE_ENERGY = "active_energy"
    TRAINING_STRESS = "training_stress"


class SleepStage(int, Enum):
    """Codes stored in ``SignalSample.value`` for ``Metric.SLEEP_STAGE`` samples."""

    IN_BED = 0
    AWAKE = 1
    ASLEEP = 2  # asleep, stage unspecified
    CORE = 3
    DEEP = 4
    REM = 5


METRIC_UNITS = {
    Metric.HRV: "ms",
    Metric.RHR: "bpm",
    Metric.RESPIRATORY_RATE: "breaths/min",
    Metric.SLEEP_STAGE: "stage",
    Metric.ACTIVE_ENERGY: "kcal",
    Metric.TRAINING_STRESS: "tss",
}


@dataclass(frozen=True)
class SignalSample:
    """A single recorded measurement.

    Interval measurements (sleep stages) carry an ``end``; point measurements
    leave it ``None``.
    """

    metric: Metric
    value: float
    unit: str
    timestamp: datetime
    source: str
    end: datetime | None = None

    @property
    def duration_seconds(self) -> float:
        if self.end is None:
            return 0.0
        return max(0.0, (self.end - self.timestamp).total_seconds())

    @property
    def day(self) -> date:
        return self.timestamp.date()

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric": self.metric.value,
            "value": self.value,
            "unit": self.unit,
            "timestamp": self.timestamp.isoformat(),
            "source": self.source,
            "end": self.end.isoformat() if self.end else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SignalSample:
        end = data.get("end")
        return cls(
            metric=Metric(data["metric"]),
            value=float(data["value"]),
            unit=data.get("unit", ""),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            source=data.get("source", ""),
            end=datetime.fromisoformat(end) if end else None,
        )


@dataclass(frozen=True)
class WorkoutStream:
    """Heart-rate (and optional power) samples recorded during one workout.

    ``heart_rate`` and ``power`` are ``(seconds_from_start, value)`` pairs.
    """

    start: datetime
    duration_seconds: float
    heart_rate: tuple[tuple[float, float], ...] = ()
    power: tuple[tuple[float, float], ...] = ()
    source: str = ""

    @property
    def day(self) -> date:
        return self.start.date()

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": self.start.isoformat(),
            "duration_seconds": self.duration_seconds,
            "heart_rate": [list(p) for p in self.heart_rate],
            "power": [list(p) for p in self.power],
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkoutStream:
        return cls(
            start=datetime.fromisoformat(data["start"]),
            duration_seconds=float(data.get("duration_seconds", 0.0)),
            heart_rate=tuple((float(t), float(v)) for t, v in data.get("heart_rate", [])),
            power=tuple((float(t), float(v)) for t, v in data.get("power", [])),
            source=data.get("source", ""),
        )


# ---------------------------------------------------------------------------
# Baselines
# ---------------------------------------------------------------------------

BASELINE_WINDOWS = (7, 30)


@dataclass(frozen=True)
class Baseline:
    """Rolling personal baseline for one metric over a trailing window.

    ``insufficient_data`` is a valid state: calculators read it and fall back
    to neutral sub-scores instead of treating it as an error.
    """

    metric: Metric
    window_days: int
    mean: float
    std_dev: float
    sample_count: int
    computed_at: datetime
    as_of: date
    insufficient_data: bool = False

    @property
    def coefficient_of_variation(self) -> float | None:
        if self.insufficient_data or self.mean <= 0 or self.std_dev <= 0:
            return None
        return self.std_dev / self.mean

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric": self.metric.value,
            "window_days": self.window_days,
            "mean": self.mean,
            "std_dev": self.std_dev,
            "sample_count": self.sample_count,
            "computed_at": self.computed_at.isoformat(),
            "as_of": self.as_of.isoformat(),
            "insufficient_data": self.insufficient_data,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Baseline:
        return cls(
            metric=Metric(data["metric"]),
            window_days=int(data["window_days"]),
            mean=float(data["mean"]),
            std_dev=float(data["std_dev"]),
            sample_count=int(data["sample_count"]),
            computed_at=datetime.fromisoformat(data["computed_at"]),
            as_of=date.fromisoformat(data["as_of"]),
            insufficient_data=bool(data.get("insufficient_data", False)),
        )

    @classmethod
    def insufficient(
        cls, metric: Metric, window_days: int, as_of: date, computed_at: datetime,
        *, sample_count: int = 0,
    ) -> Baseline:
        """Build an explicit insufficient-data baseline."""
        return cls(
            metric=metric,
            window_days=window_days,
            mean=0.0,
            std_dev=0.0,
            sample_count=sample_count,
            computed_at=computed_at,
            as_of=as_of,
            insufficient_data=True,
        )


# ---------------------------------------------------------------------------
# Scores
# ---------------------------------------------------------------------------

class ScoreKind(str, Enum):
    RECOVERY = "recovery"
    SLEEP = "sleep"
    STRAIN = "strain"


class ScoreStatus(str, Enum):
    """How complete the inputs behind a score were."""

    OK = "ok"
    LIMITED_DATA = "limited_data"
    NO_DATA = "no_data"


class ScoreBand(str, Enum):
    # Recovery
    OPTIMAL = "optimal"
    MODERATE = "moderate"
    LIMITED = "limited"
    # Sleep
    SLEEP_OPTIMAL = "sleep_optimal"
    SLEEP_GOOD = "sleep_good"
    SLEEP_FAIR = "sleep_fair"
    SLEEP_PAY_ATTENTION = "sleep_pay_attention"
    # Strain
    LIGHT = "light"
    STRAIN_MODERATE = "strain_moderate"
    HARD = "hard"
    VERY_HARD = "very_hard"
    # Any kind without data
    NO_DATA = "no_data"


BAND_COLORS = {
    ScoreBand.OPTIMAL: "green",
    ScoreBand.MODERATE: "yellow",
    ScoreBand.LIMITED: "red",
}


def recovery_band(score: int) -> ScoreBand:
    if score >= 66:
        return ScoreBand.OPTIMAL
    if score >= 34:
        return ScoreBand.MODERATE
    return ScoreBand.LIMITED


def sleep_band(score: int) -> ScoreBand:
    if score >= 80:
        return ScoreBand.SLEEP_OPTIMAL
    if score >= 60:
        return ScoreBand.SLEEP_GOOD
    if score >= 40:
        return ScoreBand.SLEEP_FAIR
    return ScoreBand.SLEEP_PAY_ATTENTION


def strain_band(score: int) -> ScoreBand:
    # Cut points correspond to 6 / 11 / 16 on the 0-18 strain scale.
    if score >= 89:
        return ScoreBand.VERY_HARD
    if score >= 61:
        return ScoreBand.HARD
    if score >= 33:
        return ScoreBand.STRAIN_MODERATE
    return ScoreBand.LIGHT


def new_result_id() -> str:
    return str(uuid.uuid4())


def clamp_score(value: float) -> int:
    """Clamp a raw weighted score to an integer in [0, 100]."""
    if value != value:  # NaN
        return 0
    return int(round(max(0.0, min(100.0, value))))


@dataclass(frozen=True)
class ScoreResult:
    """One calculated score for one day.

    ``inputs_snapshot`` records what the calculator saw. For Recovery it holds
    a ``"sleep"`` entry pointing at the Sleep result that was passed in.
    """

    id: str
    kind: ScoreKind
    day: date
    value: int
    band: ScoreBand
    sub_scores: dict[str, float] = field(default_factory=dict)
    inputs_snapshot: dict[str, Any] = field(default_factory=dict)
    computed_at: datetime | None = None
    status: ScoreStatus = ScoreStatus.OK
    warnings: tuple[str, ...] = ()

    @property
    def has_data(self) -> bool:
        return self.status is not ScoreStatus.NO_DATA

    @property
    def color(self) -> str | None:
        return BAND_COLORS.get(self.band)

    def reference(self) -> dict[str, Any]:
        """Compact pointer used when another result depends on this one."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "day": self.day.isoformat(),
            "value": self.value,
            "status": self.status.value,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "day": self.day.isoformat(),
            "value": self.value,
            "band": self.band.value,
            "sub_scores": dict(self.sub_scores),
            "inputs_snapshot": dict(self.inputs_snapshot),
            "computed_at": self.computed_at.isoformat() if self.computed_at else None,
            "status": self.status.value,
            "warnings": list(self.warnings),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScoreResult:
        computed_at = data.get("computed_at")
        return cls(
            id=data["id"],
            kind=ScoreKind(data["kind"]),
            day=date.fromisoformat(data["day"]),
            value=int(data["value"]),
            band=ScoreBand(data["band"]),
            sub_scores={k: float(v) for k, v in data.get("sub_scores", {}).items()},
            inputs_snapshot=data.get("inputs_snapshot", {}),
            computed_at=datetime.fromisoformat(computed_at) if computed_at else None,
            status=ScoreStatus(data.get("status", ScoreStatus.OK.value)),
            warnings=tuple(data.get("warnings", [])),
        )


# ---------------------------------------------------------------------------
# Anomalies
# ---------------------------------------------------------------------------

class AnomalyKind(str, Enum):
    ILLNESS = "illness"
    WELLNESS = "wellness"


class Confidence(str, Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_ORDER.index(self)

    def escalate(self, steps: int = 1) -> Confidence:
        return _CONFIDENCE_ORDER[min(len(_CONFIDENCE_ORDER) - 1, self.rank + steps)]

    @classmethod
    def from_signal_count(cls, count: int) -> Confidence:
        if count >= 3:
            return cls.HIGH
        if count == 2:
            return cls.MODERATE
        return cls.LOW


_CONFIDENCE_ORDER = [Confidence.LOW, Confidence.MODERATE, Confidence.HIGH]


def anomaly_event_id(kind: AnomalyKind, first_detected: date) -> str:
    return f"{kind.value}:{first_detected.isoformat()}"


@dataclass(frozen=True)
class AnomalyEvent:
    """An illness or wellness alert derived from a multi-day signal window."""

    id: str
    kind: AnomalyKind
    confidence: Confidence
    triggered_signals: frozenset[Metric]
    first_detected: date
    dismissed_until: date | None = None
    deviations: dict[str, float] = field(default_factory=dict)
    recommendation: str = ""

    def is_active(self, today: date) -> bool:
        return self.dismissed_until is None or self.dismissed_until < today

    def dismissed(self, until: date) -> AnomalyEvent:
        return replace(self, dismissed_until=until)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "confidence": self.confidence.value,
            "triggered_signals": sorted(m.value for m in self.triggered_signals),
            "first_detected": self.first_detected.isoformat(),
            "dismissed_until": self.dismissed_until.isoformat() if self.dismissed_until else None,
            "deviations": dict(self.deviations),
            "recommendation": self.recommendation,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AnomalyEvent:
        until = data.get("dismissed_until")
        return cls(
            id=data["id"],
            kind=AnomalyKind(data["kind"]),
            confidence=Confidence(data["confidence"]),
            triggered_signals=frozenset(Metric(m) for m in data.get("triggered_signals", [])),
            first_detected=date.fromisoformat(data["first_detected"]),
            dismissed_until=date.fromisoformat(until) if until else None,
            deviations={k: float(v) for k, v in data.get("deviations", {}).items()},
            recommendation=data.get("recommendation", ""),
        )


# ---------------------------------------------------------------------------
# Coordinator state
# ---------------------------------------------------------------------------

class Phase(str, Enum):
    INITIAL = "initial"
    LOADING = "loading"
    READY = "ready"
    REFRESHING = "refreshing"
    ERROR = "error"


@dataclass(frozen=True)
class CalculationState:
    """Immutable snapshot published by the coordinator on every transition."""

    phase: Phase = Phase.INITIAL
    recovery: ScoreResult | None = None
    sleep: ScoreResult | None = None
    strain: ScoreResult | None = None
    anomalies: tuple[AnomalyEvent, ...] = ()
    last_error: str | None = None
    stale: bool = False
    updated_at: datetime | None = None

    @property
    def all_resolved(self) -> bool:
        return None not in (self.recovery, self.sleep, self.strain)

    @property
    def is_busy(self) -> bool:
        return self.phase in (Phase.LOADING, Phase.REFRESHING)

    def score(self, kind: ScoreKind) -> ScoreResult | None:
        return {
            ScoreKind.RECOVERY: self.recovery,
            ScoreKind.SLEEP: self.sleep,
            ScoreKind.STRAIN: self.strain,
        }[kind]

    def active_anomalies(self, today: date) -> list[AnomalyEvent]:
        return [e for e in self.anomalies if e.is_active(today)]

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "recovery": self.recovery.to_dict() if self.recovery else None,
            "sleep": self.sleep.to_dict() if self.sleep else None,
            "strain": self.strain.to_dict() if self.strain else None,
            "anomalies": [e.to_dict() for e in self.anomalies],
            "last_error": self.last_error,
            "stale": self.stale,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CalculationState:
        def _score(key: str) -> ScoreResult | None:
            raw = data.get(key)
            return ScoreResult.from_dict(raw) if raw else None

        updated_at = data.get("updated_at")
        return cls(
            phase=Phase(data.get("phase", Phase.INITIAL.value)),
            recovery=_score("recovery"),
            sleep=_score("sleep"),
            strain=_score("strain"),
            anomalies=tuple(AnomalyEvent.from_dict(e) for e in data.get("anomalies", [])),
            last_error=data.get("last_error"),
            stale=bool(data.get("stale", False)),
            updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
        )
