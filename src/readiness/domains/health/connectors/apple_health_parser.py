"""Apple Health XML export parser.

Parses the ``export.xml`` file produced by Apple Health (iOS → Share → Export
Health Data) into ``SignalSample`` and ``WorkoutStream`` objects. Uses
iterparse so multi-gigabyte exports do not have to fit in memory.

HealthKit type mappings:
- HKQuantityTypeIdentifierHeartRateVariabilitySDNN → Metric.HRV
- HKQuantityTypeIdentifierRestingHeartRate → Metric.RHR
- HKQuantityTypeIdentifierRespiratoryRate → Metric.RESPIRATORY_RATE
- HKQuantityTypeIdentifierActiveEnergyBurned → Metric.ACTIVE_ENERGY
- HKCategoryTypeIdentifierSleepAnalysis → Metric.SLEEP_STAGE
- HKQuantityTypeIdentifierHeartRate → workout heart-rate streams
- Workout elements → WorkoutStream
"""

from __future__ import annotations

import bisect
import logging
import xml.etree.ElementTree as ET
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path

from readiness.domains.health.domain_logic.models import (
    METRIC_UNITS,
    Metric,
    SignalSample,
    SleepStage,
    WorkoutStream,
)

logger = logging.getLogger(__name__)

SOURCE = "apple_health"

_HR = "HKQuantityTypeIdentifierHeartRate"
_SLEEP = "HKCategoryTypeIdentifierSleepAnalysis"

_QUANTITY_METRICS = {
    "HKQuantityTypeIdentifierHeartRateVariabilitySDNN": Metric.HRV,
    "HKQuantityTypeIdentifierRestingHeartRate": Metric.RHR,
    "HKQuantityTypeIdentifierRespiratoryRate": Metric.RESPIRATORY_RATE,
    "HKQuantityTypeIdentifierActiveEnergyBurned": Metric.ACTIVE_ENERGY,
}

_SLEEP_VALUES = {
    "HKCategoryValueSleepAnalysisInBed": SleepStage.IN_BED,
    "HKCategoryValueSleepAnalysisAwake": SleepStage.AWAKE,
    "HKCategoryValueSleepAnalysisAsleep": SleepStage.ASLEEP,
    "HKCategoryValueSleepAnalysisAsleepUnspecified": SleepStage.ASLEEP,
    "HKCategoryValueSleepAnalysisAsleepCore": SleepStage.CORE,
    "HKCategoryValueSleepAnalysisAsleepDeep": SleepStage.DEEP,
    "HKCategoryValueSleepAnalysisAsleepREM": SleepStage.REM,
}

_KJ_PER_KCAL = 4.184


class AppleHealthParseError(Exception):
    """Raised when parsing Apple Health export XML fails."""


@dataclass
class AppleHealthExport:
    """Parsed content of one export file."""

    samples: dict[Metric, list[SignalSample]] = field(default_factory=dict)
    workouts: list[WorkoutStream] = field(default_factory=list)

    def sample_count(self) -> int:
        return sum(len(v) for v in self.samples.values())


def _parse_date(date_str: str) -> datetime:
    """Parse Apple Health date format: '2025-12-01 08:30:00 -0500'."""
    try:
        return datetime.strptime(date_str, "%Y-%m-%d %H:%M:%S %z")
    except ValueError:
        return datetime.fromisoformat(date_str)


def _quantity_value(metric: Metric, value: float, unit: str) -> float:
    if metric is Metric.ACTIVE_ENERGY and unit.lower() == "kj":
        return value / _KJ_PER_KCAL
    return value


def parse_apple_health_export(
    export_path: str | Path,
    since: date | None = None,
) -> AppleHealthExport:
    """Parse an Apple Health export.xml.

    Args:
        export_path: Path to the Apple Health export.xml file.
        since: Drop records that start before this day.

    Returns:
        Samples grouped by metric (each list ordered by timestamp) and
        workouts with heart-rate streams attached.

    Raises:
        AppleHealthParseError: If the file is missing or not valid XML.
    """
    path = Path(export_path)
    if not path.exists():
        raise AppleHealthParseError(f"Export file not found: {path}")

    samples: dict[Metric, list[SignalSample]] = defaultdict(list)
    heart_rate: list[tuple[datetime, float]] = []
    workout_spans: list[tuple[datetime, datetime, str]] = []
    skipped = 0

    try:
        for _event, elem in ET.iterparse(str(path), events=("end",)):
            tag = elem.tag
            if tag == "Record":
                try:
                    if not _handle_record(elem, since, samples, heart_rate):
                        skipped += 1
                except (ValueError, TypeError):
                    skipped += 1
                elem.clear()
            elif tag == "Workout":
                try:
                    start = _parse_date(elem.get("startDate", ""))
                    end = _parse_date(elem.get("endDate", ""))
                    if since is None or start.date() >= since:
                        activity = elem.get("workoutActivityType", "")
                        workout_spans.append((start, end, activity))
                except (ValueError, TypeError):
                    skipped += 1
                elem.clear()
    except ET.ParseError as exc:
        raise AppleHealthParseError(f"Invalid XML: {exc}") from exc

    for metric_samples in samples.values():
        metric_samples.sort(key=lambda s: s.timestamp)

    result = AppleHealthExport(
        samples=dict(samples),
        workouts=_attach_heart_rate(workout_spans, heart_rate),
    )
    logger.info(
        "Parsed Apple Health export: %d samples across %d metrics, %d workouts (%d records skipped)",
        result.sample_count(), len(result.samples), len(result.workouts), skipped,
    )
    return result


def _handle_record(
    elem: ET.Element,
    since: date | None,
    samples: dict[Metric, list[SignalSample]],
    heart_rate: list[tuple[datetime, float]],
) -> bool:
    """Convert one <Record>; return False when it is of no interest."""
    rec_type = elem.get("type", "")
    start_str = elem.get("startDate", "")
    if not start_str:
        return False
    start = _parse_date(start_str)
    if since is not None and start.date() < since:
        return True

    if rec_type in _QUANTITY_METRICS:
        metric = _QUANTITY_METRICS[rec_type]
        unit = elem.get("unit", "")
        value = _quantity_value(metric, float(elem.get("value", "")), unit)
        samples[metric].append(SignalSample(
            metric=metric,
            value=value,
            unit=METRIC_UNITS[metric],
            timestamp=start,
            source=SOURCE,
        ))
        return True

    if rec_type == _SLEEP:
        stage = _SLEEP_VALUES.get(elem.get("value", ""))
        end_str = elem.get("endDate", "")
        if stage is None or not end_str:
            return False
        samples[Metric.SLEEP_STAGE].append(SignalSample(
            metric=Metric.SLEEP_STAGE,
            value=float(stage.value),
            unit=METRIC_UNITS[Metric.SLEEP_STAGE],
            timestamp=start,
            source=SOURCE,
            end=_parse_date(end_str),
        ))
        return True

    if rec_type == _HR:
        heart_rate.append((start, float(elem.get("value", ""))))
        return True

    return False


def _attach_heart_rate(
    spans: list[tuple[datetime, datetime, str]],
    heart_rate: list[tuple[datetime, float]],
) -> list[WorkoutStream]:
    """Assign heart-rate readings that fall inside each workout window."""
    heart_rate.sort(key=lambda r: r[0])
    times = [t for t, _ in heart_rate]
    workouts: list[WorkoutStream] = []

    for start, end, activity in sorted(spans):
        lo = bisect.bisect_left(times, start)
        hi = bisect.bisect_right(times, end)
        stream = tuple(
            ((t - start).total_seconds(), bpm) for t, bpm in heart_rate[lo:hi]
        )
        workouts.append(WorkoutStream(
            start=start,
            duration_seconds=max(0.0, (end - start).total_seconds()),
            heart_rate=stream,
            source=f"{SOURCE}:{activity.replace('HKWorkoutActivityType', '').lower()}",
        ))
    return workouts
