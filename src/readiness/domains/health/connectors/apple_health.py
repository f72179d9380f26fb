"""Apple Health signal provider — reads from exported Health data XML.

Users export via iOS Health app → Share → Export Health Data → produces
export.xml. This provider parses that XML once and serves day-range queries
from the parsed result.
"""

from __future__ import annotations

import logging
from datetime import date
from pathlib import Path

from readiness.domains.health.connectors.apple_health_parser import (
    AppleHealthExport,
    AppleHealthParseError,
    parse_apple_health_export,
)
from readiness.domains.health.domain_logic.models import Metric, SignalSample, WorkoutStream

logger = logging.getLogger(__name__)


class AppleHealthSignalProvider:
    """SignalProvider backed by an Apple Health XML export.

    Usage::

        provider = AppleHealthSignalProvider("/path/to/export.xml")
        if provider.is_connected():
            hrv = await provider.get_samples(Metric.HRV, start, end)
    """

    def __init__(self, export_path: str, *, since: date | None = None) -> None:
        self._export_path = export_path
        self._since = since
        self._parsed: AppleHealthExport | None = None
        self._connected = bool(export_path) and Path(export_path).exists()

    async def get_samples(self, metric: Metric, start: date, end: date) -> list[SignalSample]:
        parsed = self._parse()
        return [s for s in parsed.samples.get(metric, []) if start <= s.day <= end]

    async def get_workouts(self, start: date, end: date) -> list[WorkoutStream]:
        parsed = self._parse()
        return [w for w in parsed.workouts if start <= w.day <= end]

    def is_connected(self) -> bool:
        """Check if the export file exists and is readable."""
        return self._connected

    @property
    def data_source(self) -> str:
        return "apple_health"

    def _parse(self) -> AppleHealthExport:
        """Parse the export on first use; a broken export yields no data."""
        if self._parsed is None:
            try:
                self._parsed = parse_apple_health_export(self._export_path, self._since)
            except AppleHealthParseError:
                logger.exception("Failed to parse Apple Health export")
                self._connected = False
                self._parsed = AppleHealthExport()
        return self._parsed
