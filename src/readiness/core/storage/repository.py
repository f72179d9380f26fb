"""Signal repository — CRUD operations for the signal bank.

The repository mediates between domain objects (SignalSample, ScoreResult,
Baseline, ...) and the SQLite database, using FieldEncryptor for payloads
that are never queried column-wise.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from datetime import date, datetime, timedelta, timezone
from typing import Any

from readiness.core.storage.database import SignalDatabase
from readiness.core.storage.encryption import EncryptionError, FieldEncryptor
from readiness.core.storage.models import DataSource
from readiness.domains.health.domain_logic.models import (
    Baseline,
    Metric,
    ScoreKind,
    ScoreResult,
    SignalSample,
    WorkoutStream,
)

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Raised when repository operations fail."""


class SignalRepository:
    """CRUD repository for samples, workouts, score history and baselines.

    Scores and baselines are keyed by ``(user_id, kind, day)``.

    Usage::

        db = SignalDatabase(":memory:")
        db.initialize()
        repo = SignalRepository(db, FieldEncryptor(key), user_id="me")

        repo.append_samples(samples)
        hrv = repo.get_samples(Metric.HRV, start, end)
        history = repo.get_score_history(ScoreKind.RECOVERY, limit=30)
    """

    def __init__(
        self,
        database: SignalDatabase,
        encryptor: FieldEncryptor,
        *,
        user_id: str = "default",
    ) -> None:
        self._db = database
        self._enc = encryptor
        self._user_id = user_id

    @property
    def database(self) -> SignalDatabase:
        return self._db

    @property
    def encryptor(self) -> FieldEncryptor:
        return self._enc

    @property
    def user_id(self) -> str:
        return self._user_id

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    @staticmethod
    def _now_iso() -> str:
        return datetime.now(timezone.utc).isoformat()

    # ------------------------------------------------------------------
    # Signal samples
    # ------------------------------------------------------------------

    def append_samples(self, samples: Iterable[SignalSample]) -> int:
        """Store samples, superseding any earlier sample for the same instant.

        Returns:
            Number of samples written.
        """
        conn = self._db.connection
        count = 0
        for sample in samples:
            conn.execute(
                """INSERT OR REPLACE INTO signal_samples
                   (id, metric, value, unit, day, timestamp, end_timestamp, source)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    self._new_id(),
                    sample.metric.value,
                    sample.value,
                    sample.unit,
                    sample.day.isoformat(),
                    sample.timestamp.isoformat(),
                    sample.end.isoformat() if sample.end else None,
                    sample.source,
                ),
            )
            count += 1
        conn.commit()
        if count:
            logger.info("Stored %d signal samples", count)
        return count

    def get_samples(self, metric: Metric, start: date, end: date) -> list[SignalSample]:
        """Return samples for ``metric`` recorded on days ``start..end`` inclusive.

        Samples are ordered by timestamp, oldest first.
        """
        rows = self._db.connection.execute(
            """SELECT metric, value, unit, timestamp, end_timestamp, source
               FROM signal_samples
               WHERE metric = ? AND day >= ? AND day <= ?
               ORDER BY timestamp ASC""",
            (metric.value, start.isoformat(), end.isoformat()),
        ).fetchall()
        return [
            SignalSample(
                metric=Metric(row["metric"]),
                value=row["value"],
                unit=row["unit"],
                timestamp=datetime.fromisoformat(row["timestamp"]),
                source=row["source"],
                end=datetime.fromisoformat(row["end_timestamp"]) if row["end_timestamp"] else None,
            )
            for row in rows
        ]

    def count_samples(self, metric: Metric | None = None) -> int:
        query = "SELECT COUNT(*) FROM signal_samples"
        params: tuple[Any, ...] = ()
        if metric is not None:
            query += " WHERE metric = ?"
            params = (metric.value,)
        return self._db.connection.execute(query, params).fetchone()[0]

    def latest_sample_day(self, metric: Metric | None = None) -> date | None:
        query = "SELECT MAX(day) FROM signal_samples"
        params: tuple[Any, ...] = ()
        if metric is not None:
            query += " WHERE metric = ?"
            params = (metric.value,)
        row = self._db.connection.execute(query, params).fetchone()
        return date.fromisoformat(row[0]) if row[0] else None

    # ------------------------------------------------------------------
    # Workouts
    # ------------------------------------------------------------------

    def save_workout(self, workout: WorkoutStream) -> str:
        """Persist a workout with its encrypted HR/power stream."""
        conn = self._db.connection
        wid = self._new_id()
        conn.execute(
            """INSERT OR REPLACE INTO workouts
               (id, day, start, duration_seconds, source, stream_enc)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                wid,
                workout.day.isoformat(),
                workout.start.isoformat(),
                workout.duration_seconds,
                workout.source,
                self._enc.encrypt(workout.to_dict()),
            ),
        )
        conn.commit()
        return wid

    def get_workouts(self, start: date, end: date) -> list[WorkoutStream]:
        rows = self._db.connection.execute(
            """SELECT stream_enc FROM workouts
               WHERE day >= ? AND day <= ?
               ORDER BY start ASC""",
            (start.isoformat(), end.isoformat()),
        ).fetchall()
        return [WorkoutStream.from_dict(self._enc.decrypt(row["stream_enc"])) for row in rows]

    # ------------------------------------------------------------------
    # Score history
    # ------------------------------------------------------------------

    def save_score(self, result: ScoreResult) -> str:
        """Append a score result. Earlier rows for the same day are kept."""
        conn = self._db.connection
        computed_at = result.computed_at.isoformat() if result.computed_at else self._now_iso()
        conn.execute(
            """INSERT OR REPLACE INTO score_results
               (id, user_id, kind, day, value, band, status, computed_at, payload_enc)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                result.id,
                self._user_id,
                result.kind.value,
                result.day.isoformat(),
                result.value,
                result.band.value,
                result.status.value,
                computed_at,
                self._enc.encrypt(result.to_dict()),
            ),
        )
        conn.commit()
        logger.debug("Saved %s score %s for %s", result.kind.value, result.id, result.day)
        return result.id

    def get_score_history(
        self,
        kind: ScoreKind,
        *,
        start: date | None = None,
        end: date | None = None,
        limit: int = 90,
    ) -> list[ScoreResult]:
        """Return the latest result per day for ``kind``, newest day first."""
        conditions = ["user_id = ?", "kind = ?"]
        params: list[Any] = [self._user_id, kind.value]
        if start is not None:
            conditions.append("day >= ?")
            params.append(start.isoformat())
        if end is not None:
            conditions.append("day <= ?")
            params.append(end.isoformat())

        rows = self._db.connection.execute(
            f"""SELECT day, payload_enc FROM score_results
                WHERE {" AND ".join(conditions)}
                ORDER BY day DESC, computed_at DESC""",
            params,
        ).fetchall()

        results: list[ScoreResult] = []
        seen_days: set[str] = set()
        for row in rows:
            if row["day"] in seen_days:
                continue  # superseded
            seen_days.add(row["day"])
            try:
                results.append(ScoreResult.from_dict(self._enc.decrypt(row["payload_enc"])))
            except EncryptionError as exc:
                raise RepositoryError(f"Unreadable {kind.value} score row: {exc}") from exc
            if len(results) >= limit:
                break
        return results

    def get_latest_score(self, kind: ScoreKind, day: date) -> ScoreResult | None:
        history = self.get_score_history(kind, start=day, end=day, limit=1)
        return history[0] if history else None

    # ------------------------------------------------------------------
    # Baselines
    # ------------------------------------------------------------------

    def save_baseline(self, baseline: Baseline) -> None:
        conn = self._db.connection
        conn.execute(
            """INSERT INTO baselines
               (id, user_id, metric, window_days, as_of, mean, std_dev,
                sample_count, insufficient_data, computed_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(user_id, metric, window_days, as_of) DO UPDATE SET
                   mean = excluded.mean,
                   std_dev = excluded.std_dev,
                   sample_count = excluded.sample_count,
                   insufficient_data = excluded.insufficient_data,
                   computed_at = excluded.computed_at""",
            (
                self._new_id(),
                self._user_id,
                baseline.metric.value,
                baseline.window_days,
                baseline.as_of.isoformat(),
                baseline.mean,
                baseline.std_dev,
                baseline.sample_count,
                int(baseline.insufficient_data),
                baseline.computed_at.isoformat(),
            ),
        )
        conn.commit()

    def get_baseline(self, metric: Metric, window_days: int, as_of: date) -> Baseline | None:
        row = self._db.connection.execute(
            """SELECT * FROM baselines
               WHERE user_id = ? AND metric = ? AND window_days = ? AND as_of = ?""",
            (self._user_id, metric.value, window_days, as_of.isoformat()),
        ).fetchone()
        if row is None:
            return None
        return Baseline(
            metric=Metric(row["metric"]),
            window_days=row["window_days"],
            mean=row["mean"],
            std_dev=row["std_dev"],
            sample_count=row["sample_count"],
            computed_at=datetime.fromisoformat(row["computed_at"]),
            as_of=date.fromisoformat(row["as_of"]),
            insufficient_data=bool(row["insufficient_data"]),
        )

    # ------------------------------------------------------------------
    # Anomaly dismissals
    # ------------------------------------------------------------------

    def save_dismissal(self, event_id: str, until: date) -> None:
        conn = self._db.connection
        conn.execute(
            """INSERT INTO anomaly_dismissals (event_id, user_id, dismissed_until, dismissed_at)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(event_id, user_id) DO UPDATE SET
                   dismissed_until = excluded.dismissed_until,
                   dismissed_at = excluded.dismissed_at""",
            (event_id, self._user_id, until.isoformat(), self._now_iso()),
        )
        conn.commit()
        logger.info("Anomaly %s dismissed until %s", event_id, until)

    def get_dismissals(self) -> dict[str, date]:
        rows = self._db.connection.execute(
            "SELECT event_id, dismissed_until FROM anomaly_dismissals WHERE user_id = ?",
            (self._user_id,),
        ).fetchall()
        return {row["event_id"]: date.fromisoformat(row["dismissed_until"]) for row in rows}

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def purge_before(self, before: date) -> int:
        """Delete samples and workouts recorded before ``before``.

        Score history and baselines are kept.

        Returns:
            Number of sample rows deleted.
        """
        conn = self._db.connection
        cursor = conn.execute("DELETE FROM signal_samples WHERE day < ?", (before.isoformat(),))
        conn.execute("DELETE FROM workouts WHERE day < ?", (before.isoformat(),))
        conn.commit()
        logger.info("Purged %d samples older than %s", cursor.rowcount, before)
        return cursor.rowcount

    def purge_before_days(self, days: int) -> int:
        """Convenience wrapper around :meth:`purge_before`."""
        return self.purge_before(datetime.now(timezone.utc).date() - timedelta(days=days))

    # ------------------------------------------------------------------
    # Data sources
    # ------------------------------------------------------------------

    def record_sync(self, source_type: str, display_name: str) -> None:
        """Insert or update a data source and stamp its last sync time."""
        now = self._now_iso()
        conn = self._db.connection
        conn.execute(
            """INSERT INTO data_sources (id, source_type, display_name, connected_at, last_sync, is_active)
               VALUES (?, ?, ?, ?, ?, 1)
               ON CONFLICT(source_type) DO UPDATE SET
                   display_name = excluded.display_name,
                   last_sync = excluded.last_sync,
                   is_active = 1""",
            (self._new_id(), source_type, display_name, now, now),
        )
        conn.commit()

    def get_data_sources(self, *, active_only: bool = True) -> list[DataSource]:
        """List registered data sources."""
        query = "SELECT * FROM data_sources"
        if active_only:
            query += " WHERE is_active = 1"
        rows = self._db.connection.execute(query).fetchall()
        return [
            DataSource(
                id=row["id"],
                source_type=row["source_type"],
                display_name=row["display_name"],
                connected_at=row["connected_at"],
                last_sync=row["last_sync"],
                is_active=bool(row["is_active"]),
            )
            for row in rows
        ]
