"""Tests for SignalRepository — CRUD with in-memory SQLite."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from helpers import TODAY, make_night, make_sample, steady_history
from readiness.core.storage.repository import RepositoryError, SignalRepository
from readiness.domains.health.domain_logic.models import (
    Baseline,
    Metric,
    ScoreBand,
    ScoreKind,
    ScoreResult,
    WorkoutStream,
)

NOW = datetime(2026, 1, 15, 9, tzinfo=timezone.utc)
YESTERDAY = TODAY - timedelta(days=1)


def _score(value: int, day=TODAY, *, kind=ScoreKind.RECOVERY, at=NOW, rid=None) -> ScoreResult:
    return ScoreResult(
        id=rid or f"{kind.value}-{day}-{value}",
        kind=kind,
        day=day,
        value=value,
        band=ScoreBand.MODERATE,
        computed_at=at,
    )


class TestSamples:
    def test_append_and_query_by_day(self, signal_repository):
        signal_repository.append_samples(steady_history(days=5))
        samples = signal_repository.get_samples(Metric.HRV, TODAY - timedelta(days=2), YESTERDAY)
        assert [s.day for s in samples] == [TODAY - timedelta(days=2), YESTERDAY]
        assert all(s.metric is Metric.HRV for s in samples)

    def test_interval_samples_keep_end(self, signal_repository):
        night = make_night(TODAY)
        signal_repository.append_samples(night)
        stored = signal_repository.get_samples(Metric.SLEEP_STAGE, YESTERDAY, TODAY)
        assert stored == sorted(night, key=lambda s: s.timestamp)

    def test_same_instant_and_source_supersedes(self, signal_repository):
        signal_repository.append_samples([make_sample(Metric.RHR, 55.0, TODAY)])
        signal_repository.append_samples([make_sample(Metric.RHR, 57.0, TODAY)])
        signal_repository.append_samples([make_sample(Metric.RHR, 60.0, TODAY, source="manual")])
        values = sorted(s.value for s in signal_repository.get_samples(Metric.RHR, TODAY, TODAY))
        assert values == [57.0, 60.0]

    def test_counts_and_latest_day(self, signal_repository):
        assert signal_repository.latest_sample_day() is None
        signal_repository.append_samples(steady_history(days=3))
        assert signal_repository.count_samples(Metric.HRV) == 3
        assert signal_repository.latest_sample_day(Metric.HRV) == YESTERDAY


class TestWorkouts:
    def test_round_trip(self, signal_repository):
        workout = WorkoutStream(
            start=NOW,
            duration_seconds=1800.0,
            heart_rate=((0.0, 120.0), (60.0, 140.0)),
            power=((0.0, 200.0),),
            source="test",
        )
        signal_repository.save_workout(workout)
        assert signal_repository.get_workouts(TODAY, TODAY) == [workout]
        assert signal_repository.get_workouts(YESTERDAY, YESTERDAY) == []

    def test_stream_is_encrypted(self, signal_repository, signal_db):
        signal_repository.save_workout(
            WorkoutStream(start=NOW, duration_seconds=60.0, heart_rate=((0.0, 123.0),))
        )
        raw = signal_db.connection.execute("SELECT stream_enc FROM workouts").fetchone()[0]
        assert not raw.startswith("{")
        assert "heart_rate" not in raw


class TestScoreHistory:
    def test_latest_result_per_day_newest_first(self, signal_repository):
        signal_repository.save_score(_score(40, YESTERDAY))
        signal_repository.save_score(_score(50, TODAY, at=NOW))
        signal_repository.save_score(_score(60, TODAY, at=NOW + timedelta(hours=1)))
        history = signal_repository.get_score_history(ScoreKind.RECOVERY)
        assert [r.value for r in history] == [60, 40]

    def test_range_and_limit(self, signal_repository):
        for i in range(5):
            signal_repository.save_score(_score(50 + i, TODAY - timedelta(days=i)))
        assert len(signal_repository.get_score_history(ScoreKind.RECOVERY, limit=2)) == 2
        ranged = signal_repository.get_score_history(
            ScoreKind.RECOVERY, start=TODAY - timedelta(days=3), end=YESTERDAY
        )
        assert [r.day for r in ranged] == [YESTERDAY, TODAY - timedelta(days=2), TODAY - timedelta(days=3)]

    def test_kinds_are_separate(self, signal_repository):
        signal_repository.save_score(_score(80, kind=ScoreKind.SLEEP))
        assert signal_repository.get_latest_score(ScoreKind.RECOVERY, TODAY) is None
        assert signal_repository.get_latest_score(ScoreKind.SLEEP, TODAY).value == 80

    def test_users_are_separate(self, signal_repository, signal_db, field_encryptor):
        signal_repository.save_score(_score(70))
        other = SignalRepository(signal_db, field_encryptor, user_id="someone-else")
        assert other.get_score_history(ScoreKind.RECOVERY) == []

    def test_payload_round_trip(self, signal_repository):
        result = replace(_score(70), sub_scores={"hrv": 55.0}, warnings=("rhr ignored",))
        signal_repository.save_score(result)
        assert signal_repository.get_latest_score(ScoreKind.RECOVERY, TODAY) == result

    def test_unreadable_row_raises(self, signal_repository, signal_db):
        from readiness.core.storage.encryption import FieldEncryptor

        signal_repository.save_score(_score(70))
        wrong = SignalRepository(signal_db, FieldEncryptor(FieldEncryptor.generate_key()), user_id="tester")
        with pytest.raises(RepositoryError):
            wrong.get_score_history(ScoreKind.RECOVERY)


class TestBaselines:
    def test_upsert(self, signal_repository):
        baseline = Baseline(
            metric=Metric.HRV, window_days=30, mean=60.0, std_dev=3.0,
            sample_count=28, computed_at=NOW, as_of=TODAY,
        )
        signal_repository.save_baseline(baseline)
        signal_repository.save_baseline(replace(baseline, mean=61.0))
        stored = signal_repository.get_baseline(Metric.HRV, 30, TODAY)
        assert stored == replace(baseline, mean=61.0)
        assert signal_repository.get_baseline(Metric.HRV, 7, TODAY) is None


class TestDismissals:
    def test_latest_dismissal_wins(self, signal_repository):
        signal_repository.save_dismissal("illness:2026-01-14", TODAY)
        signal_repository.save_dismissal("illness:2026-01-14", TODAY + timedelta(days=2))
        assert signal_repository.get_dismissals() == {"illness:2026-01-14": TODAY + timedelta(days=2)}


class TestRetention:
    def test_purge_keeps_scores(self, signal_repository):
        signal_repository.append_samples(steady_history(days=10))
        signal_repository.save_score(_score(50, TODAY - timedelta(days=9)))
        deleted = signal_repository.purge_before(TODAY - timedelta(days=5))
        assert deleted > 0
        assert signal_repository.get_samples(Metric.HRV, TODAY - timedelta(days=10), TODAY - timedelta(days=6)) == []
        assert len(signal_repository.get_samples(Metric.HRV, TODAY - timedelta(days=5), TODAY)) == 5
        assert len(signal_repository.get_score_history(ScoreKind.RECOVERY)) == 1


class TestDataSources:
    def test_record_sync_upserts(self, signal_repository):
        signal_repository.record_sync("mock", "Mock")
        signal_repository.record_sync("mock", "Mock Data")
        sources = signal_repository.get_data_sources()
        assert len(sources) == 1
        assert sources[0].display_name == "Mock Data"
        assert sources[0].last_sync is not None
