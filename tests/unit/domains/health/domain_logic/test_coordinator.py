"""Tests for ScoresCoordinator: ordering, state machine, caching and fallbacks."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from helpers import TODAY, FakeSignalStore, make_night, make_sample, steady_history
from readiness.core.cache.memory import MemoryCache
from readiness.core.cache.tiered import TieredCache
from readiness.domains.health.domain_logic.config import ScoringConfig
from readiness.domains.health.domain_logic.coordinator import Calculators, ScoresCoordinator
from readiness.domains.health.domain_logic.models import (
    AnomalyKind,
    Metric,
    Phase,
    ScoreBand,
    ScoreKind,
    ScoreStatus,
)
from readiness.domains.health.errors import InconsistentStateError


def _run(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _today_samples(*, hrv=60.0, rhr=55.0, resp=14.0, energy=500.0, tss=50.0):
    return [
        make_sample(Metric.HRV, hrv, TODAY, hour=6),
        make_sample(Metric.RHR, rhr, TODAY, hour=6),
        make_sample(Metric.RESPIRATORY_RATE, resp, TODAY, hour=6),
        make_sample(Metric.ACTIVE_ENERGY, energy, TODAY, hour=8),
        make_sample(Metric.TRAINING_STRESS, tss, TODAY, hour=8),
    ] + make_night(TODAY)


@pytest.fixture
def store() -> FakeSignalStore:
    return FakeSignalStore(steady_history() + _today_samples())


def _coordinator(store, clock, cache=None, **kwargs) -> ScoresCoordinator:
    return ScoresCoordinator(
        store,
        cache=cache or TieredCache(MemoryCache(), clock=clock),
        clock=clock,
        **kwargs,
    )


def _sample_calls(store: FakeSignalStore) -> int:
    return sum(1 for kind, _ in store.calls if kind in ("samples", "workouts"))


class TestCalculateAll:
    def test_first_run_publishes_loading_then_ready(self, store, clock):
        coordinator = _coordinator(store, clock)
        phases = []
        coordinator.subscribe(lambda s: phases.append(s.phase))

        state = _run(coordinator.calculate_all())

        assert phases == [Phase.LOADING, Phase.READY]
        assert state.phase is Phase.READY
        assert state.all_resolved
        assert not state.stale
        assert coordinator.state is state

    def test_second_run_is_refreshing(self, store, clock):
        coordinator = _coordinator(store, clock)
        phases = []

        async def scenario():
            await coordinator.calculate_all()
            coordinator.subscribe(lambda s: phases.append(s.phase))
            await coordinator.calculate_all()

        _run(scenario())
        assert phases == [Phase.REFRESHING, Phase.READY]

    def test_scores_from_steady_history(self, store, clock):
        state = _run(_coordinator(store, clock).calculate_all())
        assert state.sleep.band is ScoreBand.SLEEP_OPTIMAL
        assert state.recovery.band is ScoreBand.OPTIMAL
        assert state.strain.has_data
        assert state.anomalies == ()

    def test_recovery_uses_this_runs_sleep(self, store, clock):
        coordinator = _coordinator(store, clock)

        async def scenario():
            first = await coordinator.calculate_all()
            second = await coordinator.refresh()
            return first, second

        first, second = _run(scenario())
        assert first.recovery.inputs_snapshot["sleep"]["id"] == first.sleep.id
        assert second.sleep.id != first.sleep.id
        assert second.recovery.inputs_snapshot["sleep"]["id"] == second.sleep.id

    def test_refresh_overlapping_plain_run_reads_new_samples(self, store, clock):
        coordinator = _coordinator(store, clock)

        async def scenario():
            first = await coordinator.calculate_all()
            store.samples = [
                s for s in store.samples if not (s.metric is Metric.HRV and s.day == TODAY)
            ] + [make_sample(Metric.HRV, 40.0, TODAY, hour=6)]
            plain, refreshed = await asyncio.gather(
                coordinator.calculate_all(), coordinator.refresh()
            )
            standalone = await coordinator.refresh()
            return first, plain, refreshed, standalone

        first, plain, refreshed, standalone = _run(scenario())
        assert plain.recovery.value == first.recovery.value
        assert refreshed.recovery.value < first.recovery.value
        assert refreshed.recovery.value == standalone.recovery.value
        assert refreshed.phase is Phase.READY

    def test_missing_sleep_still_scores_recovery(self, clock):
        store = FakeSignalStore(steady_history() + _today_samples()[:5])
        state = _run(_coordinator(store, clock).calculate_all())
        assert state.phase is Phase.READY
        assert state.sleep.status is ScoreStatus.NO_DATA
        assert state.recovery.has_data
        assert state.recovery.status is ScoreStatus.LIMITED_DATA

    def test_cached_run_reads_nothing_from_store(self, store, clock):
        coordinator = _coordinator(store, clock)

        async def scenario():
            await coordinator.calculate_all()
            before = _sample_calls(store)
            await coordinator.calculate_all()
            return before

        before = _run(scenario())
        assert before > 0
        assert _sample_calls(store) == before

    def test_concurrent_calls_share_one_run(self, store, clock):
        single_store = FakeSignalStore(list(store.samples))
        _run(_coordinator(single_store, clock).calculate_all())

        coordinator = _coordinator(store, clock)

        async def scenario():
            return await asyncio.gather(coordinator.calculate_all(), coordinator.calculate_all())

        first, second = _run(scenario())
        assert first is second
        assert _sample_calls(store) == _sample_calls(single_store)

    def test_ready_is_never_published_unresolved(self, store, clock):
        coordinator = _coordinator(store, clock)
        seen = []
        coordinator.subscribe(seen.append)

        async def scenario():
            await coordinator.calculate_all()
            await coordinator.refresh()

        _run(scenario())
        assert all(s.all_resolved for s in seen if s.phase is Phase.READY)

    def test_calculator_bug_ends_in_error(self, store, clock):
        def broken_recovery(*args, **kwargs):
            raise InconsistentStateError("no sleep")

        coordinator = _coordinator(store, clock, calculators=Calculators(recovery=broken_recovery))
        with pytest.raises(InconsistentStateError):
            _run(coordinator.calculate_all())
        assert coordinator.state.phase is Phase.ERROR
        assert coordinator.state.last_error == "no sleep"
        assert not coordinator.is_calculating()

    def test_history_is_saved(self, store, clock, signal_repository):
        coordinator = _coordinator(store, clock, history=signal_repository)
        state = _run(coordinator.calculate_all())
        saved = signal_repository.get_latest_score(ScoreKind.RECOVERY, TODAY)
        assert saved.id == state.recovery.id
        assert signal_repository.get_baseline(Metric.HRV, 30, TODAY) is not None


class TestFailures:
    def test_upstream_failure_with_stale_cache_is_ready_and_stale(self, store, clock):
        coordinator = _coordinator(store, clock)

        async def scenario():
            first = await coordinator.calculate_all()
            clock.advance(7200)
            store.fail_with = RuntimeError("connection reset")
            second = await coordinator.calculate_all()
            return first, second

        first, second = _run(scenario())
        assert second.phase is Phase.READY
        assert second.stale
        assert second.recovery.value == first.recovery.value

    def test_upstream_failure_without_cache_is_error(self, store, clock):
        store.fail_with = RuntimeError("connection reset")
        coordinator = _coordinator(store, clock)
        state = _run(coordinator.calculate_all())
        assert state.phase is Phase.ERROR
        assert "connection reset" in state.last_error
        assert state.recovery is None

    def test_slow_store_times_out_to_error(self, store, clock):
        store.delay = 0.5
        coordinator = _coordinator(store, clock, config=ScoringConfig(fetch_timeout_seconds=0.01))
        state = _run(coordinator.calculate_all())
        assert state.phase is Phase.ERROR
        assert "timed out" in state.last_error

    def test_error_is_cleared_by_next_run(self, store, clock):
        coordinator = _coordinator(store, clock)

        async def scenario():
            store.fail_with = RuntimeError("down")
            await coordinator.calculate_all()
            store.fail_with = None
            return await coordinator.calculate_all()

        state = _run(scenario())
        assert state.phase is Phase.READY
        assert state.last_error is None


class TestCancellation:
    def test_cancel_restores_previous_state(self, store, clock):
        coordinator = _coordinator(store, clock)

        async def scenario():
            ready = await coordinator.calculate_all()
            store.gate = asyncio.Event()
            run = asyncio.ensure_future(coordinator.refresh())
            await asyncio.sleep(0.01)
            assert coordinator.state.phase is Phase.REFRESHING
            assert coordinator.cancel()
            with pytest.raises(asyncio.CancelledError):
                await run
            await asyncio.sleep(0.01)
            return ready

        ready = _run(scenario())
        assert coordinator.state == ready
        assert not coordinator.is_calculating()

    def test_detached_consumer_cancels_run(self, store, clock):
        coordinator = _coordinator(store, clock)
        phases = []
        coordinator.subscribe(lambda s: phases.append(s.phase))

        async def scenario():
            store.gate = asyncio.Event()
            consumer = asyncio.ensure_future(coordinator.calculate_all())
            await asyncio.sleep(0.01)
            consumer.cancel()
            with pytest.raises(asyncio.CancelledError):
                await consumer
            await asyncio.sleep(0.01)

        _run(scenario())
        assert phases[0] is Phase.LOADING
        assert coordinator.state.phase is Phase.INITIAL
        assert Phase.READY not in phases

    def test_cancel_when_idle(self, store, clock):
        assert not _coordinator(store, clock).cancel()


class TestAnomalies:
    @pytest.fixture
    def sick_store(self) -> FakeSignalStore:
        return FakeSignalStore(steady_history() + _today_samples(rhr=66.0))

    def test_elevated_rhr_raises_illness(self, sick_store, clock):
        state = _run(_coordinator(sick_store, clock).calculate_all())
        assert len(state.anomalies) == 1
        event = state.anomalies[0]
        assert event.kind is AnomalyKind.ILLNESS
        assert event.id == f"illness:{TODAY.isoformat()}"
        assert Metric.RHR in event.triggered_signals

    def test_dismissal_persists_across_runs(self, sick_store, clock, signal_repository):
        coordinator = _coordinator(sick_store, clock, history=signal_repository)
        until = TODAY + timedelta(days=3)

        async def scenario():
            state = await coordinator.calculate_all()
            event_id = state.anomalies[0].id
            matched = await coordinator.dismiss_anomaly(event_id, until)
            hidden = coordinator.active_anomalies()
            refreshed = await coordinator.refresh()
            return event_id, matched, hidden, refreshed

        event_id, matched, hidden, refreshed = _run(scenario())
        assert matched
        assert hidden == []
        assert signal_repository.get_dismissals() == {event_id: until}
        assert refreshed.anomalies[0].dismissed_until == until
        assert coordinator.active_anomalies() == []

    def test_dismissal_loaded_by_new_coordinator(self, sick_store, clock, signal_repository):
        signal_repository.save_dismissal(f"illness:{TODAY.isoformat()}", TODAY)
        coordinator = _coordinator(sick_store, clock, history=signal_repository)
        state = _run(coordinator.calculate_all())
        assert state.anomalies[0].dismissed_until == TODAY
        assert coordinator.active_anomalies() == []

    def test_dismissing_unknown_event(self, store, clock):
        coordinator = _coordinator(store, clock)
        assert not _run(coordinator.dismiss_anomaly("illness:2020-01-01", TODAY))


class TestSubscribers:
    def test_failing_subscriber_does_not_break_run(self, store, clock):
        coordinator = _coordinator(store, clock)
        received = []

        def broken(state):
            raise ValueError("render failed")

        coordinator.subscribe(broken)
        coordinator.subscribe(received.append)
        state = _run(coordinator.calculate_all())
        assert state.phase is Phase.READY
        assert received[-1] is state

    def test_unsubscribe(self, store, clock):
        coordinator = _coordinator(store, clock)
        received = []
        unsubscribe = coordinator.subscribe(received.append)
        unsubscribe()
        unsubscribe()
        _run(coordinator.calculate_all())
        assert received == []


class TestLoadCached:
    def test_restores_last_state_from_durable_tier(self, store, clock, durable_cache):
        first = _coordinator(store, clock, cache=TieredCache(MemoryCache(), durable_cache, clock=clock))
        ready = _run(first.calculate_all())

        second = _coordinator(store, clock, cache=TieredCache(MemoryCache(), durable_cache, clock=clock))
        phases = []
        second.subscribe(lambda s: phases.append(s.phase))
        state = _run(second.load_cached())

        assert phases == [Phase.INITIAL]
        assert state.stale
        assert state.recovery == ready.recovery
        assert second.latest(ScoreKind.SLEEP) == ready.sleep

    def test_nothing_cached(self, store, clock):
        coordinator = _coordinator(store, clock)
        state = _run(coordinator.load_cached())
        assert state.phase is Phase.INITIAL
        assert state.recovery is None

    def test_invalidate_inputs_forces_store_reads(self, store, clock):
        coordinator = _coordinator(store, clock)

        async def scenario():
            await coordinator.calculate_all()
            before = _sample_calls(store)
            await coordinator.invalidate_inputs()
            await coordinator.calculate_all()
            return before

        before = _run(scenario())
        assert _sample_calls(store) > before
