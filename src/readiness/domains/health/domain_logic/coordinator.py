"""Scores coordinator: orders the calculations and owns the published state.

One ``calculate_all`` run does, for the current day::

    Sleep ──┬──> Recovery ──┐
            │               ├──> AnomalyDetector ──> READY
    Training load ─> Strain ┘

Sleep and the training-load read start together; Recovery waits for Sleep,
Strain only for the training load, and the detector for both scores. Every
intermediate payload goes through the tiered cache, so a repeated run inside
the TTLs does no store reads at all and concurrent runs never compute the
same key twice.

``CalculationState`` has exactly one writer, ``_publish``. Subscribers get
every snapshot; nothing outside this class can change it. A run that is
cancelled republishes the state it started from, so consumers never see
a half-finished calculation.

Upstream failures fall back to the newest cached payload for the key that
failed and mark the state stale. Only a failure with nothing cached at all
ends in ``Phase.ERROR``.
"""

from __future__ import annotations

import asyncio
import logging
import statistics
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta, timezone
from typing import Any, Protocol

from readiness.core.cache.keys import CacheKey, CacheKind
from readiness.core.cache.tiered import TieredCache
from readiness.domains.health.connectors import SignalStore
from readiness.domains.health.domain_logic.anomaly_detector import detect_anomalies
from readiness.domains.health.domain_logic.baseline import BaselineTracker
from readiness.domains.health.domain_logic.config import ScoringConfig
from readiness.domains.health.domain_logic.daily_signals import (
    build_daily_window,
    build_sleep_night,
    daily_values,
)
from readiness.domains.health.domain_logic.models import (
    AnomalyEvent,
    Baseline,
    CalculationState,
    Metric,
    Phase,
    ScoreKind,
    ScoreResult,
    WorkoutStream,
)
from readiness.domains.health.domain_logic.recovery_score import (
    RecoveryInputs,
    calculate_recovery_score,
)
from readiness.domains.health.domain_logic.sleep_score import (
    calculate_sleep_score,
    sleep_need_hours,
)
from readiness.domains.health.domain_logic.strain_score import (
    StrainInputs,
    calculate_strain_score,
)
from readiness.domains.health.domain_logic.training_load import (
    compute_training_load,
    daily_training_stress,
)
from readiness.domains.health.domain_logic.upstream import bounded_fetch
from readiness.domains.health.domain_logic.validation import validate_profile
from readiness.domains.health.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

Subscriber = Callable[[CalculationState], None]

_PHYSIOLOGY = (Metric.HRV, Metric.RHR, Metric.RESPIRATORY_RATE, Metric.ACTIVE_ENERGY)


class ScoreHistory(Protocol):
    """Write side of the signal bank used by the coordinator."""

    def save_score(self, result: ScoreResult) -> str:
        ...

    def save_baseline(self, baseline: Baseline) -> None:
        ...

    def save_dismissal(self, event_id: str, until: date) -> None:
        ...

    def get_dismissals(self) -> dict[str, date]:
        ...


@dataclass(frozen=True)
class Calculators:
    """The pure functions a run calls. Swapped for fakes in tests."""

    sleep: Callable[..., ScoreResult] = calculate_sleep_score
    recovery: Callable[..., ScoreResult] = calculate_recovery_score
    strain: Callable[..., ScoreResult] = calculate_strain_score
    anomalies: Callable[..., list[AnomalyEvent]] = detect_anomalies


@dataclass
class _Run:
    day: date
    force: bool
    stale: bool = False
    # Keys already recomputed by this forced run
    refreshed: set[str] = field(default_factory=set)


@dataclass
class _Flight:
    task: asyncio.Future
    force: bool = False
    waiters: int = 0


class ScoresCoordinator:
    """Single owner of ``CalculationState``.

    Usage::

        coordinator = ScoresCoordinator(store, cache=cache, history=repository)
        unsubscribe = coordinator.subscribe(render)
        await coordinator.load_cached()
        state = await coordinator.calculate_all()
        print(state.recovery.value, state.recovery.band)
    """

    def __init__(
        self,
        store: SignalStore,
        *,
        baseline_tracker: BaselineTracker | None = None,
        cache: TieredCache | None = None,
        history: ScoreHistory | None = None,
        calculators: Calculators | None = None,
        config: ScoringConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._config = config or ScoringConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._tracker = baseline_tracker or BaselineTracker(
            store,
            min_samples=self._config.baseline_min_samples,
            fetch_timeout=self._config.fetch_timeout_seconds,
            clock=self._clock,
        )
        self._cache = cache or TieredCache(clock=self._clock)
        self._history = history
        self._calculators = calculators or Calculators()
        self._profile, _ = validate_profile(self._config.profile)

        self._state = CalculationState()
        self._subscribers: list[Subscriber] = []
        self._flight: _Flight | None = None
        self._dismissals: dict[str, date] = {}

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def state(self) -> CalculationState:
        return self._state

    @property
    def config(self) -> ScoringConfig:
        return self._config

    @property
    def cache(self) -> TieredCache:
        return self._cache

    def latest(self, kind: ScoreKind) -> ScoreResult | None:
        return self._state.score(kind)

    @property
    def recovery(self) -> ScoreResult | None:
        return self._state.recovery

    @property
    def sleep(self) -> ScoreResult | None:
        return self._state.sleep

    @property
    def strain(self) -> ScoreResult | None:
        return self._state.strain

    def active_anomalies(self) -> list[AnomalyEvent]:
        return self._state.active_anomalies(self._today())

    def is_calculating(self) -> bool:
        return self._flight is not None and not self._flight.task.done()

    def _today(self) -> date:
        return self._clock().date()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` for every published state.

        Returns:
            A function that removes the subscription.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _publish(self, state: CalculationState) -> None:
        self._state = state
        for callback in list(self._subscribers):
            try:
                callback(state)
            except Exception:
                logger.exception("State subscriber %r failed", callback)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def load_cached(self) -> CalculationState:
        """Publish today's last durable snapshot, staying in ``INITIAL``.

        Used at start-up so consumers see yesterday-evening's scores while
        the first calculation runs.
        """
        if self._state.phase is not Phase.INITIAL:
            return self._state
        entry = await self._cache.get_stale(CacheKey.state(self._today()))
        if entry is None:
            return self._state
        cached = CalculationState.from_dict(entry.payload)
        self._publish(replace(cached, phase=Phase.INITIAL, stale=True))
        logger.info("Loaded cached state from %s", entry.stored_at.isoformat())
        return self._state

    async def calculate_all(self, force_refresh: bool = False) -> CalculationState:
        """Run the full calculation, or join the one already in flight.

        Args:
            force_refresh: Ignore fresh cache entries and recompute. A forced
                run already in flight is joined; a plain one is awaited first
                so the forced run reads the samples that arrived meanwhile.

        Returns:
            The state published at the end of the run.
        """
        flight = self._flight
        while force_refresh and flight is not None and not flight.task.done() and not flight.force:
            logger.debug("Forced refresh waiting for the in-flight calculation")
            await asyncio.wait({flight.task})
            flight = self._flight

        if flight is None or flight.task.done():
            previous = self._state
            phase = Phase.REFRESHING if previous.all_resolved else Phase.LOADING
            self._publish(replace(previous, phase=phase, last_error=None))
            task = asyncio.ensure_future(self._calculate(previous, force_refresh))
            task.add_done_callback(lambda t, p=previous: self._on_done(t, p))
            flight = _Flight(task, force=force_refresh)
            self._flight = flight
        else:
            logger.debug("Joining in-flight calculation")

        flight.waiters += 1
        try:
            return await asyncio.shield(flight.task)
        except asyncio.CancelledError:
            if flight.waiters == 1 and not flight.task.done():
                logger.info("Last consumer detached; cancelling calculation")
                flight.task.cancel()
            raise
        finally:
            flight.waiters -= 1

    async def refresh(self) -> CalculationState:
        """Recompute everything, keeping current scores visible meanwhile."""
        return await self.calculate_all(force_refresh=True)

    def cancel(self) -> bool:
        """Cancel the in-flight calculation, if any.

        The state the run started from is republished; callers awaiting
        the run receive ``CancelledError``.
        """
        if not self.is_calculating():
            return False
        self._flight.task.cancel()
        return True

    async def dismiss_anomaly(self, event_id: str, until: date) -> bool:
        """Hide an anomaly until ``until`` (inclusive).

        The dismissal is persisted so the next detection run, which
        re-derives events from scratch, keeps it hidden.

        Returns:
            ``True`` if a current event matched ``event_id``.
        """
        self._dismissals[event_id] = until
        if self._history is not None:
            self._history.save_dismissal(event_id, until)

        matched = False
        anomalies = []
        for event in self._state.anomalies:
            if event.id == event_id:
                event = event.dismissed(until)
                matched = True
            anomalies.append(event)
        if matched:
            state = replace(self._state, anomalies=tuple(anomalies))
            self._publish(state)
            if state.phase is Phase.READY:
                await self._cache.set(CacheKey.state(self._today()), state.to_dict())
        return matched

    async def invalidate_inputs(self) -> None:
        """Drop cached inputs and scores after new samples were recorded."""
        for kind in (CacheKind.HEALTH_METRICS, CacheKind.ACTIVITY, CacheKind.BASELINE, CacheKind.SCORE):
            await self._cache.clear(kind)

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def _on_done(self, task: asyncio.Future, previous: CalculationState) -> None:
        # A task cancelled before its first step never reaches its own handler.
        if task.cancelled() and self._state.is_busy:
            self._publish(previous)

    async def _calculate(self, previous: CalculationState, force: bool) -> CalculationState:
        run = _Run(day=self._today(), force=force)
        logger.info("Calculating scores for %s (force=%s)", run.day, force)
        try:
            sleep, recovery, strain = await self._scores(run)
            anomalies = await self._anomalies_or_previous(run, sleep, recovery, previous)
        except asyncio.CancelledError:
            logger.info("Calculation for %s cancelled; restoring previous state", run.day)
            self._publish(previous)
            raise
        except UpstreamUnavailable as exc:
            return await self._fall_back(run, previous, exc)
        except Exception as exc:
            logger.exception("Score calculation failed for %s", run.day)
            self._publish(replace(previous, phase=Phase.ERROR, last_error=str(exc)))
            raise

        state = CalculationState(
            phase=Phase.READY,
            recovery=recovery,
            sleep=sleep,
            strain=strain,
            anomalies=anomalies,
            stale=run.stale,
            updated_at=self._clock(),
        )
        self._save_history(state)
        await self._cache.set(CacheKey.state(run.day), state.to_dict())
        self._publish(state)
        logger.info(
            "Scores ready for %s: recovery=%d sleep=%d strain=%d anomalies=%d%s",
            run.day, recovery.value, sleep.value, strain.value, len(anomalies),
            " (stale)" if run.stale else "",
        )
        return state

    async def _fall_back(
        self, run: _Run, previous: CalculationState, exc: UpstreamUnavailable
    ) -> CalculationState:
        fallback: CalculationState | None = previous if previous.all_resolved else None
        if fallback is None:
            entry = await self._cache.get_stale(CacheKey.state(run.day))
            if entry is not None:
                fallback = CalculationState.from_dict(entry.payload)

        if fallback is None:
            logger.error("No cached scores to fall back to: %s", exc)
            state = replace(previous, phase=Phase.ERROR, last_error=str(exc))
        else:
            logger.warning("Serving cached scores: %s", exc)
            state = replace(fallback, phase=Phase.READY, stale=True, last_error=str(exc))
        self._publish(state)
        return state

    def _save_history(self, state: CalculationState) -> None:
        if self._history is None:
            return
        for result in (state.sleep, state.recovery, state.strain):
            if result is not None and result.has_data:
                self._history.save_score(result)

    # ------------------------------------------------------------------
    # Cached reads
    # ------------------------------------------------------------------

    async def _cached(
        self, run: _Run, key: CacheKey, compute: Callable[[], Awaitable[Any]]
    ) -> Any:
        """``get_or_compute`` with a stale-entry fallback on upstream failure."""
        force = run.force and str(key) not in run.refreshed
        run.refreshed.add(str(key))
        try:
            return await self._cache.get_or_compute(key, compute, force=force)
        except UpstreamUnavailable as exc:
            entry = await self._cache.get_stale(key)
            if entry is None:
                raise
            logger.warning("Using cached %s from %s: %s", key, entry.stored_at.isoformat(), exc)
            run.stale = True
            return entry.payload

    async def _fetch(self, awaitable: Awaitable[Any], what: str) -> Any:
        return await bounded_fetch(
            awaitable,
            timeout=self._config.fetch_timeout_seconds,
            source="signal store",
            what=what,
        )

    async def _window_values(self, run: _Run, metric: Metric) -> dict[date, float]:
        """Daily values of ``metric`` over the anomaly window ending today."""
        start = run.day - timedelta(days=self._config.anomaly_window_days - 1)

        async def compute() -> dict[str, float]:
            samples = await self._fetch(
                self._store.get_samples(metric, start, run.day), f"{metric.value} samples"
            )
            return {d.isoformat(): v for d, v in daily_values(samples, metric).items()}

        key = CacheKey(CacheKind.HEALTH_METRICS, run.day, metric.value)
        payload = await self._cached(run, key, compute)
        return {date.fromisoformat(d): v for d, v in payload.items()}

    async def _baseline(self, run: _Run, metric: Metric) -> Baseline:
        window = self._config.baseline_window_days

        async def compute() -> dict[str, Any]:
            baseline = await self._tracker.compute(metric, run.day, window)
            if self._history is not None and not baseline.insufficient_data:
                self._history.save_baseline(baseline)
            return baseline.to_dict()

        key = CacheKey.baseline(metric.value, window, run.day)
        try:
            return Baseline.from_dict(await self._cached(run, key, compute))
        except UpstreamUnavailable as exc:
            logger.warning("No %s baseline available: %s", metric.value, exc)
            run.stale = True
            return Baseline.insufficient(metric, window, run.day, self._clock())

    async def _training(self, run: _Run) -> dict[str, Any]:
        """External daily stress and workout streams over the history window."""
        start = run.day - timedelta(days=self._config.training_history_days)

        async def compute() -> dict[str, Any]:
            samples = await self._fetch(
                self._store.get_samples(Metric.TRAINING_STRESS, start, run.day), "training stress"
            )
            workouts = await self._fetch(self._store.get_workouts(start, run.day), "workouts")
            return {
                "external": {
                    d.isoformat(): v
                    for d, v in daily_values(samples, Metric.TRAINING_STRESS).items()
                },
                "workouts": [w.to_dict() for w in workouts],
            }

        key = CacheKey(CacheKind.ACTIVITY, run.day, "training")
        return await self._cached(run, key, compute)

    # ------------------------------------------------------------------
    # Scores
    # ------------------------------------------------------------------

    async def _scores(self, run: _Run) -> tuple[ScoreResult, ScoreResult, ScoreResult]:
        training = asyncio.ensure_future(self._training(run))
        sleep_task = asyncio.ensure_future(self._sleep_score(run))
        strain_task = asyncio.ensure_future(self._strain_score(run, training))
        try:
            sleep = await sleep_task
            recovery = await self._recovery_score(run, sleep, training)
            strain = await strain_task
        finally:
            for task in (training, sleep_task, strain_task):
                if not task.done():
                    task.cancel()
                elif not task.cancelled():
                    task.exception()  # mark retrieved
        return sleep, recovery, strain

    async def _sleep_score(self, run: _Run) -> ScoreResult:
        async def compute() -> dict[str, Any]:
            samples = await self._fetch(
                self._store.get_samples(Metric.SLEEP_STAGE, run.day - timedelta(days=1), run.day),
                "sleep samples",
            )
            need_baseline = await self._baseline(run, Metric.SLEEP_STAGE)
            night = build_sleep_night(samples, run.day)
            result = self._calculators.sleep(
                night,
                sleep_need=sleep_need_hours(need_baseline, self._config.default_sleep_need_hours),
                day=run.day,
                now=self._clock(),
            )
            return result.to_dict()

        payload = await self._cached(run, CacheKey.score(ScoreKind.SLEEP.value, run.day), compute)
        return ScoreResult.from_dict(payload)

    def _stress_history(self, training: dict[str, Any]) -> dict[date, float]:
        external = {date.fromisoformat(d): v for d, v in training["external"].items()}
        workouts = [WorkoutStream.from_dict(w) for w in training["workouts"]]
        merged = daily_training_stress(external, workouts, self._profile)
        return {d: value for d, (value, _source) in merged.items()}

    async def _recovery_score(
        self, run: _Run, sleep: ScoreResult, training: Awaitable[dict[str, Any]]
    ) -> ScoreResult:
        key = CacheKey.score(ScoreKind.RECOVERY.value, run.day)

        async def compute() -> dict[str, Any]:
            values = {m: await self._window_values(run, m) for m in _PHYSIOLOGY[:3]}
            baselines = {m: await self._baseline(run, m) for m in _PHYSIOLOGY[:3]}
            stress = self._stress_history(await training)
            yesterday = run.day - timedelta(days=1)
            load = compute_training_load(stress, yesterday)
            inputs = RecoveryInputs(
                hrv_ms=values[Metric.HRV].get(run.day),
                rhr_bpm=values[Metric.RHR].get(run.day),
                respiratory_rate=values[Metric.RESPIRATORY_RATE].get(run.day),
                tsb=load.tsb if load is not None else None,
                yesterday_tss=stress.get(yesterday),
            )
            result = self._calculators.recovery(
                inputs, baselines, sleep, day=run.day, now=self._clock()
            )
            return result.to_dict()

        recovery = ScoreResult.from_dict(await self._cached(run, key, compute))
        # A cached recovery must have been computed from this exact sleep result.
        if recovery.inputs_snapshot.get("sleep", {}).get("id") != sleep.id:
            logger.debug("Cached recovery references another sleep result; recomputing")
            payload = await self._cache.get_or_compute(key, compute, force=True)
            recovery = ScoreResult.from_dict(payload)
        return recovery

    async def _strain_score(self, run: _Run, training: Awaitable[dict[str, Any]]) -> ScoreResult:
        async def compute() -> dict[str, Any]:
            payload = await training
            energy = await self._window_values(run, Metric.ACTIVE_ENERGY)
            inputs = StrainInputs(
                external_stress={
                    date.fromisoformat(d): v for d, v in payload["external"].items()
                },
                workouts=tuple(WorkoutStream.from_dict(w) for w in payload["workouts"]),
                active_energy_kcal=energy.get(run.day),
            )
            result = self._calculators.strain(
                inputs, self._config.profile, day=run.day, now=self._clock()
            )
            return result.to_dict()

        payload = await self._cached(run, CacheKey.score(ScoreKind.STRAIN.value, run.day), compute)
        return ScoreResult.from_dict(payload)

    # ------------------------------------------------------------------
    # Anomalies
    # ------------------------------------------------------------------

    def _load_dismissals(self) -> dict[str, date]:
        if self._history is not None:
            self._dismissals.update(self._history.get_dismissals())
        return self._dismissals

    async def _anomalies_or_previous(
        self,
        run: _Run,
        sleep: ScoreResult,
        recovery: ScoreResult,
        previous: CalculationState,
    ) -> tuple[AnomalyEvent, ...]:
        try:
            return await self._anomalies(run, sleep, recovery)
        except UpstreamUnavailable as exc:
            logger.warning("Anomaly inputs unavailable, keeping previous events: %s", exc)
            run.stale = True
            return previous.anomalies

    async def _anomalies(
        self, run: _Run, sleep: ScoreResult, recovery: ScoreResult
    ) -> tuple[AnomalyEvent, ...]:
        values = {m: await self._window_values(run, m) for m in _PHYSIOLOGY}
        baselines = {m: await self._baseline(run, m) for m in _PHYSIOLOGY}

        window_start = run.day - timedelta(days=self._config.baseline_window_days)
        history = await self._fetch(
            self._store.get_score_history(
                ScoreKind.SLEEP, window_start, run.day - timedelta(days=1)
            ),
            "sleep score history",
        )
        sleep_scores = {r.day: float(r.value) for r in history if r.has_data}
        sleep_baseline = None
        if len(sleep_scores) >= self._config.baseline_min_samples:
            sleep_baseline = statistics.fmean(sleep_scores.values())
        if sleep.has_data:
            sleep_scores[run.day] = float(sleep.value)

        window = build_daily_window(
            values,
            (run.day - timedelta(days=i) for i in range(self._config.anomaly_window_days)),
            sleep_scores,
        )
        events = self._calculators.anomalies(
            window,
            baselines,
            sleep_score_baseline=sleep_baseline,
            recovery_score=recovery.value if recovery.has_data else None,
            config=self._config,
        )

        dismissals = self._load_dismissals()
        return tuple(
            event.dismissed(dismissals[event.id]) if event.id in dismissals else event
            for event in events
        )
