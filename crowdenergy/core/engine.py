"""
Crowd Energy Engine

Wires the components together behind the three public operations:

- submit_samples       Sample Intake -> Score Accumulator (-> archive)
- get_energy_timeline  archived samples -> Energy Bucketer -> Peak Window Detector
- get_leaderboard      score states -> Leaderboard Ranker (+ top-N snapshot)

plus the event registry calls that define the window every read uses. Reads
fetch their inputs once and compute over that snapshot; the only lock on the
write path is the accumulator's per-participant lock.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging

from crowdenergy.cache_manager import RefreshScheduler, SnapshotCache
from crowdenergy.common.config import EngineConfig, load_engine_config
from crowdenergy.core.buckets import build_energy_buckets, clamp_resolution, clamp_window_minutes, cumulative_energy
from crowdenergy.core.intake import IntakeResult, SampleIntake
from crowdenergy.core.leaderboard import LeaderboardSnapshot, RankedScore, rank_of, rank_states, to_entries
from crowdenergy.core.models import EnergyBucket, Event, LeaderboardEntry, MotionSample, PeakWindow, ScoreState, utc_now
from crowdenergy.core.peaks import detect_peak_windows, window_length_buckets
from crowdenergy.core.scoring import ScoreAccumulator, decayed_score_at
from crowdenergy.storage import StorageGateway, create_in_memory_gateway
from crowdenergy.utils.constants import ENERGY_TIMELINE_VERSION
from crowdenergy.utils.error_handling import InvalidPayload, NotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SeriesPoint:
    t: datetime
    energy: float
    cumulative: float


@dataclass(frozen=True)
class EnergyTimeline:
    event_id: str
    series: Tuple[SeriesPoint, ...]
    peaks: Tuple[PeakWindow, ...]
    resolution_seconds: int
    window_minutes: int
    event_start: datetime
    event_end: datetime
    generation: int = 0

    @property
    def meta(self) -> Dict[str, Any]:
        return {
            "resolutionSec": self.resolution_seconds,
            "windowMin": self.window_minutes,
            "points": len(self.series),
            "eventStart": self.event_start,
            "eventEnd": self.event_end,
            "generation": self.generation,
            "version": ENERGY_TIMELINE_VERSION,
        }


@dataclass(frozen=True)
class LeaderboardView:
    event_id: str
    entries: List[LeaderboardEntry]
    participant_count: int
    computed_at: datetime
    generation: int = 0
    self_rank: Optional[int] = None
    self_entry: Optional[LeaderboardEntry] = None


def assemble_timeline(event_id: str, buckets: List[EnergyBucket], peaks: List[PeakWindow],
                      resolution_seconds: int, window_minutes: int,
                      start: datetime, end: datetime) -> EnergyTimeline:
    cumulative = cumulative_energy(buckets)
    series = tuple(
        SeriesPoint(t=b.bucket_start, energy=b.energy, cumulative=float(cumulative[i]))
        for i, b in enumerate(buckets)
    )
    return EnergyTimeline(
        event_id=event_id,
        series=series,
        peaks=tuple(peaks),
        resolution_seconds=resolution_seconds,
        window_minutes=window_minutes,
        event_start=start,
        event_end=end,
    )


class EnergyEngine:
    """
    Facade over the scoring, bucketing, peak and ranking components.

    Args:
        gateway: Storage collaborators with per-call timeouts
        config: Engine configuration (scoring constants, clamps, cache timing)
        clock: Time source, injectable for tests
    """

    def __init__(self, gateway: StorageGateway, config: EngineConfig,
                 clock: Callable[[], datetime] = utc_now):
        self.gateway = gateway
        self.config = config
        self.clock = clock
        self.accumulator = ScoreAccumulator(gateway, config.scoring, clock=clock)
        self.intake = SampleIntake(gateway, self.accumulator, config.scoring.stillness_threshold)
        self.leaderboard_cache: SnapshotCache[LeaderboardSnapshot] = SnapshotCache(
            "leaderboard", config.cache_ttl_seconds
        )
        self.timeline_cache: SnapshotCache[EnergyTimeline] = SnapshotCache(
            "energy-timeline", config.cache_ttl_seconds
        )
        self.scheduler = RefreshScheduler(self.refresh_all, config.refresh_interval_seconds)

    # ===== Event registry =====

    def register_event(self, event_id: str, start_at: datetime, end_at: Optional[datetime] = None) -> Event:
        """Create or reschedule an event window. Ended events cannot be rescheduled."""
        existing = self.gateway.get_event(event_id)
        if existing is not None and existing.is_ended:
            raise InvalidPayload(f"event {event_id} has ended and cannot be rescheduled")
        event = Event(event_id=event_id, start_at=start_at, end_at=end_at)
        if existing is not None:
            event = replace(event, created_at=existing.created_at)
        self.gateway.put_event(event)
        self._invalidate_event(event_id)
        logger.info(f"Registered event {event_id}: start={event.start_at.isoformat()} end={event.end_at}")
        return event

    def end_event(self, event_id: str) -> Tuple[Event, bool]:
        """
        Mark an event ended at the current time.

        Returns:
            (event, already_ended)
        """
        event = self.get_event(event_id)
        if event.is_ended:
            return event, True
        event = replace(event, ended_at=max(self.clock(), event.start_at))
        self.gateway.put_event(event)
        self._invalidate_event(event_id)
        self.accumulator.release_event(event_id)
        logger.info(f"Ended event {event_id} at {event.ended_at.isoformat()}")
        return event, False

    def get_event(self, event_id: str) -> Event:
        event = self.gateway.get_event(event_id)
        if event is None:
            raise NotFound(f"event {event_id} not found")
        return event

    def _invalidate_event(self, event_id: str) -> None:
        self.leaderboard_cache.invalidate(event_id)
        self.timeline_cache.invalidate_where(lambda key: key[0] == event_id)

    # ===== submitSamples =====

    def submit_samples(self, event_id: str, user_id: str, samples: List[MotionSample],
                       caller_id: Optional[str] = None) -> IntakeResult:
        """
        Apply one batch for a participant. Not idempotent: resubmitting a batch
        counts it again.
        """
        return self.intake.accept(event_id, user_id, samples, caller_id=caller_id)

    # ===== getEnergyTimeline =====

    def compute_energy_timeline(self, event: Event, resolution_seconds: int, window_minutes: int,
                                now: Optional[datetime] = None) -> EnergyTimeline:
        """Pure computation over one fetch of archived samples."""
        start = event.start_at
        end = event.window_end(now or self.clock())
        samples = self.gateway.read_samples(event.event_id, start, end)
        buckets = build_energy_buckets(
            event_id=event.event_id,
            start=start,
            end=end,
            width_seconds=resolution_seconds,
            samples=samples,
            scoring=self.config.scoring,
        )
        peaks = detect_peak_windows(
            buckets,
            window_length_buckets(window_minutes, resolution_seconds),
            self.config.timeline.max_peaks,
        )
        return assemble_timeline(event.event_id, buckets, peaks, resolution_seconds, window_minutes, start, end)

    def get_energy_timeline(self, event_id: str, resolution_seconds=None, window_minutes=None,
                            use_cache: bool = True) -> EnergyTimeline:
        """
        Gap-filled energy series, running total and peak windows for an event.

        Resolution and window are clamped to the configured ranges rather than
        rejected. Unknown events raise NotFound; an event without samples
        yields an all-zero series.
        """
        resolution = clamp_resolution(resolution_seconds, self.config.timeline)
        window = clamp_window_minutes(window_minutes, self.config.timeline)
        event = self.get_event(event_id)

        if not use_cache:
            return self.compute_energy_timeline(event, resolution, window)

        key = (event_id, resolution, window)
        snap = self.timeline_cache.get_or_build(
            key, lambda: self.compute_energy_timeline(event, resolution, window)
        )
        return _with_generation(snap.value, snap.generation)

    # ===== getLeaderboard =====

    def _score_view(self, now: datetime):
        scoring = self.config.scoring
        if not scoring.idle_decay_enabled:
            return None
        return lambda s: decayed_score_at(
            s.score, s.last_update_at, now, scoring.decay, scoring.idle_decay_interval_seconds
        )

    def build_leaderboard_snapshot(self, event_id: str, limit: Optional[int] = None,
                                   states: Optional[List[ScoreState]] = None,
                                   now: Optional[datetime] = None) -> LeaderboardSnapshot:
        """Rank every participant and keep the top ``limit`` (cache size by default)."""
        now = now or self.clock()
        if states is None:
            states = self.gateway.list_scores(event_id)
        limit = self.config.leaderboard_cache_size if limit is None else limit
        ranked = rank_states(states, self._score_view(now))[:limit]
        profiles = self.gateway.get_profiles([r.user_id for r in ranked])
        return LeaderboardSnapshot(
            event_id=event_id,
            entries=tuple(to_entries(event_id, ranked, profiles)),
            participant_count=len(states),
            computed_at=now,
        )

    def refresh_leaderboard(self, event_id: str) -> LeaderboardSnapshot:
        snapshot = self.build_leaderboard_snapshot(event_id)
        self.leaderboard_cache.publish(event_id, snapshot)
        return snapshot

    def get_leaderboard(self, event_id: str, top_n: int, user_id: Optional[str] = None,
                        use_cache: bool = True) -> LeaderboardView:
        """
        Top ``top_n`` entries plus, when ``user_id`` is given, that user's rank.

        Entries up to the cache size come from the short-TTL snapshot; larger
        requests are ranked directly. When ``user_id`` is given, the entries and
        ``self_rank`` are both computed from one fresh read of the full state
        set (and that snapshot is published), so a response never shows two
        users at the same rank.
        """
        if top_n < 0:
            raise InvalidPayload(f"top_n must be >= 0 (got {top_n}).")
        self.get_event(event_id)
        cacheable = use_cache and top_n <= self.config.leaderboard_cache_size

        generation = 0
        self_rank, self_entry = None, None
        if user_id:
            now = self.clock()
            states = self.gateway.list_scores(event_id)
            if cacheable:
                snap = self.leaderboard_cache.publish(
                    event_id, self.build_leaderboard_snapshot(event_id, states=states, now=now)
                )
                snapshot, generation = snap.value, snap.generation
            else:
                snapshot = self.build_leaderboard_snapshot(event_id, limit=top_n, states=states, now=now)
            self_rank, self_entry = self._lookup_self(event_id, user_id, states, now)
        elif cacheable:
            snap = self.leaderboard_cache.get_or_build(event_id, lambda: self.build_leaderboard_snapshot(event_id))
            snapshot, generation = snap.value, snap.generation
        else:
            snapshot = self.build_leaderboard_snapshot(event_id, limit=top_n)

        return LeaderboardView(
            event_id=event_id,
            entries=snapshot.top(top_n),
            participant_count=snapshot.participant_count,
            computed_at=snapshot.computed_at,
            generation=generation,
            self_rank=self_rank,
            self_entry=self_entry,
        )

    def _lookup_self(self, event_id: str, user_id: str, states: List[ScoreState], now: datetime):
        view = self._score_view(now)
        rank = rank_of(states, user_id, view)
        if rank is None:
            return None, None
        state = next(s for s in states if s.user_id == user_id)
        score = view(state) if view else state.score
        profiles = self.gateway.get_profiles([user_id])
        entry = to_entries(event_id, [RankedScore(rank, user_id, score, state.active_seconds)], profiles)[0]
        return rank, entry

    # ===== Scheduled refresh =====

    def refresh_all(self, now: Optional[datetime] = None) -> int:
        """
        Rebuild snapshots for live events.

        Snapshots not read for ``snapshot_idle_seconds`` are dropped first, so
        only recently requested timelines are recomputed. Ended events are
        skipped; their results no longer change.
        """
        idle = self.config.snapshot_idle_seconds
        evicted = self.timeline_cache.evict_idle(idle, now) + self.leaderboard_cache.evict_idle(idle, now)
        refreshed = 0
        for event_id in self.gateway.list_event_ids():
            event = self.gateway.get_event(event_id)
            if event is None or event.is_ended:
                continue
            self.refresh_leaderboard(event_id)
            refreshed += 1
            for key in self.timeline_cache.keys(lambda k: k[0] == event_id):
                _, resolution, window = key
                self.timeline_cache.publish(key, self.compute_energy_timeline(event, resolution, window))
        logger.debug(f"Refreshed snapshots for {refreshed} live events, evicted {evicted} idle snapshots")
        return refreshed

    def start(self) -> None:
        if self.config.refresh_enabled:
            self.scheduler.start()

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.stop(timeout=self.config.refresh_interval_seconds)


def _with_generation(timeline: EnergyTimeline, generation: int) -> EnergyTimeline:
    return replace(timeline, generation=generation)


# ===== Process-wide engine =====

_engine: Optional[EnergyEngine] = None


def create_engine(config: Optional[EngineConfig] = None, gateway: Optional[StorageGateway] = None,
                  clock: Callable[[], datetime] = utc_now) -> EnergyEngine:
    config = config or load_engine_config()
    gateway = gateway or create_in_memory_gateway(timeout=config.storage_timeout_seconds)
    return EnergyEngine(gateway, config, clock=clock)


def get_engine() -> EnergyEngine:
    """Get the global engine instance."""
    global _engine
    if _engine is None:
        _engine = create_engine()
    return _engine


def set_engine(engine: Optional[EnergyEngine]) -> None:
    """Replace the global engine (used by the app factory and tests)."""
    global _engine
    _engine = engine
