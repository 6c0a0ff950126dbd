"""
Score Accumulator

Maintains one decayed running score per (event_id, user_id):

    score_new = score_old * DECAY + sum(f(sample))
    f(sample) = clamp(magnitude, 0, MAX_MAGNITUDE) + steps * STEP_WEIGHT

DECAY is applied once per accepted update (per batch), not per second, so a
client that submits more often decays faster. Idle participants do not decay
between updates; ``decayed_score_at`` is the pure read-time view for products
that want continuous decay.

Updates for the same key are serialized by a per-key lock and written with a
version check; different keys never share a lock.
"""

from __future__ import annotations
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple
import logging
import math
import threading

import numpy as np

from crowdenergy.common.config import ScoringConfig
from crowdenergy.core.models import MotionSample, ScoreState, ensure_utc, utc_now
from crowdenergy.utils.constants import CONFLICT_RETRY_ATTEMPTS
from crowdenergy.utils.error_handling import InvalidPayload, retry_on_conflict

logger = logging.getLogger(__name__)


def contributions(magnitude: np.ndarray, steps: np.ndarray, cfg: ScoringConfig) -> np.ndarray:
    """Vectorized f(sample) over parallel magnitude/step arrays."""
    magnitude = np.asarray(magnitude, dtype=np.float64)
    steps = np.asarray(steps, dtype=np.float64)
    return np.clip(magnitude, 0.0, cfg.max_magnitude) + steps * cfg.step_weight


def sample_contribution(sample: MotionSample, cfg: ScoringConfig) -> float:
    return float(min(max(sample.magnitude, 0.0), cfg.max_magnitude) + sample.step_count * cfg.step_weight)


def batch_increment(samples: List[MotionSample], cfg: ScoringConfig) -> float:
    if not samples:
        return 0.0
    mags = [s.magnitude for s in samples]
    steps = [s.step_count for s in samples]
    return float(contributions(mags, steps, cfg).sum())


def decay_step(score_old: float, increment: float, decay: float) -> float:
    """One accumulator update."""
    return score_old * decay + increment


def decayed_score_at(score: float, last_update_at: Optional[datetime], now: datetime,
                     decay: float, interval_seconds: float) -> float:
    """
    Score as seen at ``now`` when idle time also decays.

    Applies DECAY once per whole ``interval_seconds`` elapsed since the last
    update. Pure: repeated reads never compound.
    """
    if last_update_at is None or score <= 0:
        return score
    elapsed = (ensure_utc(now) - ensure_utc(last_update_at)).total_seconds()
    intervals = math.floor(elapsed / interval_seconds) if elapsed > 0 else 0
    return score * (decay ** intervals)


class KeyedLocks:
    """Lazily created lock per key; the registry lock is held only for lookup."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Tuple[str, str], threading.Lock] = {}

    def get(self, key: Tuple[str, str]) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def discard_where(self, predicate: Callable[[Tuple[str, str]], bool]) -> int:
        with self._guard:
            doomed = [k for k in self._locks if predicate(k)]
            for k in doomed:
                del self._locks[k]
        return len(doomed)

    def __len__(self) -> int:
        return len(self._locks)


class ScoreAccumulator:
    """
    Applies increments to ScoreState rows through the storage gateway.

    Storage failures propagate to the caller; a Conflict on the versioned
    write is retried once, then surfaced.
    """

    def __init__(self, gateway, cfg: ScoringConfig, clock: Callable[[], datetime] = utc_now):
        self.gateway = gateway
        self.cfg = cfg
        self.clock = clock
        self._locks = KeyedLocks()

    def apply(self, event_id: str, user_id: str, increment: float,
              active_seconds: int = 0) -> ScoreState:
        """
        Apply one update of ``increment`` to the participant's score.

        Returns:
            The new ScoreState
        """
        if increment is None or not math.isfinite(increment) or increment < 0:
            raise InvalidPayload(f"increment must be finite and >= 0 (got {increment}).")
        with self._locks.get((event_id, user_id)):
            return self._apply_locked(event_id, user_id, float(increment), int(active_seconds))

    def apply_samples(self, event_id: str, user_id: str, samples: List[MotionSample],
                      active_seconds: int = 0) -> ScoreState:
        """Apply one batch: a single decay step plus the summed sample contributions."""
        return self.apply(event_id, user_id, batch_increment(samples, self.cfg), active_seconds)

    @retry_on_conflict(attempts=CONFLICT_RETRY_ATTEMPTS)
    def _apply_locked(self, event_id: str, user_id: str, increment: float,
                      active_seconds: int) -> ScoreState:
        current = self.gateway.get_score(event_id, user_id) or ScoreState(event_id=event_id, user_id=user_id)
        new_score = decay_step(current.score, increment, self.cfg.decay)
        updated = current.advance(new_score, self.clock(), active_seconds)
        stored = self.gateway.upsert_score(updated, expected_version=current.version)
        logger.debug(
            f"score ({event_id}, {user_id}): {current.score:.3f} -> {stored.score:.3f} "
            f"(+{increment:.3f}, v{stored.version})"
        )
        return stored

    def release_event(self, event_id: str) -> int:
        """Forget the per-participant locks of an event that no longer accepts writes."""
        released = self._locks.discard_where(lambda key: key[0] == event_id)
        logger.debug(f"Released {released} score locks for ended event {event_id}")
        return released

    def current(self, event_id: str, user_id: str) -> ScoreState:
        """Read the participant's state; a never-seen pair reads as score 0."""
        return self.gateway.get_score(event_id, user_id) or ScoreState(event_id=event_id, user_id=user_id)
