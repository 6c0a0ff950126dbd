"""
Sample Intake

Validates one batch of raw motion observations for an (event, user) pair,
derives the batch span and the movement signals other components consume,
then forwards the batch to the Score Accumulator and, best effort, to the
sample archive.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
import logging
import math

import numpy as np

from crowdenergy.core.models import MotionSample, ScoreState, ensure_utc, utc_now
from crowdenergy.core.scoring import ScoreAccumulator
from crowdenergy.utils.constants import DEFAULT_STILLNESS_THRESHOLD, MILLISECONDS_PER_SECOND
from crowdenergy.utils.error_handling import InvalidPayload, NotFound, safe_execute

logger = logging.getLogger(__name__)

# Accepted aliases for incoming observation fields
TIMESTAMP_KEYS = ("t", "ts")
MAGNITUDE_KEYS = ("mag", "accel", "magnitude")
STEP_KEYS = ("steps", "step_count")


@dataclass(frozen=True)
class MotionSignals:
    """Per-batch movement signals exposed for anti-cheat consumers."""
    mean_magnitude: float = 0.0
    stillness_ratio: float = 0.0
    cadence: float = 0.0          # steps per second over the batch span


@dataclass(frozen=True)
class IntakeResult:
    event_id: str
    user_id: str
    accepted: int
    delta_seconds: int
    score: float
    active_seconds: int
    signals: MotionSignals = field(default_factory=MotionSignals)
    archived: bool = False


def _first_present(raw: Dict[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        if raw.get(key) is not None:
            return raw[key]
    return None


def _as_number(value: Any, name: str) -> float:
    if isinstance(value, bool):
        raise InvalidPayload(f"{name} must be numeric (got {value!r}).")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise InvalidPayload(f"{name} must be numeric (got {value!r}).")


def observation_from_dict(raw: Dict[str, Any], event_id: str, user_id: str,
                          received_at: Optional[datetime] = None) -> MotionSample:
    """
    Build a MotionSample from a client observation.

    Timestamps are epoch milliseconds under ``t`` or ``ts``; a missing
    timestamp is stamped with ``received_at``. Magnitude may arrive as
    ``mag``, ``accel`` or ``magnitude`` and defaults to 0.
    """
    if not isinstance(raw, dict):
        raise InvalidPayload(f"observation must be an object (got {type(raw).__name__}).")

    ts = _first_present(raw, TIMESTAMP_KEYS)
    if ts is None:
        observed_at = received_at or utc_now()
    else:
        ts_ms = _as_number(ts, "timestamp")
        if not math.isfinite(ts_ms):
            raise InvalidPayload(f"timestamp must be finite (got {ts!r}).")
        try:
            observed_at = datetime.fromtimestamp(ts_ms / MILLISECONDS_PER_SECOND, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise InvalidPayload(f"timestamp out of range (got {ts!r}).")

    mag = _first_present(raw, MAGNITUDE_KEYS)
    steps = _first_present(raw, STEP_KEYS)
    return MotionSample(
        event_id=event_id,
        user_id=user_id,
        observed_at=observed_at,
        magnitude=_as_number(mag, "magnitude") if mag is not None else 0.0,
        step_count=_as_number(steps, "step_count") if steps is not None else 0,
    )


def validate_batch(samples: List[MotionSample]) -> None:
    """
    Reject empty batches, negative or non-finite values and fractional step counts.

    Raises:
        InvalidPayload: If the batch is empty or any value is out of range
    """
    if not samples:
        raise InvalidPayload("sample batch is empty")

    magnitude = np.array([s.magnitude for s in samples], dtype=np.float64)
    steps = np.array([s.step_count for s in samples], dtype=np.float64)

    bad_mag = ~np.isfinite(magnitude) | (magnitude < 0)
    if bad_mag.any():
        idx = int(np.argmax(bad_mag))
        raise InvalidPayload(f"sample {idx}: magnitude must be finite and >= 0 (got {samples[idx].magnitude}).")

    bad_steps = ~np.isfinite(steps) | (steps < 0)
    if bad_steps.any():
        idx = int(np.argmax(bad_steps))
        raise InvalidPayload(f"sample {idx}: step_count must be finite and >= 0 (got {samples[idx].step_count}).")

    fractional = steps != np.floor(steps)
    if fractional.any():
        idx = int(np.argmax(fractional))
        raise InvalidPayload(f"sample {idx}: step_count must be a whole number (got {samples[idx].step_count}).")


def batch_delta_seconds(samples: List[MotionSample]) -> int:
    """Observed-at span of the batch in whole seconds, floored at 0."""
    if not samples:
        return 0
    times = [ensure_utc(s.observed_at).timestamp() for s in samples]
    return max(0, int(round(max(times) - min(times))))


def batch_signals(samples: List[MotionSample],
                  stillness_threshold: float = DEFAULT_STILLNESS_THRESHOLD) -> MotionSignals:
    magnitude = np.array([s.magnitude for s in samples], dtype=np.float64)
    steps = np.array([s.step_count for s in samples], dtype=np.float64)
    if magnitude.size == 0:
        return MotionSignals()
    span = batch_delta_seconds(samples)
    return MotionSignals(
        mean_magnitude=float(magnitude.mean()),
        stillness_ratio=float(np.count_nonzero(magnitude < stillness_threshold) / magnitude.size),
        cadence=float(steps.sum() / span) if span > 0 else 0.0,
    )


class SampleIntake:
    """
    Entry point for submitted batches.

    The admission gate (geofence/entry window) runs before this class is
    called and is trusted; intake only checks the payload and event state.
    """

    def __init__(self, gateway, accumulator: ScoreAccumulator,
                 stillness_threshold: float = DEFAULT_STILLNESS_THRESHOLD):
        self.gateway = gateway
        self.accumulator = accumulator
        self.stillness_threshold = stillness_threshold

    def _check_event(self, event_id: str):
        event = self.gateway.get_event(event_id)
        if event is None:
            raise NotFound(f"event {event_id} not found")
        if event.is_ended:
            raise InvalidPayload(f"event {event_id} has ended; scores are read-only")
        return event

    def accept(self, event_id: str, user_id: str, samples: List[MotionSample],
               caller_id: Optional[str] = None) -> IntakeResult:
        """
        Validate and apply one batch.

        Args:
            event_id: Target event
            user_id: Participant the samples belong to
            samples: Ordered batch of observations
            caller_id: Authenticated caller; must match ``user_id`` when given

        Returns:
            IntakeResult with the participant's new score

        Raises:
            InvalidPayload: Empty/out-of-range batch, foreign samples, ended event
            NotFound: Unknown event
            StorageUnavailable: Backing store timed out
        """
        if not event_id or not user_id:
            raise InvalidPayload("event_id and user_id are required")
        if caller_id is not None and caller_id != user_id:
            raise InvalidPayload("caller may only submit samples for itself")
        foreign = [s for s in samples if s.event_id != event_id or s.user_id != user_id]
        if foreign:
            raise InvalidPayload(f"{len(foreign)} sample(s) do not belong to ({event_id}, {user_id})")
        validate_batch(samples)
        self._check_event(event_id)

        delta_seconds = batch_delta_seconds(samples)
        state: ScoreState = self.accumulator.apply_samples(
            event_id, user_id, samples, active_seconds=delta_seconds
        )

        archived = bool(safe_execute(
            self.gateway.archive_samples,
            samples,
            default=None,
            error_context=f"archival of {len(samples)} samples for ({event_id}, {user_id})",
        ))

        return IntakeResult(
            event_id=event_id,
            user_id=user_id,
            accepted=len(samples),
            delta_seconds=delta_seconds,
            score=state.score,
            active_seconds=state.active_seconds,
            signals=batch_signals(samples, self.stillness_threshold),
            archived=archived,
        )
