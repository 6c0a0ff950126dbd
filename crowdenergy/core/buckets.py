"""
Energy Bucketer

Rolls raw per-sample contributions from every participant into fixed-width,
gap-filled time buckets over an event window ``[start, end)``.

Buckets sum the raw contribution f(sample) observed inside each slot, not the
decayed running score, so a bucket's value reflects activity during that slot
regardless of anyone's long-run decay state. Slot ``i`` covers
``[start + i*width, start + (i+1)*width)``; a window of duration D always
yields ``ceil(D / width)`` buckets.
"""

from __future__ import annotations
from datetime import datetime, timedelta
from typing import List, Optional, Tuple
import logging
import math

import numpy as np
import pandas as pd

from crowdenergy.common.config import ScoringConfig, TimelineConfig
from crowdenergy.core.models import EnergyBucket, ensure_utc
from crowdenergy.core.scoring import contributions

logger = logging.getLogger(__name__)


def _is_usable(value) -> bool:
    if value is None or isinstance(value, bool):
        return False
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False


def clamp_resolution(seconds, cfg: TimelineConfig) -> int:
    """Missing/non-finite → default; otherwise rounded and clamped to the supported range."""
    if not _is_usable(seconds):
        return cfg.default_resolution_seconds
    value = int(round(float(seconds)))
    return min(max(value, cfg.min_resolution_seconds), cfg.max_resolution_seconds)


def clamp_window_minutes(minutes, cfg: TimelineConfig) -> int:
    """Missing/non-finite → default; otherwise rounded and clamped to the supported range."""
    if not _is_usable(minutes):
        return cfg.default_window_minutes
    value = int(round(float(minutes)))
    return min(max(value, cfg.min_window_minutes), cfg.max_window_minutes)


def normalize_window(start: datetime, end: Optional[datetime]) -> Tuple[datetime, datetime]:
    """UTC-normalize the window; an end before start collapses to start."""
    start = ensure_utc(start)
    end = ensure_utc(end) if end is not None else start
    return start, max(end, start)


def bucket_count(start: datetime, end: datetime, width_seconds: int) -> int:
    duration = (end - start).total_seconds()
    if duration <= 0:
        return 0
    return int(math.ceil(duration / width_seconds))


def make_time_buckets(*, t0: datetime, duration_s: float, dt_seconds: int) -> List[Tuple[datetime, datetime, int]]:
    """Produce [(t_start, t_end, bucket_index), ...] in UTC."""
    assert dt_seconds > 0 and duration_s >= 0
    out: List[Tuple[datetime, datetime, int]] = []
    n = int(math.ceil(duration_s / dt_seconds)) if duration_s else 0
    for i in range(n):
        ts = t0 + timedelta(seconds=i * dt_seconds)
        te = ts + timedelta(seconds=dt_seconds)
        out.append((ts, te, i))
    return out


def accumulate_buckets(ts: np.ndarray, values: np.ndarray, t0: float,
                       width_seconds: int, nbuckets: int) -> np.ndarray:
    """
    Vectorized scatter-add of ``values`` into ``nbuckets`` slots.

    Args:
        ts: Epoch-second timestamps of each contribution
        values: Contribution for each timestamp
        t0: Epoch seconds of bucket 0's start
        width_seconds: Bucket width
        nbuckets: Number of slots in the window

    Returns:
        float64 [nbuckets] of summed energy; contributions outside the window are dropped
    """
    energy = np.zeros(nbuckets, dtype=np.float64)
    if nbuckets <= 0 or len(ts) == 0:
        return energy
    ts = np.asarray(ts, dtype=np.float64)
    values = np.asarray(values, dtype=np.float64)
    idx = np.floor((ts - t0) / width_seconds).astype(np.int64)
    inside = (idx >= 0) & (idx < nbuckets)
    np.add.at(energy, idx[inside], values[inside])
    return energy


def build_energy_buckets(
    *,
    event_id: str,
    start: datetime,
    end: Optional[datetime],
    width_seconds: int,
    samples: pd.DataFrame,
    scoring: ScoringConfig,
) -> List[EnergyBucket]:
    """
    Build the complete, ascending, gap-filled bucket series for an event window.

    ``samples`` is a snapshot with ``ts`` (epoch seconds), ``magnitude`` and
    ``step_count`` columns from every participant; each row contributes
    f(sample) to the bucket containing its timestamp.
    """
    if width_seconds <= 0:
        raise ValueError(f"width_seconds must be positive (got {width_seconds}).")
    start, end = normalize_window(start, end)
    windows = make_time_buckets(t0=start, duration_s=(end - start).total_seconds(), dt_seconds=width_seconds)

    if samples is None or samples.empty:
        energy = np.zeros(len(windows), dtype=np.float64)
    else:
        values = contributions(samples["magnitude"].to_numpy(), samples["step_count"].to_numpy(), scoring)
        energy = accumulate_buckets(
            samples["ts"].to_numpy(), values, start.timestamp(), width_seconds, len(windows)
        )

    buckets = [
        EnergyBucket(
            event_id=event_id,
            index=i,
            bucket_start=t_start,
            width_seconds=width_seconds,
            energy=float(energy[i]),
        )
        for (t_start, _t_end, i) in windows
    ]
    logger.debug(
        f"event {event_id}: {len(buckets)} buckets of {width_seconds}s, "
        f"{int(np.count_nonzero(energy))} non-zero"
    )
    return buckets


def cumulative_energy(buckets: List[EnergyBucket]) -> np.ndarray:
    """Running total of bucket energy, aligned with ``buckets``."""
    return np.cumsum(np.array([b.energy for b in buckets], dtype=np.float64))
