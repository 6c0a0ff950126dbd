"""
Peak Window Detector

Finds the highest-energy, non-overlapping runs of exactly W buckets in a
dense bucket series.

Selection is greedy: every candidate window is scored with a prefix sum,
candidates are taken in descending order of total, and any candidate whose
bucket-index range intersects an already chosen window is skipped. This is
not the selection that maximizes total covered energy; it surfaces the single
strongest moments first, in O(N log N).
"""

from __future__ import annotations
from datetime import timedelta
from typing import List, Sequence, Tuple
import logging

import numpy as np

from crowdenergy.core.models import EnergyBucket, PeakWindow
from crowdenergy.utils.constants import SECONDS_PER_MINUTE

logger = logging.getLogger(__name__)


def window_length_buckets(window_minutes: int, resolution_seconds: int) -> int:
    """Window length W in buckets; at least one bucket."""
    return max(1, int(round(window_minutes * SECONDS_PER_MINUTE / resolution_seconds)))


def prefix_sums(energies: Sequence[float]) -> np.ndarray:
    """prefix[i] = sum(energies[:i]); length N + 1."""
    return np.concatenate(([0.0], np.cumsum(np.asarray(energies, dtype=np.float64))))


def select_peak_ranges(energies: Sequence[float], window: int, max_windows: int) -> List[Tuple[int, int, float]]:
    """
    Greedy top-K non-overlapping windows.

    Args:
        energies: Dense, uniformly spaced bucket energies (length N)
        window: Window length W in buckets
        max_windows: Maximum number of windows K

    Returns:
        [(start_index, end_index_inclusive, total), ...] by descending total;
        empty when N < W or K <= 0
    """
    n = len(energies)
    if window <= 0 or max_windows <= 0 or n < window:
        return []

    prefix = prefix_sums(energies)
    totals = prefix[window:] - prefix[:-window]          # one per start index, N - W + 1
    order = np.argsort(-totals, kind="stable")          # equal totals keep earlier start first

    chosen: List[Tuple[int, int, float]] = []
    for start in order:
        start = int(start)
        end = start + window - 1
        if any(not (end < c_start or start > c_end) for c_start, c_end, _ in chosen):
            continue
        chosen.append((start, end, float(totals[start])))
        if len(chosen) >= max_windows:
            break
    return chosen


def detect_peak_windows(buckets: List[EnergyBucket], window: int, max_windows: int) -> List[PeakWindow]:
    """Peak windows over a bucket series, with times taken from the buckets."""
    ranges = select_peak_ranges([b.energy for b in buckets], window, max_windows)
    peaks = []
    for start_idx, end_idx, total in ranges:
        first, last = buckets[start_idx], buckets[end_idx]
        peaks.append(
            PeakWindow(
                event_id=first.event_id,
                start_index=start_idx,
                end_index=end_idx,
                start=first.bucket_start,
                end=last.bucket_start + timedelta(seconds=last.width_seconds),
                total_energy=total,
            )
        )
    return peaks
