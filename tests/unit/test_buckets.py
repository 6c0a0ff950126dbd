"""
Unit tests for the Energy Bucketer.
"""

from datetime import timedelta

import numpy as np
import pandas as pd
import pytest

from crowdenergy.common.config import ScoringConfig, TimelineConfig
from crowdenergy.core.buckets import (
    accumulate_buckets,
    bucket_count,
    build_energy_buckets,
    clamp_resolution,
    clamp_window_minutes,
    cumulative_energy,
    make_time_buckets,
)
from crowdenergy.core.models import MotionSample
from crowdenergy.storage import samples_to_frame
from tests.helpers import EVENT_START

TIMELINE = TimelineConfig()
SCORING = ScoringConfig()
END = EVENT_START + timedelta(minutes=10)


def frame(*points):
    """points: (seconds_after_start, magnitude, steps)"""
    return samples_to_frame(
        MotionSample("evt-1", f"u{i}", EVENT_START + timedelta(seconds=sec), mag, steps)
        for i, (sec, mag, steps) in enumerate(points)
    )


class TestClamps:
    """Test resolution and window clamping."""

    @pytest.mark.parametrize("raw,expected", [(None, 30), (float("nan"), 30), ("abc", 30),
                                              (5, 10), (60, 60), (59.6, 60), (5000, 600)])
    def test_resolution(self, raw, expected):
        assert clamp_resolution(raw, TIMELINE) == expected

    @pytest.mark.parametrize("raw,expected", [(None, 3), (0, 1), (2, 2), (45, 30)])
    def test_window(self, raw, expected):
        assert clamp_window_minutes(raw, TIMELINE) == expected


class TestBucketLayout:
    """Test bucket counts and boundaries."""

    def test_ten_minute_window_at_sixty_seconds(self):
        assert bucket_count(EVENT_START, END, 60) == 10

    def test_partial_trailing_bucket(self):
        assert bucket_count(EVENT_START, EVENT_START + timedelta(seconds=61), 60) == 2

    def test_time_buckets_are_contiguous(self):
        windows = make_time_buckets(t0=EVENT_START, duration_s=600, dt_seconds=60)
        assert len(windows) == 10
        for (_, prev_end, _), (next_start, _, _) in zip(windows, windows[1:]):
            assert prev_end == next_start


class TestBuildEnergyBuckets:
    """Test build_energy_buckets."""

    def test_sample_lands_in_its_slot(self):
        buckets = build_energy_buckets(event_id="evt-1", start=EVENT_START, end=END, width_seconds=60,
                                       samples=frame((210, 4.0, 0)), scoring=SCORING)
        assert len(buckets) == 10
        assert buckets[3].bucket_start == EVENT_START + timedelta(minutes=3)
        assert [b.energy for b in buckets] == [0, 0, 0, 4.0, 0, 0, 0, 0, 0, 0]

    def test_gap_filled_and_ascending(self):
        buckets = build_energy_buckets(event_id="evt-1", start=EVENT_START, end=END, width_seconds=30,
                                       samples=frame((5, 1.0, 0), (590, 1.0, 0)), scoring=SCORING)
        assert len(buckets) == 20
        assert [b.index for b in buckets] == list(range(20))
        starts = [b.bucket_start for b in buckets]
        assert starts == sorted(starts)
        assert sum(1 for b in buckets if b.energy == 0) == 18

    def test_sums_across_users_and_uses_raw_contribution(self):
        buckets = build_energy_buckets(event_id="evt-1", start=EVENT_START, end=END, width_seconds=60,
                                       samples=frame((10, 2.0, 1), (20, 80.0, 0)), scoring=SCORING)
        assert buckets[0].energy == pytest.approx(5.0 + SCORING.max_magnitude)

    def test_end_before_start_is_empty(self):
        buckets = build_energy_buckets(event_id="evt-1", start=END, end=EVENT_START, width_seconds=60,
                                       samples=frame((10, 2.0, 0)), scoring=SCORING)
        assert buckets == []

    def test_no_samples_all_zero(self):
        empty = pd.DataFrame(columns=["event_id", "user_id", "ts", "magnitude", "step_count"])
        buckets = build_energy_buckets(event_id="evt-1", start=EVENT_START, end=END, width_seconds=60,
                                       samples=empty, scoring=SCORING)
        assert len(buckets) == 10
        assert all(b.energy == 0 for b in buckets)

    def test_total_equals_in_window_contributions(self):
        buckets = build_energy_buckets(event_id="evt-1", start=EVENT_START, end=END, width_seconds=60,
                                       samples=frame((0, 1.0, 0), (599, 2.0, 0), (600, 9.0, 0)),
                                       scoring=SCORING)
        assert cumulative_energy(buckets)[-1] == pytest.approx(3.0)


class TestAccumulateBuckets:
    """Test the vectorized scatter-add."""

    def test_out_of_range_dropped(self):
        energy = accumulate_buckets(np.array([-1.0, 0.0, 9.9, 10.0]), np.array([1.0, 2.0, 3.0, 4.0]),
                                    t0=0.0, width_seconds=5, nbuckets=2)
        assert energy.tolist() == [2.0, 3.0]
