"""
Unit tests for the Peak Window Detector.
"""

from datetime import timedelta

from crowdenergy.core.models import EnergyBucket
from crowdenergy.core.peaks import detect_peak_windows, prefix_sums, select_peak_ranges, window_length_buckets
from tests.helpers import EVENT_START


def buckets_from(energies, width=60):
    return [
        EnergyBucket("evt-1", i, EVENT_START + timedelta(seconds=i * width), width, float(e))
        for i, e in enumerate(energies)
    ]


class TestWindowLength:
    """Test conversion of window minutes to buckets."""

    def test_basic(self):
        assert window_length_buckets(3, 30) == 6
        assert window_length_buckets(1, 600) == 1


class TestSelectPeakRanges:
    """Test greedy non-overlapping selection."""

    def test_documented_example(self):
        ranges = select_peak_ranges([1, 1, 9, 9, 1, 1, 1, 1], window=2, max_windows=5)
        assert ranges[0] == (2, 3, 18.0)
        assert ranges == [(2, 3, 18.0), (0, 1, 2.0), (4, 5, 2.0), (6, 7, 2.0)]

    def test_windows_never_overlap(self):
        ranges = select_peak_ranges([5, 1, 7, 3, 8, 2, 6, 4, 9, 0], window=3, max_windows=5)
        covered = set()
        for start, end, _ in ranges:
            span = set(range(start, end + 1))
            assert not covered & span
            covered |= span

    def test_totals_descending_and_exact(self):
        energies = [3, 0, 4, 4, 0, 1, 2]
        ranges = select_peak_ranges(energies, window=2, max_windows=3)
        totals = [t for _, _, t in ranges]
        assert totals == sorted(totals, reverse=True)
        for start, end, total in ranges:
            assert total == sum(energies[start:end + 1])

    def test_shorter_than_window(self):
        assert select_peak_ranges([1, 2], window=3, max_windows=5) == []

    def test_limits_to_k(self):
        assert len(select_peak_ranges([1] * 20, window=1, max_windows=5)) == 5

    def test_prefix_sums(self):
        assert prefix_sums([1, 2, 3]).tolist() == [0.0, 1.0, 3.0, 6.0]


class TestDetectPeakWindows:
    """Test peak windows mapped back to time."""

    def test_times_cover_whole_buckets(self):
        peaks = detect_peak_windows(buckets_from([1, 1, 9, 9, 1, 1, 1, 1]), window=2, max_windows=1)
        assert len(peaks) == 1
        peak = peaks[0]
        assert peak.start == EVENT_START + timedelta(minutes=2)
        assert peak.end == EVENT_START + timedelta(minutes=4)
        assert peak.total_energy == 18.0

    def test_empty_series(self):
        assert detect_peak_windows([], window=1, max_windows=5) == []
