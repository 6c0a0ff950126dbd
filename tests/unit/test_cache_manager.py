"""
Unit tests for SnapshotCache and RefreshScheduler.
"""

import threading
from datetime import timedelta

from crowdenergy.cache_manager import RefreshScheduler, SnapshotCache
from tests.helpers import EVENT_START


class TestSnapshotCache:
    """Test snapshot publish, expiry and invalidation."""

    def test_publish_bumps_generation(self):
        cache = SnapshotCache("test", ttl_seconds=5)
        first = cache.publish("k", [1], now=EVENT_START)
        second = cache.publish("k", [2], now=EVENT_START)
        assert (first.generation, second.generation) == (1, 2)
        assert first.value == [1]
        assert cache.peek("k") is second

    def test_ttl_expiry(self):
        cache = SnapshotCache("test", ttl_seconds=5)
        cache.publish("k", "v", now=EVENT_START)
        assert cache.get("k", now=EVENT_START + timedelta(seconds=5)) is not None
        assert cache.get("k", now=EVENT_START + timedelta(seconds=6)) is None
        assert cache.peek("k").value == "v"

    def test_get_or_build_only_builds_when_stale(self):
        cache = SnapshotCache("test", ttl_seconds=5)
        builds = []

        def build():
            builds.append(1)
            return len(builds)

        cache.get_or_build("k", build, now=EVENT_START)
        cache.get_or_build("k", build, now=EVENT_START + timedelta(seconds=1))
        snap = cache.get_or_build("k", build, now=EVENT_START + timedelta(seconds=10))
        assert len(builds) == 2
        assert snap.generation == 2

    def test_invalidate_where(self):
        cache = SnapshotCache("test", ttl_seconds=5)
        for key in [("e1", 30, 3), ("e1", 60, 3), ("e2", 30, 3)]:
            cache.publish(key, 0)
        assert cache.invalidate_where(lambda k: k[0] == "e1") == 2
        assert cache.keys() == [("e2", 30, 3)]
        assert cache.invalidate(("e2", 30, 3)) is True
        assert cache.invalidate(("e2", 30, 3)) is False

    def test_evict_idle(self):
        """Test that republishing does not keep an unread snapshot alive."""
        cache = SnapshotCache("test", ttl_seconds=5)
        cache.publish("read", 1, now=EVENT_START)
        cache.publish("unread", 1, now=EVENT_START)
        cache.get("read", now=EVENT_START + timedelta(seconds=50))
        cache.publish("unread", 2, now=EVENT_START + timedelta(seconds=50))
        cache.publish("read", 2, now=EVENT_START + timedelta(seconds=50))
        cache.publish("unread", 3, now=EVENT_START + timedelta(seconds=70))

        assert cache.evict_idle(30, now=EVENT_START + timedelta(seconds=75)) == 1
        assert cache.keys() == ["read"]
        assert cache.evict_idle(30, now=EVENT_START + timedelta(seconds=81)) == 1
        assert cache.keys() == []

    def test_evicted_key_restarts_generation(self):
        cache = SnapshotCache("test", ttl_seconds=5)
        cache.publish("k", 1, now=EVENT_START)
        cache.evict_idle(10, now=EVENT_START + timedelta(seconds=11))
        assert cache.publish("k", 2, now=EVENT_START).generation == 1

    def test_cache_status(self):
        cache = SnapshotCache("test", ttl_seconds=5)
        assert cache.get_cache_status("k")["cached"] is False
        cache.publish("k", 1)
        status = cache.get_cache_status("k")
        assert status["cached"] is True
        assert status["generation"] == 1


class TestRefreshScheduler:
    """Test the background refresh loop."""

    def test_run_once_swallows_failures(self):
        def boom():
            raise RuntimeError("refresh failed")

        RefreshScheduler(boom, interval_seconds=1).run_once()

    def test_runs_until_stopped(self):
        ran = threading.Event()
        scheduler = RefreshScheduler(ran.set, interval_seconds=0.01)
        scheduler.start()
        try:
            assert ran.wait(timeout=2.0)
            assert scheduler.running
        finally:
            scheduler.stop(timeout=1.0)
        assert not scheduler.running
