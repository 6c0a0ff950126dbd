"""
Read-Path Snapshot Cache

Short-TTL, rebuildable projections of leaderboard top-N and energy timelines.
A snapshot is never a source of truth: it is recomputed from score state and
archived samples, and published by swapping a reference so readers always
see a complete old or a complete new snapshot.

Also provides the RefreshScheduler that regenerates snapshots on a fixed
interval.
"""

from __future__ import annotations
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Generic, Hashable, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Snapshot(Generic[T]):
    """One published value with its generation and publish time."""
    key: Hashable
    value: T
    generation: int
    stored_at: datetime

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return (now - self.stored_at).total_seconds()


class SnapshotCache(Generic[T]):
    """
    Keyed snapshots with a per-key generation counter.

    ``publish`` replaces the whole Snapshot object for a key; ``get`` returns
    whichever Snapshot object is current. Values are never mutated in place.
    """

    def __init__(self, name: str, ttl_seconds: float):
        self.name = name
        self.ttl_seconds = ttl_seconds
        self._lock = threading.Lock()
        self._snapshots: Dict[Hashable, Snapshot[T]] = {}
        self._generations: Dict[Hashable, int] = {}
        self._last_read: Dict[Hashable, datetime] = {}

    def get(self, key: Hashable, now: Optional[datetime] = None) -> Optional[Snapshot[T]]:
        """Current snapshot for ``key`` if younger than the TTL, else None."""
        with self._lock:
            snap = self._snapshots.get(key)
            if snap is not None:
                self._last_read[key] = now or datetime.now(timezone.utc)
        if snap is None:
            return None
        if snap.age_seconds(now) > self.ttl_seconds:
            return None
        return snap

    def peek(self, key: Hashable) -> Optional[Snapshot[T]]:
        """Current snapshot regardless of age."""
        with self._lock:
            return self._snapshots.get(key)

    def publish(self, key: Hashable, value: T, now: Optional[datetime] = None) -> Snapshot[T]:
        with self._lock:
            generation = self._generations.get(key, 0) + 1
            snap = Snapshot(
                key=key,
                value=value,
                generation=generation,
                stored_at=now or datetime.now(timezone.utc),
            )
            self._generations[key] = generation
            self._snapshots[key] = snap
            self._last_read.setdefault(key, snap.stored_at)
        logger.debug(f"{self.name}: published {key} generation {generation}")
        return snap

    def get_or_build(self, key: Hashable, build: Callable[[], T], now: Optional[datetime] = None) -> Snapshot[T]:
        """Serve a fresh snapshot or build and publish a new one."""
        snap = self.get(key, now)
        if snap is not None:
            return snap
        snap = self.publish(key, build(), now)
        with self._lock:
            self._last_read[key] = snap.stored_at
        return snap

    def keys(self, predicate: Optional[Callable[[Hashable], bool]] = None) -> List[Hashable]:
        with self._lock:
            return [k for k in self._snapshots if predicate is None or predicate(k)]

    def invalidate(self, key: Hashable) -> bool:
        with self._lock:
            self._last_read.pop(key, None)
            return self._snapshots.pop(key, None) is not None

    def invalidate_where(self, predicate: Callable[[Hashable], bool]) -> int:
        with self._lock:
            doomed = [k for k in self._snapshots if predicate(k)]
            for k in doomed:
                del self._snapshots[k]
                self._last_read.pop(k, None)
        return len(doomed)

    def evict_idle(self, max_idle_seconds: float, now: Optional[datetime] = None) -> int:
        """
        Drop snapshots nobody has read within ``max_idle_seconds``.

        Republishing does not count as a read; a key that was never read ages
        from its first publish.
        """
        now = now or datetime.now(timezone.utc)
        with self._lock:
            doomed = [
                k for k, snap in self._snapshots.items()
                if (now - self._last_read.get(k, snap.stored_at)).total_seconds() > max_idle_seconds
            ]
            for k in doomed:
                del self._snapshots[k]
                self._last_read.pop(k, None)
                self._generations.pop(k, None)
        if doomed:
            logger.info(f"{self.name}: evicted {len(doomed)} idle snapshots")
        return len(doomed)

    def get_cache_status(self, key: Hashable) -> Dict[str, Any]:
        snap = self.peek(key)
        if snap is None:
            return {"cached": False, "cache": self.name, "key": str(key)}
        return {
            "cached": True,
            "cache": self.name,
            "key": str(key),
            "generation": snap.generation,
            "timestamp": snap.stored_at.isoformat(),
            "age_seconds": snap.age_seconds(),
            "fresh": snap.age_seconds() <= self.ttl_seconds,
        }


class RefreshScheduler:
    """
    Calls ``refresh`` every ``interval_seconds`` on a daemon thread.

    A failing refresh is logged and the loop continues; readers keep the last
    published snapshot until the next successful one.
    """

    def __init__(self, refresh: Callable[[], Any], interval_seconds: float, name: str = "snapshot-refresh"):
        self.refresh = refresh
        self.interval_seconds = interval_seconds
        self.name = name
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        logger.info(f"{self.name} started (every {self.interval_seconds}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
        self._thread = None
        logger.info(f"{self.name} stopped")

    def run_once(self) -> None:
        try:
            self.refresh()
        except Exception as e:
            logger.error(f"{self.name}: refresh failed: {type(e).__name__}: {e}")

    def _run(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            self.run_once()
