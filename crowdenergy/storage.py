"""
Storage Collaborators for the Crowd Energy Engine

The engine does not own durable storage. This module defines the interfaces
it consumes (score/event store, sample archive, profile directory), in-memory
and filesystem implementations for local runs and tests, and the
StorageGateway that puts a timeout on every call.
"""

from __future__ import annotations
import json
import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import pandas as pd

from crowdenergy.core.models import Event, MotionSample, Profile, ScoreState, ensure_utc
from crowdenergy.utils.constants import DEFAULT_STORAGE_TIMEOUT_SECONDS
from crowdenergy.utils.error_handling import Conflict, EngineError, StorageUnavailable, handle_specific_exceptions

logger = logging.getLogger(__name__)

SAMPLE_COLUMNS = ["event_id", "user_id", "ts", "magnitude", "step_count"]


def samples_to_frame(samples: Iterable[MotionSample]) -> pd.DataFrame:
    """Flatten samples into the archive's columnar layout (ts = epoch seconds)."""
    rows = [
        {
            "event_id": s.event_id,
            "user_id": s.user_id,
            "ts": ensure_utc(s.observed_at).timestamp(),
            "magnitude": float(s.magnitude),
            "step_count": int(s.step_count),
        }
        for s in samples
    ]
    return pd.DataFrame(rows, columns=SAMPLE_COLUMNS)


def _filter_range(df: pd.DataFrame, event_id: str, start: datetime, end: datetime) -> pd.DataFrame:
    if df.empty:
        return df
    t0 = ensure_utc(start).timestamp()
    t1 = ensure_utc(end).timestamp()
    mask = (df["event_id"] == event_id) & (df["ts"] >= t0) & (df["ts"] < t1)
    return df.loc[mask].reset_index(drop=True)


# ===== Interfaces =====

class ScoreStore(ABC):
    """Upsert-by-key store for ScoreState rows."""

    @abstractmethod
    def get_score(self, event_id: str, user_id: str) -> Optional[ScoreState]:
        pass

    @abstractmethod
    def upsert_score(self, state: ScoreState, expected_version: int) -> ScoreState:
        """Write ``state`` if the stored version equals ``expected_version``; else raise Conflict."""
        pass

    @abstractmethod
    def list_scores(self, event_id: str) -> List[ScoreState]:
        pass


class EventStore(ABC):

    @abstractmethod
    def get_event(self, event_id: str) -> Optional[Event]:
        pass

    @abstractmethod
    def put_event(self, event: Event) -> Event:
        pass

    @abstractmethod
    def list_event_ids(self) -> List[str]:
        pass


class SampleArchive(ABC):
    """Append-only archive of accepted samples with point-in-time range reads."""

    @abstractmethod
    def append(self, samples: List[MotionSample]) -> int:
        pass

    @abstractmethod
    def read_range(self, event_id: str, start: datetime, end: datetime) -> pd.DataFrame:
        """Samples with ``start <= observed_at < end`` as a DataFrame with SAMPLE_COLUMNS."""
        pass


class ProfileDirectory(ABC):

    @abstractmethod
    def get_profiles(self, user_ids: List[str]) -> Dict[str, Profile]:
        pass


# ===== In-memory implementations =====

class InMemoryStore(ScoreStore, EventStore):
    """Process-local score and event store with versioned upserts."""

    def __init__(self):
        self._lock = threading.Lock()
        self._scores: Dict[Tuple[str, str], ScoreState] = {}
        self._events: Dict[str, Event] = {}

    def get_score(self, event_id: str, user_id: str) -> Optional[ScoreState]:
        with self._lock:
            return self._scores.get((event_id, user_id))

    def upsert_score(self, state: ScoreState, expected_version: int) -> ScoreState:
        with self._lock:
            current = self._scores.get(state.key)
            current_version = current.version if current else 0
            if current_version != expected_version:
                raise Conflict(
                    f"score {state.key} at version {current_version}, expected {expected_version}"
                )
            self._scores[state.key] = state
            return state

    def list_scores(self, event_id: str) -> List[ScoreState]:
        with self._lock:
            return [s for (eid, _), s in self._scores.items() if eid == event_id]

    def get_event(self, event_id: str) -> Optional[Event]:
        with self._lock:
            return self._events.get(event_id)

    def put_event(self, event: Event) -> Event:
        with self._lock:
            self._events[event.event_id] = event
            return event

    def list_event_ids(self) -> List[str]:
        with self._lock:
            return list(self._events)


class InMemorySampleArchive(SampleArchive):
    """Keeps archived batches as DataFrames; reads concatenate a snapshot."""

    def __init__(self):
        self._lock = threading.Lock()
        self._frames: Dict[str, List[pd.DataFrame]] = {}

    def append(self, samples: List[MotionSample]) -> int:
        df = samples_to_frame(samples)
        with self._lock:
            for event_id, part in df.groupby("event_id", sort=False):
                self._frames.setdefault(event_id, []).append(part)
        return len(df)

    def read_range(self, event_id: str, start: datetime, end: datetime) -> pd.DataFrame:
        with self._lock:
            frames = list(self._frames.get(event_id, []))
        if not frames:
            return pd.DataFrame(columns=SAMPLE_COLUMNS)
        return _filter_range(pd.concat(frames, ignore_index=True), event_id, start, end)


class FileSystemSampleArchive(SampleArchive):
    """
    Archive that appends each batch to ``<root>/<event_id>.jsonl``.

    Intended for local development; one file per event, one JSON object per
    sample.
    """

    def __init__(self, root: str = "archive/samples"):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        logger.info(f"File system sample archive initialized at {self.root.absolute()}")

    def _event_path(self, event_id: str) -> Path:
        return self.root / f"{event_id}.jsonl"

    @handle_specific_exceptions((OSError,), error_context="sample archive append")
    def append(self, samples: List[MotionSample]) -> int:
        df = samples_to_frame(samples)
        with self._lock:
            for event_id, part in df.groupby("event_id", sort=False):
                with self._event_path(event_id).open("a", encoding="utf-8") as f:
                    for record in part.to_dict("records"):
                        f.write(json.dumps(record) + "\n")
        return len(df)

    def read_range(self, event_id: str, start: datetime, end: datetime) -> pd.DataFrame:
        path = self._event_path(event_id)
        with self._lock:
            if not path.exists() or path.stat().st_size == 0:
                return pd.DataFrame(columns=SAMPLE_COLUMNS)
            df = pd.read_json(path, lines=True, dtype={"event_id": str, "user_id": str}, convert_dates=False)
        return _filter_range(df[SAMPLE_COLUMNS], event_id, start, end)


class InMemoryProfileDirectory(ProfileDirectory):

    def __init__(self, profiles: Optional[Iterable[Profile]] = None):
        self._profiles: Dict[str, Profile] = {p.user_id: p for p in (profiles or [])}

    def put(self, profile: Profile) -> None:
        self._profiles[profile.user_id] = profile

    def get_profiles(self, user_ids: List[str]) -> Dict[str, Profile]:
        return {uid: self._profiles[uid] for uid in user_ids if uid in self._profiles}


# ===== Timeout gateway =====

_STORAGE_POOL = ThreadPoolExecutor(max_workers=16, thread_name_prefix="crowdenergy-storage")


def call_with_timeout(func: Callable, *args, timeout: float = DEFAULT_STORAGE_TIMEOUT_SECONDS,
                      operation: str = "", drain: bool = False, **kwargs):
    """
    Run a storage call with a deadline.

    Engine errors (Conflict, NotFound, ...) pass through unchanged; timeouts and
    connection-level failures become StorageUnavailable.

    A running call cannot be cancelled. With ``drain=True`` (writes), a timed-out
    call gets one more ``timeout`` to finish; if it completes in that time its
    outcome is returned or raised as usual, so the caller never reports failure
    for a write that committed.
    """
    name = operation or func.__name__
    future = _STORAGE_POOL.submit(func, *args, **kwargs)
    done, _ = wait([future], timeout=timeout)
    if not done and drain:
        done, _ = wait([future], timeout=timeout)
        if done:
            logger.warning(f"Storage call {name} finished after its {timeout}s deadline")
    if not done:
        future.cancel()
        logger.error(f"Storage call {name} timed out after {timeout}s")
        raise StorageUnavailable(f"{name} timed out after {timeout}s")
    try:
        return future.result()
    except EngineError:
        raise
    except (ConnectionError, OSError, TimeoutError) as e:
        logger.error(f"Storage call {name} failed: {e}")
        raise StorageUnavailable(f"{name} failed: {e}") from e


class StorageGateway:
    """
    The engine's single entry point to its collaborators.

    Every call carries ``timeout`` seconds; profile lookups and archival are
    optional collaborators. Score writes are drained for one extra ``timeout``
    before being reported as unavailable; a write still running after that may
    commit later, so a client retry of the same batch can count it twice.
    """

    def __init__(
        self,
        store: ScoreStore,
        events: EventStore,
        archive: Optional[SampleArchive] = None,
        profiles: Optional[ProfileDirectory] = None,
        timeout: float = DEFAULT_STORAGE_TIMEOUT_SECONDS,
    ):
        self.store = store
        self.events = events
        self.archive = archive
        self.profiles = profiles
        self.timeout = timeout

    def _call(self, func: Callable, *args, operation: str, drain: bool = False):
        return call_with_timeout(func, *args, timeout=self.timeout, operation=operation, drain=drain)

    def get_score(self, event_id: str, user_id: str) -> Optional[ScoreState]:
        return self._call(self.store.get_score, event_id, user_id, operation="get_score")

    def upsert_score(self, state: ScoreState, expected_version: int) -> ScoreState:
        return self._call(self.store.upsert_score, state, expected_version, operation="upsert_score", drain=True)

    def list_scores(self, event_id: str) -> List[ScoreState]:
        return self._call(self.store.list_scores, event_id, operation="list_scores")

    def get_event(self, event_id: str) -> Optional[Event]:
        return self._call(self.events.get_event, event_id, operation="get_event")

    def put_event(self, event: Event) -> Event:
        return self._call(self.events.put_event, event, operation="put_event")

    def list_event_ids(self) -> List[str]:
        return self._call(self.events.list_event_ids, operation="list_event_ids")

    def archive_samples(self, samples: List[MotionSample]) -> int:
        if self.archive is None:
            return 0
        return self._call(self.archive.append, samples, operation="archive_samples")

    def read_samples(self, event_id: str, start: datetime, end: datetime) -> pd.DataFrame:
        if self.archive is None:
            return pd.DataFrame(columns=SAMPLE_COLUMNS)
        return self._call(self.archive.read_range, event_id, start, end, operation="read_samples")

    def get_profiles(self, user_ids: List[str]) -> Dict[str, Profile]:
        if self.profiles is None or not user_ids:
            return {}
        return self._call(self.profiles.get_profiles, user_ids, operation="get_profiles")


def create_in_memory_gateway(timeout: float = DEFAULT_STORAGE_TIMEOUT_SECONDS,
                             archive_dir: Optional[str] = None) -> StorageGateway:
    """Build a gateway over in-memory collaborators (filesystem archive if ``archive_dir`` is set)."""
    store = InMemoryStore()
    archive: SampleArchive = FileSystemSampleArchive(archive_dir) if archive_dir else InMemorySampleArchive()
    return StorageGateway(
        store=store,
        events=store,
        archive=archive,
        profiles=InMemoryProfileDirectory(),
        timeout=timeout,
    )
