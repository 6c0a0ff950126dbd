"""
Crowd Energy Data Models

Defines the core data structures for motion samples, per-participant score
state, energy buckets, peak windows, leaderboard entries and the event window
they are computed over.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Optional

from crowdenergy.utils.constants import (
    DISPLAY_NAME_ELLIPSIS,
    DISPLAY_NAME_PREFIX_CHARS,
    DISPLAY_NAME_SUFFIX_CHARS,
    EVENT_STATUS_ENDED,
    EVENT_STATUS_LIVE,
    EVENT_STATUS_SCHEDULED,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class MotionSample:
    """
    One raw motion observation from a participant's device.

    Attributes:
        event_id: Event the sample was recorded at
        user_id: Opaque participant identifier
        observed_at: Device timestamp of the observation (UTC)
        magnitude: Acceleration magnitude (>= 0)
        step_count: Steps counted since the previous sample (>= 0)
    """
    event_id: str
    user_id: str
    observed_at: datetime
    magnitude: float
    step_count: int = 0


@dataclass(frozen=True)
class ScoreState:
    """
    Decayed running score for one participant at one event.

    ``version`` increases on every successful write and is used by stores for
    compare-and-swap upserts.
    """
    event_id: str
    user_id: str
    score: float = 0.0
    last_update_at: Optional[datetime] = None
    active_seconds: int = 0
    version: int = 0

    @property
    def key(self):
        return (self.event_id, self.user_id)

    def advance(self, score: float, updated_at: datetime, active_seconds: int = 0) -> "ScoreState":
        """Return the successor state produced by one accepted update."""
        return replace(
            self,
            score=score,
            last_update_at=updated_at,
            active_seconds=self.active_seconds + active_seconds,
            version=self.version + 1,
        )


@dataclass(frozen=True)
class EnergyBucket:
    event_id: str
    index: int
    bucket_start: datetime
    width_seconds: int
    energy: float = 0.0

    @property
    def bucket_end(self) -> datetime:
        return self.bucket_start + timedelta(seconds=self.width_seconds)


@dataclass(frozen=True)
class PeakWindow:
    """
    Contiguous run of buckets with a high summed energy.

    ``start_index``/``end_index`` are inclusive bucket indices; ``end`` is
    exclusive in time (start of the bucket after ``end_index``).
    """
    event_id: str
    start_index: int
    end_index: int
    start: datetime
    end: datetime
    total_energy: float


@dataclass(frozen=True)
class Profile:
    """Profile metadata owned by the profile collaborator."""
    user_id: str
    display_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar_ref: Optional[str] = None

    def resolved_name(self) -> str:
        """display_name first, then 'first last', else empty."""
        dn = (self.display_name or "").strip()
        if dn:
            return dn
        parts = [(self.first_name or "").strip(), (self.last_name or "").strip()]
        return " ".join(p for p in parts if p).strip()


def fallback_display_name(user_id: str) -> str:
    """Shortened user id shown when a participant has no profile name."""
    return f"{user_id[:DISPLAY_NAME_PREFIX_CHARS]}{DISPLAY_NAME_ELLIPSIS}{user_id[-DISPLAY_NAME_SUFFIX_CHARS:]}"


@dataclass(frozen=True)
class LeaderboardEntry:
    event_id: str
    user_id: str
    score: float
    rank: int
    display_name: str = ""
    avatar_ref: Optional[str] = None
    active_seconds: int = 0


@dataclass
class Event:
    """
    Event window used by every read path.

    Attributes:
        event_id: Unique event identifier
        start_at: Scheduled start (UTC)
        end_at: Scheduled end (UTC), optional
        ended_at: Actual end recorded when the event is ended, optional
    """
    event_id: str
    start_at: datetime
    end_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        self.start_at = ensure_utc(self.start_at)
        if self.end_at is not None:
            self.end_at = ensure_utc(self.end_at)
        if self.ended_at is not None:
            self.ended_at = ensure_utc(self.ended_at)

    @property
    def is_ended(self) -> bool:
        return self.ended_at is not None

    def status(self, now: Optional[datetime] = None) -> str:
        if self.is_ended:
            return EVENT_STATUS_ENDED
        now = now or utc_now()
        return EVENT_STATUS_LIVE if now >= self.start_at else EVENT_STATUS_SCHEDULED

    def window_end(self, now: Optional[datetime] = None) -> datetime:
        """Recorded end, else scheduled end, else now; never before start."""
        end = self.ended_at or self.end_at or (now or utc_now())
        return max(end, self.start_at)
