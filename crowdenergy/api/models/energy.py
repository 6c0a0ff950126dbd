"""
Pydantic Models for the Crowd Energy API

Request and response bodies for sample submission, event registration, the
energy timeline and the leaderboard.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


class MotionObservation(BaseModel):
    """
    One client observation.

    Timestamps are epoch milliseconds (``t`` or ``ts``); magnitude may be sent
    as ``mag``, ``accel`` or ``magnitude``. Raw axes are accepted and ignored.
    """
    model_config = ConfigDict(extra="ignore")

    t: Optional[float] = None
    ts: Optional[float] = None
    mag: Optional[float] = None
    accel: Optional[float] = None
    magnitude: Optional[float] = None
    steps: Optional[float] = None
    step_count: Optional[float] = None
    x: Optional[float] = None
    y: Optional[float] = None
    z: Optional[float] = None


class SubmitSamplesRequest(BaseModel):
    """Body for POST /api/events/{event_id}/samples."""
    user_id: str = Field(..., min_length=1, description="Opaque participant identifier")
    samples: List[MotionObservation] = Field(default_factory=list, description="Ordered batch of observations")

    @field_validator('user_id')
    @classmethod
    def validate_user_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("user_id must not be blank")
        return v


class MotionSignalsModel(BaseModel):
    mean_magnitude: float
    stillness_ratio: float
    cadence: float


class SubmitSamplesResponse(BaseModel):
    ok: bool = True
    score: float
    deltaSeconds: int
    total: int = Field(..., description="Accumulated active seconds for the participant")
    accepted: int
    archived: bool
    signals: MotionSignalsModel


class EventRequest(BaseModel):
    """Body for PUT /api/events/{event_id}."""
    start_at: datetime = Field(..., description="Event start (ISO 8601)")
    end_at: Optional[datetime] = Field(default=None, description="Scheduled end (ISO 8601)")


class EventResponse(BaseModel):
    ok: bool = True
    event_id: str
    status: str
    start_at: datetime
    end_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    alreadyEnded: Optional[bool] = None


class SeriesPointModel(BaseModel):
    t: datetime
    energy: float
    cumulative: float


class PeakModel(BaseModel):
    start: datetime
    end: datetime
    total: float
    startIndex: int
    endIndex: int


class EnergyTimelineResponse(BaseModel):
    ok: bool = True
    event_id: str
    series: List[SeriesPointModel]
    peaks: List[PeakModel]
    meta: Dict[str, Any]


class LeaderboardEntryModel(BaseModel):
    rank: int
    user_id: str
    score: float
    display_name: str
    avatar_ref: Optional[str] = None
    active_seconds: int = 0


class LeaderboardResponse(BaseModel):
    ok: bool = True
    event_id: str
    entries: List[LeaderboardEntryModel]
    participant_count: int
    generation: int
    computed_at: datetime
    self_rank: Optional[int] = None
    self_entry: Optional[LeaderboardEntryModel] = None
