"""
API Routes for the Leaderboard

GET /api/events/{event_id}/leaderboard returns the top-N participants and,
optionally, the requesting participant's own rank.
"""

from typing import Optional
import logging

from fastapi import APIRouter, Query

from crowdenergy.api.models.energy import LeaderboardEntryModel, LeaderboardResponse
from crowdenergy.core.engine import LeaderboardView, get_engine
from crowdenergy.core.models import LeaderboardEntry
from crowdenergy.routes.errors import to_http_exception
from crowdenergy.utils.constants import DEFAULT_TOP_N, MAX_TOP_N
from crowdenergy.utils.error_handling import EngineError

logger = logging.getLogger(__name__)

router = APIRouter()


def entry_to_model(entry: LeaderboardEntry) -> LeaderboardEntryModel:
    return LeaderboardEntryModel(
        rank=entry.rank,
        user_id=entry.user_id,
        score=entry.score,
        display_name=entry.display_name,
        avatar_ref=entry.avatar_ref,
        active_seconds=entry.active_seconds,
    )


def view_to_response(view: LeaderboardView) -> LeaderboardResponse:
    return LeaderboardResponse(
        event_id=view.event_id,
        entries=[entry_to_model(e) for e in view.entries],
        participant_count=view.participant_count,
        generation=view.generation,
        computed_at=view.computed_at,
        self_rank=view.self_rank,
        self_entry=entry_to_model(view.self_entry) if view.self_entry else None,
    )


@router.get("/api/events/{event_id}/leaderboard", response_model=LeaderboardResponse)
def get_leaderboard(
    event_id: str,
    top_n: int = Query(default=DEFAULT_TOP_N, le=MAX_TOP_N, description="Number of entries to return"),
    user_id: Optional[str] = Query(default=None, description="Participant whose own rank to include"),
):
    """Get the ranked leaderboard for an event."""
    engine = get_engine()
    try:
        view = engine.get_leaderboard(event_id, top_n, user_id=user_id)
    except EngineError as e:
        logger.warning(f"Leaderboard for {event_id} failed: {type(e).__name__}: {e}")
        raise to_http_exception(e)
    return view_to_response(view)
