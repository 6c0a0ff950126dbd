"""
API Routes for the Event Registry

Events define the window every timeline and leaderboard read is computed
over. Ending an event freezes its scores.
"""

import logging

from fastapi import APIRouter

from crowdenergy.api.models.energy import EventRequest, EventResponse
from crowdenergy.core.engine import get_engine
from crowdenergy.core.models import Event
from crowdenergy.routes.errors import to_http_exception
from crowdenergy.utils.error_handling import EngineError

logger = logging.getLogger(__name__)

router = APIRouter()


def event_to_response(event: Event, now, already_ended=None) -> EventResponse:
    return EventResponse(
        event_id=event.event_id,
        status=event.status(now),
        start_at=event.start_at,
        end_at=event.end_at,
        ended_at=event.ended_at,
        alreadyEnded=already_ended,
    )


@router.put("/api/events/{event_id}", response_model=EventResponse)
def put_event(event_id: str, body: EventRequest):
    """Create or reschedule an event."""
    engine = get_engine()
    try:
        event = engine.register_event(event_id, body.start_at, body.end_at)
    except EngineError as e:
        logger.warning(f"Event {event_id} not registered: {type(e).__name__}: {e}")
        raise to_http_exception(e)
    return event_to_response(event, engine.clock())


@router.get("/api/events/{event_id}", response_model=EventResponse)
def get_event(event_id: str):
    engine = get_engine()
    try:
        event = engine.get_event(event_id)
    except EngineError as e:
        raise to_http_exception(e)
    return event_to_response(event, engine.clock())


@router.post("/api/events/{event_id}/end", response_model=EventResponse)
def end_event(event_id: str):
    """End an event. Ending an already ended event is a no-op."""
    engine = get_engine()
    try:
        event, already_ended = engine.end_event(event_id)
    except EngineError as e:
        raise to_http_exception(e)
    return event_to_response(event, engine.clock(), already_ended)
