"""
API Routes for the Energy Timeline

GET /api/events/{event_id}/energy returns the gap-filled crowd energy series,
its running total and the top peak windows.
"""

from typing import Optional
import logging

from fastapi import APIRouter, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import Response

from crowdenergy.api.models.energy import EnergyTimelineResponse, PeakModel, SeriesPointModel
from crowdenergy.core.engine import EnergyTimeline, get_engine
from crowdenergy.routes.errors import to_http_exception
from crowdenergy.utils.error_handling import EngineError

logger = logging.getLogger(__name__)

router = APIRouter()

# Starlette has no named constant for nginx's "client closed request"
CLIENT_CLOSED_REQUEST = 499


def timeline_to_response(timeline: EnergyTimeline) -> EnergyTimelineResponse:
    return EnergyTimelineResponse(
        event_id=timeline.event_id,
        series=[SeriesPointModel(t=p.t, energy=p.energy, cumulative=p.cumulative) for p in timeline.series],
        peaks=[
            PeakModel(
                start=pk.start,
                end=pk.end,
                total=pk.total_energy,
                startIndex=pk.start_index,
                endIndex=pk.end_index,
            )
            for pk in timeline.peaks
        ],
        meta=timeline.meta,
    )


@router.get("/api/events/{event_id}/energy", response_model=EnergyTimelineResponse)
async def get_energy_timeline(
    request: Request,
    event_id: str,
    resolutionSec: Optional[str] = Query(default=None, description="Bucket width in seconds (clamped 10-600; invalid falls back to 30)"),
    windowMin: Optional[str] = Query(default=None, description="Peak window length in minutes (clamped 1-30; invalid falls back to 3)"),
):
    """
    Get the energy timeline for an event.

    Out-of-range parameters are clamped rather than rejected. A client that
    disconnects before the computation starts gets no work done on its behalf.
    """
    if await request.is_disconnected():
        logger.info(f"Client left before energy timeline for {event_id} was computed")
        return Response(status_code=CLIENT_CLOSED_REQUEST)

    engine = get_engine()
    try:
        timeline = await run_in_threadpool(engine.get_energy_timeline, event_id, resolutionSec, windowMin)
    except EngineError as e:
        logger.warning(f"Energy timeline for {event_id} failed: {type(e).__name__}: {e}")
        raise to_http_exception(e)
    return timeline_to_response(timeline)
