"""
API Routes for Motion Sample Submission

POST /api/events/{event_id}/samples applies one batch of observations to the
caller's running score.
"""

from typing import Optional
import logging

from fastapi import APIRouter, Header

from crowdenergy.api.models.energy import MotionSignalsModel, SubmitSamplesRequest, SubmitSamplesResponse
from crowdenergy.core.engine import get_engine
from crowdenergy.core.intake import observation_from_dict
from crowdenergy.routes.errors import to_http_exception
from crowdenergy.utils.error_handling import EngineError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/api/events/{event_id}/samples", response_model=SubmitSamplesResponse)
def submit_samples(event_id: str, body: SubmitSamplesRequest,
                   x_user_id: Optional[str] = Header(default=None)):
    """
    Submit one batch of motion samples.

    The ``X-User-Id`` header identifies the caller when an upstream gateway
    provides it; callers may only submit for themselves.
    """
    engine = get_engine()
    try:
        received_at = engine.clock()
        samples = [
            observation_from_dict(obs.model_dump(exclude_none=True), event_id, body.user_id, received_at)
            for obs in body.samples
        ]
        result = engine.submit_samples(event_id, body.user_id, samples, caller_id=x_user_id)
    except EngineError as e:
        logger.warning(f"Rejected samples for ({event_id}, {body.user_id}): {type(e).__name__}: {e}")
        raise to_http_exception(e)

    return SubmitSamplesResponse(
        score=result.score,
        deltaSeconds=result.delta_seconds,
        total=result.active_seconds,
        accepted=result.accepted,
        archived=result.archived,
        signals=MotionSignalsModel(
            mean_magnitude=result.signals.mean_magnitude,
            stillness_ratio=result.signals.stillness_ratio,
            cadence=result.signals.cadence,
        ),
    )
