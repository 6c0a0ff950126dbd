"""
Mapping from engine error kinds to HTTP responses.
"""

from fastapi import HTTPException

from crowdenergy.utils.error_handling import Conflict, EngineError, InvalidPayload, NotFound, StorageUnavailable

RETRY_AFTER_SECONDS = "1"


def to_http_exception(e: EngineError) -> HTTPException:
    if isinstance(e, InvalidPayload):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, NotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, Conflict):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, StorageUnavailable):
        return HTTPException(status_code=503, detail=str(e), headers={"Retry-After": RETRY_AFTER_SECONDS})
    return HTTPException(status_code=500, detail=str(e))
