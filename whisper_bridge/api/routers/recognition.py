"""Speech recognition API router.

Forwards a file path to the long-running whisper worker and returns the
recognized text. Only one recognition runs at a time; concurrent callers
get 429 and are expected to retry.
"""

from __future__ import annotations

import logging
import time
import uuid

from fastapi import APIRouter, HTTPException

from ..models.recognition import RecognitionRequest, RecognitionResponse
from ...worker import get_orchestrator
from ...worker.errors import (
    Busy,
    InvalidPayload,
    ProcessLost,
    ProcessUnavailable,
    RequestTimeout,
    WorkerBridgeError,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["recognition"])

# HTTP status for each request failure
ERROR_STATUS = {
    InvalidPayload: 400,
    ProcessUnavailable: 503,
    Busy: 429,
    RequestTimeout: 504,
    ProcessLost: 502,
}


def _error_detail(code: str, message: str, request_id: str) -> dict:
    return {"code": code, "message": message, "request_id": request_id}


@router.post("/recognize", response_model=RecognitionResponse)
async def recognize(request: RecognitionRequest) -> RecognitionResponse:
    """
    Recognize speech in an audio file.

    The file path is passed to the whisper worker untouched, so it must be
    readable from the worker's working directory.
    """
    request_id = str(uuid.uuid4())
    start_time = time.time()

    if not request.file_path:
        raise HTTPException(
            status_code=400,
            detail=_error_detail(
                "MISSING_FILE_PATH", 'Missing "filePath" in request body.', request_id
            ),
        )

    try:
        result = await get_orchestrator().handle(request.file_path)
    except WorkerBridgeError as e:
        status_code = ERROR_STATUS.get(type(e), 500)
        logger.warning(f"{e.code} for request {request_id}: {e}")
        raise HTTPException(
            status_code=status_code,
            detail=_error_detail(e.code, str(e), request_id),
        )
    except Exception as e:
        error_msg = f"Failed to process audio: {str(e)}"
        logger.error(f"Processing failed for request {request_id}: {error_msg}", exc_info=True)
        raise HTTPException(
            status_code=500,
            detail=_error_detail("PROCESSING_FAILED", error_msg, request_id),
        )

    processing_time_ms = int((time.time() - start_time) * 1000)
    logger.info(
        f"Recognized {result.file_path} in {processing_time_ms}ms (request {request_id})"
    )
    return RecognitionResponse(
        request_id=request_id,
        processing_time_ms=processing_time_ms,
        file_path=result.file_path,
        recognition=result.recognition,
    )
