"""
Deferred-job queue endpoints: enqueue heavy work and inspect queue depth.
"""
from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.api.deps import get_queue_manager
from app.jobs.job import QueueBackendError
from app.jobs.queue_manager import QueueManager
from app.models.schemas.base import ResponseBase
from app.models.schemas.queue import (
    EmbeddingEnqueueRequest,
    QueueStatus,
    TranscodingEnqueueRequest,
    TranscriptionEnqueueRequest,
)
from app.utils import get_logger

router = APIRouter()
logger = get_logger(__name__)


def _enqueue_failed(exc: Exception, queue: str, request_id: str) -> HTTPException:
    if isinstance(exc, QueueBackendError):
        logger.error("Queue backend unavailable", queue=queue, error=str(exc), request_id=request_id)
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Queue backend unavailable")
    logger.warning("Queue at capacity", queue=queue, error=str(exc), request_id=request_id)
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))


@router.get("", response_model=ResponseBase, summary="Status of every queue")
async def list_queue_statuses(manager: QueueManager = Depends(get_queue_manager)) -> ResponseBase:
    try:
        statuses = manager.get_all_statuses()
    except QueueBackendError as e:
        raise HTTPException(status_code=503, detail=f"Queue backend unavailable: {e}")
    return ResponseBase(
        message="Queue statuses",
        data={"queues": [QueueStatus(queue=name, **counts).model_dump() for name, counts in statuses.items()]},
    )


@router.get("/{queue_name}/status", response_model=ResponseBase, summary="Status of one queue")
async def get_queue_status(queue_name: str, manager: QueueManager = Depends(get_queue_manager)) -> ResponseBase:
    try:
        counts = manager.get_status(queue_name)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Queue '{queue_name}' not found")
    except QueueBackendError as e:
        raise HTTPException(status_code=503, detail=f"Queue backend unavailable: {e}")
    return ResponseBase(message="Queue status", data=QueueStatus(queue=queue_name, **counts).model_dump())


@router.post(
    "/embedding",
    response_model=ResponseBase,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Enqueue course embedding generation",
)
async def enqueue_embedding(
    body: EmbeddingEnqueueRequest,
    request: Request,
    manager: QueueManager = Depends(get_queue_manager),
) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    try:
        handle = manager.enqueue_embedding(body.course_id, body.course_data, priority=body.priority)
    except (QueueBackendError, OverflowError) as e:
        raise _enqueue_failed(e, "embedding-generation", request_id)
    return ResponseBase(
        message="Embedding job already queued" if handle.duplicate else "Embedding job enqueued",
        data=handle.to_dict(),
    )


@router.post(
    "/transcoding",
    response_model=ResponseBase,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Enqueue HLS transcoding of a lesson video",
)
async def enqueue_transcoding(
    body: TranscodingEnqueueRequest,
    request: Request,
    manager: QueueManager = Depends(get_queue_manager),
) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    try:
        handle = manager.enqueue_transcoding(body.lesson_id, body.video_path, body.course_id, priority=body.priority)
    except (QueueBackendError, OverflowError) as e:
        raise _enqueue_failed(e, "hls-transcoding", request_id)
    return ResponseBase(
        message="Transcoding job already queued" if handle.duplicate else "Transcoding job enqueued",
        data=handle.to_dict(),
    )


@router.post(
    "/transcription",
    response_model=ResponseBase,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Enqueue transcription of a lesson video",
)
async def enqueue_transcription(
    body: TranscriptionEnqueueRequest,
    request: Request,
    manager: QueueManager = Depends(get_queue_manager),
) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    try:
        handle = manager.enqueue_transcription(
            body.lesson_id,
            body.video_path,
            body.user_id,
            body.course_id,
            priority=body.priority,
        )
    except (QueueBackendError, OverflowError) as e:
        raise _enqueue_failed(e, "video-transcription", request_id)
    return ResponseBase(
        message="Transcription job already queued" if handle.duplicate else "Transcription job enqueued",
        data=handle.to_dict(),
    )
