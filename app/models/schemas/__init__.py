from .base import ResponseBase
from .queue import (
    EmbeddingJobPayload,
    TranscodingJobPayload,
    TranscriptionJobPayload,
    EnqueueRequest,
    EmbeddingEnqueueRequest,
    TranscodingEnqueueRequest,
    TranscriptionEnqueueRequest,
    QueueStatus,
)
from .operations import (
    SweepResultRead,
    SchedulerSnapshot,
    ActiveRequestCount,
    ConcurrencyStats,
)
from .ai import ChatTurn, ChatRequest, ChatReply

__all__ = [
    # Base
    "ResponseBase",

    # Queues
    "EmbeddingJobPayload",
    "TranscodingJobPayload",
    "TranscriptionJobPayload",
    "EnqueueRequest",
    "EmbeddingEnqueueRequest",
    "TranscodingEnqueueRequest",
    "TranscriptionEnqueueRequest",
    "QueueStatus",

    # Operations
    "SweepResultRead",
    "SchedulerSnapshot",
    "ActiveRequestCount",
    "ConcurrencyStats",

    # AI
    "ChatTurn",
    "ChatRequest",
    "ChatReply",
]
