"""
Pydantic schemas for deferred-job payloads and queue status.

Payload field names are camelCase on the wire (what workers read), snake_case
in Python.
"""
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class EmbeddingJobPayload(_Payload):
    course_id: int = Field(alias="courseId", gt=0)
    course_data: Dict[str, Any] = Field(alias="courseData", description="Course fields to embed (title, descriptions, ...)")


class TranscodingJobPayload(_Payload):
    lesson_id: int = Field(alias="lessonId", gt=0)
    video_path: str = Field(alias="videoPath", min_length=1)
    course_id: int = Field(alias="courseId", gt=0)


class TranscriptionJobPayload(_Payload):
    lesson_id: int = Field(alias="lessonId", gt=0)
    video_path: str = Field(alias="videoPath", min_length=1)
    user_id: int = Field(alias="userId", gt=0)
    course_id: int = Field(alias="courseId", gt=0)


class EnqueueRequest(BaseModel):
    """Common request envelope fields for the enqueue endpoints."""
    priority: Optional[str] = Field("normal", description="high, normal or low")


class EmbeddingEnqueueRequest(EnqueueRequest, EmbeddingJobPayload):
    pass


class TranscodingEnqueueRequest(EnqueueRequest, TranscodingJobPayload):
    pass


class TranscriptionEnqueueRequest(EnqueueRequest, TranscriptionJobPayload):
    pass


class QueueStatus(BaseModel):
    queue: str
    waiting: int = Field(ge=0, description="Not yet picked up, including jobs waiting out a retry backoff")
    active: int = Field(ge=0)
    completed: int = Field(ge=0, description="Retained completed records (bounded by retention)")
    failed: int = Field(ge=0, description="Retained failed records (bounded by retention)")
    total: int = Field(ge=0)
