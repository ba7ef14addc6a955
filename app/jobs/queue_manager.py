"""Queue manager: policy layer in front of the priority-queue backing store.

Callers hand over a payload for a named queue; the manager resolves the
numeric priority, attaches the queue's retry/backoff/retention policy and the
optional dedup key (used as the store's job id), and forwards the job. Retries
after acceptance are the store's business; callers only see them through
``get_status``.

Enqueue failures (store unreachable, capacity exceeded, invalid payload)
propagate to the caller unchanged.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel

from app.config import QUEUE_POLICIES, QUEUE_SETTINGS
from app.jobs.job import BackoffOptions, JobHandle, JobStore, StoreEnqueueOptions
from app.models.schemas.queue import EmbeddingJobPayload, TranscodingJobPayload, TranscriptionJobPayload
from app.utils import get_logger, log_business_event

logger = get_logger(__name__)

EMBEDDING_QUEUE = "embedding-generation"
TRANSCODING_QUEUE = "hls-transcoding"
TRANSCRIPTION_QUEUE = "video-transcription"


def resolve_priority(label: Optional[str]) -> int:
    """Map a priority label to its numeric value; unknown labels fall back to normal."""
    priorities: dict[str, int] = QUEUE_SETTINGS.get("priorities", {})  # type: ignore[assignment]
    default_label = str(QUEUE_SETTINGS.get("default_priority", "normal"))
    default_value = int(priorities.get(default_label, 5))
    if not label:
        return default_value
    return int(priorities.get(str(label).strip().lower(), default_value))


@dataclass(slots=True, frozen=True)
class QueuePolicy:
    job_name: str
    attempts: int
    backoff_type: str
    backoff_delay_ms: int
    keep_completed: int
    keep_failed: int

    @classmethod
    def from_settings(cls, cfg: Mapping[str, Any]) -> "QueuePolicy":
        return cls(
            job_name=str(cfg["job_name"]),
            attempts=int(cfg.get("attempts", 1)),
            backoff_type=str(cfg.get("backoff_type", "exponential")),
            backoff_delay_ms=int(cfg.get("backoff_delay_ms", 5000)),
            keep_completed=int(cfg.get("keep_completed", 100)),
            keep_failed=int(cfg.get("keep_failed", 100)),
        )


@dataclass(slots=True)
class EnqueueOptions:
    priority: Optional[str] = "normal"
    dedup_key: Optional[str] = None


class QueueManager:
    def __init__(self, store: JobStore, policies: Optional[Mapping[str, Mapping[str, Any]]] = None) -> None:
        self.store = store
        source = policies if policies is not None else QUEUE_POLICIES
        self._policies: dict[str, QueuePolicy] = {name: QueuePolicy.from_settings(cfg) for name, cfg in source.items()}
        self._warn_depth = int(QUEUE_SETTINGS.get("warn_depth", 1000))  # type: ignore[arg-type]

    @property
    def queue_names(self) -> list[str]:
        return list(self._policies)

    def policy(self, queue_name: str) -> QueuePolicy:
        try:
            return self._policies[queue_name]
        except KeyError:
            raise ValueError(f"Unknown queue '{queue_name}'") from None

    def enqueue(
        self,
        queue_name: str,
        payload: Union[Mapping[str, Any], BaseModel],
        options: Optional[EnqueueOptions] = None,
    ) -> JobHandle:
        """Submit one unit of work. Returns the store's handle for the job."""
        policy = self.policy(queue_name)
        options = options or EnqueueOptions()
        data = payload.model_dump(by_alias=True) if isinstance(payload, BaseModel) else dict(payload)
        store_options = StoreEnqueueOptions(
            priority=resolve_priority(options.priority),
            job_id=options.dedup_key,
            attempts=policy.attempts,
            backoff=BackoffOptions(type=policy.backoff_type, delay=policy.backoff_delay_ms),
            remove_on_complete=policy.keep_completed,
            remove_on_fail=policy.keep_failed,
        )
        handle = self.store.enqueue(queue_name, policy.job_name, data, store_options)
        logger.info(
            "Job enqueued",
            queue=queue_name,
            job_id=handle.id,
            priority=handle.priority,
            duplicate=handle.duplicate,
        )
        log_business_event(
            event_type="job_enqueued",
            details={"queue": queue_name, "job_id": handle.id, "duplicate": handle.duplicate},
        )
        counts = self.store.counts(queue_name)
        if counts.get("waiting", 0) >= self._warn_depth:
            logger.warning("Queue depth warning", queue=queue_name, depth=counts.get("waiting"))
        return handle

    # ----------------------------- typed helpers ----------------------------- #
    def enqueue_embedding(self, course_id: int, course_data: Mapping[str, Any], *, priority: Optional[str] = "normal") -> JobHandle:
        payload = EmbeddingJobPayload(course_id=course_id, course_data=dict(course_data))
        return self.enqueue(EMBEDDING_QUEUE, payload, EnqueueOptions(priority=priority, dedup_key=f"course-{course_id}"))

    def enqueue_transcoding(self, lesson_id: int, video_path: str, course_id: int, *, priority: Optional[str] = "normal") -> JobHandle:
        payload = TranscodingJobPayload(lesson_id=lesson_id, video_path=video_path, course_id=course_id)
        return self.enqueue(TRANSCODING_QUEUE, payload, EnqueueOptions(priority=priority, dedup_key=f"lesson-{lesson_id}-hls"))

    def enqueue_transcription(
        self,
        lesson_id: int,
        video_path: str,
        user_id: int,
        course_id: int,
        *,
        priority: Optional[str] = "normal",
    ) -> JobHandle:
        payload = TranscriptionJobPayload(lesson_id=lesson_id, video_path=video_path, user_id=user_id, course_id=course_id)
        return self.enqueue(
            TRANSCRIPTION_QUEUE,
            payload,
            EnqueueOptions(priority=priority, dedup_key=f"lesson-{lesson_id}-transcription"),
        )

    # ----------------------------- status ----------------------------- #
    def get_status(self, queue_name: str) -> dict[str, int]:
        """Snapshot of store counts taken at call time."""
        self.policy(queue_name)
        counts = self.store.counts(queue_name)
        waiting = counts.get("waiting", 0) + counts.get("delayed", 0)
        active = counts.get("active", 0)
        completed = counts.get("completed", 0)
        failed = counts.get("failed", 0)
        return {
            "waiting": waiting,
            "active": active,
            "completed": completed,
            "failed": failed,
            "total": waiting + active + completed + failed,
        }

    def get_all_statuses(self) -> dict[str, dict[str, int]]:
        return {name: self.get_status(name) for name in self._policies}


def create_job_store() -> JobStore:
    """Pick the backing store from configuration.

    Redis is checked once here; if it is configured but unreachable at startup
    the in-memory store is used instead. After bootstrap there is no fallback.
    """
    from app.jobs.queue import InMemoryJobStore

    if QUEUE_SETTINGS.get("use_redis", False):
        from app.jobs.redis_queue import RedisJobStore

        store = RedisJobStore()
        if store.health_check():
            logger.info("Using Redis-backed job store")
            return store
        logger.warning("Redis configured but not reachable at startup; using in-memory job store")
    logger.info("Using in-memory job store")
    return InMemoryJobStore()


__all__ = [
    "QueueManager",
    "QueuePolicy",
    "EnqueueOptions",
    "resolve_priority",
    "create_job_store",
    "EMBEDDING_QUEUE",
    "TRANSCODING_QUEUE",
    "TRANSCRIPTION_QUEUE",
]
