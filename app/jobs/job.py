"""Job record structures shared by the queue manager and the backing stores."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol


class JobState(str, enum.Enum):
    WAITING = "waiting"
    DELAYED = "delayed"  # waiting out a retry backoff
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


# A job in one of these states is still "currently effective" for its id.
EFFECTIVE_STATES = frozenset({JobState.WAITING, JobState.DELAYED, JobState.ACTIVE})


class QueueBackendError(RuntimeError):
    """The backing store could not be reached or rejected an operation."""


@dataclass(slots=True)
class BackoffOptions:
    type: str = "exponential"
    delay: int = 5000  # ms


@dataclass(slots=True)
class StoreEnqueueOptions:
    priority: int
    job_id: Optional[str] = None
    attempts: int = 1
    backoff: BackoffOptions = field(default_factory=BackoffOptions)
    remove_on_complete: int = 100
    remove_on_fail: int = 100


@dataclass(slots=True, frozen=True)
class JobHandle:
    id: str
    queue: str
    name: str
    priority: int
    state: JobState
    duplicate: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "queue": self.queue,
            "name": self.name,
            "priority": self.priority,
            "state": self.state.value,
            "duplicate": self.duplicate,
        }


@dataclass(slots=True)
class JobRecord:
    id: str
    queue: str
    name: str
    data: dict[str, Any]
    priority: int
    attempts: int
    backoff: BackoffOptions
    remove_on_complete: int
    remove_on_fail: int
    state: JobState = JobState.WAITING
    attempts_made: int = 0
    seq: int = 0
    enqueued_at: float = 0.0
    ready_at: float = 0.0
    processed_at: Optional[float] = None
    finished_at: Optional[float] = None
    failed_reason: Optional[str] = None

    def handle(self, *, duplicate: bool = False) -> JobHandle:
        return JobHandle(
            id=self.id,
            queue=self.queue,
            name=self.name,
            priority=self.priority,
            state=self.state,
            duplicate=duplicate,
        )


def dedup_replaces(existing: JobState) -> bool:
    """Whether a new job may take over the id of an existing one.

    Waiting, delayed and active jobs keep their id (the new enqueue is
    ignored); completed and failed ones are replaced by a fresh job.
    """
    return existing not in EFFECTIVE_STATES


class JobStore(Protocol):
    """Priority queue backing store contract (enqueue side + worker side)."""

    def enqueue(self, queue_name: str, job_name: str, payload: dict[str, Any], options: StoreEnqueueOptions) -> JobHandle: ...
    def counts(self, queue_name: str) -> dict[str, int]: ...
    def get_job(self, queue_name: str, job_id: str) -> Optional[JobRecord]: ...
    def take(self, queue_name: str) -> Optional[JobRecord]: ...
    def complete(self, queue_name: str, job_id: str) -> JobRecord: ...
    def fail(self, queue_name: str, job_id: str, reason: str) -> JobRecord: ...
    def purge(self, queue_name: str) -> None: ...
    def health_check(self) -> bool: ...


__all__ = [
    "JobState",
    "EFFECTIVE_STATES",
    "QueueBackendError",
    "BackoffOptions",
    "StoreEnqueueOptions",
    "JobHandle",
    "JobRecord",
    "JobStore",
    "dedup_replaces",
]
