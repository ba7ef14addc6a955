"""In-memory priority + delay job store (single-process).

Features:
- Priority ordering (lower numeric priority value = serviced first), FIFO within a priority.
- Retry scheduling: a failed attempt is parked until its backoff delay elapses.
- Retention: only the most recent N completed / failed job records are kept per queue.
- Dedup: a caller supplied job id identifies at most one effective job.
- Capacity limit via QUEUE_SETTINGS['max_in_memory'].
- Thread-safe (single re-entrant lock).

Two-heaps strategy per queue:
 1. ready_heap: (priority, seq, job_id)
 2. scheduled_heap: (ready_at_ts, priority, seq, job_id)

On take:
  - Promote any scheduled items whose ready_at <= now.
  - Pop highest priority from ready_heap (ties resolved by seq FIFO).

Keeping delayed retries in their own heap avoids starvation of currently-ready
lower-priority jobs by a far-future higher-priority retry.
"""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Optional
import heapq
import threading
import time

from app.config import QUEUE_SETTINGS
from app.jobs.job import (
    JobHandle,
    JobRecord,
    JobState,
    StoreEnqueueOptions,
    dedup_replaces,
)
from app.utils import get_logger
from app.utils.backoff import compute_backoff_ms

logger = get_logger(__name__)


@dataclass
class _QueueState:
    ready_heap: list[tuple[int, int, str]] = field(default_factory=list)
    scheduled_heap: list[tuple[float, int, int, str]] = field(default_factory=list)
    jobs: dict[str, JobRecord] = field(default_factory=dict)
    active: set[str] = field(default_factory=set)
    completed: deque[str] = field(default_factory=deque)  # newest first
    failed: deque[str] = field(default_factory=deque)
    id_counter: int = 0


class InMemoryJobStore:
    def __init__(self, *, max_in_memory: Optional[int] = None) -> None:
        self._max_in_memory = int(max_in_memory if max_in_memory is not None else QUEUE_SETTINGS.get("max_in_memory", 5000))  # type: ignore[arg-type]
        self._lock = threading.RLock()
        self._queues: dict[str, _QueueState] = {}
        self._seq_counter = 0

    # ----------------------------- internal helpers ----------------------------- #
    def _queue(self, queue_name: str) -> _QueueState:
        return self._queues.setdefault(queue_name, _QueueState())

    def _next_seq(self) -> int:
        self._seq_counter += 1
        return self._seq_counter

    def _pending_total(self) -> int:
        return sum(len(q.ready_heap) + len(q.scheduled_heap) for q in self._queues.values())

    def _promote_scheduled(self, q: _QueueState) -> None:
        now_ts = time.time()
        while q.scheduled_heap and q.scheduled_heap[0][0] <= now_ts:
            _, priority, seq, job_id = heapq.heappop(q.scheduled_heap)
            job = q.jobs.get(job_id)
            if job is None or job.state is not JobState.DELAYED:
                continue
            job.state = JobState.WAITING
            heapq.heappush(q.ready_heap, (priority, seq, job_id))

    def _trim(self, q: _QueueState, ids: deque[str], keep: int) -> None:
        while len(ids) > max(keep, 0):
            old_id = ids.pop()
            q.jobs.pop(old_id, None)

    def _require_active(self, q: _QueueState, queue_name: str, job_id: str) -> JobRecord:
        job = q.jobs.get(job_id)
        if job is None or job.state is not JobState.ACTIVE:
            raise ValueError(f"Job '{job_id}' is not active in queue '{queue_name}'")
        return job

    # ----------------------------- enqueue side ----------------------------- #
    def enqueue(self, queue_name: str, job_name: str, payload: dict[str, Any], options: StoreEnqueueOptions) -> JobHandle:
        with self._lock:
            q = self._queue(queue_name)
            if options.job_id is not None:
                existing = q.jobs.get(options.job_id)
                if existing is not None:
                    if not dedup_replaces(existing.state):
                        logger.info(
                            "Duplicate job ignored",
                            queue=queue_name,
                            job_id=existing.id,
                            state=existing.state.value,
                        )
                        return existing.handle(duplicate=True)
                    # finished job: drop the old record, fresh one takes the id
                    for ids in (q.completed, q.failed):
                        if existing.id in ids:
                            ids.remove(existing.id)
                    del q.jobs[existing.id]
            if self._pending_total() >= self._max_in_memory:
                raise OverflowError("Queue capacity exceeded")
            if options.job_id is None:
                q.id_counter += 1
                job_id = str(q.id_counter)
            else:
                job_id = options.job_id
            now_ts = time.time()
            job = JobRecord(
                id=job_id,
                queue=queue_name,
                name=job_name,
                data=dict(payload),
                priority=options.priority,
                attempts=max(1, options.attempts),
                backoff=options.backoff,
                remove_on_complete=options.remove_on_complete,
                remove_on_fail=options.remove_on_fail,
                seq=self._next_seq(),
                enqueued_at=now_ts,
                ready_at=now_ts,
            )
            q.jobs[job_id] = job
            heapq.heappush(q.ready_heap, (job.priority, job.seq, job_id))
            return job.handle()

    # ----------------------------- worker side ----------------------------- #
    def take(self, queue_name: str) -> Optional[JobRecord]:
        """Pop the next ready job and mark it active. None if nothing is ready."""
        with self._lock:
            q = self._queue(queue_name)
            self._promote_scheduled(q)
            while q.ready_heap:
                _, _, job_id = heapq.heappop(q.ready_heap)
                job = q.jobs.get(job_id)
                if job is None or job.state is not JobState.WAITING:
                    continue
                job.state = JobState.ACTIVE
                job.processed_at = time.time()
                q.active.add(job_id)
                return job
            return None

    def complete(self, queue_name: str, job_id: str) -> JobRecord:
        with self._lock:
            q = self._queue(queue_name)
            job = self._require_active(q, queue_name, job_id)
            q.active.discard(job_id)
            job.attempts_made += 1
            job.state = JobState.COMPLETED
            job.finished_at = time.time()
            q.completed.appendleft(job_id)
            self._trim(q, q.completed, job.remove_on_complete)
            return job

    def fail(self, queue_name: str, job_id: str, reason: str) -> JobRecord:
        """Record a failed attempt; re-schedule with backoff while attempts remain."""
        with self._lock:
            q = self._queue(queue_name)
            job = self._require_active(q, queue_name, job_id)
            q.active.discard(job_id)
            job.attempts_made += 1
            job.failed_reason = reason
            if job.attempts_made < job.attempts:
                delay_ms = compute_backoff_ms(job.attempts_made, job.backoff.delay, backoff_type=job.backoff.type)
                job.state = JobState.DELAYED
                job.ready_at = time.time() + delay_ms / 1000.0
                heapq.heappush(q.scheduled_heap, (job.ready_at, job.priority, job.seq, job_id))
                logger.info(
                    "Job attempt failed, retry scheduled",
                    queue=queue_name,
                    job_id=job_id,
                    attempts_made=job.attempts_made,
                    delay_ms=delay_ms,
                )
                return job
            job.state = JobState.FAILED
            job.finished_at = time.time()
            q.failed.appendleft(job_id)
            self._trim(q, q.failed, job.remove_on_fail)
            logger.warning("Job failed permanently", queue=queue_name, job_id=job_id, reason=reason)
            return job

    # ----------------------------- inspection ----------------------------- #
    def get_job(self, queue_name: str, job_id: str) -> Optional[JobRecord]:
        with self._lock:
            return self._queue(queue_name).jobs.get(job_id)

    def counts(self, queue_name: str) -> dict[str, int]:
        with self._lock:
            q = self._queue(queue_name)
            return {
                "waiting": sum(1 for j in q.jobs.values() if j.state is JobState.WAITING),
                "delayed": sum(1 for j in q.jobs.values() if j.state is JobState.DELAYED),
                "active": len(q.active),
                "completed": len(q.completed),
                "failed": len(q.failed),
            }

    def health_check(self) -> bool:
        return True

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "backend": "memory",
                "queues": {name: self.counts(name) for name in self._queues},
                "capacity": self._max_in_memory,
            }

    # ----------------------------- test utilities ----------------------------- #
    def purge(self, queue_name: str) -> None:
        """Drop every job record of one queue."""
        with self._lock:
            self._queues.pop(queue_name, None)


__all__ = ["InMemoryJobStore"]
